# tests/test_fetcher.py

from pathlib import Path
from unittest.mock import MagicMock

import pytest
import requests

from fetcher import fetch_or_load_html, fetch_or_load_image, image_filename, make_session
from shared import DEFAULT_HEADERS, AssetFetchError, DocumentFetchError

PAGE_URL = "https://www.gutenberg.org/cache/epub/1184/pg1184-images.html"
IMAGE_URL = "https://www.gutenberg.org/cache/epub/1184/images/i001.jpg"


def make_response(content: bytes = b"", error: Exception | None = None) -> MagicMock:
    response = MagicMock()
    response.content = content
    if error is not None:
        response.raise_for_status.side_effect = error
    return response


@pytest.fixture
def session() -> MagicMock:
    return MagicMock(spec=requests.Session)


class TestImageFilename:
    def test_last_path_segment(self) -> None:
        assert image_filename(IMAGE_URL) == "i001.jpg"

    def test_trailing_slash_is_ignored(self) -> None:
        assert image_filename("https://example.org/figures/plate/") == "plate"

    def test_trivial_path_uses_host(self) -> None:
        assert image_filename("https://www.gutenberg.org/") == "image_www_gutenberg_org.tmp"
        assert image_filename("https://www.gutenberg.org") == "image_www_gutenberg_org.tmp"

    def test_unsafe_characters_are_replaced(self) -> None:
        assert image_filename("https://example.org/a:b*c|d.png") == "a_b_c_d.png"

    def test_percent_encoding_is_decoded(self) -> None:
        assert image_filename("https://example.org/img/plate%20one%3F.png") == "plate one_.png"

    def test_control_characters_are_replaced(self) -> None:
        assert image_filename("https://example.org/img/bad%00name.png") == "bad_name.png"
        assert image_filename("https://example.org/img/tab%09%7F.png") == "tab__.png"

    def test_query_is_not_part_of_the_name(self) -> None:
        assert image_filename("https://example.org/img/p.png?w=200") == "p.png"


class TestFetchOrLoadImage:
    def test_downloads_on_cache_miss(self, session: MagicMock, tmp_path) -> None:
        session.get.return_value = make_response(b"\xff\xd8\xffjpeg")
        cache_dir = tmp_path / "temp_images"

        path = fetch_or_load_image(IMAGE_URL, cache_dir, session=session, timeout=5.0)

        assert path == cache_dir / "i001.jpg"
        assert path.read_bytes() == b"\xff\xd8\xffjpeg"
        session.get.assert_called_once_with(IMAGE_URL, timeout=5.0, allow_redirects=True)

    def test_cache_hit_skips_network(self, session: MagicMock, tmp_path) -> None:
        (tmp_path / "i001.jpg").write_bytes(b"cached")

        path = fetch_or_load_image(IMAGE_URL, tmp_path, session=session)

        assert path.read_bytes() == b"cached"
        session.get.assert_not_called()

    def test_second_fetch_is_identical_and_offline(self, session: MagicMock, tmp_path) -> None:
        session.get.return_value = make_response(b"image-bytes")

        first = fetch_or_load_image(IMAGE_URL, tmp_path, session=session)
        first_bytes = first.read_bytes()
        second = fetch_or_load_image(IMAGE_URL, tmp_path, session=session)

        assert second == first
        assert second.read_bytes() == first_bytes
        assert session.get.call_count == 1

    def test_bad_status(self, session: MagicMock, tmp_path) -> None:
        session.get.return_value = make_response(
            error=requests.HTTPError("404 Client Error: Not Found")
        )

        with pytest.raises(AssetFetchError, match="404"):
            fetch_or_load_image(IMAGE_URL, tmp_path, session=session)
        assert not (tmp_path / "i001.jpg").exists()

    def test_connection_error(self, session: MagicMock, tmp_path) -> None:
        session.get.side_effect = requests.ConnectionError("connection refused")

        with pytest.raises(AssetFetchError, match="connection refused"):
            fetch_or_load_image(IMAGE_URL, tmp_path, session=session)

    def test_unwritable_cache(self, session: MagicMock, tmp_path) -> None:
        blocker = tmp_path / "blocker"
        blocker.write_text("not a directory")
        session.get.return_value = make_response(b"data")

        with pytest.raises(AssetFetchError, match="failed to save image"):
            fetch_or_load_image(IMAGE_URL, blocker / "images", session=session)

    def test_nul_byte_url_is_saved_under_safe_name(self, session: MagicMock, tmp_path) -> None:
        session.get.return_value = make_response(b"data")

        path = fetch_or_load_image(
            "https://example.org/img/bad%00name.png", tmp_path, session=session
        )

        assert path == tmp_path / "bad_name.png"
        assert path.read_bytes() == b"data"

    def test_invalid_path_on_save_is_an_asset_error(
        self, session: MagicMock, tmp_path, monkeypatch
    ) -> None:
        session.get.return_value = make_response(b"data")

        def reject(self, data):
            raise ValueError("embedded null byte")

        monkeypatch.setattr(Path, "write_bytes", reject)

        with pytest.raises(AssetFetchError, match="embedded null byte"):
            fetch_or_load_image(IMAGE_URL, tmp_path, session=session)


class TestFetchOrLoadHtml:
    def test_downloads_and_caches(self, session: MagicMock, tmp_path, capsys) -> None:
        session.get.return_value = make_response(b"<html>book</html>")
        cache = tmp_path / "output.html"

        content, base_url = fetch_or_load_html(PAGE_URL, cache, session=session)

        assert content == b"<html>book</html>"
        assert base_url == PAGE_URL
        assert cache.read_bytes() == b"<html>book</html>"
        assert "Downloading" in capsys.readouterr().out

    def test_cache_hit_skips_network(self, session: MagicMock, tmp_path) -> None:
        cache = tmp_path / "output.html"
        cache.write_bytes(b"<html>cached</html>")

        content, base_url = fetch_or_load_html(PAGE_URL, cache, session=session)

        assert content == b"<html>cached</html>"
        assert base_url == PAGE_URL
        session.get.assert_not_called()

    def test_bad_status_is_fatal(self, session: MagicMock, tmp_path) -> None:
        session.get.return_value = make_response(
            error=requests.HTTPError("503 Server Error: Service Unavailable")
        )

        with pytest.raises(DocumentFetchError, match="503"):
            fetch_or_load_html(PAGE_URL, tmp_path / "output.html", session=session)
        assert not (tmp_path / "output.html").exists()

    def test_network_error_is_fatal(self, session: MagicMock, tmp_path) -> None:
        session.get.side_effect = requests.Timeout("read timed out")

        with pytest.raises(DocumentFetchError, match="timed out"):
            fetch_or_load_html(PAGE_URL, tmp_path / "output.html", session=session)

    def test_unreadable_cache_is_fatal(self, session: MagicMock, tmp_path) -> None:
        cache = tmp_path / "output.html"
        cache.mkdir()

        with pytest.raises(DocumentFetchError, match="failed to read local HTML file"):
            fetch_or_load_html(PAGE_URL, cache, session=session)
        session.get.assert_not_called()

    def test_cache_write_failure_is_a_warning(self, session: MagicMock, tmp_path, capsys) -> None:
        session.get.return_value = make_response(b"<html>book</html>")
        cache = tmp_path / "missing_dir" / "output.html"

        content, _ = fetch_or_load_html(PAGE_URL, cache, session=session)

        assert content == b"<html>book</html>"
        assert "WARNING: Failed to save HTML" in capsys.readouterr().out


def test_make_session_sets_headers() -> None:
    session = make_session()

    assert session.headers["User-Agent"] == DEFAULT_HEADERS["User-Agent"]
