"""
Document and image fetchers with a plain on-disk cache.

Both fetchers check the cache first and only go to the network on a miss.
There is no locking: one conversion run per cache directory at a time.
"""

import posixpath
import urllib.parse
from pathlib import Path

import requests

from shared import (
    DEFAULT_HEADERS,
    REQUEST_TIMEOUT,
    AssetFetchError,
    DocumentFetchError,
    sanitize_filename,
)


def make_session() -> requests.Session:
    session = requests.Session()
    session.headers.update(DEFAULT_HEADERS)
    return session


def _get(session: requests.Session, url: str, timeout: float) -> requests.Response:
    r = session.get(url, timeout=timeout, allow_redirects=True)
    r.raise_for_status()
    return r


# ===========================================================================
# Source document
# ===========================================================================
def fetch_or_load_html(
    url: str,
    cache_path: Path,
    session: requests.Session | None = None,
    timeout: float = REQUEST_TIMEOUT,
) -> tuple[bytes, str]:
    """Return the document bytes and the base URL for resolving its links.

    A readable cache file wins over the network. A fresh download is
    written back to ``cache_path``; failing to do so only prints a warning.
    """
    cache_path = Path(cache_path)
    try:
        content = cache_path.read_bytes()
    except FileNotFoundError:
        pass
    except OSError as exc:
        raise DocumentFetchError(
            f"failed to read local HTML file '{cache_path}': {exc}"
        ) from exc
    else:
        print(f"  Loaded cached HTML: {cache_path} ({len(content):,} bytes)")
        return content, url

    session = session or make_session()
    print(f"  Downloading: {url}")
    try:
        r = _get(session, url, timeout)
    except requests.RequestException as exc:
        raise DocumentFetchError(f"failed to get URL '{url}': {exc}") from exc
    content = r.content

    try:
        cache_path.write_bytes(content)
    except OSError as exc:
        print(f"  WARNING: Failed to save HTML to '{cache_path}': {exc}")
    else:
        print(f"  Saved {len(content):,} bytes to {cache_path}")

    return content, url


# ===========================================================================
# Images
# ===========================================================================
def image_filename(url: str) -> str:
    """Derive a filesystem-safe cache filename from an image URL.

    Uses the last path segment; URLs with an empty path fall back to a
    synthetic name built from the host.
    """
    parts = urllib.parse.urlsplit(url)
    path = urllib.parse.unquote(parts.path)
    filename = posixpath.basename(path.rstrip("/"))
    if filename in ("", ".", ".."):
        filename = "image_" + parts.netloc.replace(".", "_") + ".tmp"
    return sanitize_filename(filename)


def fetch_or_load_image(
    url: str,
    cache_dir: Path,
    session: requests.Session | None = None,
    timeout: float = REQUEST_TIMEOUT,
) -> Path:
    """Return a local path for ``url``, downloading it into ``cache_dir`` on a miss."""
    try:
        filepath = Path(cache_dir) / image_filename(url)
    except ValueError as exc:
        raise AssetFetchError(f"failed to parse image URL '{url}': {exc}") from exc

    if filepath.is_file():
        return filepath
    if filepath.exists():
        raise AssetFetchError(f"'{filepath}' exists but is not a regular file")

    session = session or make_session()
    try:
        r = _get(session, url, timeout)
    except requests.RequestException as exc:
        raise AssetFetchError(f"failed to get image '{url}': {exc}") from exc

    try:
        filepath.parent.mkdir(parents=True, exist_ok=True)
        filepath.write_bytes(r.content)
    except (OSError, ValueError) as exc:
        raise AssetFetchError(f"failed to save image to '{filepath}': {exc}") from exc

    return filepath
