"""EPUB assembly on top of ebooklib."""

import mimetypes
import re
import uuid
from pathlib import Path

from ebooklib import epub

from shared import BOOK_LANGUAGE, PackagingError, escape_html

CSS_CONTENT = """
body { font-family: Georgia, "Times New Roman", serif; line-height: 1.6; margin: 1em; color: #222; }
p { margin-bottom: 0.8em; text-align: justify; }
img { max-width: 100%; height: auto; display: block; margin: 1em auto; }
"""

IMAGE_SIGNATURES = [
    (b"\x89PNG\r\n\x1a\n", "image/png"),
    (b"\xff\xd8\xff", "image/jpeg"),
    (b"GIF87a", "image/gif"),
    (b"GIF89a", "image/gif"),
]


def detect_image_type(name: str, data: bytes) -> str | None:
    """Guess an image media type from the file name, then from magic bytes."""
    guessed, _encoding = mimetypes.guess_type(name)
    if guessed and guessed.startswith("image/"):
        return guessed
    for signature, media_type in IMAGE_SIGNATURES:
        if data.startswith(signature):
            return media_type
    if data[:4] == b"RIFF" and data[8:12] == b"WEBP":
        return "image/webp"
    head = data[:512].lstrip().lower()
    if head.startswith(b"<svg") or (head.startswith(b"<?xml") and b"<svg" in head):
        return "image/svg+xml"
    return None


class EpubPackager:
    """Collect sections and images, then write them out as one EPUB.

    Sections are stored as ``chapter_NNN.xhtml`` and images under
    ``images/``, both at the top of the package content folder, so the
    path returned by ``add_image`` can be used as-is in section markup.
    """

    def __init__(
        self,
        title: str,
        author: str = "",
        language: str = BOOK_LANGUAGE,
        identifier: str | None = None,
    ):
        self.title = title
        self.book = epub.EpubBook()
        self.book.set_identifier(identifier or f"html2epub-{uuid.uuid4()}")
        self.book.set_title(title)
        self.book.set_language(language)
        if author:
            self.book.add_author(author)

        self.css = epub.EpubItem(
            uid="style",
            file_name="style/default.css",
            media_type="text/css",
            content=CSS_CONTENT.encode("utf-8"),
        )
        self.book.add_item(self.css)

        self.chapters: list[epub.EpubHtml] = []
        self.images: dict[Path, str] = {}  # resolved local path -> packaged path
        self._image_names: set[str] = set()

    # ------------------------------------------------------------------
    # Sections
    # ------------------------------------------------------------------
    def add_section(self, body: str, title: str) -> epub.EpubHtml:
        if not body or not body.strip():
            raise PackagingError(f"section '{title}' has no content")

        index = len(self.chapters) + 1
        chapter = epub.EpubHtml(
            title=title,
            file_name=f"chapter_{index:03d}.xhtml",
            lang=self.book.language,
        )
        chapter.content = (
            f"<html><head><title>{escape_html(title)}</title>"
            f'<link rel="stylesheet" href="style/default.css" type="text/css"/>'
            f"</head><body>{body}</body></html>"
        ).encode("utf-8")
        chapter.add_item(self.css)
        self.book.add_item(chapter)
        self.chapters.append(chapter)
        return chapter

    def add_sections(self, sections) -> int:
        """Add every section in order, skipping (with a warning) any that fail."""
        added = 0
        for section in sections:
            try:
                self.add_section(section.body, section.title)
            except PackagingError as exc:
                print(f"  WARNING: Could not add section '{section.title}': {exc}")
                continue
            added += 1
        return added

    # ------------------------------------------------------------------
    # Images
    # ------------------------------------------------------------------
    def _unique_image_name(self, filename: str) -> str:
        name = f"images/{filename}"
        if name not in self._image_names:
            return name
        stem, dot, ext = filename.rpartition(".")
        if not dot:
            stem, ext = filename, ""
        n = 2
        while True:
            candidate = f"images/{stem}_{n}{dot}{ext}"
            if candidate not in self._image_names:
                return candidate
            n += 1

    def add_image(self, local_path: Path) -> str:
        """Embed an image file and return its path inside the package."""
        local_path = Path(local_path)
        key = local_path.resolve()
        if key in self.images:
            return self.images[key]

        try:
            data = local_path.read_bytes()
        except OSError as exc:
            raise PackagingError(f"failed to read image '{local_path}': {exc}") from exc
        if not data:
            raise PackagingError(f"image '{local_path}' is empty")

        media_type = detect_image_type(local_path.name, data)
        if media_type is None:
            raise PackagingError(f"unrecognised image type for '{local_path}'")

        filename = re.sub(r"\s+", "_", local_path.name)
        packaged_path = self._unique_image_name(filename)
        item = epub.EpubImage(
            uid=f"image_{len(self.images) + 1:03d}",
            file_name=packaged_path,
            media_type=media_type,
            content=data,
        )
        self.book.add_item(item)
        self._image_names.add(packaged_path)
        self.images[key] = packaged_path
        return packaged_path

    # ------------------------------------------------------------------
    # Output
    # ------------------------------------------------------------------
    def write(self, output_path: Path) -> Path:
        output_path = Path(output_path)
        self.book.toc = list(self.chapters)
        self.book.add_item(epub.EpubNcx())
        self.book.add_item(epub.EpubNav())
        self.book.spine = ["nav"] + self.chapters

        try:
            output_path.parent.mkdir(parents=True, exist_ok=True)
            ok = epub.write_epub(str(output_path), self.book, {"raise_exceptions": True})
        except Exception as exc:
            raise PackagingError(f"failed to write EPUB '{output_path}': {exc}") from exc
        if ok is False or not output_path.exists():
            raise PackagingError(f"failed to write EPUB '{output_path}'")
        return output_path
