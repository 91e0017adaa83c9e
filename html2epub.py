#!/usr/bin/env python3
"""
HTML to EPUB: Section Splitting with Local Images

Converts one long HTML book (by default Project Gutenberg's illustrated
Count of Monte Cristo) into an EPUB:
  Stage 1: Fetch the source HTML (or reuse the cached copy)
  Stage 2: Split into sections at heading boundaries, download images
  Stage 3: Assemble and write the EPUB

Usage:
    python3 html2epub.py
    python3 html2epub.py --output monte_cristo.epub
    python3 html2epub.py --heading-tags h1,h2,h3
    python3 html2epub.py --url https://www.gutenberg.org/cache/epub/1259/pg1259-images.html \\
        --title "Twenty Years After" --html-cache twenty_years.html
"""

import argparse
import shutil
import sys
from functools import partial
from pathlib import Path

from fetcher import fetch_or_load_html, fetch_or_load_image, make_session
from packager import EpubPackager
from segmenter import (
    AssetResolver,
    SegmentationResult,
    SoupNode,
    convert_tree,
    document_base_url,
    parse_document,
)
from shared import (
    BOOK_AUTHOR,
    BOOK_TITLE,
    BOUNDARY_TAGS,
    IMAGE_CACHE_DIR,
    OUTPUT_EPUB,
    REQUEST_TIMEOUT,
    SOURCE_CACHE,
    SOURCE_URL,
    ConversionError,
    count_words,
    parse_tag_list,
)


def banner(text: str):
    print("\n" + "=" * 60)
    print(text)
    print("=" * 60)


def stage1(url, cache_path, session, timeout):
    """Fetch the source document, or load it from the local cache."""
    banner("STAGE 1: Fetch Source HTML")
    return fetch_or_load_html(url, cache_path, session=session, timeout=timeout)


def stage2(content, page_url, packager, image_dir, session, timeout, heading_tags):
    """Split the document into sections and pull its images into the package."""
    banner("STAGE 2: Split Sections + Resolve Images")

    soup = parse_document(content)
    base_url = document_base_url(soup, page_url)

    try:
        image_dir.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        raise ConversionError(f"failed to create image directory '{image_dir}': {exc}") from exc

    resolver = AssetResolver(
        base_url,
        fetch=partial(fetch_or_load_image, cache_dir=image_dir, session=session, timeout=timeout),
        embed=packager.add_image,
    )
    result = convert_tree(SoupNode(soup), resolver, heading_tags)

    print(f"\nFound {len(result.sections)} section(s), {len(result.assets)} image(s):")
    for section in result.sections[:5]:
        print(f"  {section.title[:60]} ({count_words(section.body):,} words)")
    if len(result.sections) > 5:
        print(f"  ... and {len(result.sections) - 5} more")
    if not result.sections:
        print("WARNING: No content found. The EPUB will be empty.")

    return result


def stage3(result: SegmentationResult, packager, output_path):
    """Add the sections to the package and write it out."""
    banner("STAGE 3: Assemble EPUB")

    added = packager.add_sections(result.sections)
    if added != len(result.sections):
        print(f"WARNING: {len(result.sections) - added} section(s) were skipped.")

    path = packager.write(output_path)
    print(f"\nSuccessfully created EPUB: {path}")
    return path


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Convert a long HTML book into an EPUB with locally packaged images.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python html2epub.py
  python html2epub.py --output books/monte_cristo.epub
  python html2epub.py --heading-tags h1,h2,h3 --clean-images
        """,
    )
    parser.add_argument("--url", default=SOURCE_URL, help="Source HTML URL")
    parser.add_argument(
        "--output", "-o", default=OUTPUT_EPUB,
        help=f"Output EPUB path (default: {OUTPUT_EPUB})",
    )
    parser.add_argument(
        "--html-cache", default=SOURCE_CACHE,
        help=f"Local copy of the source HTML; reused when present (default: {SOURCE_CACHE})",
    )
    parser.add_argument(
        "--image-dir", default=IMAGE_CACHE_DIR,
        help=f"Image download cache (default: {IMAGE_CACHE_DIR})",
    )
    parser.add_argument("--title", default=BOOK_TITLE, help="Book title")
    parser.add_argument("--author", default=BOOK_AUTHOR, help="Book author")
    parser.add_argument(
        "--heading-tags", type=parse_tag_list, default=BOUNDARY_TAGS,
        help=f"Comma-separated tags that start a new section (default: {','.join(BOUNDARY_TAGS)})",
    )
    parser.add_argument(
        "--timeout", type=float, default=REQUEST_TIMEOUT,
        help="HTTP timeout in seconds (default: %(default)s)",
    )
    parser.add_argument(
        "--clean-images", action="store_true",
        help="Delete the image cache after the EPUB is written",
    )
    return parser


def run(args) -> Path:
    output_path = Path(args.output)
    image_dir = Path(args.image_dir)
    session = make_session()
    packager = EpubPackager(args.title, args.author)

    content, page_url = stage1(args.url, Path(args.html_cache), session, args.timeout)
    result = stage2(content, page_url, packager, image_dir, session, args.timeout, args.heading_tags)
    path = stage3(result, packager, output_path)

    if args.clean_images:
        shutil.rmtree(image_dir, ignore_errors=True)
        print(f"Removed image cache: {image_dir}")

    return path


def main(argv=None):
    parser = build_parser()
    args = parser.parse_args(argv)

    print("=" * 60)
    print("  HTML to EPUB")
    print("=" * 60)
    print(f"  Source: {args.url}")
    print(f"  Output: {args.output}")
    print(f"  Section headings: {', '.join(args.heading_tags)}")

    try:
        run(args)
    except ConversionError as exc:
        print(f"ERROR: {exc}")
        sys.exit(1)

    print("\n" + "=" * 60)
    print("  Conversion complete!")
    print("=" * 60)


if __name__ == "__main__":
    main()
