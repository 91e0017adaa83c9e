"""
Section segmentation and inline image resolution.

One pre-order walk over the parsed document does three jobs at once:

* splits the body into titled sections at boundary headings,
* wraps every non-blank text node in its own ``<p>`` element,
* downloads each ``<img src>`` and rewires it to the packaged copy.

The walk only talks to nodes through ``DocumentNode``, so it can be
driven by BeautifulSoup (via ``SoupNode``) or by hand-built test trees.
"""

import urllib.parse
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Iterable, Protocol

from bs4 import BeautifulSoup
from bs4.builder import ParserRejectedMarkup
from bs4.element import NavigableString, PreformattedString, Script, Stylesheet, Tag

from shared import (
    BOUNDARY_TAGS,
    DEFAULT_TITLE,
    FALLBACK_TITLE,
    AssetFetchError,
    AssetResolutionError,
    ConversionError,
    PackagingError,
    escape_html,
)

ELEMENT = "element"
TEXT = "text"
OTHER = "other"


# ============================================================================
# Node interface
# ============================================================================

class DocumentNode(Protocol):
    """The few things the walk needs to know about a parsed node."""

    kind: str
    tag: str | None
    attributes: list[tuple[str, str]]
    text: str
    children: list["DocumentNode"]

    def get(self, name: str) -> str | None: ...


class SoupNode:
    """Adapt a BeautifulSoup element to ``DocumentNode``."""

    __slots__ = ("element",)

    def __init__(self, element):
        self.element = element

    def __repr__(self):
        return f"SoupNode({self.kind}, {self.tag or self.text[:20]!r})"

    @property
    def kind(self) -> str:
        el = self.element
        if isinstance(el, Tag):
            return ELEMENT
        # Comments, doctypes, CDATA and <script>/<style> bodies are not prose
        if isinstance(el, (PreformattedString, Script, Stylesheet)):
            return OTHER
        if isinstance(el, NavigableString):
            return TEXT
        return OTHER

    @property
    def tag(self) -> str | None:
        if isinstance(self.element, Tag):
            return self.element.name
        return None

    @property
    def attributes(self) -> list[tuple[str, str]]:
        if not isinstance(self.element, Tag):
            return []
        attrs = []
        for key, value in self.element.attrs.items():
            if isinstance(value, list):
                value = " ".join(value)
            attrs.append((key, value))
        return attrs

    def get(self, name: str) -> str | None:
        for key, value in self.attributes:
            if key == name:
                return value
        return None

    @property
    def text(self) -> str:
        if self.kind == TEXT:
            return str(self.element)
        return ""

    @property
    def children(self) -> list["SoupNode"]:
        if not isinstance(self.element, Tag):
            return []
        return [SoupNode(child) for child in self.element.children]


def parse_document(data: bytes) -> BeautifulSoup:
    """Parse raw HTML bytes with the lxml backend."""
    try:
        return BeautifulSoup(data, "lxml")
    except ParserRejectedMarkup as exc:
        raise ConversionError(f"failed to parse HTML: {exc}") from exc


def document_base_url(soup: BeautifulSoup, page_url: str) -> str:
    """Return the URL relative links should resolve against (honours <base href>)."""
    base_tag = soup.find("base", href=True)
    if base_tag:
        href = base_tag["href"].strip()
        if href:
            try:
                return urllib.parse.urljoin(page_url, href)
            except ValueError:
                print(f"  WARNING: Ignoring malformed <base href=\"{href}\">")
    return page_url


# ============================================================================
# Data structures
# ============================================================================

@dataclass
class Section:
    title: str
    body: str


@dataclass
class AssetReference:
    remote_url: str
    local_path: Path
    packaged_path: str


@dataclass
class SegmentationResult:
    sections: list[Section] = field(default_factory=list)
    assets: dict[str, AssetReference] = field(default_factory=dict)


class SegmentationState:
    """Mutable state carried through one walk."""

    def __init__(self, title: str = DEFAULT_TITLE):
        self.buffer: list[str] = []
        self.title = title
        self.sections: list[Section] = []

    def append(self, markup: str):
        self.buffer.append(markup)

    def flush(self):
        """Finalize the buffered body as a section under the current title."""
        if not self.buffer:
            return
        self.sections.append(Section(self.title, "".join(self.buffer)))
        self.buffer = []


class AssetResolver:
    """Turn ``<img src>`` values into packaged image paths.

    ``fetch`` maps an absolute URL to a local file (raising
    ``AssetFetchError``), ``embed`` maps that file to the path used inside
    the package (raising ``PackagingError``). Each remote URL is fetched
    and embedded at most once per resolver.
    """

    def __init__(
        self,
        base_url: str,
        fetch: Callable[[str], Path],
        embed: Callable[[Path], str],
    ):
        self.base_url = base_url
        self.fetch = fetch
        self.embed = embed
        self.resolved: dict[str, AssetReference] = {}
        self.failed: set[str] = set()

    def absolute_url(self, src: str) -> str:
        try:
            url = urllib.parse.urljoin(self.base_url, src.strip())
            parts = urllib.parse.urlsplit(url)
        except ValueError as exc:
            raise AssetResolutionError(f"could not parse image URL '{src}': {exc}") from exc
        if parts.scheme not in ("http", "https") or not parts.netloc:
            raise AssetResolutionError(f"image URL '{src}' does not resolve to http(s)")
        return url

    def resolve(self, src: str) -> str | None:
        """Return the packaged path for ``src``, or None if the image is skipped."""
        try:
            url = self.absolute_url(src)
        except AssetResolutionError as exc:
            print(f"  WARNING: Could not parse image URL '{src}': {exc}")
            return None

        known = self.resolved.get(url)
        if known is not None:
            return known.packaged_path
        if url in self.failed:
            return None

        try:
            local_path = self.fetch(url)
        except AssetFetchError as exc:
            print(f"  WARNING: Could not download or load image '{url}': {exc}")
            self.failed.add(url)
            return None

        try:
            packaged_path = self.embed(local_path)
        except PackagingError as exc:
            # The cached download stays on disk
            print(f"  WARNING: Could not add image '{local_path}' to EPUB: {exc}")
            self.failed.add(url)
            return None

        self.resolved[url] = AssetReference(url, Path(local_path), packaged_path)
        return packaged_path


# ============================================================================
# Walk
# ============================================================================

def extract_title(node: DocumentNode) -> str:
    """Concatenate every descendant text node, each stripped, with no separator."""
    parts = []
    stack = [node]
    while stack:
        current = stack.pop()
        if current.kind == TEXT:
            parts.append(current.text.strip())
        stack.extend(reversed(current.children))
    return "".join(parts)


def find_body(root: DocumentNode) -> DocumentNode | None:
    """Return the first <body> element in document order, if any."""
    stack = [root]
    while stack:
        node = stack.pop()
        if node.kind == ELEMENT and node.tag == "body":
            return node
        stack.extend(reversed(node.children))
    return None


def _visit(
    node: DocumentNode,
    state: SegmentationState,
    resolver: AssetResolver,
    boundary_tags: frozenset[str],
) -> bool:
    """Process one node. Returns False when its children must not be walked."""
    if node.kind == TEXT:
        text = node.text.strip()
        if text:
            state.append(f"<p>{escape_html(text)} </p>")
        return True

    if node.kind != ELEMENT:
        return True

    tag = (node.tag or "").lower()

    if tag in boundary_tags:
        state.flush()
        state.title = extract_title(node) or FALLBACK_TITLE
        return False

    if tag == "img":
        src = node.get("src")
        if src is None or not src.strip():
            return True
        packaged_path = resolver.resolve(src)
        if packaged_path is not None:
            state.append(f'<p><img src="{escape_html(packaged_path)}" alt="Image"/></p>')

    return True


def segment_document(
    root: DocumentNode,
    resolver: AssetResolver,
    boundary_tags: Iterable[str] = BOUNDARY_TAGS,
) -> SegmentationResult:
    """Walk ``root`` depth-first and return its sections and resolved images."""
    tags = frozenset(t.lower() for t in boundary_tags)
    state = SegmentationState()

    stack = [root]
    while stack:
        node = stack.pop()
        if _visit(node, state, resolver, tags):
            stack.extend(reversed(node.children))

    state.flush()
    return SegmentationResult(state.sections, dict(resolver.resolved))


def convert_tree(
    root: DocumentNode,
    resolver: AssetResolver,
    boundary_tags: Iterable[str] = BOUNDARY_TAGS,
) -> SegmentationResult:
    """Segment the <body> of ``root``, or the whole tree if there is none."""
    body = find_body(root)
    if body is None:
        print("  WARNING: Could not find body node in HTML, extracting from root.")
        body = root
    return segment_document(body, resolver, boundary_tags)
