"""
In-memory page model for link scanning.

A Page wraps a parsed HTML document and publishes structural-change events:
inserting HTML through Page.insert_html() notifies every subscriber of the
page's MutationSource with the newly added top-level nodes.  The scanner only
depends on this subscription, not on how mutations are produced.

Vertical layout is pluggable.  Without a renderer we estimate an element's
vertical position from document order: element index / number of elements.
Callers with real geometry pass their own layout.
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Optional, Protocol

from bs4 import BeautifulSoup, Tag

from .logger import get_module_logger

logger = get_module_logger("page")

# Containers where legal links usually live
FOOTER_SELECTORS = [
    'footer', '[role="contentinfo"]', '#footer', '.footer',
    '.site-footer', '.page-footer', '.legal',
]


def parse_html(html: str) -> BeautifulSoup:
    """
    Parse HTML with the fallback chain html5lib → lxml → html.parser.

    html5lib follows the WHATWG algorithm and copes with the worst markup;
    the other two are tried only if it fails.
    """
    try:
        return BeautifulSoup(html, 'html5lib')
    except Exception as e:
        logger.warning(f"html5lib parsing failed, trying lxml: {e}")
        try:
            return BeautifulSoup(html, 'lxml')
        except Exception as e2:
            logger.warning(f"lxml parsing also failed: {e2}")
            return BeautifulSoup(html, 'html.parser')


# --- Structural change events ---

@dataclass
class MutationEvent:
    """Nodes added to the page by one structural change."""
    added_nodes: list[Tag] = field(default_factory=list)

    def adds_anchors(self) -> bool:
        """True if any added node is an <a> or contains one."""
        for node in self.added_nodes:
            if not isinstance(node, Tag):
                continue
            if node.name == 'a' or node.find('a') is not None:
                return True
        return False


MutationHandler = Callable[[MutationEvent], None]


class MutationSource:
    """Publish/subscribe channel for structural change events."""

    def __init__(self):
        self._handlers: list[MutationHandler] = []

    def subscribe(self, handler: MutationHandler) -> Callable[[], None]:
        """Register a handler; returns a function that unsubscribes it."""
        self._handlers.append(handler)

        def unsubscribe() -> None:
            if handler in self._handlers:
                self._handlers.remove(handler)

        return unsubscribe

    def emit(self, event: MutationEvent) -> None:
        # Copy: handlers may unsubscribe while being notified
        for handler in list(self._handlers):
            try:
                handler(event)
            except Exception as e:
                logger.warning(f"Mutation handler failed: {e}")

    @property
    def subscriber_count(self) -> int:
        return len(self._handlers)


# --- Layout ---

class Layout(Protocol):
    """Vertical geometry of a page."""

    def top_of(self, element: Tag) -> Optional[float]:
        """Top offset of the element, or None if unknown."""
        ...

    def page_height(self) -> float:
        ...


class DocumentOrderLayout:
    """
    Estimates vertical position from an element's index in document order.

    The index is computed once and reused until invalidate() is called.
    """

    def __init__(self, soup: BeautifulSoup):
        self.soup = soup
        self._ordering: Optional[dict[int, int]] = None

    def invalidate(self) -> None:
        self._ordering = None

    def _index(self) -> dict[int, int]:
        if self._ordering is None:
            self._ordering = {
                id(tag): index for index, tag in enumerate(self.soup.find_all(True))
            }
        return self._ordering

    def top_of(self, element: Tag) -> Optional[float]:
        index = self._index().get(id(element))
        return float(index) if index is not None else None

    def page_height(self) -> float:
        return float(len(self._index()))


class Page:
    """A parsed document plus its mutation source and layout."""

    def __init__(
        self,
        html: str,
        url: str = "",
        layout: Optional[Layout] = None
    ):
        self.url = url
        self.soup = parse_html(html)
        self.mutations = MutationSource()
        if layout is None:
            layout = DocumentOrderLayout(self.soup)
            # Registered first, so the index is fresh before any scanner runs
            self.mutations.subscribe(lambda event: layout.invalidate())
        self.layout = layout

    @classmethod
    def from_file(cls, path: Path, url: str = "") -> "Page":
        return cls(Path(path).read_text(errors='replace'), url=url or Path(path).resolve().as_uri())

    def anchors(self) -> list[Tag]:
        """Every anchor with an href, in document order."""
        return self.soup.find_all('a', href=True)

    def footer_anchors(self) -> list[Tag]:
        """Anchors inside footer-like containers."""
        found = []
        seen = set()
        for selector in FOOTER_SELECTORS:
            try:
                containers = self.soup.select(selector)
            except Exception as e:
                logger.warning(f"Invalid CSS '{selector}': {e}")
                continue
            for container in containers:
                for anchor in container.find_all('a', href=True):
                    if id(anchor) not in seen:
                        seen.add(id(anchor))
                        found.append(anchor)
        return found

    def bottom_anchors(self, fraction: float = 0.2) -> list[Tag]:
        """Anchors whose top lies in the bottom `fraction` of the page height."""
        height = self.layout.page_height()

        if height <= 0:
            return []

        cutoff = height * (1 - fraction)
        result = []
        for anchor in self.anchors():
            top = self.layout.top_of(anchor)
            if top is not None and top >= cutoff:
                result.append(anchor)
        return result

    def insert_html(self, fragment: str, parent: Optional[Tag] = None) -> list[Tag]:
        """
        Append an HTML fragment to `parent` (default <body>) and emit a mutation.

        Returns the inserted top-level elements.
        """
        target = parent or self.soup.body or self.soup
        fragment_soup = BeautifulSoup(fragment, 'html.parser')
        added = []
        for node in list(fragment_soup.contents):
            node = node.extract()
            target.append(node)
            if isinstance(node, Tag):
                added.append(node)

        if added:
            self.mutations.emit(MutationEvent(added_nodes=added))
        return added
