"""
Scan coordinator: keeps the deduplicated set of legal links for one page.

Each scan classifies every anchor on the page.  If that finds nothing new, a
second, lower-threshold sweep looks only at footer-like containers and at
anchors in the bottom part of the page, where legal links usually sit.

Scans are triggered by init(), by a delayed follow-up pass that catches late
content, and by page mutations that add anchors.  All triggers go through one
Throttle, so at most one scan runs per throttle window.

Best effort throughout: classification problems and callback failures are
logged and skipped, never raised.
"""

import asyncio
from enum import Enum
from typing import Callable, Iterable, Optional

from bs4 import Tag

from .classifier import LinkClassifier
from .page import Page, MutationEvent
from .schemas import DetectedLink
from .throttle import Throttle
from .logger import get_module_logger

logger = get_module_logger("scanner")

DEFAULT_THROTTLE_INTERVAL = 1.0
DEFAULT_FOLLOWUP_DELAY = 2.0
BOTTOM_FRACTION = 0.2

IndicatorCallback = Callable[[DetectedLink], None]
CandidatesChangedCallback = Callable[[list[DetectedLink], str], None]


class ScanState(Enum):
    IDLE = "idle"
    SCANNING = "scanning"


class LinkScanner:
    """Drives the classifier over a page and owns its candidate set."""

    def __init__(
        self,
        page: Page,
        classifier: Optional[LinkClassifier] = None,
        on_indicator: Optional[IndicatorCallback] = None,
        on_indicator_removed: Optional[IndicatorCallback] = None,
        on_candidates_changed: Optional[CandidatesChangedCallback] = None,
        throttle_interval: float = DEFAULT_THROTTLE_INTERVAL,
        followup_delay: Optional[float] = DEFAULT_FOLLOWUP_DELAY,
        secondary_threshold: Optional[float] = None
    ):
        """
        Args:
            page: Page to scan
            classifier: Link classifier (default thresholds if omitted)
            on_indicator: Called once for every newly accepted link
            on_indicator_removed: Called for every link when the scanner is destroyed
            on_candidates_changed: Called with (all links, page url) after new links appear
            throttle_interval: Minimum seconds between two scans
            followup_delay: Seconds after init() before the follow-up pass (None disables it)
            secondary_threshold: Threshold for the footer/bottom sweep
                                 (default: half the classifier threshold)
        """
        self.page = page
        self.classifier = classifier or LinkClassifier()
        self.on_indicator = on_indicator
        self.on_indicator_removed = on_indicator_removed
        self.on_candidates_changed = on_candidates_changed
        self.followup_delay = followup_delay
        self.secondary_threshold = (
            secondary_threshold if secondary_threshold is not None
            else self.classifier.threshold / 2
        )

        self.state = ScanState.IDLE
        self.scan_count = 0
        self._candidates: list[DetectedLink] = []
        self._urls: set[str] = set()
        self._text_types: set[tuple] = set()

        self._throttle = Throttle(self.scan, throttle_interval)
        self._unsubscribe: Optional[Callable[[], None]] = None
        self._followup: Optional[asyncio.TimerHandle] = None
        self._initialized = False

    @property
    def initialized(self) -> bool:
        return self._initialized

    def init(self) -> None:
        """
        Start scanning the page.

        Runs the first scan, subscribes to page mutations and schedules the
        follow-up pass.  Must be called from a running event loop; a second
        call is a no-op.
        """
        if self._initialized:
            return
        self._initialized = True

        self.request_scan()
        self._unsubscribe = self.page.mutations.subscribe(self._on_mutation)

        if self.followup_delay is not None:
            loop = asyncio.get_running_loop()
            self._followup = loop.call_later(self.followup_delay, self._run_followup)

        # Tell the background about the page even when nothing was found
        if not self._candidates:
            self._notify_changed()

    def request_scan(self) -> None:
        """Throttled scan trigger."""
        self._throttle()

    def _run_followup(self) -> None:
        self._followup = None
        logger.debug("Follow-up scan")
        self.request_scan()

    def _on_mutation(self, event: MutationEvent) -> None:
        if self._initialized and event.adds_anchors():
            self.request_scan()

    def scan(self) -> list[DetectedLink]:
        """
        Run one scan now, bypassing the throttle.

        Returns:
            Links accepted by this scan (empty if nothing new was found)
        """
        if self.state is ScanState.SCANNING:
            return []

        self.state = ScanState.SCANNING
        self.scan_count += 1
        try:
            accepted = self._sweep(self.page.anchors(), threshold=None)
            if not accepted:
                accepted = self._sweep(self._secondary_anchors(), threshold=self.secondary_threshold)
        finally:
            self.state = ScanState.IDLE

        if accepted:
            logger.info(f"Detected {len(accepted)} new legal links on {self.page.url or 'page'}")
            for link in accepted:
                self._call(self.on_indicator, link)
            self._notify_changed()
        return accepted

    def _secondary_anchors(self) -> list[Tag]:
        anchors = self.page.footer_anchors()
        seen = {id(anchor) for anchor in anchors}
        for anchor in self.page.bottom_anchors(BOTTOM_FRACTION):
            if id(anchor) not in seen:
                seen.add(id(anchor))
                anchors.append(anchor)
        return anchors

    def _sweep(self, anchors: Iterable[Tag], threshold: Optional[float]) -> list[DetectedLink]:
        accepted = []
        for anchor in anchors:
            try:
                link = self.classifier.classify(anchor, base_url=self.page.url or None, threshold=threshold)
            except Exception as e:
                logger.debug(f"Skipping unclassifiable anchor: {e}")
                continue
            if link is None or self.is_duplicate(link):
                continue
            self._accept(link)
            accepted.append(link)
        return accepted

    def is_duplicate(self, link: DetectedLink) -> bool:
        """Same url, or same display text and type, as an existing candidate."""
        url, text_type = link.dedupe_keys
        return url in self._urls or text_type in self._text_types

    def _accept(self, link: DetectedLink) -> None:
        url, text_type = link.dedupe_keys
        self._urls.add(url)
        self._text_types.add(text_type)
        self._candidates.append(link)

    def get_detected_links(self) -> list[DetectedLink]:
        return list(self._candidates)

    def _notify_changed(self) -> None:
        if self.on_candidates_changed is not None:
            self._call(self.on_candidates_changed, self.get_detected_links(), self.page.url)

    @staticmethod
    def _call(callback, *args) -> None:
        if callback is None:
            return
        try:
            callback(*args)
        except Exception as e:
            logger.warning(f"Scanner callback failed: {e}")

    def destroy(self) -> None:
        """Stop observing the page, drop indicators and clear the candidate set."""
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
        if self._followup is not None:
            self._followup.cancel()
            self._followup = None
        self._throttle.cancel()

        for link in self._candidates:
            self._call(self.on_indicator_removed, link)

        self._candidates = []
        self._urls.clear()
        self._text_types.clear()
        self._initialized = False

    def rescan(self) -> None:
        """Discard everything and start over."""
        self.destroy()
        self.init()
