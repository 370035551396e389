"""
Background coordinator for the legal scanner.

Wires the pieces together for a caller that speaks in URLs:
    summarize(url, type) → fetch document text → Summarizer → Summary | {error}

It also keeps the latest candidate links per page and exposes cache
maintenance.  This is the only layer that turns errors into response dicts.
"""

from typing import Optional, Union

from .cache import ResultCache
from .config import Settings
from .exceptions import DocumentFetchError, SummarizationError, SummaryFailedError
from .fetcher import DocumentFetcher
from .schemas import CacheStats, DetectedLink, DocumentType, Summary
from .storage import StorageBackend, MemoryStorage, JsonFileStorage
from .summarizer import Summarizer, risk_level
from .logger import get_module_logger

logger = get_module_logger("service")


class LegalDocumentService:
    """
    Entry point for the presentation layer.

    Pipeline per request:
    1. Cached summary? Return it.
    2. Fetch document text
    3. Summarize (rotating credentials, retries, cache write)
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        fetcher: Optional[DocumentFetcher] = None,
        summarizer: Optional[Summarizer] = None,
        storage: Optional[StorageBackend] = None
    ):
        self.settings = settings or Settings()
        self.fetcher = fetcher or DocumentFetcher(timeout=self.settings.request_timeout)
        if summarizer is None:
            cache = ResultCache(
                storage=storage if storage is not None else self._default_storage(),
                model=Summary
            )
            summarizer = Summarizer(settings=lambda: self.settings, cache=cache)
        self.summarizer = summarizer
        self.page_links: dict[str, list[DetectedLink]] = {}

        logger.info("LegalDocumentService initialized")

    def _default_storage(self) -> StorageBackend:
        if self.settings.cache_dir:
            return JsonFileStorage(self.settings.cache_dir)
        return MemoryStorage()

    def update_settings(self, **changes) -> Settings:
        """
        Apply setting changes; they take effect on the next request.

        Raises:
            pydantic.ValidationError: if a changed value is invalid; the
                current settings are kept
        """
        self.settings = Settings.model_validate({**self.settings.model_dump(), **changes})
        return self.settings

    async def summarize(
        self,
        url: str,
        document_type: Union[DocumentType, str]
    ) -> Union[Summary, dict]:
        """
        Summarize the document at `url`.

        Returns:
            Summary on success, otherwise an error dict from to_response()
        """
        try:
            document_type = DocumentType(document_type)
        except ValueError:
            return SummaryFailedError(
                f"unknown document type '{document_type}'", details={"url": url}
            ).to_response()

        try:
            cached = await self.summarizer.get_cached_summary(url)
            if cached is not None:
                return cached

            text = await self.fetcher.fetch_text(url)
            if not text:
                raise SummaryFailedError("document is empty", details={"url": url})

            summary = await self.summarizer.summarize(text, url, document_type)
            logger.info(
                f"{summary.title}: risk {risk_level(summary.risk_score, self.settings.risk_threshold)}"
            )
            return summary

        except DocumentFetchError as e:
            logger.error(f"Document fetch failed: {e.message}")
            return SummaryFailedError(e.message, details={"url": url, **e.details}).to_response()
        except SummarizationError as e:
            return e.to_response()

    async def get_cached_summary(self, url: str) -> Optional[Summary]:
        return await self.summarizer.get_cached_summary(url)

    async def handle_links_detected(self, links: list[DetectedLink], page_url: str) -> dict:
        """
        Record the candidates found on a page.

        Returns:
            {"detected": n, "cached": m} where m links already have summaries
        """
        self.page_links[page_url] = list(links)

        cached = 0
        if self.settings.cache_enabled:
            for link in links:
                if await self.summarizer.cache.contains(link.url, ttl=self.settings.cache_ttl):
                    cached += 1

        if cached and self.settings.notifications:
            logger.info(f"Found {cached} cached summaries for {page_url}")
        return {"detected": len(links), "cached": cached}

    def links_for(self, page_url: str) -> list[DetectedLink]:
        """Candidates last reported for `page_url`."""
        return list(self.page_links.get(page_url, []))

    async def clear_cache(self) -> None:
        await self.summarizer.cache.clear()

    async def cache_stats(self) -> CacheStats:
        return await self.summarizer.cache.stats()

    async def aclose(self) -> None:
        await self.fetcher.aclose()
