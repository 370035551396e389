"""
Custom exceptions for the legal scanner.

Error philosophy:
  - LLMClientError      → provider call failed; carries the HTTP status so the
                          retry policy can tell transient from fatal failures.
  - DocumentFetchError  → the document text could not be retrieved.
  - SummarizationError  → the only error surfaced to callers of the summarizer.
                          Its subclasses map to user-facing messages:
                            RateLimitedError    "busy, retry shortly"
                            ConfigurationError  "configure your key"
                            SummaryFailedError  "failed to summarize"
  - Cache/storage errors are never raised: the cache logs them and reports a miss.

Link detection never raises; unclassifiable anchors are skipped.
"""

from typing import Optional


class LegalScannerError(Exception):
    """Base exception for all legal scanner errors."""

    def __init__(self, message: str, details: Optional[dict] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class LLMClientError(LegalScannerError):
    """Raised when an LLM API call fails."""

    def __init__(
        self,
        message: str,
        provider: str,
        status_code: Optional[int] = None,
        details: Optional[dict] = None
    ):
        super().__init__(message, details)
        self.provider = provider
        self.status_code = status_code


class DocumentFetchError(LegalScannerError):
    """Raised when a document cannot be downloaded or decoded."""

    def __init__(self, message: str, url: str, details: Optional[dict] = None):
        super().__init__(message, details)
        self.url = url


# --- Surfaced to callers of Summarizer.summarize() ---

class SummarizationError(LegalScannerError):
    """Base class for errors returned upward by the summarizer."""

    kind = "failed"

    def to_response(self) -> dict:
        """Convert to the error object handed back to the caller."""
        return {
            "error": type(self).__name__,
            "kind": self.kind,
            "message": self.message,
            "details": self.details
        }


class RateLimitedError(SummarizationError):
    """The AI service rejected the request because of rate limiting (HTTP 429)."""

    kind = "rate_limited"

    def __init__(self, details: Optional[dict] = None):
        super().__init__(
            "The AI service is busy right now. Please try again in a moment "
            "or add your own API key in settings.",
            details
        )


class ConfigurationError(SummarizationError):
    """No usable credential is configured, or the provider rejected it."""

    kind = "configuration"

    def __init__(self, message: Optional[str] = None, details: Optional[dict] = None):
        super().__init__(
            message or "AI service unavailable. Please configure your API key in settings.",
            details
        )


class SummaryFailedError(SummarizationError):
    """Any other transport or fetch failure."""

    kind = "failed"

    def __init__(self, reason: str, details: Optional[dict] = None):
        super().__init__(f"Failed to summarize document: {reason}", details)
        self.reason = reason
