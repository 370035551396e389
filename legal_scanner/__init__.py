"""
Legal Scanner

Finds legal-document links on web pages and summarizes the documents with an LLM.
- Classifier: keyword/URL heuristics that label an anchor terms/privacy/cookies/eula
- Scanner: incremental, throttled, deduplicated link detection for one page
- Cache: bounded, expiring, hit-tracked result store with pluggable persistence
- Summarizer: credential rotation, retry with backoff, tolerant response parsing

Public API surface:
  Detection       — Page, LinkClassifier, LinkScanner
  Summarization   — Summarizer, LegalDocumentService, DocumentFetcher
  Infrastructure  — ResultCache, MemoryStorage, JsonFileStorage, CredentialPool,
                    RetryPolicy, with_retry
  Data models     — DetectedLink, Summary, RedFlag, DataRight, DocumentType, Settings
  Error types     — SummarizationError and subclasses, DocumentFetchError
"""

# --- Detection ---
from .page import Page
from .classifier import LinkClassifier
from .scanner import LinkScanner

# --- Summarization ---
from .summarizer import Summarizer
from .service import LegalDocumentService
from .fetcher import DocumentFetcher

# --- Infrastructure ---
from .cache import ResultCache
from .storage import MemoryStorage, JsonFileStorage
from .credentials import CredentialPool
from .retry import RetryPolicy, with_retry

# --- Data models and settings ---
from .schemas import DetectedLink, Summary, RedFlag, DataRight, DocumentType
from .config import Settings, ProviderConfig

# --- Exceptions (callers should catch these for error handling) ---
from .exceptions import (
    SummarizationError,
    RateLimitedError,
    ConfigurationError,
    SummaryFailedError,
    DocumentFetchError,
)

__version__ = "0.1.0"
__all__ = [
    "Page",
    "LinkClassifier",
    "LinkScanner",
    "Summarizer",
    "LegalDocumentService",
    "DocumentFetcher",
    "ResultCache",
    "MemoryStorage",
    "JsonFileStorage",
    "CredentialPool",
    "RetryPolicy",
    "with_retry",
    "DetectedLink",
    "Summary",
    "RedFlag",
    "DataRight",
    "DocumentType",
    "Settings",
    "ProviderConfig",
    "SummarizationError",
    "RateLimitedError",
    "ConfigurationError",
    "SummaryFailedError",
    "DocumentFetchError",
]
