"""
AI summarizer for legal documents.

Turns raw document text into a normalized Summary:
  1. Cache lookup by URL (read-through)
  2. Credential selection from the rotating pool, falling back to the user's key
  3. Prompt + remote call through the retry policy
  4. Tolerant parsing of the model's JSON answer
  5. Cache write

Concurrent calls for the same URL share one in-flight request.

Only SummarizationError subclasses leave summarize(); a garbled model answer
is not an error and yields a degraded Summary instead.
"""

import asyncio
import json
import math
from typing import Any, Callable, Optional, Union

from .cache import ResultCache
from .config import Settings, ProviderConfig
from .credentials import CredentialPool
from .exceptions import (
    SummarizationError,
    RateLimitedError,
    ConfigurationError,
    SummaryFailedError,
)
from .llm_client import LLMClient, BaseLLMClient
from .retry import RetryPolicy, error_status, is_retryable_error
from .schemas import (
    Summary,
    RedFlag,
    DataRight,
    DocumentType,
    RedFlagCategory,
    DataRightCategory,
    Severity,
    RotationStatus,
)
from .logger import get_module_logger

logger = get_module_logger("summarizer")

MAX_DOCUMENT_CHARS = 8000
MAX_KEY_POINTS = 6
MAX_RED_FLAGS = 5
MAX_DATA_RIGHTS = 5

DEGRADED_KEY_POINT = "Unable to parse the document. The content may be too complex or corrupted."


# --- Prompt design ---
# The system prompt sets the role; the user prompt carries the document and
# the exact JSON shape.  Models follow a schema far more reliably when they
# can see an example of it.

SYSTEM_PROMPT = """You are a legal document analyzer specializing in Terms of Service and Privacy Policies.
Provide clear, concise summaries for everyday users. Always respond with valid JSON."""

USER_PROMPT = """Please analyze this {document_type} document and provide a structured summary in JSON format.

Document content:
{content}

Respond with a JSON object containing:

1. "key_points": 3-5 main points in plain language that regular users can understand
2. "red_flags": concerning clauses, each with
   - "category": one of "arbitration", "auto-renewal", "data-sharing", "liability", "termination", "other"
   - "description": plain language explanation of the concern
   - "severity": "low", "medium" or "high"
   - "quote": short relevant quote from the document
3. "data_rights": user rights over their data, each with
   - "category": one of "access", "deletion", "portability", "correction", "opt-out"
   - "description": what this right means for the user
   - "available": true/false if this right is granted
   - "exercise_process": how to exercise this right (if available)
4. "risk_score": number between 0 and 1, where 0 is very user-friendly and 1 is very concerning

Example:
{{
    "key_points": ["Service can terminate your account at any time without notice"],
    "red_flags": [{{
        "category": "arbitration",
        "description": "Disputes must go to private arbitration, not court",
        "severity": "high",
        "quote": "All disputes shall be resolved exclusively through binding arbitration"
    }}],
    "data_rights": [{{
        "category": "deletion",
        "description": "Right to delete your personal data",
        "available": true,
        "exercise_process": "Contact support with a deletion request"
    }}],
    "risk_score": 0.7
}}

Respond ONLY with valid JSON. Do not include any other text or explanations."""


def build_prompt(document_text: str, document_type: DocumentType) -> str:
    """Embed the (truncated) document in the analysis prompt."""
    content = document_text[:MAX_DOCUMENT_CHARS]
    return USER_PROMPT.format(document_type=document_type.value, content=content)


def risk_level(score: float, threshold: float = 0.7) -> str:
    """'high' above the user's risk threshold, 'medium' above 0.4, else 'low'."""
    if score > threshold:
        return "high"
    if score > 0.4:
        return "medium"
    return "low"


# --- Response parsing ---

def extract_json_object(text: str) -> Optional[dict]:
    """Return the first well-formed JSON object embedded in `text`, if any."""
    decoder = json.JSONDecoder()
    start = text.find("{")
    while start != -1:
        try:
            value, _ = decoder.raw_decode(text, start)
        except json.JSONDecodeError:
            start = text.find("{", start + 1)
            continue
        if isinstance(value, dict):
            return value
        start = text.find("{", start + 1)
    return None


def _pick(data: dict, *names: str, default: Any = None) -> Any:
    """First present key among `names` (the models mix snake and camel case)."""
    for name in names:
        if name in data and data[name] is not None:
            return data[name]
    return default


def _text(value: Any, default: str) -> str:
    if value is None:
        return default
    text = str(value).strip()
    return text or default


def _flag(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ("true", "yes", "1", "available")
    return bool(value)


def _enum(enum_cls, value: Any, default):
    try:
        return enum_cls(str(value).strip().lower())
    except ValueError:
        return default


def _risk(value: Any) -> float:
    try:
        score = float(value)
    except (TypeError, ValueError):
        return 0.0
    if math.isnan(score):
        return 0.0
    return min(1.0, max(0.0, score))


def _red_flags(items: Any) -> list[RedFlag]:
    if not isinstance(items, list):
        return []
    flags = []
    for item in items[:MAX_RED_FLAGS]:
        if not isinstance(item, dict):
            continue
        flags.append(RedFlag(
            category=_enum(RedFlagCategory, _pick(item, "category", "type"), RedFlagCategory.OTHER),
            description=_text(item.get("description"), "No description provided"),
            severity=_enum(Severity, item.get("severity"), Severity.MEDIUM),
            quote=_text(item.get("quote"), ""),
        ))
    return flags


def _data_rights(items: Any) -> list[DataRight]:
    if not isinstance(items, list):
        return []
    rights = []
    for item in items[:MAX_DATA_RIGHTS]:
        if not isinstance(item, dict):
            continue
        rights.append(DataRight(
            category=_enum(DataRightCategory, _pick(item, "category", "type"), DataRightCategory.ACCESS),
            description=_text(item.get("description"), "No description provided"),
            available=_flag(item.get("available")),
            exercise_process=_text(
                _pick(item, "exercise_process", "exerciseProcess", "process"), "Not specified"
            ),
        ))
    return rights


def parse_summary_response(text: str) -> Optional[dict]:
    """
    Validate and coerce a model answer into Summary fields.

    Returns None when no JSON object can be found, so the caller can fall
    back to a degraded summary.
    """
    data = extract_json_object(text or "")
    if data is None:
        logger.warning("Failed to parse AI response as JSON")
        logger.debug(f"Raw response: {text!r}")
        return None

    key_points = _pick(data, "key_points", "keyPoints", default=[])
    if not isinstance(key_points, list):
        key_points = []

    return {
        "key_points": [str(point).strip() for point in key_points if str(point).strip()][:MAX_KEY_POINTS],
        "red_flags": _red_flags(_pick(data, "red_flags", "redFlags")),
        "data_rights": _data_rights(_pick(data, "data_rights", "dataRights")),
        "risk_score": _risk(_pick(data, "risk_score", "riskScore")),
    }


def degraded_fields() -> dict:
    return {
        "key_points": [DEGRADED_KEY_POINT],
        "red_flags": [],
        "data_rights": [],
        "risk_score": 0.0,
        "degraded": True,
    }


# --- Error mapping ---

def classify_failure(error: Exception) -> SummarizationError:
    """Map a dispatch failure onto the caller-facing error taxonomy."""
    if isinstance(error, SummarizationError):
        return error

    status = error_status(error)
    message = getattr(error, "message", None) or str(error)
    lowered = message.lower()
    details = {"error": message}
    if status is not None:
        details["status_code"] = status

    if status == 429 or "429" in lowered or "rate limit" in lowered:
        return RateLimitedError(details=details)
    if status in (401, 403) or "api key" in lowered or "unauthorized" in lowered:
        return ConfigurationError(details=details)
    return SummaryFailedError(message, details=details)


def _retryable(error: BaseException) -> bool:
    # Configuration problems raised while picking a key never fix themselves
    if isinstance(error, SummarizationError):
        return False
    return is_retryable_error(error)


ClientFactory = Callable[[ProviderConfig, str, float], BaseLLMClient]


def default_client_factory(provider: ProviderConfig, api_key: str, timeout: float) -> BaseLLMClient:
    return LLMClient.create(
        provider=provider.provider,
        api_key=api_key,
        model=provider.model_name,
        base_url=provider.base_url,
        timeout=timeout
    )


class Summarizer:
    """Cache-first, credential-rotating document summarizer."""

    def __init__(
        self,
        settings: Union[Settings, Callable[[], Settings], None] = None,
        cache: Optional[ResultCache] = None,
        pool: Optional[CredentialPool] = None,
        client_factory: Optional[ClientFactory] = None,
        retry_policy: Optional[RetryPolicy] = None
    ):
        """
        Args:
            settings: Settings, or a callable returning the current settings
            cache: Result cache for summaries (a private in-memory one if omitted)
            pool: Credential pool (built from settings if omitted)
            client_factory: Builds an LLM client for (provider, key, timeout)
            retry_policy: Retry parameters for remote calls
        """
        if callable(settings):
            self._settings_provider = settings
        else:
            fixed = settings or Settings()
            self._settings_provider = lambda: fixed

        self.cache = cache if cache is not None else ResultCache(model=Summary)
        self._pool_injected = pool is not None
        self._pool = pool
        self.client_factory = client_factory or default_client_factory
        self.retry_policy = retry_policy or RetryPolicy(is_retryable=_retryable)
        self._clients: dict[tuple, BaseLLMClient] = {}
        self._in_flight: dict[tuple, asyncio.Task] = {}  # (url, document_type)

    @property
    def settings(self) -> Settings:
        return self._settings_provider()

    def pool_for(self, settings: Settings) -> CredentialPool:
        """Current credential pool, rebuilt when the configured keys change."""
        if self._pool_injected:
            return self._pool

        wanted = CredentialPool(
            settings.credential_pool,
            requests_per_window=settings.requests_per_window,
            window=settings.rate_window_seconds
        )
        if (
            self._pool is None
            or self._pool.keys != wanted.keys
            or self._pool.requests_per_window != wanted.requests_per_window
            or self._pool.window != wanted.window
        ):
            self._pool = wanted
        return self._pool

    def rotation_status(self) -> RotationStatus:
        return self.pool_for(self.settings).rotation_status()

    async def get_cached_summary(self, url: str) -> Optional[Summary]:
        """Cached summary for `url`, or None."""
        settings = self.settings
        if not settings.cache_enabled:
            return None
        cached = await self.cache.get(url, ttl=settings.cache_ttl)
        if cached is None:
            return None
        return cached.model_copy(update={"cached": True})

    async def summarize(
        self,
        document_text: str,
        url: str,
        document_type: Union[DocumentType, str]
    ) -> Summary:
        """
        Summarize one document.

        Args:
            document_text: Extracted plain text of the document
            url: Document URL (cache key)
            document_type: terms / privacy / cookies / eula

        Returns:
            Summary (possibly degraded if the model answer was unusable)

        Raises:
            RateLimitedError, ConfigurationError, SummaryFailedError
        """
        try:
            document_type = DocumentType(document_type)
        except ValueError:
            raise SummaryFailedError(f"unknown document type '{document_type}'")

        cached = await self.get_cached_summary(url)
        if cached is not None:
            return cached

        key = (url, document_type)
        task = self._in_flight.get(key)
        if task is None:
            task = asyncio.ensure_future(self._summarize_uncached(document_text, url, document_type))
            self._in_flight[key] = task
            task.add_done_callback(lambda _: self._in_flight.pop(key, None))
        else:
            logger.info(f"Joining in-flight {document_type.value} summary request for {url}")

        # Shielded: one caller giving up must not cancel the shared request
        return await asyncio.shield(task)

    async def _summarize_uncached(
        self,
        document_text: str,
        url: str,
        document_type: DocumentType
    ) -> Summary:
        settings = self.settings
        prompt = build_prompt(document_text, document_type)

        logger.info(f"Summarizing {document_type.value} document: {url}")
        try:
            response_text = await self.retry_policy.run(lambda: self._dispatch(prompt, settings))
        except Exception as e:
            error = classify_failure(e)
            logger.error(f"Summarization failed for {url}: {error.message}")
            if error is e:
                raise
            raise error from e

        fields = parse_summary_response(response_text)
        if fields is None:
            fields = degraded_fields()

        summary = Summary(url=url, document_type=document_type, **fields)

        # A degraded answer stays uncached so the next request can try again
        if settings.cache_enabled and not summary.degraded:
            await self.cache.set(url, summary)

        logger.info(
            f"Summary complete: {len(summary.key_points)} key points, "
            f"{len(summary.red_flags)} red flags, risk={summary.risk_score:.2f}"
        )
        return summary

    async def _dispatch(self, prompt: str, settings: Settings) -> str:
        """One remote call: pick a key, count it, send the prompt."""
        pool = self.pool_for(settings)
        api_key = pool.select(settings.provider.api_key)
        # Counted before the call: failed requests still use up quota
        pool.record_usage(api_key)

        client = self._client(settings, api_key)
        return await client.complete(prompt, system_prompt=SYSTEM_PROMPT)

    def _client(self, settings: Settings, api_key: str) -> BaseLLMClient:
        provider = settings.provider
        cache_key = (provider.provider, provider.model_name, provider.base_url, api_key)
        client = self._clients.get(cache_key)
        if client is None:
            client = self.client_factory(provider, api_key, settings.request_timeout)
            self._clients[cache_key] = client
        return client
