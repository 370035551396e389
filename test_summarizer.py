#!/usr/bin/env python3
"""
Tests for credential rotation, response parsing and the Summarizer.

The LLM is replaced by FakeLLMClient through the summarizer's client_factory;
no network access and no API key are needed.
"""

import asyncio
import json

import pytest

from legal_scanner.config import Settings, ProviderConfig
from legal_scanner.credentials import CredentialPool, is_usable_key
from legal_scanner.exceptions import (
    ConfigurationError,
    LLMClientError,
    RateLimitedError,
    SummaryFailedError,
)
from legal_scanner.llm_client import BaseLLMClient
from legal_scanner.schemas import (
    DataRightCategory,
    DocumentType,
    RedFlagCategory,
    Severity,
)
from legal_scanner.summarizer import (
    DEGRADED_KEY_POINT,
    MAX_DOCUMENT_CHARS,
    MAX_KEY_POINTS,
    Summarizer,
    build_prompt,
    classify_failure,
    extract_json_object,
    parse_summary_response,
    risk_level,
)

GOOD_RESPONSE = json.dumps({
    "key_points": ["We collect your email", "We share data with advertisers"],
    "red_flags": [{
        "category": "data-sharing",
        "description": "Data is sold to third parties",
        "severity": "high",
        "quote": "we may sell your information"
    }],
    "data_rights": [{
        "category": "deletion",
        "description": "You can delete your account",
        "available": True,
        "exercise_process": "Email privacy@example.com"
    }],
    "risk_score": 0.8
})


class FakeClock:
    def __init__(self, now: float = 0.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


class FakeLLMClient(BaseLLMClient):
    """Returns queued responses (or raises queued exceptions) and records calls."""

    def __init__(self, api_key, responses, calls, gate=None):
        self.api_key = api_key
        self.responses = responses
        self.calls = calls
        self.gate = gate

    async def complete(self, prompt, system_prompt=None):
        self.calls.append({"key": self.api_key, "prompt": prompt, "system_prompt": system_prompt})
        if self.gate is not None:
            await self.gate.wait()
        response = self.responses[0] if len(self.responses) == 1 else self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


class FakeProvider:
    """client_factory stand-in: one FakeLLMClient per key, shared call log."""

    def __init__(self, *responses, gate=None):
        self.responses = list(responses) or [GOOD_RESPONSE]
        self.calls = []
        self.created = []
        self.gate = gate

    def __call__(self, provider_config, api_key, timeout):
        self.created.append(api_key)
        return FakeLLMClient(api_key, self.responses, self.calls, gate=self.gate)

    @property
    def keys_used(self):
        return [call["key"] for call in self.calls]


async def no_sleep(seconds):
    return None


def make_summarizer(provider, settings=None, **kwargs):
    settings = settings or Settings(provider=ProviderConfig(api_key="user-key-123"))
    summarizer = Summarizer(settings=settings, client_factory=provider, **kwargs)
    summarizer.retry_policy.sleep = no_sleep
    return summarizer


# ========== Credential pool ==========

class TestCredentialPool:

    def test_sixty_requests_spread_evenly_over_four_keys(self):
        pool = CredentialPool(["k1", "k2", "k3", "k4"], requests_per_window=15, clock=FakeClock())
        counts = {}

        for _ in range(60):
            key = pool.select()
            pool.record_usage(key)
            counts[key] = counts.get(key, 0) + 1

        assert counts == {"k1": 15, "k2": 15, "k3": 15, "k4": 15}
        assert pool.rotation_status().available_keys == 0

    def test_round_robin_order(self):
        pool = CredentialPool(["a", "b", "c"], clock=FakeClock())

        assert [pool.select() for _ in range(4)] == ["a", "b", "c", "a"]

    def test_limited_key_is_skipped(self):
        pool = CredentialPool(["a", "b"], requests_per_window=1, clock=FakeClock())
        pool.record_usage("a")

        assert pool.select() == "b"

    def test_falls_back_to_user_key_when_pool_exhausted(self):
        pool = CredentialPool(["a"], requests_per_window=1, clock=FakeClock())
        pool.record_usage("a")

        assert pool.select("user-key") == "user-key"

    def test_exhausted_pool_without_fallback_still_returns_a_key(self):
        pool = CredentialPool(["a", "b"], requests_per_window=1, clock=FakeClock())
        pool.record_usage("a")
        pool.record_usage("b")

        assert pool.select() in ("a", "b")

    def test_window_resets_after_it_elapses(self):
        clock = FakeClock()
        pool = CredentialPool(["a"], requests_per_window=2, window=60, clock=clock)
        pool.record_usage("a")
        pool.record_usage("a")
        assert pool.is_rate_limited("a")

        clock.now = 60

        assert not pool.is_rate_limited("a")
        pool.record_usage("a")
        assert pool.state_of("a").request_count_in_window == 1
        assert pool.state_of("a").window_start == 60

    def test_only_user_key(self):
        pool = CredentialPool([], clock=FakeClock())

        assert pool.select("user-key") == "user-key"
        assert not pool.rotation_status().configured

    def test_no_credentials_at_all(self):
        pool = CredentialPool(["", "   ", "GEMINI_API_KEY_PLACEHOLDER"])

        assert pool.keys == []
        with pytest.raises(ConfigurationError):
            pool.select("")

    @pytest.mark.parametrize("key, usable", [
        ("sk-real-key", True),
        ("", False),
        (None, False),
        ("  ", False),
        ("_REPLACE_WITH_YOUR_KEY_", False),
        ("YOUR_KEY_HERE", False),
    ])
    def test_usable_keys(self, key, usable):
        assert is_usable_key(key) is usable


# ========== Response parsing ==========

def test_malformed_response_degrades_without_error():
    assert parse_summary_response("I cannot process this.") is None


def test_json_is_found_inside_prose():
    text = 'Sure! Here is the analysis:\n```json\n{"key_points": ["a"], "risk_score": 0.3}\n```\nThanks.'

    fields = parse_summary_response(text)

    assert fields["key_points"] == ["a"]
    assert fields["risk_score"] == 0.3


def test_extract_json_skips_broken_braces():
    assert extract_json_object('{not json} then {"ok": true}') == {"ok": True}
    assert extract_json_object("[1, 2]") is None


def test_fields_are_coerced_and_capped():
    data = {
        "keyPoints": [f"point {i}" for i in range(10)] + ["  "],
        "redFlags": [
            {"type": "Arbitration", "description": "Forced arbitration", "severity": "HIGH"},
            {"category": "mystery", "severity": "extreme"},
            "not a dict",
        ],
        "dataRights": [{"type": "opt-out", "available": "yes", "process": "Settings page"}],
        "riskScore": "1.7",
    }

    fields = parse_summary_response(json.dumps(data))

    assert len(fields["key_points"]) == MAX_KEY_POINTS
    first, second = fields["red_flags"]
    assert first.category is RedFlagCategory.ARBITRATION
    assert first.severity is Severity.HIGH
    assert second.category is RedFlagCategory.OTHER
    assert second.severity is Severity.MEDIUM
    assert second.description == "No description provided"
    right = fields["data_rights"][0]
    assert right.category is DataRightCategory.OPT_OUT
    assert right.available is True
    assert right.exercise_process == "Settings page"
    assert fields["risk_score"] == 1.0


@pytest.mark.parametrize("value, expected", [(None, 0.0), ("high", 0.0), (-3, 0.0), (0.42, 0.42)])
def test_risk_score_coercion(value, expected):
    fields = parse_summary_response(json.dumps({"risk_score": value}))

    assert fields["risk_score"] == expected


def test_prompt_truncates_document():
    prompt = build_prompt("x" * (MAX_DOCUMENT_CHARS + 500), DocumentType.COOKIES)

    assert "x" * MAX_DOCUMENT_CHARS in prompt
    assert "x" * (MAX_DOCUMENT_CHARS + 1) not in prompt
    assert "cookies document" in prompt


@pytest.mark.parametrize("score, level", [(0.9, "high"), (0.7, "medium"), (0.5, "medium"), (0.4, "low"), (0.0, "low")])
def test_risk_level(score, level):
    assert risk_level(score) == level


@pytest.mark.parametrize("error, expected", [
    (LLMClientError("429 - slow down", provider="gemini", status_code=429), RateLimitedError),
    (LLMClientError("401 - bad key", provider="openai", status_code=401), ConfigurationError),
    (LLMClientError("403 - denied", provider="openai", status_code=403), ConfigurationError),
    (RuntimeError("Incorrect API key provided"), ConfigurationError),
    (LLMClientError("500 - oops", provider="anthropic", status_code=500), SummaryFailedError),
    (TimeoutError("timed out"), SummaryFailedError),
])
def test_failure_classification(error, expected):
    assert isinstance(classify_failure(error), expected)


# ========== Summarizer ==========

@pytest.mark.asyncio
async def test_summarize_returns_normalized_summary():
    provider = FakeProvider(GOOD_RESPONSE)
    summarizer = make_summarizer(provider)

    summary = await summarizer.summarize("We may sell your information.", "https://example.com/privacy", "privacy")

    assert summary.document_type is DocumentType.PRIVACY
    assert summary.title == "Privacy Summary"
    assert summary.key_points == ["We collect your email", "We share data with advertisers"]
    assert summary.red_flags[0].category is RedFlagCategory.DATA_SHARING
    assert summary.data_rights[0].category is DataRightCategory.DELETION
    assert summary.risk_score == 0.8
    assert not summary.cached
    assert not summary.degraded
    assert provider.calls[0]["system_prompt"]
    assert "We may sell your information." in provider.calls[0]["prompt"]


@pytest.mark.asyncio
async def test_malformed_model_answer_gives_degraded_summary():
    provider = FakeProvider("I cannot process this.")
    summarizer = make_summarizer(provider)

    summary = await summarizer.summarize("text", "https://example.com/terms", DocumentType.TERMS)

    assert summary.risk_score == 0
    assert summary.key_points == [DEGRADED_KEY_POINT]
    assert summary.degraded
    # Degraded answers are not cached
    assert await summarizer.get_cached_summary("https://example.com/terms") is None


@pytest.mark.asyncio
async def test_second_request_is_served_from_cache():
    provider = FakeProvider(GOOD_RESPONSE)
    summarizer = make_summarizer(provider)
    url = "https://example.com/terms"

    first = await summarizer.summarize("text", url, "terms")
    second = await summarizer.summarize("text", url, "terms")

    assert len(provider.calls) == 1
    assert second.cached
    assert second.id == first.id
    assert (await summarizer.cache.stats()).total_hits == 1


@pytest.mark.asyncio
async def test_cache_disabled_always_calls_model():
    provider = FakeProvider(GOOD_RESPONSE)
    settings = Settings(provider=ProviderConfig(api_key="user-key-123"), cache_enabled=False)
    summarizer = make_summarizer(provider, settings=settings)

    await summarizer.summarize("text", "https://example.com/eula", "eula")
    await summarizer.summarize("text", "https://example.com/eula", "eula")

    assert len(provider.calls) == 2
    assert (await summarizer.cache.stats()).total_entries == 0


@pytest.mark.asyncio
async def test_concurrent_requests_for_same_url_share_one_call():
    gate = asyncio.Event()
    provider = FakeProvider(GOOD_RESPONSE, gate=gate)
    summarizer = make_summarizer(provider)
    url = "https://example.com/privacy"

    tasks = [asyncio.create_task(summarizer.summarize("text", url, "privacy")) for _ in range(3)]
    await asyncio.sleep(0)
    await asyncio.sleep(0)
    gate.set()
    results = await asyncio.gather(*tasks)

    assert len(provider.calls) == 1
    assert len({summary.id for summary in results}) == 1


@pytest.mark.asyncio
async def test_concurrent_requests_for_different_types_are_not_merged():
    gate = asyncio.Event()
    provider = FakeProvider(GOOD_RESPONSE, gate=gate)
    summarizer = make_summarizer(provider)
    url = "https://example.com/legal"

    terms = asyncio.create_task(summarizer.summarize("text", url, "terms"))
    privacy = asyncio.create_task(summarizer.summarize("text", url, "privacy"))
    await asyncio.sleep(0)
    await asyncio.sleep(0)
    gate.set()
    results = await asyncio.gather(terms, privacy)

    assert len(provider.calls) == 2
    assert [summary.document_type for summary in results] == [DocumentType.TERMS, DocumentType.PRIVACY]


@pytest.mark.asyncio
async def test_rotation_across_pool_keys():
    provider = FakeProvider(GOOD_RESPONSE)
    settings = Settings(
        provider=ProviderConfig(api_key="user-key-123"),
        credential_pool=["pool-a", "pool-b"],
        requests_per_window=2
    )
    summarizer = make_summarizer(provider, settings=settings)

    for i in range(5):
        await summarizer.summarize("text", f"https://example.com/terms/{i}", "terms")

    assert provider.keys_used == ["pool-a", "pool-b", "pool-a", "pool-b", "user-key-123"]
    assert summarizer.rotation_status().available_keys == 0


@pytest.mark.asyncio
async def test_user_key_is_used_without_pool():
    provider = FakeProvider(GOOD_RESPONSE)
    summarizer = make_summarizer(provider)

    await summarizer.summarize("text", "https://example.com/terms", "terms")

    assert provider.created == ["user-key-123"]
    assert not summarizer.rotation_status().configured


@pytest.mark.asyncio
async def test_missing_credentials_raise_configuration_error():
    provider = FakeProvider(GOOD_RESPONSE)
    summarizer = make_summarizer(provider, settings=Settings())

    with pytest.raises(ConfigurationError) as exc_info:
        await summarizer.summarize("text", "https://example.com/terms", "terms")

    assert provider.calls == []
    assert exc_info.value.to_response()["kind"] == "configuration"


@pytest.mark.asyncio
async def test_persistent_rate_limit_is_retried_then_reported():
    provider = FakeProvider(LLMClientError("429 - Too Many Requests", provider="gemini", status_code=429))
    summarizer = make_summarizer(provider)

    with pytest.raises(RateLimitedError) as exc_info:
        await summarizer.summarize("text", "https://example.com/terms", "terms")

    assert len(provider.calls) == summarizer.retry_policy.max_attempts + 1
    assert exc_info.value.details["status_code"] == 429


@pytest.mark.asyncio
async def test_rejected_key_is_not_retried():
    provider = FakeProvider(LLMClientError("401 - Unauthorized", provider="openai", status_code=401))
    summarizer = make_summarizer(provider)

    with pytest.raises(ConfigurationError):
        await summarizer.summarize("text", "https://example.com/terms", "terms")

    assert len(provider.calls) == 1


@pytest.mark.asyncio
async def test_transient_error_then_success():
    provider = FakeProvider(
        LLMClientError("503 - unavailable", provider="gemini", status_code=503),
        GOOD_RESPONSE
    )
    summarizer = make_summarizer(provider)

    summary = await summarizer.summarize("text", "https://example.com/terms", "terms")

    assert len(provider.calls) == 2
    assert summary.risk_score == 0.8


@pytest.mark.asyncio
async def test_server_error_becomes_summary_failed():
    provider = FakeProvider(LLMClientError("500 - internal", provider="gemini", status_code=500))
    summarizer = make_summarizer(provider)

    with pytest.raises(SummaryFailedError) as exc_info:
        await summarizer.summarize("text", "https://example.com/terms", "terms")

    assert "500 - internal" in exc_info.value.message
    assert exc_info.value.to_response()["kind"] == "failed"


@pytest.mark.asyncio
async def test_unknown_document_type():
    summarizer = make_summarizer(FakeProvider())

    with pytest.raises(SummaryFailedError):
        await summarizer.summarize("text", "https://example.com/x", "refund-policy")


@pytest.mark.asyncio
async def test_settings_changes_apply_to_next_request():
    provider = FakeProvider(GOOD_RESPONSE)
    current = {"settings": Settings(provider=ProviderConfig(api_key="user-key-123"))}
    summarizer = Summarizer(settings=lambda: current["settings"], client_factory=provider)

    await summarizer.summarize("text", "https://example.com/a", "terms")
    current["settings"] = current["settings"].model_copy(update={"credential_pool": ["pool-new"]})
    await summarizer.summarize("text", "https://example.com/b", "terms")

    assert provider.keys_used == ["user-key-123", "pool-new"]
    assert summarizer.rotation_status().total_keys == 1
