"""
Credential rotation under a per-key rate ceiling.

The pool hands out keys round-robin, skipping any key that has used up its
requests for the current rate window.  Each key has its own window: it starts
at the key's first request and resets once `window` seconds have passed.
"""

import time
from typing import Callable, Optional

from .schemas import CredentialState, RotationStatus
from .exceptions import ConfigurationError
from .logger import get_module_logger

logger = get_module_logger("credentials")

DEFAULT_REQUESTS_PER_WINDOW = 15
DEFAULT_WINDOW_SECONDS = 60.0

# Build placeholders that were never replaced by real keys
PLACEHOLDER_MARKERS = ("PLACEHOLDER", "_REPLACE_WITH_YOUR_", "_HERE")


def is_usable_key(key: Optional[str]) -> bool:
    """A key is usable if it is non-blank and not a placeholder."""
    if not key or not key.strip():
        return False
    return not any(marker in key for marker in PLACEHOLDER_MARKERS)


class CredentialPool:
    """Rotating API-key pool with a per-key requests-per-window ceiling."""

    def __init__(
        self,
        keys: Optional[list[str]] = None,
        requests_per_window: int = DEFAULT_REQUESTS_PER_WINDOW,
        window: float = DEFAULT_WINDOW_SECONDS,
        clock: Callable[[], float] = time.monotonic
    ):
        self.keys = [key for key in (keys or []) if is_usable_key(key)]
        self.requests_per_window = requests_per_window
        self.window = window
        self.clock = clock
        self._index = 0
        self._states: dict[str, CredentialState] = {}

    @property
    def configured(self) -> bool:
        return bool(self.keys)

    def _next_key(self) -> str:
        key = self.keys[self._index]
        self._index = (self._index + 1) % len(self.keys)
        return key

    def is_rate_limited(self, key: str) -> bool:
        """True if `key` has reached its ceiling in the current window."""
        state = self._states.get(key)
        if state is None:
            return False

        now = self.clock()
        if now - state.window_start >= self.window:
            state.request_count_in_window = 0
            state.window_start = now
            return False

        return state.request_count_in_window >= self.requests_per_window

    def record_usage(self, key: str) -> None:
        """Count one dispatched request against `key`."""
        now = self.clock()
        state = self._states.get(key)
        if state is None or now - state.window_start >= self.window:
            self._states[key] = CredentialState(
                credential_id=key[-6:],
                request_count_in_window=1,
                window_start=now
            )
        else:
            state.request_count_in_window += 1

    def select(self, fallback_key: Optional[str] = None) -> str:
        """
        Pick the credential for the next request.

        1. Walk the pool once from the rotation pointer; the first key under
           its ceiling wins.
        2. Otherwise use the user's own key if it is under its ceiling.
        3. Otherwise, if the pool has keys, take the next rotated key anyway:
           a throttled request beats a hard failure.

        Raises:
            ConfigurationError: if there is no pool and no usable fallback key
        """
        for _ in range(len(self.keys)):
            key = self._next_key()
            if not self.is_rate_limited(key):
                return key

        if is_usable_key(fallback_key):
            if not self.is_rate_limited(fallback_key):
                logger.info("Using user-provided API key")
                return fallback_key

        if self.keys:
            logger.warning("All pooled API keys are rate limited, attempting with rotated key")
            return self._next_key()

        if is_usable_key(fallback_key):
            # Only the user's key exists and it is at its ceiling
            logger.warning("User API key is rate limited, attempting anyway")
            return fallback_key

        raise ConfigurationError(
            "No API keys configured. Please add your AI provider API key in settings."
        )

    def state_of(self, key: str) -> Optional[CredentialState]:
        return self._states.get(key)

    def rotation_status(self) -> RotationStatus:
        available = sum(1 for key in self.keys if not self.is_rate_limited(key))
        return RotationStatus(
            total_keys=len(self.keys),
            available_keys=available,
            configured=self.configured
        )
