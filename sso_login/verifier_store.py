"""
In-memory store for pending SSO logins (state -> PKCE code_verifier).
Used between authorization_url() and handle_callback(). Each entry carries its own
expiry timer; every path that removes an entry cancels that timer.
Bounded by an LRU cache so abandoned flows are evicted oldest-first once full.
"""
import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Callable, Protocol

from sso_login.config import MAX_VERIFIER_STORE_SIZE, PKCE_VERIFIER_TIMEOUT_MS
from sso_login.errors import ExpiredOrUnknownStateError
from sso_login.lru_cache import LRUCache

logger = logging.getLogger(__name__)

# At most one "store full" warning per interval (seconds); other evictions log at DEBUG
EVICTION_WARNING_INTERVAL = 60


class ExpiryTimer(Protocol):
    def cancel(self) -> None: ...


# start_timer(delay_seconds, callback) -> handle with cancel()
TimerStarter = Callable[[float, Callable[[], None]], ExpiryTimer]


def start_expiry_timer(delay: float, callback: Callable[[], None]) -> threading.Timer:
    """Default timer: daemon thread so pending logins never keep the process alive."""
    timer = threading.Timer(delay, callback)
    timer.daemon = True
    timer.start()
    return timer


@dataclass
class PendingLogin:
    code_verifier: str
    timer: ExpiryTimer | None = field(default=None, repr=False)

    def cancel_timer(self) -> None:
        if self.timer is not None:
            self.timer.cancel()
            self.timer = None


class VerifierStore:
    """
    state -> PendingLogin, capped at max_size entries.
    store/take/drop and timer expiry run under one lock, so take() is at-most-once
    per stored verifier even with concurrent callers.
    """

    def __init__(
        self,
        max_size: int = MAX_VERIFIER_STORE_SIZE,
        timeout_ms: int = PKCE_VERIFIER_TIMEOUT_MS,
        start_timer: TimerStarter = start_expiry_timer,
    ) -> None:
        self.timeout_ms = timeout_ms
        self._start_timer = start_timer
        self._lock = threading.Lock()
        self.evictions = 0
        self._last_full_warning: float | None = None
        self._cache = LRUCache(max_size, on_evict=self._on_evict)

    @property
    def max_size(self) -> int:
        return self._cache.capacity

    def store(self, state: str, code_verifier: str) -> None:
        """Hold code_verifier for state; replaces (and un-schedules) any prior entry."""
        entry = PendingLogin(code_verifier=code_verifier)
        with self._lock:
            previous = self._cache.pop(state)
            if previous is not None:
                previous.cancel_timer()
            entry.timer = self._start_timer(
                self.timeout_ms / 1000.0, lambda: self._expire(state, entry)
            )
            self._cache.set(state, entry)

    def take(self, state: str) -> str:
        """Return the verifier for state exactly once. Raises ExpiredOrUnknownStateError if absent."""
        with self._lock:
            entry = self._cache.pop(state)
            if entry is None:
                raise ExpiredOrUnknownStateError()
            entry.cancel_timer()
        return entry.code_verifier

    def drop(self, state: str) -> bool:
        """Discard any pending verifier for state (error paths). Returns True if one was removed."""
        with self._lock:
            entry = self._cache.pop(state)
            if entry is None:
                return False
            entry.cancel_timer()
        return True

    def clear(self) -> None:
        with self._lock:
            for entry in self._cache.values():
                entry.cancel_timer()
            self._cache.clear()

    def _expire(self, state: str, entry: PendingLogin) -> None:
        with self._lock:
            # A newer store() for the same state owns the slot now
            if self._cache.peek(state) is not entry:
                return
            self._cache.delete(state)
            entry.timer = None
        logger.debug("PKCE verifier expired for pending login")

    def _on_evict(self, state: str, entry: PendingLogin) -> None:
        # Called from LRUCache.set while self._lock is held
        entry.cancel_timer()
        self.evictions += 1
        now = time.monotonic()
        if self._last_full_warning is None or now - self._last_full_warning >= EVICTION_WARNING_INTERVAL:
            self._last_full_warning = now
            logger.warning(
                "Verifier store full (%d); evicting oldest pending logins (%d evicted so far)",
                self._cache.capacity,
                self.evictions,
            )
        else:
            logger.debug("Evicted oldest pending login")

    def __len__(self) -> int:
        with self._lock:
            return len(self._cache)

    def __contains__(self, state: str) -> bool:
        with self._lock:
            return self._cache.has(state)
