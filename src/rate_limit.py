"""Client-side request counter for the hosted variant.

`check_and_record` is a pure function over `RateLimitState`; `RateLimiter`
wires it to a persistent store so the count survives restarts.

Every accepted call moves the window start to `now`, so the window is
measured from the most recent accepted request, not from the first one.
"""
import logging
import time
from dataclasses import dataclass
from typing import Callable, Optional

from .errors import RateLimitExceeded


logger = logging.getLogger(__name__)

DEFAULT_MAX_REQUESTS = 20
DEFAULT_WINDOW_MS = 60 * 60 * 1000

REQUEST_COUNT_KEY = "requestCount"
LAST_REQUEST_TIME_KEY = "lastRequestTime"


@dataclass(frozen=True)
class RateLimitState:
    request_count: int = 0
    window_start_ms: int = 0

    def __post_init__(self):
        if self.request_count < 0:
            raise ValueError("request_count must be >= 0")


def now_ms() -> int:
    return int(time.time() * 1000)


def check_and_record(state: RateLimitState, now: int, max_requests: int, window_ms: int) -> RateLimitState:
    """Return the state after accepting one more request, or raise.

    Raises `RateLimitExceeded` when `max_requests` have already been accepted
    and the window has not elapsed; the caller keeps its old state then.
    """
    elapsed = now - state.window_start_ms
    if state.request_count >= max_requests and elapsed <= window_ms:
        raise RateLimitExceeded(window_ms - elapsed)
    if elapsed > window_ms:
        return RateLimitState(request_count=1, window_start_ms=now)
    return RateLimitState(request_count=state.request_count + 1, window_start_ms=now)


def _key(namespace: str, name: str) -> str:
    return f"{namespace}:{name}" if namespace else name


def _read_int(store, key: str) -> int:
    raw = store.get(key)
    if raw is None:
        return 0
    try:
        return max(0, int(raw))
    except (TypeError, ValueError):
        logger.warning("Ignoring unparsable value for %s: %r", key, raw)
        return 0


def load_state(store, namespace: str = "") -> RateLimitState:
    """Read the persisted counter; missing entries count as zero."""
    return RateLimitState(
        request_count=_read_int(store, _key(namespace, REQUEST_COUNT_KEY)),
        window_start_ms=_read_int(store, _key(namespace, LAST_REQUEST_TIME_KEY)),
    )


def save_state(store, state: RateLimitState, namespace: str = ""):
    """Write both entries in one store operation."""
    store.set_many({
        _key(namespace, REQUEST_COUNT_KEY): str(state.request_count),
        _key(namespace, LAST_REQUEST_TIME_KEY): str(state.window_start_ms),
    })


def clear_state(store, namespace: str = ""):
    store.delete_many([_key(namespace, REQUEST_COUNT_KEY), _key(namespace, LAST_REQUEST_TIME_KEY)])


class RateLimiter:
    """Binds `check_and_record` to a key/value store.

    `store` is anything with `get(key)`, `set_many(mapping)` and
    `delete_many(keys)` (see `src.state_store`). `namespace` keeps separate counters per browser.
    """

    def __init__(
        self,
        store,
        max_requests: int = DEFAULT_MAX_REQUESTS,
        window_ms: int = DEFAULT_WINDOW_MS,
        clock: Callable[[], int] = now_ms,
        namespace: str = "",
    ):
        self.store = store
        self.max_requests = max_requests
        self.window_ms = window_ms
        self.clock = clock
        self.namespace = namespace

    def current(self) -> RateLimitState:
        return load_state(self.store, self.namespace)

    def remaining(self, now: Optional[int] = None) -> int:
        state = self.current()
        now = self.clock() if now is None else now
        if now - state.window_start_ms > self.window_ms:
            return self.max_requests
        return max(0, self.max_requests - state.request_count)

    def check(self) -> RateLimitState:
        """Record one attempt. Must run before the network call."""
        state = self.current()
        try:
            new_state = check_and_record(state, self.clock(), self.max_requests, self.window_ms)
        except RateLimitExceeded as exc:
            logger.warning("Rate limit reached (%s requests), retry in %s ms", state.request_count, exc.retry_after_ms)
            raise
        save_state(self.store, new_state, self.namespace)
        return new_state
