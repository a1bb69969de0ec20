"""Bounded map of per-browser generation flows.

Every browser session owns a `GenerationFlow` (current image, pending NSFW
confirmation, request counter namespace). Sessions idle for longer than
`idle_seconds` are dropped, and at most `max_sessions` are kept; the least
recently used ones go first. A flow that is submitting or awaiting
confirmation is never dropped.
"""
import logging
import threading
import time
from collections import OrderedDict
from typing import Callable, Optional

from .flow import FlowState, GenerationFlow


logger = logging.getLogger(__name__)

DEFAULT_MAX_SESSIONS = 1000


class SessionRegistry:
    def __init__(
        self,
        factory: Callable[[str], GenerationFlow],
        max_sessions: int = DEFAULT_MAX_SESSIONS,
        idle_seconds: float = 3600.0,
        on_evict: Optional[Callable[[str, GenerationFlow], None]] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        if max_sessions < 1:
            raise ValueError("max_sessions must be >= 1")
        self.factory = factory
        self.max_sessions = max_sessions
        self.idle_seconds = idle_seconds
        self.on_evict = on_evict
        self.clock = clock
        self._entries = OrderedDict()
        self._lock = threading.Lock()

    def __len__(self):
        return len(self._entries)

    def __contains__(self, sid):
        return sid in self._entries

    def get(self, sid: str) -> GenerationFlow:
        """Return the flow for `sid`, creating it if needed, and evict stale ones."""
        now = self.clock()
        with self._lock:
            entry = self._entries.pop(sid, None)
            flow = entry[0] if entry is not None else self.factory(sid)
            evicted = self._sweep(now)
            self._entries[sid] = (flow, now)
            evicted.extend(self._trim())
        for old_sid, old_flow in evicted:
            self._evict(old_sid, old_flow)
        return flow

    def _sweep(self, now: float):
        evicted = []
        for sid, (flow, last_seen) in list(self._entries.items()):
            if now - last_seen > self.idle_seconds and flow.state is FlowState.IDLE:
                del self._entries[sid]
                evicted.append((sid, flow))
        return evicted

    def _trim(self):
        # oldest first; the entry just touched sits at the end
        evicted = []
        for sid in list(self._entries)[:-1]:
            if len(self._entries) <= self.max_sessions:
                break
            flow = self._entries[sid][0]
            if flow.state is FlowState.IDLE:
                del self._entries[sid]
                evicted.append((sid, flow))
        return evicted

    def _evict(self, sid: str, flow: GenerationFlow):
        flow.slot.clear()
        if self.on_evict is not None:
            self.on_evict(sid, flow)
        logger.debug("Dropped session %s", sid)
