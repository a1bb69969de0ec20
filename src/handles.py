import threading
import uuid
from typing import Optional


class GeneratedImageHandle:
    """Opaque reference to image bytes returned by the inference API.

    A handle lives for the session that created it. Once a newer image
    supersedes it the owner calls `release()` and the bytes are dropped.
    """

    def __init__(self, data: bytes, content_type: str = "image/jpeg", handle_id: Optional[str] = None):
        self.handle_id = handle_id or uuid.uuid4().hex
        self.content_type = content_type
        self._data = data

    @property
    def data(self) -> bytes:
        if self._data is None:
            raise RuntimeError(f"Image handle {self.handle_id} has been released")
        return self._data

    @property
    def released(self) -> bool:
        return self._data is None

    def release(self):
        self._data = None

    def __repr__(self):
        size = 0 if self._data is None else len(self._data)
        return f"GeneratedImageHandle({self.handle_id!r}, {self.content_type!r}, {size} bytes)"


class ImageSlot:
    """Holds the current image of a session; new images replace the old one."""

    def __init__(self):
        self._current: Optional[GeneratedImageHandle] = None
        self._lock = threading.Lock()

    @property
    def current(self) -> Optional[GeneratedImageHandle]:
        return self._current

    def replace(self, handle: GeneratedImageHandle) -> Optional[GeneratedImageHandle]:
        with self._lock:
            previous, self._current = self._current, handle
        if previous is not None and previous is not handle:
            previous.release()
        return previous

    def get(self, handle_id: str) -> Optional[GeneratedImageHandle]:
        current = self._current
        if current is not None and current.handle_id == handle_id and not current.released:
            return current
        return None

    def clear(self):
        with self._lock:
            previous, self._current = self._current, None
        if previous is not None:
            previous.release()
