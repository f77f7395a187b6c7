"""Maps framework correlation ids to Langfuse trace ids."""

import logging
import threading
from typing import Callable, Optional

logger = logging.getLogger("sk_langfuse.mapper")

CreateTrace = Callable[[str], str]


class TraceIdMapper:
    """Thread-safe correlation id -> remote trace id map.

    - A new correlation id triggers exactly one ``create_trace(name)`` call.
    - Known ids are answered from memory with no remote call.
    - The lock guards only the dicts; ``create_trace`` runs outside it.
      Concurrent callers asking for the same unseen id wait for the first
      caller's creation instead of issuing their own. Callers for different
      ids never wait on each other.
    - Entries never expire by size. Owners remove them with ``pop``/``forget``
      once the activity or trace they describe has completed.
    """

    def __init__(self, create_trace: CreateTrace):
        self._create_trace = create_trace
        self._entries: dict[str, str] = {}
        self._pending: dict[str, threading.Event] = {}
        self._lock = threading.Lock()

    def resolve_or_create(self, correlation_id: str, name: str) -> str:
        while True:
            with self._lock:
                existing = self._entries.get(correlation_id)
                if existing is not None:
                    return existing
                pending = self._pending.get(correlation_id)
                if pending is None:
                    pending = threading.Event()
                    self._pending[correlation_id] = pending
                    break
            # Another thread is creating this trace; if it fails we retry ourselves
            pending.wait()

        try:
            trace_id = self._create_trace(name)
            with self._lock:
                stored = self._entries.setdefault(correlation_id, trace_id)
            logger.debug("Mapped correlation id %s to trace %s", correlation_id, stored)
            return stored
        finally:
            with self._lock:
                self._pending.pop(correlation_id, None)
            pending.set()

    def bind(self, key: str, trace_id: str) -> None:
        with self._lock:
            self._entries[key] = trace_id

    def get(self, key: str) -> Optional[str]:
        with self._lock:
            return self._entries.get(key)

    def pop(self, key: str) -> Optional[str]:
        """Remove *key* and return its trace id, or None if it was not mapped."""
        with self._lock:
            return self._entries.pop(key, None)

    def forget(self, key: str) -> None:
        with self._lock:
            self._entries.pop(key, None)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, key: object) -> bool:
        with self._lock:
            return key in self._entries
