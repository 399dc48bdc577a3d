from __future__ import annotations

"""
Consent gate + client-side tracking queue.

States: UNINITIALIZED -> INITIALIZED_NO_CONSENT <-> INITIALIZED_CONSENTED.
Events tracked before init() or without consent are held in memory (never
persisted) and flushed in insertion order once both conditions hold.
"""

import threading
import time
from collections import deque
from concurrent.futures import Executor, ThreadPoolExecutor
from enum import Enum
from typing import Any, Callable, Deque, Dict, List, Optional

from quietstats.core.config.io import atomic_write_json, read_json_file


class ConsentState(str, Enum):
    UNINITIALIZED = "UNINITIALIZED"
    INITIALIZED_NO_CONSENT = "INITIALIZED_NO_CONSENT"
    INITIALIZED_CONSENTED = "INITIALIZED_CONSENTED"


class ConsentStore:
    """Persisted consent flag. get() returns None when nothing was recorded."""

    def get(self) -> Optional[bool]:
        raise NotImplementedError

    def set(self, granted: bool) -> None:
        raise NotImplementedError


class MemoryConsentStore(ConsentStore):
    def __init__(self, granted: Optional[bool] = None):
        self._granted = granted

    def get(self) -> Optional[bool]:
        return self._granted

    def set(self, granted: bool) -> None:
        self._granted = bool(granted)


class FileConsentStore(ConsentStore):
    def __init__(self, path: str):
        self.path = str(path)

    def get(self) -> Optional[bool]:
        rr = read_json_file(self.path)
        if not rr.ok:
            return None
        val = rr.data.get("consent")
        return val if isinstance(val, bool) else None

    def set(self, granted: bool) -> None:
        atomic_write_json(self.path, {"consent": bool(granted), "recorded_at": time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime())})


class ConsentGate:
    """
    Holds events until the tracker is initialized and consent is present.

    The queue is swapped out under the lock when flushed and every queued
    event is handed to the executor in insertion order before the lock is
    released; events tracked concurrently land in the fresh queue or are
    dispatched after the flushed ones. An event is dispatched at most once.
    """

    def __init__(
        self,
        *,
        dispatch: Callable[[Dict[str, Any]], Any],
        store: Optional[ConsentStore] = None,
        consent_required: bool = True,
        executor: Optional[Executor] = None,
        logger: Any = None,
    ):
        self._dispatch = dispatch
        self.store = store or MemoryConsentStore()
        self.consent_required = bool(consent_required)
        self.logger = logger
        self._owns_executor = executor is None
        self._executor = executor or ThreadPoolExecutor(max_workers=4, thread_name_prefix="quietstats-send")
        self._lock = threading.Lock()
        self._queue: Deque[Dict[str, Any]] = deque()
        self._initialized = False
        self._has_consent = False

    # ---- state ----
    @property
    def state(self) -> ConsentState:
        with self._lock:
            return self._state_locked()

    def _state_locked(self) -> ConsentState:
        if not self._initialized:
            return ConsentState.UNINITIALIZED
        if self._has_consent:
            return ConsentState.INITIALIZED_CONSENTED
        return ConsentState.INITIALIZED_NO_CONSENT

    @property
    def has_consent(self) -> bool:
        return self._has_consent

    def pending(self) -> List[Dict[str, Any]]:
        with self._lock:
            return list(self._queue)

    # ---- transitions ----
    def init(self) -> ConsentState:
        with self._lock:
            if self._initialized:
                return self._state_locked()
            stored = self.store.get()
            if not self.consent_required:
                self._has_consent = True
            else:
                self._has_consent = bool(stored) if stored is not None else False
            self._initialized = True
            self._flush_locked()
            return self._state_locked()

    def enable_tracking(self) -> int:
        with self._lock:
            self._has_consent = True
            self.store.set(True)
            return self._flush_locked()

    def disable_tracking(self) -> None:
        with self._lock:
            self._has_consent = False
            self.store.set(False)

    # ---- events ----
    def submit(self, event: Dict[str, Any]) -> bool:
        """
        Returns True when the event was dispatched, False when it was queued.
        """
        with self._lock:
            if not (self._initialized and self._has_consent):
                self._queue.append(event)
                return False
        self._dispatch_safely(event)
        return True

    def flush(self) -> int:
        with self._lock:
            return self._flush_locked()

    def _flush_locked(self) -> int:
        if not (self._initialized and self._has_consent) or not self._queue:
            return 0
        batch, self._queue = self._queue, deque()
        for ev in batch:
            self._executor.submit(self._dispatch_safely, ev)
        if self.logger:
            self.logger.info(f"Flushed {len(batch)} queued events")
        return len(batch)

    def _dispatch_safely(self, event: Dict[str, Any]) -> None:
        # analytics must never break the host application
        try:
            self._dispatch(event)
        except Exception as e:  # noqa: BLE001
            if self.logger:
                self.logger.error(f"Failed to send event: {e}")

    def close(self, *, wait: bool = True) -> None:
        if self._owns_executor:
            self._executor.shutdown(wait=wait)
