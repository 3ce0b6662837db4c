"""
Active Runs — At most one in-flight sync per image reference.

The first caller for a reference creates the entry and does the work.
Later callers for the same reference attach to it: they see every
progress event from the start and then the creator's outcome (or its
exception). The creator releases the entry when it finishes, so the
next caller starts over with a fresh probe.
"""

from __future__ import annotations

import logging
import threading
from typing import Dict, Iterator, List, Optional, Tuple

from ..models.run import ProgressEvent, SyncOutcome

logger = logging.getLogger(__name__)


class ActiveRun:
    """Shared state of one in-flight sync."""

    def __init__(self, key: str):
        self.key = key
        self._cond = threading.Condition()
        self._events: List[ProgressEvent] = []
        self._done = False
        self._outcome: Optional[SyncOutcome] = None
        self._error: Optional[BaseException] = None

    @property
    def done(self) -> bool:
        with self._cond:
            return self._done

    def publish(self, event: ProgressEvent) -> None:
        with self._cond:
            self._events.append(event)
            self._cond.notify_all()

    def finish(self, outcome: SyncOutcome) -> None:
        with self._cond:
            self._outcome = outcome
            self._done = True
            self._cond.notify_all()

    def fail(self, error: BaseException) -> None:
        with self._cond:
            self._error = error
            self._done = True
            self._cond.notify_all()

    def follow(self) -> Iterator[ProgressEvent]:
        """Replay past events, then yield new ones until the run is done."""
        index = 0
        while True:
            with self._cond:
                while index >= len(self._events) and not self._done:
                    self._cond.wait()
                pending = self._events[index:]
                index = len(self._events)
                finished = self._done
            yield from pending
            if finished and index >= len(self._events):
                return

    def result(self) -> SyncOutcome:
        """Block until done; return the outcome or re-raise the creator's error."""
        with self._cond:
            while not self._done:
                self._cond.wait()
            if self._error is not None:
                raise self._error
            return self._outcome


class ActiveRunRegistry:
    """Thread-safe map of reference key → ActiveRun."""

    def __init__(self):
        self._lock = threading.Lock()
        self._entries: Dict[str, ActiveRun] = {}

    def attach_or_create(self, key: str) -> Tuple[ActiveRun, bool]:
        """
        Return the entry for ``key`` and whether this call created it.

        The check and the insert happen under one lock.
        """
        with self._lock:
            entry = self._entries.get(key)
            if entry is not None:
                return entry, False
            entry = ActiveRun(key)
            self._entries[key] = entry
            return entry, True

    def release(self, entry: ActiveRun) -> None:
        with self._lock:
            if self._entries.get(entry.key) is entry:
                del self._entries[entry.key]

    def active_keys(self) -> List[str]:
        with self._lock:
            return sorted(self._entries)

    def __contains__(self, key: str) -> bool:
        with self._lock:
            return key in self._entries

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
