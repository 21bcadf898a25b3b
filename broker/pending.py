"""
In-memory table of in-flight requests.

request_id → PendingRequest. The single source of truth for which requester
gets which answer. Every operation takes the same lock, so a response and a
disconnect cleanup racing on one entry resolve to exactly one winner even when
called from worker threads.
"""
from __future__ import annotations

import threading
from datetime import datetime
from typing import Callable, Optional

from broker.models import PendingRequest


class DuplicateRequestIdError(KeyError):
    """Raised by insert() when the id is already pending."""


class PendingRequestTable:
    def __init__(self) -> None:
        self._entries: dict[str, PendingRequest] = {}
        self._lock = threading.Lock()

    def insert(self, record: PendingRequest) -> None:
        with self._lock:
            if record.id in self._entries:
                raise DuplicateRequestIdError(record.id)
            self._entries[record.id] = record

    def get(self, request_id: str) -> Optional[PendingRequest]:
        with self._lock:
            return self._entries.get(request_id)

    def remove(self, request_id: str) -> Optional[PendingRequest]:
        """Remove and return the entry; None if it was already gone."""
        with self._lock:
            return self._entries.pop(request_id, None)

    def remove_where(self, predicate: Callable[[PendingRequest], bool]) -> list[PendingRequest]:
        with self._lock:
            doomed = [r for r in self._entries.values() if predicate(r)]
            for r in doomed:
                del self._entries[r.id]
        return doomed

    def remove_for_requester(self, connection_id: str) -> list[PendingRequest]:
        return self.remove_where(lambda r: r.requester_connection_id == connection_id)

    def remove_created_before(self, cutoff: datetime) -> list[PendingRequest]:
        return self.remove_where(lambda r: r.created_at < cutoff)

    def snapshot(self) -> list[PendingRequest]:
        with self._lock:
            return list(self._entries.values())

    def __contains__(self, request_id: object) -> bool:
        with self._lock:
            return request_id in self._entries

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


# Singleton — shared by the router and the expiry job
pending_requests = PendingRequestTable()
