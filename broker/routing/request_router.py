"""
Request routing — the only component that mutates the pending table.

Flow per request id:
  newRequest        → mint id, store, broadcast to everyone else, ack the sender
  respondToRequest  → claim the entry, deliver to the original requester only
  disconnect        → drop every entry the connection was waiting on
  expiry (optional) → drop entries older than the TTL, tell their requesters

Entries are claimed with a single remove() before anything is awaited, so the
first response wins and every later one finds nothing.
"""
from __future__ import annotations

import json
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Optional, Protocol

from pydantic import ValidationError

from broker.broadcast.connection_registry import connections
from broker.config import (
    EVENT_ERROR, EVENT_NEW_REQUEST, EVENT_PING, EVENT_PONG,
    EVENT_REQUEST_EXPIRED, EVENT_REQUEST_PENDING, EVENT_REQUEST_RECEIVED,
    EVENT_REQUEST_RESPONSE, EVENT_RESPOND, MAX_REQUEST_TEXT_LENGTH,
)
from broker.models import (
    Envelope, ErrorDetail, PendingRequest, RequestExpired, RequestResolved,
    RespondPayload,
)
from broker.pending import DuplicateRequestIdError, PendingRequestTable, pending_requests
from broker.request_ids import generate_request_id

log = logging.getLogger(__name__)


def _utf8_encodable(value: Any) -> bool:
    try:
        json.dumps(value, ensure_ascii=False).encode("utf-8")
    except (UnicodeEncodeError, TypeError, ValueError):
        return False
    return True


class Transport(Protocol):
    def is_connected(self, connection_id: str) -> bool: ...

    async def send_to(self, connection_id: str, event: str, data: Any = None) -> bool: ...

    async def broadcast_except(self, connection_id: str, event: str, data: Any = None) -> int: ...


class RequestRouter:
    def __init__(
        self,
        table: PendingRequestTable,
        transport: Transport,
        id_generator: Callable[[], str] = generate_request_id,
        max_text_length: int = MAX_REQUEST_TEXT_LENGTH,
    ) -> None:
        self.table = table
        self.transport = transport
        self._generate_id = id_generator
        self._max_text_length = max_text_length

    # ── Inbound frames ────────────────────────────────────────────────────────

    async def dispatch(self, connection_id: str, raw: str) -> None:
        """Parse one text frame and run its handler. Never raises on bad input."""
        try:
            parsed = json.loads(raw)
            envelope = Envelope.model_validate(parsed)
        except (json.JSONDecodeError, ValidationError, RecursionError) as exc:
            log.info("Malformed frame from %s: %s", connection_id, type(exc).__name__)
            await self._reject(connection_id, None, "Malformed message")
            return
        # JSON escapes can smuggle in lone surrogates that no peer could be sent
        if not _utf8_encodable(parsed):
            log.info("Frame from %s is not valid UTF-8", connection_id)
            await self._reject(connection_id, None, "Message is not valid UTF-8")
            return

        if envelope.event == EVENT_NEW_REQUEST:
            await self.handle_new_request(connection_id, envelope.data)
        elif envelope.event == EVENT_RESPOND:
            await self.handle_response(connection_id, envelope.data)
        elif envelope.event == EVENT_PING:
            await self.transport.send_to(connection_id, EVENT_PONG)
        else:
            await self._reject(connection_id, envelope.event, f"Unknown event: {envelope.event}")

    # ── Handlers ──────────────────────────────────────────────────────────────

    async def handle_new_request(self, connection_id: str, text: Any) -> Optional[PendingRequest]:
        if not self.transport.is_connected(connection_id):
            log.warning("newRequest from unknown connection %s ignored", connection_id)
            return None
        if not isinstance(text, str) or not text.strip():
            await self._reject(connection_id, EVENT_NEW_REQUEST, "Request text must be a non-empty string")
            return None
        if len(text) > self._max_text_length:
            await self._reject(
                connection_id, EVENT_NEW_REQUEST,
                f"Request text exceeds {self._max_text_length} characters",
            )
            return None
        if not _utf8_encodable(text):
            await self._reject(connection_id, EVENT_NEW_REQUEST, "Request text is not valid UTF-8")
            return None

        while True:
            record = PendingRequest(
                id=self._generate_id(),
                text=text,
                requester_connection_id=connection_id,
            )
            try:
                self.table.insert(record)
                break
            except DuplicateRequestIdError:
                log.warning("Request id collision on %s, regenerating", record.id)

        log.info('[Request: %s] New request from %s: "%s"', record.id, connection_id, text)

        await self.transport.broadcast_except(connection_id, EVENT_REQUEST_RECEIVED, record.to_wire())
        await self.transport.send_to(connection_id, EVENT_REQUEST_PENDING, record.id)
        return record

    async def handle_response(self, connection_id: str, data: Any) -> bool:
        """Route an answer to its requester. True if something was delivered."""
        try:
            payload = RespondPayload.model_validate(data)
        except ValidationError:
            await self._reject(connection_id, EVENT_RESPOND, "respondToRequest requires an id")
            return False
        if not _utf8_encodable(payload.status):
            await self._reject(connection_id, EVENT_RESPOND, "Response status is not valid UTF-8")
            return False

        record = self.table.remove(payload.id)
        if record is None:
            log.info("Request ID %s not found or already processed.", payload.id)
            return False

        log.info("[Request: %s] Response from %s: %s", record.id, connection_id, payload.status)

        resolved = RequestResolved(id=record.id, status=payload.status, text=record.text)
        delivered = await self.transport.send_to(
            record.requester_connection_id, EVENT_REQUEST_RESPONSE, resolved.to_wire(),
        )
        if not delivered:
            log.warning(
                "[Request: %s] Requester %s is gone, response dropped",
                record.id, record.requester_connection_id,
            )
        return delivered

    def handle_disconnect(self, connection_id: str) -> list[PendingRequest]:
        dropped = self.table.remove_for_requester(connection_id)
        if dropped:
            log.info(
                "Dropped %d pending request(s) of disconnected %s",
                len(dropped), connection_id,
            )
        return dropped

    async def expire_stale(self, max_age: float, now: Optional[datetime] = None) -> list[PendingRequest]:
        """Drop requests older than max_age seconds and notify their requesters."""
        now = now or datetime.now(timezone.utc)
        expired = self.table.remove_created_before(now - timedelta(seconds=max_age))
        for record in expired:
            log.info("[Request: %s] Expired unanswered", record.id)
            await self.transport.send_to(
                record.requester_connection_id, EVENT_REQUEST_EXPIRED,
                RequestExpired(id=record.id).to_wire(),
            )
        return expired

    # ── Helpers ───────────────────────────────────────────────────────────────

    async def _reject(self, connection_id: str, event: Optional[str], detail: str) -> None:
        await self.transport.send_to(
            connection_id, EVENT_ERROR, ErrorDetail(event=event, detail=detail).to_wire(),
        )


# Singleton — imported directly by main.py and scheduler/jobs.py
router = RequestRouter(pending_requests, connections)
