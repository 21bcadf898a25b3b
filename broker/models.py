"""Pydantic models for pending requests and the WebSocket wire format."""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class WireModel(BaseModel):
    """camelCase on the wire, snake_case in Python."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_wire(self) -> dict:
        return self.model_dump(by_alias=True, mode="json")


# ── Pending request ───────────────────────────────────────────────────────────

class PendingRequest(WireModel):
    model_config = ConfigDict(frozen=True)

    id: str
    text: str
    requester_connection_id: str
    created_at: datetime = Field(default_factory=_utcnow, exclude=True)


# ── Inbound ───────────────────────────────────────────────────────────────────

class Envelope(BaseModel):
    event: str = Field(min_length=1)
    data: Any = None


class RespondPayload(BaseModel):
    # The browser page sends requestId; other clients may send id
    id: str = Field(min_length=1, validation_alias=AliasChoices("id", "requestId"))
    status: Any = None


# ── Outbound ──────────────────────────────────────────────────────────────────

class RequestResolved(WireModel):
    id: str
    status: Any = None
    text: str


class RequestExpired(WireModel):
    id: str


class ErrorDetail(WireModel):
    event: str | None = None
    detail: str
