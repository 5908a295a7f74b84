"""
MODULE OVERVIEW:
Typed data structures shared by the sync clients, powered by Pydantic v2.

WHAT IS HAPPENING HERE:
`ChannelSpec` is what a surface declares when it wants live updates: which
channel, which table, and which cached queries a change should invalidate.
`PushMessage` is the envelope every frame from the push transport is validated
against before the client acts on it.
"""
from datetime import datetime, timezone
from typing import Any, Literal

from pydantic import BaseModel, Field, field_validator

from .query_keys import QueryKey, normalize_query_key

ChangeEvent = Literal["INSERT", "UPDATE", "DELETE", "*"]


class ChannelSpec(BaseModel):
    channel_name: str
    table: str
    filter: str | None = None
    event: ChangeEvent = "*"
    query_keys_to_invalidate: list[QueryKey] = Field(default_factory=list)
    enabled: bool = True

    @field_validator("query_keys_to_invalidate", mode="before")
    @classmethod
    def _normalize_keys(cls, value: Any) -> list[QueryKey]:
        return [normalize_query_key(key) for key in value]

    def matches(self, message: "PushMessage") -> bool:
        """True when a change frame falls inside this subscription's filter."""
        if message.type != "postgres_changes":
            return False
        if message.table is not None and message.table != self.table:
            return False
        return self.event == "*" or message.event_type == self.event


# WHAT IS HAPPENING HERE:
# The transport multiplexes three kinds of frames over one socket: keepalive
# pings, channel status reports, and the actual row changes.
class PushMessage(BaseModel):
    type: Literal["ping", "status", "postgres_changes"]
    channel: str | None = None
    status: str | None = None
    event_type: Literal["INSERT", "UPDATE", "DELETE"] | None = None
    table: str | None = None
    record: dict[str, Any] = Field(default_factory=dict)
    received_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class InvalidationRecord(BaseModel):
    query_key: QueryKey
    issued_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
