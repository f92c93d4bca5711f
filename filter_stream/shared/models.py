"""
MODULE OVERVIEW:
This module defines the typed data structures shared by the stream client,
powered by Pydantic v2.

WHAT IS HAPPENING HERE:
`StreamMessage` is the shape of every inbound WebSocket frame. `FilterOptions` is what the
filter form produces and what the filter creation endpoint consumes. `StreamSnapshot` is
the read model the presentation layer renders.
"""
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class ConnectionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    RECONNECTING = "reconnecting"
    ERROR = "error"


# WHAT IS HAPPENING HERE:
# The server tags each frame with `type`. Only "event" frames end up in the buffer;
# "connection" frames are informational. Unknown extra fields are kept as-is.
class StreamMessage(BaseModel):
    model_config = ConfigDict(extra="allow")

    type: str
    data: Any = None


class FilterOptions(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    repository: str = ""
    path_prefix: str = Field("", alias="pathPrefix")
    keyword: str = ""

    def to_request(self) -> dict[str, str]:
        """Only the non-empty options, trimmed, keyed by their wire names."""
        return {
            key: value.strip()
            for key, value in self.model_dump(by_alias=True).items()
            if value.strip()
        }

    @property
    def is_empty(self) -> bool:
        return not self.to_request()


class FilterCreated(BaseModel):
    filter_key: str = Field(alias="filterKey", min_length=1)


class StreamSnapshot(BaseModel):
    connection_status: ConnectionState
    events: list[StreamMessage]
    total_count: int
    is_paused: bool
    filter_key: str
    attempt: int
