"""
MODULE OVERVIEW:
Typed data structures shared by the server routes, the broadcast core and the
terminal client, powered by Pydantic v2.

WHAT IS HAPPENING HERE:
Anything that crosses the wire is declared here. Models that browsers consume
(`Comment`, `HeartbeatPayload`, `ApiError`) serialize with camelCase keys so the
frontend contract stays `createdAt` / `activeConnections` / `fieldErrors`.
"""
from datetime import datetime, timezone
from typing import Literal
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# WHAT IS HAPPENING HERE:
# A persisted comment. It is the payload of every `comment` broadcast and the
# items of the `comment-history` replay.
class Comment(CamelModel):
    model_config = ConfigDict(frozen=True)

    id: UUID = Field(default_factory=uuid4)
    username: str
    message: str
    created_at: datetime = Field(default_factory=utc_now)


# Length limits come from the app's Settings and are checked by the route.
class CommentRequest(BaseModel):
    username: str
    message: str

    @field_validator("username", "message")
    @classmethod
    def check_text(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("must not be blank")
        return value


class CommentCreated(BaseModel):
    id: UUID
    status: Literal["created"] = "created"
    timestamp: datetime


# Payload of the periodic `ping` event.
class HeartbeatPayload(CamelModel):
    type: Literal["keep-alive"] = "keep-alive"
    timestamp: int
    active_connections: int


# Uniform error body for every failing API call.
class ApiError(CamelModel):
    timestamp: datetime = Field(default_factory=utc_now)
    status: int
    error: str
    message: str
    path: str | None = None
    field_errors: dict[str, str] | None = None


class ConnectionStats(BaseModel):
    active_connections: int
    total_registered: int
    broadcasts: int
    deliveries: int
    failed_deliveries: int
    stored_comments: int
    uptime_s: float
    server_time: datetime
