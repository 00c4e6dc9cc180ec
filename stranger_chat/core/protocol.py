"""Wire protocol: closed set of inbound events and outbound payload builders."""
from __future__ import annotations

import time
from enum import Enum
from typing import Annotated, Any, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError

from stranger_chat.utils.error_codes import ErrorCodes, RelayError


class EventType(str, Enum):
    LOGIN = "login"
    CANCEL_SEARCH = "cancel_search"
    MESSAGE = "message"
    TYPING = "typing"
    SKIP_NOTIFICATION = "skip_notification"
    SKIP = "skip"
    REPORT = "report"


class _InboundEvent(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore", frozen=True)

    @property
    def event_type(self) -> EventType:
        return EventType(self.type)


class LoginEvent(_InboundEvent):
    type: Literal["login"]
    # Left untyped so a bad name is a validation error rather than a malformed frame
    username: Any = None


class CancelSearchEvent(_InboundEvent):
    type: Literal["cancel_search"]


class MessageEvent(_InboundEvent):
    type: Literal["message"]
    content: Any = None
    username: Any = None
    room_id: Optional[str] = Field(default=None, alias="roomId")


class TypingEvent(_InboundEvent):
    type: Literal["typing"]
    is_typing: bool = Field(default=False, alias="isTyping")
    username: Any = None
    room_id: Optional[str] = Field(default=None, alias="roomId")


class SkipNotificationEvent(_InboundEvent):
    type: Literal["skip_notification"]
    username: Any = None
    room_id: Optional[str] = Field(default=None, alias="roomId")


class SkipEvent(_InboundEvent):
    type: Literal["skip"]
    username: Any = None
    room_id: Optional[str] = Field(default=None, alias="roomId")


class ReportEvent(_InboundEvent):
    type: Literal["report"]
    reported_user: Any = Field(default=None, alias="reportedUser")
    reporting_user: Any = Field(default=None, alias="reportingUser")


InboundEvent = Annotated[
    Union[
        LoginEvent,
        CancelSearchEvent,
        MessageEvent,
        TypingEvent,
        SkipNotificationEvent,
        SkipEvent,
        ReportEvent,
    ],
    Field(discriminator="type"),
]

_inbound_adapter = TypeAdapter(InboundEvent)


def parse_event(frame: str | bytes) -> _InboundEvent:
    """Decode one text frame into its event model.

    Raises RelayError(ERR_MALFORMED_FRAME) for anything that is not a JSON
    object with a known ``type`` and well-typed fields.
    """

    try:
        return _inbound_adapter.validate_json(frame)
    except ValidationError as exc:
        raise RelayError(ErrorCodes.ERR_MALFORMED_FRAME, f"Malformed frame ({exc.error_count()} errors)") from exc


def now_ms() -> int:
    return int(time.time() * 1000)


def online_count(count: int) -> dict:
    return {"type": "online_count", "count": count}


def login_success(identity: str) -> dict:
    return {"type": "login_success", "userId": identity}


def login_error(message: str) -> dict:
    return {"type": "login_error", "message": message}


def matched(room_id: str, partner: str) -> dict:
    return {"type": "matched", "roomId": room_id, "partner": partner}


def chat_message(content: str, sender: str, timestamp: Optional[int] = None) -> dict:
    return {
        "type": "message",
        "content": content,
        "sender": sender,
        "timestamp": now_ms() if timestamp is None else timestamp,
    }


def typing_indicator(is_typing: bool, username: str) -> dict:
    return {"type": "typing", "isTyping": is_typing, "username": username}


def partner_skipped(username: str) -> dict:
    return {"type": "partner_skipped", "message": f"{username} wants to skip", "username": username}


def partner_disconnected() -> dict:
    return {"type": "partner_disconnected", "message": "Your chat partner has disconnected"}


def report_acknowledged() -> dict:
    return {
        "type": "report_acknowledged",
        "message": "Report received. Thank you for helping keep the platform safe.",
    }


def error(message: str) -> dict:
    return {"type": "error", "message": message}
