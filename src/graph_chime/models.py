from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Any


class ChatKind(str, Enum):
    """Closed classification of a chat, decided when it is parsed."""

    ONE_ON_ONE = "one_on_one"
    OTHER = "other"


class ResponseStatus(str, Enum):
    """Attendee response to a calendar invitation."""

    NONE = "none"
    ACCEPTED = "accepted"
    DECLINED = "declined"
    TENTATIVE = "tentativelyaccepted"
    ORGANIZER = "organizer"
    NOT_RESPONDED = "notresponded"
    OTHER = "other"

    @classmethod
    def parse(cls, value: Any) -> ResponseStatus:
        normalized = str(value or "").strip().lower()
        if normalized == "tentative":
            return cls.TENTATIVE
        try:
            return cls(normalized)
        except ValueError:
            return cls.OTHER


@dataclass(slots=True, frozen=True)
class Identity:
    id: str
    principal_name: str
    display_name: str = ""


@dataclass(slots=True)
class TokenSet:
    access_token: str
    refresh_token: str = ""
    token_type: str = ""
    scope: str = ""
    expires_in: int = 0
    ext_expires_in: int = 0
    refresh_token_expires_in: int = 0
    id_token: str = ""
    client_info: str = ""

    @classmethod
    def from_response(cls, payload: dict[str, Any]) -> TokenSet:
        def _int(key: str) -> int:
            try:
                return int(payload.get(key) or 0)
            except (TypeError, ValueError):
                return 0

        return cls(
            access_token=str(payload.get("access_token") or ""),
            refresh_token=str(payload.get("refresh_token") or ""),
            token_type=str(payload.get("token_type") or ""),
            scope=str(payload.get("scope") or ""),
            expires_in=_int("expires_in"),
            ext_expires_in=_int("ext_expires_in"),
            refresh_token_expires_in=_int("refresh_token_expires_in"),
            id_token=str(payload.get("id_token") or ""),
            client_info=str(payload.get("client_info") or ""),
        )


@dataclass(slots=True)
class Chat:
    id: str
    topic: str
    kind: ChatKind
    members: list[str] = field(default_factory=list)

    @property
    def is_one_on_one(self) -> bool:
        return self.kind is ChatKind.ONE_ON_ONE


@dataclass(slots=True)
class ChatMessage:
    id: str
    created_at: datetime
    from_display_name: str = ""
    body_content: str = ""
    mentions: list[str] = field(default_factory=list)


@dataclass(slots=True)
class Attendee:
    email: str
    response_status: ResponseStatus = ResponseStatus.NONE


@dataclass(slots=True)
class CalendarEvent:
    id: str
    created_at: datetime
    last_modified_at: datetime
    subject: str = ""
    organizer_name: str = ""
    start_time: str = ""
    attendees: list[Attendee] = field(default_factory=list)

    def attendee_for(self, email: str) -> Attendee | None:
        wanted = email.casefold()
        for attendee in self.attendees:
            if attendee.email.casefold() == wanted:
                return attendee
        return None


@dataclass(slots=True, frozen=True)
class PollSession:
    """State carried from one poll cycle to the next.

    A cycle receives the session and hands back a new one; nothing mutates a
    session in place, so a snapshot read by the admin API is always coherent.
    """

    identity: Identity | None = None
    last_message_check_time: datetime | None = None
    last_event_check_time: datetime | None = None

    @property
    def initialized(self) -> bool:
        return self.identity is not None

    def with_message_watermark(self, when: datetime) -> PollSession:
        current = self.last_message_check_time
        if current is not None and when < current:
            return self
        return replace(self, last_message_check_time=when)

    def with_event_watermark(self, when: datetime) -> PollSession:
        current = self.last_event_check_time
        if current is not None and when < current:
            return self
        return replace(self, last_event_check_time=when)
