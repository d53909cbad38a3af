"""Shared test fixtures for graph-chime tests."""

from __future__ import annotations

import sys
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

from graph_chime.errors import AuthError, UpstreamError  # noqa: E402
from graph_chime.models import (  # noqa: E402
    Attendee,
    CalendarEvent,
    Chat,
    ChatKind,
    ChatMessage,
    Identity,
    ResponseStatus,
    TokenSet,
)

ME = Identity(id="user-me", principal_name="Me@Contoso.com", display_name="Me Myself")
T0 = datetime(2026, 3, 2, 12, 0, tzinfo=UTC)


class FakeClock:
    """Manually advanced UTC clock."""

    def __init__(self, now: datetime = T0) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now = self.now + timedelta(**kwargs)


@dataclass
class FakeTokenManager:
    """Fake token manager counting refreshes; can be told to fail."""

    fail_refresh: bool = False
    refresh_calls: int = 0

    def ensure_token(self) -> TokenSet:
        return TokenSet(access_token=f"token-{self.refresh_calls}")

    def force_refresh(self) -> TokenSet:
        self.refresh_calls += 1
        if self.fail_refresh:
            raise AuthError("refresh rejected")
        return TokenSet(access_token=f"token-{self.refresh_calls}", refresh_token="rt")


@dataclass
class FakeGraph:
    """In-memory Graph with scripted failures.

    ``chat_errors`` and ``event_errors`` are consumed one per call before any
    data is returned; ``message_errors`` works the same way per chat id.
    """

    identity: Identity = ME
    chats: list[Chat] = field(default_factory=list)
    messages: dict[str, list[ChatMessage]] = field(default_factory=dict)
    events: list[CalendarEvent] = field(default_factory=list)
    me_errors: list[Exception] = field(default_factory=list)
    chat_errors: list[Exception] = field(default_factory=list)
    message_errors: dict[str, list[Exception]] = field(default_factory=dict)
    event_errors: list[Exception] = field(default_factory=list)
    calls: list[str] = field(default_factory=list)
    event_windows: list[tuple[datetime, datetime]] = field(default_factory=list)
    page_sizes: list[int] = field(default_factory=list)

    def get_me(self) -> Identity:
        self.calls.append("me")
        if self.me_errors:
            raise self.me_errors.pop(0)
        return self.identity

    def list_chats(self) -> list[Chat]:
        self.calls.append("chats")
        if self.chat_errors:
            raise self.chat_errors.pop(0)
        return list(self.chats)

    def list_chat_messages(self, chat_id: str, top: int = 20) -> list[ChatMessage]:
        self.calls.append(f"messages:{chat_id}")
        self.page_sizes.append(top)
        pending = self.message_errors.get(chat_id)
        if pending:
            raise pending.pop(0)
        return list(self.messages.get(chat_id, []))[:top]

    def list_calendar_events(self, start: datetime, end: datetime) -> list[CalendarEvent]:
        self.calls.append("events")
        self.event_windows.append((start, end))
        if self.event_errors:
            raise self.event_errors.pop(0)
        return list(self.events)


class FakeNotifier:
    """Records each cue instead of playing it."""

    def __init__(self) -> None:
        self.count = 0

    def notify(self) -> None:
        self.count += 1


def unauthorized() -> UpstreamError:
    return UpstreamError("InvalidAuthenticationToken", status_code=401)


def one_on_one(chat_id: str = "dm-1", topic: str = "") -> Chat:
    return Chat(id=chat_id, topic=topic, kind=ChatKind.ONE_ON_ONE, members=[ME.id, "user-other"])


def group(chat_id: str = "group-1", topic: str = "Team") -> Chat:
    return Chat(id=chat_id, topic=topic, kind=ChatKind.OTHER, members=[ME.id, "a", "b"])


def message(msg_id: str, created_at: datetime, mentions: list[str] | None = None, sender: str = "Alice") -> ChatMessage:
    return ChatMessage(
        id=msg_id,
        created_at=created_at,
        from_display_name=sender,
        body_content=f"body of {msg_id}",
        mentions=mentions or [],
    )


def invitation(
    event_id: str,
    created_at: datetime,
    last_modified_at: datetime | None = None,
    status: ResponseStatus = ResponseStatus.NONE,
    email: str = "me@contoso.com",
) -> CalendarEvent:
    return CalendarEvent(
        id=event_id,
        created_at=created_at,
        last_modified_at=last_modified_at or created_at,
        subject=f"Meeting {event_id}",
        organizer_name="Bob",
        start_time="2026-03-02T15:00:00.0000000",
        attendees=[Attendee(email=email, response_status=status), Attendee(email="bob@contoso.com", response_status=ResponseStatus.ORGANIZER)],
    )


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def fake_tokens() -> FakeTokenManager:
    return FakeTokenManager()


@pytest.fixture
def fake_graph() -> FakeGraph:
    return FakeGraph()


@pytest.fixture
def fake_notifier() -> FakeNotifier:
    return FakeNotifier()
