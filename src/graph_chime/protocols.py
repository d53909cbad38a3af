"""Protocol interfaces for graph-chime components.

The update detector depends on these rather than on the concrete token
manager, Graph client and notifier, which keeps it testable with fakes.
"""

from __future__ import annotations

from datetime import datetime
from typing import Protocol, runtime_checkable

from .models import CalendarEvent, Chat, ChatMessage, Identity, TokenSet


@runtime_checkable
class TokenProviderProtocol(Protocol):
    """Protocol for the credential lifecycle owner."""

    def ensure_token(self) -> TokenSet:
        """Return the current token set, exchanging first if none exists."""
        ...

    def force_refresh(self) -> TokenSet:
        """Exchange the refresh token now and return the new token set."""
        ...


@runtime_checkable
class GraphProtocol(Protocol):
    """Protocol for the collaboration API capabilities the detector consumes."""

    def get_me(self) -> Identity:
        ...

    def list_chats(self) -> list[Chat]:
        ...

    def list_chat_messages(self, chat_id: str, top: int = 20) -> list[ChatMessage]:
        ...

    def list_calendar_events(self, start: datetime, end: datetime) -> list[CalendarEvent]:
        ...


@runtime_checkable
class NotifierProtocol(Protocol):
    """Protocol for the audible notification cue."""

    def notify(self) -> None:
        """Play the cue once. Must not raise."""
        ...
