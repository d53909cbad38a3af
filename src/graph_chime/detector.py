"""Update detection: watermarks, classification and the one-shot auth retry.

A poll cycle takes a ``PollSession`` and returns the next one. The message
check collects every qualifying message before notifying, so a retried check
never plays a cue twice for the same message.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime, time, timedelta
from typing import Callable

from .errors import AuthError, GraphChimeError, UpstreamError
from .models import CalendarEvent, Chat, ChatMessage, Identity, PollSession, ResponseStatus
from .protocols import GraphProtocol, NotifierProtocol, TokenProviderProtocol

logger = logging.getLogger("graph_chime.detector")


@dataclass(slots=True, frozen=True)
class CheckOk:
    qualifying: list[tuple[Chat, ChatMessage]] = field(default_factory=list)


@dataclass(slots=True, frozen=True)
class CheckAuthFailure:
    status_code: int | None
    message: str


@dataclass(slots=True, frozen=True)
class CheckFailure:
    status_code: int | None
    message: str


CheckOutcome = CheckOk | CheckAuthFailure | CheckFailure


def _utc_now() -> datetime:
    return datetime.now(UTC)


def local_day_window(now: datetime) -> tuple[datetime, datetime]:
    """UTC bounds of the local calendar day containing ``now``."""
    today = now.astimezone().date()
    start = datetime.combine(today, time.min).astimezone(UTC)
    end = datetime.combine(today + timedelta(days=1), time.min).astimezone(UTC)
    return start, end


def message_qualifies(message: ChatMessage, chat: Chat, identity: Identity, watermark: datetime) -> bool:
    if message.created_at <= watermark:
        return False
    return chat.is_one_on_one or identity.id in message.mentions


def event_qualifies(event: CalendarEvent, identity: Identity, watermark: datetime) -> bool:
    if event.created_at <= watermark and event.last_modified_at <= watermark:
        return False
    attendee = event.attendee_for(identity.principal_name)
    return attendee is not None and attendee.response_status is ResponseStatus.NONE


class UpdateDetector:
    """Polls Graph for new direct messages, mentions and unanswered invitations."""

    def __init__(
        self,
        token_manager: TokenProviderProtocol,
        graph: GraphProtocol,
        notifier: NotifierProtocol,
        lookback_minutes: int = 5,
        message_page_size: int = 20,
        enable_event_check: bool = True,
        clock: Callable[[], datetime] = _utc_now,
    ):
        self.token_manager = token_manager
        self.graph = graph
        self.notifier = notifier
        self.lookback = timedelta(minutes=lookback_minutes)
        self.message_page_size = message_page_size
        self.enable_event_check = enable_event_check
        self._clock = clock
        self.session = PollSession()

    # ------------------------------------------------------------------
    # Stateful entry points
    # ------------------------------------------------------------------

    def initialize(self) -> bool:
        self.session = self._initialize(self.session)
        return self.session.initialized

    def check_for_updates(self) -> None:
        """Run one poll cycle. Never raises."""
        self.session = self.run_cycle(self.session)

    # ------------------------------------------------------------------
    # Cycle
    # ------------------------------------------------------------------

    def run_cycle(self, session: PollSession) -> PollSession:
        logger.info("Checking for updates at %s...", self._clock().astimezone().isoformat(timespec="seconds"))

        if not session.initialized:
            logger.info("Service not initialized. Attempting initialization...")
            session = self._initialize(session)
            if not session.initialized:
                logger.error("Service failed to initialize. Skipping update check.")
                return session

        try:
            session = self._check_messages(session)
            if self.enable_event_check:
                session = self._check_events(session)
            logger.info("Update check complete.")
        except UpstreamError as exc:
            logger.error("Error during update check: %s (status=%s)", exc.message, exc.status_code)
        except Exception as exc:
            logger.exception("Error during update check: %s", exc)
        return session

    def _initialize(self, session: PollSession) -> PollSession:
        try:
            self.token_manager.force_refresh()
        except AuthError as exc:
            logger.error("Failed to retrieve access token: %s. Check the login settings and permissions.", exc)
            return session

        try:
            identity = self.graph.get_me()
        except UpstreamError as exc:
            logger.error("Error calling Graph: %s. Error Code: %s", exc.message, exc.status_code)
            logger.error("Please ensure your access token is valid and has the necessary permissions.")
            return session
        except Exception as exc:
            logger.exception("An unexpected error occurred during initialization: %s", exc)
            return session

        start = self._clock() - self.lookback
        logger.info(
            "Monitoring messages and events for user: %s (%s). User ID: %s.",
            identity.display_name, identity.principal_name, identity.id,
        )
        return PollSession(identity=identity, last_message_check_time=start, last_event_check_time=start)

    # ------------------------------------------------------------------
    # Messages
    # ------------------------------------------------------------------

    def _check_messages(self, session: PollSession) -> PollSession:
        logger.info("Checking for new Teams messages...")

        outcome = self._scan_messages(session)
        if isinstance(outcome, CheckAuthFailure):
            logger.warning(
                "Unauthorized access while checking Teams messages. Attempting to re-initiate token retrieval."
            )
            try:
                self.token_manager.force_refresh()
            except AuthError as exc:
                logger.error("Token refresh failed; skipping Teams message check: %s", exc)
                return session
            outcome = self._scan_messages(session)

        if not isinstance(outcome, CheckOk):
            logger.error("Error checking Teams messages: %s (status=%s)", outcome.message, outcome.status_code)
            return session

        checked_at = self._clock()
        for chat, message in outcome.qualifying:
            kind = "Direct Message" if chat.is_one_on_one else "Chat Message with Mention"
            logger.info(
                "New %s in chat '%s' from %s: %s",
                kind, chat.topic, message.from_display_name, message.body_content,
            )
            self.notifier.notify()

        if outcome.qualifying:
            logger.info("Detected %d new relevant message(s).", len(outcome.qualifying))
        else:
            logger.info("No new relevant Teams messages detected.")
        return session.with_message_watermark(checked_at)

    def _scan_messages(self, session: PollSession) -> CheckOutcome:
        """Collect qualifying messages across all chats, oldest first within each chat."""
        identity = session.identity
        watermark = session.last_message_check_time
        assert identity is not None and watermark is not None

        qualifying: list[tuple[Chat, ChatMessage]] = []
        try:
            for chat in self.graph.list_chats():
                messages = self.graph.list_chat_messages(chat.id, top=self.message_page_size)
                for message in sorted(messages, key=lambda m: m.created_at):
                    if message_qualifies(message, chat, identity, watermark):
                        qualifying.append((chat, message))
        except UpstreamError as exc:
            if exc.is_unauthorized:
                return CheckAuthFailure(exc.status_code, exc.message)
            return CheckFailure(exc.status_code, exc.message)
        except AuthError as exc:
            return CheckFailure(None, str(exc))
        return CheckOk(qualifying)

    # ------------------------------------------------------------------
    # Calendar
    # ------------------------------------------------------------------

    def _check_events(self, session: PollSession) -> PollSession:
        # No refresh-and-retry here, unlike the message check.
        identity = session.identity
        watermark = session.last_event_check_time
        assert identity is not None and watermark is not None

        logger.info("Checking for new calendar events...")
        start, end = local_day_window(self._clock())
        try:
            events = self.graph.list_calendar_events(start, end)
        except UpstreamError as exc:
            logger.error("Error checking calendar events: %s (status=%s)", exc.message, exc.status_code)
            return session
        except GraphChimeError as exc:
            logger.error("Error checking calendar events: %s", exc)
            return session

        checked_at = self._clock()
        qualifying = [event for event in events if event_qualifies(event, identity, watermark)]
        for event in qualifying:
            logger.info(
                "New Event Invitation: '%s' from %s at %s",
                event.subject, event.organizer_name, event.start_time,
            )
            self.notifier.notify()

        if qualifying:
            logger.info("Detected %d new event invitation(s).", len(qualifying))
        else:
            logger.info("No new event invitations detected for today.")
        return session.with_event_watermark(checked_at)
