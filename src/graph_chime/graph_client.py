"""Thin Microsoft Graph client covering the calls the update detector needs.

Every request carries the bearer header produced by ``auth_header`` (normally
``TokenManager.authorization_header``). Failures surface as ``UpstreamError``
with the HTTP status when there is one, so callers can tell a 401 apart from
everything else.
"""

from __future__ import annotations

import logging
import re
from datetime import UTC, datetime
from typing import Any, Callable

import httpx

from .errors import UpstreamError
from .models import Attendee, CalendarEvent, Chat, ChatKind, ChatMessage, Identity, ResponseStatus

logger = logging.getLogger("graph_chime.graph_client")

_FRACTION_RE = re.compile(r"\.(\d+)")
_EPOCH = datetime(1970, 1, 1, tzinfo=UTC)


def parse_graph_datetime(value: Any) -> datetime:
    """Parse a Graph timestamp into an aware UTC datetime.

    Graph emits up to seven fractional digits and a trailing ``Z``; both are
    normalized before handing off to ``datetime.fromisoformat``. Missing or
    malformed values map to the epoch so they never pass a watermark.
    """
    if not value:
        return _EPOCH
    text = str(value).strip()
    if text.endswith(("Z", "z")):
        text = text[:-1] + "+00:00"
    text = _FRACTION_RE.sub(lambda m: "." + m.group(1)[:6].ljust(6, "0"), text, count=1)
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        logger.debug("Unparseable Graph timestamp %r", value)
        return _EPOCH
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=UTC)
    return parsed.astimezone(UTC)


def _graph_window_param(value: datetime) -> str:
    return value.astimezone(UTC).strftime("%Y-%m-%dT%H:%M:%S")


class GraphClient:
    """Synchronous Graph API client built on ``httpx``."""

    def __init__(
        self,
        auth_header: Callable[[], dict[str, str]],
        base_url: str = "https://graph.microsoft.com/v1.0",
        timeout: float = 30.0,
        client: httpx.Client | None = None,
    ):
        self._auth_header = auth_header
        self._owns_client = client is None
        self._client = client or httpx.Client(base_url=base_url.rstrip("/"), timeout=timeout)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def get_me(self) -> Identity:
        payload = self._get("/me", params={"$select": "id,userPrincipalName,displayName"})
        user_id = str(payload.get("id") or "")
        principal_name = str(payload.get("userPrincipalName") or "")
        if not user_id or not principal_name:
            raise UpstreamError("Graph /me response is missing id or userPrincipalName")
        return Identity(
            id=user_id,
            principal_name=principal_name,
            display_name=str(payload.get("displayName") or ""),
        )

    def list_chats(self) -> list[Chat]:
        raw_chats = self._get_all("/me/chats", params={"$expand": "members"})
        return [self._parse_chat(raw) for raw in raw_chats]

    def list_chat_messages(self, chat_id: str, top: int = 20) -> list[ChatMessage]:
        """Most recent ``top`` messages of a chat; one page only, in whatever order Graph returns."""
        payload = self._get(f"/chats/{chat_id}/messages", params={"$top": str(top)})
        return [self._parse_message(raw) for raw in payload.get("value") or []]

    def list_calendar_events(self, start: datetime, end: datetime) -> list[CalendarEvent]:
        raw_events = self._get_all(
            "/me/calendar/calendarView",
            params={
                "startDateTime": _graph_window_param(start),
                "endDateTime": _graph_window_param(end),
                "$orderby": "createdDateTime desc",
            },
        )
        return [self._parse_event(raw) for raw in raw_events]

    def close(self) -> None:
        if self._owns_client:
            self._client.close()

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    def _get(self, url: str, params: dict[str, str] | None = None) -> dict[str, Any]:
        headers = self._auth_header()
        try:
            response = self._client.get(url, params=params, headers=headers)
        except httpx.TransportError as exc:
            raise UpstreamError(f"Graph request to {url} failed: {exc}") from exc

        if not response.is_success:
            raise UpstreamError(
                f"Graph request to {url} returned HTTP {response.status_code}: {_error_message(response)}",
                status_code=response.status_code,
            )
        try:
            payload = response.json()
        except ValueError as exc:
            raise UpstreamError(
                f"Graph response from {url} was not valid JSON", status_code=response.status_code
            ) from exc
        if not isinstance(payload, dict):
            raise UpstreamError(f"Graph response from {url} was not a JSON object", status_code=response.status_code)
        return payload

    def _get_all(self, url: str, params: dict[str, str] | None = None) -> list[dict[str, Any]]:
        """Follow ``@odata.nextLink`` until the collection is exhausted."""
        items: list[dict[str, Any]] = []
        next_url: str | None = url
        next_params = params
        while next_url:
            payload = self._get(next_url, params=next_params)
            items.extend(payload.get("value") or [])
            next_url = payload.get("@odata.nextLink")
            next_params = None  # nextLink already carries the query string
        return items

    # ------------------------------------------------------------------
    # Wire parsing
    # ------------------------------------------------------------------

    @staticmethod
    def _parse_chat(raw: dict[str, Any]) -> Chat:
        chat_type = str(raw.get("chatType") or "")
        members = []
        for member in raw.get("members") or []:
            member_id = member.get("userId") or member.get("id")
            if member_id:
                members.append(str(member_id))
        return Chat(
            id=str(raw.get("id") or ""),
            topic=str(raw.get("topic") or ""),
            kind=ChatKind.ONE_ON_ONE if chat_type.lower() == "oneonone" else ChatKind.OTHER,
            members=members,
        )

    @staticmethod
    def _parse_message(raw: dict[str, Any]) -> ChatMessage:
        sender = ((raw.get("from") or {}).get("user") or {}).get("displayName") or ""
        mentions = []
        for mention in raw.get("mentions") or []:
            user = ((mention or {}).get("mentioned") or {}).get("user") or {}
            if user.get("id"):
                mentions.append(str(user["id"]))
        return ChatMessage(
            id=str(raw.get("id") or ""),
            created_at=parse_graph_datetime(raw.get("createdDateTime")),
            from_display_name=str(sender),
            body_content=str((raw.get("body") or {}).get("content") or ""),
            mentions=mentions,
        )

    @staticmethod
    def _parse_event(raw: dict[str, Any]) -> CalendarEvent:
        attendees = []
        for attendee in raw.get("attendees") or []:
            address = ((attendee or {}).get("emailAddress") or {}).get("address") or ""
            response = ((attendee or {}).get("status") or {}).get("response")
            attendees.append(Attendee(email=str(address), response_status=ResponseStatus.parse(response)))
        organizer = ((raw.get("organizer") or {}).get("emailAddress") or {}).get("name") or ""
        return CalendarEvent(
            id=str(raw.get("id") or ""),
            created_at=parse_graph_datetime(raw.get("createdDateTime")),
            last_modified_at=parse_graph_datetime(raw.get("lastModifiedDateTime")),
            subject=str(raw.get("subject") or ""),
            organizer_name=str(organizer),
            start_time=str((raw.get("start") or {}).get("dateTime") or ""),
            attendees=attendees,
        )


def _error_message(response: httpx.Response) -> str:
    try:
        error = response.json().get("error") or {}
        return str(error.get("message") or error.get("code") or response.text[:200])
    except (ValueError, AttributeError):
        return response.text[:200]
