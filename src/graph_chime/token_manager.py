"""Refresh-token based access token lifecycle.

The manager exchanges a refresh token for a fresh token set at the identity
provider's ``/common/oauth2/v2.0/token`` endpoint. It never tracks expiry:
staleness is discovered by callers through a 401 from Graph, after which they
call ``force_refresh()``.
"""

from __future__ import annotations

import json
import logging
import time
from typing import Callable

import httpx

from .config import ChimeSettings
from .errors import AuthError
from .models import TokenSet

logger = logging.getLogger("graph_chime.token_manager")

_TOKEN_PATH = "/common/oauth2/v2.0/token"
_RETRYABLE_STATUSES = {404, 408}


def _is_transient(response: httpx.Response) -> bool:
    return response.status_code >= 500 or response.status_code in _RETRYABLE_STATUSES


class TokenManager:
    """Owns the current TokenSet and performs refresh-token exchanges."""

    def __init__(
        self,
        settings: ChimeSettings,
        client: httpx.Client | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.settings = settings
        self._owns_client = client is None
        headers = {"Origin": settings.origin} if settings.origin else {}
        self._client = client or httpx.Client(
            base_url=settings.login_base_url,
            headers=headers,
            timeout=settings.http_timeout_seconds,
        )
        self._sleep = sleep
        self._token_set: TokenSet | None = None

    @property
    def token_set(self) -> TokenSet | None:
        return self._token_set

    def ensure_token(self) -> TokenSet:
        """Return the current token set, exchanging first if there is none yet."""
        if self._token_set is None:
            return self.force_refresh()
        return self._token_set

    def force_refresh(self) -> TokenSet:
        """Exchange the current (or bootstrap) refresh token for a new token set."""
        logger.info("Initiating token retrieval for Graph API...")
        previous = self._token_set
        refresh_token = (previous.refresh_token if previous else "") or self.settings.refresh_token
        if not refresh_token:
            raise AuthError("No refresh token available; set graph_chime_refresh_token")

        token_set = self._exchange(refresh_token)
        if not token_set.refresh_token:
            # The endpoint may omit a rotated token; keep using the one we sent.
            token_set.refresh_token = refresh_token
        self._token_set = token_set
        logger.info("Access token successfully retrieved and set for Graph API.")
        return token_set

    def authorization_header(self) -> dict[str, str]:
        token_set = self.ensure_token()
        return {"Authorization": f"Bearer {token_set.access_token}"}

    def close(self) -> None:
        if self._owns_client:
            self._client.close()

    def _exchange(self, refresh_token: str) -> TokenSet:
        params = {"client-request-id": self.settings.client_request_id}
        form = self.settings.token_form_fields(refresh_token)
        response = self._post_with_retry(params, form)

        if not response.is_success:
            raise AuthError(
                f"Token endpoint returned HTTP {response.status_code}: {response.text[:200]}"
            )
        try:
            payload = response.json()
        except (json.JSONDecodeError, ValueError) as exc:
            raise AuthError(f"Token endpoint returned unparseable JSON: {exc}") from exc
        if not isinstance(payload, dict):
            raise AuthError("Token endpoint returned a non-object JSON body")

        token_set = TokenSet.from_response(payload)
        if not token_set.access_token:
            raise AuthError("Token endpoint response did not contain an access token")
        return token_set

    def _post_with_retry(self, params: dict[str, str], form: dict[str, str]) -> httpx.Response:
        """POST the form, retrying transport errors, 5xx, 408 and 404 with exponential backoff."""
        attempt = 0
        while True:
            try:
                response = self._client.post(_TOKEN_PATH, params=params, data=form)
            except httpx.TransportError as exc:
                if attempt >= self.settings.retry_attempts:
                    raise AuthError(f"Token request failed: {exc}") from exc
            else:
                if not _is_transient(response) or attempt >= self.settings.retry_attempts:
                    return response

            attempt += 1
            delay = 2 ** attempt
            logger.warning("Delaying for %dms, then making retry %d.", delay * 1000, attempt)
            self._sleep(delay)
