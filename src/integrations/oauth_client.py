"""OAuth authorization-code exchange for the social login flow."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

import httpx

from calls.errors import AuthError, NetworkError, RemoteServiceError
from config.settings import get_settings

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class OAuthTokens:
    access_token: str
    token_type: str | None = None
    expires_in: int | None = None


class OAuthClient:
    def __init__(
        self,
        *,
        client_id: str | None,
        client_secret: str | None,
        token_url: str,
        redirect_uri: str | None,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._client_id = client_id
        self._client_secret = client_secret
        self._token_url = token_url
        self._redirect_uri = redirect_uri
        self._timeout = timeout
        self._transport = transport

    async def exchange_code(self, code: str) -> OAuthTokens:
        if not self._client_id or not self._client_secret:
            raise AuthError("OAuth client credentials are not configured.")

        form: dict[str, Any] = {
            "grant_type": "authorization_code",
            "client_id": self._client_id,
            "client_secret": self._client_secret,
            "code": code,
        }
        if self._redirect_uri:
            form["redirect_uri"] = self._redirect_uri

        try:
            async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
                response = await client.post(self._token_url, data=form)
        except httpx.HTTPError as exc:
            raise NetworkError(f"OAuth token endpoint unreachable: {exc}") from exc

        try:
            body: Any = response.json()
        except ValueError:
            body = response.text

        if not response.is_success:
            LOGGER.error("OAuth code exchange failed with HTTP %s", response.status_code)
            raise RemoteServiceError("OAuth code exchange failed.", status=response.status_code, body=body)
        if not isinstance(body, dict) or not body.get("access_token"):
            raise RemoteServiceError("OAuth response contains no access token.", status=response.status_code)

        expires_in = body.get("expires_in")
        return OAuthTokens(
            access_token=str(body["access_token"]),
            token_type=body.get("token_type"),
            expires_in=int(expires_in) if expires_in is not None else None,
        )


def build_oauth_client() -> OAuthClient:
    settings = get_settings()
    return OAuthClient(
        client_id=settings.oauth_client_id,
        client_secret=settings.oauth_client_secret,
        token_url=settings.oauth_token_url,
        redirect_uri=settings.oauth_redirect_uri,
        timeout=settings.whatsapp_request_timeout,
    )
