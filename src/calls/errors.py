"""Domain-specific exceptions for call relay operations.

Every class carries the HTTP status the API layer renders it with. Only the
signaling client raises the ``RemoteServiceError`` family; the session store
and fan-out never raise.
"""

from __future__ import annotations

from typing import Any


class RelayError(Exception):
    status_code: int = 500
    default_detail: str = "Call relay error"

    def __init__(self, detail: str | None = None) -> None:
        super().__init__(detail or self.default_detail)
        self.detail = detail or self.default_detail

    def to_payload(self) -> dict[str, Any]:
        return {"success": False, "error": self.detail}


class CallValidationError(RelayError):
    status_code = 400
    default_detail = "Invalid call request."


class CallNotFoundError(RelayError):
    status_code = 404
    default_detail = "Call not found."


class StaleEventError(RelayError):
    """Webhook event for a call that is unknown or already terminated.

    Logged and discarded by the dispatcher, never rendered to a client.
    """

    default_detail = "Stale call event."


class RemoteServiceError(RelayError):
    status_code = 500
    default_detail = "Calling platform request failed."

    def __init__(
        self,
        detail: str | None = None,
        *,
        status: int | None = None,
        body: Any = None,
    ) -> None:
        super().__init__(detail)
        self.status = status
        self.body = body

    def to_payload(self) -> dict[str, Any]:
        payload = super().to_payload()
        if self.status is not None:
            payload["remote_status"] = self.status
        if self.body is not None:
            payload["remote_body"] = self.body
        return payload


class AuthError(RemoteServiceError):
    default_detail = "Calling platform rejected the access token."


class NetworkError(RemoteServiceError):
    default_detail = "Calling platform is unreachable."


class PermissionDeniedError(RemoteServiceError):
    """Recipient has not granted call permission to the business number."""

    status_code = 403
    default_detail = "Recipient has not granted call permission."

    def __init__(
        self,
        detail: str | None = None,
        *,
        code: int,
        status: int | None = None,
        body: Any = None,
    ) -> None:
        super().__init__(detail, status=status, body=body)
        self.code = code

    def to_payload(self) -> dict[str, Any]:
        payload = super().to_payload()
        payload["code"] = self.code
        return payload
