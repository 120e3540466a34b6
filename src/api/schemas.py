"""API-facing Pydantic models."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field

from calls.models import CallSession

# Request fields are optional so that a missing field reaches the action layer
# and is reported as a 400 naming the field.


class MakeCallRequest(BaseModel):
    to: str | None = Field(default=None, description="Recipient phone number (WhatsApp id).")
    sdp_offer: str | None = None
    tracking_data: str | None = Field(
        default=None,
        description="Opaque correlation token echoed back by the platform.",
    )


class MakeCallResponse(BaseModel):
    success: bool = True
    call_id: str


class CallAnswerRequest(BaseModel):
    call_id: str | None = None
    sdp: str | None = None


class TerminateCallRequest(BaseModel):
    call_id: str | None = None


class PermissionRequest(BaseModel):
    to: str | None = None
    body_text: str | None = None


class SuccessResponse(BaseModel):
    success: bool = True


class PermissionResponse(BaseModel):
    success: bool = True
    message_id: str | None = None


class CallSessionResponse(BaseModel):
    call_id: str
    direction: str
    state: str
    peer: str | None = None
    tracking_data: str | None = None
    has_sdp_offer: bool
    has_sdp_answer: bool
    created_at: datetime
    last_updated: datetime

    @classmethod
    def from_session(cls, session: CallSession) -> CallSessionResponse:
        return cls(
            call_id=session.call_id,
            direction=session.direction.value,
            state=session.state.value,
            peer=session.peer,
            tracking_data=session.tracking_data,
            has_sdp_offer=session.sdp_offer is not None,
            has_sdp_answer=session.sdp_answer is not None,
            created_at=session.created_at,
            last_updated=session.last_updated,
        )


class ActiveCallsResponse(BaseModel):
    active_calls: list[CallSessionResponse]
    total_count: int


class CallSdpResponse(BaseModel):
    call_id: str
    sdp: str
    sdp_type: str


class OAuthCallbackResponse(BaseModel):
    success: bool = True
    state: str | None = None
    access_token: str
    token_type: str | None = None
    expires_in: int | None = None


class RecordingUploadResponse(BaseModel):
    success: bool = True
    call_id: str
    filename: str
    size_bytes: int
