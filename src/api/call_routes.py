"""Call Action API: client-driven call control and session inspection."""

from __future__ import annotations

from fastapi import APIRouter, Depends

from api.dependencies import get_call_actions
from api.schemas import (
    ActiveCallsResponse,
    CallAnswerRequest,
    CallSdpResponse,
    CallSessionResponse,
    MakeCallRequest,
    MakeCallResponse,
    PermissionRequest,
    PermissionResponse,
    SuccessResponse,
    TerminateCallRequest,
)
from calls.actions import CallActions
from config.settings import get_settings

router = APIRouter(tags=["calls"])


@router.post("/make-call", response_model=MakeCallResponse)
async def make_call(
    payload: MakeCallRequest,
    actions: CallActions = Depends(get_call_actions),
) -> MakeCallResponse:
    call_id = await actions.make_call(payload.to, payload.sdp_offer, payload.tracking_data)
    return MakeCallResponse(call_id=call_id)


@router.post("/preaccept-call", response_model=SuccessResponse)
async def preaccept_call(
    payload: CallAnswerRequest,
    actions: CallActions = Depends(get_call_actions),
) -> SuccessResponse:
    await actions.pre_accept(payload.call_id, payload.sdp)
    return SuccessResponse()


@router.post("/accept-call", response_model=SuccessResponse)
async def accept_call(
    payload: CallAnswerRequest,
    actions: CallActions = Depends(get_call_actions),
) -> SuccessResponse:
    await actions.accept(payload.call_id, payload.sdp)
    return SuccessResponse()


@router.post("/terminate-call", response_model=SuccessResponse)
async def terminate_call(
    payload: TerminateCallRequest,
    actions: CallActions = Depends(get_call_actions),
) -> SuccessResponse:
    await actions.terminate(payload.call_id)
    return SuccessResponse()


@router.post("/request-permission", response_model=PermissionResponse)
async def request_permission(
    payload: PermissionRequest,
    actions: CallActions = Depends(get_call_actions),
) -> PermissionResponse:
    body_text = payload.body_text or get_settings().permission_request_text
    message_id = await actions.request_call_permission(payload.to, body_text)
    return PermissionResponse(message_id=message_id)


@router.get("/calls", response_model=ActiveCallsResponse)
async def list_calls(actions: CallActions = Depends(get_call_actions)) -> ActiveCallsResponse:
    sessions = actions.list_active()
    return ActiveCallsResponse(
        active_calls=[CallSessionResponse.from_session(session) for session in sessions],
        total_count=len(sessions),
    )


@router.get("/call-sdp/{call_id}", response_model=CallSdpResponse)
async def get_call_sdp(
    call_id: str,
    actions: CallActions = Depends(get_call_actions),
) -> CallSdpResponse:
    sdp, sdp_type = actions.remote_sdp(call_id)
    return CallSdpResponse(call_id=call_id, sdp=sdp, sdp_type=sdp_type)
