"""OAuth redirect target for the social login flow.

Independent of call signaling; it only shares configuration.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException

from api.dependencies import get_oauth_client
from api.schemas import OAuthCallbackResponse
from integrations.oauth_client import OAuthClient

router = APIRouter(prefix="/auth", tags=["auth"])


@router.get("/callback", response_model=OAuthCallbackResponse)
async def oauth_callback(
    code: str | None = None,
    state: str | None = None,
    error: str | None = None,
    error_description: str | None = None,
    oauth: OAuthClient = Depends(get_oauth_client),
) -> OAuthCallbackResponse:
    if error:
        raise HTTPException(status_code=400, detail=error_description or error)
    if not code:
        raise HTTPException(status_code=400, detail="Missing authorization code.")

    tokens = await oauth.exchange_code(code)
    return OAuthCallbackResponse(
        state=state,
        access_token=tokens.access_token,
        token_type=tokens.token_type,
        expires_in=tokens.expires_in,
    )
