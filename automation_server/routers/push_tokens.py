# automation_server/routers/push_tokens.py
from typing import cast

from fastapi import APIRouter, Depends, HTTPException, status

from automation_server.auth import verify_api_key
from automation_server.schemas.push import PushTokenRequest, PushTokenResponse
from automation_server.services import notifications

router = APIRouter()


@router.post("/push-tokens", response_model=PushTokenResponse, status_code=status.HTTP_201_CREATED)
def register_push_token(request: PushTokenRequest, api_key: str = Depends(verify_api_key)):
    """Register or refresh a device token."""
    row = notifications.register_token(request.token, owner=request.owner)
    return PushTokenResponse(token=cast(str, row.token), owner=cast(str | None, row.owner))


@router.delete("/push-tokens/{token}", status_code=status.HTTP_204_NO_CONTENT)
def unregister_push_token(token: str, api_key: str = Depends(verify_api_key)):
    """Remove a device token."""
    if not notifications.unregister_token(token):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Push token not found")
