# automation_server/auth.py
import hmac
import os
from typing import Optional

from fastapi import Header, HTTPException, status

API_KEY_HEADER = "X-API-Key"
BEARER_PREFIX = "bearer "


def get_api_key() -> Optional[str]:
    """Shared secret for the HTTP surface; unset means development mode."""
    return os.getenv("API_KEY") or None


def extract_credential(api_key: Optional[str], authorization: Optional[str]) -> Optional[str]:
    """The dashboard sends ``Authorization: Bearer``; scripts send ``X-API-Key``."""
    if api_key:
        return api_key.strip()
    if authorization and authorization.lower().startswith(BEARER_PREFIX):
        return authorization[len(BEARER_PREFIX):].strip() or None
    return None


def verify_api_key(
    api_key: Optional[str] = Header(None, alias=API_KEY_HEADER),
    authorization: Optional[str] = Header(None),
) -> str:
    """
    Check the caller's credential against API_KEY.

    Raises:
        HTTPException: 401 when no credential is sent, 403 when it does not match
    """
    expected = get_api_key()
    if expected is None:
        return ""

    provided = extract_credential(api_key, authorization)
    if provided is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=f"Missing {API_KEY_HEADER} header or bearer token",
            headers={"WWW-Authenticate": "Bearer"},
        )

    if not hmac.compare_digest(provided.encode(), expected.encode()):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Invalid API key")

    return provided
