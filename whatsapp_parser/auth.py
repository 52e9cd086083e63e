"""Caller checks for the parser API: shared key on x-api-key, acting business on x-user-id."""

from fastapi import Header, HTTPException, Security, status
from fastapi.security import APIKeyHeader

from whatsapp_parser import config

API_KEY_NAME = "x-api-key"
api_key_header = APIKeyHeader(name=API_KEY_NAME, auto_error=False)


async def verify_api_key(api_key: str = Security(api_key_header)) -> str:
    """401 unless x-api-key carries the parser API key."""
    if not api_key:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="WhatsApp parser API requires an 'x-api-key' header.",
        )
    if api_key != config.API_KEY:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="x-api-key is not valid for the WhatsApp parser API.",
        )
    return api_key


async def current_user_id(x_user_id: str = Header(default="")) -> str:
    """The acting business owner; every read and correction is scoped to it."""
    if not x_user_id.strip():
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Missing 'x-user-id' header.",
        )
    return x_user_id.strip()
