from __future__ import annotations

import hmac

from fastapi import HTTPException, Request, status

from app.core.config import get_settings


async def require_api_key(request: Request) -> None:
    """Guard operator endpoints with the static ``ADMIN_API_KEY``.

    The endpoints stay disabled (404) until a key is configured.
    """

    expected = get_settings().admin_api_key
    if not expected:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Not Found")
    api_key_value = request.headers.get("x-api-key")
    if not api_key_value:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="API key required")
    if not hmac.compare_digest(api_key_value, expected):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Invalid API key")
