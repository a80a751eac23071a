from __future__ import annotations

from fastapi import HTTPException, Request

from .settings import settings

API_KEY_HEADER = "x-api-key"


def api_key_from_request(request: Request) -> str | None:
    token = request.headers.get(API_KEY_HEADER, "").strip()
    return token or None


def require_api_key(request: Request) -> str:
    """FastAPI dependency: the caller's key, or 401 when it is missing or unknown."""
    token = api_key_from_request(request)
    if token is None or token not in settings.api_key_set():
        raise HTTPException(
            status_code=401,
            detail={
                "error": "Invalid or missing API key",
                "message": f"Send a valid key in the {API_KEY_HEADER} header",
            },
        )
    return token
