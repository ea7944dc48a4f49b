from __future__ import annotations

from typing import Annotated

from authx import RequestToken, TokenPayload
from fastapi import Depends, HTTPException, Request

from sitemigrate.app.dependencies import AppDependencies
from sitemigrate.core.security import auth


def get_deps(request: Request) -> AppDependencies:
    return request.app.state.deps


async def get_current_payload(request: Request) -> TokenPayload:
    """
    Resolve the current access-token payload.

    Accepts:
    - Authorization: Bearer <access_token>
    - token query param (AuthX compatible, used by plain download links)

    Always returns 401 (not 422) when token is missing/invalid.
    """
    token: RequestToken | None = None
    try:
        token = await auth.get_access_token_from_request(request)
    except Exception:
        # Fall back to explicit header parsing.
        auth_header = request.headers.get("Authorization") or ""
        if auth_header.startswith("Bearer "):
            raw = auth_header.split(" ", 1)[1].strip()
            if raw:
                token = RequestToken(token=raw, location="headers")

    if token is None:
        raise HTTPException(status_code=401, detail="Missing access token")

    try:
        return auth.verify_token(token, verify_type=True, verify_csrf=False)
    except Exception:
        raise HTTPException(status_code=401, detail="Invalid access token")


AuthRequired = Annotated[TokenPayload, Depends(get_current_payload)]
DepsDep = Annotated[AppDependencies, Depends(get_deps)]
