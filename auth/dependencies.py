"""
auth/dependencies.py -- FastAPI Depends() helpers for authentication and authorization.

Bearer tokens only: Authorization: Bearer <jwt>. A valid token converges on a
TokenClaims object (user id, org id, rule names); no database round-trip.

get_current_principal() raises TokenError (-> HTTP 401) on a missing or bad token.
require_rules() builds a dependency that raises HTTP 403 when a required rule
is missing or a rejected rule is present.

Layer rule: auth/dependencies.py may import from fastapi because it is part
of the dependency injection system. Nothing else in auth/ does.
"""

from __future__ import annotations

from collections.abc import Callable

from fastapi import Depends, HTTPException, Request

from auth.tokens import TokenClaims, decode_access_token
from core.errors import TokenError


def _bearer_token(request: Request) -> str | None:
    auth_header = request.headers.get("Authorization", "")
    if auth_header.startswith("Bearer "):
        return auth_header[7:].strip() or None
    return None


def get_current_principal(request: Request) -> TokenClaims:
    """Require a valid bearer token.

    Raises TokenError (missing), TokenExpiredError or TokenMalformedError; the
    app-level handler turns all three into 401.

    Use as a FastAPI dependency:
        @router.get("/protected")
        def route(principal: TokenClaims = Depends(get_current_principal)): ...
    """
    token = _bearer_token(request)
    if not token:
        raise TokenError()
    return decode_access_token(token)


def require_rules(*rules: str, reject: tuple[str, ...] = ()) -> Callable[..., TokenClaims]:
    """Build a dependency that enforces access rules on the current principal.

    Every name in `rules` must be granted; no name in `reject` may be granted.

        @router.post("/admin-only")
        def route(principal: TokenClaims = Depends(require_rules("admin"))): ...
    """

    def dependency(principal: TokenClaims = Depends(get_current_principal)) -> TokenClaims:
        for rule in rules:
            if rule not in principal.rules:
                raise HTTPException(
                    status_code=403,
                    detail={"code": "forbidden", "message": f"Access rule required: {rule}"},
                )
        for rule in reject:
            if rule in principal.rules:
                raise HTTPException(
                    status_code=403,
                    detail={"code": "forbidden", "message": f"Not allowed with access rule: {rule}"},
                )
        return principal

    return dependency
