"""
api/routes/v1/auth.py -- Verification code, registration, login and token endpoints.

Routes:
  POST /api/v1/auth/code             -- issue a verification code (202; 429 while one is live)
  POST /api/v1/auth/register         -- verify a Register code, then create user + org (201)
  POST /api/v1/auth/login            -- password login by username or phone; returns a bearer token
  POST /api/v1/auth/change-password  -- verify a ChangePassword code, then reset the password
  POST /api/v1/auth/logout           -- stateless acknowledgement; the client drops its token
  POST /api/v1/auth/refresh-token    -- re-issue a token for the presented token's claims
  GET  /api/v1/auth/ping             -- 200 with the token's claims if the token is valid
  POST /api/v1/auth/users/{username}/rules -- grant access rules (requires the admin rule)

Error mapping:
  Classified ServiceErrors propagate to the handlers in api/main.py. The only
  local translation is for code verification inside register and
  change-password: any code failure there is a 400, since the caller sent a
  bad form rather than asked for a missing resource.

Security:
  Cache-Control: no-store on every response that carries a token.
  Handlers are plain `def` so FastAPI runs each request on a worker thread;
  storage calls block that worker only.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Request, Response

from api.models import (
    AccountResponse,
    AuthInfo,
    ChangePasswordRequest,
    CodeRequest,
    GrantRulesRequest,
    LoginRequest,
    MessageResponse,
    PrincipalResponse,
    RegisterRequest,
    TokenResponse,
)
from auth.dependencies import get_current_principal, require_rules
from auth.models import Purpose
from auth.rules import RULE_ADMIN
from auth.service import AuthServices
from auth.tokens import TokenClaims, create_access_token
from core.config import get_settings
from core.errors import CodeNotFoundError, CredentialError

# Auth policy:
# - POST /api/v1/auth/code, /register, /login, /change-password, /logout: public
# - POST /api/v1/auth/refresh-token, GET /api/v1/auth/ping: bearer token required
# - POST /api/v1/auth/users/{username}/rules: bearer token with the admin rule
router = APIRouter()


def _services(request: Request) -> AuthServices:
    return request.app.state.services


def _verify_or_400(services: AuthServices, phone: str, purpose: Purpose, code: str) -> None:
    try:
        services.codes.verify(phone, purpose, code)
    except (CodeNotFoundError, CredentialError) as exc:
        raise HTTPException(
            status_code=400,
            detail={"code": exc.code, "message": exc.message},
        ) from exc


# ---------------------------------------------------------------------------
# Public endpoints
# ---------------------------------------------------------------------------


@router.post("/auth/code", status_code=202, response_model=MessageResponse)
def issue_code(request: Request, body: CodeRequest) -> MessageResponse:
    """Send a verification code to a phone for the given purpose.

    429 while the previous code for the same (phone, purpose) is still live.
    """
    _services(request).codes.issue(body.phone, body.typ)
    return MessageResponse(message="Verification code sent.")


@router.post("/auth/register", status_code=201, response_model=AccountResponse)
def register(request: Request, body: RegisterRequest) -> AccountResponse:
    """Consume a Register code and create the account with its own organization."""
    services = _services(request)
    _verify_or_400(services, body.phone, Purpose.register, body.code)
    user = services.registrar.register(body.username, body.phone, body.password)
    return AccountResponse.from_user(user)


@router.post("/auth/login", response_model=AuthInfo)
def login(request: Request, body: LoginRequest, response: Response) -> AuthInfo:
    """Authenticate with username-or-phone and password; return a bearer token."""
    user, rules = _services(request).login.login(body.username_or_phone, body.password)
    token = create_access_token(user.id, user.org_id, rules)
    response.headers["Cache-Control"] = "no-store"
    return AuthInfo.from_login(token, get_settings().token_expire_seconds, user, rules)


@router.post("/auth/change-password", response_model=MessageResponse)
def change_password(request: Request, body: ChangePasswordRequest) -> MessageResponse:
    """Consume a ChangePassword code and replace the account password."""
    services = _services(request)
    _verify_or_400(services, body.phone, Purpose.change_password, body.code)
    services.password_reset.reset_password(body.phone, body.new_password)
    return MessageResponse(message="Password changed.")


@router.post("/auth/logout", response_model=MessageResponse)
def logout() -> MessageResponse:
    """Tokens are stateless, so there is nothing to revoke server-side."""
    return MessageResponse(message="Logged out.")


# ---------------------------------------------------------------------------
# Authenticated endpoints
# ---------------------------------------------------------------------------


@router.post("/auth/refresh-token", response_model=TokenResponse)
def refresh_token(response: Response, principal: TokenClaims = Depends(get_current_principal)) -> TokenResponse:
    """Issue a fresh token carrying the same claims as the presented one."""
    token = create_access_token(principal.user_id, principal.org_id, principal.rules)
    response.headers["Cache-Control"] = "no-store"
    return TokenResponse(token=token, expires_in=get_settings().token_expire_seconds)


@router.get("/auth/ping", response_model=PrincipalResponse)
def ping(principal: TokenClaims = Depends(get_current_principal)) -> PrincipalResponse:
    return PrincipalResponse(user_id=principal.user_id, org_id=principal.org_id, rules=sorted(principal.rules))


# ---------------------------------------------------------------------------
# Access rule management (admin rule required)
# ---------------------------------------------------------------------------


@router.post("/auth/users/{username}/rules", response_model=MessageResponse)
def grant_rules(
    request: Request,
    username: str,
    body: GrantRulesRequest,
    principal: TokenClaims = Depends(require_rules(RULE_ADMIN)),
) -> MessageResponse:
    """Grant access rules to a user. 404 for an unknown user or rule name.

    Rules are copied into tokens at login, so the user sees them after the
    next login or token refresh.
    """
    _services(request).rules.grant(username, *body.rules)
    return MessageResponse(message=f"Granted {', '.join(body.rules)} to {username}.")
