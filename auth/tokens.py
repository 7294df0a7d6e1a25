"""
auth/tokens.py -- Bearer token issuance and validation.

Security design decisions:
  JWT: python-jose with HS256. Tokens are signed with SECRET_KEY and carry
       the user id (sub), the user's organization id (org_id), the granted
       access rule names (rules) and the expiry (exp). Default validity is
       TOKEN_EXPIRE_SECONDS (12 hours).

  Validation raises rather than returning None so the API layer can tell an
       expired token from a forged or garbled one. Both map to 401.

  Tokens are stateless: there is no revocation list, so logout only tells the
       client to drop its copy.

Layer rule: no imports from api/. Import from core/ is allowed.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Iterable

from jose import ExpiredSignatureError, JWTError, jwt

from core.config import get_settings
from core.errors import TokenExpiredError, TokenMalformedError

logger = logging.getLogger("orgauth.tokens")

# ---------------------------------------------------------------------------
# Config -- read once at module load via the lru_cache singleton
# ---------------------------------------------------------------------------

_settings = get_settings()

_ALGORITHM = "HS256"


@dataclass(frozen=True)
class TokenClaims:
    """Identity carried by a bearer token."""

    user_id: str
    org_id: str
    rules: frozenset[str] = field(default_factory=frozenset)


def create_access_token(user_id: str, org_id: str, rules: Iterable[str], expire_seconds: int = 0) -> str:
    """Encode a signed JWT for (user_id, org_id, rules).

    Args:
        user_id:        Account id, stored as the subject claim.
        org_id:         Organization the account belongs to.
        rules:          Access rule names granted to the account.
        expire_seconds: Validity window. 0 (default) uses
                        Settings.token_expire_seconds.
    """
    duration = expire_seconds if expire_seconds > 0 else _settings.token_expire_seconds
    expire = datetime.now(timezone.utc) + timedelta(seconds=duration)
    payload = {
        "sub": user_id,
        "org_id": org_id,
        "rules": sorted(set(rules)),
        "exp": expire,
    }
    return jwt.encode(payload, _settings.secret_key, algorithm=_ALGORITHM)


def decode_access_token(token: str) -> TokenClaims:
    """Verify a JWT and return its claims.

    Raises TokenExpiredError when the signature is valid but exp has passed,
    and TokenMalformedError for anything else (bad signature, wrong shape).
    """
    try:
        payload = jwt.decode(token, _settings.secret_key, algorithms=[_ALGORITHM])
    except ExpiredSignatureError as exc:
        raise TokenExpiredError() from exc
    except JWTError as exc:
        raise TokenMalformedError() from exc

    user_id = payload.get("sub")
    org_id = payload.get("org_id")
    rules = payload.get("rules", [])
    if not isinstance(user_id, str) or not isinstance(org_id, str) or not isinstance(rules, list):
        logger.info("Rejected token with unexpected claim shape")
        raise TokenMalformedError()
    return TokenClaims(user_id=user_id, org_id=org_id, rules=frozenset(str(r) for r in rules))
