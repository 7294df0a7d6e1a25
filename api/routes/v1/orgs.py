"""
api/routes/v1/orgs.py -- Organization endpoints.

Routes:
  GET /api/v1/orgs -- the organization of the authenticated account

The org id comes from the bearer token, not from the request, so an account
can only read its own organization.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request

from api.models import OrgInfoResponse
from auth.dependencies import get_current_principal
from auth.tokens import TokenClaims

router = APIRouter()


@router.get("/orgs", response_model=OrgInfoResponse)
def get_my_org(request: Request, principal: TokenClaims = Depends(get_current_principal)) -> OrgInfoResponse:
    """Return id, name and owner of the caller's organization. 404 if it no longer exists."""
    info = request.app.state.services.orgs.get_org(principal.org_id)
    return OrgInfoResponse.from_info(info)
