"""
tests/test_dependencies.py -- Bearer-token and access-rule dependencies.

require_rules() is mounted on a throwaway FastAPI app so both the required
and the rejected branches are exercised without touching the real routers.
"""

from __future__ import annotations

import pytest
from fastapi import Depends, FastAPI
from fastapi.testclient import TestClient

from auth.dependencies import require_rules
from auth.rules import RULE_ADMIN, RULE_WORKER
from auth.tokens import TokenClaims, create_access_token


@pytest.fixture(scope="module")
def rules_client() -> TestClient:
    app = FastAPI()

    @app.get("/workers-only")
    def workers_only(principal: TokenClaims = Depends(require_rules(RULE_WORKER))) -> dict:
        return {"user_id": principal.user_id}

    @app.get("/no-admins")
    def no_admins(principal: TokenClaims = Depends(require_rules(reject=(RULE_ADMIN,)))) -> dict:
        return {"user_id": principal.user_id}

    return TestClient(app)


def _auth(*rules: str) -> dict[str, str]:
    token = create_access_token("user-1", "org-1", rules, expire_seconds=300)
    return {"Authorization": f"Bearer {token}"}


def test_rejected_rule_is_forbidden(rules_client: TestClient) -> None:
    resp = rules_client.get("/no-admins", headers=_auth(RULE_ADMIN))
    assert resp.status_code == 403
    assert resp.json()["detail"]["code"] == "forbidden"


def test_without_rejected_rule_is_allowed(rules_client: TestClient) -> None:
    resp = rules_client.get("/no-admins", headers=_auth(RULE_WORKER))
    assert resp.status_code == 200
    assert resp.json() == {"user_id": "user-1"}


def test_plain_token_passes_reject_only_guard(rules_client: TestClient) -> None:
    assert rules_client.get("/no-admins", headers=_auth()).status_code == 200


def test_missing_required_rule_is_forbidden(rules_client: TestClient) -> None:
    resp = rules_client.get("/workers-only", headers=_auth(RULE_ADMIN))
    assert resp.status_code == 403


def test_required_rule_present(rules_client: TestClient) -> None:
    assert rules_client.get("/workers-only", headers=_auth(RULE_WORKER, RULE_ADMIN)).status_code == 200
