"""
Tests for error rendering and caller identity resolution.
"""

import pytest
from fastapi import Depends, FastAPI, HTTPException
from fastapi.testclient import TestClient

from marketplace.models.user import UserRole
from marketplace.platform.caller_context import CallerContext, get_caller_context, require_role
from marketplace.platform.errors import (
    BadRequestError,
    ConflictError,
    ForbiddenError,
    NotFoundError,
    PreconditionFailedError,
    register_error_handling,
)


@pytest.fixture
def client():
    app = FastAPI()
    register_error_handling(app)

    @app.get("/not-found")
    async def not_found():
        raise NotFoundError("Request", "req-1")

    @app.get("/precondition")
    async def precondition():
        raise PreconditionFailedError("Insufficient credits", details={"reason": "insufficient_credits"})

    @app.get("/http")
    async def http_error():
        raise HTTPException(status_code=418, detail="teapot")

    @app.get("/boom")
    async def boom():
        raise RuntimeError("secret internals")

    @app.get("/whoami")
    async def whoami(caller: CallerContext = Depends(get_caller_context)):
        return {"user_id": caller.user_id, "role": caller.role.value}

    @app.get("/providers-only")
    async def providers_only(caller: CallerContext = Depends(require_role(UserRole.PROVIDER))):
        return {"ok": True}

    return TestClient(app, raise_server_exceptions=False)


class TestErrorShape:

    def test_app_error_codes(self):
        assert NotFoundError("Package").status_code == 404
        assert ForbiddenError().code == "FORBIDDEN"
        assert ConflictError("dup").status_code == 409
        assert PreconditionFailedError("no").status_code == 412
        assert BadRequestError("bad").to_dict() == {
            "error": {"code": "BAD_REQUEST", "message": "bad", "details": {}}
        }

    def test_not_found_rendered(self, client):
        response = client.get("/not-found")

        assert response.status_code == 404
        assert response.json()["error"] == {
            "code": "NOT_FOUND",
            "message": "Request with id 'req-1' not found",
            "details": {},
        }
        assert response.headers["X-Correlation-ID"]

    def test_details_passed_through(self, client):
        response = client.get("/precondition")
        assert response.status_code == 412
        assert response.json()["error"]["details"] == {"reason": "insufficient_credits"}

    def test_correlation_id_echoed(self, client):
        response = client.get("/not-found", headers={"X-Correlation-ID": "corr-42"})
        assert response.headers["X-Correlation-ID"] == "corr-42"

    def test_unhandled_error_hides_internals(self, client):
        response = client.get("/boom")

        assert response.status_code == 500
        body = response.json()
        assert body["error"]["code"] == "INTERNAL_ERROR"
        assert "secret internals" not in response.text

    def test_http_exception(self, client):
        response = client.get("/http")
        assert response.status_code == 418


class TestCallerContext:

    def test_headers_resolve_identity(self, client):
        response = client.get("/whoami", headers={"X-User-Id": "u-1", "X-User-Role": "client"})
        assert response.json() == {"user_id": "u-1", "role": "CLIENT"}

    def test_missing_identity_is_401(self, client):
        response = client.get("/whoami")
        assert response.status_code == 401
        assert response.json()["error"]["code"] == "UNAUTHORIZED"

    def test_unknown_role_is_401(self, client):
        response = client.get("/whoami", headers={"X-User-Id": "u-1", "X-User-Role": "wizard"})
        assert response.status_code == 401

    def test_wrong_role_is_403(self, client):
        response = client.get("/providers-only", headers={"X-User-Id": "u-1", "X-User-Role": "CLIENT"})
        assert response.status_code == 403
        assert response.json()["error"]["message"] == "This action requires role: provider"

    def test_admin_always_admitted(self, client):
        response = client.get("/providers-only", headers={"X-User-Id": "a-1", "X-User-Role": "SUPER_ADMIN"})
        assert response.status_code == 200
