import pytest
from fastapi import Depends, FastAPI
from httpx import ASGITransport, AsyncClient

from carechat.infra.auth import AuthenticatedUser, get_current_user
from carechat.infra.jwt import issue_access
from carechat.obs import logging as obs_logging
from carechat.obs.middleware import ObservabilityMiddleware


def _context_app():
    app = FastAPI()
    app.add_middleware(ObservabilityMiddleware)

    @app.get("/open")
    async def open_route():
        return obs_logging.current_context()

    @app.get("/me")
    async def me_route(user: AuthenticatedUser = Depends(get_current_user)):
        return obs_logging.current_context()

    return app


@pytest.mark.asyncio
async def test_log_context_ignores_unverified_user_header():
    transport = ASGITransport(app=_context_app())
    async with AsyncClient(transport=transport, base_url="http://testserver") as client:
        resp = await client.get("/open", headers={"X-User-Id": "mallory"})
    assert resp.status_code == 200
    context = resp.json()
    assert context["route"] == "/open"
    assert "user_id" not in context


@pytest.mark.asyncio
async def test_log_context_carries_resolved_identity():
    token = issue_access("alice")
    transport = ASGITransport(app=_context_app())
    async with AsyncClient(transport=transport, base_url="http://testserver") as client:
        resp = await client.get("/me", headers={"Authorization": f"Bearer {token}", "X-User-Id": "mallory"})
    assert resp.status_code == 200
    assert resp.json()["user_id"] == "alice"
