import pytest
from leaps.models.user import Role


@pytest.mark.asyncio
async def test_health_reports_database(client):
    r = await client.get("/health")
    assert r.status_code == 200
    data = r.json()
    assert data["status"] == "ok"
    assert data["database"] == "ok"
    assert r.headers["X-Request-ID"] == data["request_id"]


@pytest.mark.asyncio
async def test_health_echoes_request_id(client):
    r = await client.get("/health", headers={"x-request-id": "abc-123"})
    assert r.json()["request_id"] == "abc-123"
    assert r.headers["X-Request-ID"] == "abc-123"


@pytest.mark.asyncio
async def test_version_names_the_service(client):
    r = await client.get("/version")
    assert r.status_code == 200
    assert r.json()["name"] == "leaps-api"
    assert set(r.json()) == {"name", "version", "git_sha"}


@pytest.mark.asyncio
async def test_domain_errors_render_code_and_details(client, make_user, auth_header):
    admin = await make_user(Role.ADMIN)
    missing = "00000000-0000-0000-0000-000000000000"
    r = await client.patch(f"/admin/users/{missing}", json={"cohort": "x"}, headers=auth_header(admin))
    assert r.status_code == 404
    assert r.json() == {"detail": "User not found", "code": "NOT_FOUND", "user_id": missing}
