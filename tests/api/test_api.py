"""HTTP tests: authentication boundary, error mapping and a full project flow."""

import pytest


async def onboard(client, auth_headers, principal, admin="root", squad_role="Journeyman", level="Journeyman"):
    """Initialize, register, request approval and approve a principal over HTTP."""
    headers = auth_headers(principal)
    await client.post("/api/access/initialize", headers=headers)
    response = await client.post(
        "/api/profiles",
        json={"display_name": principal.capitalize(), "squad_role": squad_role, "participation_level": level},
        headers=headers,
    )
    assert response.status_code == 201
    response = await client.post("/api/access/approval-requests", headers=headers)
    assert response.status_code == 200
    response = await client.put(
        f"/api/access/approvals/{principal}", json={"status": "approved"}, headers=auth_headers(admin)
    )
    assert response.status_code == 200
    return headers


class TestHealthAndContext:

    @pytest.mark.asyncio
    async def test_health(self, client):
        response = await client.get("/health")
        assert response.status_code == 200
        assert response.json() == {"status": "ok", "service": "squadledger"}
        assert response.headers["X-Request-ID"]

    @pytest.mark.asyncio
    async def test_request_id_echoed(self, client):
        response = await client.get("/health", headers={"X-Request-ID": "abc123"})
        assert response.headers["X-Request-ID"] == "abc123"


class TestAuthentication:

    @pytest.mark.asyncio
    async def test_no_token_is_guest(self, client):
        response = await client.get("/api/access/me")
        assert response.status_code == 200
        body = response.json()
        assert body["principal"] == "anonymous"
        assert body["role"] == "guest"
        assert body["is_approved"] is False

    @pytest.mark.asyncio
    async def test_bad_token(self, client):
        response = await client.get("/api/access/me", headers={"Authorization": "Bearer not-a-jwt"})
        assert response.status_code == 401

    @pytest.mark.asyncio
    async def test_wrong_scheme(self, client):
        response = await client.get("/api/access/me", headers={"Authorization": "Basic abc"})
        assert response.status_code == 401

    @pytest.mark.asyncio
    async def test_first_caller_becomes_admin(self, client, auth_headers):
        response = await client.post("/api/access/initialize", headers=auth_headers("root"))
        assert response.json()["role"] == "admin"
        response = await client.get("/api/access/me/is-admin", headers=auth_headers("root"))
        assert response.json() == {"value": True}

    @pytest.mark.asyncio
    async def test_guest_cannot_create_projects(self, client):
        response = await client.post(
            "/api/projects", json={"title": "Nope", "estimated_total_hh": 10}
        )
        assert response.status_code == 403
        assert response.json()["detail"]["type"] == "access_denied"


class TestErrorMapping:

    @pytest.mark.asyncio
    async def test_schema_validation(self, client, auth_headers):
        await client.post("/api/access/initialize", headers=auth_headers("root"))
        response = await client.post(
            "/api/profiles",
            json={"display_name": "Root", "squad_role": "Wizard", "participation_level": "Master"},
            headers=auth_headers("root"),
        )
        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_incompatible_level_is_422(self, client, auth_headers):
        await client.post("/api/access/initialize", headers=auth_headers("root"))
        response = await client.post(
            "/api/profiles",
            json={"display_name": "Root", "squad_role": "Mentor", "participation_level": "Journeyman"},
            headers=auth_headers("root"),
        )
        assert response.status_code == 422
        assert response.json()["detail"]["type"] == "validation_error"

    @pytest.mark.asyncio
    async def test_duplicate_registration_is_409(self, client, auth_headers):
        headers = auth_headers("root")
        await client.post("/api/access/initialize", headers=headers)
        body = {"display_name": "Root", "squad_role": "Mentor", "participation_level": "Master"}
        assert (await client.post("/api/profiles", json=body, headers=headers)).status_code == 201
        response = await client.post("/api/profiles", json=body, headers=headers)
        assert response.status_code == 409
        assert response.json()["detail"]["type"] == "conflict"

    @pytest.mark.asyncio
    async def test_missing_project_is_404(self, client):
        response = await client.get("/api/projects/999")
        assert response.status_code == 404
        assert response.json()["detail"]["type"] == "not_found"


class TestProjectFlow:
    """Create a project, carve tasks, pledge, confirm and inspect the ledger."""

    @pytest.mark.asyncio
    async def test_end_to_end(self, client, auth_headers):
        root = auth_headers("root")
        await client.post("/api/access/initialize", headers=root)
        await client.post(
            "/api/profiles",
            json={"display_name": "Root", "squad_role": "Mentor", "participation_level": "Master"},
            headers=root,
        )
        carol = await onboard(client, auth_headers, "carol")
        dave = await onboard(client, auth_headers, "dave")

        response = await client.post(
            "/api/projects",
            json={"title": "Community Mural", "estimated_total_hh": 100, "pool_hh": 10},
            headers=carol,
        )
        assert response.status_code == 201
        project_id = response.json()["id"]
        assert response.json()["status"] == "pledging"

        response = await client.post(
            "/api/tasks",
            json={"project_id": project_id, "title": "Sketch", "hh_budget": 40},
            headers=carol,
        )
        assert response.status_code == 201
        sketch_id = response.json()["id"]

        response = await client.post(
            "/api/tasks",
            json={"project_id": project_id, "title": "Paint", "hh_budget": 50},
            headers=carol,
        )
        assert response.status_code == 201

        response = await client.post(
            "/api/tasks",
            json={"project_id": project_id, "title": "Varnish", "hh_budget": 20},
            headers=carol,
        )
        assert response.status_code == 409
        assert response.json()["detail"]["type"] == "budget_exceeded"

        response = await client.post(
            "/api/pledges",
            json={"project_id": project_id, "amount": 30, "task_id": sketch_id},
            headers=dave,
        )
        assert response.status_code == 201
        pledge_id = response.json()["id"]

        response = await client.post(f"/api/pledges/{pledge_id}/confirm", headers=carol)
        assert response.status_code == 409
        assert response.json()["detail"]["type"] == "invalid_state"

        assert (await client.post(f"/api/tasks/{sketch_id}/confirm", headers=carol)).status_code == 200
        response = await client.post(f"/api/pledges/{pledge_id}/confirm", headers=carol)
        assert response.status_code == 200
        assert response.json()["status"] == "confirmed"

        response = await client.get(f"/api/projects/{project_id}/ledger")
        ledger = response.json()
        assert ledger["allocated_hh"] == 90
        assert ledger["confirmed_hh"] == 30
        assert ledger["remaining_capacity_hh"] == 70

        response = await client.get(f"/api/projects/{project_id}/participants")
        assert response.json() == ["carol", "dave"]

        response = await client.get(f"/api/projects/{project_id}/readiness")
        assert response.json()["ready"] is False

        response = await client.get(f"/api/projects/{project_id}/activity")
        assert response.json()[0]["activity_type"] == "pledge_confirmed"

        response = await client.get("/api/profiles/dave")
        assert response.json()["total_pledged_hh"] == 30
        assert response.json()["voting_power"] == 1.0

        response = await client.get("/api/profiles/dave/reputation")
        assert response.json() == {"principal": "dave", "reputation_score": 0.0}

    @pytest.mark.asyncio
    async def test_sweeps_need_admin(self, client, auth_headers):
        await client.post("/api/access/initialize", headers=auth_headers("root"))
        await client.post("/api/access/initialize", headers=auth_headers("dave"))

        response = await client.post("/api/pledges/sweeps/expire", headers=auth_headers("dave"))
        assert response.status_code == 403

        response = await client.post("/api/pledges/sweeps/expire", headers=auth_headers("root"))
        assert response.status_code == 200
        assert response.json() == {"expired": 0, "skipped": 0}
