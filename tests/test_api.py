import uuid

from app.core.permissions import PermissionChecker, Principal, permissions_for_role
from app.core.security import create_access_token, verify_access_token
from app.services.consolidation_service import ConsolidationService
from tests.conftest import auth_headers
from tests.factories import create_store, create_product, create_order_item, generate_active_run


async def _seed_two_runs(session):
    store = await create_store(session)
    for n in range(4):
        await create_product(session, store, f"B-{n}", style_name=f"Style {n}")
        await create_order_item(session, f"B-{n}")
    await session.commit()
    result = await ConsolidationService(session, chunk_size=2).generate_runs()
    return [str(r.run_id) for r in result.runs]


# ==================== AUTH ====================

async def test_requests_without_token_are_rejected(client):
    response = await client.get("/api/v1/runs")
    assert response.status_code == 401
    assert response.json()["kind"] == "unauthorized"


async def test_unknown_role_is_forbidden(client):
    response = await client.get("/api/v1/runs", headers=auth_headers("auditor"))
    assert response.status_code == 403


async def test_runner_cannot_cancel_runs(client, runner_headers):
    response = await client.post(
        "/api/v1/runs/cancel", json={"runIds": [str(uuid.uuid4())]}, headers=runner_headers
    )
    assert response.status_code == 403
    assert response.json()["kind"] == "forbidden"
    assert "error" in response.json()


async def test_cancel_without_token_returns_error_body(client):
    response = await client.post("/api/v1/runs/cancel", json={"runIds": [str(uuid.uuid4())]})

    assert response.status_code == 401
    body = response.json()
    assert set(body) == {"error", "kind", "details"}
    assert body["kind"] == "unauthorized"


async def test_cancel_with_empty_batch_is_rejected_with_error_body(client, admin_headers):
    response = await client.post("/api/v1/runs/cancel", json={"runIds": []}, headers=admin_headers)

    assert response.status_code == 422
    body = response.json()
    assert set(body) == {"error", "kind", "details"}
    assert body["kind"] == "invalid_request"
    assert body["details"]["errors"][0]["field"] == "body.runIds"


def test_token_round_trip():
    user_id = uuid.uuid4()
    claims = verify_access_token(create_access_token(user_id, "runner"))

    assert claims["sub"] == str(user_id)
    assert claims["role"] == "runner"
    assert verify_access_token("not-a-token") is None


def test_runner_may_pick_only_on_own_or_unassigned_runs():
    me, someone_else = uuid.uuid4(), uuid.uuid4()
    runner = PermissionChecker(Principal(me, "runner"), permissions_for_role("runner"))
    admin = PermissionChecker(Principal(someone_else, "admin"), permissions_for_role("admin"))

    assert runner.can_pick_on_run(me)
    assert runner.can_pick_on_run(None)
    assert not runner.can_pick_on_run(someone_else)
    assert not runner.has_permission("runs:cancel")
    assert admin.can_pick_on_run(me)


# ==================== RUNS ====================

async def test_cancel_runs_speaks_camel_case(client, session, admin_headers):
    run_ids = await _seed_two_runs(session)
    missing = str(uuid.uuid4())

    response = await client.post(
        "/api/v1/runs/cancel", json={"runIds": run_ids + [missing]}, headers=admin_headers
    )

    assert response.status_code == 200
    results = response.json()["results"]
    assert [r["runId"] for r in results] == run_ids + [missing]
    assert results[0] == {
        "runId": run_ids[0], "status": "cancelled", "pickedCount": 0, "revertedCount": 2,
    }
    assert results[2]["errorKind"] == "unknown_reference"
    assert "error" in results[2]


async def test_fulfillment_errors_render_kind_and_status(client, admin_headers):
    response = await client.post("/api/v1/runs/generate", json={}, headers=admin_headers)

    assert response.status_code == 422
    body = response.json()
    assert body["kind"] == "no_eligible_demand"
    assert set(body) == {"error", "kind", "details"}


async def test_generate_then_activate(client, session, admin_headers):
    store = await create_store(session)
    await create_product(session, store, "B-1", cost_price="12.50")
    await create_order_item(session, "B-1", quantity=2)
    await session.commit()

    generated = await client.post("/api/v1/runs/generate", json={}, headers=admin_headers)
    assert generated.status_code == 201
    run = generated.json()["runs"][0]
    assert run["total_items"] == 2

    activated = await client.post(f"/api/v1/runs/{run['run_id']}/activate", headers=admin_headers)
    assert activated.status_code == 200
    assert activated.json()["status"] == "active"

    detail = await client.get(f"/api/v1/runs/{run['run_id']}", headers=admin_headers)
    assert detail.json()["items"][0]["cost_price"] == 12.5

    again = await client.post(f"/api/v1/runs/{run['run_id']}/activate", headers=admin_headers)
    assert again.status_code == 409
    assert again.json()["kind"] == "invalid_run_state"


# ==================== PICKING ====================

async def test_runner_picks_only_on_own_run(client, session, runner_id, runner_headers):
    store = await create_store(session)
    await create_product(session, store, "B-1")
    await create_order_item(session, "B-1", quantity=2)
    run = await generate_active_run(session, runner_id=runner_id)
    item_id = run.items[0].id
    await session.commit()

    mine = await client.post(
        f"/api/v1/picking/items/{item_id}/adjust", json={"delta": 1}, headers=runner_headers
    )
    assert mine.status_code == 200
    assert mine.json()["picked_qty"] == 1

    stranger = await client.post(
        f"/api/v1/picking/items/{item_id}/adjust", json={"delta": 1}, headers=auth_headers("runner")
    )
    assert stranger.status_code == 403


async def test_store_visit_without_receipt(client, session, admin_headers):
    store = await create_store(session)
    await create_product(session, store, "B-1")
    await create_order_item(session, "B-1")
    run = await generate_active_run(session)
    run_id, store_id = run.id, store.id
    await session.commit()

    response = await client.post(
        f"/api/v1/picking/runs/{run_id}/stores/{store_id}/complete",
        json={"notes": "forgot the photo"},
        headers=admin_headers,
    )

    assert response.status_code == 422
    assert response.json()["kind"] == "receipt_required"


# ==================== HEALTH ====================

async def test_health(client):
    response = await client.get("/health")
    assert response.status_code == 200
