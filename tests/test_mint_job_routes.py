"""Integration tests for the HTTP API.

Covers:
- POST /api/mint-jobs - Enqueue a batch mint
- GET /api/mint-jobs/{job_id} - Poll progress
- POST /api/mint-jobs/{job_id}/seen - Dismiss a notification
- GET /api/artists/{address}/mint-jobs - Artist notification feed
- POST /api/admin/reconcile/{pass_name} - Admin reconciliation
- GET /health
"""

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from musicmint.app import create_app
from musicmint.models.sale import Sale
from musicmint.services.exceptions import LedgerConnectionError
from musicmint.workers.mint_worker import run_once

from .conftest import ARTIST_ADDRESS, OTHER_ADDRESS, FakeLedgerClient

ADMIN_HEADERS = {"X-Admin-Secret": "admin-secret"}


def build_app(settings, session_factory, uow_factory, ledger_factory=None):
    app = create_app(settings)
    # ASGITransport does not run the lifespan, so state is injected directly
    app.state.session_factory = session_factory
    app.state.uow_factory = uow_factory
    app.state.ledger_factory = ledger_factory
    return app


@pytest_asyncio.fixture
async def test_client(settings, session_factory, uow_factory):
    """Provide AsyncClient for testing API endpoints with database access."""
    app = build_app(settings, session_factory, uow_factory)
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client


async def enqueue(client: AsyncClient, release_id: str, quantity: int = 2, **extra):
    return await client.post(
        "/api/mint-jobs",
        json={
            "release_id": release_id,
            "artist_address": ARTIST_ADDRESS,
            "quantity": quantity,
            **extra,
        },
    )


@pytest.mark.asyncio
class TestEnqueueEndpoint:
    async def test_enqueue_returns_accepted(self, test_client, make_release):
        release, _ = await make_release(track_count=2)

        response = await enqueue(test_client, release.id, quantity=3)

        assert response.status_code == 202
        data = response.json()
        assert data["job_id"].startswith("mint_")
        assert data["total_units"] == 6
        assert data["track_count"] == 2
        assert data["quantity"] == 3

    async def test_enqueue_owner_mismatch_is_bad_request(self, test_client, make_release):
        release, _ = await make_release(track_count=1, artist_address=OTHER_ADDRESS)

        response = await enqueue(test_client, release.id)

        assert response.status_code == 400
        assert "does not match release owner" in response.json()["detail"]

    async def test_enqueue_unknown_release(self, test_client):
        response = await enqueue(test_client, "rel_missing")

        assert response.status_code == 404

    @pytest.mark.parametrize("body", [{"quantity": 0}, {"transfer_fee": 60000}])
    async def test_enqueue_schema_validation(self, test_client, make_release, body):
        release, _ = await make_release(track_count=1)

        response = await test_client.post(
            "/api/mint-jobs",
            json={"release_id": release.id, "artist_address": ARTIST_ADDRESS, "quantity": 1, **body},
        )

        assert response.status_code == 422


@pytest.mark.asyncio
class TestJobStatusEndpoints:
    async def test_poll_pending_then_complete(
        self, test_client, make_release, session_factory, settings
    ):
        release, _ = await make_release(track_count=1)
        job_id = (await enqueue(test_client, release.id, quantity=2)).json()["job_id"]

        pending = await test_client.get(f"/api/mint-jobs/{job_id}")
        assert pending.status_code == 200
        assert pending.json()["status"] == "pending"
        assert pending.json()["minted"] == 0
        assert pending.json()["total"] == 2
        assert pending.json()["elapsed"] == 0

        ledger = FakeLedgerClient()
        await run_once(session_factory, settings, lambda: ledger)

        complete = await test_client.get(f"/api/mint-jobs/{job_id}")
        assert complete.json()["status"] == "complete"
        assert complete.json()["minted"] == 2
        assert complete.json()["error"] is None

    async def test_poll_unknown_job(self, test_client):
        response = await test_client.get("/api/mint-jobs/mint_missing")

        assert response.status_code == 404

    async def test_mark_seen_owner_only(self, test_client, make_release):
        release, _ = await make_release(track_count=1)
        job_id = (await enqueue(test_client, release.id)).json()["job_id"]

        denied = await test_client.post(
            f"/api/mint-jobs/{job_id}/seen", json={"address": OTHER_ADDRESS}
        )
        assert denied.status_code == 404
        assert denied.json()["detail"] == "Job not found or not yours"

        allowed = await test_client.post(
            f"/api/mint-jobs/{job_id}/seen", json={"address": ARTIST_ADDRESS}
        )
        assert allowed.status_code == 200
        assert allowed.json() == {"success": True, "job_id": job_id}

    async def test_artist_feed(self, test_client, make_release, session_factory, settings):
        release, _ = await make_release(track_count=1, title="Feed Release")
        done_id = (await enqueue(test_client, release.id, quantity=1)).json()["job_id"]
        await run_once(session_factory, settings, lambda: FakeLedgerClient())
        queued_id = (await enqueue(test_client, release.id, quantity=1)).json()["job_id"]

        response = await test_client.get(f"/api/artists/{ARTIST_ADDRESS}/mint-jobs")

        assert response.status_code == 200
        feed = response.json()
        assert feed["has_active"] is True
        assert feed["has_unread"] is True
        assert [j["job_id"] for j in feed["jobs"]["active"]] == [queued_id]
        assert [j["job_id"] for j in feed["jobs"]["completed_unseen"]] == [done_id]
        assert feed["jobs"]["completed_unseen"][0]["release_title"] == "Feed Release"
        assert feed["summary"] == {"active_count": 1, "unread_count": 1}

        await test_client.post(f"/api/mint-jobs/{done_id}/seen", json={"address": ARTIST_ADDRESS})
        feed = (await test_client.get(f"/api/artists/{ARTIST_ADDRESS}/mint-jobs")).json()
        assert feed["has_unread"] is False
        assert [j["job_id"] for j in feed["jobs"]["recent_completed"]] == [done_id]


@pytest.mark.asyncio
class TestReconcileEndpoint:
    async def test_requires_admin_secret(self, test_client):
        missing = await test_client.post("/api/admin/reconcile/sync_counters")
        wrong = await test_client.post(
            "/api/admin/reconcile/sync_counters", headers={"X-Admin-Secret": "nope"}
        )

        assert missing.status_code == 401
        assert wrong.status_code == 401

    async def test_disabled_without_configured_secret(self, settings, session_factory, uow_factory):
        app = build_app(
            settings.model_copy(update={"admin_secret": ""}), session_factory, uow_factory
        )
        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
            response = await client.post(
                "/api/admin/reconcile/sync_counters", headers=ADMIN_HEADERS
            )

        assert response.status_code == 404

    async def test_unknown_pass(self, test_client):
        response = await test_client.post("/api/admin/reconcile/drop_tables", headers=ADMIN_HEADERS)

        assert response.status_code == 404

    async def test_sync_counters_dry_run_then_apply(
        self, test_client, make_release, session_factory, uow_factory
    ):
        release, tracks = await make_release(track_count=1)
        async with session_factory() as session:
            session.add(
                Sale(release_id=release.id, track_id=tracks[0].id, buyer_address=OTHER_ADDRESS)
            )
            await session.commit()

        dry = await test_client.post(
            "/api/admin/reconcile/sync_counters",
            params={"dry_run": "true", "release_id": release.id},
            headers=ADMIN_HEADERS,
        )
        assert dry.status_code == 200
        assert dry.json()["dry_run"] is True
        [result] = dry.json()["results"]
        assert result["name"] == "sync_counters"
        assert len(result["fixes"]) == 2

        async with await uow_factory() as uow:
            assert (await uow.tracks.get_by_id(tracks[0].id)).sold_count == 0

        applied = await test_client.post(
            "/api/admin/reconcile/sync_counters", headers=ADMIN_HEADERS
        )
        assert applied.status_code == 200
        async with await uow_factory() as uow:
            assert (await uow.tracks.get_by_id(tracks[0].id)).sold_count == 1

    async def test_all_runs_without_ledger(self, test_client):
        response = await test_client.post("/api/admin/reconcile/all", headers=ADMIN_HEADERS)

        assert response.status_code == 200
        assert [r["name"] for r in response.json()["results"]] == [
            "sync_counters",
            "renumber_editions",
        ]

    async def test_ledger_pass_without_ledger_is_unavailable(self, test_client, make_release):
        await make_release(track_count=1, total_editions=3, is_minted=True, mint_fee_paid=False)

        response = await test_client.post(
            "/api/admin/reconcile/sync_from_ledger", headers=ADMIN_HEADERS
        )

        assert response.status_code == 503

    async def test_ledger_outage_is_bad_gateway(
        self, settings, session_factory, uow_factory, make_release
    ):
        await make_release(track_count=1, total_editions=3, is_minted=True, mint_fee_paid=False)

        class UnreachableLedger(FakeLedgerClient):
            async def __aenter__(self):
                raise LedgerConnectionError("Failed to connect to ledger")

        app = build_app(
            settings, session_factory, uow_factory, ledger_factory=lambda: UnreachableLedger()
        )
        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
            response = await client.post(
                "/api/admin/reconcile/sync_from_ledger", headers=ADMIN_HEADERS
            )

        assert response.status_code == 502


@pytest.mark.asyncio
async def test_health_check(test_client):
    response = await test_client.get("/health")

    assert response.status_code == 200
    assert response.json() == {"status": "healthy"}
