"""
API Tests

Exercises the FastAPI app with fastapi's TestClient against a temp SQLite
database:
1. Health, readiness and liveness endpoints
2. Review queue listing, statistics and resolution (404 / 409 / 422 paths)
3. Audit history, corrections, stats and accuracy reports
"""

from decimal import Decimal

import pytest


@pytest.fixture
def services(tmp_path, monkeypatch):
    from core.settings import reset_settings
    from dedup_engine.services import build_sqlite_services

    db_path = tmp_path / "dedup.db"
    monkeypatch.setenv("DEDUP_DB_PATH", str(db_path))
    reset_settings()
    yield build_sqlite_services(db_path)
    reset_settings()


@pytest.fixture
def client(services):
    from fastapi.testclient import TestClient
    from api.server import create_app
    from api.services.deps import get_dedup_services

    app = create_app()
    app.dependency_overrides[get_dedup_services] = lambda: services
    with TestClient(app) as test_client:
        yield test_client


def evaluate_camry(services, source_id="L-1", target_id="L-2"):
    from core.models import CandidatePair, Listing
    return services.engine.evaluate_pair(CandidatePair(
        source=Listing(id=source_id, tenant_id="t-1", title="2020 Toyota Camry LE", price=Decimal("25000")),
        target=Listing(id=target_id, tenant_id="t-1", title="2020 Toyota Camry SE", price=Decimal("25750")),
    ))


class TestHealth:

    def test_health_readiness_and_liveness(self, client, services):
        health = client.get("/health")
        assert health.status_code == 200
        body = health.json()
        assert body["status"] == "healthy"
        assert body["services"]["database"] == "up"

        assert client.get("/ready").status_code == 200
        assert client.get("/live").json()["status"] == "alive"

    def test_not_ready_without_database(self, tmp_path, monkeypatch):
        from fastapi.testclient import TestClient
        from api.server import create_app
        from core.settings import reset_settings

        monkeypatch.setenv("DEDUP_DB_PATH", str(tmp_path / "missing.db"))
        reset_settings()
        try:
            with TestClient(create_app()) as client:
                assert client.get("/ready").status_code == 503
                assert client.get("/health").json()["services"]["database"] == "not_initialized"
        finally:
            reset_settings()


class TestReviewEndpoints:

    def test_list_pending(self, client, services):
        outcome = evaluate_camry(services)

        response = client.get("/reviews/pending", params={"tenant_id": "t-1"})

        assert response.status_code == 200
        body = response.json()
        assert body["total_pending"] == 1
        assert body["items"][0]["id"] == outcome.review_item.id
        assert body["items"][0]["priority"] == 5
        assert body["items"][0]["status"] == "Pending"

        other = client.get("/reviews/pending", params={"tenant_id": "t-2"}).json()
        assert other["items"] == []

    def test_get_unknown_item(self, client):
        response = client.get("/reviews/missing", params={"tenant_id": "t-1"})
        assert response.status_code == 404

    def test_resolve_then_conflict(self, client, services):
        outcome = evaluate_camry(services)
        url = f"/reviews/{outcome.review_item.id}/resolve"

        first = client.post(url, json={
            "tenant_id": "t-1", "action": "confirm_duplicate", "reviewed_by": "analyst",
        })
        assert first.status_code == 200
        assert first.json()["item"]["status"] == "ConfirmedDuplicate"
        assert first.json()["corrective_audit_entry_id"]

        second = client.post(url, json={
            "tenant_id": "t-1", "action": "skip", "reviewed_by": "someone-else",
        })
        assert second.status_code == 409
        detail = second.json()["detail"]
        assert detail["status"] == "ConfirmedDuplicate"
        assert detail["reviewed_by"] == "analyst"

        assert services.match_store.get_match("t-1", outcome.match.id).is_confirmed

    def test_resolve_validation(self, client, services):
        outcome = evaluate_camry(services)
        url = f"/reviews/{outcome.review_item.id}/resolve"

        bad_action = client.post(url, json={"tenant_id": "t-1", "action": "approve", "reviewed_by": "a"})
        blank_reviewer = client.post(url, json={"tenant_id": "t-1", "action": "skip", "reviewed_by": "  "})
        missing = client.post("/reviews/missing/resolve", json={
            "tenant_id": "t-1", "action": "skip", "reviewed_by": "analyst",
        })

        assert bad_action.status_code == 422
        assert blank_reviewer.status_code == 422
        assert missing.status_code == 404

    def test_priority_filter_pages_in_store(self, client, services):
        evaluate_camry(services, "L-1", "L-2")
        evaluate_camry(services, "L-3", "L-4")
        evaluate_camry(services, "L-5", "L-6")

        page = client.get("/reviews/pending", params={
            "tenant_id": "t-1", "max_priority": 5, "skip": 1, "take": 1,
        }).json()

        assert len(page["items"]) == 1
        assert page["total_pending"] == 3
        assert page["skip"] == 1

    def test_stats_and_status_filter(self, client, services):
        first = evaluate_camry(services, "L-1", "L-2")
        evaluate_camry(services, "L-3", "L-4")
        client.post(f"/reviews/{first.review_item.id}/resolve", json={
            "tenant_id": "t-1", "action": "confirm_not_duplicate", "reviewed_by": "analyst",
        })

        stats = client.get("/reviews/stats", params={"tenant_id": "t-1"})
        assert stats.status_code == 200
        body = stats.json()
        assert body["total_count"] == 2
        assert body["pending_count"] == 1
        assert body["resolved_count"] == 1
        assert body["by_status"]["ConfirmedNotDuplicate"] == 1
        assert body["pending_by_priority"] == {"5": 1}

        resolved = client.get("/reviews", params={"tenant_id": "t-1", "status": "ConfirmedNotDuplicate"}).json()
        assert [i["id"] for i in resolved["items"]] == [first.review_item.id]
        assert resolved["status"] == "ConfirmedNotDuplicate"

        assert len(client.get("/reviews", params={"tenant_id": "t-1"}).json()["items"]) == 2
        assert client.get("/reviews", params={"tenant_id": "t-1", "status": "Approved"}).status_code == 422


class TestAuditEndpoints:

    def test_listing_history_and_query(self, client, services):
        outcome = evaluate_camry(services)

        history = client.get("/audit/listings/L-2", params={"tenant_id": "t-1"})
        assert history.status_code == 200
        assert [e["id"] for e in history.json()] == [outcome.audit_entry.id]

        page = client.get("/audit/entries", params={"tenant_id": "t-1", "decision": "NearMatch"}).json()
        assert page["total_count"] == 1
        assert page["items"][0]["reason"] == "FuzzyMatch"

    def test_correct_entry_and_stats(self, client, services):
        outcome = evaluate_camry(services)

        response = client.post(f"/audit/entries/{outcome.audit_entry.id}/correct", json={
            "tenant_id": "t-1",
            "false_positive": True,
            "corrected_by": "ops",
            "reason": "Different trims",
        })
        assert response.status_code == 200
        assert response.json()["reason"] == "FalsePositiveCorrection"

        stats = client.get("/audit/stats", params={"tenant_id": "t-1"}).json()
        assert stats["total_decisions"] == 2
        assert stats["false_positive_count"] == 1

        accuracy = client.get("/audit/accuracy", params={"tenant_id": "t-1", "by_reason": True}).json()
        assert accuracy["total_decisions"] == 1
        assert accuracy["false_positives"] == 1
        assert "FuzzyMatch" in accuracy["by_reason"]

    def test_correct_unknown_entry(self, client):
        response = client.post("/audit/entries/missing/correct", json={
            "tenant_id": "t-1", "false_positive": False, "corrected_by": "ops", "reason": "x",
        })
        assert response.status_code == 404

    def test_trend_and_thresholds(self, client, services):
        evaluate_camry(services)

        trend = client.get("/audit/accuracy/trend", params={
            "tenant_id": "t-1",
            "from_date": "2000-01-01T00:00:00",
            "to_date": "2100-01-01T00:00:00",
            "granularity": "monthly",
        })
        assert trend.status_code == 200
        assert len(trend.json()) == 1
        assert trend.json()[0]["true_positives"] == 1

        thresholds = client.get("/audit/accuracy/thresholds", params={"tenant_id": "t-1"}).json()
        assert thresholds[0]["threshold"] == 0.5
        assert thresholds[0]["total_at_or_above"] == 1

    def test_inverted_date_range(self, client):
        response = client.get("/audit/stats", params={
            "tenant_id": "t-1",
            "from_date": "2024-02-01T00:00:00",
            "to_date": "2024-01-01T00:00:00",
        })
        assert response.status_code == 422
