"""
HTTP API tests.

The lifespan is not run: each test installs its own in-memory core on
app.state, so no database file or network is touched.
"""

import pytest
from fastapi.testclient import TestClient

from conftest import linear_records
from api.main import app


PREFIX = "/api/intelligence"


def as_json(records):
    return [{**r, "created_at": r["created_at"].isoformat()} for r in records]


@pytest.fixture
def client(core, engine):
    app.state.core = core
    app.state.engine = engine
    yield TestClient(app)
    del app.state.core
    del app.state.engine


@pytest.fixture
def dataset_id(client):
    response = client.post(f"{PREFIX}/datasets", json={"name": "linear ads", "dataset_type": "linear"})
    assert response.status_code == 201
    return response.json()["id"]


class TestHealth:
    def test_root(self, client):
        assert client.get("/").json()["status"] == "running"

    def test_healthz(self, client):
        """The database check runs against the installed engine."""
        assert client.get("/healthz").json() == {"status": "healthy", "database": True}


class TestErrorFormat:
    """Errors share one body format."""

    def test_unknown_dataset_is_404(self, client):
        response = client.get(f"{PREFIX}/datasets/missing")

        assert response.status_code == 404
        body = response.json()
        assert body["error_code"] == "NOT_FOUND"
        assert body["status_code"] == 404
        assert body["details"] == {"dataset_id": "missing"}

    def test_unregistered_type_is_400(self, client):
        response = client.post(f"{PREFIX}/datasets", json={"name": "x", "dataset_type": "nope"})

        assert response.status_code == 400
        assert response.json()["error_code"] == "INVALID_INPUT"

    def test_request_validation_is_422(self, client, dataset_id):
        response = client.post(f"{PREFIX}/datasets/{dataset_id}/records", json={"records": []})

        assert response.status_code == 422
        assert response.json()["error_code"] == "VALIDATION_ERROR"

    def test_unparseable_created_at_is_400(self, client, dataset_id):
        records = as_json(linear_records(2))
        records[1]["created_at"] = "last tuesday"

        response = client.post(f"{PREFIX}/datasets/{dataset_id}/records", json={"records": records})

        assert response.status_code == 400
        body = response.json()
        assert body["error_code"] == "INVALID_INPUT"
        assert body["details"]["created_at"] == "last tuesday"

    def test_inverted_mutation_bounds_are_422(self, client, dataset_id):
        response = client.post(
            f"{PREFIX}/exploration/{dataset_id}",
            json={"features": {"x1": 0.5}, "epsilon": 1.0, "mutation_bounds": {"x1": {"min": 1, "max": 0, "step": 0.5}}},
        )

        assert response.status_code == 422
        assert response.json()["error_code"] == "VALIDATION_ERROR"

    def test_unknown_route(self, client):
        assert client.get(f"{PREFIX}/nothing-here").json()["error_code"] == "NOT_FOUND"


class TestPredictionFlow:
    """Dataset to validated prediction over HTTP."""

    def test_full_flow(self, client, dataset_id):
        ingest = client.post(f"{PREFIX}/datasets/{dataset_id}/records", json={"records": as_json(linear_records(12))})
        assert ingest.status_code == 201
        assert ingest.json()["ingested_count"] == 12

        trained = client.post(f"{PREFIX}/train/{dataset_id}").json()
        assert trained["status"] == "trained"

        prediction = client.post(f"{PREFIX}/predict/{dataset_id}", json={"features": {"x1": 0.5, "x2": 0.5}}).json()
        snapshot_id = prediction["snapshot_id"]
        assert prediction["predicted_value"] == pytest.approx(3.5, abs=1e-6)

        assert client.get(f"{PREFIX}/snapshots/{snapshot_id}/verify").json()["valid"] is True
        assert client.post(f"{PREFIX}/confirm-upload/{snapshot_id}").json()["upload_confirmed"] is True

        validated = client.post(f"{PREFIX}/validate/{snapshot_id}", json={"actual_value": 3.6})
        assert validated.status_code == 200
        assert validated.json()["directionally_correct"] is True

        again = client.post(f"{PREFIX}/validate/{snapshot_id}", json={"actual_value": 3.6})
        assert again.status_code == 409
        assert again.json()["error_code"] == "ALREADY_EXISTS"

        metrics = client.get(f"{PREFIX}/metrics/{dataset_id}").json()
        assert metrics["rolling_accuracy"]["sample_count"] == 1

        health = client.get(f"{PREFIX}/health/{dataset_id}").json()
        assert health["healthy"] is True

    def test_insufficient_data_is_not_an_error(self, client, dataset_id):
        client.post(f"{PREFIX}/datasets/{dataset_id}/records", json={"records": as_json(linear_records(3))})

        response = client.post(f"{PREFIX}/train/{dataset_id}")

        assert response.status_code == 200
        assert response.json()["status"] == "insufficient_data"

    def test_predict_without_model_is_404(self, client, dataset_id):
        response = client.post(f"{PREFIX}/predict/{dataset_id}", json={"features": {"x1": 0.5}})
        assert response.status_code == 404

    def test_deactivate_record(self, client, dataset_id):
        ingest = client.post(f"{PREFIX}/datasets/{dataset_id}/records", json={"records": as_json(linear_records(2))})
        record_id = ingest.json()["record_ids"][0]

        response = client.delete(f"{PREFIX}/records/{record_id}")

        assert response.json() == {"record_id": record_id, "is_active": False}


class TestModelHealthEndpoints:
    """GET only reports; retirement is written by the reconcile call."""

    def overestimate(self, client, dataset_id):
        client.post(f"{PREFIX}/datasets/{dataset_id}/records", json={"records": as_json(linear_records(12))})
        client.post(f"{PREFIX}/train/{dataset_id}")
        for i in range(10):
            prediction = client.post(f"{PREFIX}/predict/{dataset_id}", json={"features": {"x1": 0.5, "x2": 0.5}}).json()
            client.post(f"{PREFIX}/validate/{prediction['snapshot_id']}", json={"actual_value": 0.1 * (i + 1)})

    def test_get_does_not_retire(self, client, dataset_id):
        self.overestimate(client, dataset_id)

        first = client.get(f"{PREFIX}/health/{dataset_id}").json()
        second = client.get(f"{PREFIX}/health/{dataset_id}").json()

        assert first["retirement"]["retired"] is True
        assert first["recommendation"] == "retrain"
        assert first == second
        assert client.get(f"{PREFIX}/metrics/{dataset_id}").json()["latest_model"]["status"] == "active"

    def test_reconcile_retires(self, client, dataset_id):
        self.overestimate(client, dataset_id)

        response = client.post(f"{PREFIX}/health/{dataset_id}/reconcile")

        assert response.status_code == 200
        assert response.json()["model_status"] == "retired"
        assert client.get(f"{PREFIX}/metrics/{dataset_id}").json()["latest_model"]["status"] == "retired"


class TestSignalEndpoints:
    def test_sources_empty_by_default(self, client):
        assert client.get(f"{PREFIX}/signals/sources").json() == {"sources": []}

    def test_unknown_source_is_404(self, client):
        response = client.post(f"{PREFIX}/signals/fetch", json={"keyword": "ai", "source_name": "missing"})
        assert response.status_code == 404

    def test_ami_without_signals(self, client):
        body = client.get(f"{PREFIX}/ami/ai").json()
        assert body["ami"] == 0.0
        assert body["stage"] == "early_noise"

    def test_history_and_correlations_empty(self, client):
        assert client.get(f"{PREFIX}/signals/history", params={"keyword": "ai"}).json() == []
        assert client.post(f"{PREFIX}/correlations/detect", json={"keyword": "ai"}).json() == []

    def test_exploration(self, client, dataset_id):
        response = client.post(
            f"{PREFIX}/exploration/{dataset_id}",
            json={"features": {"x1": 0.5}, "epsilon": 1.0, "mutation_bounds": {"x1": {"min": 0, "max": 1, "step": 0.5}}},
        )

        body = response.json()
        assert body["group_type"] == "exploration"
        assert body["experiment_group_id"]
