from fastapi.testclient import TestClient

from deploy_guard.main import app


def _policy_body(**overrides) -> dict:
    body = {
        "name": "treasury",
        "signers": ["alice", "bob"],
        "threshold": 2,
        "expiry_seconds": None,
        "created_by": "ops",
    }
    body.update(overrides)
    return body


def test_create_and_fetch_policy():
    client = TestClient(app)

    created = client.post(
        "/api/v1/multisig/policies",
        json=_policy_body(),
        headers={"X-Correlation-Id": "corr-pol"},
    )
    assert created.status_code == 201
    payload = created.json()
    assert payload["correlation_id"] == "corr-pol"
    policy = payload["data"]
    assert policy["threshold"] == 2
    assert policy["expiry_seconds"] is None

    fetched = client.get(f"/api/v1/multisig/policies/{policy['id']}")
    assert fetched.status_code == 200
    assert fetched.json()["data"] == policy


def test_invalid_policy_is_problem_json():
    client = TestClient(app)

    response = client.post("/api/v1/multisig/policies", json=_policy_body(threshold=3))

    assert response.status_code == 400
    assert response.headers["content-type"].startswith("application/problem+json")
    body = response.json()
    assert body["error_code"] == "INVALID_POLICY"
    assert body["instance"] == "/api/v1/multisig/policies"


def test_list_policies_newest_first():
    client = TestClient(app)
    first = client.post("/api/v1/multisig/policies", json=_policy_body(name="first")).json()["data"]
    second = client.post("/api/v1/multisig/policies", json=_policy_body(name="second")).json()["data"]

    response = client.get("/api/v1/multisig/policies", params={"limit": 10})

    ids = [item["id"] for item in response.json()["data"]]
    assert set(ids) == {first["id"], second["id"]}
    assert len(client.get("/api/v1/multisig/policies", params={"limit": 1}).json()["data"]) == 1


def test_unknown_policy_is_404():
    client = TestClient(app)

    response = client.get("/api/v1/multisig/policies/missing")

    assert response.status_code == 404
    assert response.json()["resource_id"] == "missing"


def test_policy_expiry_beyond_ten_years_is_rejected():
    client = TestClient(app)

    response = client.post("/api/v1/multisig/policies", json=_policy_body(expiry_seconds=10**12))

    assert response.status_code == 422
