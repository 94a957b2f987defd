import pytest

from tests.factories.credentials import load_api_key

pytestmark = pytest.mark.unit

KEYS = "/api/v1/keys"


def create_key(client, name="gemini-primary", secret="sk-abcdef1234"):
    response = client.post(KEYS, json={"name": name, "secret": secret})
    assert response.status_code == 201
    return response.json()


def test_create_and_list_keys_masks_secrets(client):
    created = create_key(client)

    assert created["masked_secret"] == "****1234"
    assert created["active"] is True
    assert created["usage_count"] == 0
    assert "secret" not in created

    listed = client.get(KEYS).json()
    assert [key["id"] for key in listed] == [created["id"]]


def test_duplicate_name_is_a_conflict(client):
    create_key(client)

    response = client.post(KEYS, json={"name": "gemini-primary", "secret": "sk-other"})

    assert response.status_code == 409
    assert response.json()["error"] == "duplicate_name"


def test_blank_name_is_rejected(client):
    response = client.post(KEYS, json={"name": "", "secret": "sk-1"})

    assert response.status_code == 422


def test_lease_and_release(client, memory_store):
    created = create_key(client)

    lease = client.post(f"{KEYS}/lease", json={"workload_class": "ask_karma"})
    assert lease.status_code == 200
    body = lease.json()
    assert body["key_id"] == created["id"]
    assert body["secret"] == "sk-abcdef1234"
    assert body["workload_class"] == "ask_karma"

    release = client.post(
        f"{KEYS}/{created['id']}/release",
        json={"lease_id": body["lease_id"], "outcome": "success"},
    )
    assert release.status_code == 200
    assert release.json()["applied"] is True
    assert release.json()["lease_held"] is True
    stored = load_api_key(memory_store, created["id"])
    assert stored.usage_count == 1
    assert stored.lease_id is None


def test_lease_with_empty_pool_is_service_unavailable(client):
    response = client.post(f"{KEYS}/lease", json={})

    assert response.status_code == 503
    body = response.json()
    assert body["error"] == "pool_exhausted"
    assert (body["active"], body["cooling"], body["leased"]) == (0, 0, 0)


def test_release_rejects_unknown_outcome(client):
    created = create_key(client)

    response = client.post(
        f"{KEYS}/{created['id']}/release", json={"lease_id": "x", "outcome": "meh"}
    )

    assert response.status_code == 422


def test_pool_status(client):
    create_key(client, name="a", secret="sk-a")
    create_key(client, name="b", secret="sk-b")
    client.post(f"{KEYS}/lease", json={})

    status = client.get(f"{KEYS}/pool").json()

    assert status == {"total": 2, "active": 2, "cooling": 0, "leased": 1, "available": 1}


def test_toggle_reset_and_delete(client):
    created = create_key(client)
    key_url = f"{KEYS}/{created['id']}"

    assert client.post(f"{key_url}/deactivate").json()["active"] is False
    assert client.post(f"{key_url}/activate").json()["active"] is True
    assert client.post(f"{key_url}/reset").json()["usage_count"] == 0
    assert client.delete(key_url).status_code == 204
    assert client.delete(key_url).status_code == 404


def test_unknown_key_is_not_found(client):
    response = client.post(f"{KEYS}/missing/deactivate")

    assert response.status_code == 404
    assert response.json()["error"] == "not_found"
