"""HTTP surface of the servers service."""

import pytest
from fastapi.testclient import TestClient

from vpsdash.common.errors import ProviderError
from vpsdash.services.servers import main
from vpsdash.services.servers.service import ServerService

CREATE_BODY = {
    "name": "web-01",
    "region": "us-east",
    "image": "linux-x",
    "plan_type": "small-1",
    "ssh_keys": ["ssh-ed25519 AAAA user@laptop"],
}


@pytest.fixture
def client(monkeypatch, session_factory, provider, catalog):
    monkeypatch.setattr(main, "service", ServerService(session_factory, provider, catalog))
    return TestClient(main.app)


def test_create_then_read_as_owner_only(client, fund):
    fund("user-a", "10.00")
    created = client.post("/servers", json=CREATE_BODY, headers={"x-user-id": "user-a"})
    assert created.status_code == 200
    server_id = created.json()["server"]["server_id"]

    assert client.get(f"/servers/{server_id}", headers={"x-user-id": "user-a"}).status_code == 200
    other = client.get(f"/servers/{server_id}", headers={"x-user-id": "user-b"})
    assert other.status_code == 404
    assert other.json() == {"ok": False, "kind": "not_found", "error": "Server not found"}

    listed = client.get("/servers", headers={"x-user-id": "user-b"})
    assert listed.json()["servers"] == []


def test_create_without_funds_is_payment_required(client, provider):
    response = client.post("/servers", json=CREATE_BODY, headers={"x-user-id": "user-a"})
    assert response.status_code == 402
    assert response.json()["kind"] == "insufficient_funds"
    assert provider.calls == []


def test_delete_reports_provider_warning(client, provider, fund):
    fund("user-a", "10.00")
    server_id = client.post("/servers", json=CREATE_BODY, headers={"x-user-id": "user-a"}).json()["server"]["server_id"]
    provider.failures["delete_instance"] = ProviderError("Cloud provider unreachable during delete_instance")

    response = client.delete(f"/servers/{server_id}", headers={"x-user-id": "user-a"})

    assert response.status_code == 200
    assert response.json()["deleted"] is True
    assert response.json()["warning"]
    assert client.get(f"/servers/{server_id}", headers={"x-user-id": "user-a"}).status_code == 404


def test_provider_health_reports_outage(client, provider):
    assert client.get("/health/provider").status_code == 200
    provider.failures["list_regions"] = ProviderError("Cloud provider unreachable during list_regions")
    response = client.get("/health/provider")
    assert response.status_code == 503
    assert response.json()["healthy"] is False


def test_admin_routes_require_admin(client):
    assert client.get("/admin/servers", headers={"x-user-id": "user-a"}).status_code == 403
    assert client.get("/admin/servers", headers={"x-user-id": "ops", "x-user-role": "admin"}).status_code == 200
