"""Authentication and authorization tests for the API."""

from __future__ import annotations


def test_token_issuance_and_listing(client, admin_headers):
    response = client.post(
        "/api/auth/tokens",
        json={"name": "Readonly Token", "role": "readonly", "user_id": "user-9"},
        headers=admin_headers,
    )
    assert response.status_code == 201
    created = response.get_json()
    assert created["role"] == "readonly"
    assert created["user_id"] == "user-9"
    assert created["token"]

    list_response = client.get("/api/auth/tokens", headers=admin_headers)
    assert list_response.status_code == 200
    tokens = list_response.get_json()
    assert isinstance(tokens, list)
    stored = next(token for token in tokens if token["id"] == created["id"])
    assert "token" not in stored
    assert stored["revoked_at"] is None


def test_token_defaults_to_calling_user(client, admin_headers):
    response = client.post(
        "/api/auth/tokens", json={"name": "Mine", "role": "editor"}, headers=admin_headers
    )

    assert response.status_code == 201
    assert response.get_json()["user_id"] == "user-1"


def test_token_issuance_validates_payload(client, admin_headers):
    assert client.post(
        "/api/auth/tokens", json={"role": "readonly"}, headers=admin_headers
    ).status_code == 400
    assert client.post(
        "/api/auth/tokens", json={"name": "Bad", "role": "owner"}, headers=admin_headers
    ).status_code == 400


def test_access_control_for_roles(client, auth_header_factory):
    # No token is rejected
    missing = client.get("/api/flows")
    assert missing.status_code == 401
    assert missing.headers["WWW-Authenticate"] == "Bearer"
    assert client.get("/api/logs").status_code == 401
    assert client.get(
        "/api/flows", headers={"Authorization": "Bearer not-a-token"}
    ).status_code == 401

    readonly_headers = auth_header_factory(role="readonly")
    assert client.get("/api/flows", headers=readonly_headers).status_code == 200

    create_response = client.post(
        "/api/flows", json={"name": "Limited", "flow_type": "task"}, headers=readonly_headers
    )
    assert create_response.status_code == 403

    editor_headers = auth_header_factory(role="editor")
    assert client.post(
        "/api/flows", json={"name": "Allowed", "flow_type": "task"}, headers=editor_headers
    ).status_code == 201
    assert client.get("/api/auth/tokens", headers=editor_headers).status_code == 403
    assert client.get("/api/logs", headers=editor_headers).status_code == 403


def test_revoked_token_is_rejected(client, admin_headers):
    issued = client.post(
        "/api/auth/tokens",
        json={"name": "Temp", "role": "readonly"},
        headers=admin_headers,
    )
    token_data = issued.get_json()
    token_value = token_data["token"]
    readonly_headers = {"Authorization": f"Bearer {token_value}"}

    initial_access = client.get("/api/flows", headers=readonly_headers)
    assert initial_access.status_code == 200

    revoke = client.delete(f"/api/auth/tokens/{token_data['id']}", headers=admin_headers)
    assert revoke.status_code == 204

    revoked_access = client.get("/api/flows", headers=readonly_headers)
    assert revoked_access.status_code == 401


def test_callers_only_see_their_own_flows(client, auth_header_factory):
    first = auth_header_factory(role="editor", user_id="user-1")
    second = auth_header_factory(role="editor", user_id="user-2")
    created = client.post(
        "/api/flows", json={"name": "Private", "flow_type": "goal"}, headers=first
    ).get_json()

    assert client.get("/api/flows", headers=second).get_json() == []
    denied = client.get(f"/api/flows/{created['id']}", headers=second)
    assert denied.status_code == 403
    assert denied.get_json()["kind"] == "unauthorized"
