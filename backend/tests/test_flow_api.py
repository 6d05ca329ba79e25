"""HTTP tests for the flow hierarchy endpoints."""

from __future__ import annotations

import json

import pytest

from backend.app.extensions import db
from backend.app.models import NestedFlowTemplate


def _create(client, headers, name, parent_flow_id=None, flow_type="task"):
    response = client.post(
        "/api/flows",
        json={"name": name, "flow_type": flow_type, "parent_flow_id": parent_flow_id},
        headers=headers,
    )
    assert response.status_code == 201, response.get_json()
    return response.get_json()


@pytest.fixture()
def tree(client, editor_headers):
    root = _create(client, editor_headers, "Roadmap", flow_type="goal")
    a = _create(client, editor_headers, "Alpha", root["id"], flow_type="project")
    b = _create(client, editor_headers, "Beta", root["id"], flow_type="project")
    a1 = _create(client, editor_headers, "Alpha one", a["id"])
    return {"R": root, "A": a, "B": b, "A1": a1}


def test_create_returns_derived_fields(tree):
    a1 = tree["A1"]

    assert a1["depth_level"] == 2
    assert a1["root_flow_id"] == tree["R"]["id"]
    assert a1["path"] == f"{tree['A']['path']}/{a1['id']}"
    assert a1["status"] == "draft"
    assert a1["progress"] == 0.0
    assert a1["created_at"].endswith("Z")


def test_create_validation_error(client, editor_headers):
    response = client.post("/api/flows", json={"flow_type": "task"}, headers=editor_headers)

    assert response.status_code == 400
    body = response.get_json()
    assert body["kind"] == "validation_failed"
    assert body["errors"] == ["name is required"]


def test_create_rejects_non_object_payload(client, editor_headers):
    response = client.post(
        "/api/flows", data=json.dumps(["x"]), content_type="application/json", headers=editor_headers
    )

    assert response.status_code == 400


def test_get_unknown_flow(client, editor_headers):
    response = client.get("/api/flows/missing", headers=editor_headers)

    assert response.status_code == 404
    assert response.get_json()["kind"] == "not_found"


def test_list_filters(client, editor_headers, tree):
    all_flows = client.get("/api/flows", headers=editor_headers).get_json()
    assert len(all_flows) == 4

    projects = client.get(
        "/api/flows", query_string={"flow_type": "project"}, headers=editor_headers
    ).get_json()
    assert {flow["id"] for flow in projects} == {tree["A"]["id"], tree["B"]["id"]}

    mixed = client.get(
        "/api/flows", query_string={"flow_type": "goal,task"}, headers=editor_headers
    ).get_json()
    assert {flow["id"] for flow in mixed} == {tree["R"]["id"], tree["A1"]["id"]}

    children_of_a = client.get(
        "/api/flows", query_string={"parent_flow_id": tree["A"]["id"]}, headers=editor_headers
    ).get_json()
    assert [flow["id"] for flow in children_of_a] == [tree["A1"]["id"]]

    searched = client.get(
        "/api/flows", query_string={"search": "alpha"}, headers=editor_headers
    ).get_json()
    assert {flow["name"] for flow in searched} == {"Alpha", "Alpha one"}

    invalid = client.get(
        "/api/flows", query_string={"depth_level": "deep"}, headers=editor_headers
    )
    assert invalid.status_code == 400
    bad_date = client.get(
        "/api/flows", query_string={"created_after": "yesterday"}, headers=editor_headers
    )
    assert bad_date.status_code == 400


def test_update_and_structural_rejection(client, editor_headers, tree):
    flow_id = tree["A"]["id"]

    response = client.patch(
        f"/api/flows/{flow_id}", json={"status": "completed"}, headers=editor_headers
    )
    assert response.status_code == 200
    assert response.get_json()["status"] == "completed"

    rejected = client.patch(
        f"/api/flows/{flow_id}", json={"parent_flow_id": None}, headers=editor_headers
    )
    assert rejected.status_code == 409
    assert rejected.get_json()["kind"] == "invalid_structural_operation"


def test_tree_endpoint(client, editor_headers, tree):
    client.patch(
        f"/api/flows/{tree['A1']['id']}", json={"status": "completed"}, headers=editor_headers
    )

    response = client.get("/api/flows/tree", headers=editor_headers)
    assert response.status_code == 200
    roots = response.get_json()
    assert [root["id"] for root in roots] == [tree["R"]["id"]]
    root = roots[0]
    assert root["progress"] == 0.25
    assert root["has_children"] is True
    alpha = next(child for child in root["children"] if child["id"] == tree["A"]["id"])
    assert alpha["progress"] == 0.5
    assert alpha["children"][0]["progress"] == 1.0

    scoped = client.get(
        "/api/flows/tree", query_string={"root_id": tree["A"]["id"]}, headers=editor_headers
    ).get_json()
    assert [node["id"] for node in scoped] == [tree["A"]["id"]]


def test_hierarchy_queries(client, editor_headers, tree):
    root_id = tree["R"]["id"]

    children = client.get(f"/api/flows/{root_id}/children", headers=editor_headers).get_json()
    assert [flow["id"] for flow in children] == [tree["A"]["id"], tree["B"]["id"]]

    descendants = client.get(
        f"/api/flows/{root_id}/descendants", headers=editor_headers
    ).get_json()
    assert len(descendants) == 3

    ancestors = client.get(
        f"/api/flows/{tree['A1']['id']}/ancestors", headers=editor_headers
    ).get_json()
    assert [flow["id"] for flow in ancestors] == [root_id, tree["A"]["id"]]

    progress = client.get(f"/api/flows/{root_id}/progress", headers=editor_headers).get_json()
    assert progress == {"flow_id": root_id, "progress": 0.0}

    analytics = client.get(f"/api/flows/{root_id}/analytics", headers=editor_headers).get_json()
    assert analytics["total_flows"] == 4
    assert analytics["success_rate"] == 0.0


def test_move_endpoint(client, editor_headers, tree):
    response = client.post(
        f"/api/flows/{tree['A']['id']}/move",
        json={"new_parent_flow_id": tree["B"]["id"]},
        headers=editor_headers,
    )
    assert response.status_code == 200
    assert response.get_json()["depth_level"] == 2

    a1 = client.get(f"/api/flows/{tree['A1']['id']}", headers=editor_headers).get_json()
    assert a1["depth_level"] == 3
    assert a1["path"].split("/") == [
        tree["R"]["id"], tree["B"]["id"], tree["A"]["id"], tree["A1"]["id"]
    ]

    cycle = client.post(
        f"/api/flows/{tree['R']['id']}/move",
        json={"new_parent_flow_id": tree["A1"]["id"]},
        headers=editor_headers,
    )
    assert cycle.status_code == 409


def test_duplicate_and_delete_endpoints(client, editor_headers, tree):
    response = client.post(
        f"/api/flows/{tree['A']['id']}/duplicate",
        json={"include_children": True, "new_name": "Alpha copy"},
        headers=editor_headers,
    )
    assert response.status_code == 201
    copy = response.get_json()
    assert copy["name"] == "Alpha copy"
    assert copy["parent_flow_id"] is None
    assert len(client.get("/api/flows", headers=editor_headers).get_json()) == 6

    invalid = client.post(
        f"/api/flows/{tree['A']['id']}/duplicate",
        json={"include_children": "yes"},
        headers=editor_headers,
    )
    assert invalid.status_code == 400

    deleted = client.delete(f"/api/flows/{tree['R']['id']}", headers=editor_headers)
    assert deleted.status_code == 204
    assert client.delete(f"/api/flows/{tree['R']['id']}", headers=editor_headers).status_code == 204
    remaining = client.get("/api/flows", headers=editor_headers).get_json()
    assert sorted(flow["name"] for flow in remaining) == ["Alpha copy", "Alpha one"]


def test_template_endpoints(client, editor_headers, readonly_headers):
    db.session.add(
        NestedFlowTemplate(
            id="tpl-child", name="Child", flow_type="task", author_id="seed", is_public=True
        )
    )
    db.session.commit()

    created = client.post(
        "/api/templates",
        json={"name": "Parent", "flow_type": "project", "sub_flows": ["tpl-child"]},
        headers=editor_headers,
    )
    assert created.status_code == 201
    template = created.get_json()
    assert template["author_id"] == "user-1"

    listed = client.get(
        "/api/templates", query_string={"flow_type": "project"}, headers=readonly_headers
    ).get_json()
    assert [item["id"] for item in listed] == [template["id"]]
    assert client.get(
        "/api/templates", query_string={"rating_min": "high"}, headers=readonly_headers
    ).status_code == 400

    instantiated = client.post(
        f"/api/templates/{template['id']}/instantiate", json={}, headers=editor_headers
    )
    assert instantiated.status_code == 201
    flow = instantiated.get_json()
    children = client.get(f"/api/flows/{flow['id']}/children", headers=editor_headers).get_json()
    assert [child["template_id"] for child in children] == ["tpl-child"]


def test_audit_logs_endpoint(client, admin_headers, editor_headers, tree):
    client.delete(f"/api/flows/{tree['B']['id']}", headers=editor_headers)

    response = client.get("/api/logs", query_string={"source": "flow"}, headers=admin_headers)
    assert response.status_code == 200
    entries = response.get_json()
    assert [entry["action"] for entry in entries] == ["delete"]

    assert client.get(
        "/api/logs", query_string={"source": "nope"}, headers=admin_headers
    ).status_code == 400

    download = client.get("/api/logs/download", headers=admin_headers)
    assert download.status_code == 200
    assert download.mimetype == "application/x-ndjson"
    lines = download.get_data(as_text=True).splitlines()
    assert json.loads(lines[-1])["action"] == "delete"


def test_store_outage_is_retryable(client, editor_headers, monkeypatch):
    from backend.app.flows.errors import StoreUnavailable
    from backend.app.flows.repository import FlowRepository

    def failing_insert(self, flow):
        raise StoreUnavailable("record store is unavailable")

    monkeypatch.setattr(FlowRepository, "insert", failing_insert)

    response = client.post(
        "/api/flows", json={"name": "Down", "flow_type": "task"}, headers=editor_headers
    )

    assert response.status_code == 503
    assert response.headers["Retry-After"] == "1"
    assert response.get_json()["kind"] == "store_unavailable"
