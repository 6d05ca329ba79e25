"""REST API endpoints for flows and their hierarchy."""

from __future__ import annotations

from http import HTTPStatus
from typing import Any

from flask import Blueprint, jsonify, request

from ..flows.context import flow_service
from ..flows.errors import ValidationFailed
from ..flows.repository import FlowFilters
from ..flows.serialize import flow_to_dict, parse_timestamp
from ..flows.service import FlowService
from ..models.flow import Flow
from ..utils.auth import require_token

bp = Blueprint("flows", __name__)


def _json_payload() -> dict[str, Any]:
    payload = request.get_json(force=True, silent=True)
    if payload is None:
        return {}
    if not isinstance(payload, dict):
        raise ValidationFailed(["payload must be an object"])
    return payload


def _list_arg(name: str) -> list[str] | None:
    """Collect a repeatable, optionally comma separated query argument."""

    values: list[str] = []
    for raw in request.args.getlist(name):
        values.extend(part.strip() for part in raw.split(",") if part.strip())
    return values or None


def _parse_filters() -> FlowFilters:
    errors: list[str] = []
    depth_level = None
    if request.args.get("depth_level"):
        depth_level = request.args.get("depth_level", type=int)
        if depth_level is None:
            errors.append("depth_level must be an integer")

    timestamps: dict[str, Any] = {}
    for key in ("created_after", "created_before"):
        try:
            timestamps[key] = parse_timestamp(request.args.get(key))
        except ValueError:
            errors.append(f"{key} must be an ISO-8601 timestamp")
    if errors:
        raise ValidationFailed(errors)

    return FlowFilters(
        flow_type=_list_arg("flow_type"),
        status=_list_arg("status"),
        depth_level=depth_level,
        parent_flow_id=request.args.get("parent_flow_id") or None,
        root_flow_id=request.args.get("root_flow_id") or None,
        created_after=timestamps.get("created_after"),
        created_before=timestamps.get("created_before"),
        search=(request.args.get("search") or "").strip() or None,
    )


def _with_progress(service: FlowService, flow: Flow) -> dict[str, Any]:
    return flow_to_dict(flow, service.progress(flow.id))


def _flow_list(flows: list[Flow]) -> list[dict[str, Any]]:
    return [flow_to_dict(flow) for flow in flows]


@bp.get("/flows")
@require_token()
def list_flows() -> tuple[object, int]:
    service = flow_service()
    flows = service.list(_parse_filters())
    return jsonify([_with_progress(service, flow) for flow in flows]), HTTPStatus.OK


@bp.post("/flows")
@require_token(role="editor")
def create_flow() -> tuple[object, int]:
    service = flow_service()
    flow = service.create(_json_payload())
    return jsonify(_with_progress(service, flow)), HTTPStatus.CREATED


@bp.get("/flows/tree")
@require_token()
def get_flow_tree() -> tuple[object, int]:
    root_id = request.args.get("root_id") or None
    roots = flow_service().tree(root_id)
    return jsonify([node.to_dict() for node in roots]), HTTPStatus.OK


@bp.get("/flows/<flow_id>")
@require_token()
def get_flow(flow_id: str) -> tuple[object, int]:
    service = flow_service()
    flow = service.get(flow_id)
    return jsonify(_with_progress(service, flow)), HTTPStatus.OK


@bp.route("/flows/<flow_id>", methods=["PATCH", "PUT"])
@require_token(role="editor")
def update_flow(flow_id: str) -> tuple[object, int]:
    service = flow_service()
    flow = service.update(flow_id, _json_payload())
    return jsonify(_with_progress(service, flow)), HTTPStatus.OK


@bp.delete("/flows/<flow_id>")
@require_token(role="editor")
def delete_flow(flow_id: str) -> tuple[object, int]:
    flow_service().delete(flow_id)
    return "", HTTPStatus.NO_CONTENT


@bp.post("/flows/<flow_id>/move")
@require_token(role="editor")
def move_flow(flow_id: str) -> tuple[object, int]:
    payload = _json_payload()
    new_parent_id = payload.get("new_parent_flow_id")
    if new_parent_id is not None and not isinstance(new_parent_id, str):
        raise ValidationFailed(["new_parent_flow_id must be a string or null"])

    service = flow_service()
    flow = service.move(flow_id, new_parent_id)
    return jsonify(_with_progress(service, flow)), HTTPStatus.OK


@bp.post("/flows/<flow_id>/duplicate")
@require_token(role="editor")
def duplicate_flow(flow_id: str) -> tuple[object, int]:
    payload = _json_payload()
    new_parent_id = payload.get("new_parent_flow_id")
    if new_parent_id is not None and not isinstance(new_parent_id, str):
        raise ValidationFailed(["new_parent_flow_id must be a string or null"])
    include_children = payload.get("include_children", False)
    if not isinstance(include_children, bool):
        raise ValidationFailed(["include_children must be a boolean"])

    service = flow_service()
    flow = service.duplicate(
        flow_id,
        new_name=payload.get("new_name"),
        new_parent_id=new_parent_id,
        include_children=include_children,
    )
    return jsonify(_with_progress(service, flow)), HTTPStatus.CREATED


@bp.get("/flows/<flow_id>/children")
@require_token()
def get_flow_children(flow_id: str) -> tuple[object, int]:
    return jsonify(_flow_list(flow_service().children(flow_id))), HTTPStatus.OK


@bp.get("/flows/<flow_id>/descendants")
@require_token()
def get_flow_descendants(flow_id: str) -> tuple[object, int]:
    return jsonify(_flow_list(flow_service().descendants(flow_id))), HTTPStatus.OK


@bp.get("/flows/<flow_id>/ancestors")
@require_token()
def get_flow_ancestors(flow_id: str) -> tuple[object, int]:
    return jsonify(_flow_list(flow_service().ancestors(flow_id))), HTTPStatus.OK


@bp.get("/flows/<flow_id>/progress")
@require_token()
def get_flow_progress(flow_id: str) -> tuple[object, int]:
    progress = flow_service().progress(flow_id)
    return jsonify({"flow_id": flow_id, "progress": progress}), HTTPStatus.OK


@bp.get("/flows/<flow_id>/analytics")
@require_token()
def get_flow_analytics(flow_id: str) -> tuple[object, int]:
    return jsonify(flow_service().analytics(flow_id)), HTTPStatus.OK
