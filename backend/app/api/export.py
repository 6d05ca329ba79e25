"""API endpoints for exporting and importing flow snapshots."""
from __future__ import annotations

from http import HTTPStatus

from flask import Blueprint, current_app, jsonify, request

from ..extensions import limiter
from ..flows.context import transfer_service
from ..flows.errors import ValidationFailed
from ..flows.serialize import flow_to_dict
from ..utils.auth import require_token

bp = Blueprint("export", __name__)


def _import_rate_limit() -> str:
    return current_app.config.get("IMPORT_RATE_LIMIT", "10 per minute")


@bp.post("/export")
@require_token()
def export_flows() -> tuple[object, int]:
    """Return a snapshot of the requested flows, their descendants and templates."""

    payload = request.get_json(force=True, silent=True)
    if not isinstance(payload, dict):
        return jsonify({"error": "payload must be an object"}), HTTPStatus.BAD_REQUEST

    flow_ids = payload.get("flow_ids")
    if not isinstance(flow_ids, list) or not all(isinstance(item, str) for item in flow_ids):
        raise ValidationFailed(["flow_ids must be a list of flow ids"])

    return jsonify(transfer_service().export(flow_ids)), HTTPStatus.OK


@bp.post("/import")
@require_token(role="editor")
@limiter.limit(_import_rate_limit)
def import_flows() -> tuple[object, int]:
    """Upsert the flows (and optionally templates) of a snapshot."""

    payload = request.get_json(force=True, silent=True)
    if not isinstance(payload, dict):
        return jsonify({"error": "payload must be an object"}), HTTPStatus.BAD_REQUEST

    options = payload.get("import_options")
    if not isinstance(options, dict):
        options = {}
    flag = request.args.get("import_templates")
    if flag is not None:
        import_templates = flag.lower() in {"1", "true", "yes"}
    else:
        import_templates = bool(options.get("import_templates", True))

    imported = transfer_service().import_snapshot(payload, import_templates=import_templates)
    return (
        jsonify({"imported": len(imported), "flows": [flow_to_dict(flow) for flow in imported]}),
        HTTPStatus.OK,
    )
