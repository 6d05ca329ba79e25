"""API endpoints exposing audit log entries."""

from __future__ import annotations

import json
from http import HTTPStatus

from flask import Blueprint, Response, jsonify, request

from ..flows.serialize import isoformat
from ..models.logs import AUDIT_SOURCES, AuditLog
from ..utils.auth import require_token

bp = Blueprint("logs", __name__)


def _serialize_entry(entry: AuditLog) -> dict[str, object]:
    return {
        "id": entry.id,
        "source": entry.source,
        "action": entry.action,
        "message": entry.message,
        "createdAt": isoformat(entry.created_at),
    }


def _filtered_query(source: str | None, action: str | None):
    query = AuditLog.query
    if source:
        if source not in AUDIT_SOURCES:
            return None
        query = query.filter_by(source=source)
    if action:
        query = query.filter_by(action=action)
    return query


@bp.get("/logs")
@require_token(role="admin")
def get_logs() -> tuple[object, int]:
    limit = request.args.get("limit", type=int) or 200
    limit = max(1, min(limit, 200))

    query = _filtered_query(request.args.get("source"), request.args.get("action"))
    if query is None:
        return jsonify({"error": "invalid source"}), HTTPStatus.BAD_REQUEST

    entries = query.order_by(AuditLog.created_at.desc(), AuditLog.id.desc()).limit(limit).all()
    return jsonify([_serialize_entry(entry) for entry in entries]), HTTPStatus.OK


@bp.get("/logs/download")
@require_token(role="admin")
def download_logs() -> Response | tuple[object, int]:
    limit = request.args.get("limit", type=int) or 200
    limit = max(1, min(limit, 1000))

    query = _filtered_query(request.args.get("source"), request.args.get("action"))
    if query is None:
        return jsonify({"error": "invalid source"}), HTTPStatus.BAD_REQUEST

    entries = query.order_by(AuditLog.created_at.desc(), AuditLog.id.desc()).limit(limit).all()
    lines = [json.dumps(_serialize_entry(entry)) for entry in reversed(entries)]
    response = Response("\n".join(lines), mimetype="application/x-ndjson")
    response.headers["Content-Disposition"] = "attachment; filename=flow-audit.ndjson"
    return response
