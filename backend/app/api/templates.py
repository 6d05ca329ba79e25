"""REST API endpoints for the nested flow template catalog."""

from __future__ import annotations

from http import HTTPStatus

from flask import Blueprint, jsonify, request

from ..flows.context import template_service
from ..flows.errors import ValidationFailed
from ..flows.repository import TemplateFilters
from ..flows.serialize import flow_to_dict, template_to_dict
from ..utils.auth import require_token
from .flows import _json_payload, _list_arg

bp = Blueprint("templates", __name__)

_TRUE_VALUES = {"1", "true", "yes"}
_FALSE_VALUES = {"0", "false", "no"}


def _parse_template_filters() -> TemplateFilters:
    errors: list[str] = []

    is_public = None
    raw_public = (request.args.get("is_public") or "").lower()
    if raw_public in _TRUE_VALUES:
        is_public = True
    elif raw_public in _FALSE_VALUES:
        is_public = False
    elif raw_public:
        errors.append("is_public must be a boolean")

    rating_min = request.args.get("rating_min", type=float)
    if request.args.get("rating_min") and rating_min is None:
        errors.append("rating_min must be a number")
    usage_count_min = request.args.get("usage_count_min", type=int)
    if request.args.get("usage_count_min") and usage_count_min is None:
        errors.append("usage_count_min must be an integer")
    if errors:
        raise ValidationFailed(errors)

    return TemplateFilters(
        flow_type=_list_arg("flow_type"),
        category=_list_arg("category"),
        difficulty=_list_arg("difficulty"),
        is_public=is_public,
        author_id=request.args.get("author_id") or None,
        search=(request.args.get("search") or "").strip() or None,
        rating_min=rating_min,
        usage_count_min=usage_count_min,
    )


@bp.get("/templates")
@require_token()
def list_templates() -> tuple[object, int]:
    templates = template_service().list(_parse_template_filters())
    return jsonify([template_to_dict(template) for template in templates]), HTTPStatus.OK


@bp.post("/templates")
@require_token(role="editor")
def create_template() -> tuple[object, int]:
    payload = _json_payload()
    template = template_service().create(payload, author_name=payload.get("author_name"))
    return jsonify(template_to_dict(template)), HTTPStatus.CREATED


@bp.get("/templates/<template_id>")
@require_token()
def get_template(template_id: str) -> tuple[object, int]:
    return jsonify(template_to_dict(template_service().get(template_id))), HTTPStatus.OK


@bp.post("/templates/<template_id>/instantiate")
@require_token(role="editor")
def instantiate_template(template_id: str) -> tuple[object, int]:
    payload = _json_payload()
    parent_flow_id = payload.get("parent_flow_id")
    if parent_flow_id is not None and not isinstance(parent_flow_id, str):
        raise ValidationFailed(["parent_flow_id must be a string or null"])

    flow = template_service().instantiate(template_id, parent_flow_id)
    return jsonify(flow_to_dict(flow)), HTTPStatus.CREATED
