"""JSON representations shared by the HTTP API and snapshots."""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any

from ..models.flow import Flow
from ..models.template import NestedFlowTemplate


def isoformat(value: datetime | None) -> str | None:
    if value is None:
        return None
    return value.isoformat() + "Z"


def parse_timestamp(value: Any) -> datetime | None:
    """Parse an ISO-8601 string into a naive UTC datetime."""

    if value is None or value == "":
        return None
    if not isinstance(value, str):
        raise ValueError("timestamp must be an ISO-8601 string")
    parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(UTC).replace(tzinfo=None)
    return parsed


def flow_to_dict(flow: Flow, progress: float | None = None) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "id": flow.id,
        "name": flow.name,
        "description": flow.description,
        "flow_type": flow.flow_type,
        "status": flow.status,
        "parent_flow_id": flow.parent_flow_id,
        "root_flow_id": flow.root_flow_id,
        "path": flow.path,
        "depth_level": flow.depth_level,
        "template_id": flow.template_id,
        "user_id": flow.user_id,
        "customizations": flow.customizations,
        "created_at": isoformat(flow.created_at),
        "updated_at": isoformat(flow.updated_at),
    }
    if progress is not None:
        payload["progress"] = progress
    return payload


def template_to_dict(template: NestedFlowTemplate) -> dict[str, Any]:
    return {
        "id": template.id,
        "name": template.name,
        "description": template.description,
        "flow_type": template.flow_type,
        "category": template.category,
        "difficulty": template.difficulty,
        "tags": list(template.tags or []),
        "steps": list(template.steps or []),
        "sub_flows": list(template.sub_flows or []),
        "version": template.version,
        "is_public": template.is_public,
        "author_id": template.author_id,
        "author_name": template.author_name,
        "rating": template.rating,
        "usage_count": template.usage_count,
        "created_at": isoformat(template.created_at),
        "updated_at": isoformat(template.updated_at),
    }
