"""Versioned export snapshots of flow subtrees and their idempotent import."""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from datetime import UTC, datetime
from typing import Any

from flask import current_app

from ..models.flow import FLOW_STATUSES, Flow
from ..models.template import DIFFICULTIES
from .audit import persist_audit_log, run_multi_step
from .errors import InvalidStructuralOperation, Unauthorized, ValidationFailed, VersionMismatch
from .paths import compute_depth, compute_path, compute_root, path_segments
from .repository import FlowRepository
from .serialize import flow_to_dict, parse_timestamp, template_to_dict
from .service import FlowService

EXPORT_VERSION = "1.0.0"
SUPPORTED_MAJOR_VERSIONS = frozenset({1})


def check_snapshot_version(version: Any) -> None:
    """Reject snapshots whose major version this service does not understand."""

    if isinstance(version, int) and not isinstance(version, bool):
        major = version
    elif isinstance(version, str) and version.split(".", 1)[0].isdigit():
        major = int(version.split(".", 1)[0])
    else:
        raise VersionMismatch(f"snapshot version {version!r} is not recognised")
    if major not in SUPPORTED_MAJOR_VERSIONS:
        raise VersionMismatch(
            f"snapshot version {version} is not supported (expected {EXPORT_VERSION})"
        )


def _optional_string(item: Mapping[str, Any], key: str, label: str, errors: list[str]) -> str | None:
    value = item.get(key)
    if value is not None and not isinstance(value, str):
        errors.append(f"{label}.{key} must be a string or null")
        return None
    return value or None


def _validate_flow_item(
    item: Any, index: int, separator: str
) -> tuple[dict[str, Any], list[str]]:
    label = f"flows[{index}]"
    if not isinstance(item, dict):
        return {}, [f"{label} must be an object"]

    errors: list[str] = []
    flow_id = item.get("id")
    if not isinstance(flow_id, str) or not flow_id.strip():
        return {}, [f"{label}.id is required"]

    name = item.get("name")
    if not isinstance(name, str) or not name.strip():
        errors.append(f"{label}.name is required")
    flow_type = item.get("flow_type")
    if not isinstance(flow_type, str) or not flow_type.strip():
        errors.append(f"{label}.flow_type is required")
    status = item.get("status") or "draft"
    if status not in FLOW_STATUSES:
        errors.append(f"{label}.status is invalid")

    parent_flow_id = _optional_string(item, "parent_flow_id", label, errors)
    path = item.get("path") or (flow_id if parent_flow_id is None else None)
    if not isinstance(path, str) or path_segments(path, separator)[-1:] != [flow_id]:
        errors.append(f"{label}.path must end with the flow id")
    depth_level = item.get("depth_level", 0)
    if not isinstance(depth_level, int) or isinstance(depth_level, bool) or depth_level < 0:
        errors.append(f"{label}.depth_level must be a non-negative integer")

    customizations = item.get("customizations")
    if customizations is not None and not isinstance(customizations, dict):
        errors.append(f"{label}.customizations must be an object or null")

    data: dict[str, Any] = {
        "id": flow_id,
        "name": name.strip() if isinstance(name, str) else "",
        "description": _optional_string(item, "description", label, errors),
        "flow_type": flow_type.strip() if isinstance(flow_type, str) else "",
        "status": status,
        "parent_flow_id": parent_flow_id,
        "root_flow_id": _optional_string(item, "root_flow_id", label, errors) or flow_id,
        "path": path,
        "depth_level": depth_level,
        "template_id": _optional_string(item, "template_id", label, errors),
        "customizations": customizations,
    }
    for key in ("created_at", "updated_at"):
        try:
            timestamp = parse_timestamp(item.get(key))
        except ValueError:
            errors.append(f"{label}.{key} must be an ISO-8601 timestamp")
            continue
        if timestamp is not None:
            data[key] = timestamp
    return data, errors


def _validate_template_item(item: Any, index: int) -> tuple[dict[str, Any], list[str]]:
    label = f"templates[{index}]"
    if not isinstance(item, dict):
        return {}, [f"{label} must be an object"]

    errors: list[str] = []
    template_id = item.get("id")
    if not isinstance(template_id, str) or not template_id.strip():
        return {}, [f"{label}.id is required"]
    name = item.get("name")
    if not isinstance(name, str) or not name.strip():
        errors.append(f"{label}.name is required")
    flow_type = item.get("flow_type")
    if not isinstance(flow_type, str) or not flow_type.strip():
        errors.append(f"{label}.flow_type is required")
    difficulty = item.get("difficulty") or "beginner"
    if difficulty not in DIFFICULTIES:
        errors.append(f"{label}.difficulty is invalid")
    sub_flows = item.get("sub_flows") or []
    if not isinstance(sub_flows, list) or not all(isinstance(ref, str) for ref in sub_flows):
        errors.append(f"{label}.sub_flows must be a list of template ids")
        sub_flows = []
    try:
        rating = float(item.get("rating") or 0.0)
        usage_count = int(item.get("usage_count") or 0)
    except (TypeError, ValueError):
        errors.append(f"{label}.rating and usage_count must be numeric")
        rating, usage_count = 0.0, 0
    author_id = item.get("author_id")
    if not isinstance(author_id, str) or not author_id:
        errors.append(f"{label}.author_id is required")

    data = {
        "id": template_id,
        "name": name.strip() if isinstance(name, str) else "",
        "description": item.get("description"),
        "flow_type": flow_type.strip() if isinstance(flow_type, str) else "",
        "category": item.get("category"),
        "difficulty": difficulty,
        "tags": list(item.get("tags") or []),
        "steps": list(item.get("steps") or []),
        "sub_flows": list(sub_flows),
        "version": str(item.get("version") or "1.0.0"),
        "is_public": bool(item.get("is_public", False)),
        "author_id": author_id,
        "author_name": item.get("author_name"),
        "rating": rating,
        "usage_count": usage_count,
    }
    return data, errors


class TransferService:
    """Export flow subtrees with their templates and import such snapshots."""

    def __init__(
        self,
        repository: FlowRepository,
        user_id: str,
        flows: FlowService | None = None,
        *,
        max_items: int = 5000,
    ) -> None:
        self.repository = repository
        self.user_id = user_id
        self.flows = flows or FlowService(repository, user_id)
        self.max_items = max_items

    def export(self, flow_ids: Iterable[str]) -> dict[str, Any]:
        requested = list(dict.fromkeys(flow_ids))
        if not requested:
            raise ValidationFailed(["flow_ids must contain at least one id"])

        collected: dict[str, Flow] = {}
        for flow_id in requested:
            self.flows.get(flow_id)
            for flow in self.repository.subtree(flow_id):
                collected.setdefault(flow.id, flow)

        template_ids = dict.fromkeys(
            flow.template_id for flow in collected.values() if flow.template_id
        )
        templates = []
        for template_id in template_ids:
            template = self.repository.get_template(template_id)
            if template is None:
                current_app.logger.warning(
                    "Template %s referenced by exported flows no longer exists", template_id
                )
                continue
            if not template.is_visible_to(self.user_id):
                current_app.logger.info(
                    "Leaving private template %s of another author out of the export", template_id
                )
                continue
            templates.append(template)

        return {
            "version": EXPORT_VERSION,
            "exported_at": datetime.now(UTC).isoformat().replace("+00:00", "Z"),
            "flows": [flow_to_dict(flow) for flow in collected.values()],
            "templates": [template_to_dict(template) for template in templates],
            "relationships": [],
            "metadata": {
                "total_flows": len(collected),
                "total_templates": len(templates),
                "export_scope": "single" if len(requested) == 1 else "branch",
            },
        }

    def _derive_structure(self, flows: dict[str, dict[str, Any]]) -> list[dict[str, Any]]:
        """Recompute ``path``, ``depth_level`` and ``root_flow_id`` from parent links.

        Parents inside the snapshot are placed first. A parent outside the
        snapshot must be an existing flow of the caller, so an import can never
        attach flows to someone else's tree.
        """

        separator = self.repository.separator
        resolved: dict[str, dict[str, Any]] = {}

        def place(data: dict[str, Any]) -> dict[str, Any]:
            flow_id = data["id"]
            parent_id = data["parent_flow_id"]
            if parent_id is None:
                path, depth, root = flow_id, 0, flow_id
            elif parent_id in resolved:
                parent = resolved[parent_id]
                path = compute_path(parent["path"], flow_id, separator)
                depth = compute_depth(parent["depth_level"])
                root = parent["root_flow_id"]
            else:
                existing = self.flows.load_parent(parent_id)
                path = compute_path(existing.path, flow_id, separator)
                depth = compute_depth(existing.depth_level)
                root = compute_root(existing, flow_id)
            if depth > self.flows.max_depth:
                raise InvalidStructuralOperation(
                    f"flow tree would exceed the maximum depth of {self.flows.max_depth}"
                )
            return {**data, "path": path, "depth_level": depth, "root_flow_id": root}

        for flow_id in flows:
            chain: list[str] = []
            current: str | None = flow_id
            while current is not None and current in flows and current not in resolved:
                if current in chain:
                    raise ValidationFailed(
                        ["flows form a parent cycle: " + " -> ".join(chain + [current])]
                    )
                chain.append(current)
                current = flows[current]["parent_flow_id"]
            for chain_id in reversed(chain):
                resolved[chain_id] = place(flows[chain_id])

        return sorted(resolved.values(), key=lambda data: data["depth_level"])

    def _validate_snapshot(
        self, snapshot: Mapping[str, Any], import_templates: bool
    ) -> tuple[list[dict[str, Any]], list[dict[str, Any]]]:
        if not isinstance(snapshot, Mapping):
            raise ValidationFailed(["snapshot must be an object"])
        check_snapshot_version(snapshot.get("version"))

        flow_items = snapshot.get("flows", [])
        template_items = snapshot.get("templates", []) if import_templates else []
        if not isinstance(flow_items, list):
            raise ValidationFailed(["flows must be a list"])
        if not isinstance(template_items, list):
            raise ValidationFailed(["templates must be a list"])
        if len(flow_items) + len(template_items) > self.max_items:
            raise ValidationFailed([f"snapshot exceeds {self.max_items} items"])

        errors: list[str] = []
        flows: dict[str, dict[str, Any]] = {}
        for index, item in enumerate(flow_items, start=1):
            data, item_errors = _validate_flow_item(item, index, self.repository.separator)
            errors.extend(item_errors)
            if data:
                flows[data["id"]] = data
        templates: dict[str, dict[str, Any]] = {}
        for index, item in enumerate(template_items, start=1):
            data, item_errors = _validate_template_item(item, index)
            errors.extend(item_errors)
            if data:
                templates[data["id"]] = data
        if errors:
            raise ValidationFailed(errors)

        for flow_id in flows:
            existing = self.repository.get(flow_id)
            if existing is not None and existing.user_id != self.user_id:
                raise Unauthorized(f"flow {flow_id} belongs to another user")
        writable_templates = []
        for template_id, data in templates.items():
            existing_template = self.repository.get_template(template_id)
            if existing_template is not None and existing_template.author_id != self.user_id:
                # Catalog entries of other authors are referenced, never overwritten.
                current_app.logger.info("Keeping existing template %s of another author", template_id)
                continue
            writable_templates.append(data)

        return self._derive_structure(flows), writable_templates

    def import_snapshot(
        self, snapshot: Mapping[str, Any], *, import_templates: bool = True
    ) -> list[Flow]:
        """Upsert the snapshot's templates and flows keyed by their ids."""

        flows, templates = self._validate_snapshot(snapshot, import_templates)
        counts = {"created": 0, "updated": 0}

        def apply(written: list[str]) -> list[Flow]:
            for data in templates:
                template, created = self.repository.upsert_template(data)
                counts["created" if created else "updated"] += 1
                written.append(template.id)
            imported: list[Flow] = []
            for data in flows:
                flow, created = self.repository.upsert_flow({**data, "user_id": self.user_id})
                counts["created" if created else "updated"] += 1
                written.append(flow.id)
                imported.append(flow)
            return imported

        imported = run_multi_step(self.repository, "transfer", "import", apply)
        persist_audit_log(
            "transfer",
            "import",
            f"imported {len(imported)} flow(s) and {len(templates)} template(s): "
            f"created={counts['created']} updated={counts['updated']}",
        )
        return imported
