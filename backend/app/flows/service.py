"""Structural mutation service for the flow forest.

All writes to the derived fields ``path``, ``depth_level`` and
``root_flow_id`` go through this module (and the snapshot import).
"""

from __future__ import annotations

from collections import defaultdict
from collections.abc import Mapping
from typing import Any

from flask import current_app

from ..models.flow import FLOW_STATUSES, STRUCTURAL_FIELDS, Flow, generate_id
from .audit import persist_audit_log, run_multi_step
from .errors import InvalidStructuralOperation, NotFound, Unauthorized, ValidationFailed
from .paths import compute_depth, compute_path, compute_root, is_descendant_of, rebase_path
from .progress import annotate_subtree_progress, calculate_progress, get_analytics
from .repository import FlowFilters, FlowRepository
from .tree import FlowTreeNode, build_flow_tree

MAX_NAME_LENGTH = 255
MAX_FLOW_TYPE_LENGTH = 50

_UPDATABLE_FIELDS = ("name", "description", "status", "flow_type", "customizations")
# Identity and ownership are as fixed as the tree linkage.
_IMMUTABLE_FIELDS = STRUCTURAL_FIELDS | {"id", "user_id"}
_READ_ONLY_FIELDS = frozenset({"template_id", "created_at", "updated_at"})


def validate_flow_payload(
    payload: Mapping[str, Any], *, partial: bool = False
) -> tuple[dict[str, Any], list[str]]:
    """Validate and normalize the mutable fields of a flow payload."""

    errors: list[str] = []
    data: dict[str, Any] = {}

    if not partial or "name" in payload:
        name = payload.get("name")
        name = name.strip() if isinstance(name, str) else ""
        if not name:
            errors.append("name is required")
        elif len(name) > MAX_NAME_LENGTH:
            errors.append("name is too long")
        data["name"] = name

    if not partial or "flow_type" in payload:
        flow_type = payload.get("flow_type")
        flow_type = flow_type.strip() if isinstance(flow_type, str) else ""
        if not flow_type:
            errors.append("flow_type is required")
        elif len(flow_type) > MAX_FLOW_TYPE_LENGTH:
            errors.append("flow_type is too long")
        data["flow_type"] = flow_type

    if not partial or "description" in payload:
        description = payload.get("description")
        if description is not None and not isinstance(description, str):
            errors.append("description must be a string or null")
        data["description"] = description

    if "status" in payload:
        status = payload.get("status")
        if status not in FLOW_STATUSES:
            errors.append("status must be one of " + ", ".join(FLOW_STATUSES))
        data["status"] = status

    if not partial or "customizations" in payload:
        customizations = payload.get("customizations")
        if customizations is not None and not isinstance(customizations, dict):
            errors.append("customizations must be an object or null")
        data["customizations"] = customizations

    return data, errors


class FlowService:
    """Create, read and restructure the flows owned by one caller."""

    def __init__(
        self,
        repository: FlowRepository,
        user_id: str,
        *,
        max_depth: int = 64,
    ) -> None:
        self.repository = repository
        self.user_id = user_id
        self.max_depth = max_depth

    # ------------------------------------------------------------ ownership

    def _ensure_owner(self, flow: Flow) -> Flow:
        if flow.user_id != self.user_id:
            raise Unauthorized(f"flow {flow.id} is not available")
        return flow

    def _load_owned(self, flow_id: str) -> Flow:
        return self._ensure_owner(self.repository.require(flow_id))

    def load_parent(self, parent_id: str, *, refresh: bool = False) -> Flow:
        parent = self.repository.get(parent_id, refresh=refresh)
        if parent is None:
            raise InvalidStructuralOperation(f"parent flow {parent_id} does not exist")
        return self._ensure_owner(parent)

    def check_depth(self, parent: Flow | None, subtree_height: int = 0) -> None:
        deepest = compute_depth(parent.depth_level if parent else None) + subtree_height
        if deepest > self.max_depth:
            raise InvalidStructuralOperation(
                f"flow tree would exceed the maximum depth of {self.max_depth}"
            )

    def _check_template_reference(self, template_id: str) -> None:
        template = self.repository.get_template(template_id)
        if template is None:
            raise NotFound(f"template {template_id} not found")
        if not template.is_visible_to(self.user_id):
            raise Unauthorized(f"template {template_id} is not available")

    def _new_flow(self, fields: Mapping[str, Any], parent: Flow | None) -> Flow:
        flow_id = generate_id()
        return Flow(
            id=flow_id,
            name=fields["name"],
            description=fields.get("description"),
            flow_type=fields["flow_type"],
            status="draft",
            parent_flow_id=parent.id if parent else None,
            root_flow_id=compute_root(parent, flow_id),
            path=compute_path(parent.path if parent else None, flow_id, self.repository.separator),
            depth_level=compute_depth(parent.depth_level if parent else None),
            template_id=fields.get("template_id"),
            user_id=self.user_id,
            customizations=fields.get("customizations"),
        )

    # ---------------------------------------------------------------- reads

    def list(self, filters: FlowFilters | None = None) -> list[Flow]:
        filters = filters or FlowFilters()
        filters.user_id = self.user_id
        return self.repository.list_flows(filters)

    def get(self, flow_id: str) -> Flow:
        return self._load_owned(flow_id)

    def children(self, flow_id: str) -> list[Flow]:
        self._load_owned(flow_id)
        return self.repository.children(flow_id)

    def descendants(self, flow_id: str) -> list[Flow]:
        self._load_owned(flow_id)
        return self.repository.get_descendants(flow_id)

    def ancestors(self, flow_id: str) -> list[Flow]:
        self._load_owned(flow_id)
        return self.repository.get_ancestors(flow_id)

    def progress(self, flow_id: str) -> float:
        self._load_owned(flow_id)
        return calculate_progress(self.repository, flow_id)

    def analytics(self, flow_id: str) -> dict[str, Any]:
        self._load_owned(flow_id)
        return get_analytics(self.repository, flow_id)

    def tree(self, root_id: str | None = None) -> list[FlowTreeNode]:
        """Project the subtree of ``root_id`` (or the caller's whole forest)."""

        if root_id:
            self._load_owned(root_id)
            flows = self.repository.subtree(root_id)
        else:
            flows = self.repository.owned_by(self.user_id)
        roots = build_flow_tree(flows)
        annotate_subtree_progress(roots)
        return roots

    # --------------------------------------------------------------- writes

    def create(self, payload: Mapping[str, Any]) -> Flow:
        data, errors = validate_flow_payload(payload)
        parent_id = payload.get("parent_flow_id")
        if parent_id is not None and not isinstance(parent_id, str):
            errors.append("parent_flow_id must be a string or null")
        template_id = payload.get("template_id")
        if template_id is not None and not isinstance(template_id, str):
            errors.append("template_id must be a string or null")
        if errors:
            raise ValidationFailed(errors)

        if template_id:
            self._check_template_reference(template_id)
        parent = self.load_parent(parent_id) if parent_id else None
        self.check_depth(parent)

        flow = self.repository.insert(self._new_flow({**data, "template_id": template_id}, parent))
        current_app.logger.info("Created flow %s at depth %s", flow.id, flow.depth_level)
        return flow

    def update(self, flow_id: str, partial: Mapping[str, Any]) -> Flow:
        immutable = sorted(_IMMUTABLE_FIELDS.intersection(partial))
        if immutable:
            raise InvalidStructuralOperation(
                f"{', '.join(immutable)} cannot be updated; the tree linkage changes only through move"
            )
        read_only = sorted(_READ_ONLY_FIELDS.intersection(partial))
        if read_only:
            raise ValidationFailed([f"{field} is read-only" for field in read_only])

        data, errors = validate_flow_payload(partial, partial=True)
        if errors:
            raise ValidationFailed(errors)

        self._load_owned(flow_id)
        changes = {key: data[key] for key in _UPDATABLE_FIELDS if key in data}
        if not changes:
            return self.repository.require(flow_id)
        return self.repository.update(flow_id, changes)

    def move(self, flow_id: str, new_parent_id: str | None) -> Flow:
        """Re-parent ``flow_id`` and rewrite the derived fields of its subtree."""

        new_parent_id = new_parent_id or None
        flow = self._load_owned(flow_id)
        if new_parent_id == flow.id:
            raise InvalidStructuralOperation("a flow cannot be its own parent")
        new_parent = self.load_parent(new_parent_id) if new_parent_id else None

        def apply(written: list[str]) -> Flow:
            self.repository.lock_tree(
                [flow.root_flow_id, new_parent.root_flow_id if new_parent else None]
            )
            current = self.repository.require(flow_id, refresh=True)
            parent = self.load_parent(new_parent_id, refresh=True) if new_parent_id else None
            if parent is not None and is_descendant_of(
                parent.id, current.id, {parent.id: parent.path}, self.repository.separator
            ):
                raise InvalidStructuralOperation("cannot move a flow under its own descendant")
            if current.parent_flow_id == (parent.id if parent else None):
                return current

            descendants = self.repository.get_descendants(current.id)
            height = max((d.depth_level - current.depth_level for d in descendants), default=0)
            self.check_depth(parent, height)

            old_path = current.path
            new_path = compute_path(
                parent.path if parent else None, current.id, self.repository.separator
            )
            new_depth = compute_depth(parent.depth_level if parent else None)
            new_root = compute_root(parent, current.id)
            delta = new_depth - current.depth_level

            moved = self.repository.update(
                current.id,
                {
                    "parent_flow_id": parent.id if parent else None,
                    "path": new_path,
                    "depth_level": new_depth,
                    "root_flow_id": new_root,
                },
            )
            written.append(moved.id)
            for descendant in descendants:
                self.repository.update(
                    descendant.id,
                    {
                        "path": rebase_path(
                            descendant.path, old_path, new_path, self.repository.separator
                        ),
                        "depth_level": descendant.depth_level + delta,
                        "root_flow_id": new_root,
                    },
                )
                written.append(descendant.id)
            return moved

        moved = run_multi_step(self.repository, "flow", "move", apply)
        persist_audit_log(
            "flow", "move", f"moved {moved.id} under {moved.parent_flow_id or 'root'}"
        )
        return moved

    def duplicate(
        self,
        flow_id: str,
        new_name: str | None = None,
        new_parent_id: str | None = None,
        include_children: bool = False,
    ) -> Flow:
        """Copy ``flow_id`` (and optionally its subtree) under ``new_parent_id``."""

        source = self._load_owned(flow_id)
        if new_name is not None:
            if not isinstance(new_name, str) or not new_name.strip():
                raise ValidationFailed(["new_name must be a non-empty string"])
            new_name = new_name.strip()
        parent = self.load_parent(new_parent_id) if new_parent_id else None

        # The source subtree is read once so copies placed inside it are not revisited.
        children: dict[str, list[Flow]] = defaultdict(list)
        height = 0
        if include_children:
            for descendant in self.repository.get_descendants(source.id):
                children[descendant.parent_flow_id].append(descendant)
                height = max(height, descendant.depth_level - source.depth_level)
            for siblings in children.values():
                siblings.sort(key=lambda sibling: (sibling.created_at, sibling.path))
        self.check_depth(parent, height)

        def copy(original: Flow, name: str, target_parent: Flow | None, written: list[str]) -> Flow:
            fields = {
                "name": name,
                "description": original.description,
                "flow_type": original.flow_type,
                "template_id": original.template_id,
                "customizations": original.customizations,
            }
            duplicate = self.repository.insert(self._new_flow(fields, target_parent))
            written.append(duplicate.id)
            for child in children.get(original.id, []):
                copy(child, child.name, duplicate, written)
            return duplicate

        def apply(written: list[str]) -> Flow:
            return copy(source, new_name or f"{source.name} (Copy)", parent, written)

        duplicate = run_multi_step(self.repository, "flow", "duplicate", apply)
        persist_audit_log("flow", "duplicate", f"duplicated {source.id} as {duplicate.id}")
        return duplicate

    def delete(self, flow_id: str) -> None:
        """Delete ``flow_id`` and all of its descendants; unknown ids are a no-op."""

        flow = self.repository.get(flow_id)
        if flow is None:
            current_app.logger.debug("Flow %s already deleted", flow_id)
            return
        self._ensure_owner(flow)
        root_id = flow.root_flow_id

        def apply(written: list[str]) -> int:
            self.repository.lock_tree([root_id])
            descendants = self.repository.get_descendants(flow_id)
            for descendant in sorted(descendants, key=lambda d: d.depth_level, reverse=True):
                self.repository.delete_one(descendant.id)
                written.append(descendant.id)
            self.repository.delete_one(flow_id)
            written.append(flow_id)
            return len(written)

        removed = run_multi_step(self.repository, "flow", "delete", apply)
        persist_audit_log("flow", "delete", f"deleted {flow_id} and {removed - 1} descendant(s)")
