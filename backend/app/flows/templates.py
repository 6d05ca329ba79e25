"""Template catalog and recursive template instantiation."""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from flask import current_app

from ..models.flow import Flow
from ..models.template import DIFFICULTIES, NestedFlowTemplate
from .audit import persist_audit_log, run_multi_step
from .errors import TemplateCycleError, Unauthorized, ValidationFailed
from .paths import find_cycle
from .repository import FlowRepository, TemplateFilters
from .service import MAX_FLOW_TYPE_LENGTH, MAX_NAME_LENGTH, FlowService


def _string_list(value: Any, field: str, errors: list[str]) -> list[str]:
    if value is None:
        return []
    if not isinstance(value, list) or not all(isinstance(item, str) for item in value):
        errors.append(f"{field} must be a list of strings")
        return []
    return list(value)


def validate_template_payload(payload: Mapping[str, Any]) -> tuple[dict[str, Any], list[str]]:
    """Validate and normalize incoming template payloads."""

    errors: list[str] = []
    name = payload.get("name")
    name = name.strip() if isinstance(name, str) else ""
    flow_type = payload.get("flow_type")
    flow_type = flow_type.strip() if isinstance(flow_type, str) else ""
    difficulty = payload.get("difficulty") or "beginner"

    if not name:
        errors.append("name is required")
    elif len(name) > MAX_NAME_LENGTH:
        errors.append("name is too long")
    if not flow_type:
        errors.append("flow_type is required")
    elif len(flow_type) > MAX_FLOW_TYPE_LENGTH:
        errors.append("flow_type is too long")
    if difficulty not in DIFFICULTIES:
        errors.append("difficulty must be one of " + ", ".join(DIFFICULTIES))

    description = payload.get("description")
    if description is not None and not isinstance(description, str):
        errors.append("description must be a string or null")
    category = payload.get("category")
    if category is not None and not isinstance(category, str):
        errors.append("category must be a string or null")
    steps = payload.get("steps") or []
    if not isinstance(steps, list):
        errors.append("steps must be a list")

    data = {
        "name": name,
        "description": description,
        "flow_type": flow_type,
        "category": category,
        "difficulty": difficulty,
        "tags": _string_list(payload.get("tags"), "tags", errors),
        "steps": steps if isinstance(steps, list) else [],
        "sub_flows": _string_list(payload.get("sub_flows"), "sub_flows", errors),
        "is_public": bool(payload.get("is_public", False)),
    }
    return data, errors


class TemplateService:
    """Browse templates and expand them into live flow subtrees."""

    def __init__(
        self,
        repository: FlowRepository,
        user_id: str,
        flows: FlowService | None = None,
    ) -> None:
        self.repository = repository
        self.user_id = user_id
        self.flows = flows or FlowService(repository, user_id)

    def _ensure_visible(self, template: NestedFlowTemplate) -> NestedFlowTemplate:
        if not template.is_visible_to(self.user_id):
            raise Unauthorized(f"template {template.id} is not available")
        return template

    def list(self, filters: TemplateFilters | None = None) -> list[NestedFlowTemplate]:
        filters = filters or TemplateFilters()
        filters.visible_to = self.user_id
        return self.repository.list_templates(filters)

    def get(self, template_id: str) -> NestedFlowTemplate:
        return self._ensure_visible(self.repository.require_template(template_id))

    def create(self, payload: Mapping[str, Any], author_name: str | None = None) -> NestedFlowTemplate:
        data, errors = validate_template_payload(payload)
        if errors:
            raise ValidationFailed(errors)
        for sub_flow_id in data["sub_flows"]:
            self.get(sub_flow_id)

        template = NestedFlowTemplate(
            **data, author_id=self.user_id, author_name=author_name or self.user_id
        )
        self.repository.insert_template(template)
        current_app.logger.info("Created template %s", template.id)
        return template

    def _load_graph(self, template_id: str) -> dict[str, NestedFlowTemplate]:
        """Load every template reachable through ``sub_flows``, rejecting cycles.

        Every referenced template must be visible to the caller, not only the
        one being instantiated.
        """

        templates: dict[str, NestedFlowTemplate] = {}
        pending = [template_id]
        while pending:
            current = pending.pop()
            if current in templates:
                continue
            template = self._ensure_visible(self.repository.require_template(current))
            templates[current] = template
            pending.extend(template.sub_flows or [])

        edges = {key: list(value.sub_flows or []) for key, value in templates.items()}
        cycle = find_cycle(template_id, edges)
        if cycle is not None:
            raise TemplateCycleError(cycle)
        return templates

    @staticmethod
    def _height(template_id: str, templates: Mapping[str, NestedFlowTemplate]) -> int:
        heights: dict[str, int] = {}

        def visit(key: str) -> int:
            if key not in heights:
                sub_flows = templates[key].sub_flows or []
                heights[key] = 1 + max((visit(child) for child in sub_flows), default=-1)
            return heights[key]

        return visit(template_id)

    def instantiate(self, template_id: str, parent_flow_id: str | None = None) -> Flow:
        """Create a flow for ``template_id`` and, recursively, for its ``sub_flows``."""

        self.get(template_id)
        templates = self._load_graph(template_id)
        parent = self.flows.load_parent(parent_flow_id) if parent_flow_id else None
        self.flows.check_depth(parent, self._height(template_id, templates))

        def expand(key: str, parent_id: str | None, stack: list[str], written: list[str]) -> Flow:
            if key in stack:
                raise TemplateCycleError(stack[stack.index(key):] + [key])
            stack.append(key)
            template = templates[key]
            flow = self.flows.create(
                {
                    "name": template.name,
                    "description": template.description,
                    "flow_type": template.flow_type,
                    "parent_flow_id": parent_id,
                    "template_id": template.id,
                }
            )
            written.append(flow.id)
            for sub_flow_id in template.sub_flows or []:
                expand(sub_flow_id, flow.id, stack, written)
            stack.pop()
            return flow

        def apply(written: list[str]) -> Flow:
            return expand(template_id, parent_flow_id, [], written)

        flow = run_multi_step(self.repository, "template", "instantiate", apply)
        persist_audit_log(
            "template", "instantiate", f"instantiated template {template_id} as flow {flow.id}"
        )
        return flow
