"""Build request-scoped services from the application config and caller identity."""

from __future__ import annotations

from flask import current_app, g

from .repository import FlowRepository
from .service import FlowService
from .templates import TemplateService
from .transfer import TransferService


def _repository() -> FlowRepository:
    return FlowRepository(
        transactional=bool(current_app.config.get("FLOW_TRANSACTIONAL_MUTATIONS", True))
    )


def _caller_id() -> str:
    user_id = getattr(g, "user_id", None)
    if not user_id:
        raise RuntimeError("flow services require an authenticated caller")
    return user_id


def flow_service() -> FlowService:
    return FlowService(
        _repository(),
        _caller_id(),
        max_depth=int(current_app.config.get("FLOW_MAX_DEPTH", 64)),
    )


def template_service() -> TemplateService:
    flows = flow_service()
    return TemplateService(flows.repository, flows.user_id, flows)


def transfer_service() -> TransferService:
    flows = flow_service()
    return TransferService(
        flows.repository,
        flows.user_id,
        flows,
        max_items=int(current_app.config.get("FLOW_IMPORT_MAX_ITEMS", 5000)),
    )
