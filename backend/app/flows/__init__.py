"""Hierarchical flow tree engine."""

from .errors import (
    FlowError,
    InvalidStructuralOperation,
    NotFound,
    PartialFailure,
    StoreUnavailable,
    TemplateCycleError,
    Unauthorized,
    ValidationFailed,
    VersionMismatch,
)
from .repository import FlowFilters, FlowRepository, TemplateFilters
from .service import FlowService
from .templates import TemplateService
from .transfer import TransferService
from .tree import FlowTreeNode, build_flow_tree

__all__ = [
    "FlowError",
    "FlowFilters",
    "FlowRepository",
    "FlowService",
    "FlowTreeNode",
    "InvalidStructuralOperation",
    "NotFound",
    "PartialFailure",
    "StoreUnavailable",
    "TemplateCycleError",
    "TemplateFilters",
    "TemplateService",
    "TransferService",
    "Unauthorized",
    "ValidationFailed",
    "VersionMismatch",
    "build_flow_tree",
]
