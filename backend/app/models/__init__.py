"""Database models for the flow tree backend."""

from .auth import ApiToken
from .flow import Flow
from .logs import AuditLog
from .template import NestedFlowTemplate

__all__ = ["ApiToken", "AuditLog", "Flow", "NestedFlowTemplate"]
