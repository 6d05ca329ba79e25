"""Error kinds raised by the flow tree services."""

from __future__ import annotations

from collections.abc import Iterable
from http import HTTPStatus
from typing import Any


class FlowError(Exception):
    """Base class for all flow tree errors."""

    kind = "flow_error"
    status_code = HTTPStatus.INTERNAL_SERVER_ERROR
    retryable = False

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        return {"error": self.message, "kind": self.kind}


class NotFound(FlowError):
    """Raised when a flow or template id is unknown."""

    kind = "not_found"
    status_code = HTTPStatus.NOT_FOUND


class Unauthorized(FlowError):
    """Raised when the caller does not own or cannot see a resource."""

    kind = "unauthorized"
    status_code = HTTPStatus.FORBIDDEN


class ValidationFailed(FlowError):
    """Raised when a request payload is malformed."""

    kind = "validation_failed"
    status_code = HTTPStatus.BAD_REQUEST

    def __init__(self, errors: Iterable[str]):
        self.errors = list(errors)
        super().__init__("; ".join(self.errors) or "invalid payload")

    def to_dict(self) -> dict[str, Any]:
        payload = super().to_dict()
        payload["errors"] = self.errors
        return payload


class InvalidStructuralOperation(FlowError):
    """Raised when a mutation would break the forest invariants."""

    kind = "invalid_structural_operation"
    status_code = HTTPStatus.CONFLICT


class TemplateCycleError(InvalidStructuralOperation):
    """Raised when a template references itself directly or transitively."""

    def __init__(self, cycle: list[str]):
        self.cycle = cycle
        super().__init__("template references itself: " + " -> ".join(cycle))

    def to_dict(self) -> dict[str, Any]:
        payload = super().to_dict()
        payload["cycle"] = self.cycle
        return payload


class PartialFailure(FlowError):
    """Raised when a multi-step operation failed after some writes were committed."""

    kind = "partial_failure"
    status_code = HTTPStatus.INTERNAL_SERVER_ERROR

    def __init__(self, operation: str, written_ids: Iterable[str], cause: Exception):
        self.operation = operation
        self.written_ids = list(written_ids)
        self.cause = cause
        super().__init__(
            f"{operation} failed after {len(self.written_ids)} write(s): {cause}"
        )

    def to_dict(self) -> dict[str, Any]:
        payload = super().to_dict()
        payload["operation"] = self.operation
        payload["written_ids"] = self.written_ids
        return payload


class StoreUnavailable(FlowError):
    """Raised when the record store cannot be reached; callers may retry."""

    kind = "store_unavailable"
    status_code = HTTPStatus.SERVICE_UNAVAILABLE
    retryable = True


class VersionMismatch(FlowError):
    """Raised when an import snapshot has an unsupported version."""

    kind = "version_mismatch"
    status_code = HTTPStatus.BAD_REQUEST
