"""Audit trail for structural mutations and multi-step failure handling."""

from __future__ import annotations

from collections.abc import Callable
from typing import TypeVar

from flask import current_app

from ..extensions import db
from ..models.logs import AuditLog
from .errors import PartialFailure
from .repository import FlowRepository

T = TypeVar("T")


def persist_audit_log(source: str, action: str, message: str) -> None:
    """Persist an audit entry; failures are logged and rolled back."""

    if not message:
        return

    try:
        entry = AuditLog(source=source, action=action, message=message)
        db.session.add(entry)
        db.session.commit()
    except Exception:
        current_app.logger.exception("Failed to persist audit log entry for %s", action)
        db.session.rollback()


def run_multi_step(
    repository: FlowRepository,
    source: str,
    operation: str,
    func: Callable[[list[str]], T],
) -> T:
    """Run ``func`` inside one transaction scope.

    ``func`` appends the id of every row it writes to the list it receives.
    When the store is not transactional and the operation fails after some
    writes, the failure is reported as :class:`PartialFailure`.
    """

    written: list[str] = []
    try:
        with repository.atomic():
            result = func(written)
    except PartialFailure:
        raise
    except Exception as exc:
        if written and not repository.transactional:
            current_app.logger.error(
                "%s failed after %s committed write(s): %s", operation, len(written), exc
            )
            persist_audit_log(
                source,
                "partial_failure",
                f"{operation} failed after writing {', '.join(written)}: {exc}",
            )
            raise PartialFailure(operation, written, exc) from exc
        raise
    return result
