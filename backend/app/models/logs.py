"""Audit log model definition."""

from __future__ import annotations

from ..extensions import db
from .flow import utcnow

AUDIT_SOURCES = ("flow", "template", "transfer")


class AuditLog(db.Model):
    """Records structural mutations and partial failures for later reconciliation."""

    __tablename__ = "flow_audit_logs"

    id = db.Column(db.Integer, primary_key=True)
    source = db.Column(db.Enum(*AUDIT_SOURCES, name="audit_source"), nullable=False)
    action = db.Column(db.String(32), nullable=False)
    message = db.Column(db.Text, nullable=False)
    created_at = db.Column(db.DateTime, default=utcnow, nullable=False)

    def __repr__(self) -> str:  # pragma: no cover - repr not critical for tests
        return f"<AuditLog {self.id} {self.source}:{self.action}>"
