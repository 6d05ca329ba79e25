"""Flow model definition."""

from __future__ import annotations

import uuid
from datetime import UTC, datetime

from ..extensions import db

FLOW_STATUSES = ("draft", "active", "completed", "archived")

# Written only by the mutation service and the import path.
STRUCTURAL_FIELDS = frozenset({"parent_flow_id", "root_flow_id", "path", "depth_level"})


def generate_id() -> str:
    return str(uuid.uuid4())


def utcnow() -> datetime:
    """Return the current UTC time as a naive datetime, as stored in the database."""

    return datetime.now(UTC).replace(tzinfo=None)


class Flow(db.Model):
    """A node in the flow hierarchy."""

    __tablename__ = "flows"
    __table_args__ = (db.Index("ix_flows_path", "path", mysql_length=255),)

    id = db.Column(db.String(36), primary_key=True, default=generate_id)
    name = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=True)
    flow_type = db.Column(db.String(50), nullable=False)
    status = db.Column(
        db.Enum(*FLOW_STATUSES, name="flow_status"), nullable=False, default="draft"
    )
    parent_flow_id = db.Column(
        db.String(36), db.ForeignKey("flows.id"), nullable=True, index=True
    )
    root_flow_id = db.Column(db.String(36), nullable=False, index=True)
    path = db.Column(db.String(2048), nullable=False)
    depth_level = db.Column(db.Integer, nullable=False, default=0)
    template_id = db.Column(db.String(36), nullable=True, index=True)
    user_id = db.Column(db.String(64), nullable=False, index=True)
    customizations = db.Column(db.JSON, nullable=True)
    created_at = db.Column(db.DateTime, default=utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    @property
    def is_root(self) -> bool:
        return self.parent_flow_id is None

    def __repr__(self) -> str:  # pragma: no cover - repr not critical for tests
        return f"<Flow {self.id} {self.path!r}>"
