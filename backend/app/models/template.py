"""Nested flow template model definition."""

from __future__ import annotations

from ..extensions import db
from .flow import generate_id, utcnow

DIFFICULTIES = ("beginner", "intermediate", "advanced", "expert")


class NestedFlowTemplate(db.Model):
    """Reusable blueprint whose ``sub_flows`` reference child templates in order."""

    __tablename__ = "flow_templates"

    id = db.Column(db.String(36), primary_key=True, default=generate_id)
    name = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=True)
    flow_type = db.Column(db.String(50), nullable=False)
    category = db.Column(db.String(120), nullable=True, index=True)
    difficulty = db.Column(
        db.Enum(*DIFFICULTIES, name="template_difficulty"),
        nullable=False,
        default="beginner",
    )
    tags = db.Column(db.JSON, nullable=False, default=list)
    steps = db.Column(db.JSON, nullable=False, default=list)
    sub_flows = db.Column(db.JSON, nullable=False, default=list)
    version = db.Column(db.String(20), nullable=False, default="1.0.0")
    is_public = db.Column(db.Boolean, nullable=False, default=False)
    author_id = db.Column(db.String(64), nullable=False, index=True)
    author_name = db.Column(db.String(255), nullable=True)
    rating = db.Column(db.Float, nullable=False, default=0.0)
    usage_count = db.Column(db.Integer, nullable=False, default=0)
    created_at = db.Column(db.DateTime, default=utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    def is_visible_to(self, user_id: str) -> bool:
        """Public templates are visible to everyone, private ones to their author."""

        return bool(self.is_public) or self.author_id == user_id

    def __repr__(self) -> str:  # pragma: no cover - repr not critical for tests
        return f"<NestedFlowTemplate {self.name!r}>"
