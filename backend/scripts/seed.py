"""Seed the database with an admin API token and an example nested template set."""
from __future__ import annotations

import os
import pathlib
import sys
from dataclasses import dataclass, field

ROOT = pathlib.Path(__file__).resolve().parents[2]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from backend.app import create_app
from backend.app.extensions import db
from backend.app.models.auth import ApiToken
from backend.app.models.template import NestedFlowTemplate
from backend.app.utils.auth import generate_token, hash_token

SEED_USER_ID = os.getenv("SEED_USER_ID", "seed-admin")
SEED_TOKEN_NAME = "Seed Admin Token"


@dataclass
class ExampleTemplate:
    key: str
    name: str
    flow_type: str
    description: str
    sub_flows: list[str] = field(default_factory=list)


# Children are listed before their parents so ids exist when referenced.
EXAMPLE_TEMPLATES = [
    ExampleTemplate("review", "Review Deliverables", "subtask", "Check outputs against goals."),
    ExampleTemplate("draft", "Draft Deliverables", "task", "Produce first versions."),
    ExampleTemplate(
        "deliver", "Delivery Project", "project", "Build and review.", ["draft", "review"]
    ),
    ExampleTemplate(
        "launch", "Product Launch", "goal", "Plan and ship a launch.", ["deliver"]
    ),
]


def _ensure_admin_token() -> str | None:
    """Create the seed admin token once; returns the plaintext when newly created."""

    existing = ApiToken.query.filter_by(name=SEED_TOKEN_NAME, revoked_at=None).first()
    if existing is not None:
        return None
    plaintext = generate_token()
    db.session.add(
        ApiToken(
            name=SEED_TOKEN_NAME,
            user_id=SEED_USER_ID,
            role="admin",
            token_hash=hash_token(plaintext),
        )
    )
    return plaintext


def _ensure_templates() -> tuple[int, int]:
    created = 0
    updated = 0
    ids: dict[str, str] = {}
    for example in EXAMPLE_TEMPLATES:
        sub_flows = [ids[key] for key in example.sub_flows]
        template = NestedFlowTemplate.query.filter_by(
            name=example.name, author_id=SEED_USER_ID
        ).first()
        if template is None:
            template = NestedFlowTemplate(
                name=example.name,
                description=example.description,
                flow_type=example.flow_type,
                sub_flows=sub_flows,
                is_public=True,
                author_id=SEED_USER_ID,
                author_name="Seed",
            )
            db.session.add(template)
            db.session.flush()
            created += 1
        elif template.sub_flows != sub_flows:
            template.sub_flows = sub_flows
            updated += 1
        ids[example.key] = template.id
    return created, updated


def main() -> None:
    app = create_app()
    with app.app_context():
        token = _ensure_admin_token()
        created_templates, updated_templates = _ensure_templates()
        db.session.commit()

        print(
            "Seed completed",
            f"templates created={created_templates}",
            f"templates updated={updated_templates}",
        )
        if token is not None:
            print(f"admin token for {SEED_USER_ID}: {token}")


if __name__ == "__main__":
    main()
