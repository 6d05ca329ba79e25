from __future__ import annotations

import pathlib
import secrets
import sys
from collections.abc import Callable

import pytest
from sqlalchemy.pool import StaticPool

ROOT = pathlib.Path(__file__).resolve().parents[2]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))


def _load_dependencies():
    from app import Config, create_app
    from backend.app.extensions import db

    return Config, create_app, db


ConfigBase, create_app, db = _load_dependencies()

OWNER_ID = "user-1"
OTHER_ID = "user-2"


class TestConfig(ConfigBase):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = "sqlite+pysqlite:///:memory:"
    SQLALCHEMY_ENGINE_OPTIONS = {
        "poolclass": StaticPool,
        "connect_args": {"check_same_thread": False},
    }
    CORS_ALLOWED_ORIGINS = "http://localhost"
    RATELIMIT_ENABLED = False


@pytest.fixture(scope="module")
def app():
    app = create_app(TestConfig)
    ctx = app.app_context()
    ctx.push()
    yield app
    db.session.remove()
    ctx.pop()


@pytest.fixture()
def client(app):
    return app.test_client()


@pytest.fixture(autouse=True)
def clean_database(app):
    from backend.app.models import ApiToken, AuditLog, Flow, NestedFlowTemplate

    yield

    db.session.rollback()
    db.session.query(Flow).delete()
    db.session.query(NestedFlowTemplate).delete()
    db.session.query(AuditLog).delete()
    db.session.query(ApiToken).delete()
    db.session.commit()


@pytest.fixture()
def auth_header_factory(app):
    from backend.app.models.auth import ApiToken
    from backend.app.utils.auth import hash_token

    def factory(
        role: str = "editor", user_id: str = OWNER_ID, name: str | None = None
    ) -> dict[str, str]:
        token_value = secrets.token_urlsafe(16)
        token = ApiToken(
            name=name or f"Test {role.title()} Token",
            role=role,
            user_id=user_id,
            token_hash=hash_token(token_value),
        )
        db.session.add(token)
        db.session.commit()
        return {"Authorization": f"Bearer {token_value}"}

    return factory


@pytest.fixture()
def editor_headers(auth_header_factory: Callable[..., dict[str, str]]):
    return auth_header_factory(role="editor")


@pytest.fixture()
def readonly_headers(auth_header_factory: Callable[..., dict[str, str]]):
    return auth_header_factory(role="readonly")


@pytest.fixture()
def admin_headers(auth_header_factory: Callable[..., dict[str, str]]):
    return auth_header_factory(role="admin")


@pytest.fixture()
def repository(app):
    from backend.app.flows.repository import FlowRepository

    return FlowRepository()


@pytest.fixture()
def flow_service(repository):
    from backend.app.flows.service import FlowService

    return FlowService(repository, OWNER_ID)


@pytest.fixture()
def other_service(repository):
    from backend.app.flows.service import FlowService

    return FlowService(repository, OTHER_ID)


@pytest.fixture()
def sample_tree(flow_service):
    """Root R with children A and B; A has child A1."""

    root = flow_service.create({"name": "R", "flow_type": "goal"})
    a = flow_service.create({"name": "A", "flow_type": "project", "parent_flow_id": root.id})
    b = flow_service.create({"name": "B", "flow_type": "project", "parent_flow_id": root.id})
    a1 = flow_service.create({"name": "A1", "flow_type": "task", "parent_flow_id": a.id})
    return {"R": root.id, "A": a.id, "B": b.id, "A1": a1.id}
