"""Failure handling of multi-step mutations with and without transactions."""

from __future__ import annotations

import pytest

from backend.app.extensions import db
from backend.app.flows.errors import PartialFailure, StoreUnavailable
from backend.app.flows.repository import FlowRepository
from backend.app.flows.service import FlowService
from backend.app.flows.templates import TemplateService
from backend.app.flows.transfer import TransferService
from backend.app.models import AuditLog, Flow, NestedFlowTemplate


def _failing_repository(monkeypatch, method, *, transactional, fail_on, error=None):
    """Return a repository whose ``method`` raises on its ``fail_on``-th call."""

    repository = FlowRepository(transactional=transactional)
    original = getattr(repository, method)
    calls = {"count": 0}

    def wrapper(*args, **kwargs):
        calls["count"] += 1
        if calls["count"] == fail_on:
            raise error or StoreUnavailable("record store is unavailable")
        return original(*args, **kwargs)

    monkeypatch.setattr(repository, method, wrapper)
    return repository


def _flow_count() -> int:
    db.session.expire_all()
    return db.session.query(Flow).count()


def _structure() -> dict[str, tuple]:
    db.session.expire_all()
    return {
        flow.id: (flow.parent_flow_id, flow.path, flow.depth_level, flow.root_flow_id)
        for flow in db.session.query(Flow).all()
    }


def _partial_failure_entries() -> list[AuditLog]:
    return db.session.query(AuditLog).filter_by(action="partial_failure").all()


def _add_templates() -> None:
    db.session.add_all(
        [
            NestedFlowTemplate(id="leaf", name="Leaf", flow_type="task", author_id="user-1"),
            NestedFlowTemplate(
                id="top", name="Top", flow_type="goal", author_id="user-1", sub_flows=["leaf"]
            ),
        ]
    )
    db.session.commit()


SNAPSHOT = {
    "version": "1.0.0",
    "flows": [
        {"id": "imp-root", "name": "Imported", "flow_type": "goal", "path": "imp-root"},
        {
            "id": "imp-child",
            "name": "Imported child",
            "flow_type": "task",
            "parent_flow_id": "imp-root",
            "path": "imp-root/imp-child",
            "depth_level": 1,
        },
    ],
}


def test_non_transactional_duplicate_reports_partial_failure(monkeypatch, sample_tree):
    repository = _failing_repository(monkeypatch, "insert", transactional=False, fail_on=3)

    with pytest.raises(PartialFailure) as excinfo:
        FlowService(repository, "user-1").duplicate(sample_tree["R"], include_children=True)

    error = excinfo.value
    assert error.operation == "duplicate"
    assert len(error.written_ids) == 2
    assert isinstance(error.cause, StoreUnavailable)
    assert _flow_count() == 6
    for flow_id in error.written_ids:
        assert db.session.get(Flow, flow_id) is not None

    entry = _partial_failure_entries()[0]
    assert entry.source == "flow"
    assert error.written_ids[0] in entry.message


def test_transactional_duplicate_rolls_back(monkeypatch, sample_tree):
    repository = _failing_repository(monkeypatch, "insert", transactional=True, fail_on=3)

    with pytest.raises(StoreUnavailable):
        FlowService(repository, "user-1").duplicate(sample_tree["R"], include_children=True)

    assert _flow_count() == 4
    assert _partial_failure_entries() == []


def test_failure_before_any_write_is_not_partial(monkeypatch, sample_tree):
    repository = _failing_repository(monkeypatch, "insert", transactional=False, fail_on=1)

    with pytest.raises(StoreUnavailable):
        FlowService(repository, "user-1").duplicate(sample_tree["A"])

    assert _flow_count() == 4


def test_non_transactional_move_reports_unexpected_errors(monkeypatch, sample_tree):
    repository = _failing_repository(
        monkeypatch, "update", transactional=False, fail_on=2, error=RuntimeError("driver gone")
    )

    with pytest.raises(PartialFailure) as excinfo:
        FlowService(repository, "user-1").move(sample_tree["A"], None)

    assert excinfo.value.operation == "move"
    assert excinfo.value.written_ids == [sample_tree["A"]]
    assert isinstance(excinfo.value.cause, RuntimeError)
    assert _structure()[sample_tree["A"]][0] is None
    assert len(_partial_failure_entries()) == 1


def test_transactional_move_leaves_no_descendant_half_rewritten(monkeypatch, sample_tree):
    before = _structure()
    repository = _failing_repository(
        monkeypatch, "update", transactional=True, fail_on=2, error=RuntimeError("driver gone")
    )

    with pytest.raises(RuntimeError):
        FlowService(repository, "user-1").move(sample_tree["A"], sample_tree["B"])

    assert _structure() == before
    assert _partial_failure_entries() == []


def test_non_transactional_delete_reports_partial_failure(monkeypatch, sample_tree):
    repository = _failing_repository(monkeypatch, "delete_one", transactional=False, fail_on=2)

    with pytest.raises(PartialFailure) as excinfo:
        FlowService(repository, "user-1").delete(sample_tree["R"])

    assert excinfo.value.written_ids == [sample_tree["A1"]]
    assert set(_structure()) == {sample_tree["R"], sample_tree["A"], sample_tree["B"]}
    assert len(_partial_failure_entries()) == 1


def test_transactional_delete_rolls_back(monkeypatch, sample_tree):
    repository = _failing_repository(monkeypatch, "delete_one", transactional=True, fail_on=2)

    with pytest.raises(StoreUnavailable):
        FlowService(repository, "user-1").delete(sample_tree["R"])

    assert set(_structure()) == set(sample_tree.values())


def test_non_transactional_instantiate_reports_partial_failure(monkeypatch):
    _add_templates()
    repository = _failing_repository(monkeypatch, "insert", transactional=False, fail_on=2)
    service = TemplateService(repository, "user-1", FlowService(repository, "user-1"))

    with pytest.raises(PartialFailure) as excinfo:
        service.instantiate("top")

    assert excinfo.value.operation == "instantiate"
    assert len(excinfo.value.written_ids) == 1
    assert _flow_count() == 1
    assert _partial_failure_entries()[0].source == "template"


def test_transactional_instantiate_rolls_back(monkeypatch):
    _add_templates()
    repository = _failing_repository(monkeypatch, "insert", transactional=True, fail_on=2)
    service = TemplateService(repository, "user-1", FlowService(repository, "user-1"))

    with pytest.raises(StoreUnavailable):
        service.instantiate("top")

    assert _flow_count() == 0


def test_non_transactional_import_reports_partial_failure(monkeypatch):
    repository = _failing_repository(monkeypatch, "upsert_flow", transactional=False, fail_on=2)

    with pytest.raises(PartialFailure) as excinfo:
        TransferService(repository, "user-1").import_snapshot(SNAPSHOT)

    assert excinfo.value.operation == "import"
    assert excinfo.value.written_ids == ["imp-root"]
    assert set(_structure()) == {"imp-root"}
    assert _partial_failure_entries()[0].source == "transfer"


def test_transactional_import_rolls_back(monkeypatch):
    repository = _failing_repository(monkeypatch, "upsert_flow", transactional=True, fail_on=2)

    with pytest.raises(StoreUnavailable):
        TransferService(repository, "user-1").import_snapshot(SNAPSHOT)

    assert _flow_count() == 0


def test_partial_failure_payload_lists_written_ids():
    error = PartialFailure("import", ["a", "b"], StoreUnavailable("down"))

    payload = error.to_dict()
    assert payload["kind"] == "partial_failure"
    assert payload["written_ids"] == ["a", "b"]
    assert payload["operation"] == "import"
    assert error.status_code == 500
    assert error.retryable is False
