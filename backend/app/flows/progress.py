"""Progress and analytics aggregated over a flow and its descendants.

Values are recomputed on every call and never persisted.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from typing import Any

from .repository import FlowRepository
from .tree import FlowTreeNode, iter_tree


@dataclass(frozen=True)
class FlowSummary:
    total: int
    active: int
    completed: int

    @property
    def progress(self) -> float:
        if self.total == 0:
            return 0.0
        return self.completed / self.total

    @property
    def success_rate(self) -> float:
        return self.progress * 100


def summarize(flows: Iterable[Any]) -> FlowSummary:
    total = active = completed = 0
    for flow in flows:
        total += 1
        if flow.status == "active":
            active += 1
        elif flow.status == "completed":
            completed += 1
    return FlowSummary(total=total, active=active, completed=completed)


def calculate_progress(repository: FlowRepository, flow_id: str) -> float:
    """Return the completed fraction of ``flow_id`` and its descendants."""

    return summarize(repository.subtree(flow_id)).progress


def get_analytics(repository: FlowRepository, flow_id: str) -> dict[str, Any]:
    summary = summarize(repository.subtree(flow_id))
    return {
        "flow_id": flow_id,
        "total_flows": summary.total,
        "active_flows": summary.active,
        "completed_flows": summary.completed,
        "success_rate": summary.success_rate,
    }


def annotate_subtree_progress(roots: list[FlowTreeNode]) -> None:
    """Fill ``progress`` on every projected node from its in-memory subtree."""

    counts: dict[int, tuple[int, int]] = {}
    for node in reversed(list(iter_tree(roots))):
        total = 1
        completed = 1 if node.status == "completed" else 0
        for child in node.children:
            child_total, child_completed = counts[id(child)]
            total += child_total
            completed += child_completed
        counts[id(node)] = (total, completed)
        node.progress = completed / total
