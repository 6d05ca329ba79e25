"""Projection of flat flow records into an in-memory forest."""

from __future__ import annotations

from collections.abc import Iterable, Iterator, Mapping
from dataclasses import dataclass, field
from typing import Any


@dataclass
class FlowTreeNode:
    """Transient tree view of a flow; rebuilt on every request."""

    id: str
    name: str
    flow_type: str
    status: str
    depth_level: int
    path: str
    progress: float = 0.0
    children: list["FlowTreeNode"] = field(default_factory=list)
    has_children: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "flow_type": self.flow_type,
            "status": self.status,
            "progress": self.progress,
            "depth_level": self.depth_level,
            "path": self.path,
            "has_children": self.has_children,
            "children": [child.to_dict() for child in self.children],
        }


def build_flow_tree(
    flows: Iterable[Any], progress: Mapping[str, float] | None = None
) -> list[FlowTreeNode]:
    """Build a forest from flat flow records.

    Each record is attached to its parent when the parent is part of the input,
    otherwise it becomes a root. Input order only determines sibling order.
    """

    records = list(flows)
    progress = progress or {}
    nodes: dict[str, FlowTreeNode] = {}
    for flow in records:
        nodes[flow.id] = FlowTreeNode(
            id=flow.id,
            name=flow.name,
            flow_type=flow.flow_type,
            status=flow.status,
            depth_level=flow.depth_level,
            path=flow.path,
            progress=progress.get(flow.id, 0.0),
        )

    roots: list[FlowTreeNode] = []
    for flow in records:
        node = nodes[flow.id]
        parent = nodes.get(flow.parent_flow_id) if flow.parent_flow_id else None
        if parent is not None and parent is not node:
            parent.children.append(node)
            parent.has_children = True
        else:
            roots.append(node)
    return roots


def iter_tree(roots: Iterable[FlowTreeNode]) -> Iterator[FlowTreeNode]:
    """Yield every node depth-first, parents before children."""

    stack = list(reversed(list(roots)))
    while stack:
        node = stack.pop()
        yield node
        stack.extend(reversed(node.children))
