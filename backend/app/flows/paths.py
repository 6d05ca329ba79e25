"""Pure helpers for materialized paths and ancestry checks."""

from __future__ import annotations

from collections.abc import Iterable, Mapping, Sequence
from typing import Any, Protocol

PATH_SEPARATOR = "/"


class PathNode(Protocol):
    id: str
    path: str


def compute_path(parent_path: str | None, flow_id: str, separator: str = PATH_SEPARATOR) -> str:
    """Return the materialized path of ``flow_id`` below ``parent_path``."""

    if not parent_path:
        return flow_id
    return f"{parent_path}{separator}{flow_id}"


def compute_depth(parent_depth: int | None) -> int:
    if parent_depth is None:
        return 0
    return parent_depth + 1


def compute_root(parent: Any | None, flow_id: str) -> str:
    """Return the root id for a node attached to ``parent`` (``None`` for a root)."""

    if parent is None:
        return flow_id
    return parent.root_flow_id or parent.id


def path_segments(path: str | None, separator: str = PATH_SEPARATOR) -> list[str]:
    if not path:
        return []
    return [segment for segment in path.split(separator) if segment]


def descendant_prefix(path: str, separator: str = PATH_SEPARATOR) -> str:
    """Prefix shared by the paths of every descendant of the node at ``path``."""

    return f"{path}{separator}"


def is_descendant_of(
    candidate_id: str,
    ancestor_id: str,
    nodes: Iterable[PathNode] | Mapping[str, str],
    separator: str = PATH_SEPARATOR,
) -> bool:
    """Return whether ``ancestor_id`` is a proper ancestor of ``candidate_id``.

    ``nodes`` is either an iterable of objects exposing ``id`` and ``path`` or
    a mapping of id to path. Unknown candidates are never descendants.
    """

    if candidate_id == ancestor_id:
        return False
    if isinstance(nodes, Mapping):
        path = nodes.get(candidate_id)
    else:
        path = next((node.path for node in nodes if node.id == candidate_id), None)
    if path is None:
        return False
    return ancestor_id in path_segments(path, separator)[:-1]


def rebase_path(
    path: str, old_prefix: str, new_prefix: str, separator: str = PATH_SEPARATOR
) -> str:
    """Rewrite ``path`` so the leading ``old_prefix`` chain becomes ``new_prefix``.

    ``old_prefix`` must be ``path`` itself or one of its ancestor paths.
    """

    if path == old_prefix:
        return new_prefix
    head = descendant_prefix(old_prefix, separator)
    if not path.startswith(head):
        raise ValueError(f"{path!r} is not below {old_prefix!r}")
    return compute_path(new_prefix, path[len(head):], separator)


def find_cycle(start: str, edges: Mapping[str, Sequence[str]]) -> list[str] | None:
    """Return the first cycle reachable from ``start`` as a list of ids, or ``None``.

    The returned list starts and ends with the id that closes the cycle.
    """

    on_stack: list[str] = []
    finished: set[str] = set()
    stack: list[tuple[str, int]] = [(start, 0)]

    while stack:
        node, index = stack.pop()
        if index == 0:
            on_stack.append(node)
        children = edges.get(node, ())
        if index < len(children):
            stack.append((node, index + 1))
            child = children[index]
            if child in on_stack:
                return on_stack[on_stack.index(child):] + [child]
            if child not in finished:
                stack.append((child, 0))
            continue
        on_stack.pop()
        finished.add(node)

    return None
