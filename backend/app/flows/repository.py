"""Record store adapter for flows and templates.

This is the only module issuing queries against the flow tables. SQLAlchemy
failures are translated into :class:`StoreUnavailable` (retryable) or, for
integrity violations, :class:`InvalidStructuralOperation`.
"""

from __future__ import annotations

import functools
from collections.abc import Callable, Iterable, Iterator, Mapping
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime
from typing import Any, TypeVar, cast

from flask import current_app
from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from ..extensions import db
from ..models.flow import Flow
from ..models.template import NestedFlowTemplate
from .errors import InvalidStructuralOperation, NotFound, StoreUnavailable
from .paths import PATH_SEPARATOR, descendant_prefix, path_segments

TCallable = TypeVar("TCallable", bound=Callable[..., Any])


@dataclass
class FlowFilters:
    """Equality/membership filters for flow listings; ``None`` means unconstrained."""

    flow_type: list[str] | None = None
    status: list[str] | None = None
    depth_level: int | None = None
    parent_flow_id: str | None = None
    root_flow_id: str | None = None
    created_after: datetime | None = None
    created_before: datetime | None = None
    search: str | None = None
    user_id: str | None = None


@dataclass
class TemplateFilters:
    flow_type: list[str] | None = None
    category: list[str] | None = None
    difficulty: list[str] | None = None
    is_public: bool | None = None
    author_id: str | None = None
    search: str | None = None
    rating_min: float | None = None
    usage_count_min: int | None = None
    visible_to: str | None = None


def _guard_store(func: TCallable) -> TCallable:
    """Translate SQLAlchemy errors raised by repository methods."""

    @functools.wraps(func)
    def wrapper(self: "FlowRepository", *args: Any, **kwargs: Any):
        try:
            return func(self, *args, **kwargs)
        except IntegrityError as exc:
            self.session.rollback()
            raise InvalidStructuralOperation(
                f"integrity constraint violated: {exc.orig}"
            ) from exc
        except SQLAlchemyError as exc:
            self.session.rollback()
            current_app.logger.warning("Record store call %s failed: %s", func.__name__, exc)
            raise StoreUnavailable("record store is unavailable") from exc

    return cast(TCallable, wrapper)


class FlowRepository:
    """CRUD, filtered and graph queries over the flow forest."""

    def __init__(
        self,
        session: Session | None = None,
        *,
        separator: str = PATH_SEPARATOR,
        transactional: bool = True,
    ) -> None:
        self.session = session if session is not None else db.session
        self.separator = separator
        self.transactional = transactional
        self._depth = 0

    # ----------------------------------------------------------------- writes

    @contextmanager
    def atomic(self) -> Iterator[None]:
        """Group writes into one transaction; nested scopes join the outer one.

        Without transactional support every write commits on its own and a
        failure leaves earlier writes in place.
        """

        outermost = self._depth == 0
        self._depth += 1
        try:
            yield
            if outermost and self.transactional:
                self._commit()
        except Exception:
            if outermost:
                self.session.rollback()
            raise
        finally:
            self._depth -= 1

    def _commit(self) -> None:
        try:
            self.session.commit()
        except IntegrityError as exc:
            self.session.rollback()
            raise InvalidStructuralOperation(
                f"integrity constraint violated: {exc.orig}"
            ) from exc
        except SQLAlchemyError as exc:
            self.session.rollback()
            current_app.logger.warning("Commit against record store failed: %s", exc)
            raise StoreUnavailable("record store is unavailable") from exc

    def _write(self) -> None:
        if self._depth and self.transactional:
            self.session.flush()
        else:
            self._commit()

    @_guard_store
    def insert(self, flow: Flow) -> Flow:
        self.session.add(flow)
        self._write()
        return flow

    @_guard_store
    def update(self, flow_id: str, partial: Mapping[str, Any]) -> Flow:
        flow = self.require(flow_id)
        for key, value in partial.items():
            setattr(flow, key, value)
        self._write()
        return flow

    @_guard_store
    def delete_one(self, flow_id: str) -> None:
        flow = self.require(flow_id)
        self.session.delete(flow)
        self._write()

    @_guard_store
    def upsert_flow(self, data: Mapping[str, Any]) -> tuple[Flow, bool]:
        """Insert or update a flow keyed by ``data["id"]``; returns ``(flow, created)``."""

        flow = self.session.get(Flow, data["id"])
        created = flow is None
        if created:
            flow = Flow(**data)
            self.session.add(flow)
        else:
            for key, value in data.items():
                if key != "id":
                    setattr(flow, key, value)
        self._write()
        return flow, created

    @_guard_store
    def lock_tree(self, root_ids: Iterable[str]) -> None:
        """Serialize structural mutations per tree by locking the root rows."""

        ids = sorted({root_id for root_id in root_ids if root_id})
        if not ids:
            return
        (
            self.session.query(Flow)
            .filter(Flow.id.in_(ids))
            .order_by(Flow.id)
            .with_for_update()
            .all()
        )

    # ------------------------------------------------------------------ reads

    @_guard_store
    def get(self, flow_id: str, *, refresh: bool = False) -> Flow | None:
        if not flow_id:
            return None
        return self.session.get(Flow, flow_id, populate_existing=refresh)

    def require(self, flow_id: str, *, refresh: bool = False) -> Flow:
        flow = self.get(flow_id, refresh=refresh)
        if flow is None:
            raise NotFound(f"flow {flow_id} not found")
        return flow

    @_guard_store
    def list_flows(self, filters: FlowFilters | None = None) -> list[Flow]:
        filters = filters or FlowFilters()
        query = self.session.query(Flow)
        if filters.user_id is not None:
            query = query.filter(Flow.user_id == filters.user_id)
        if filters.flow_type:
            query = query.filter(Flow.flow_type.in_(filters.flow_type))
        if filters.status:
            query = query.filter(Flow.status.in_(filters.status))
        if filters.depth_level is not None:
            query = query.filter(Flow.depth_level == filters.depth_level)
        if filters.parent_flow_id:
            query = query.filter(Flow.parent_flow_id == filters.parent_flow_id)
        if filters.root_flow_id:
            query = query.filter(Flow.root_flow_id == filters.root_flow_id)
        if filters.created_after is not None:
            query = query.filter(Flow.created_at >= filters.created_after)
        if filters.created_before is not None:
            query = query.filter(Flow.created_at <= filters.created_before)
        if filters.search:
            query = query.filter(
                or_(
                    Flow.name.icontains(filters.search, autoescape=True),
                    Flow.description.icontains(filters.search, autoescape=True),
                )
            )
        return query.order_by(Flow.created_at.desc(), Flow.path.asc()).all()

    @_guard_store
    def owned_by(self, user_id: str) -> list[Flow]:
        """Return every flow of ``user_id`` ordered by path."""

        return (
            self.session.query(Flow)
            .filter(Flow.user_id == user_id)
            .order_by(Flow.path.asc())
            .all()
        )

    @_guard_store
    def children(self, flow_id: str) -> list[Flow]:
        return (
            self.session.query(Flow)
            .filter(Flow.parent_flow_id == flow_id)
            .order_by(Flow.created_at.asc(), Flow.path.asc())
            .all()
        )

    @_guard_store
    def get_descendants(self, flow_id: str) -> list[Flow]:
        """Return all flows below ``flow_id`` using one path-prefix query."""

        flow = self.require(flow_id)
        prefix = descendant_prefix(flow.path, self.separator)
        return (
            self.session.query(Flow).filter(Flow.path.startswith(prefix, autoescape=True))
            .order_by(Flow.path.asc())
            .all()
        )

    @_guard_store
    def get_ancestors(self, flow_id: str) -> list[Flow]:
        """Return the ancestors of ``flow_id`` ordered root first."""

        flow = self.require(flow_id)
        segments = path_segments(flow.path, self.separator)[:-1]
        if not segments:
            return []
        order = {segment: index for index, segment in enumerate(segments)}
        ancestors = self.session.query(Flow).filter(Flow.id.in_(segments)).all()
        return sorted(ancestors, key=lambda ancestor: order[ancestor.id])

    def subtree(self, flow_id: str) -> list[Flow]:
        """Return ``flow_id`` followed by all of its descendants."""

        flow = self.require(flow_id)
        return [flow, *self.get_descendants(flow_id)]

    # -------------------------------------------------------------- templates

    @_guard_store
    def get_template(self, template_id: str) -> NestedFlowTemplate | None:
        if not template_id:
            return None
        return self.session.get(NestedFlowTemplate, template_id)

    def require_template(self, template_id: str) -> NestedFlowTemplate:
        template = self.get_template(template_id)
        if template is None:
            raise NotFound(f"template {template_id} not found")
        return template

    @_guard_store
    def list_templates(self, filters: TemplateFilters | None = None) -> list[NestedFlowTemplate]:
        filters = filters or TemplateFilters()
        query = self.session.query(NestedFlowTemplate)
        if filters.visible_to is not None:
            query = query.filter(
                or_(
                    NestedFlowTemplate.is_public.is_(True),
                    NestedFlowTemplate.author_id == filters.visible_to,
                )
            )
        if filters.flow_type:
            query = query.filter(NestedFlowTemplate.flow_type.in_(filters.flow_type))
        if filters.category:
            query = query.filter(NestedFlowTemplate.category.in_(filters.category))
        if filters.difficulty:
            query = query.filter(NestedFlowTemplate.difficulty.in_(filters.difficulty))
        if filters.is_public is not None:
            query = query.filter(NestedFlowTemplate.is_public.is_(filters.is_public))
        if filters.author_id:
            query = query.filter(NestedFlowTemplate.author_id == filters.author_id)
        if filters.search:
            query = query.filter(
                or_(
                    NestedFlowTemplate.name.icontains(filters.search, autoescape=True),
                    NestedFlowTemplate.description.icontains(filters.search, autoescape=True),
                )
            )
        if filters.rating_min is not None:
            query = query.filter(NestedFlowTemplate.rating >= filters.rating_min)
        if filters.usage_count_min is not None:
            query = query.filter(NestedFlowTemplate.usage_count >= filters.usage_count_min)
        return query.order_by(NestedFlowTemplate.created_at.desc()).all()

    @_guard_store
    def insert_template(self, template: NestedFlowTemplate) -> NestedFlowTemplate:
        self.session.add(template)
        self._write()
        return template

    @_guard_store
    def upsert_template(self, data: Mapping[str, Any]) -> tuple[NestedFlowTemplate, bool]:
        template = self.session.get(NestedFlowTemplate, data["id"])
        created = template is None
        if created:
            template = NestedFlowTemplate(**data)
            self.session.add(template)
        else:
            for key, value in data.items():
                if key != "id":
                    setattr(template, key, value)
        self._write()
        return template, created
