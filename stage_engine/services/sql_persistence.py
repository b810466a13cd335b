"""SQLAlchemy persistence adapter.

Each operation opens its own session and runs in a worker thread via
anyio so the event loop is never blocked on the database. Storage failures
are translated into PersistenceError.
"""

from __future__ import annotations

import logging
from typing import Callable, TypeVar
from uuid import UUID

import anyio
from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from stage_engine.core.errors import NotFoundError, PersistenceError
from stage_engine.db.base import Base
from stage_engine.db.models import Pipeline as PipelineRow
from stage_engine.db.models import PipelineItem, PipelineStage
from stage_engine.db.session import SessionLocal
from stage_engine.schemas.pipeline import Item, Pipeline, Stage

logger = logging.getLogger(__name__)

T = TypeVar("T")


def _stage_from_row(row: PipelineStage) -> Stage:
    return Stage.model_validate(row)


def _pipeline_from_row(row: PipelineRow) -> Pipeline:
    return Pipeline(
        id=row.id,
        name=row.name,
        type=row.type,
        stage_ids=[s.id for s in row.stages],
        current_version=row.current_version,
    )


class SqlAlchemyPersistence:
    """PipelinePersistence backed by SQLAlchemy ORM sessions.

    Uses the application SessionLocal unless a session factory is given.
    """

    def __init__(self, session_factory: sessionmaker[Session] | None = None):
        self.session_factory = session_factory or SessionLocal

    def create_schema(self) -> None:
        """Create tables on the bound engine (tests and embedded sqlite use)."""
        bind = self.session_factory.kw["bind"]
        Base.metadata.create_all(bind)

    async def _run(self, operation: str, fn: Callable[[Session], T]) -> T:
        def _work() -> T:
            with self.session_factory() as db:
                try:
                    result = fn(db)
                    db.commit()
                    return result
                except SQLAlchemyError:
                    db.rollback()
                    raise

        try:
            return await anyio.to_thread.run_sync(_work)
        except SQLAlchemyError as e:
            logger.warning("Persistence operation failed operation=%s error=%s", operation, e)
            raise PersistenceError(f"{operation} failed: {e}") from e

    # -------------------------------------------------------------------------
    # Pipelines
    # -------------------------------------------------------------------------

    async def load_pipeline(self, pipeline_id: UUID) -> Pipeline | None:
        def _load(db: Session) -> Pipeline | None:
            row = db.get(PipelineRow, pipeline_id)
            return _pipeline_from_row(row) if row else None

        return await self._run("load_pipeline", _load)

    async def save_pipeline(self, pipeline: Pipeline) -> Pipeline:
        def _save(db: Session) -> Pipeline:
            row = db.get(PipelineRow, pipeline.id)
            if row is None:
                row = PipelineRow(id=pipeline.id)
                db.add(row)
            row.name = pipeline.name
            row.type = pipeline.type.value
            row.current_version = pipeline.current_version
            db.flush()
            db.refresh(row)
            return _pipeline_from_row(row)

        return await self._run("save_pipeline", _save)

    # -------------------------------------------------------------------------
    # Stages
    # -------------------------------------------------------------------------

    async def load_stage(self, stage_id: UUID) -> Stage | None:
        def _load(db: Session) -> Stage | None:
            row = db.get(PipelineStage, stage_id)
            return _stage_from_row(row) if row else None

        return await self._run("load_stage", _load)

    async def load_stages(self, pipeline_id: UUID) -> list[Stage]:
        def _load(db: Session) -> list[Stage]:
            rows = db.scalars(
                select(PipelineStage)
                .where(PipelineStage.pipeline_id == pipeline_id)
                .order_by(PipelineStage.order_index)
            ).all()
            return [_stage_from_row(row) for row in rows]

        return await self._run("load_stages", _load)

    async def save_stage(self, stage: Stage) -> Stage:
        def _save(db: Session) -> Stage:
            row = db.get(PipelineStage, stage.id)
            if row is None:
                row = PipelineStage(id=stage.id, pipeline_id=stage.pipeline_id)
                db.add(row)
            row.name = stage.name
            row.color = stage.color
            row.order_index = stage.order_index
            row.is_active = stage.is_active
            row.probability = stage.probability
            row.required_fields = list(stage.required_fields)
            row.stage_config = stage.stage_config.model_dump(mode="json")
            db.flush()
            return _stage_from_row(row)

        return await self._run("save_stage", _save)

    async def delete_stage(self, stage_id: UUID, unstage_items: bool = False) -> int:
        def _delete(db: Session) -> int:
            row = db.get(PipelineStage, stage_id)
            if row is None:
                raise NotFoundError(f"Stage {stage_id} not found")
            unstaged = 0
            if unstage_items:
                result = db.execute(
                    update(PipelineItem)
                    .where(PipelineItem.stage_id == stage_id)
                    .values(stage_id=None)
                )
                unstaged = result.rowcount
            else:
                referenced = db.scalar(
                    select(PipelineItem.id).where(PipelineItem.stage_id == stage_id).limit(1)
                )
                if referenced is not None:
                    raise PersistenceError(f"Stage {stage_id} is still referenced by items")
            # Same transaction: the stage and its items' stage_id change together.
            db.delete(row)
            return unstaged

        return await self._run("delete_stage", _delete)

    async def save_stage_order(self, pipeline_id: UUID, ids: list[UUID]) -> None:
        def _save(db: Session) -> None:
            rows = {
                row.id: row
                for row in db.scalars(
                    select(PipelineStage).where(PipelineStage.pipeline_id == pipeline_id)
                ).all()
            }
            missing = [stage_id for stage_id in ids if stage_id not in rows]
            if missing:
                raise PersistenceError(
                    f"Stages {', '.join(str(m) for m in missing)} are not part of pipeline {pipeline_id}"
                )
            # Single transaction: either every sibling is rewritten or none is.
            for index, stage_id in enumerate(ids):
                rows[stage_id].order_index = index

        await self._run("save_stage_order", _save)

    # -------------------------------------------------------------------------
    # Items
    # -------------------------------------------------------------------------

    async def save_item_stage(self, item_id: UUID, stage_id: UUID | None) -> None:
        def _save(db: Session) -> None:
            result = db.execute(
                update(PipelineItem)
                .where(PipelineItem.id == item_id)
                .values(stage_id=stage_id)
            )
            if result.rowcount == 0:
                raise PersistenceError(f"Item {item_id} not found")

        await self._run("save_item_stage", _save)

    async def load_items(self, pipeline_id: UUID) -> list[Item]:
        def _load(db: Session) -> list[Item]:
            rows = db.scalars(
                select(PipelineItem)
                .where(PipelineItem.pipeline_id == pipeline_id)
                .order_by(PipelineItem.created_at, PipelineItem.id)
            ).all()
            return [Item.model_validate(row) for row in rows]

        return await self._run("load_items", _load)

    async def add_item(self, item: Item) -> Item:
        """Seed an item (item creation is owned by the host application)."""
        def _add(db: Session) -> Item:
            row = PipelineItem(
                id=item.id,
                pipeline_id=item.pipeline_id,
                stage_id=item.stage_id,
                title=item.title,
                fields=dict(item.fields),
                progress={k: dict(v) for k, v in item.progress.items()},
            )
            db.add(row)
            db.flush()
            return Item.model_validate(row)

        return await self._run("add_item", _add)
