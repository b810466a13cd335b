"""Persistence collaborator contract and the in-memory adapter.

The engine never talks to storage directly. Hosts plug in any object that
satisfies ``PipelinePersistence``; adapters translate storage failures into
``PersistenceError`` so the coordinator can roll back optimistic mutations.
"""

from __future__ import annotations

from typing import Protocol, runtime_checkable
from uuid import UUID

from stage_engine.core.errors import NotFoundError, PersistenceError
from stage_engine.schemas.pipeline import Item, Pipeline, Stage


@runtime_checkable
class PipelinePersistence(Protocol):
    """Async storage contract consumed by the engine."""

    async def load_pipeline(self, pipeline_id: UUID) -> Pipeline | None: ...

    async def save_pipeline(self, pipeline: Pipeline) -> Pipeline: ...

    async def load_stage(self, stage_id: UUID) -> Stage | None: ...

    async def load_stages(self, pipeline_id: UUID) -> list[Stage]: ...

    async def save_stage(self, stage: Stage) -> Stage: ...

    async def delete_stage(self, stage_id: UUID, unstage_items: bool = False) -> int: ...

    async def save_stage_order(self, pipeline_id: UUID, ids: list[UUID]) -> None: ...

    async def save_item_stage(self, item_id: UUID, stage_id: UUID | None) -> None: ...

    async def load_items(self, pipeline_id: UUID) -> list[Item]: ...


class InMemoryPersistence:
    """
    Dict-backed persistence for embedding and tests.

    Records are stored as deep copies so callers can't mutate storage by
    holding on to returned models.
    """

    def __init__(self) -> None:
        self.pipelines: dict[UUID, Pipeline] = {}
        self.stages: dict[UUID, Stage] = {}
        self.items: dict[UUID, Item] = {}

    # -------------------------------------------------------------------------
    # Pipelines
    # -------------------------------------------------------------------------

    async def load_pipeline(self, pipeline_id: UUID) -> Pipeline | None:
        pipeline = self.pipelines.get(pipeline_id)
        if pipeline is None:
            return None
        stage_ids = [s.id for s in self._sorted_stages(pipeline_id)]
        return pipeline.model_copy(update={"stage_ids": stage_ids}, deep=True)

    async def save_pipeline(self, pipeline: Pipeline) -> Pipeline:
        self.pipelines[pipeline.id] = pipeline.model_copy(deep=True)
        return pipeline.model_copy(deep=True)

    # -------------------------------------------------------------------------
    # Stages
    # -------------------------------------------------------------------------

    async def load_stage(self, stage_id: UUID) -> Stage | None:
        stage = self.stages.get(stage_id)
        return stage.model_copy(deep=True) if stage else None

    async def load_stages(self, pipeline_id: UUID) -> list[Stage]:
        return [s.model_copy(deep=True) for s in self._sorted_stages(pipeline_id)]

    async def save_stage(self, stage: Stage) -> Stage:
        if stage.pipeline_id not in self.pipelines:
            raise PersistenceError(f"Pipeline {stage.pipeline_id} does not exist")
        self.stages[stage.id] = stage.model_copy(deep=True)
        return stage.model_copy(deep=True)

    async def delete_stage(self, stage_id: UUID, unstage_items: bool = False) -> int:
        """Delete a stage, optionally unstaging its items in the same step."""
        if stage_id not in self.stages:
            raise NotFoundError(f"Stage {stage_id} not found")
        referencing = [item for item in self.items.values() if item.stage_id == stage_id]
        if referencing and not unstage_items:
            raise PersistenceError(f"Stage {stage_id} is still referenced by items")
        del self.stages[stage_id]
        for item in referencing:
            item.stage_id = None
        return len(referencing)

    async def save_stage_order(self, pipeline_id: UUID, ids: list[UUID]) -> None:
        # Validate everything before touching storage so the rewrite is all-or-nothing.
        for stage_id in ids:
            stage = self.stages.get(stage_id)
            if stage is None or stage.pipeline_id != pipeline_id:
                raise PersistenceError(f"Stage {stage_id} is not part of pipeline {pipeline_id}")
        for index, stage_id in enumerate(ids):
            self.stages[stage_id].order_index = index

    # -------------------------------------------------------------------------
    # Items
    # -------------------------------------------------------------------------

    async def save_item_stage(self, item_id: UUID, stage_id: UUID | None) -> None:
        item = self.items.get(item_id)
        if item is None:
            raise PersistenceError(f"Item {item_id} not found")
        item.stage_id = stage_id

    async def load_items(self, pipeline_id: UUID) -> list[Item]:
        return [
            item.model_copy(deep=True)
            for item in self.items.values()
            if item.pipeline_id == pipeline_id
        ]

    def add_item(self, item: Item) -> Item:
        """Seed an item (item creation is owned by the host application)."""
        self.items[item.id] = item.model_copy(deep=True)
        return item

    def _sorted_stages(self, pipeline_id: UUID) -> list[Stage]:
        return sorted(
            (s for s in self.stages.values() if s.pipeline_id == pipeline_id),
            key=lambda s: s.order_index,
        )
