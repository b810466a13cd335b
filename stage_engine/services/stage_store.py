"""Stage store - pipelines and their ordered stages.

- order_index is zero-based; new stages go to the end of the list
- No two active stages of a pipeline share an order_index or a name
- Reorder is a single bulk rewrite of every sibling (never per-item shifting)
- Every stage mutation bumps Pipeline.current_version (optimistic locking)
- Hard delete is refused while items reference the stage, unless forced
"""

from __future__ import annotations

import logging
from uuid import UUID, uuid4

from stage_engine.core.errors import ConflictError, NotFoundError, VersionConflictError
from stage_engine.core.structured_logging import build_log_context
from stage_engine.db.enums import PipelineType
from stage_engine.schemas.pipeline import Pipeline, Stage, StageDraft, StagePatch
from stage_engine.services.persistence import PipelinePersistence

logger = logging.getLogger(__name__)


def check_version(current_version: int, expected_version: int) -> None:
    """
    Check if expected version matches current.

    Raises:
        VersionConflictError if mismatch
    """
    if current_version != expected_version:
        raise VersionConflictError(expected_version, current_version)


class StageStore:
    """Holds the set of stages per pipeline: CRUD + reorder."""

    def __init__(self, persistence: PipelinePersistence):
        self.persistence = persistence

    # =========================================================================
    # Pipelines
    # =========================================================================

    async def create_pipeline(
        self,
        name: str,
        pipeline_type: PipelineType | str,
        pipeline_id: UUID | None = None,
    ) -> Pipeline:
        pipeline = Pipeline(
            id=pipeline_id or uuid4(),
            name=name,
            type=PipelineType(pipeline_type),
            current_version=1,
        )
        saved = await self.persistence.save_pipeline(pipeline)
        logger.info(
            "Created pipeline type=%s",
            saved.type.value,
            extra=build_log_context(pipeline_id=saved.id, operation="create_pipeline"),
        )
        return saved

    async def get_pipeline(self, pipeline_id: UUID) -> Pipeline:
        pipeline = await self.persistence.load_pipeline(pipeline_id)
        if pipeline is None:
            raise NotFoundError(f"Pipeline {pipeline_id} not found")
        return pipeline

    async def check_version(self, pipeline_id: UUID, expected_version: int | None) -> None:
        """No-op when expected_version is None."""
        if expected_version is None:
            return
        pipeline = await self.get_pipeline(pipeline_id)
        check_version(pipeline.current_version, expected_version)

    async def _bump_pipeline_version(self, pipeline_id: UUID) -> int:
        pipeline = await self.get_pipeline(pipeline_id)
        pipeline.current_version += 1
        await self.persistence.save_pipeline(pipeline)
        return pipeline.current_version

    # =========================================================================
    # Stage queries
    # =========================================================================

    async def list_stages(
        self,
        pipeline_id: UUID,
        include_inactive: bool = False,
    ) -> list[Stage]:
        """Get stages for a pipeline, ordered by position."""
        stages = await self.persistence.load_stages(pipeline_id)
        if not include_inactive:
            stages = [s for s in stages if s.is_active]
        return sorted(stages, key=lambda s: s.order_index)

    async def get_stage(self, stage_id: UUID) -> Stage:
        stage = await self.persistence.load_stage(stage_id)
        if stage is None:
            raise NotFoundError(f"Stage {stage_id} not found")
        return stage

    async def get_default_stage(self, pipeline_id: UUID) -> Stage | None:
        """First active stage, used as the landing stage for new items."""
        stages = await self.list_stages(pipeline_id)
        return stages[0] if stages else None

    # =========================================================================
    # Stage mutations
    # =========================================================================

    def _ensure_unique(
        self,
        siblings: list[Stage],
        *,
        name: str | None,
        order_index: int | None,
        exclude_id: UUID | None = None,
    ) -> None:
        for other in siblings:
            if other.id == exclude_id or not other.is_active:
                continue
            if name is not None and other.name.strip().lower() == name.strip().lower():
                raise ConflictError(f"Stage name '{name}' already exists in this pipeline")
            if order_index is not None and other.order_index == order_index:
                raise ConflictError(
                    f"order_index {order_index} is already used by stage '{other.name}'"
                )

    async def create_stage(self, pipeline_id: UUID, draft: StageDraft) -> Stage:
        """
        Create a new stage.

        order_index defaults to the end of the list (after inactive stages too,
        so an archived stage can be re-activated without colliding).
        """
        await self.get_pipeline(pipeline_id)
        siblings = await self.list_stages(pipeline_id, include_inactive=True)
        self._ensure_unique(
            siblings,
            name=draft.name,
            order_index=draft.order_index if draft.is_active else None,
        )

        order_index = draft.order_index
        if order_index is None:
            order_index = max((s.order_index for s in siblings), default=-1) + 1

        stage = Stage(
            id=uuid4(),
            pipeline_id=pipeline_id,
            name=draft.name.strip(),
            color=draft.color,
            order_index=order_index,
            is_active=draft.is_active,
            probability=draft.probability,
            required_fields=list(draft.required_fields),
            stage_config=draft.stage_config.model_copy(deep=True),
        )
        saved = await self.persistence.save_stage(stage)
        await self._bump_pipeline_version(pipeline_id)
        logger.info(
            "Created stage order_index=%s",
            saved.order_index,
            extra=build_log_context(
                pipeline_id=pipeline_id, stage_id=saved.id, operation="create_stage"
            ),
        )
        return saved

    async def update_stage(self, stage_id: UUID, patch: StagePatch) -> Stage:
        """Apply a partial update; unset patch fields are left alone."""
        stage = await self.get_stage(stage_id)
        changes = patch.model_dump(exclude_unset=True)
        if not changes:
            return stage

        will_be_active = changes.get("is_active", stage.is_active)
        siblings = await self.list_stages(stage.pipeline_id, include_inactive=True)
        self._ensure_unique(
            siblings,
            name=changes.get("name"),
            order_index=(
                changes.get("order_index", stage.order_index)
                if will_be_active and ("order_index" in changes or "is_active" in changes)
                else None
            ),
            exclude_id=stage.id,
        )

        if "name" in changes:
            changes["name"] = changes["name"].strip()
        if "stage_config" in changes:
            changes["stage_config"] = patch.stage_config.model_copy(deep=True)

        updated = stage.model_copy(update=changes)
        saved = await self.persistence.save_stage(updated)
        await self._bump_pipeline_version(stage.pipeline_id)
        logger.info(
            "Updated stage fields=%s",
            sorted(changes),
            extra=build_log_context(
                pipeline_id=stage.pipeline_id, stage_id=stage_id, operation="update_stage"
            ),
        )
        return saved

    async def archive_stage(self, stage_id: UUID) -> Stage:
        """Soft-remove a stage (is_active=False); items and history are kept."""
        return await self.update_stage(stage_id, StagePatch(is_active=False))

    async def delete_stage(self, stage_id: UUID, force: bool = False) -> int:
        """
        Hard-delete a stage.

        Refuses with ConflictError while items reference the stage. With
        force=True those items are unstaged (stage_id=None) in the same
        persistence call that removes the stage, so a failed delete leaves
        both untouched. Returns the number of items unstaged.
        """
        stage = await self.get_stage(stage_id)
        items = await self.persistence.load_items(stage.pipeline_id)
        referencing = [item for item in items if item.stage_id == stage_id]

        if referencing and not force:
            raise ConflictError(
                f"Stage '{stage.name}' is still used by {len(referencing)} item(s); "
                "reassign them or delete with force"
            )

        # The write is the last step; nothing after it can fail the call.
        await self._bump_pipeline_version(stage.pipeline_id)
        unstaged = await self.persistence.delete_stage(stage_id, unstage_items=force)
        logger.info(
            "Deleted stage unstaged_items=%s force=%s",
            unstaged,
            force,
            extra=build_log_context(
                pipeline_id=stage.pipeline_id, stage_id=stage_id, operation="delete_stage"
            ),
        )
        return unstaged

    async def reorder_stages(self, pipeline_id: UUID, ordered_ids: list[UUID]) -> list[Stage]:
        """
        Reorder stages by providing every active stage id in the desired order.

        Active stages get order_index 0..n-1; inactive stages keep their
        relative order after them. Written with one save_stage_order call,
        which is the last storage step: once it succeeds the reorder has
        happened, and the returned stages are built from the written order.
        """
        stages = await self.list_stages(pipeline_id, include_inactive=True)
        active_ids = {s.id for s in stages if s.is_active}
        deduped = list(dict.fromkeys(ordered_ids))
        if len(deduped) != len(ordered_ids) or set(deduped) != active_ids:
            raise ConflictError("ordered_ids must include every active stage exactly once")

        inactive_ids = [s.id for s in stages if not s.is_active]
        full_order = deduped + inactive_ids
        await self._bump_pipeline_version(pipeline_id)
        await self.persistence.save_stage_order(pipeline_id, full_order)
        logger.info(
            "Reordered stages count=%s",
            len(deduped),
            extra=build_log_context(pipeline_id=pipeline_id, operation="reorder_stages"),
        )
        by_id = {s.id: s for s in stages}
        return [
            by_id[stage_id].model_copy(update={"order_index": index})
            for index, stage_id in enumerate(deduped)
        ]
