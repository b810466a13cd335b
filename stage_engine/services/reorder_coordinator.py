"""Drag-driven moves with optimistic local mutation.

Two-phase protocol for every gesture:

1. validate, then mutate BoardState immediately (optimistic)
2. commit through persistence; on success reconcile, on failure put the
   board back exactly as it was and tell the user

Moves of the same item are serialized (one in-flight commit per item);
moves of different items run freely. Cross-client races on an item's
stage are last-write-wins.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import TypedDict
from uuid import UUID

import anyio

from stage_engine.core.config import settings
from stage_engine.core.errors import NotFoundError, PersistenceError, StageEngineError
from stage_engine.core.structured_logging import build_log_context
from stage_engine.db.enums import DragKind, MoveStatus
from stage_engine.services.board_state import BoardState
from stage_engine.services.notification_facade import (
    NotificationSink,
    notify_error,
    notify_info,
    notify_success,
)
from stage_engine.services.persistence import PipelinePersistence
from stage_engine.services.stage_store import StageStore
from stage_engine.services.transition_validator import TransitionValidator

logger = logging.getLogger(__name__)


class MoveResult(TypedDict):
    """Result of a coordinator operation."""

    status: MoveStatus
    item_id: UUID | None
    message: str | None


@dataclass(frozen=True)
class DragGesture:
    """End of a pointer drag as reported by the presentation layer."""

    kind: DragKind
    active_id: UUID
    over_id: UUID | None
    delta_x: float = 0.0
    delta_y: float = 0.0

    @property
    def distance(self) -> float:
        return math.hypot(self.delta_x, self.delta_y)


def _result(status: MoveStatus, item_id: UUID | None = None, message: str | None = None) -> MoveResult:
    return {"status": status, "item_id": item_id, "message": message}


class ReorderCoordinator:
    """Applies item moves and stage reorders against a BoardState."""

    def __init__(
        self,
        state: BoardState,
        store: StageStore,
        sink: NotificationSink,
        persistence: PipelinePersistence | None = None,
    ):
        self.state = state
        self.store = store
        self.sink = sink
        self.persistence = persistence or store.persistence
        self._item_locks: dict[UUID, anyio.Lock] = {}
        self._in_flight: set[UUID] = set()
        self._stage_order_lock = anyio.Lock()

    def is_in_flight(self, item_id: UUID) -> bool:
        return item_id in self._in_flight

    def _lock_for(self, item_id: UUID) -> anyio.Lock:
        lock = self._item_locks.get(item_id)
        if lock is None:
            lock = self._item_locks[item_id] = anyio.Lock()
        return lock

    # =========================================================================
    # Item moves
    # =========================================================================

    async def move_item(
        self,
        item_id: UUID,
        from_stage_id: UUID | None,
        to_stage_id: UUID,
    ) -> MoveResult:
        """
        Move an item to another stage.

        from_stage_id is the stage the gesture started in; BoardState is
        authoritative if they disagree (e.g. a queued move after a rollback).
        """
        lock = self._lock_for(item_id)
        try:
            async with lock:
                return await self._move_item_locked(item_id, from_stage_id, to_stage_id)
        finally:
            # Keep the lock only while another move of this item is queued on it.
            if (
                not lock.locked()
                and lock.statistics().tasks_waiting == 0
                and self._item_locks.get(item_id) is lock
            ):
                del self._item_locks[item_id]

    async def _move_item_locked(
        self,
        item_id: UUID,
        from_stage_id: UUID | None,
        to_stage_id: UUID,
    ) -> MoveResult:
        log_ctx = build_log_context(
            pipeline_id=self.state.pipeline_id,
            stage_id=to_stage_id,
            item_id=item_id,
            operation="move_item",
        )
        item = self.state.item(item_id)
        current_stage_id = self.state.bucket_of(item_id)
        if current_stage_id != from_stage_id:
            logger.debug(
                "Gesture source stage differs from board state gesture=%s board=%s",
                from_stage_id,
                current_stage_id,
                extra=log_ctx,
            )

        if current_stage_id == to_stage_id:
            return _result(MoveStatus.NOOP, item_id)

        current_stage = self.state.find_stage(current_stage_id)
        try:
            target_stage = self.state.stage(to_stage_id)
        except NotFoundError as e:
            notify_error(self.sink, "Move rejected", str(e))
            return _result(MoveStatus.REJECTED, item_id, str(e))

        validator = TransitionValidator(self.state.stages)
        decision = validator.can_advance(current_stage, target_stage, item)
        if not decision.ok:
            logger.info("Move rejected reason=%s", decision.reason, extra=log_ctx)
            notify_error(self.sink, "Move rejected", decision.reason)
            return _result(MoveStatus.REJECTED, item_id, decision.reason)

        # Phase 1: optimistic local mutation
        previous_item = item
        previous_index = self.state.move_item(item_id, to_stage_id)
        self._in_flight.add(item_id)

        # Phase 2: commit, then reconcile or roll back
        try:
            await self.persistence.save_item_stage(item_id, to_stage_id)
        except Exception as e:
            self.state.restore_item(previous_item, current_stage_id, previous_index)
            detail = e.detail if isinstance(e, PersistenceError) else str(e)
            if isinstance(e, StageEngineError):
                logger.warning("Item move failed, rolled back: %s", detail, extra=log_ctx)
            else:
                logger.exception("Item move failed with unexpected error, rolled back", extra=log_ctx)
            notify_error(self.sink, "Could not move item", detail)
            return _result(MoveStatus.FAILED, item_id, detail)
        finally:
            self._in_flight.discard(item_id)

        self.state.set_item(previous_item.model_copy(update={"stage_id": to_stage_id}))
        source_name = current_stage.name if current_stage else "Unstaged"
        message = f"{item.title or 'Item'} moved from {source_name} to {target_stage.name}"
        logger.info("Item moved from=%s", current_stage_id, extra=log_ctx)
        notify_success(self.sink, "Item moved", message)
        return _result(MoveStatus.APPLIED, item_id, message)

    # =========================================================================
    # Stage reorder
    # =========================================================================

    async def reorder_stages_drag(
        self,
        pipeline_id: UUID,
        from_index: int,
        to_index: int,
    ) -> MoveResult:
        """Array-move a stage locally, persist the full order, roll back on failure."""
        if pipeline_id != self.state.pipeline_id:
            raise NotFoundError(f"Pipeline {pipeline_id} is not on this board")
        if from_index == to_index:
            return _result(MoveStatus.NOOP)

        async with self._stage_order_lock:
            previous_stages = list(self.state.stages)
            try:
                ordered_ids = self.state.reorder_stage(from_index, to_index)
            except IndexError as e:
                notify_error(self.sink, "Could not reorder stages", str(e))
                return _result(MoveStatus.REJECTED, message=str(e))

            try:
                persisted = await self.store.reorder_stages(pipeline_id, ordered_ids)
            except Exception as e:
                self.state.apply_stage_order(previous_stages)
                detail = e.detail if isinstance(e, PersistenceError) else str(e)
                if isinstance(e, StageEngineError):
                    logger.warning(
                        "Stage reorder failed, rolled back: %s",
                        detail,
                        extra=build_log_context(pipeline_id=pipeline_id, operation="reorder_stages"),
                    )
                else:
                    logger.exception(
                        "Stage reorder failed with unexpected error, rolled back",
                        extra=build_log_context(pipeline_id=pipeline_id, operation="reorder_stages"),
                    )
                notify_error(self.sink, "Could not reorder stages", detail)
                return _result(MoveStatus.FAILED, message=detail)

            self.state.apply_stage_order(persisted)
            notify_success(self.sink, "Stage order updated", None)
            return _result(MoveStatus.APPLIED)

    # =========================================================================
    # Gestures
    # =========================================================================

    def begin_drag(self, active_id: UUID) -> None:
        self.state.begin_drag(active_id)

    async def handle_drag_end(self, gesture: DragGesture) -> MoveResult:
        """
        Route a finished drag.

        Moved less than the activation distance (a click, not a drag) or
        dropped on itself: nothing happens. Dropped outside any target: an
        info notification reports the cancelled drop.
        """
        self.state.end_drag()
        if gesture.distance < settings.DRAG_ACTIVATION_DISTANCE:
            return _result(MoveStatus.NOOP)
        if gesture.over_id is None:
            notify_info(self.sink, "Drop cancelled", "Released outside any stage")
            return _result(MoveStatus.NOOP)
        if gesture.over_id == gesture.active_id:
            return _result(MoveStatus.NOOP)

        if gesture.kind == DragKind.STAGE:
            from_index = self.state.stage_index(gesture.active_id)
            to_index = self.state.stage_index(gesture.over_id)
            if from_index is None or to_index is None:
                return _result(MoveStatus.NOOP)
            return await self.reorder_stages_drag(self.state.pipeline_id, from_index, to_index)

        # Item dropped on a column, or on another card (use that card's column)
        to_stage_id = gesture.over_id
        if self.state.find_stage(to_stage_id) is None:
            to_stage_id = self.state.bucket_of(gesture.over_id)
            if to_stage_id is None:
                return _result(MoveStatus.NOOP, gesture.active_id)
        if gesture.active_id not in self.state.items:
            return _result(MoveStatus.NOOP, gesture.active_id)
        return await self.move_item(
            gesture.active_id,
            self.state.bucket_of(gesture.active_id),
            to_stage_id,
        )
