"""Explicit board state.

Holds everything a board needs (ordered stages, per-stage item buckets,
items, drag state) in one serializable object. All mutations go through
the methods here so coordinators can mutate optimistically and put a single
item (or the stage order) back exactly on failure.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Iterable, Sequence
from uuid import UUID

from stage_engine.core.errors import NotFoundError
from stage_engine.schemas.pipeline import Item, Stage
from stage_engine.services import board_projector
from stage_engine.services.board_projector import BoardGrouping


@dataclass
class BoardState:
    pipeline_id: UUID
    stages: list[Stage] = field(default_factory=list)
    buckets: dict[UUID, list[UUID]] = field(default_factory=dict)
    items: dict[UUID, Item] = field(default_factory=dict)
    active_drag_id: UUID | None = None

    @classmethod
    def build(
        cls,
        pipeline_id: UUID,
        stages: Sequence[Stage],
        items: Iterable[Item],
    ) -> "BoardState":
        """Project items onto the given (active, ordered) stages."""
        items = list(items)
        grouping = board_projector.project(items, stages)
        return cls(
            pipeline_id=pipeline_id,
            stages=list(stages),
            buckets={stage_id: [i.id for i in bucket] for stage_id, bucket in grouping.items()},
            items={item.id: item for item in items},
        )

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    def grouping(self) -> BoardGrouping:
        return {
            stage.id: [self.items[item_id] for item_id in self.buckets.get(stage.id, [])]
            for stage in self.stages
        }

    def stage(self, stage_id: UUID) -> Stage:
        for stage in self.stages:
            if stage.id == stage_id:
                return stage
        raise NotFoundError(f"Stage {stage_id} is not on this board")

    def find_stage(self, stage_id: UUID | None) -> Stage | None:
        if stage_id is None:
            return None
        return next((s for s in self.stages if s.id == stage_id), None)

    def item(self, item_id: UUID) -> Item:
        try:
            return self.items[item_id]
        except KeyError:
            raise NotFoundError(f"Item {item_id} is not on this board") from None

    def bucket_of(self, item_id: UUID) -> UUID | None:
        for stage_id, bucket in self.buckets.items():
            if item_id in bucket:
                return stage_id
        return None

    def stage_index(self, stage_id: UUID) -> int | None:
        return next((i for i, s in enumerate(self.stages) if s.id == stage_id), None)

    def stage_ids(self) -> list[UUID]:
        return [s.id for s in self.stages]

    # -------------------------------------------------------------------------
    # Mutations
    # -------------------------------------------------------------------------

    def move_item(self, item_id: UUID, to_stage_id: UUID, index: int | None = None) -> int | None:
        """
        Move item_id into to_stage_id's bucket (appended unless index is given).

        Returns the index the item occupied in its previous bucket, or None if
        it was not on the board.
        """
        if to_stage_id not in self.buckets:
            raise NotFoundError(f"Stage {to_stage_id} is not on this board")
        previous_index = None
        from_stage_id = self.bucket_of(item_id)
        if from_stage_id is not None:
            previous_index = self.buckets[from_stage_id].index(item_id)
            self.buckets[from_stage_id].pop(previous_index)
        target = self.buckets[to_stage_id]
        if index is None or index >= len(target):
            target.append(item_id)
        else:
            target.insert(max(index, 0), item_id)
        return previous_index

    def restore_item(
        self,
        item: Item,
        stage_id: UUID | None,
        index: int | None,
    ) -> None:
        """
        Put an item back exactly where it was: same bucket, same position.

        Only this item is touched, so concurrent moves of sibling items are
        left alone.
        """
        current = self.bucket_of(item.id)
        if current is not None:
            self.buckets[current].remove(item.id)
        if stage_id is not None:
            bucket = self.buckets.setdefault(stage_id, [])
            if index is None or index >= len(bucket):
                bucket.append(item.id)
            else:
                bucket.insert(max(index, 0), item.id)
        self.items[item.id] = item

    def set_item(self, item: Item) -> None:
        self.items[item.id] = item

    def reorder_stage(self, from_index: int, to_index: int) -> list[UUID]:
        """Array-move a stage and return the resulting id order."""
        if not (0 <= from_index < len(self.stages)) or not (0 <= to_index < len(self.stages)):
            raise IndexError(f"Stage index out of range: {from_index} -> {to_index}")
        stage = self.stages.pop(from_index)
        self.stages.insert(to_index, stage)
        return self.stage_ids()

    def apply_stage_order(self, stages: Sequence[Stage]) -> None:
        """Replace stages (e.g. with freshly persisted ones), keeping buckets."""
        self.stages = list(stages)
        for stage in self.stages:
            self.buckets.setdefault(stage.id, [])

    def begin_drag(self, active_id: UUID) -> None:
        self.active_drag_id = active_id

    def end_drag(self) -> None:
        self.active_drag_id = None

    def to_dict(self) -> dict[str, Any]:
        """JSON-ready structural dump (used to compare states)."""
        return {
            "pipeline_id": str(self.pipeline_id),
            "stages": [s.model_dump(mode="json") for s in self.stages],
            "buckets": {
                str(stage_id): [str(i) for i in bucket]
                for stage_id, bucket in self.buckets.items()
            },
            "items": {str(k): v.model_dump(mode="json") for k, v in self.items.items()},
            "active_drag_id": str(self.active_drag_id) if self.active_drag_id else None,
        }
