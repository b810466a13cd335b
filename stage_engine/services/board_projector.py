"""Board projection: grouping items by stage, per-stage aggregates, compact windows."""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from typing import Any, Iterable, Sequence
from uuid import UUID

from stage_engine.core.config import settings
from stage_engine.db.enums import StageStatus
from stage_engine.schemas.pipeline import Item, Stage

BoardGrouping = dict[UUID, list[Item]]


@dataclass(frozen=True)
class StageAggregate:
    count: int
    total_value: float


@dataclass(frozen=True)
class StageWindow:
    visible: list[Stage]
    hidden_before: list[Stage] = field(default_factory=list)
    hidden_after: list[Stage] = field(default_factory=list)

    @property
    def hidden(self) -> list[Stage]:
        return self.hidden_before + self.hidden_after


@dataclass(frozen=True)
class PipelineSummary:
    stages: dict[UUID, StageAggregate]
    total_count: int
    total_value: float
    weighted_value: float


def project(items: Iterable[Item], stages: Sequence[Stage]) -> BoardGrouping:
    """
    Group items into per-stage buckets in a single pass.

    Items whose stage_id is None or not among `stages` are left out; use
    route_unstaged_to_first() beforehand if they should land somewhere.
    """
    grouping: BoardGrouping = {stage.id: [] for stage in stages}
    for item in items:
        if item.stage_id is None:
            continue
        bucket = grouping.get(item.stage_id)
        if bucket is not None:
            bucket.append(item)
    return grouping


def route_unstaged_to_first(items: Iterable[Item], stages: Sequence[Stage]) -> list[Item]:
    """Fallback policy: place unstaged (or orphaned) items in the first stage."""
    if not stages:
        return list(items)
    known = {s.id for s in stages}
    first_id = stages[0].id
    routed = []
    for item in items:
        if item.stage_id is None or item.stage_id not in known:
            item = item.model_copy(update={"stage_id": first_id})
        routed.append(item)
    return routed


def _numeric(value: Any) -> float:
    if isinstance(value, bool) or value is None:
        return 0.0
    if isinstance(value, (int, float, Decimal)):
        number = float(value)
    elif isinstance(value, str):
        try:
            number = float(Decimal(value.strip()))
        except (InvalidOperation, ValueError):
            return 0.0
    else:
        return 0.0
    return number if math.isfinite(number) else 0.0


def aggregate(
    grouping: BoardGrouping,
    stage: Stage,
    value_field: str | None = None,
) -> StageAggregate:
    """Count and sum item.fields[value_field] for one stage (missing/non-numeric -> 0)."""
    value_field = value_field or settings.DEFAULT_VALUE_FIELD
    bucket = grouping.get(stage.id, [])
    total = sum(_numeric(item.fields.get(value_field)) for item in bucket)
    return StageAggregate(count=len(bucket), total_value=total)


def weighted_value(stage_aggregate: StageAggregate, stage: Stage) -> float:
    """Probability-weighted forecast for a stage (no probability -> 0)."""
    if stage.probability is None:
        return 0.0
    return stage_aggregate.total_value * stage.probability / 100


def pipeline_summary(
    grouping: BoardGrouping,
    stages: Sequence[Stage],
    value_field: str | None = None,
) -> PipelineSummary:
    per_stage = {stage.id: aggregate(grouping, stage, value_field) for stage in stages}
    return PipelineSummary(
        stages=per_stage,
        total_count=sum(a.count for a in per_stage.values()),
        total_value=sum(a.total_value for a in per_stage.values()),
        weighted_value=sum(weighted_value(per_stage[s.id], s) for s in stages),
    )


def visible_window(
    stages: Sequence[Stage],
    current_index: int | None,
    compact: bool,
) -> StageWindow:
    """
    Pick the stages shown on a narrow board.

    Non-compact boards (or pipelines of <= 3 stages) show everything. Compact
    boards show the current stage with one neighbour on each side, clamped to
    the ends; with no current stage, the first three.
    """
    stages = list(stages)
    size = settings.COMPACT_WINDOW_SIZE
    if not compact or len(stages) <= size:
        return StageWindow(visible=stages)

    if current_index is None or not 0 <= current_index < len(stages):
        start = 0
    elif current_index == 0:
        start = 0
    elif current_index == len(stages) - 1:
        start = len(stages) - size
    else:
        start = current_index - size // 2
    start = max(0, min(start, len(stages) - size))
    end = start + size

    return StageWindow(
        visible=stages[start:end],
        hidden_before=stages[:start],
        hidden_after=stages[end:],
    )


def stage_status(index: int, current_index: int | None) -> StageStatus:
    if current_index is None or current_index < 0:
        return StageStatus.INACTIVE
    if index < current_index:
        return StageStatus.COMPLETED
    if index == current_index:
        return StageStatus.CURRENT
    return StageStatus.UPCOMING


def progress_percent(stages: Sequence[Stage], current_index: int | None) -> float:
    """How far along the pipeline an item is, counting its current stage."""
    if not stages or current_index is None or current_index < 0:
        return 0.0
    return (current_index + 1) / len(stages) * 100
