"""Stage transition gate.

Items may move at most one stage at a time. Moving forward additionally
requires the current stage's required fields and required checklist steps;
moving backward never does, so users can always correct a mistake.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Sequence
from uuid import UUID

from stage_engine.core.errors import ValidationError
from stage_engine.schemas.pipeline import Item, Stage
from stage_engine.services import checklist_engine

NON_ADJACENT_REASON = "non-adjacent move"


@dataclass(frozen=True)
class TransitionDecision:
    ok: bool
    reason: str | None = None


def is_field_present(value: Any) -> bool:
    """A required field counts as present unless None, blank, or an empty container."""
    if value is None:
        return False
    if isinstance(value, str):
        return bool(value.strip())
    if isinstance(value, (list, tuple, set, dict)):
        return len(value) > 0
    return True


def missing_required_fields(stage: Stage, item: Item) -> list[str]:
    return [name for name in stage.required_fields if not is_field_present(item.fields.get(name))]


class TransitionValidator:
    """Decides whether an item may move between stages of one pipeline."""

    def __init__(self, stages: Sequence[Stage]):
        # Caller passes the pipeline's active stages in display order.
        self.stages = list(stages)
        self._index: dict[UUID, int] = {s.id: i for i, s in enumerate(self.stages)}

    def index_of(self, stage: Stage | UUID | None) -> int | None:
        if stage is None:
            return None
        stage_id = stage.id if isinstance(stage, Stage) else stage
        return self._index.get(stage_id)

    def can_advance(
        self,
        current_stage: Stage | None,
        target_stage: Stage,
        item: Item,
    ) -> TransitionDecision:
        target_index = self.index_of(target_stage)
        if target_index is None:
            return TransitionDecision(False, f"unknown target stage '{target_stage.name}'")

        current_index = self.index_of(current_stage)
        if current_index is None:
            # Unstaged items may enter anywhere.
            return TransitionDecision(True)

        if abs(target_index - current_index) > 1:
            return TransitionDecision(
                False,
                f"{NON_ADJACENT_REASON}: cannot jump from '{current_stage.name}' "
                f"to '{target_stage.name}'; move one stage at a time",
            )

        if target_index <= current_index:
            return TransitionDecision(True)

        missing = missing_required_fields(current_stage, item)
        if missing:
            return TransitionDecision(
                False,
                f"Required field '{missing[0]}' is missing for stage '{current_stage.name}'",
            )

        status = checklist_engine.is_complete(current_stage, item)
        if not status.ok:
            label = next(
                (e.label for e in current_stage.checklist if e.key == status.missing_key and e.label),
                status.missing_key,
            )
            return TransitionDecision(
                False,
                f"Checklist step '{label}' ({status.missing_key}) is not complete "
                f"in stage '{current_stage.name}'",
            )

        return TransitionDecision(True)

    def require_advance(
        self,
        current_stage: Stage | None,
        target_stage: Stage,
        item: Item,
    ) -> None:
        """Raise ValidationError when the move is not allowed."""
        decision = self.can_advance(current_stage, target_stage, item)
        if not decision.ok:
            raise ValidationError(decision.reason or "transition rejected")
