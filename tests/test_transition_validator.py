"""Tests for the stage transition gate."""

import uuid

import pytest

from stage_engine.core.errors import ValidationError
from stage_engine.services.checklist_engine import toggle
from stage_engine.services.transition_validator import (
    NON_ADJACENT_REASON,
    TransitionValidator,
    is_field_present,
    missing_required_fields,
)
from tests.builders import make_item, make_stage, make_stages


def _gated_pipeline():
    pipeline_id = uuid.uuid4()
    stages = [
        make_stage(
            "Contacted",
            0,
            pipeline_id=pipeline_id,
            required_fields=["email"],
            checklist=[{"key": "call-made", "label": "Call made", "required": True}],
        ),
        make_stage("Qualified", 1, pipeline_id=pipeline_id),
        make_stage("Won", 2, pipeline_id=pipeline_id),
    ]
    return stages, TransitionValidator(stages)


# =============================================================================
# Adjacency
# =============================================================================


def test_adjacency_rejects_every_jump_larger_than_one():
    stages = make_stages(5)
    validator = TransitionValidator(stages)

    for i, current in enumerate(stages):
        item = make_item(current)
        for j, target in enumerate(stages):
            decision = validator.can_advance(current, target, item)
            if abs(i - j) > 1:
                assert decision.ok is False, (i, j)
                assert NON_ADJACENT_REASON in decision.reason
            else:
                assert decision.ok is True, (i, j)


def test_unstaged_item_may_enter_any_stage():
    stages = make_stages(5)
    validator = TransitionValidator(stages)
    item = make_item()

    for target in stages:
        assert validator.can_advance(None, target, item).ok is True


def test_current_stage_not_in_list_counts_as_unstaged():
    stages = make_stages(4)
    validator = TransitionValidator(stages)
    archived = make_stage("Archived", 9, pipeline_id=stages[0].pipeline_id)

    assert validator.can_advance(archived, stages[3], make_item(archived)).ok is True


def test_unknown_target_is_rejected():
    stages = make_stages(3)
    validator = TransitionValidator(stages)
    stranger = make_stage("Elsewhere", 0)

    decision = validator.can_advance(stages[0], stranger, make_item(stages[0]))

    assert decision.ok is False
    assert "unknown target stage" in decision.reason


# =============================================================================
# Forward gate
# =============================================================================


def test_forward_move_requires_current_stage_fields():
    stages, validator = _gated_pipeline()
    item = make_item(stages[0], progress={stages[0].id: {"call-made": True}})

    decision = validator.can_advance(stages[0], stages[1], item)

    assert decision.ok is False
    assert "email" in decision.reason
    assert "Contacted" in decision.reason


def test_blank_field_counts_as_missing():
    stages, validator = _gated_pipeline()
    item = make_item(
        stages[0],
        fields={"email": "   "},
        progress={stages[0].id: {"call-made": True}},
    )

    assert validator.can_advance(stages[0], stages[1], item).ok is False


def test_forward_move_requires_checklist():
    stages, validator = _gated_pipeline()
    item = make_item(stages[0], fields={"email": "ana@example.com"})

    decision = validator.can_advance(stages[0], stages[1], item)

    assert decision.ok is False
    assert "call-made" in decision.reason
    assert "Call made" in decision.reason


def test_forward_move_allowed_once_requirements_met():
    stages, validator = _gated_pipeline()
    item = make_item(stages[0], fields={"email": "ana@example.com"})
    item = toggle(item, stages[0].id, "call-made", True)

    assert validator.can_advance(stages[0], stages[1], item).ok is True


def test_backward_move_is_always_allowed_with_same_state():
    pipeline_id = uuid.uuid4()
    stages = [
        make_stage("New", 0, pipeline_id=pipeline_id),
        make_stage(
            "Contacted",
            1,
            pipeline_id=pipeline_id,
            required_fields=["email"],
            checklist=[{"key": "call-made", "required": True}],
        ),
    ]
    validator = TransitionValidator(stages)
    item = make_item(stages[1])

    assert validator.can_advance(stages[1], stages[0], item).ok is True
    # Staying put is allowed too.
    assert validator.can_advance(stages[1], stages[1], item).ok is True


def test_require_advance_raises_with_reason():
    stages, validator = _gated_pipeline()
    item = make_item(stages[0])

    with pytest.raises(ValidationError) as exc_info:
        validator.require_advance(stages[0], stages[1], item)

    assert "email" in exc_info.value.reason


# =============================================================================
# Field presence
# =============================================================================


@pytest.mark.parametrize(
    "value,present",
    [
        (None, False),
        ("", False),
        ("  ", False),
        ([], False),
        ({}, False),
        ("x", True),
        (0, True),
        (False, True),
        (["a"], True),
    ],
)
def test_is_field_present(value, present):
    assert is_field_present(value) is present


def test_missing_required_fields_keeps_declared_order():
    stage = make_stage("Proposal", 0, required_fields=["amount", "email", "phone"])
    item = make_item(stage, fields={"email": "ana@example.com"})

    assert missing_required_fields(stage, item) == ["amount", "phone"]
