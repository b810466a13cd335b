"""Tests for checklist key generation and completion state."""

import pytest

from stage_engine.services.checklist_engine import (
    completion_ratio,
    is_complete,
    slugify,
    toggle,
    unique_key,
)
from tests.builders import make_item, make_stage


# =============================================================================
# slugify
# =============================================================================


def test_slugify_is_deterministic_across_spacing_and_punctuation():
    assert slugify("Enviar NDA!") == "enviar-nda"
    assert slugify("enviar   nda") == "enviar-nda"
    assert slugify("Enviar NDA!") == slugify("enviar   nda")


@pytest.mark.parametrize(
    "label,expected",
    [
        ("  --Hello__World--  ", "hello-world"),
        ("Q&A closed", "qa-closed"),
        ("Reunión inicial", "reunion-inicial"),
        ("already-a-slug", "already-a-slug"),
        ("!!!", ""),
        ("", ""),
    ],
)
def test_slugify_examples(label, expected):
    assert slugify(label) == expected


@pytest.mark.parametrize(
    "label",
    ["Enviar NDA!", "  Call   made ", "Data room opened", "Señal_de_vida", "x--y__z"],
)
def test_slugify_is_idempotent(label):
    once = slugify(label)
    assert slugify(once) == once


def test_unique_key_suffixes_on_collision():
    assert unique_key("Call made", []) == "call-made"
    assert unique_key("Call made", ["call-made"]) == "call-made-2"
    assert unique_key("Call made", ["call-made", "call-made-2"]) == "call-made-3"


def test_unique_key_empty_label_gives_empty_key():
    assert unique_key("???", ["x"]) == ""


# =============================================================================
# Completion
# =============================================================================


def _stage_with_checklist():
    return make_stage(
        "Qualified",
        0,
        checklist=[
            {"key": "budget", "label": "Confirm budget", "required": True},
            {"key": "notes", "label": "Notes", "required": False},
            {"key": "decision-maker", "label": "Decision maker", "required": True},
        ],
    )


def test_is_complete_reports_first_missing_required_key_in_order():
    stage = _stage_with_checklist()
    item = make_item(stage)

    status = is_complete(stage, item)
    assert status.ok is False
    assert status.missing_key == "budget"

    item = toggle(item, stage.id, "budget", True)
    status = is_complete(stage, item)
    assert status.ok is False
    assert status.missing_key == "decision-maker"


def test_is_complete_ignores_optional_entries():
    stage = _stage_with_checklist()
    item = make_item(stage, progress={stage.id: {"budget": True, "decision-maker": True}})

    assert is_complete(stage, item).ok is True


def test_is_complete_with_empty_checklist():
    stage = make_stage("New", 0)
    assert is_complete(stage, make_item(stage)).ok is True


def test_is_complete_only_reads_progress_of_that_stage():
    stage = _stage_with_checklist()
    other = make_stage("Other", 1, pipeline_id=stage.pipeline_id)
    item = make_item(stage, progress={other.id: {"budget": True, "decision-maker": True}})

    assert is_complete(stage, item).ok is False


def test_toggle_is_pure():
    stage = _stage_with_checklist()
    item = make_item(stage)

    updated = toggle(item, stage.id, "budget", True)

    assert item.progress == {}
    assert updated.progress == {str(stage.id): {"budget": True}}
    assert updated.id == item.id


def test_toggle_keeps_progress_of_other_stages():
    stage = _stage_with_checklist()
    earlier = make_stage("Earlier", 1, pipeline_id=stage.pipeline_id)
    item = make_item(stage, progress={earlier.id: {"intro": True}})

    updated = toggle(item, stage.id, "budget", True)
    updated = toggle(updated, stage.id, "budget", False)

    assert updated.stage_progress(earlier.id) == {"intro": True}
    assert updated.stage_progress(stage.id) == {"budget": False}


def test_completion_ratio():
    stage = _stage_with_checklist()
    item = make_item(stage, progress={stage.id: {"budget": True, "notes": True}})

    assert completion_ratio(stage, item) == pytest.approx(2 / 3)
    assert completion_ratio(make_stage("Empty", 0), item) == 1.0
