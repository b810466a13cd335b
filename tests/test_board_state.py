"""Tests for BoardState mutations."""

import uuid

import pytest

from stage_engine.core.errors import NotFoundError
from stage_engine.services.board_state import BoardState
from tests.builders import make_item, make_stages


def _board(item_counts=(3, 1, 0)):
    pipeline_id = uuid.uuid4()
    stages = make_stages(len(item_counts), pipeline_id)
    items = [
        make_item(stage, title=f"{stage.name} #{n}")
        for stage, count in zip(stages, item_counts)
        for n in range(count)
    ]
    return BoardState.build(pipeline_id, stages, items), stages, items


def test_build_projects_items_into_buckets_in_order():
    state, stages, items = _board()

    assert state.buckets[stages[0].id] == [i.id for i in items[:3]]
    assert state.buckets[stages[1].id] == [items[3].id]
    assert state.buckets[stages[2].id] == []
    assert state.grouping()[stages[0].id] == items[:3]


def test_move_item_returns_previous_index():
    state, stages, items = _board()
    middle = items[1]

    previous_index = state.move_item(middle.id, stages[1].id)

    assert previous_index == 1
    assert state.bucket_of(middle.id) == stages[1].id
    assert state.buckets[stages[1].id][-1] == middle.id


def test_move_item_to_unknown_stage_raises():
    state, _, items = _board()

    with pytest.raises(NotFoundError):
        state.move_item(items[0].id, uuid.uuid4())


def test_restore_item_puts_it_back_at_exact_index():
    state, stages, items = _board()
    before = state.to_dict()
    middle = items[1]

    previous_index = state.move_item(middle.id, stages[1].id)
    state.restore_item(middle, stages[0].id, previous_index)

    assert state.to_dict() == before


def test_restore_item_leaves_siblings_alone():
    state, stages, items = _board()
    first, middle = items[0], items[1]

    middle_index = state.move_item(middle.id, stages[1].id)
    state.move_item(first.id, stages[1].id)
    state.restore_item(middle, stages[0].id, middle_index)

    assert state.bucket_of(first.id) == stages[1].id
    assert state.bucket_of(middle.id) == stages[0].id


def test_reorder_stage_array_move():
    state, stages, _ = _board((0, 0, 0, 0))

    order = state.reorder_stage(0, 2)

    assert order == [stages[1].id, stages[2].id, stages[0].id, stages[3].id]
    assert state.stage_index(stages[0].id) == 2


def test_reorder_stage_out_of_range():
    state, _, _ = _board((0, 0))

    with pytest.raises(IndexError):
        state.reorder_stage(0, 5)


def test_drag_state_and_lookup_errors():
    state, stages, items = _board()

    state.begin_drag(items[0].id)
    assert state.to_dict()["active_drag_id"] == str(items[0].id)
    state.end_drag()
    assert state.active_drag_id is None

    with pytest.raises(NotFoundError):
        state.item(uuid.uuid4())
    with pytest.raises(NotFoundError):
        state.stage(uuid.uuid4())
    assert state.find_stage(None) is None
