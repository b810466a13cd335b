"""Pydantic schemas for engine domain models."""

from stage_engine.schemas.pipeline import (
    ChecklistItem,
    Item,
    Pipeline,
    Stage,
    StageConfig,
    StageDraft,
    StagePatch,
)

__all__ = [
    "ChecklistItem",
    "Item",
    "Pipeline",
    "Stage",
    "StageConfig",
    "StageDraft",
    "StagePatch",
]
