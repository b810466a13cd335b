"""Pydantic schemas for pipelines, stages and items."""

from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from stage_engine.core.config import settings
from stage_engine.db.enums import PipelineType

HEX_COLOR_PATTERN = r"^#[0-9A-Fa-f]{6}$"


class ChecklistItem(BaseModel):
    """One checkable step of a stage."""
    key: str = Field(..., min_length=1, max_length=100)
    label: str = Field("", max_length=255)
    required: bool = False


class StageConfig(BaseModel):
    """
    Stage extension bag.

    The checklist shape is validated strictly; any other key is preserved
    as-is so hosts can store forward-compatible extensions.
    """
    model_config = ConfigDict(extra="allow")

    checklist: list[ChecklistItem] = Field(default_factory=list)

    @field_validator("checklist")
    @classmethod
    def _unique_keys(cls, value: list[ChecklistItem]) -> list[ChecklistItem]:
        seen: set[str] = set()
        for entry in value:
            if entry.key in seen:
                raise ValueError(f"Duplicate checklist key '{entry.key}'")
            seen.add(entry.key)
        return value

    @property
    def extensions(self) -> dict[str, Any]:
        """Unrecognized keys, passed through untouched."""
        return dict(self.model_extra or {})


class StageDraft(BaseModel):
    """Authoring payload for a new stage (also used as an editable draft)."""
    name: str = Field(..., min_length=1, max_length=settings.MAX_STAGE_NAME_LENGTH)
    color: str = Field(settings.DEFAULT_STAGE_COLOR, pattern=HEX_COLOR_PATTERN)
    order_index: int | None = Field(None, ge=0)
    is_active: bool = True
    probability: int | None = Field(None, ge=0, le=100)
    required_fields: list[str] = Field(default_factory=list)
    stage_config: StageConfig = Field(default_factory=StageConfig)


class StagePatch(BaseModel):
    """Partial stage update. Unset fields are left unchanged."""
    name: str | None = Field(None, min_length=1, max_length=settings.MAX_STAGE_NAME_LENGTH)
    color: str | None = Field(None, pattern=HEX_COLOR_PATTERN)
    order_index: int | None = Field(None, ge=0)
    is_active: bool | None = None
    probability: int | None = Field(None, ge=0, le=100)
    required_fields: list[str] | None = None
    stage_config: StageConfig | None = None


class Stage(BaseModel):
    """Full stage record."""
    id: UUID
    pipeline_id: UUID
    name: str
    color: str = settings.DEFAULT_STAGE_COLOR
    order_index: int
    is_active: bool = True
    probability: int | None = Field(None, ge=0, le=100)
    required_fields: list[str] = Field(default_factory=list)
    stage_config: StageConfig = Field(default_factory=StageConfig)

    model_config = {"from_attributes": True}

    @property
    def checklist(self) -> list[ChecklistItem]:
        return self.stage_config.checklist


class Pipeline(BaseModel):
    """Pipeline header with its ordered stage ids."""
    id: UUID
    name: str
    type: PipelineType
    stage_ids: list[UUID] = Field(default_factory=list)
    current_version: int = 1

    model_config = {"from_attributes": True}


class Item(BaseModel):
    """
    Generic pipeline entity.

    progress is keyed by str(stage_id), then by checklist key. Entries for
    stages the item has already left are kept.
    """
    id: UUID
    pipeline_id: UUID | None = None
    stage_id: UUID | None = None
    title: str = ""
    fields: dict[str, Any] = Field(default_factory=dict)
    progress: dict[str, dict[str, bool]] = Field(default_factory=dict)

    model_config = {"from_attributes": True}

    @model_validator(mode="before")
    @classmethod
    def _coerce_progress_keys(cls, data: Any) -> Any:
        # Accept UUID keys from callers; storage and lookups use strings.
        if isinstance(data, dict) and isinstance(data.get("progress"), dict):
            data = {
                **data,
                "progress": {str(k): v for k, v in data["progress"].items()},
            }
        return data

    def stage_progress(self, stage_id: UUID) -> dict[str, bool]:
        return self.progress.get(str(stage_id), {})
