"""Pipeline configuration service - operator-facing stage authoring.

Wraps StageStore with:
- notification reporting for every mutation
- optional optimistic locking (expected_version)
- confirmation tokens for hard deletes
- checklist / required-field / advanced-config draft editing
- pipeline templates (default stages per pipeline type)

Draft helpers are pure: they return a new StageDraft and never mutate the
one passed in, so a rejected edit leaves the previous valid draft intact.
"""

from __future__ import annotations

import json
import logging
import secrets
import time
from typing import Any, Iterable, Sequence
from uuid import UUID

from pydantic import ValidationError as PydanticValidationError

from stage_engine.core.config import settings
from stage_engine.core.errors import (
    ConfirmationRequiredError,
    MalformedConfigError,
    StageEngineError,
)
from stage_engine.core.stage_definitions import get_default_stage_defs
from stage_engine.core.structured_logging import build_log_context
from stage_engine.db.enums import PipelineType
from stage_engine.schemas.pipeline import (
    ChecklistItem,
    Pipeline,
    Stage,
    StageConfig,
    StageDraft,
    StagePatch,
)
from stage_engine.services import checklist_engine
from stage_engine.services.notification_facade import (
    NotificationSink,
    notify_error,
    notify_success,
)
from stage_engine.services.stage_store import StageStore

logger = logging.getLogger(__name__)

CHECKLIST_FIELDS = ("label", "key", "required")


# =============================================================================
# Draft helpers (pure)
# =============================================================================


def _with_checklist(draft: StageDraft, checklist: list[ChecklistItem]) -> StageDraft:
    config = draft.stage_config.model_copy(update={"checklist": checklist}, deep=True)
    return draft.model_copy(update={"stage_config": config})


def _checklist_copy(draft: StageDraft) -> list[ChecklistItem]:
    return [entry.model_copy() for entry in draft.stage_config.checklist]


def _check_index(checklist: list[ChecklistItem], index: int) -> None:
    if not 0 <= index < len(checklist):
        raise MalformedConfigError(f"Checklist index {index} out of range")


def add_checklist_item(draft: StageDraft) -> StageDraft:
    """Append an empty entry with a timestamp-derived placeholder key."""
    checklist = _checklist_copy(draft)
    existing = {entry.key for entry in checklist}
    key = f"item-{int(time.time() * 1000)}"
    n = 2
    while key in existing:
        key = f"item-{int(time.time() * 1000)}-{n}"
        n += 1
    checklist.append(ChecklistItem(key=key, label="", required=False))
    return _with_checklist(draft, checklist)


def update_checklist_item(draft: StageDraft, index: int, field: str, value: Any) -> StageDraft:
    """
    Edit one checklist entry.

    Setting a non-empty label regenerates the key from it (never colliding
    with sibling keys). Setting key explicitly overrides the derived one.
    """
    if field not in CHECKLIST_FIELDS:
        raise MalformedConfigError(f"Unknown checklist field '{field}'")
    checklist = _checklist_copy(draft)
    _check_index(checklist, index)
    entry = checklist[index]
    siblings = {e.key for i, e in enumerate(checklist) if i != index}

    if field == "label":
        label = "" if value is None else str(value)
        updates: dict[str, Any] = {"label": label}
        if label.strip():
            key = checklist_engine.unique_key(label, siblings)
            if key:
                updates["key"] = key
        entry = entry.model_copy(update=updates)
    elif field == "key":
        key = checklist_engine.slugify(str(value or ""))
        if not key:
            raise MalformedConfigError("Checklist key cannot be empty")
        if key in siblings:
            raise MalformedConfigError(f"Checklist key '{key}' already exists in this stage")
        entry = entry.model_copy(update={"key": key})
    else:
        entry = entry.model_copy(update={"required": bool(value)})

    checklist[index] = entry
    return _with_checklist(draft, checklist)


def remove_checklist_item(draft: StageDraft, index: int) -> StageDraft:
    checklist = _checklist_copy(draft)
    _check_index(checklist, index)
    del checklist[index]
    return _with_checklist(draft, checklist)


def build_checklist(entries: Iterable[dict[str, Any]]) -> list[ChecklistItem]:
    """Checklist from {label, required[, key]} dicts; keys derived and deduplicated."""
    checklist: list[ChecklistItem] = []
    taken: set[str] = set()
    for position, entry in enumerate(entries):
        label = str(entry.get("label") or "")
        key = entry.get("key") or checklist_engine.unique_key(label, taken) or f"item-{position + 1}"
        if key in taken:
            raise MalformedConfigError(f"Duplicate checklist key '{key}'")
        taken.add(key)
        checklist.append(
            ChecklistItem(key=key, label=label, required=bool(entry.get("required", False)))
        )
    return checklist


def parse_required_fields(text: str) -> list[str]:
    """One field name per line; blank lines and duplicates dropped."""
    fields = [line.strip() for line in (text or "").splitlines()]
    return list(dict.fromkeys(f for f in fields if f))


def parse_stage_config(raw: str | dict[str, Any]) -> StageConfig:
    """
    Parse an advanced stage_config payload (JSON text or dict).

    Raises MalformedConfigError for unparseable JSON, non-object payloads,
    or an invalid checklist. Unknown keys pass through.
    """
    if isinstance(raw, str):
        try:
            data = json.loads(raw) if raw.strip() else {}
        except json.JSONDecodeError as e:
            raise MalformedConfigError(f"Stage config is not valid JSON: {e.msg}") from e
    else:
        data = raw
    if not isinstance(data, dict):
        raise MalformedConfigError("Stage config must be a JSON object")
    try:
        return StageConfig.model_validate(data)
    except PydanticValidationError as e:
        raise MalformedConfigError(f"Invalid stage config: {e.errors()[0]['msg']}") from e


def apply_stage_config(draft: StageDraft, raw: str | dict[str, Any]) -> StageDraft:
    """Replace the draft's stage_config; the original draft is kept on error."""
    config = parse_stage_config(raw)
    return draft.model_copy(update={"stage_config": config})


def apply_bulk_visibility_preset(stages: Sequence[Stage], allowed_names: Iterable[str]) -> None:
    """Set is_active on every stage whose lowercased name is in allowed_names.

    Only the stage name is lowercased; allowed_names are expected in lowercase.
    """
    allowed = set(allowed_names)
    for stage in stages:
        stage.is_active = stage.name.lower() in allowed


# =============================================================================
# Service
# =============================================================================


class PipelineConfigurationService:
    """Operator-facing orchestration of stage authoring on top of StageStore."""

    # Draft editing is pure; exposed here so callers only need the service.
    add_checklist_item = staticmethod(add_checklist_item)
    update_checklist_item = staticmethod(update_checklist_item)
    remove_checklist_item = staticmethod(remove_checklist_item)
    apply_stage_config = staticmethod(apply_stage_config)
    apply_bulk_visibility_preset = staticmethod(apply_bulk_visibility_preset)

    def __init__(self, store: StageStore, sink: NotificationSink):
        self.store = store
        self.sink = sink
        self._pending_deletions: dict[str, UUID] = {}

    async def _report(self, title: str, detail: str | None, coro):
        try:
            result = await coro
        except StageEngineError as e:
            notify_error(self.sink, f"{title} failed", str(e))
            raise
        notify_success(self.sink, title, detail)
        return result

    # -------------------------------------------------------------------------
    # Stage CRUD
    # -------------------------------------------------------------------------

    async def create_stage(
        self,
        pipeline_id: UUID,
        draft: StageDraft,
        expected_version: int | None = None,
    ) -> Stage:
        async def _create() -> Stage:
            await self.store.check_version(pipeline_id, expected_version)
            return await self.store.create_stage(pipeline_id, draft)

        return await self._report("Stage created", draft.name, _create())

    async def update_stage(
        self,
        stage_id: UUID,
        patch: StagePatch,
        expected_version: int | None = None,
    ) -> Stage:
        async def _update() -> Stage:
            stage = await self.store.get_stage(stage_id)
            await self.store.check_version(stage.pipeline_id, expected_version)
            return await self.store.update_stage(stage_id, patch)

        return await self._report("Stage updated", None, _update())

    async def archive_stage(self, stage_id: UUID, expected_version: int | None = None) -> Stage:
        async def _archive() -> Stage:
            stage = await self.store.get_stage(stage_id)
            await self.store.check_version(stage.pipeline_id, expected_version)
            return await self.store.archive_stage(stage_id)

        return await self._report("Stage archived", None, _archive())

    async def request_stage_deletion(self, stage_id: UUID) -> str:
        """Issue a single-use confirmation token for deleting stage_id."""
        stage = await self.store.get_stage(stage_id)
        token = secrets.token_urlsafe(16)
        self._pending_deletions[token] = stage.id
        return token

    async def delete_stage(
        self,
        stage_id: UUID,
        confirmation_token: str | None,
        force: bool = False,
        expected_version: int | None = None,
    ) -> int:
        """
        Hard-delete a stage once the operator has confirmed.

        Returns the number of items that were unstaged (only non-zero with force).
        """
        confirmed_id = self._pending_deletions.get(confirmation_token or "")
        if confirmed_id != stage_id:
            notify_error(self.sink, "Stage deletion not confirmed", None)
            raise ConfirmationRequiredError("Deleting a stage requires a valid confirmation token")

        async def _delete() -> int:
            stage = await self.store.get_stage(stage_id)
            await self.store.check_version(stage.pipeline_id, expected_version)
            return await self.store.delete_stage(stage_id, force=force)

        unstaged = await self._report("Stage deleted", None, _delete())
        self._pending_deletions.pop(confirmation_token, None)
        return unstaged

    async def save_stage_config(
        self,
        stage_id: UUID,
        raw: str | dict[str, Any],
        expected_version: int | None = None,
    ) -> Stage:
        """Validate and store an advanced config payload; prior config kept on error."""
        try:
            config = parse_stage_config(raw)
        except MalformedConfigError as e:
            notify_error(self.sink, "Stage config rejected", str(e))
            raise
        return await self.update_stage(stage_id, StagePatch(stage_config=config), expected_version)

    async def save_required_fields(self, stage_id: UUID, text: str) -> Stage:
        return await self.update_stage(
            stage_id, StagePatch(required_fields=parse_required_fields(text))
        )

    async def save_visibility_preset(
        self,
        pipeline_id: UUID,
        allowed_names: Iterable[str],
    ) -> list[Stage]:
        """Apply a visibility preset and persist every stage whose flag changed."""
        allowed_names = list(allowed_names)
        stages = await self.store.list_stages(pipeline_id, include_inactive=True)
        before = {s.id: s.is_active for s in stages}
        apply_bulk_visibility_preset(stages, allowed_names)

        async def _save() -> list[Stage]:
            for stage in stages:
                if stage.is_active != before[stage.id]:
                    await self.store.update_stage(stage.id, StagePatch(is_active=stage.is_active))
            return await self.store.list_stages(pipeline_id)

        return await self._report("Visibility preset applied", ", ".join(allowed_names), _save())

    # -------------------------------------------------------------------------
    # Templates
    # -------------------------------------------------------------------------

    @staticmethod
    def _draft_from_def(stage_def: dict[str, Any]) -> StageDraft:
        return StageDraft(
            name=stage_def["name"],
            color=stage_def.get("color") or settings.DEFAULT_STAGE_COLOR,
            probability=stage_def.get("probability"),
            required_fields=list(stage_def.get("required_fields", [])),
            stage_config=StageConfig(checklist=build_checklist(stage_def.get("checklist", []))),
        )

    async def create_pipeline_from_template(
        self,
        name: str,
        pipeline_type: PipelineType | str,
        template: Sequence[dict[str, Any]] | None = None,
    ) -> Pipeline:
        """Create a pipeline seeded with template stages (defaults for its type)."""
        pipeline_type = PipelineType(pipeline_type)
        stage_defs = template if template is not None else get_default_stage_defs(pipeline_type)

        async def _create() -> Pipeline:
            pipeline = await self.store.create_pipeline(name, pipeline_type)
            for stage_def in stage_defs:
                await self.store.create_stage(pipeline.id, self._draft_from_def(stage_def))
            return await self.store.get_pipeline(pipeline.id)

        pipeline = await self._report("Pipeline created", name, _create())
        logger.info(
            "Seeded pipeline stages=%s",
            len(stage_defs),
            extra=build_log_context(pipeline_id=pipeline.id, operation="create_pipeline_from_template"),
        )
        return pipeline

    async def sync_missing_stages(self, pipeline_id: UUID) -> int:
        """
        Append default stages missing (by name) from an existing pipeline.

        Returns count of stages added.
        """
        pipeline = await self.store.get_pipeline(pipeline_id)
        existing = await self.store.list_stages(pipeline_id, include_inactive=True)
        existing_names = {s.name.strip().lower() for s in existing}
        missing = [
            d for d in get_default_stage_defs(pipeline.type)
            if str(d["name"]).lower() not in existing_names
        ]
        if not missing:
            return 0

        async def _sync() -> int:
            for stage_def in missing:
                await self.store.create_stage(pipeline_id, self._draft_from_def(stage_def))
            return len(missing)

        return await self._report("Missing stages added", f"{len(missing)} stage(s)", _sync())
