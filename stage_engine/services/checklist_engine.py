"""Checklist helpers: key generation and per-stage completion state."""

from __future__ import annotations

import re
import unicodedata
from dataclasses import dataclass
from typing import Iterable
from uuid import UUID

from stage_engine.schemas.pipeline import Item, Stage

_NON_WORD = re.compile(r"[^\w\s-]", re.ASCII)
_SEPARATORS = re.compile(r"[\s_-]+")


@dataclass(frozen=True)
class ChecklistStatus:
    ok: bool
    missing_key: str | None = None


def slugify(label: str) -> str:
    """
    Turn a human label into a url-safe checklist key.

    "Enviar NDA!" -> "enviar-nda". Accents are folded to ASCII first so
    "Reunión inicial" -> "reunion-inicial". Idempotent.
    """
    text = unicodedata.normalize("NFKD", label or "")
    text = "".join(ch for ch in text if not unicodedata.combining(ch))
    text = text.lower().strip()
    text = _NON_WORD.sub("", text)
    text = _SEPARATORS.sub("-", text)
    return text.strip("-")


def unique_key(label: str, existing_keys: Iterable[str]) -> str:
    """Slugify label, suffixing -2, -3... until it doesn't collide."""
    taken = set(existing_keys)
    base = slugify(label)
    if not base:
        return base
    key = base
    n = 2
    while key in taken:
        key = f"{base}-{n}"
        n += 1
    return key


def is_complete(stage: Stage, item: Item) -> ChecklistStatus:
    """True iff every required checklist entry is checked for this stage."""
    progress = item.stage_progress(stage.id)
    for entry in stage.checklist:
        if entry.required and not progress.get(entry.key):
            return ChecklistStatus(ok=False, missing_key=entry.key)
    return ChecklistStatus(ok=True)


def toggle(item: Item, stage_id: UUID, key: str, value: bool) -> Item:
    """Return a copy of item with progress[stage_id][key] set. Does not persist."""
    progress = {sid: dict(keys) for sid, keys in item.progress.items()}
    progress.setdefault(str(stage_id), {})[key] = bool(value)
    return item.model_copy(update={"progress": progress})


def completion_ratio(stage: Stage, item: Item) -> float:
    """Share of checklist entries checked (1.0 for an empty checklist)."""
    if not stage.checklist:
        return 1.0
    progress = item.stage_progress(stage.id)
    done = sum(1 for entry in stage.checklist if progress.get(entry.key))
    return done / len(stage.checklist)
