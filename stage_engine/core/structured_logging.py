"""Structured logging helpers."""

import logging
from typing import Any
from uuid import UUID

from stage_engine.core.config import settings

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"


def build_log_context(
    *,
    pipeline_id: UUID | str | None = None,
    stage_id: UUID | str | None = None,
    item_id: UUID | str | None = None,
    operation: str | None = None,
) -> dict[str, Any]:
    """Return a log context dict suitable for ``logger.info(..., extra=...)``."""
    context: dict[str, Any] = {}
    if pipeline_id:
        context["pipeline_id"] = str(pipeline_id)
    if stage_id:
        context["stage_id"] = str(stage_id)
    if item_id:
        context["item_id"] = str(item_id)
    if operation:
        context["operation"] = operation
    return context


def configure_logging(level: str | None = None) -> None:
    """Configure root logging for hosts that don't set up their own handlers."""
    logging.basicConfig(
        level=(level or settings.LOG_LEVEL).upper(),
        format=LOG_FORMAT,
    )
