"""Enum definitions for engine constants."""

from enum import Enum


class PipelineType(str, Enum):
    """Kinds of items a pipeline can hold."""

    DEAL = "deal"
    LEAD = "lead"
    TARGET_COMPANY = "target_company"
    PROPOSAL = "proposal"
    TRANSACTION = "transaction"


class NotificationKind(str, Enum):
    """Severity of a message sent to the notification sink."""

    SUCCESS = "success"
    ERROR = "error"
    INFO = "info"


class StageStatus(str, Enum):
    """Position of a stage relative to an item's current stage."""

    COMPLETED = "completed"
    CURRENT = "current"
    UPCOMING = "upcoming"
    INACTIVE = "inactive"


class MoveStatus(str, Enum):
    """Outcome of a coordinator operation."""

    APPLIED = "applied"
    REJECTED = "rejected"
    FAILED = "failed"
    NOOP = "noop"


class DragKind(str, Enum):
    """What a drag gesture is carrying."""

    ITEM = "item"
    STAGE = "stage"
