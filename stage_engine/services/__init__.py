"""Service layer modules."""

from stage_engine.services.board_state import BoardState
from stage_engine.services.notification_facade import (
    LoggingNotificationSink,
    NotificationSink,
    RecordingNotificationSink,
)
from stage_engine.services.persistence import InMemoryPersistence, PipelinePersistence
from stage_engine.services.pipeline_config_service import PipelineConfigurationService
from stage_engine.services.reorder_coordinator import DragGesture, MoveResult, ReorderCoordinator
from stage_engine.services.stage_store import StageStore
from stage_engine.services.transition_validator import TransitionDecision, TransitionValidator

__all__ = [
    "BoardState",
    "DragGesture",
    "InMemoryPersistence",
    "LoggingNotificationSink",
    "MoveResult",
    "NotificationSink",
    "PipelineConfigurationService",
    "PipelinePersistence",
    "RecordingNotificationSink",
    "ReorderCoordinator",
    "StageStore",
    "TransitionDecision",
    "TransitionValidator",
]
