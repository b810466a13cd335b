"""
Test configuration and fixtures.

Provides:
- In-memory persistence + recording notification sink
- StageStore / PipelineConfigurationService wired to them
- A sample two-stage pipeline (A -> B) matching the board scenario
- SQLAlchemy persistence on an isolated in-memory sqlite database
"""
from dataclasses import dataclass
from typing import Generator

import pytest
from sqlalchemy.orm import sessionmaker

from stage_engine.db.enums import PipelineType
from stage_engine.db.session import build_engine
from stage_engine.schemas.pipeline import ChecklistItem, Pipeline, Stage, StageConfig, StageDraft
from stage_engine.services.notification_facade import RecordingNotificationSink
from stage_engine.services.persistence import InMemoryPersistence
from stage_engine.services.pipeline_config_service import PipelineConfigurationService
from stage_engine.services.sql_persistence import SqlAlchemyPersistence
from stage_engine.services.stage_store import StageStore


# =============================================================================
# In-memory wiring
# =============================================================================


@pytest.fixture
def persistence() -> InMemoryPersistence:
    return InMemoryPersistence()


@pytest.fixture
def sink() -> RecordingNotificationSink:
    return RecordingNotificationSink()


@pytest.fixture
def store(persistence: InMemoryPersistence) -> StageStore:
    return StageStore(persistence)


@pytest.fixture
def config_service(store: StageStore, sink: RecordingNotificationSink) -> PipelineConfigurationService:
    return PipelineConfigurationService(store, sink)


@pytest.fixture
async def pipeline(store: StageStore) -> Pipeline:
    return await store.create_pipeline("Deals", PipelineType.DEAL)


@dataclass
class ScenarioPipeline:
    """Two adjacent stages, A then B, gated on email + the call-made step."""
    pipeline: Pipeline
    stage_a: Stage
    stage_b: Stage


@pytest.fixture
async def scenario(store: StageStore, pipeline: Pipeline) -> ScenarioPipeline:
    gate = StageConfig(checklist=[ChecklistItem(key="call-made", label="Call made", required=True)])
    # Forward moves are gated on the stage being left.
    stage_a = await store.create_stage(
        pipeline.id, StageDraft(name="A", required_fields=["email"], stage_config=gate)
    )
    stage_b = await store.create_stage(
        pipeline.id, StageDraft(name="B", required_fields=["email"], stage_config=gate)
    )
    return ScenarioPipeline(pipeline=pipeline, stage_a=stage_a, stage_b=stage_b)


# =============================================================================
# Database Fixtures (isolated in-memory sqlite per test)
# =============================================================================


@pytest.fixture
def session_factory() -> Generator[sessionmaker, None, None]:
    engine = build_engine("sqlite+pysqlite:///:memory:", echo=False)
    factory = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    yield factory
    engine.dispose()


@pytest.fixture
def sql_persistence(session_factory: sessionmaker) -> SqlAlchemyPersistence:
    adapter = SqlAlchemyPersistence(session_factory)
    adapter.create_schema()
    return adapter
