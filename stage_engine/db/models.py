"""SQLAlchemy ORM models."""

from __future__ import annotations

import uuid

from sqlalchemy import (
    JSON,
    Boolean,
    ForeignKey,
    Index,
    Integer,
    String,
    Uuid,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column, relationship

from stage_engine.db.base import Base, TimestampMixin

# JSONB on Postgres, plain JSON elsewhere (sqlite in tests)
JSONType = JSON().with_variant(JSONB(), "postgresql")


class Pipeline(TimestampMixin, Base):
    """
    Ordered, typed collection of stages.

    - type: closed set of item kinds (deal/lead/target_company/proposal/transaction)
    - current_version: bumped on every stage mutation (optimistic locking)
    """

    __tablename__ = "pipelines"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    type: Mapped[str] = mapped_column(String(30), nullable=False)

    # Version control
    current_version: Mapped[int] = mapped_column(default=1, nullable=False)

    # Relationships
    stages: Mapped[list["PipelineStage"]] = relationship(
        back_populates="pipeline",
        cascade="all, delete-orphan",
        order_by="PipelineStage.order_index",
    )


class PipelineStage(TimestampMixin, Base):
    """
    Individual pipeline stage.

    - order_index: zero-based position among active siblings
    - Soft-delete via is_active
    - stage_config: {"checklist": [...], ...extension keys}
    - Items reference stage_id; hard delete is guarded by the stage store
    """

    __tablename__ = "pipeline_stages"
    __table_args__ = (
        Index("idx_stage_pipeline_order", "pipeline_id", "order_index"),
        Index("idx_stage_pipeline_active", "pipeline_id", "is_active"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    pipeline_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("pipelines.id", ondelete="CASCADE"),
        nullable=False,
    )

    name: Mapped[str] = mapped_column(String(100), nullable=False)
    color: Mapped[str] = mapped_column(String(7), nullable=False)  # hex #RRGGBB
    order_index: Mapped[int] = mapped_column(Integer, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    probability: Mapped[int | None] = mapped_column(Integer, nullable=True)

    required_fields: Mapped[list] = mapped_column(JSONType, default=list, nullable=False)
    stage_config: Mapped[dict] = mapped_column(JSONType, default=dict, nullable=False)

    # Relationships
    pipeline: Mapped["Pipeline"] = relationship(back_populates="stages")


class PipelineItem(TimestampMixin, Base):
    """
    Generic pipeline entity (deal, lead, target company, proposal, transaction).

    stage_id is nullable: NULL means "not yet staged". No FK cascade so that a
    stage cannot silently take its items with it.
    """

    __tablename__ = "pipeline_items"
    __table_args__ = (
        Index("idx_item_pipeline", "pipeline_id"),
        Index("idx_item_stage", "stage_id"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    pipeline_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("pipelines.id", ondelete="CASCADE"),
        nullable=False,
    )
    stage_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid,
        ForeignKey("pipeline_stages.id"),
        nullable=True,
    )

    title: Mapped[str] = mapped_column(String(255), default="", nullable=False)
    fields: Mapped[dict] = mapped_column(JSONType, default=dict, nullable=False)
    # {stage_id: {checklist_key: bool}}; entries survive leaving the stage
    progress: Mapped[dict] = mapped_column(JSONType, default=dict, nullable=False)
