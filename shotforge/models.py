"""SQLAlchemy 2.0 ORM models and the pipeline stage state machine.

This module contains the persistence model used by StorageService and the
PipelineStage enum that drives PipelineOrchestrator. All models use the
Mapped[type] annotation pattern required by SQLAlchemy 2.0.

Storage Model:
    Every persisted object lives in one table, StoredRecord, keyed by
    (collection, item_id). The object itself is kept as a JSON payload so
    new collections (assets, snapshots, projects) need no migration.
"""

import enum
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import JSON, DateTime, Index, Integer, String, UniqueConstraint
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from shotforge.exceptions import InvalidStageTransitionError


def utcnow() -> datetime:
    """Get current UTC datetime (timezone-aware)."""
    return datetime.now(timezone.utc)


class PipelineStage(enum.Enum):
    """Stages of one pipeline run.

    Pipeline Flow (Happy Path):
        idle → parsing → storyboard → images → videos → completed

    Optional Stages:
        parsing (only with script text), videos (only with auto video)

    Terminal States:
        completed, error (a new run starts again from idle)
    """

    IDLE = "idle"
    PARSING = "parsing"
    STORYBOARD = "storyboard"
    IMAGES = "images"
    VIDEOS = "videos"
    COMPLETED = "completed"
    ERROR = "error"

    @property
    def display_name(self) -> str:
        return STAGE_NAMES[self]


STAGE_NAMES = {
    PipelineStage.IDLE: "Ready",
    PipelineStage.PARSING: "Parsing script",
    PipelineStage.STORYBOARD: "Building storyboard",
    PipelineStage.IMAGES: "Generating images",
    PipelineStage.VIDEOS: "Generating videos",
    PipelineStage.COMPLETED: "Completed",
    PipelineStage.ERROR: "Error",
}

# Only transitions listed here are allowed
VALID_TRANSITIONS = {
    PipelineStage.IDLE: [PipelineStage.PARSING, PipelineStage.STORYBOARD, PipelineStage.ERROR],
    PipelineStage.PARSING: [PipelineStage.STORYBOARD, PipelineStage.ERROR],
    PipelineStage.STORYBOARD: [PipelineStage.IMAGES, PipelineStage.ERROR],
    PipelineStage.IMAGES: [PipelineStage.VIDEOS, PipelineStage.COMPLETED, PipelineStage.ERROR],
    PipelineStage.VIDEOS: [PipelineStage.COMPLETED, PipelineStage.ERROR],
    # Terminal states
    PipelineStage.COMPLETED: [],
    PipelineStage.ERROR: [],
}


def can_transition(from_stage: PipelineStage, to_stage: PipelineStage) -> bool:
    return to_stage in VALID_TRANSITIONS.get(from_stage, [])


def validate_stage_transition(from_stage: PipelineStage, to_stage: PipelineStage) -> PipelineStage:
    """Validate a stage change against VALID_TRANSITIONS.

    Args:
        from_stage: Current stage
        to_stage: Requested stage

    Returns:
        to_stage, when the transition is allowed

    Raises:
        InvalidStageTransitionError: If the transition is not allowed
    """
    if not can_transition(from_stage, to_stage):
        raise InvalidStageTransitionError(
            f"Invalid transition: {from_stage.value} → {to_stage.value}",
            from_stage=from_stage,
            to_stage=to_stage,
        )
    return to_stage


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""

    pass


class StoredRecord(Base):
    """One persisted object in a named collection.

    Attributes:
        id: Surrogate primary key
        collection: Collection name (e.g. "assets", "session_snapshots")
        item_id: Caller-supplied object id, unique within the collection
        project_id: Owning project, denormalized from the payload for filtering
        payload: The object itself (JSON)
        created_at / updated_at: Row timestamps
    """

    __tablename__ = "stored_records"
    __table_args__ = (
        UniqueConstraint("collection", "item_id", name="uq_stored_records_collection_item"),
        Index("ix_stored_records_collection_project", "collection", "project_id"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    collection: Mapped[str] = mapped_column(String(100), nullable=False)
    item_id: Mapped[str] = mapped_column(String(255), nullable=False)
    project_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    payload: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow
    )

    def __repr__(self) -> str:
        return (
            f"<StoredRecord(collection={self.collection!r}, item_id={self.item_id!r}, "
            f"project_id={self.project_id!r})>"
        )
