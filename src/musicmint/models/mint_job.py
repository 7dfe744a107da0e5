"""MintJob entity - persisted batch-mint request with progress tracking."""

from datetime import datetime
from enum import Enum
from typing import Any, Optional
from uuid import uuid4

from pydantic import BaseModel
from pydantic import Field as PydanticField
from sqlalchemy import JSON, Column
from sqlmodel import Field, SQLModel

from musicmint.core.timezone import utcnow
from musicmint.models.columns import UTCDateTime, enum_column


class MintJobStatus(str, Enum):
    """Mint job lifecycle status."""

    PENDING = "pending"
    MINTING = "minting"
    COMPLETE = "complete"
    FAILED = "failed"


TERMINAL_STATUSES = (MintJobStatus.COMPLETE, MintJobStatus.FAILED)


class InvalidStateTransition(Exception):
    """Raised when attempting an invalid mint job state transition."""

    pass


class MintJobPayload(BaseModel):
    """Job-specific parameters captured at enqueue time."""

    artist_address: str = PydanticField(alias="artistAddress")
    quantity: int = PydanticField(ge=1)
    transfer_fee: int = PydanticField(default=500, ge=0, le=50000, alias="transferFee")

    model_config = {"populate_by_name": True}


class MintJob(SQLModel, table=True):
    """MintJob is the single source of truth for a batch mint's state.

    Only the mint worker that claimed a job mutates its status and progress.
    """

    __tablename__ = "mint_jobs"  # type: ignore[assignment]

    id: str = Field(default_factory=lambda: f"mint_{uuid4().hex}", primary_key=True, max_length=64)
    release_id: str = Field(foreign_key="releases.id", index=True, max_length=64)
    artist_address: str = Field(max_length=64, index=True)
    status: MintJobStatus = Field(
        default=MintJobStatus.PENDING,
        sa_column=enum_column(MintJobStatus, nullable=False, index=True),
    )
    total_units: int = Field(ge=0)
    minted_count: int = Field(default=0, ge=0)
    job_data: dict = Field(default_factory=dict, sa_column=Column(JSON, nullable=False))
    error: Optional[str] = Field(default=None)
    seen: bool = Field(default=False)
    created_at: datetime = Field(default_factory=utcnow, sa_type=UTCDateTime, index=True)
    started_at: Optional[datetime] = Field(default=None, sa_type=UTCDateTime)
    updated_at: datetime = Field(default_factory=utcnow, sa_type=UTCDateTime)
    completed_at: Optional[datetime] = Field(default=None, sa_type=UTCDateTime)

    @property
    def payload(self) -> MintJobPayload:
        """Typed view of job_data."""
        return MintJobPayload.model_validate(self.job_data)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def mark_minting(self) -> None:
        """Transition from pending to minting.

        Raises:
            InvalidStateTransition: If current status is not pending
        """
        if self.status != MintJobStatus.PENDING:
            raise InvalidStateTransition(
                f"Cannot mark minting from {self.status.value}. Job must be in pending state."
            )
        now = utcnow()
        self.status = MintJobStatus.MINTING
        self.started_at = now
        self.updated_at = now

    def progress_changes(self, minted_count: int) -> dict[str, Any]:
        """Column values for a new minted count, validated against the current state.

        Raises:
            InvalidStateTransition: If the job is not minting
            ValueError: If the count goes backwards or exceeds total_units
        """
        if self.status != MintJobStatus.MINTING:
            raise InvalidStateTransition(
                f"Cannot record progress in {self.status.value}. Job must be in minting state."
            )
        if minted_count < self.minted_count:
            raise ValueError(
                f"minted_count cannot decrease ({self.minted_count} -> {minted_count})"
            )
        if minted_count > self.total_units:
            raise ValueError(
                f"minted_count {minted_count} exceeds total_units {self.total_units}"
            )
        return {"minted_count": minted_count, "updated_at": utcnow()}

    def completion_changes(self, minted_count: int) -> dict[str, Any]:
        """Column values for minting -> complete with the final minted count.

        Raises:
            InvalidStateTransition: If current status is not minting
        """
        changes = self.progress_changes(minted_count)
        changes.update(
            status=MintJobStatus.COMPLETE,
            error=None,
            completed_at=changes["updated_at"],
        )
        return changes

    def failure_changes(self, error_message: str) -> dict[str, Any]:
        """Column values for any non-terminal state -> failed.

        minted_count is left at its last persisted value.

        Raises:
            InvalidStateTransition: If current status is already terminal
        """
        if self.is_terminal:
            raise InvalidStateTransition(
                f"Cannot mark failed from terminal state {self.status.value}."
            )
        now = utcnow()
        return {
            "status": MintJobStatus.FAILED,
            "error": error_message,
            "completed_at": now,
            "updated_at": now,
        }

    def record_progress(self, minted_count: int) -> None:
        self._apply(self.progress_changes(minted_count))

    def mark_complete(self, minted_count: int) -> None:
        self._apply(self.completion_changes(minted_count))

    def mark_failed(self, error_message: str) -> None:
        self._apply(self.failure_changes(error_message))

    def _apply(self, changes: dict[str, Any]) -> None:
        for key, value in changes.items():
            setattr(self, key, value)
