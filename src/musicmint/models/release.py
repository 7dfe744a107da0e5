"""Release entity - a single or an album whose tracks are minted as editions."""

from datetime import datetime
from enum import Enum
from typing import Optional
from uuid import uuid4

from sqlmodel import Field, SQLModel

from musicmint.core.timezone import utcnow
from musicmint.models.columns import UTCDateTime, enum_column


class ReleaseType(str, Enum):
    """Release kind; decides how sold_editions is derived from track counters."""

    SINGLE = "single"
    ALBUM = "album"


class Release(SQLModel, table=True):
    """Release with denormalized edition counters.

    total_editions is the per-track edition count. sold_editions is a cache
    rebuilt by the reconciliation engine: min(track.sold_count) for albums,
    the single track's sold_count for singles.
    """

    __tablename__ = "releases"  # type: ignore[assignment]

    id: str = Field(default_factory=lambda: f"rel_{uuid4().hex}", primary_key=True, max_length=64)
    title: str = Field(max_length=255)
    artist_address: str = Field(max_length=64, index=True)
    artist_name: Optional[str] = Field(default=None, max_length=255)
    type: ReleaseType = Field(
        default=ReleaseType.SINGLE,
        sa_column=enum_column(ReleaseType, nullable=False),
    )
    total_editions: int = Field(default=0, ge=0)
    sold_editions: int = Field(default=0, ge=0)
    is_minted: bool = Field(default=False)
    mint_fee_paid: bool = Field(default=False)
    created_at: datetime = Field(default_factory=utcnow, sa_type=UTCDateTime)

    @property
    def is_legacy(self) -> bool:
        """Pre-queue release: minted up front without a paid mint job."""
        return self.is_minted and not self.mint_fee_paid
