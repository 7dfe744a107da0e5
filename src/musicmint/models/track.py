"""Track entity - one piece of audio whose editions share a single token URI."""

from datetime import datetime
from typing import Optional
from uuid import uuid4

from sqlmodel import Field, SQLModel

from musicmint.core.timezone import utcnow
from musicmint.models.columns import UTCDateTime
from musicmint.services.ledger.token_uri import ipfs_uri


class Track(SQLModel, table=True):
    """Track belonging to a release, ordered by track_number."""

    __tablename__ = "tracks"  # type: ignore[assignment]

    id: str = Field(default_factory=lambda: f"trk_{uuid4().hex}", primary_key=True, max_length=64)
    release_id: str = Field(foreign_key="releases.id", index=True, max_length=64)
    title: str = Field(max_length=255)
    track_number: int = Field(default=1, ge=1)
    metadata_cid: Optional[str] = Field(default=None, max_length=255)
    metadata_url: Optional[str] = Field(default=None, max_length=512)
    sold_count: int = Field(default=0, ge=0)
    created_at: datetime = Field(default_factory=utcnow, sa_type=UTCDateTime)

    @property
    def metadata_uri(self) -> str | None:
        """URI embedded in every edition of this track (explicit URL wins over the CID)."""
        if self.metadata_url:
            return self.metadata_url
        if self.metadata_cid:
            return ipfs_uri(self.metadata_cid)
        return None
