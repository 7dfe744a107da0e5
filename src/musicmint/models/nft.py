"""InventoryUnit entity - one minted edition held in the nfts table."""

from datetime import datetime
from enum import Enum
from typing import Optional
from uuid import uuid4

from sqlmodel import Field, SQLModel

from musicmint.core.timezone import utcnow
from musicmint.models.columns import UTCDateTime, enum_column


class NFTStatus(str, Enum):
    """Inventory status of an edition."""

    AVAILABLE = "available"
    PENDING = "pending"
    SOLD = "sold"


class InventoryUnit(SQLModel, table=True):
    """A minted edition, keyed by its on-ledger token id.

    edition_number is assigned in mint order and later rewritten by the
    reconciliation engine to follow sale chronology.
    """

    __tablename__ = "nfts"  # type: ignore[assignment]

    id: str = Field(default_factory=lambda: f"nft_{uuid4().hex}", primary_key=True, max_length=64)
    nft_token_id: str = Field(unique=True, index=True, max_length=64)
    track_id: str = Field(foreign_key="tracks.id", index=True, max_length=64)
    release_id: Optional[str] = Field(
        default=None, foreign_key="releases.id", index=True, max_length=64
    )
    edition_number: int = Field(ge=1)
    status: NFTStatus = Field(
        default=NFTStatus.AVAILABLE,
        sa_column=enum_column(NFTStatus, nullable=False, index=True),
    )
    owner_address: Optional[str] = Field(default=None, max_length=64)
    tx_hash: Optional[str] = Field(default=None, max_length=64)
    minted_at: datetime = Field(default_factory=utcnow, sa_type=UTCDateTime)
    updated_at: datetime = Field(default_factory=utcnow, sa_type=UTCDateTime)
