"""Sale entity - one ownership transfer of an edition."""

from datetime import datetime
from enum import Enum
from typing import Optional
from uuid import uuid4

from sqlmodel import Field, SQLModel

from musicmint.core.timezone import utcnow
from musicmint.models.columns import UTCDateTime, enum_column


class SaleType(str, Enum):
    """Primary sales come from the platform wallet, secondary sales between collectors."""

    PRIMARY = "primary"
    SECONDARY = "secondary"


class Sale(SQLModel, table=True):
    """Sale record; the authoritative source for sold counters and edition order."""

    __tablename__ = "sales"  # type: ignore[assignment]

    id: str = Field(default_factory=lambda: f"sale_{uuid4().hex}", primary_key=True, max_length=64)
    release_id: str = Field(foreign_key="releases.id", index=True, max_length=64)
    track_id: str = Field(foreign_key="tracks.id", index=True, max_length=64)
    nft_token_id: Optional[str] = Field(default=None, index=True, max_length=64)
    edition_number: Optional[int] = Field(default=None)
    buyer_address: str = Field(max_length=64)
    seller_address: Optional[str] = Field(default=None, max_length=64)
    price: float = Field(default=0, ge=0)
    platform_fee: float = Field(default=0, ge=0)
    tx_hash: Optional[str] = Field(default=None, max_length=64)
    sale_type: SaleType = Field(
        default=SaleType.PRIMARY,
        sa_column=enum_column(SaleType, nullable=False),
    )
    created_at: datetime = Field(default_factory=utcnow, sa_type=UTCDateTime, index=True)
