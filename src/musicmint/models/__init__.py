"""SQLModel database entities.

All models are imported here to ensure they're registered with SQLModel metadata
for Alembic autogenerate support.
"""

from musicmint.models.mint_job import (
    InvalidStateTransition,
    MintJob,
    MintJobPayload,
    MintJobStatus,
)
from musicmint.models.nft import InventoryUnit, NFTStatus
from musicmint.models.release import Release, ReleaseType
from musicmint.models.sale import Sale, SaleType
from musicmint.models.track import Track

__all__ = [
    "Release",
    "ReleaseType",
    "Track",
    "Sale",
    "SaleType",
    "InventoryUnit",
    "NFTStatus",
    "MintJob",
    "MintJobPayload",
    "MintJobStatus",
    "InvalidStateTransition",
]
