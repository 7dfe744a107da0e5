"""Repository layer.

Provides data access abstractions for all domain entities.
No base classes - each repository is self-contained.
"""

from musicmint.repositories.mint_job import MintJobRepository
from musicmint.repositories.nft import InventoryUnitRepository
from musicmint.repositories.release import ReleaseRepository
from musicmint.repositories.sale import SaleRepository
from musicmint.repositories.track import TrackRepository

__all__ = [
    "ReleaseRepository",
    "TrackRepository",
    "SaleRepository",
    "InventoryUnitRepository",
    "MintJobRepository",
]
