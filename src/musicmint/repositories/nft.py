"""InventoryUnit repository.

Provides data access methods for minted editions (the nfts table).
Inserts are conflict-tolerant: a duplicate token id is skipped, never raised.
"""

from collections import defaultdict
from datetime import datetime

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from musicmint.core.timezone import utcnow
from musicmint.models.nft import InventoryUnit, NFTStatus


class InventoryUnitRepository:
    """Repository for InventoryUnit entities."""

    def __init__(self, session: AsyncSession):
        """Initialize repository with database session.

        Args:
            session: SQLAlchemy async session for database operations
        """
        self.session = session

    async def add_if_absent(self, unit: InventoryUnit) -> bool:
        """Insert a unit unless its token id is already recorded.

        The insert runs inside a SAVEPOINT so a unique violation on
        nft_token_id only discards this row, not the caller's transaction.

        Args:
            unit: InventoryUnit entity to persist

        Returns:
            True if the row was inserted, False if the token id already existed
        """
        try:
            async with self.session.begin_nested():
                self.session.add(unit)
        except IntegrityError:
            return False
        return True

    async def get_by_token_id(self, nft_token_id: str) -> InventoryUnit | None:
        result = await self.session.execute(
            select(InventoryUnit).where(InventoryUnit.nft_token_id == nft_token_id)  # type: ignore[arg-type]
        )
        return result.scalar_one_or_none()

    async def list_by_track(self, track_id: str) -> list[InventoryUnit]:
        result = await self.session.execute(
            select(InventoryUnit)
            .where(InventoryUnit.track_id == track_id)  # type: ignore[arg-type]
            .order_by(InventoryUnit.edition_number.asc(), InventoryUnit.id.asc())  # type: ignore[attr-defined]
        )
        return list(result.scalars().all())

    async def count_by_track(self, track_id: str) -> int:
        result = await self.session.execute(
            select(func.count())
            .select_from(InventoryUnit)
            .where(InventoryUnit.track_id == track_id)  # type: ignore[arg-type]
        )
        return result.scalar_one()

    async def counts_by_track(self, track_ids: list[str]) -> dict[str, int]:
        """Count units per track.

        Args:
            track_ids: Tracks to count

        Returns:
            Mapping of track_id to unit count, 0 for tracks without units
        """
        counts = {track_id: 0 for track_id in track_ids}
        if not track_ids:
            return counts
        result = await self.session.execute(
            select(InventoryUnit.track_id, func.count())
            .where(InventoryUnit.track_id.in_(track_ids))  # type: ignore[attr-defined]
            .group_by(InventoryUnit.track_id)
        )
        for track_id, count in result.all():
            counts[track_id] = count
        return counts

    async def status_counts_by_track(self, track_ids: list[str]) -> dict[str, dict[str, int]]:
        """Count units per track broken down by status value."""
        counts: dict[str, dict[str, int]] = defaultdict(dict)
        if not track_ids:
            return {}
        result = await self.session.execute(
            select(InventoryUnit.track_id, InventoryUnit.status, func.count())
            .where(InventoryUnit.track_id.in_(track_ids))  # type: ignore[attr-defined]
            .group_by(InventoryUnit.track_id, InventoryUnit.status)
        )
        for track_id, status, count in result.all():
            counts[track_id][NFTStatus(status).value] = count
        return dict(counts)

    async def set_edition_number(self, unit: InventoryUnit, edition_number: int) -> None:
        unit.edition_number = edition_number
        unit.updated_at = utcnow()
        self.session.add(unit)
        await self.session.flush()

    async def list_stale_pending(self, cutoff: datetime) -> list[InventoryUnit]:
        """List reservations abandoned before cutoff.

        Args:
            cutoff: Units in 'pending' not updated since this time are stale

        Returns:
            Stale units, oldest first
        """
        result = await self.session.execute(
            select(InventoryUnit)
            .where(InventoryUnit.status == NFTStatus.PENDING)  # type: ignore[arg-type]
            .where(InventoryUnit.updated_at < cutoff)  # type: ignore[arg-type]
            .order_by(InventoryUnit.updated_at.asc())  # type: ignore[attr-defined]
        )
        return list(result.scalars().all())

    async def set_status(self, unit: InventoryUnit, status: NFTStatus) -> None:
        unit.status = status
        unit.updated_at = utcnow()
        self.session.add(unit)
        await self.session.flush()
