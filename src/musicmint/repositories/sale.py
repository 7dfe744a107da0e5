"""Sale repository.

Sale rows are the authoritative record of ownership transfers; counters and
edition numbers are derived from them.
"""

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from musicmint.models.sale import Sale


class SaleRepository:
    """Repository for Sale entities."""

    def __init__(self, session: AsyncSession):
        """Initialize repository with database session.

        Args:
            session: SQLAlchemy async session for database operations
        """
        self.session = session

    async def add(self, sale: Sale) -> Sale:
        """Persist new sale to database.

        Args:
            sale: Sale entity to persist

        Returns:
            Persisted sale with generated ID
        """
        self.session.add(sale)
        await self.session.flush()
        return sale

    async def counts_by_track(self, release_id: str | None = None) -> dict[str, int]:
        """Count sale rows per track.

        Args:
            release_id: Optional release scope

        Returns:
            Mapping of track_id to sale count (tracks without sales are absent)
        """
        stmt = select(Sale.track_id, func.count()).group_by(Sale.track_id)
        if release_id is not None:
            stmt = stmt.where(Sale.release_id == release_id)  # type: ignore[arg-type]
        result = await self.session.execute(stmt)
        return {track_id: count for track_id, count in result.all()}

    async def list_by_track_ordered(self, track_id: str) -> list[Sale]:
        """List a track's sales in chronological order.

        Ties on created_at are broken by id so the order is total and stable
        across runs.
        """
        result = await self.session.execute(
            select(Sale)
            .where(Sale.track_id == track_id)  # type: ignore[arg-type]
            .order_by(Sale.created_at.asc(), Sale.id.asc())  # type: ignore[attr-defined]
        )
        return list(result.scalars().all())

    async def get_latest_by_token_id(self, nft_token_id: str) -> Sale | None:
        """Most recent sale that references a token, if any."""
        result = await self.session.execute(
            select(Sale)
            .where(Sale.nft_token_id == nft_token_id)  # type: ignore[arg-type]
            .order_by(Sale.created_at.desc(), Sale.id.desc())  # type: ignore[attr-defined]
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def set_edition_number(self, sale: Sale, edition_number: int) -> None:
        sale.edition_number = edition_number
        self.session.add(sale)
        await self.session.flush()
