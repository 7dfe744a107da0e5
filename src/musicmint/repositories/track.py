"""Track repository.

Provides data access methods for Track entities. Track order (track_number)
defines both mint order and the NFTokenTaxon of each track's editions.
"""

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from musicmint.models.track import Track


class TrackRepository:
    """Repository for Track entities."""

    def __init__(self, session: AsyncSession):
        """Initialize repository with database session.

        Args:
            session: SQLAlchemy async session for database operations
        """
        self.session = session

    async def get_by_id(self, track_id: str) -> Track | None:
        result = await self.session.execute(select(Track).where(Track.id == track_id))  # type: ignore[arg-type]
        return result.scalar_one_or_none()

    async def add(self, track: Track) -> Track:
        self.session.add(track)
        await self.session.flush()
        return track

    async def get_by_release(self, release_id: str) -> list[Track]:
        """Retrieve a release's tracks in mint order.

        Args:
            release_id: Owning release id

        Returns:
            Tracks ordered by track_number, then id
        """
        result = await self.session.execute(
            select(Track)
            .where(Track.release_id == release_id)  # type: ignore[arg-type]
            .order_by(Track.track_number.asc(), Track.id.asc())  # type: ignore[attr-defined]
        )
        return list(result.scalars().all())

    async def count_by_release(self, release_id: str) -> int:
        result = await self.session.execute(
            select(func.count()).select_from(Track).where(Track.release_id == release_id)  # type: ignore[arg-type]
        )
        return result.scalar_one()

    async def list_all(self, release_id: str | None = None) -> list[Track]:
        """List tracks grouped by release, optionally scoped to one release."""
        stmt = select(Track).order_by(
            Track.release_id.asc(),  # type: ignore[attr-defined]
            Track.track_number.asc(),  # type: ignore[attr-defined]
            Track.id.asc(),  # type: ignore[attr-defined]
        )
        if release_id is not None:
            stmt = stmt.where(Track.release_id == release_id)  # type: ignore[arg-type]
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def set_sold_count(self, track: Track, sold_count: int) -> None:
        track.sold_count = sold_count
        self.session.add(track)
        await self.session.flush()
