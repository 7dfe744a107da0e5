"""Release repository.

Provides data access methods for Release entities and their cached counters.
"""

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from musicmint.models.release import Release


class ReleaseRepository:
    """Repository for Release entities."""

    def __init__(self, session: AsyncSession):
        """Initialize repository with database session.

        Args:
            session: SQLAlchemy async session for database operations
        """
        self.session = session

    async def get_by_id(self, release_id: str) -> Release | None:
        """Retrieve release by id.

        Args:
            release_id: Release identifier

        Returns:
            Release if found, None otherwise
        """
        result = await self.session.execute(select(Release).where(Release.id == release_id))  # type: ignore[arg-type]
        return result.scalar_one_or_none()

    async def add(self, release: Release) -> Release:
        self.session.add(release)
        await self.session.flush()
        return release

    async def list_all(self, release_id: str | None = None) -> list[Release]:
        """List releases ordered by creation time, optionally scoped to one id."""
        stmt = select(Release).order_by(Release.created_at.asc(), Release.id.asc())  # type: ignore[attr-defined]
        if release_id is not None:
            stmt = stmt.where(Release.id == release_id)  # type: ignore[arg-type]
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def list_legacy(self, release_id: str | None = None) -> list[Release]:
        """List releases minted before paid mint jobs existed.

        Legacy releases are identified by is_minted = true AND mint_fee_paid = false.
        Their sold counts can only be recovered from ledger custody.
        """
        stmt = (
            select(Release)
            .where(Release.is_minted.is_(True))  # type: ignore[attr-defined]
            .where(Release.mint_fee_paid.is_(False))  # type: ignore[attr-defined]
            .order_by(Release.created_at.asc(), Release.id.asc())  # type: ignore[attr-defined]
        )
        if release_id is not None:
            stmt = stmt.where(Release.id == release_id)  # type: ignore[arg-type]
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def set_sold_editions(self, release: Release, sold_editions: int) -> None:
        release.sold_editions = sold_editions
        self.session.add(release)
        await self.session.flush()

    async def mark_minted(self, release: Release, total_editions: int) -> None:
        """Record a finished mint run on the release.

        Args:
            release: Release entity to update
            total_editions: Per-track edition count now present in inventory
        """
        release.is_minted = True
        release.total_editions = total_editions
        self.session.add(release)
        await self.session.flush()
