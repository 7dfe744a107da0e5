"""MintJob repository.

Provides data access methods for MintJob entities, including the atomic
claim used by the mint worker.
"""

from datetime import datetime
from typing import Any

import structlog
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.attributes import set_committed_value

from musicmint.core.timezone import utcnow
from musicmint.models.mint_job import MintJob, MintJobStatus
from musicmint.models.release import Release

logger = structlog.get_logger(__name__)


class MintJobRepository:
    """Repository for MintJob entities.

    Methods:
    - add / get_by_id: Basic persistence
    - claim_next_pending: Atomic pending -> minting claim (oldest first)
    - update_progress / complete / fail: Status-guarded writes by the owning worker
    - mark_seen: Dismiss a notification for the owning artist
    - list_recent_for_artist: Notification history with release titles
    - fail_orphaned: Startup recovery for stale jobs left in 'minting'
    """

    def __init__(self, session: AsyncSession):
        """Initialize repository with database session.

        Args:
            session: SQLAlchemy async session for database operations
        """
        self.session = session

    async def add(self, job: MintJob) -> MintJob:
        """Persist new mint job to database.

        Args:
            job: MintJob entity to persist

        Returns:
            Persisted job with generated ID
        """
        self.session.add(job)
        await self.session.flush()
        return job

    async def get_by_id(self, job_id: str) -> MintJob | None:
        """Retrieve mint job by id.

        Args:
            job_id: Job identifier (mint_...)

        Returns:
            MintJob if found, None otherwise
        """
        result = await self.session.execute(select(MintJob).where(MintJob.id == job_id))  # type: ignore[arg-type]
        return result.scalar_one_or_none()

    async def claim_next_pending(self, max_candidates: int = 10) -> MintJob | None:
        """Claim the oldest pending job by flipping it to 'minting'.

        The candidate is read with FOR UPDATE SKIP LOCKED (ignored by backends
        without row locks), and the claim itself is a conditional UPDATE
        guarded by status = 'pending'. If another worker won the race the
        UPDATE matches zero rows and the next candidate is tried.

        Args:
            max_candidates: Maximum number of lost races before giving up

        Returns:
            The claimed job (status='minting', started_at set), or None
        """
        skipped: list[str] = []
        for _ in range(max_candidates):
            stmt = (
                select(MintJob.id)
                .where(MintJob.status == MintJobStatus.PENDING)  # type: ignore[arg-type]
                .order_by(MintJob.created_at.asc(), MintJob.id.asc())  # type: ignore[attr-defined]
                .limit(1)
                .with_for_update(skip_locked=True)
            )
            if skipped:
                stmt = stmt.where(MintJob.id.not_in(skipped))  # type: ignore[attr-defined]
            candidate_id = (await self.session.execute(stmt)).scalar_one_or_none()
            if candidate_id is None:
                return None

            now = utcnow()
            result = await self.session.execute(
                update(MintJob)
                .where(MintJob.id == candidate_id)  # type: ignore[arg-type]
                .where(MintJob.status == MintJobStatus.PENDING)  # type: ignore[arg-type]
                .values(status=MintJobStatus.MINTING, started_at=now, updated_at=now)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 1:  # type: ignore[attr-defined]
                claimed = await self.session.execute(
                    select(MintJob)
                    .where(MintJob.id == candidate_id)  # type: ignore[arg-type]
                    .execution_options(populate_existing=True)
                )
                return claimed.scalar_one()

            logger.info("mint_job.claim_lost", job_id=candidate_id)
            skipped.append(candidate_id)
        return None

    async def update_progress(self, job: MintJob, minted_count: int) -> bool:
        """Persist a new minted_count while the job is still minting.

        The write is guarded by status = 'minting', so a job another process
        has already failed is never written over.

        Returns:
            True if the row was updated, False if the job is no longer minting

        Raises:
            InvalidStateTransition: If the in-memory job is not minting
            ValueError: If the count decreases or exceeds total_units
        """
        changes = job.progress_changes(minted_count)
        return await self._write_while(job, (MintJobStatus.MINTING,), changes)

    async def complete(self, job: MintJob, minted_count: int) -> bool:
        """Flip a minting job to complete with its final count.

        Returns:
            True if the job was completed, False if it is no longer minting
        """
        changes = job.completion_changes(minted_count)
        return await self._write_while(job, (MintJobStatus.MINTING,), changes)

    async def fail(self, job: MintJob, error_message: str) -> bool:
        """Flip a non-terminal job to failed, keeping its committed minted_count.

        Returns:
            True if the job was failed, False if it had already reached a terminal state
        """
        if job.is_terminal:
            return False
        changes = job.failure_changes(error_message)
        return await self._write_while(
            job, (MintJobStatus.PENDING, MintJobStatus.MINTING), changes
        )

    async def _write_while(
        self, job: MintJob, statuses: tuple[MintJobStatus, ...], changes: dict[str, Any]
    ) -> bool:
        """Conditional UPDATE; on a match the changes become the job's committed state."""
        result = await self.session.execute(
            update(MintJob)
            .where(MintJob.id == job.id)  # type: ignore[arg-type]
            .where(MintJob.status.in_(statuses))  # type: ignore[attr-defined]
            .values(**changes)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:  # type: ignore[attr-defined]
            return False
        for key, value in changes.items():
            set_committed_value(job, key, value)
        return True

    async def mark_seen(self, job_id: str, artist_address: str) -> MintJob | None:
        """Set seen=True if the job belongs to artist_address.

        Returns:
            The updated job, or None if no such job exists for that artist
        """
        result = await self.session.execute(
            select(MintJob)
            .where(MintJob.id == job_id)  # type: ignore[arg-type]
            .where(MintJob.artist_address == artist_address)  # type: ignore[arg-type]
        )
        job = result.scalar_one_or_none()
        if job is None:
            return None
        job.seen = True
        self.session.add(job)
        await self.session.flush()
        return job

    async def list_recent_for_artist(
        self, artist_address: str, since: datetime, limit: int = 20
    ) -> list[tuple[MintJob, str | None]]:
        """List an artist's jobs created after `since`, newest first.

        Returns:
            (job, release_title) pairs; release_title is None if the release is gone
        """
        result = await self.session.execute(
            select(MintJob, Release.title)
            .outerjoin(Release, Release.id == MintJob.release_id)  # type: ignore[arg-type]
            .where(MintJob.artist_address == artist_address)  # type: ignore[arg-type]
            .where(MintJob.created_at > since)  # type: ignore[arg-type]
            .order_by(MintJob.created_at.desc(), MintJob.id.desc())  # type: ignore[attr-defined]
            .limit(limit)
        )
        return [(job, title) for job, title in result.all()]

    async def fail_orphaned(self, message: str, stale_before: datetime) -> list[str]:
        """Fail jobs left in 'minting' whose progress stopped before `stale_before`.

        A live worker bumps updated_at after every mint attempt, so only jobs
        nobody has touched since the cutoff are failed. Jobs are never
        resumed: the units already on the ledger stay recorded and the artist
        re-enqueues if needed.

        Returns:
            Ids of the jobs that were failed
        """
        result = await self.session.execute(
            select(MintJob.id)
            .where(MintJob.status == MintJobStatus.MINTING)  # type: ignore[arg-type]
            .where(MintJob.updated_at < stale_before)  # type: ignore[arg-type]
            .order_by(MintJob.created_at.asc())  # type: ignore[attr-defined]
            .with_for_update(skip_locked=True)
        )
        job_ids = list(result.scalars().all())
        if not job_ids:
            return []

        now = utcnow()
        await self.session.execute(
            update(MintJob)
            .where(MintJob.id.in_(job_ids))  # type: ignore[attr-defined]
            .where(MintJob.status == MintJobStatus.MINTING)  # type: ignore[arg-type]
            .values(status=MintJobStatus.FAILED, error=message, completed_at=now, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        return job_ids
