"""Read-only projections of mint jobs for polling clients and the artist notification feed."""

from datetime import datetime

from pydantic import BaseModel, Field

from musicmint.core.timezone import utcnow
from musicmint.models.mint_job import MintJob, MintJobStatus

RECENT_COMPLETED_LIMIT = 5


class JobProgress(BaseModel):
    """Snapshot of a job returned to pollers."""

    job_id: str
    release_id: str
    status: MintJobStatus
    minted: int
    total: int
    elapsed: int = Field(description="Seconds since the worker claimed the job")
    started_at: datetime | None = None
    updated_at: datetime | None = None
    error: str | None = None


def project_progress(job: MintJob, now: datetime | None = None) -> JobProgress:
    """Build the polling view of a job.

    elapsed counts from started_at to completed_at for terminal jobs and to
    now otherwise; it is 0 while the job is still pending.
    """
    elapsed = 0
    if job.started_at is not None:
        end = job.completed_at if job.is_terminal and job.completed_at else (now or utcnow())
        elapsed = max(0, round((end - job.started_at).total_seconds()))

    return JobProgress(
        job_id=job.id,
        release_id=job.release_id,
        status=job.status,
        minted=job.minted_count,
        total=job.total_units,
        elapsed=elapsed,
        started_at=job.started_at,
        updated_at=job.updated_at,
        error=job.error,
    )


class JobSummary(BaseModel):
    job_id: str
    release_id: str
    release_title: str | None = None
    status: MintJobStatus
    minted: int
    total: int
    error: str | None = None
    seen: bool
    created_at: datetime
    updated_at: datetime
    completed_at: datetime | None = None


class JobBuckets(BaseModel):
    active: list[JobSummary] = Field(default_factory=list)
    completed_unseen: list[JobSummary] = Field(default_factory=list)
    failed: list[JobSummary] = Field(default_factory=list)
    recent_completed: list[JobSummary] = Field(default_factory=list)


class FeedSummary(BaseModel):
    active_count: int
    unread_count: int


class ArtistJobFeed(BaseModel):
    """Notification bell payload for one artist."""

    has_unread: bool
    has_active: bool
    jobs: JobBuckets
    summary: FeedSummary


def build_artist_feed(rows: list[tuple[MintJob, str | None]]) -> ArtistJobFeed:
    """Categorize an artist's recent jobs (newest first) into notification buckets.

    Unseen failures count as unread; seen failures drop out of the feed.
    """
    buckets = JobBuckets()
    for job, release_title in rows:
        summary = JobSummary(
            job_id=job.id,
            release_id=job.release_id,
            release_title=release_title,
            status=job.status,
            minted=job.minted_count,
            total=job.total_units,
            error=job.error,
            seen=job.seen,
            created_at=job.created_at,
            updated_at=job.updated_at,
            completed_at=job.completed_at,
        )
        if not job.is_terminal:
            buckets.active.append(summary)
        elif job.status == MintJobStatus.COMPLETE:
            if job.seen:
                buckets.recent_completed.append(summary)
            else:
                buckets.completed_unseen.append(summary)
        elif not job.seen:
            buckets.failed.append(summary)

    buckets.recent_completed = buckets.recent_completed[:RECENT_COMPLETED_LIMIT]
    unread_count = len(buckets.completed_unseen) + len(buckets.failed)

    return ArtistJobFeed(
        has_unread=unread_count > 0,
        has_active=bool(buckets.active),
        jobs=buckets,
        summary=FeedSummary(active_count=len(buckets.active), unread_count=unread_count),
    )
