"""Mint job enqueueing and lookup.

Enqueueing only validates and writes a 'pending' row; the ledger is never
touched here. The mint worker picks the job up on its next poll.
"""

from dataclasses import dataclass
from datetime import timedelta

import structlog
from xrpl.core.addresscodec import is_valid_classic_address

from musicmint.core.config import Settings
from musicmint.core.timezone import utcnow
from musicmint.models.mint_job import MintJob, MintJobPayload
from musicmint.services.exceptions import NotFoundError, ValidationError
from musicmint.services.minting.progress import ArtistJobFeed, build_artist_feed
from musicmint.uow import UnitOfWork

logger = structlog.get_logger(__name__)

MAX_TRANSFER_FEE = 50000
ARTIST_FEED_LIMIT = 20


@dataclass
class EnqueueResult:
    job_id: str
    total_units: int
    track_count: int
    quantity: int


async def enqueue_mint_job(
    uow: UnitOfWork,
    settings: Settings,
    release_id: str,
    artist_address: str,
    quantity: int,
    transfer_fee: int | None = None,
) -> EnqueueResult:
    """Validate a batch-mint request and persist it as a pending job.

    Args:
        uow: Unit of work (committed by the caller's context)
        settings: Provides MAX_UNITS_PER_JOB and DEFAULT_TRANSFER_FEE
        release_id: Release whose tracks are minted
        artist_address: Requesting artist; must own the release
        quantity: Editions per track
        transfer_fee: Royalty in 1/100000 units, defaults to DEFAULT_TRANSFER_FEE

    Returns:
        EnqueueResult with the new job id and computed total_units

    Raises:
        NotFoundError: Release does not exist
        ValidationError: Bad address, ownership mismatch, quantity or fee out of
            range, no tracks, or total units above the per-job cap
    """
    if transfer_fee is None:
        transfer_fee = settings.default_transfer_fee

    if not artist_address or not is_valid_classic_address(artist_address):
        raise ValidationError(f"Invalid artist address: {artist_address!r}")
    if quantity < 1:
        raise ValidationError("Quantity must be at least 1")
    if not 0 <= transfer_fee <= MAX_TRANSFER_FEE:
        raise ValidationError(f"Transfer fee must be between 0 and {MAX_TRANSFER_FEE}")

    release = await uow.releases.get_by_id(release_id)
    if release is None:
        raise NotFoundError(f"Release {release_id} not found")
    if release.artist_address != artist_address:
        raise ValidationError("Artist address does not match release owner")

    track_count = await uow.tracks.count_by_release(release_id)
    if track_count == 0:
        raise ValidationError("Release has no tracks")

    total_units = track_count * quantity
    if total_units > settings.max_units_per_job:
        raise ValidationError(
            f"Requested {total_units} units ({track_count} tracks x {quantity}); "
            f"maximum per job is {settings.max_units_per_job}"
        )

    payload = MintJobPayload(
        artist_address=artist_address, quantity=quantity, transfer_fee=transfer_fee
    )
    job = MintJob(
        release_id=release_id,
        artist_address=artist_address,
        total_units=total_units,
        job_data=payload.model_dump(mode="json"),
    )
    await uow.mint_jobs.add(job)

    logger.info(
        "mint_job.enqueued",
        job_id=job.id,
        release_id=release_id,
        track_count=track_count,
        quantity=quantity,
        total_units=total_units,
    )

    return EnqueueResult(
        job_id=job.id, total_units=total_units, track_count=track_count, quantity=quantity
    )


async def get_job_status(uow: UnitOfWork, job_id: str) -> MintJob:
    """Fetch a job for polling.

    Raises:
        NotFoundError: No job with this id
    """
    job = await uow.mint_jobs.get_by_id(job_id)
    if job is None:
        raise NotFoundError(f"Mint job {job_id} not found")
    return job


async def mark_job_seen(uow: UnitOfWork, job_id: str, artist_address: str) -> MintJob:
    """Dismiss a job notification. Only the owning artist may do this.

    Raises:
        NotFoundError: Job missing or owned by another address
    """
    job = await uow.mint_jobs.mark_seen(job_id, artist_address)
    if job is None:
        raise NotFoundError(f"Mint job {job_id} not found")
    logger.info("mint_job.seen", job_id=job_id)
    return job


async def list_artist_jobs(uow: UnitOfWork, settings: Settings, artist_address: str) -> ArtistJobFeed:
    since = utcnow() - timedelta(days=settings.job_history_days)
    rows = await uow.mint_jobs.list_recent_for_artist(artist_address, since, limit=ARTIST_FEED_LIMIT)
    return build_artist_feed(rows)
