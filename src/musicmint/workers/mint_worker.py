"""Mint worker for processing queued batch-mint jobs.

Claims the oldest pending job, mints every edition of every track on the
ledger one transaction at a time, records each minted unit in the nfts table,
and commits progress after every attempt so pollers see live counts.

The worker manages its session directly instead of going through UnitOfWork:
a job has many commit points and must survive per-unit failures without
losing already-recorded units.
"""

import asyncio
import time
from collections import Counter
from datetime import timedelta
from typing import Callable

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from musicmint.core.config import Settings
from musicmint.core.timezone import utcnow
from musicmint.models.mint_job import MintJob
from musicmint.models.nft import InventoryUnit, NFTStatus
from musicmint.repositories.mint_job import MintJobRepository
from musicmint.repositories.nft import InventoryUnitRepository
from musicmint.repositories.release import ReleaseRepository
from musicmint.repositories.track import TrackRepository
from musicmint.services.exceptions import UnitMintError
from musicmint.services.ledger.client import LedgerClient, ledger_factory_from_settings
from musicmint.services.ledger.token_uri import encode_token_uri

logger = structlog.get_logger(__name__)

INTERRUPTED_MESSAGE = "Worker interrupted while minting; re-enqueue to mint remaining editions"

LedgerFactory = Callable[[], LedgerClient]


class JobNoLongerMinting(Exception):
    """The job left 'minting' while this worker was still processing it."""


async def process_job(
    job_id: str,
    session_factory: Callable,
    settings: Settings,
    ledger_factory: LedgerFactory,
) -> None:
    """Mint all units of a claimed job.

    Workflow:
    1. Load job, release and ordered tracks (no tracks, or a track count that
       no longer matches total_units, fails the job)
    2. Open a ledger session and verify minter delegation (mismatch fails the job)
    3. For each track (taxon = track index) and edition 1..quantity:
       - mint_token; UnitMintError is logged and the loop moves on
       - store an available InventoryUnit (duplicates skipped, missing id logged)
       - commit minted_count
    4. Mark the release minted and the job complete with the final count

    Any other exception rolls back the in-flight transaction and fails the job
    with the exception message. Units and progress committed earlier remain.
    If a guarded progress or completion write finds the job no longer minting,
    processing stops and the row is left as the other process wrote it.

    Args:
        job_id: Id of a job already claimed (status='minting')
        session_factory: Factory function to create new database sessions
        settings: Application settings (throttle delay)
        ledger_factory: Returns an unconnected LedgerClient
    """
    start_time = time.time()

    async with session_factory() as session:
        jobs = MintJobRepository(session)
        job = await jobs.get_by_id(job_id)
        if job is None:
            raise ValueError(f"Mint job {job_id} not found")

        try:
            minted_count, recorded = await _mint_units(session, job, settings, ledger_factory)
        except JobNoLongerMinting:
            await session.rollback()
            await session.refresh(job)
            logger.warning(
                "mint_job.abandoned",
                job_id=job.id,
                status=job.status.value,
                minted=job.minted_count,
                total=job.total_units,
            )
            return
        except Exception as e:
            await session.rollback()
            await session.refresh(job)
            await jobs.fail(job, str(e) or type(e).__name__)
            await session.commit()

            logger.error(
                "mint_job.failed",
                job_id=job.id,
                release_id=job.release_id,
                minted=job.minted_count,
                total=job.total_units,
                error_type=type(e).__name__,
                error_message=str(e),
            )
            return

        duration = time.time() - start_time
        logger.info(
            "mint_job.completed",
            job_id=job.id,
            release_id=job.release_id,
            minted=minted_count,
            recorded=recorded,
            total=job.total_units,
            duration_seconds=duration,
        )


async def _mint_units(
    session: AsyncSession,
    job: MintJob,
    settings: Settings,
    ledger_factory: LedgerFactory,
) -> tuple[int, int]:
    jobs = MintJobRepository(session)
    releases = ReleaseRepository(session)
    tracks_repo = TrackRepository(session)
    nfts = InventoryUnitRepository(session)

    release = await releases.get_by_id(job.release_id)
    if release is None:
        raise ValueError("Release not found")
    tracks = await tracks_repo.get_by_release(release.id)
    if not tracks:
        raise ValueError("No tracks found for release")

    payload = job.payload
    if len(tracks) * payload.quantity != job.total_units:
        raise ValueError(
            f"Release now has {len(tracks)} tracks ({len(tracks) * payload.quantity} units) "
            f"but the job was enqueued for {job.total_units} units; re-enqueue the mint"
        )
    minted_count = job.minted_count
    recorded: Counter[str] = Counter()
    attempts = 0

    logger.info(
        "mint_job.started",
        job_id=job.id,
        release_id=release.id,
        track_count=len(tracks),
        quantity=payload.quantity,
        total=job.total_units,
    )

    async with ledger_factory() as ledger:
        platform_address = ledger.platform_address
        await ledger.verify_minter_authorization(payload.artist_address, platform_address)

        for taxon, track in enumerate(tracks):
            uri = track.metadata_uri
            if uri is None:
                raise ValueError(f"Track {track.id} has no metadata URI")
            uri_hex = encode_token_uri(uri)

            for edition_number in range(1, payload.quantity + 1):
                if attempts and settings.mint_delay_seconds > 0:
                    await asyncio.sleep(settings.mint_delay_seconds)
                attempts += 1

                try:
                    result = await ledger.mint_token(
                        issuer=payload.artist_address,
                        owner_account=platform_address,
                        uri_hex=uri_hex,
                        transfer_fee=payload.transfer_fee,
                        taxon=taxon,
                    )
                except UnitMintError as e:
                    logger.warning(
                        "mint.unit_failed",
                        job_id=job.id,
                        track_id=track.id,
                        edition_number=edition_number,
                        error_type=type(e).__name__,
                        error_message=str(e),
                    )
                else:
                    minted_count += 1
                    if result.token_id is None:
                        logger.warning(
                            "mint.token_id_unindexed",
                            job_id=job.id,
                            track_id=track.id,
                            edition_number=edition_number,
                            tx_hash=result.tx_hash,
                        )
                    else:
                        inserted = await nfts.add_if_absent(
                            InventoryUnit(
                                nft_token_id=result.token_id,
                                track_id=track.id,
                                release_id=release.id,
                                edition_number=edition_number,
                                status=NFTStatus.AVAILABLE,
                                owner_address=platform_address,
                                tx_hash=result.tx_hash,
                            )
                        )
                        if inserted:
                            recorded[track.id] += 1
                        else:
                            logger.info(
                                "mint.unit_duplicate",
                                job_id=job.id,
                                nft_token_id=result.token_id,
                            )

                updated = await jobs.update_progress(job, minted_count)
                await session.commit()
                if not updated:
                    raise JobNoLongerMinting(job.id)

        if sum(recorded.values()) > 0:
            counts = await nfts.counts_by_track([track.id for track in tracks])
            await releases.mark_minted(release, min(counts.values()))

        completed = await jobs.complete(job, minted_count)
        await session.commit()
        if not completed:
            raise JobNoLongerMinting(job.id)

    return minted_count, sum(recorded.values())


async def run_once(
    session_factory: Callable,
    settings: Settings,
    ledger_factory: LedgerFactory,
) -> str | None:
    """Claim and process at most one job.

    Returns:
        Id of the processed job, or None if the queue was empty
    """
    async with session_factory() as session:
        job = await MintJobRepository(session).claim_next_pending()
        await session.commit()

    if job is None:
        return None

    logger.info("mint_job.claimed", job_id=job.id, release_id=job.release_id)
    await process_job(job.id, session_factory, settings, ledger_factory)
    return job.id


async def fail_orphaned_jobs(session: AsyncSession, stale_seconds: float) -> list[str]:
    """Fail jobs stuck in 'minting' on startup.

    A crash or restart leaves the claimed job in 'minting'. Jobs are never
    resumed, so they are moved to 'failed' and the artist can re-enqueue.
    Jobs whose progress moved within the last `stale_seconds` still belong to
    a live worker and are left alone.

    Args:
        session: Database session for recovery query
        stale_seconds: Minimum time since the job's last update
    """
    stale_before = utcnow() - timedelta(seconds=stale_seconds)
    job_ids = await MintJobRepository(session).fail_orphaned(INTERRUPTED_MESSAGE, stale_before)
    await session.commit()

    if job_ids:
        logger.info("worker.recovery", orphaned_jobs_failed=len(job_ids), job_ids=job_ids)
    return job_ids


async def run_mint_worker(
    session_factory: Callable,
    settings: Settings,
    ledger_factory: LedgerFactory | None = None,
) -> None:
    """Main worker loop for batch minting.

    Processes jobs back to back while the queue is non-empty and sleeps
    POLL_INTERVAL_SECONDS when it is empty.

    Args:
        session_factory: Factory function that creates database sessions
        settings: Application settings (poll interval, throttle, ledger config)
        ledger_factory: Optional LedgerClient factory (built from settings if omitted)
    """
    if ledger_factory is None:
        ledger_factory = ledger_factory_from_settings(settings)

    if settings.fail_orphaned_jobs_on_startup:
        async with session_factory() as session:
            await fail_orphaned_jobs(session, settings.orphaned_job_stale_seconds)

    logger.info(
        "worker.started",
        worker_type="mint",
        poll_interval=settings.poll_interval_seconds,
        mint_delay=settings.mint_delay_seconds,
    )

    try:
        while True:
            try:
                job_id = await run_once(session_factory, settings, ledger_factory)
                if job_id is None:
                    await asyncio.sleep(settings.poll_interval_seconds)

            except asyncio.CancelledError:
                # Propagate cancellation for graceful shutdown
                raise

            except Exception as e:
                logger.error(
                    "worker.error",
                    worker_type="mint",
                    error_type=type(e).__name__,
                    error_message=str(e),
                    exc_info=True,
                )
                await asyncio.sleep(settings.worker_error_backoff_seconds)

    except asyncio.CancelledError:
        logger.info("worker.stopped", worker_type="mint")
        raise
