"""Mint job API endpoints.

This module implements the thin HTTP layer over the mint job queue:
- POST /api/mint-jobs - Enqueue a batch mint for a release (returns immediately)
- GET /api/mint-jobs/{job_id} - Poll job progress
- POST /api/mint-jobs/{job_id}/seen - Dismiss a job notification (owner only)
- GET /api/artists/{address}/mint-jobs - Notification feed for an artist

Minting itself happens in the mint worker process; these endpoints only read
and write mint_jobs rows.
"""

import structlog
from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, Field

from musicmint.api.dependencies import get_settings, get_uow_factory
from musicmint.core.config import Settings
from musicmint.core.dependencies import get_uow
from musicmint.services.exceptions import NotFoundError, ValidationError
from musicmint.services.minting.enqueuer import (
    enqueue_mint_job,
    get_job_status,
    list_artist_jobs,
    mark_job_seen,
)
from musicmint.services.minting.progress import ArtistJobFeed, JobProgress, project_progress
from musicmint.uow import UnitOfWork

logger = structlog.get_logger()
router = APIRouter(prefix="/api", tags=["mint-jobs"])


# Request/Response Models


class EnqueueMintRequest(BaseModel):
    """Request model for queueing a batch mint."""

    release_id: str = Field(..., description="Release whose tracks are minted", min_length=1)
    artist_address: str = Field(..., description="Classic address of the release owner")
    quantity: int = Field(..., description="Editions per track", ge=1)
    transfer_fee: int | None = Field(
        default=None,
        description="Royalty on secondary sales in 1/100000 units (default from settings)",
        ge=0,
        le=50000,
    )


class EnqueueMintResponse(BaseModel):
    job_id: str
    total_units: int
    track_count: int
    quantity: int


class MarkSeenRequest(BaseModel):
    address: str = Field(..., description="Address of the artist who owns the job")


class MarkSeenResponse(BaseModel):
    success: bool
    job_id: str


# API Endpoints


@router.post(
    "/mint-jobs", response_model=EnqueueMintResponse, status_code=status.HTTP_202_ACCEPTED
)
async def create_mint_job(
    request: EnqueueMintRequest,
    uow_factory=Depends(get_uow_factory),
    settings: Settings = Depends(get_settings),
) -> EnqueueMintResponse:
    """Queue a batch mint and return the job id without waiting for the ledger.

    Raises:
        HTTPException 400: Validation failed (address, quantity, fee, cap, no tracks)
        HTTPException 404: Release not found
    """
    try:
        async with await uow_factory() as uow:
            result = await enqueue_mint_job(
                uow,
                settings,
                release_id=request.release_id,
                artist_address=request.artist_address,
                quantity=request.quantity,
                transfer_fee=request.transfer_fee,
            )
    except ValidationError as e:
        logger.warning("mint_job.enqueue_rejected", release_id=request.release_id, error=str(e))
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    except NotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))

    return EnqueueMintResponse(
        job_id=result.job_id,
        total_units=result.total_units,
        track_count=result.track_count,
        quantity=result.quantity,
    )


@router.get("/mint-jobs/{job_id}", response_model=JobProgress)
async def get_mint_job(job_id: str, uow: UnitOfWork = Depends(get_uow)) -> JobProgress:
    """Poll a job; clients call this every few seconds while minting.

    Raises:
        HTTPException 404: Job not found
    """
    try:
        job = await get_job_status(uow, job_id)
    except NotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    return project_progress(job)


@router.post("/mint-jobs/{job_id}/seen", response_model=MarkSeenResponse)
async def mark_mint_job_seen(
    job_id: str,
    request: MarkSeenRequest,
    uow_factory=Depends(get_uow_factory),
) -> MarkSeenResponse:
    try:
        async with await uow_factory() as uow:
            await mark_job_seen(uow, job_id, request.address)
    except NotFoundError:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND, detail="Job not found or not yours"
        )
    return MarkSeenResponse(success=True, job_id=job_id)


@router.get("/artists/{address}/mint-jobs", response_model=ArtistJobFeed)
async def get_artist_mint_jobs(
    address: str,
    uow: UnitOfWork = Depends(get_uow),
    settings: Settings = Depends(get_settings),
) -> ArtistJobFeed:
    """Recent jobs for the artist's notification bell."""
    return await list_artist_jobs(uow, settings, address)
