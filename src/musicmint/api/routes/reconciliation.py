"""Admin reconciliation endpoints.

POST /api/admin/reconcile/{pass_name} runs one repair pass (or "all").
Pass ?dry_run=true to report planned fixes without writing. Requires the
X-Admin-Secret header to match ADMIN_SECRET.
"""

from dataclasses import asdict
from typing import Any

import structlog
from fastapi import APIRouter, Depends, HTTPException, Query, status

from musicmint.api.dependencies import (
    get_ledger_factory,
    get_settings,
    get_uow_factory,
    require_admin_secret,
)
from musicmint.core.config import Settings
from musicmint.services.exceptions import (
    LedgerConnectionError,
    LedgerRequestError,
    ReconciliationError,
)
from musicmint.services.reconciliation.engine import PASS_NAMES, ReconciliationEngine

logger = structlog.get_logger()
router = APIRouter(
    prefix="/api/admin/reconcile",
    tags=["admin"],
    dependencies=[Depends(require_admin_secret)],
)


@router.post("/{pass_name}")
async def run_reconciliation(
    pass_name: str,
    dry_run: bool = Query(default=False),
    release_id: str | None = Query(default=None),
    uow_factory=Depends(get_uow_factory),
    settings: Settings = Depends(get_settings),
    ledger_factory=Depends(get_ledger_factory),
) -> dict[str, Any]:
    """Run a reconciliation pass and return its PassResult(s).

    Raises:
        HTTPException 404: Unknown pass name
        HTTPException 502: Ledger unavailable for a custody pass
        HTTPException 503: Custody pass requested without a ledger client
    """
    if pass_name != "all" and pass_name not in PASS_NAMES:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND, detail=f"Unknown pass: {pass_name}"
        )

    engine = ReconciliationEngine(settings, ledger_factory=ledger_factory)
    try:
        async with await uow_factory() as uow:
            if pass_name == "all":
                results = await engine.run_all(uow, release_id=release_id, dry_run=dry_run)
            else:
                results = [
                    await engine.run_pass(uow, pass_name, release_id=release_id, dry_run=dry_run)
                ]
    except (LedgerConnectionError, LedgerRequestError) as e:
        logger.error("reconcile.ledger_unavailable", pass_name=pass_name, error=str(e))
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(e))
    except ReconciliationError as e:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(e))

    return {"dry_run": dry_run, "results": [asdict(result) for result in results]}
