"""FastAPI dependencies for request validation and common operations.

This module provides reusable FastAPI dependencies for:
- Settings and UnitOfWork factory access
- Ledger client factory access
- Admin secret validation for reconciliation endpoints
"""

import hmac
from typing import Annotated, Callable

from fastapi import Depends, Header, HTTPException, Request, status

from musicmint.core.config import Settings
from musicmint.services.ledger.client import LedgerClient
from musicmint.uow import UnitOfWork


def get_settings(request: Request) -> Settings:
    """Get the settings instance loaded at startup.

    Returns:
        Settings stored on app.state by the application factory
    """
    return request.app.state.settings


def get_uow_factory(request: Request) -> Callable[[], UnitOfWork]:
    """Get UnitOfWork factory from app state.

    Example:
        >>> @router.post("/endpoint")
        >>> async def endpoint(uow_factory=Depends(get_uow_factory)):
        ...     async with await uow_factory() as uow:
        ...         await uow.mint_jobs.get_by_id(job_id)
    """
    return request.app.state.uow_factory


def get_ledger_factory(request: Request) -> Callable[[], LedgerClient] | None:
    """Get the ledger client factory from app state (None if not configured)."""
    return getattr(request.app.state, "ledger_factory", None)


async def require_admin_secret(
    x_admin_secret: Annotated[str | None, Header()] = None,
    settings: Settings = Depends(get_settings),
) -> None:
    """Guard admin endpoints with the ADMIN_SECRET shared secret.

    Admin endpoints are disabled entirely while ADMIN_SECRET is empty.

    Raises:
        HTTPException: 404 if disabled, 401 if the header is missing or wrong
    """
    if not settings.admin_secret:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Not found")

    if not x_admin_secret or not hmac.compare_digest(
        x_admin_secret.encode(), settings.admin_secret.encode()
    ):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid admin secret"
        )
