"""Background workers for async processing tasks."""

from musicmint.workers.mint_worker import run_mint_worker

__all__ = [
    "run_mint_worker",
]
