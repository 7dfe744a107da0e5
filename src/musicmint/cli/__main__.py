"""CLI entry point for musicmint.cli module.

Enables execution via: python -m musicmint.cli (runs the mint worker)
"""

from musicmint.cli.mint_worker import main

if __name__ == "__main__":
    raise SystemExit(main())
