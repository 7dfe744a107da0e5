"""CLI argument parsing and report output tests."""

import pytest

from musicmint.cli import mint_worker, reconcile
from musicmint.services.reconciliation.engine import PassResult


def test_reconcile_parses_pass_and_options():
    args = reconcile.parse_args(
        ["sync_from_ledger", "--release-id", "rel_abc", "--dry-run", "-v"]
    )

    assert args.pass_name == "sync_from_ledger"
    assert args.release_id == "rel_abc"
    assert args.dry_run is True
    assert args.verbose is True
    assert args.older_than_minutes is None


def test_reconcile_accepts_all_and_threshold():
    args = reconcile.parse_args(["reset_stale_reservations", "--older-than-minutes", "30"])
    assert args.older_than_minutes == 30

    assert reconcile.parse_args(["all"]).pass_name == "all"


def test_reconcile_rejects_unknown_pass():
    with pytest.raises(SystemExit):
        reconcile.parse_args(["drop_everything"])


def test_mint_worker_once_flag():
    assert mint_worker.parse_args(["--once"]).once is True
    assert mint_worker.parse_args([]).once is False


def test_print_result_summarizes_fixes_and_errors(capsys):
    result = PassResult(
        name="sync_counters",
        dry_run=True,
        checked=12,
        fixes=[{"entity": "track", "id": f"trk_{i}", "now": i} for i in range(12)],
        errors=["track trk_x: RuntimeError: disk full"],
    )

    reconcile.print_result(result)

    out = capsys.readouterr().out
    assert "Pass: sync_counters" in out
    assert "Rows checked: 12" in out
    assert "Fixes planned: 12" in out
    assert "... and 2 more fixes" in out
    assert "Errors encountered: 1" in out
    assert "disk full" in out


def test_print_result_lists_discrepancies(capsys):
    result = PassResult(
        name="diagnose_inventory",
        dry_run=True,
        details=[
            {"track_id": "trk_ok", "has_discrepancy": False},
            {"track_id": "trk_bad", "has_discrepancy": True},
        ],
    )

    reconcile.print_result(result)

    out = capsys.readouterr().out
    assert "Tracks with discrepancies: 1" in out
    assert "trk_bad" in out
    assert "trk_ok" not in out
