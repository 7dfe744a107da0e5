"""Reconciliation engine tests.

Covers each pass against a real database and a FakeLedgerClient for wallet
custody:
- Counter rebuild from sales is idempotent
- Edition numbers follow sale chronology and are dense, unsold units included
- Legacy custody sync and its guard against bad seed data
- Per-row failures are reported without aborting the pass
"""

from datetime import timedelta
from unittest.mock import patch

import pytest

from musicmint.core.timezone import utcnow
from musicmint.models.nft import InventoryUnit, NFTStatus
from musicmint.models.release import ReleaseType
from musicmint.models.sale import Sale, SaleType
from musicmint.repositories.track import TrackRepository
from musicmint.services.exceptions import ReconciliationError
from musicmint.services.reconciliation.engine import (
    ReconciliationEngine,
    legacy_track_uri_hex,
    release_sold_editions,
)
from musicmint.services.ledger.token_uri import encode_token_uri

from .conftest import OTHER_ADDRESS, PLATFORM_ADDRESS, FakeLedgerClient, token_id

BUYER = "rBuyer1111111111111111111111111"


async def add_rows(session_factory, *rows) -> None:
    async with session_factory() as session:
        session.add_all(rows)
        await session.commit()


async def run(uow_factory, engine: ReconciliationEngine, name: str, **kwargs):
    async with await uow_factory() as uow:
        return await engine.run_pass(uow, name, **kwargs)


def sale(track, minutes_ago: int, nft_token_id: str | None = None, **kwargs) -> Sale:
    return Sale(
        release_id=track.release_id,
        track_id=track.id,
        nft_token_id=nft_token_id,
        buyer_address=kwargs.pop("buyer_address", BUYER),
        created_at=utcnow() - timedelta(minutes=minutes_ago),
        **kwargs,
    )


def unit(track, n: int, edition_number: int, **kwargs) -> InventoryUnit:
    return InventoryUnit(
        nft_token_id=token_id(n),
        track_id=track.id,
        release_id=track.release_id,
        edition_number=edition_number,
        **kwargs,
    )


async def load_tracks(uow_factory, release_id: str):
    async with await uow_factory() as uow:
        return await uow.tracks.get_by_release(release_id)


async def load_release(uow_factory, release_id: str):
    async with await uow_factory() as uow:
        return await uow.releases.get_by_id(release_id)


def test_release_sold_editions_by_type():
    album = type("R", (), {"type": ReleaseType.ALBUM})()
    single = type("R", (), {"type": ReleaseType.SINGLE})()

    assert release_sold_editions(album, [3, 1, 2]) == 1
    assert release_sold_editions(single, [3, 1]) == 3
    assert release_sold_editions(album, []) == 0


@pytest.mark.asyncio
async def test_sync_counters_rebuilds_from_sales(session_factory, uow_factory, settings, make_release):
    """Album sold_editions is the minimum of recomputed track counts."""
    release, tracks = await make_release(track_count=2)
    await add_rows(
        session_factory,
        sale(tracks[0], 30),
        sale(tracks[0], 20),
        sale(tracks[1], 10),
    )
    engine = ReconciliationEngine(settings)

    result = await run(uow_factory, engine, "sync_counters")

    assert result.errors == []
    assert result.checked == 2
    assert {(f["entity"], f["now"]) for f in result.fixes} == {
        ("track", 2),
        ("track", 1),
        ("release", 1),
    }
    stored = await load_tracks(uow_factory, release.id)
    assert [t.sold_count for t in stored] == [2, 1]
    assert (await load_release(uow_factory, release.id)).sold_editions == 1


@pytest.mark.asyncio
async def test_sync_counters_second_run_is_noop(session_factory, uow_factory, settings, make_release):
    release, tracks = await make_release(track_count=1, release_type=ReleaseType.SINGLE)
    await add_rows(session_factory, sale(tracks[0], 5), sale(tracks[0], 4), sale(tracks[0], 3))
    engine = ReconciliationEngine(settings)

    first = await run(uow_factory, engine, "sync_counters")
    second = await run(uow_factory, engine, "sync_counters")

    assert len(first.fixes) == 2
    assert second.fixes == []
    assert (await load_release(uow_factory, release.id)).sold_editions == 3


@pytest.mark.asyncio
async def test_sync_counters_dry_run_writes_nothing(session_factory, uow_factory, settings, make_release):
    release, tracks = await make_release(track_count=1)
    await add_rows(session_factory, sale(tracks[0], 5))
    engine = ReconciliationEngine(settings)

    result = await run(uow_factory, engine, "sync_counters", dry_run=True)

    assert result.dry_run is True
    assert len(result.fixes) == 2
    stored = await load_tracks(uow_factory, release.id)
    assert stored[0].sold_count == 0


@pytest.mark.asyncio
async def test_sync_counters_reports_row_failure_and_continues(
    session_factory, uow_factory, settings, make_release
):
    release, tracks = await make_release(track_count=2)
    await add_rows(session_factory, sale(tracks[0], 5), sale(tracks[1], 4))
    engine = ReconciliationEngine(settings)
    original = TrackRepository.set_sold_count

    async def flaky(self, track, sold_count):
        if track.id == tracks[0].id:
            raise RuntimeError("disk full")
        await original(self, track, sold_count)

    with patch.object(TrackRepository, "set_sold_count", flaky):
        result = await run(uow_factory, engine, "sync_counters")

    assert result.errors == [f"track {tracks[0].id}: RuntimeError: disk full"]
    assert [f["id"] for f in result.fixes if f["entity"] == "track"] == [tracks[1].id]

    stored = {t.id: t.sold_count for t in await load_tracks(uow_factory, release.id)}
    assert stored == {tracks[0].id: 0, tracks[1].id: 1}


@pytest.mark.asyncio
async def test_renumber_follows_sale_chronology(session_factory, uow_factory, settings, make_release):
    """Earlier sale gets edition 1 regardless of mint-time numbering."""
    release, tracks = await make_release(track_count=1)
    track = tracks[0]
    token_a, token_b = token_id(1), token_id(2)
    first_sale = sale(track, 60, nft_token_id=token_a, edition_number=2)
    second_sale = sale(track, 30, nft_token_id=token_b, edition_number=2)
    await add_rows(
        session_factory,
        unit(track, 1, edition_number=3, status=NFTStatus.SOLD),
        unit(track, 2, edition_number=1, status=NFTStatus.SOLD),
        first_sale,
        second_sale,
    )
    engine = ReconciliationEngine(settings)

    result = await run(uow_factory, engine, "renumber_editions")

    assert result.errors == []
    async with await uow_factory() as uow:
        sales = await uow.sales.list_by_track_ordered(track.id)
        unit_a = await uow.nfts.get_by_token_id(token_a)
        unit_b = await uow.nfts.get_by_token_id(token_b)

    assert [(s.id, s.edition_number) for s in sales] == [(first_sale.id, 1), (second_sale.id, 2)]
    assert unit_a.edition_number == 1
    assert unit_b.edition_number == 2

    rerun = await run(uow_factory, engine, "renumber_editions")
    assert rerun.fixes == []


@pytest.mark.asyncio
async def test_renumber_produces_dense_editions(session_factory, uow_factory, settings, make_release):
    """Secondary sales and sales without tokens are numbered too; no gaps or duplicates."""
    release, tracks = await make_release(track_count=1)
    track = tracks[0]
    await add_rows(
        session_factory,
        sale(track, 50, edition_number=7),
        sale(track, 40, edition_number=7),
        sale(track, 30, sale_type=SaleType.SECONDARY, seller_address=OTHER_ADDRESS),
        sale(track, 20),
    )
    engine = ReconciliationEngine(settings)

    await run(uow_factory, engine, "renumber_editions")

    async with await uow_factory() as uow:
        sales = await uow.sales.list_by_track_ordered(track.id)
    assert sorted(s.edition_number for s in sales) == [1, 2, 3, 4]


@pytest.mark.asyncio
async def test_renumber_makes_unsold_units_follow_sold_ones(
    session_factory, uow_factory, settings, make_release
):
    """Only the third unit sold: it becomes edition 1 and the unsold units take 2 and 3."""
    release, tracks = await make_release(track_count=1)
    track = tracks[0]
    await add_rows(
        session_factory,
        unit(track, 1, edition_number=1),
        unit(track, 2, edition_number=2),
        unit(track, 3, edition_number=3, status=NFTStatus.SOLD),
        sale(track, 10, nft_token_id=token_id(3), edition_number=3),
    )
    engine = ReconciliationEngine(settings)

    result = await run(uow_factory, engine, "renumber_editions")

    assert result.errors == []
    async with await uow_factory() as uow:
        units = await uow.nfts.list_by_track(track.id)
    assert [(u.nft_token_id, u.edition_number) for u in units] == [
        (token_id(3), 1),
        (token_id(1), 2),
        (token_id(2), 3),
    ]

    rerun = await run(uow_factory, engine, "renumber_editions")
    assert rerun.fixes == []


async def legacy_release(make_release, total_editions: int = 10):
    return await make_release(
        track_count=1,
        release_type=ReleaseType.SINGLE,
        total_editions=total_editions,
        is_minted=True,
        mint_fee_paid=False,
    )


def wallet_tokens(uri_hex: str, count: int, start: int = 100) -> list[dict]:
    return [{"NFTokenID": token_id(start + i), "URI": uri_hex} for i in range(count)]


@pytest.mark.asyncio
async def test_sync_from_ledger_uses_custody(session_factory, uow_factory, settings, make_release):
    """total_editions=10 with 4 still in the wallet and sold_count=5 becomes 6."""
    release, tracks = await legacy_release(make_release)
    async with await uow_factory() as uow:
        track = await uow.tracks.get_by_id(tracks[0].id)
        await uow.tracks.set_sold_count(track, 5)

    uri_hex = legacy_track_uri_hex(tracks[0])
    ledger = FakeLedgerClient(
        tokens=wallet_tokens(uri_hex.lower(), 4)
        + wallet_tokens(encode_token_uri("ipfs://unrelated"), 3, start=200)
    )
    engine = ReconciliationEngine(settings, ledger_factory=lambda: ledger)

    result = await run(uow_factory, engine, "sync_from_ledger")

    assert result.errors == []
    assert result.skipped == []
    track_fix = next(f for f in result.fixes if f["entity"] == "track")
    assert (track_fix["was"], track_fix["now"], track_fix["in_wallet"]) == (5, 6, 4)
    assert (await load_tracks(uow_factory, release.id))[0].sold_count == 6
    assert (await load_release(uow_factory, release.id)).sold_editions == 6

    rerun = await run(uow_factory, engine, "sync_from_ledger")
    assert rerun.fixes == []


@pytest.mark.asyncio
async def test_sync_from_ledger_guard_skips_bad_seed_data(
    session_factory, uow_factory, settings, make_release
):
    """More tokens in the wallet than editions means the track is left untouched."""
    release, tracks = await legacy_release(make_release, total_editions=10)
    async with await uow_factory() as uow:
        track = await uow.tracks.get_by_id(tracks[0].id)
        await uow.tracks.set_sold_count(track, 3)

    ledger = FakeLedgerClient(tokens=wallet_tokens(legacy_track_uri_hex(tracks[0]), 12))
    engine = ReconciliationEngine(settings, ledger_factory=lambda: ledger)

    result = await run(uow_factory, engine, "sync_from_ledger")

    assert [s["reason"] for s in result.skipped] == ["in_wallet_exceeds_total_editions"]
    assert all(f["entity"] != "track" for f in result.fixes)
    assert (await load_tracks(uow_factory, release.id))[0].sold_count == 3


@pytest.mark.asyncio
async def test_sync_from_ledger_ignores_paid_releases(uow_factory, settings, make_release):
    await make_release(track_count=1, total_editions=5, is_minted=True, mint_fee_paid=True)
    ledger = FakeLedgerClient()
    engine = ReconciliationEngine(settings, ledger_factory=lambda: ledger)

    result = await run(uow_factory, engine, "sync_from_ledger")

    assert result.checked == 0
    assert ledger.sessions == 0


@pytest.mark.asyncio
async def test_sync_from_ledger_requires_ledger(uow_factory, settings, make_release):
    await legacy_release(make_release)
    engine = ReconciliationEngine(settings)

    with pytest.raises(ReconciliationError):
        await run(uow_factory, engine, "sync_from_ledger")


@pytest.mark.asyncio
async def test_reset_stale_reservations(session_factory, uow_factory, settings, make_release):
    _, tracks = await make_release(track_count=1)
    now = utcnow()
    stale = unit(tracks[0], 1, 1, status=NFTStatus.PENDING, updated_at=now - timedelta(minutes=30))
    fresh = unit(tracks[0], 2, 2, status=NFTStatus.PENDING, updated_at=now)
    sold = unit(tracks[0], 3, 3, status=NFTStatus.SOLD, updated_at=now - timedelta(days=1))
    await add_rows(session_factory, stale, fresh, sold)
    engine = ReconciliationEngine(settings)

    result = await run(uow_factory, engine, "reset_stale_reservations")

    assert [f["id"] for f in result.fixes] == [stale.id]
    async with await uow_factory() as uow:
        assert (await uow.nfts.get_by_token_id(token_id(1))).status == NFTStatus.AVAILABLE
        assert (await uow.nfts.get_by_token_id(token_id(2))).status == NFTStatus.PENDING
        assert (await uow.nfts.get_by_token_id(token_id(3))).status == NFTStatus.SOLD


@pytest.mark.asyncio
async def test_reset_stale_reservations_custom_threshold(
    session_factory, uow_factory, settings, make_release
):
    _, tracks = await make_release(track_count=1)
    reserved = unit(
        tracks[0], 1, 1, status=NFTStatus.PENDING, updated_at=utcnow() - timedelta(minutes=3)
    )
    await add_rows(session_factory, reserved)
    engine = ReconciliationEngine(settings)

    async with await uow_factory() as uow:
        default = await engine.reset_stale_reservations(uow, dry_run=True)
    async with await uow_factory() as uow:
        short = await engine.reset_stale_reservations(uow, older_than_minutes=1, dry_run=True)

    assert default.fixes == []
    assert [f["id"] for f in short.fixes] == [reserved.id]


@pytest.mark.asyncio
async def test_backfill_inventory_from_custody(session_factory, uow_factory, settings, make_release):
    """Unindexed tokens are inserted; a token with a sale is recorded as sold to the buyer."""
    release, tracks = await make_release(track_count=2)
    indexed, missing = tracks
    await add_rows(
        session_factory,
        unit(indexed, 1, 1),
        sale(missing, 10, nft_token_id=token_id(101)),
    )
    tokens = wallet_tokens(encode_token_uri(missing.metadata_uri), 3)
    ledger = FakeLedgerClient(tokens=tokens)
    engine = ReconciliationEngine(settings, ledger_factory=lambda: ledger)

    result = await run(uow_factory, engine, "backfill_inventory")

    assert result.errors == []
    assert result.checked == 1
    assert len(result.fixes) == 3

    async with await uow_factory() as uow:
        units = await uow.nfts.list_by_track(missing.id)
    by_token = {u.nft_token_id: u for u in units}
    assert sorted(u.edition_number for u in units) == [1, 2, 3]
    assert by_token[token_id(101)].status == NFTStatus.SOLD
    assert by_token[token_id(101)].owner_address == BUYER
    assert by_token[token_id(100)].status == NFTStatus.AVAILABLE
    assert by_token[token_id(100)].owner_address == PLATFORM_ADDRESS

    rerun = await run(uow_factory, engine, "backfill_inventory")
    assert rerun.fixes == []


@pytest.mark.asyncio
async def test_backfill_skips_tracks_without_matching_tokens(uow_factory, settings, make_release):
    _, tracks = await make_release(track_count=1)
    ledger = FakeLedgerClient(tokens=wallet_tokens(encode_token_uri("ipfs://other"), 2))
    engine = ReconciliationEngine(settings, ledger_factory=lambda: ledger)

    result = await run(uow_factory, engine, "backfill_inventory")

    assert result.fixes == []
    assert result.skipped == [
        {"entity": "track", "id": tracks[0].id, "reason": "no_matching_tokens"}
    ]


@pytest.mark.asyncio
async def test_diagnose_inventory_flags_missing_sales(
    session_factory, uow_factory, settings, make_release
):
    release, tracks = await legacy_release(make_release, total_editions=10)
    await add_rows(session_factory, sale(tracks[0], 10), sale(tracks[0], 5))
    ledger = FakeLedgerClient(tokens=wallet_tokens(legacy_track_uri_hex(tracks[0]), 4))
    engine = ReconciliationEngine(settings, ledger_factory=lambda: ledger)

    result = await run(uow_factory, engine, "diagnose_inventory", release_id=release.id)

    assert result.dry_run is True
    assert result.fixes == []
    [row] = result.details
    assert row["track_id"] == tracks[0].id
    assert row["is_legacy"] is True
    assert row["in_platform_wallet"] == 4
    assert row["sold_on_chain"] == 6
    assert row["db_sales_count"] == 2
    assert row["missing_sales"] == 4
    assert row["has_discrepancy"] is True


@pytest.mark.asyncio
async def test_run_all_order_and_ledger_optional(session_factory, uow_factory, settings, make_release):
    await make_release(track_count=1)
    without_ledger = ReconciliationEngine(settings)
    with_ledger = ReconciliationEngine(settings, ledger_factory=lambda: FakeLedgerClient())

    async with await uow_factory() as uow:
        results = await without_ledger.run_all(uow)
    assert [r.name for r in results] == ["sync_counters", "renumber_editions"]

    async with await uow_factory() as uow:
        results = await with_ledger.run_all(uow)
    assert [r.name for r in results] == ["sync_counters", "renumber_editions", "sync_from_ledger"]



@pytest.mark.asyncio
async def test_run_all_with_ledger_is_stable_for_legacy_releases(
    session_factory, uow_factory, settings, make_release
):
    """Counter sync leaves legacy tracks to the custody pass, so a second run fixes nothing."""
    release, tracks = await legacy_release(make_release, total_editions=10)
    await add_rows(session_factory, sale(tracks[0], 30), sale(tracks[0], 20))
    ledger = FakeLedgerClient(tokens=wallet_tokens(legacy_track_uri_hex(tracks[0]), 4))
    engine = ReconciliationEngine(settings, ledger_factory=lambda: ledger)

    async with await uow_factory() as uow:
        first = await engine.run_all(uow)

    assert first[0].fixes == []
    assert (await load_tracks(uow_factory, release.id))[0].sold_count == 6

    async with await uow_factory() as uow:
        second = await engine.run_all(uow)

    assert [r.fixes for r in second] == [[], [], []]
    assert (await load_tracks(uow_factory, release.id))[0].sold_count == 6


@pytest.mark.asyncio
async def test_run_pass_unknown_name(uow_factory, settings):
    engine = ReconciliationEngine(settings)

    with pytest.raises(ValueError, match="Unknown reconciliation pass"):
        await run(uow_factory, engine, "drop_everything")
