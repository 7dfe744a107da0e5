"""Reconciliation engine for repairing drift between the database and the ledger.

Precedence between the three sources of truth:
- Sale rows are authoritative for sold counters and edition order
- Ledger custody (tokens still in the platform wallet) is authoritative only
  for legacy releases minted before paid mint jobs existed
- track.sold_count and release.sold_editions are caches, always rebuildable

Each pass is idempotent and best-effort: every row write runs in its own
SAVEPOINT, a failing row is recorded in PassResult.errors and the pass moves on.
"""

from collections import Counter, defaultdict
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any, Awaitable, Callable, Iterable

import structlog

from musicmint.core.config import Settings
from musicmint.core.timezone import utcnow
from musicmint.models.nft import InventoryUnit, NFTStatus
from musicmint.models.release import Release, ReleaseType
from musicmint.models.track import Track
from musicmint.services.exceptions import ReconciliationError, ReconciliationRowError
from musicmint.services.ledger.client import LedgerClient
from musicmint.services.ledger.token_uri import encode_token_uri, ipfs_uri, normalize_uri_hex
from musicmint.uow import UnitOfWork

logger = structlog.get_logger(__name__)

PASS_NAMES = (
    "sync_counters",
    "sync_from_ledger",
    "renumber_editions",
    "reset_stale_reservations",
    "backfill_inventory",
    "diagnose_inventory",
)


@dataclass
class PassResult:
    """Result of one reconciliation pass."""

    name: str
    dry_run: bool = False
    checked: int = 0  # Rows (tracks, sales, units) examined
    fixes: list[dict[str, Any]] = field(default_factory=list)  # Writes applied (or planned on dry run)
    skipped: list[dict[str, Any]] = field(default_factory=list)  # Rows deliberately left untouched
    errors: list[str] = field(default_factory=list)  # Per-row failures
    details: list[dict[str, Any]] = field(default_factory=list)  # Report rows (diagnose only)


def release_sold_editions(release: Release, track_counts: Iterable[int]) -> int:
    """Derive release.sold_editions from per-track sold counts.

    An album only counts as sold once every track sold, so it takes the
    minimum. A single has one track; the maximum tolerates stray extras.
    """
    counts = list(track_counts)
    if not counts:
        return 0
    if release.type == ReleaseType.ALBUM:
        return min(counts)
    return max(counts)


def legacy_track_uri_hex(track: Track) -> str | None:
    """URI legacy mints were issued with: always ipfs://<metadata_cid>."""
    if not track.metadata_cid:
        return None
    return encode_token_uri(ipfs_uri(track.metadata_cid))


class ReconciliationEngine:
    """Runs repair passes against a UnitOfWork.

    Passes that need ledger custody (sync_from_ledger, backfill_inventory,
    diagnose_inventory) require a ledger_factory.
    """

    def __init__(
        self,
        settings: Settings,
        ledger_factory: Callable[[], LedgerClient] | None = None,
    ):
        self.settings = settings
        self.ledger_factory = ledger_factory

    async def _apply(
        self,
        uow: UnitOfWork,
        result: PassResult,
        fix: dict[str, Any],
        write: Callable[[], Awaitable[Any]],
    ) -> bool:
        if result.dry_run:
            result.fixes.append(fix)
            return True
        try:
            async with uow.session.begin_nested():
                await write()
        except Exception as e:
            error = ReconciliationRowError(fix["entity"], fix["id"], e)
            result.errors.append(str(error))
            logger.warning(
                "reconcile.row_failed",
                pass_name=result.name,
                entity=fix["entity"],
                entity_id=fix["id"],
                error_type=type(e).__name__,
                error_message=str(e),
            )
            return False
        result.fixes.append(fix)
        return True

    async def _platform_tokens(self) -> tuple[str, list[dict[str, Any]]]:
        if self.ledger_factory is None:
            raise ReconciliationError("No ledger client configured")
        async with self.ledger_factory() as ledger:
            address = self.settings.platform_wallet_address or ledger.platform_address
            tokens = await ledger.collect_account_tokens(address)
        logger.info("reconcile.platform_tokens_loaded", address=address, token_count=len(tokens))
        return address, tokens

    def _finish(self, result: PassResult) -> PassResult:
        logger.info(
            "reconcile.pass_completed",
            pass_name=result.name,
            dry_run=result.dry_run,
            checked=result.checked,
            fixes=len(result.fixes),
            skipped=len(result.skipped),
            errors=len(result.errors),
        )
        return result

    async def _sync_release_counters(
        self,
        uow: UnitOfWork,
        result: PassResult,
        release: Release,
        track_counts: Iterable[int],
    ) -> None:
        sold_editions = release_sold_editions(release, track_counts)
        if release.sold_editions != sold_editions:
            await self._apply(
                uow,
                result,
                {
                    "entity": "release",
                    "id": release.id,
                    "field": "sold_editions",
                    "was": release.sold_editions,
                    "now": sold_editions,
                },
                lambda: uow.releases.set_sold_editions(release, sold_editions),
            )

    async def sync_counters(
        self,
        uow: UnitOfWork,
        release_id: str | None = None,
        dry_run: bool = False,
        skip_legacy: bool = False,
    ) -> PassResult:
        """Pass A: rebuild sold counters from sale rows.

        track.sold_count := count(sales for track); release.sold_editions is
        then derived from the recomputed track values. Only differing rows are
        written, so a second run is a no-op.

        Args:
            skip_legacy: Leave legacy releases alone (their counters come from custody)
        """
        result = PassResult(name="sync_counters", dry_run=dry_run)

        excluded: set[str] = set()
        if skip_legacy:
            excluded = {r.id for r in await uow.releases.list_legacy(release_id)}

        sale_counts = await uow.sales.counts_by_track(release_id)
        tracks = [t for t in await uow.tracks.list_all(release_id) if t.release_id not in excluded]
        tracks_by_release: dict[str, list[int]] = defaultdict(list)

        for track in tracks:
            result.checked += 1
            actual = sale_counts.get(track.id, 0)
            tracks_by_release[track.release_id].append(actual)
            if track.sold_count != actual:
                await self._apply(
                    uow,
                    result,
                    {
                        "entity": "track",
                        "id": track.id,
                        "field": "sold_count",
                        "was": track.sold_count,
                        "now": actual,
                    },
                    lambda track=track, actual=actual: uow.tracks.set_sold_count(track, actual),
                )

        for release in await uow.releases.list_all(release_id):
            if release.id in excluded:
                continue
            await self._sync_release_counters(
                uow, result, release, tracks_by_release.get(release.id, [])
            )

        return self._finish(result)

    async def sync_from_ledger(
        self, uow: UnitOfWork, release_id: str | None = None, dry_run: bool = False
    ) -> PassResult:
        """Pass B: derive legacy sold counts from platform wallet custody.

        For legacy releases only: sold := total_editions - tokens of the
        track's URI still held by the platform wallet. A track with more tokens
        in the wallet than total_editions has bad seed data and is skipped.
        Burned tokens are indistinguishable from sold ones under this formula.

        Raises:
            ReconciliationError: No ledger client configured
            LedgerConnectionError, LedgerRequestError: Custody could not be read
        """
        result = PassResult(name="sync_from_ledger", dry_run=dry_run)

        releases = await uow.releases.list_legacy(release_id)
        if not releases:
            return self._finish(result)

        _, tokens = await self._platform_tokens()
        in_wallet_by_uri = Counter(normalize_uri_hex(token.get("URI")) for token in tokens)

        for release in releases:
            track_values: list[int] = []
            for track in await uow.tracks.get_by_release(release.id):
                uri_hex = legacy_track_uri_hex(track)
                if uri_hex is None:
                    track_values.append(track.sold_count)
                    continue

                result.checked += 1
                in_wallet = in_wallet_by_uri.get(uri_hex, 0)
                if in_wallet > release.total_editions:
                    result.skipped.append(
                        {
                            "entity": "track",
                            "id": track.id,
                            "reason": "in_wallet_exceeds_total_editions",
                            "in_wallet": in_wallet,
                            "total_editions": release.total_editions,
                        }
                    )
                    logger.warning(
                        "reconcile.custody_guard",
                        track_id=track.id,
                        in_wallet=in_wallet,
                        total_editions=release.total_editions,
                    )
                    track_values.append(track.sold_count)
                    continue

                sold = release.total_editions - in_wallet
                track_values.append(sold)
                if track.sold_count != sold:
                    await self._apply(
                        uow,
                        result,
                        {
                            "entity": "track",
                            "id": track.id,
                            "field": "sold_count",
                            "was": track.sold_count,
                            "now": sold,
                            "in_wallet": in_wallet,
                        },
                        lambda track=track, sold=sold: uow.tracks.set_sold_count(track, sold),
                    )

            await self._sync_release_counters(uow, result, release, track_values)

        return self._finish(result)

    async def _set_unit_edition(
        self, uow: UnitOfWork, result: PassResult, unit: InventoryUnit, position: int
    ) -> None:
        if unit.edition_number == position:
            return
        await self._apply(
            uow,
            result,
            {
                "entity": "nft",
                "id": unit.id,
                "field": "edition_number",
                "was": unit.edition_number,
                "now": position,
            },
            lambda: uow.nfts.set_edition_number(unit, position),
        )

    async def renumber_editions(
        self, uow: UnitOfWork, release_id: str | None = None, dry_run: bool = False
    ) -> PassResult:
        """Pass C: number editions by sale chronology.

        Sales of each track ordered by (created_at, id) get edition 1..n, and
        the unit holding the sold token takes the same number. The track's
        remaining units follow as n+1..N in their current edition order, so
        inventory numbering ends up dense with no duplicates.
        """
        result = PassResult(name="renumber_editions", dry_run=dry_run)

        for track in await uow.tracks.list_all(release_id):
            sales = await uow.sales.list_by_track_ordered(track.id)
            sold_unit_ids: set[Any] = set()
            for position, sale in enumerate(sales, start=1):
                result.checked += 1
                if sale.edition_number != position:
                    await self._apply(
                        uow,
                        result,
                        {
                            "entity": "sale",
                            "id": sale.id,
                            "field": "edition_number",
                            "was": sale.edition_number,
                            "now": position,
                        },
                        lambda sale=sale, position=position: uow.sales.set_edition_number(
                            sale, position
                        ),
                    )

                if not sale.nft_token_id:
                    continue
                unit = await uow.nfts.get_by_token_id(sale.nft_token_id)
                if unit is None or unit.id in sold_unit_ids:
                    continue
                sold_unit_ids.add(unit.id)
                await self._set_unit_edition(uow, result, unit, position)

            remaining = [
                unit for unit in await uow.nfts.list_by_track(track.id)
                if unit.id not in sold_unit_ids
            ]
            for position, unit in enumerate(remaining, start=len(sales) + 1):
                result.checked += 1
                await self._set_unit_edition(uow, result, unit, position)

        return self._finish(result)

    async def reset_stale_reservations(
        self,
        uow: UnitOfWork,
        older_than_minutes: int | None = None,
        dry_run: bool = False,
    ) -> PassResult:
        """Return abandoned 'pending' reservations to 'available'.

        Args:
            older_than_minutes: Staleness threshold (default: RESERVATION_TIMEOUT_MINUTES)
        """
        result = PassResult(name="reset_stale_reservations", dry_run=dry_run)
        minutes = (
            older_than_minutes
            if older_than_minutes is not None
            else self.settings.reservation_timeout_minutes
        )
        cutoff = utcnow() - timedelta(minutes=minutes)

        for unit in await uow.nfts.list_stale_pending(cutoff):
            result.checked += 1
            await self._apply(
                uow,
                result,
                {
                    "entity": "nft",
                    "id": unit.id,
                    "field": "status",
                    "was": NFTStatus.PENDING.value,
                    "now": NFTStatus.AVAILABLE.value,
                },
                lambda unit=unit: uow.nfts.set_status(unit, NFTStatus.AVAILABLE),
            )

        return self._finish(result)

    async def backfill_inventory(
        self, uow: UnitOfWork, release_id: str | None = None, dry_run: bool = False
    ) -> PassResult:
        """Insert units for tracks that have none, matched from platform custody.

        Repairs editions that minted but were never indexed. Tokens referenced
        by a sale are inserted as 'sold' to the buyer, others as 'available'.
        """
        result = PassResult(name="backfill_inventory", dry_run=dry_run)

        tracks = [t for t in await uow.tracks.list_all(release_id) if t.metadata_uri]
        unit_counts = await uow.nfts.counts_by_track([t.id for t in tracks])
        missing = [t for t in tracks if unit_counts.get(t.id, 0) == 0]
        if not missing:
            return self._finish(result)

        platform_address, tokens = await self._platform_tokens()
        tokens_by_uri: dict[str, list[str]] = defaultdict(list)
        for token in tokens:
            if token.get("NFTokenID"):
                tokens_by_uri[normalize_uri_hex(token.get("URI"))].append(token["NFTokenID"])

        for track in missing:
            result.checked += 1
            matches = tokens_by_uri.get(encode_token_uri(track.metadata_uri or ""), [])
            if not matches:
                result.skipped.append(
                    {"entity": "track", "id": track.id, "reason": "no_matching_tokens"}
                )
                continue

            edition_number = 0
            for token_id in matches:
                if await uow.nfts.get_by_token_id(token_id) is not None:
                    continue
                edition_number += 1
                sale = await uow.sales.get_latest_by_token_id(token_id)
                unit = InventoryUnit(
                    nft_token_id=token_id,
                    track_id=track.id,
                    release_id=track.release_id,
                    edition_number=edition_number,
                    status=NFTStatus.SOLD if sale else NFTStatus.AVAILABLE,
                    owner_address=sale.buyer_address if sale else platform_address,
                )
                await self._apply(
                    uow,
                    result,
                    {
                        "entity": "nft",
                        "id": token_id,
                        "track_id": track.id,
                        "edition_number": edition_number,
                        "status": unit.status.value,
                    },
                    lambda unit=unit: uow.nfts.add_if_absent(unit),
                )

        return self._finish(result)

    async def diagnose_inventory(
        self, uow: UnitOfWork, release_id: str | None = None
    ) -> PassResult:
        """Read-only comparison of ledger custody with sale and unit rows.

        One details row per track with a metadata CID; rows where the custody
        derived sold count disagrees with the sale count are flagged.
        """
        result = PassResult(name="diagnose_inventory", dry_run=True)

        tracks = [t for t in await uow.tracks.list_all(release_id) if t.metadata_cid]
        if not tracks:
            return self._finish(result)

        _, tokens = await self._platform_tokens()
        in_wallet_by_uri = Counter(normalize_uri_hex(token.get("URI")) for token in tokens)
        sale_counts = await uow.sales.counts_by_track(release_id)
        unit_status = await uow.nfts.status_counts_by_track([t.id for t in tracks])
        releases = {r.id: r for r in await uow.releases.list_all(release_id)}

        for track in tracks:
            release = releases.get(track.release_id)
            if release is None:
                continue
            result.checked += 1
            in_wallet = in_wallet_by_uri.get(legacy_track_uri_hex(track) or "", 0)
            sold_on_chain = release.total_editions - in_wallet
            db_sales = sale_counts.get(track.id, 0)
            row = {
                "track_id": track.id,
                "release_id": release.id,
                "is_legacy": release.is_legacy,
                "total_editions": release.total_editions,
                "in_platform_wallet": in_wallet,
                "sold_on_chain": sold_on_chain,
                "db_sales_count": db_sales,
                "db_sold_units": unit_status.get(track.id, {}).get(NFTStatus.SOLD.value, 0),
                "track_sold_count": track.sold_count,
                "missing_sales": sold_on_chain - db_sales,
                "has_discrepancy": sold_on_chain != db_sales,
            }
            result.details.append(row)

        return self._finish(result)

    async def run_all(
        self, uow: UnitOfWork, release_id: str | None = None, dry_run: bool = False
    ) -> list[PassResult]:
        """Run counter sync, then renumbering, then (with a ledger) custody sync.

        With a ledger, counter sync leaves legacy releases to the custody pass
        so the two passes do not rewrite each other's values on every run.
        """
        results = [
            await self.sync_counters(
                uow,
                release_id=release_id,
                dry_run=dry_run,
                skip_legacy=self.ledger_factory is not None,
            ),
            await self.renumber_editions(uow, release_id=release_id, dry_run=dry_run),
        ]
        if self.ledger_factory is not None:
            results.append(await self.sync_from_ledger(uow, release_id=release_id, dry_run=dry_run))
        return results

    async def run_pass(
        self, uow: UnitOfWork, name: str, release_id: str | None = None, dry_run: bool = False
    ) -> PassResult:
        """Dispatch a single pass by name.

        Raises:
            ValueError: Unknown pass name
        """
        if name == "reset_stale_reservations":
            return await self.reset_stale_reservations(uow, dry_run=dry_run)
        if name == "diagnose_inventory":
            return await self.diagnose_inventory(uow, release_id=release_id)
        if name in PASS_NAMES:
            return await getattr(self, name)(uow, release_id=release_id, dry_run=dry_run)
        raise ValueError(f"Unknown reconciliation pass: {name}")
