"""pytest fixtures for musicmint tests.

Provides:
- utc_timezone: Autouse fixture enforcing UTC timezone
- engine: Function-scoped file-backed SQLite engine with all tables created
- session_factory / session / uow_factory: Database access at every level
- settings: Test settings (no throttle, small worker intervals)
- FakeLedgerClient: Scripted stand-in for LedgerClient
- make_release: Helper inserting a release with N tracks
"""

import os
from typing import Any, AsyncGenerator

import pytest
import pytest_asyncio
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlmodel import SQLModel

from musicmint import models  # noqa: F401
from musicmint.core.config import Settings
from musicmint.models.release import Release, ReleaseType
from musicmint.models.track import Track
from musicmint.services.ledger.client import MintResult
from musicmint.uow import create_uow_factory

ARTIST_ADDRESS = "rHb9CJAWyB4rj91VRWn96DkukG4bwdtyTh"
OTHER_ADDRESS = "rrrrrrrrrrrrrrrrrrrrrhoLvTp"
PLATFORM_ADDRESS = "rPlatformWallet111111111111111111"


def token_id(n: int) -> str:
    """Deterministic 64-char hex token id."""
    return f"{n:064X}"


class FakeLedgerClient:
    """In-memory LedgerClient double.

    outcomes is consumed one entry per mint_token call: a string is returned
    as the token id, None as an unindexed token, an exception is raised.
    Once exhausted, sequential token ids are generated.
    """

    def __init__(
        self,
        outcomes: list[Any] | None = None,
        tokens: list[dict[str, Any]] | None = None,
        authorization_error: Exception | None = None,
        platform_address: str = PLATFORM_ADDRESS,
    ):
        self.outcomes = list(outcomes or [])
        self.tokens = list(tokens or [])
        self.authorization_error = authorization_error
        self.platform_address = platform_address
        self.mint_calls: list[dict[str, Any]] = []
        self.verify_calls: list[tuple[str, str]] = []
        self.sessions = 0
        self.is_connected = False
        self._next_id = 1

    async def __aenter__(self) -> "FakeLedgerClient":
        self.sessions += 1
        self.is_connected = True
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> bool:
        self.is_connected = False
        return False

    async def verify_minter_authorization(self, issuer: str, expected_minter: str) -> None:
        self.verify_calls.append((issuer, expected_minter))
        if self.authorization_error is not None:
            raise self.authorization_error

    async def mint_token(
        self, issuer: str, owner_account: str, uri_hex: str, transfer_fee: int, taxon: int
    ) -> MintResult:
        self.mint_calls.append(
            {
                "issuer": issuer,
                "owner_account": owner_account,
                "uri_hex": uri_hex,
                "transfer_fee": transfer_fee,
                "taxon": taxon,
            }
        )
        if self.outcomes:
            outcome = self.outcomes.pop(0)
        else:
            outcome = token_id(self._next_id)
            self._next_id += 1

        if isinstance(outcome, Exception):
            raise outcome
        return MintResult(tx_hash=f"TX{len(self.mint_calls):062d}", token_id=outcome)

    async def collect_account_tokens(self, address: str) -> list[dict[str, Any]]:
        return list(self.tokens)


@pytest.fixture(scope="session", autouse=True)
def utc_timezone():
    """Enforce UTC timezone for all tests."""
    os.environ["TZ"] = "UTC"
    yield


@pytest.fixture
def database_url(tmp_path) -> str:
    return f"sqlite+aiosqlite:///{tmp_path / 'musicmint_test.db'}"


@pytest_asyncio.fixture
async def engine(database_url):
    """Provide a fresh database per test.

    pysqlite's own transaction handling does not emit SAVEPOINT correctly,
    so BEGIN is issued explicitly (SQLAlchemy's documented SQLite recipe).
    """
    engine = create_async_engine(database_url)

    @event.listens_for(engine.sync_engine, "connect")
    def do_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def do_begin(conn):
        conn.exec_driver_sql("BEGIN")

    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Function-scoped session; uncommitted changes are rolled back after the test."""
    async with session_factory() as session:
        yield session
        await session.rollback()


@pytest.fixture
def uow_factory(session_factory):
    return create_uow_factory(session_factory)


@pytest.fixture
def settings(database_url) -> Settings:
    return Settings(
        _env_file=None,  # type: ignore[call-arg]
        DATABASE_URL=database_url,
        APP_ENV="test",
        MINT_DELAY_SECONDS=0,
        POLL_INTERVAL_SECONDS=0.01,
        WORKER_ERROR_BACKOFF_SECONDS=0.01,
        MAX_UNITS_PER_JOB=200,
        DEFAULT_TRANSFER_FEE=500,
        ADMIN_SECRET="admin-secret",
    )


@pytest.fixture
def fake_ledger() -> FakeLedgerClient:
    return FakeLedgerClient()


@pytest.fixture
def make_release(session_factory):
    """Insert a committed release with `track_count` tracks.

    Returns:
        Async callable returning (release, tracks)
    """

    async def _make(
        track_count: int = 2,
        artist_address: str = ARTIST_ADDRESS,
        release_type: ReleaseType = ReleaseType.ALBUM,
        total_editions: int = 0,
        is_minted: bool = False,
        mint_fee_paid: bool = False,
        title: str = "Night Drive",
        with_metadata: bool = True,
    ) -> tuple[Release, list[Track]]:
        async with session_factory() as session:
            release = Release(
                title=title,
                artist_address=artist_address,
                type=release_type,
                total_editions=total_editions,
                is_minted=is_minted,
                mint_fee_paid=mint_fee_paid,
            )
            session.add(release)
            await session.flush()

            tracks = []
            for number in range(1, track_count + 1):
                track = Track(
                    release_id=release.id,
                    title=f"Track {number}",
                    track_number=number,
                    metadata_cid=f"bafytrack{number}{release.id[-6:]}" if with_metadata else None,
                )
                session.add(track)
                tracks.append(track)
            await session.commit()
            return release, tracks

    return _make
