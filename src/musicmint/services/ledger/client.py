"""XRP Ledger client adapter used by the mint worker and reconciliation engine."""

import asyncio
from dataclasses import dataclass
from typing import Any, AsyncIterator, Callable

import structlog
from xrpl.asyncio.clients import AsyncWebsocketClient
from xrpl.asyncio.transaction import (
    XRPLReliableSubmissionException,
    autofill_and_sign,
    submit_and_wait,
)
from xrpl.models.requests import AccountInfo, AccountNFTs, Request
from xrpl.models.response import Response
from xrpl.models.transactions import NFTokenMint, NFTokenMintFlag
from xrpl.wallet import Wallet

from musicmint.core.config import Settings
from musicmint.services.exceptions import (
    AuthorizationError,
    LedgerConnectionError,
    LedgerNetworkError,
    LedgerRejectedError,
    LedgerRequestError,
    LedgerTimeoutError,
)
from musicmint.services.ledger.metadata import extract_token_id

logger = structlog.get_logger(__name__)

TES_SUCCESS = "tesSUCCESS"


@dataclass
class MintResult:
    """Outcome of a validated NFTokenMint.

    token_id is None when the id could not be located in the metadata; the
    token exists on the ledger but is not indexed.
    """

    tx_hash: str | None
    token_id: str | None
    engine_result: str = TES_SUCCESS


class LedgerClient:
    """Scoped websocket session to the ledger plus the platform signing wallet.

    Use as an async context manager so the connection is released on every
    exit path:

        async with LedgerClient(url, seed) as ledger:
            await ledger.verify_minter_authorization(issuer, ledger.platform_address)
    """

    def __init__(
        self,
        url: str,
        wallet_seed: str,
        page_limit: int = 400,
        transaction_timeout: float = 60,
        client: AsyncWebsocketClient | None = None,
    ):
        """
        Initialize ledger client.

        Args:
            url: Websocket URL of a rippled / clio server
            wallet_seed: Secret seed of the platform wallet that signs mints
            page_limit: account_nfts page size (default: 400, the server maximum)
            transaction_timeout: Max wait for finality per submission in seconds
            client: Optional pre-built websocket client
        """
        self.url = url
        self.page_limit = page_limit
        self.transaction_timeout = transaction_timeout
        self._wallet_seed = wallet_seed
        self._wallet: Wallet | None = None
        self._client = client

    @property
    def wallet(self) -> Wallet:
        if self._wallet is None:
            self._wallet = Wallet.from_seed(self._wallet_seed)
        return self._wallet

    @property
    def platform_address(self) -> str:
        return self.wallet.classic_address

    @property
    def is_connected(self) -> bool:
        return self._client is not None and self._client.is_open()

    async def connect(self) -> None:
        """Open the websocket session.

        Raises:
            LedgerConnectionError: If the server cannot be reached
        """
        if self.is_connected:
            return
        if self._client is None:
            self._client = AsyncWebsocketClient(self.url)
        try:
            await self._client.open()
        except Exception as e:
            logger.error("ledger.connect_failed", url=self.url, error=str(e))
            raise LedgerConnectionError(f"Failed to connect to ledger at {self.url}: {e}") from e
        logger.info("ledger.connected", url=self.url)

    async def disconnect(self) -> None:
        if self._client is not None and self._client.is_open():
            await self._client.close()
            logger.info("ledger.disconnected", url=self.url)

    async def __aenter__(self) -> "LedgerClient":
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> bool:
        await self.disconnect()
        return False

    async def _send(self, request: Request) -> Response:
        if self._client is None:
            raise LedgerRequestError("Ledger client is not connected")
        try:
            return await self._client.request(request)
        except Exception as e:
            raise LedgerRequestError(f"{request.method.value} request failed: {e}") from e

    async def _request(self, request: Request) -> dict[str, Any]:
        response = await self._send(request)
        if not response.is_successful():
            error = response.result.get("error", "unknown_error")
            raise LedgerRequestError(f"{request.method.value} returned {error}")
        return response.result

    async def list_account_tokens(self, address: str) -> AsyncIterator[dict[str, Any]]:
        """Yield every token held by an account, following the paging marker.

        A failed page raises instead of ending the iteration early, so callers
        never mistake a partial listing for the full one. Each call starts over
        from the first page.

        Raises:
            LedgerRequestError: If any page request fails
        """
        marker = None
        page = 0
        while True:
            result = await self._request(
                AccountNFTs(account=address, limit=self.page_limit, marker=marker)
            )
            page += 1
            for token in result.get("account_nfts", []):
                yield token
            marker = result.get("marker")
            if not marker:
                break
        logger.debug("ledger.account_tokens_listed", address=address, pages=page)

    async def collect_account_tokens(self, address: str) -> list[dict[str, Any]]:
        return [token async for token in self.list_account_tokens(address)]

    async def mint_token(
        self,
        issuer: str,
        owner_account: str,
        uri_hex: str,
        transfer_fee: int,
        taxon: int,
    ) -> MintResult:
        """Mint one transferable token and wait for it to validate.

        The transaction is submitted by owner_account (the platform wallet,
        which keeps custody of the new token) on behalf of issuer.

        Args:
            issuer: Artist account the token is issued under
            owner_account: Submitting account; must be the platform wallet
            uri_hex: Hex-encoded token URI
            transfer_fee: Secondary-sale royalty in 1/100000 units (0..50000)
            taxon: NFTokenTaxon grouping editions of one track

        Returns:
            MintResult with the tx hash and the new token id (or None)

        Raises:
            LedgerRejectedError: Transaction failed or validated with a non-success result
            LedgerTimeoutError: No finality within transaction_timeout
            LedgerNetworkError: Transport failure during submission
        """
        if self._client is None:
            raise LedgerNetworkError("Ledger client is not connected")

        tx = NFTokenMint(
            account=owner_account,
            issuer=issuer if issuer != owner_account else None,
            uri=uri_hex,
            flags=NFTokenMintFlag.TF_TRANSFERABLE,
            transfer_fee=transfer_fee,
            nftoken_taxon=taxon,
        )

        try:
            signed = await autofill_and_sign(tx, self._client, self.wallet)
            response = await asyncio.wait_for(
                submit_and_wait(signed, self._client),
                timeout=self.transaction_timeout,
            )
        except asyncio.TimeoutError as e:
            raise LedgerTimeoutError(
                f"Mint not validated within {self.transaction_timeout}s"
            ) from e
        except XRPLReliableSubmissionException as e:
            raise LedgerRejectedError(f"Mint rejected: {e}") from e
        except Exception as e:
            raise LedgerNetworkError(f"Mint submission failed: {e}") from e

        result = response.result
        engine_result = (result.get("meta") or {}).get("TransactionResult")
        if not response.is_successful() or engine_result != TES_SUCCESS:
            raise LedgerRejectedError(
                f"Mint failed with {engine_result or result.get('error', 'unknown_error')}",
                engine_result=engine_result,
            )

        return MintResult(
            tx_hash=result.get("hash"),
            token_id=extract_token_id(result),
            engine_result=engine_result,
        )

    async def verify_minter_authorization(self, issuer: str, expected_minter: str) -> None:
        """Check that issuer has delegated minting to expected_minter.

        Raises:
            AuthorizationError: Account missing or NFTokenMinter not set to expected_minter
            LedgerRequestError: account_info failed for another reason
        """
        response = await self._send(AccountInfo(account=issuer, ledger_index="validated"))
        if not response.is_successful():
            error = response.result.get("error")
            if error == "actNotFound":
                raise AuthorizationError(f"Issuer account {issuer} not found on ledger")
            raise LedgerRequestError(f"account_info returned {error or 'unknown_error'}")

        minter = (response.result.get("account_data") or {}).get("NFTokenMinter")
        if minter != expected_minter:
            logger.warning(
                "ledger.minter_not_authorized",
                issuer=issuer,
                expected_minter=expected_minter,
                actual_minter=minter,
            )
            raise AuthorizationError("Platform not authorized as minter")


def create_ledger_client(settings: Settings) -> LedgerClient:
    """Build a LedgerClient from application settings."""
    return LedgerClient(
        url=settings.xrpl_url,
        wallet_seed=settings.platform_wallet_seed,
        page_limit=settings.account_nfts_page_limit,
        transaction_timeout=settings.transaction_timeout_seconds,
    )


def ledger_factory_from_settings(settings: Settings) -> Callable[[], LedgerClient]:
    """Return a zero-argument factory producing fresh, unconnected clients."""

    def _factory() -> LedgerClient:
        return create_ledger_client(settings)

    return _factory
