"""Service error hierarchy for minting, ledger and reconciliation operations.

This module defines the exception hierarchy for service-level errors:
- ServiceError: Base for all service errors
- TransientError: Errors that may succeed on a later attempt (network, timeouts)
- PermanentError: Errors that will not succeed without operator action
"""


class ServiceError(Exception):
    """Base exception for all service errors."""

    pass


class TransientError(ServiceError):
    """Transient error that may succeed on retry.

    Examples:
    - Websocket connection failures
    - Transaction finality timeouts
    - Failed ledger queries
    """

    pass


class PermanentError(ServiceError):
    """Permanent error that will not succeed on retry.

    Examples:
    - Invalid enqueue parameters
    - Missing minter delegation
    - Unknown job or release ids
    """

    pass


# Enqueue / lookup errors
class ValidationError(PermanentError):
    """Mint request rejected before a job is created."""

    pass


class NotFoundError(PermanentError):
    """Requested job or release does not exist."""

    pass


class AuthorizationError(PermanentError):
    """Issuer account has not delegated minting rights to the platform account."""

    pass


# Per-unit mint errors
class UnitMintError(ServiceError):
    """Base exception for a single failed mint submission."""

    pass


class LedgerRejectedError(UnitMintError, PermanentError):
    """Transaction validated with a non-tesSUCCESS result or was refused outright."""

    def __init__(self, message: str, engine_result: str | None = None):
        super().__init__(message)
        self.engine_result = engine_result


class LedgerTimeoutError(UnitMintError, TransientError):
    """Transaction did not reach finality within the submission timeout."""

    pass


class LedgerNetworkError(UnitMintError, TransientError):
    """Transport failure while submitting a transaction."""

    pass


# Ledger session errors
class LedgerConnectionError(TransientError):
    """Failed to open a websocket session to the ledger."""

    pass


class LedgerRequestError(TransientError):
    """A ledger query returned an error or could not be completed."""

    pass


# Reconciliation errors
class ReconciliationError(ServiceError):
    """Base exception for reconciliation engine errors."""

    pass


class ReconciliationRowError(ReconciliationError):
    """A single track or release update failed during a pass."""

    def __init__(self, entity: str, entity_id: str, cause: Exception):
        super().__init__(f"{entity} {entity_id}: {type(cause).__name__}: {cause}")
        self.entity = entity
        self.entity_id = entity_id
        self.cause = cause
