"""Locate the token id created by an NFTokenMint in transaction metadata."""

from typing import Any, Iterable

import structlog

logger = structlog.get_logger(__name__)

NFTOKEN_PAGE = "NFTokenPage"


def _token_ids(entries: Iterable[Any] | None) -> set[str]:
    ids = set()
    for entry in entries or []:
        if not isinstance(entry, dict):
            continue
        token = entry.get("NFToken") or {}
        token_id = token.get("NFTokenID") if isinstance(token, dict) else None
        if token_id:
            ids.add(token_id)
    return ids


def extract_token_id(tx_result: dict[str, Any]) -> str | None:
    """Return the id of the token minted by a validated NFTokenMint.

    Prefers the ``nftoken_id`` synthetic field servers attach to the metadata.
    Otherwise diffs the NFTokenPage entries touched by the transaction: ids
    present after (ModifiedNode FinalFields, CreatedNode NewFields) but not
    before (ModifiedNode PreviousFields, DeletedNode FinalFields). A page split
    moves existing tokens between pages, so only the set difference across
    all pages is meaningful.

    Args:
        tx_result: ``result`` of a submit-and-wait / tx response

    Returns:
        The new token id, or None when it is missing or ambiguous
    """
    meta = tx_result.get("meta") if isinstance(tx_result, dict) else None
    if not isinstance(meta, dict):
        return None

    if meta.get("nftoken_id"):
        return meta["nftoken_id"]

    before: set[str] = set()
    after: set[str] = set()

    for node in meta.get("AffectedNodes") or []:
        if not isinstance(node, dict):
            continue

        modified = node.get("ModifiedNode")
        if isinstance(modified, dict) and modified.get("LedgerEntryType") == NFTOKEN_PAGE:
            previous = modified.get("PreviousFields") or {}
            # Without NFTokens in PreviousFields the page's token list did not change
            if "NFTokens" in previous:
                before |= _token_ids(previous.get("NFTokens"))
                after |= _token_ids((modified.get("FinalFields") or {}).get("NFTokens"))
            continue

        created = node.get("CreatedNode")
        if isinstance(created, dict) and created.get("LedgerEntryType") == NFTOKEN_PAGE:
            after |= _token_ids((created.get("NewFields") or {}).get("NFTokens"))
            continue

        deleted = node.get("DeletedNode")
        if isinstance(deleted, dict) and deleted.get("LedgerEntryType") == NFTOKEN_PAGE:
            before |= _token_ids((deleted.get("FinalFields") or {}).get("NFTokens"))

    new_ids = after - before
    if len(new_ids) == 1:
        return new_ids.pop()

    if new_ids:
        logger.warning("ledger.token_id_ambiguous", candidates=sorted(new_ids))
    return None
