"""Token URI encoding helpers.

The ledger stores an NFToken URI as hex-encoded UTF-8. Ledger responses may
return the hex in either case, so comparisons go through normalize_uri_hex.
"""

from xrpl.utils import hex_to_str, str_to_hex


def ipfs_uri(cid: str) -> str:
    """Build the ipfs:// URI for a metadata CID."""
    return f"ipfs://{cid}"


def encode_token_uri(uri: str) -> str:
    """Encode a URI as the upper-case hex string NFTokenMint expects."""
    return str_to_hex(uri).upper()


def decode_token_uri(uri_hex: str | None) -> str | None:
    """Decode a hex token URI, returning None for missing or malformed input."""
    if not uri_hex:
        return None
    try:
        return hex_to_str(uri_hex)
    except (ValueError, UnicodeDecodeError):
        return None


def normalize_uri_hex(uri_hex: str | None) -> str:
    """Canonical form used for grouping and comparing token URIs."""
    return (uri_hex or "").upper()
