# PATH: utils/validators.py
"""
Validation utilities for Kiln.

Provides validators for addresses, tx hashes and token ids, plus
ledger nft id helpers.
"""

import re
from typing import Any, Optional, Union

from core.constants import ONCHAIN_NFT_PREFIX

_ADDRESS_RE = re.compile(r"^0x[a-fA-F0-9]{40}$")
_TX_HASH_RE = re.compile(r"^0x[a-fA-F0-9]{64}$")


def is_valid_address(address: str) -> bool:
    """
    Check if string is a valid Ethereum address.

    Args:
        address: String to validate

    Returns:
        True if valid 0x-prefixed 40-char hex address
    """
    if not isinstance(address, str):
        return False
    return bool(_ADDRESS_RE.match(address))


def same_address(a: Optional[str], b: Optional[str]) -> bool:
    """Case-insensitive address comparison; None never matches."""
    if not a or not b:
        return False
    return a.lower() == b.lower()


def is_valid_tx_hash(value: Any) -> bool:
    """True for a 0x-prefixed 32-byte hex string."""
    if not isinstance(value, str):
        return False
    return bool(_TX_HASH_RE.match(value))


def parse_token_id(value: Union[str, int, None]) -> Optional[int]:
    """
    Parse a token id from the encodings seen in the wild.

    Accepts ints, decimal strings, 0x-hex strings and "onchain_<id>"
    ledger ids. Returns None when the value is not a non-negative integer.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value if value >= 0 else None
    text = str(value).strip()
    if text.startswith(ONCHAIN_NFT_PREFIX):
        text = text[len(ONCHAIN_NFT_PREFIX):]
    try:
        parsed = int(text, 16) if text.lower().startswith("0x") else int(text)
    except ValueError:
        return None
    return parsed if parsed >= 0 else None


def onchain_nft_id(token_id: Union[str, int]) -> str:
    """Ledger id for an on-chain token: onchain_<decimal id>."""
    parsed = parse_token_id(token_id)
    if parsed is None:
        raise ValueError(f"Invalid token id: {token_id!r}")
    return f"{ONCHAIN_NFT_PREFIX}{parsed}"


def is_onchain_nft_id(nft_id: str) -> bool:
    return isinstance(nft_id, str) and nft_id.startswith(ONCHAIN_NFT_PREFIX)


def clamp(value: float, min_val: float, max_val: float) -> float:
    """
    Clamp value to range [min_val, max_val].

    Args:
        value: Value to clamp
        min_val: Minimum value
        max_val: Maximum value

    Returns:
        Clamped value
    """
    return max(min_val, min(value, max_val))
