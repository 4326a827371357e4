"""
chains/abi.py - Minimal hand-rolled ABI codec.

Covers only the ERC-721 and staking calls Kiln makes. Selectors are
precomputed: keccak256(signature)[:4].

No event/log decoding lives here; receipts are consumed raw.
"""

from typing import Sequence

from core.exceptions import KilnError
from utils.validators import is_valid_address

# =============================================================================
# SELECTORS
# =============================================================================

# ERC-721
SELECTOR_OWNER_OF = "0x6352211e"               # ownerOf(uint256)
SELECTOR_TOKEN_URI = "0xc87b56dd"              # tokenURI(uint256)
SELECTOR_GET_APPROVED = "0x081812fc"           # getApproved(uint256)
SELECTOR_IS_APPROVED_FOR_ALL = "0xe985e9c5"    # isApprovedForAll(address,address)
SELECTOR_SET_APPROVAL_FOR_ALL = "0xa22cb465"   # setApprovalForAll(address,bool)
SELECTOR_TRANSFER_FROM = "0x23b872dd"          # transferFrom(address,address,uint256)

# Staking (thirdweb Staking721 layout)
SELECTOR_STAKE = "0x0fbf0a93"                  # stake(uint256[])
SELECTOR_WITHDRAW = "0x983d95ce"               # withdraw(uint256[])
SELECTOR_GET_STAKE_INFO = "0xc3453153"         # getStakeInfo(address)
SELECTOR_STAKERS = "0x9168ae72"                # stakers(address)
SELECTOR_STAKING_TOKEN = "0x72f702f3"          # stakingToken()
SELECTOR_STAKER_ADDRESS = "0x94067045"         # stakerAddress(uint256)

WORD = 64  # hex chars per 32-byte word


class ABIDecodeError(KilnError):
    """Return data does not have the expected shape."""


# =============================================================================
# ENCODING
# =============================================================================

def encode_uint(value: int) -> str:
    if value < 0:
        raise ValueError(f"uint cannot be negative: {value}")
    return hex(value)[2:].zfill(WORD)


def encode_address(address: str) -> str:
    if not is_valid_address(address):
        raise ValueError(f"Invalid address: {address}")
    return address[2:].lower().zfill(WORD)


def encode_bool(value: bool) -> str:
    return encode_uint(1 if value else 0)


def encode_uint_array(values: Sequence[int]) -> str:
    """Encode a single dynamic uint256[] argument: offset, length, items."""
    return (
        encode_uint(32)
        + encode_uint(len(values))
        + "".join(encode_uint(v) for v in values)
    )


def encode_owner_of(token_id: int) -> str:
    return f"{SELECTOR_OWNER_OF}{encode_uint(token_id)}"


def encode_token_uri(token_id: int) -> str:
    return f"{SELECTOR_TOKEN_URI}{encode_uint(token_id)}"


def encode_get_approved(token_id: int) -> str:
    return f"{SELECTOR_GET_APPROVED}{encode_uint(token_id)}"


def encode_is_approved_for_all(owner: str, operator: str) -> str:
    return f"{SELECTOR_IS_APPROVED_FOR_ALL}{encode_address(owner)}{encode_address(operator)}"


def encode_set_approval_for_all(operator: str, approved: bool = True) -> str:
    return f"{SELECTOR_SET_APPROVAL_FOR_ALL}{encode_address(operator)}{encode_bool(approved)}"


def encode_transfer_from(from_address: str, to_address: str, token_id: int) -> str:
    return (
        f"{SELECTOR_TRANSFER_FROM}"
        f"{encode_address(from_address)}"
        f"{encode_address(to_address)}"
        f"{encode_uint(token_id)}"
    )


def encode_stake(token_ids: Sequence[int]) -> str:
    return f"{SELECTOR_STAKE}{encode_uint_array(token_ids)}"


def encode_withdraw(token_ids: Sequence[int]) -> str:
    return f"{SELECTOR_WITHDRAW}{encode_uint_array(token_ids)}"


def encode_get_stake_info(staker: str) -> str:
    return f"{SELECTOR_GET_STAKE_INFO}{encode_address(staker)}"


def encode_stakers(staker: str) -> str:
    return f"{SELECTOR_STAKERS}{encode_address(staker)}"


# =============================================================================
# DECODING
# =============================================================================

def _strip(hex_result: str) -> str:
    if not isinstance(hex_result, str):
        raise ABIDecodeError(f"Expected hex string, got {type(hex_result).__name__}")
    data = hex_result[2:] if hex_result.startswith("0x") else hex_result
    if len(data) % 2:
        raise ABIDecodeError("Odd-length hex data", details={"length": len(data)})
    return data


def _word(data: str, index: int) -> str:
    start = index * WORD
    chunk = data[start:start + WORD]
    if len(chunk) != WORD:
        raise ABIDecodeError(
            f"Return data too short: need word {index}, have {len(data) // WORD}",
            details={"data_length": len(data)},
        )
    return chunk


def decode_uint(hex_result: str, index: int = 0) -> int:
    return int(_word(_strip(hex_result), index), 16)


def decode_address(hex_result: str, index: int = 0) -> str:
    word = _word(_strip(hex_result), index)
    return "0x" + word[-40:]


def decode_bool(hex_result: str, index: int = 0) -> bool:
    return decode_uint(hex_result, index) != 0


def _decode_uint_array_at(data: str, offset_bytes: int) -> list[int]:
    base = offset_bytes * 2 // WORD
    length = int(_word(data, base), 16)
    return [int(_word(data, base + 1 + i), 16) for i in range(length)]


def decode_uint_array(hex_result: str) -> list[int]:
    """Decode a single dynamic uint256[] return value."""
    data = _strip(hex_result)
    return _decode_uint_array_at(data, int(_word(data, 0), 16))


def decode_string(hex_result: str) -> str:
    """Decode a single dynamic string return value (tokenURI)."""
    data = _strip(hex_result)
    offset = int(_word(data, 0), 16) * 2
    length_word = data[offset:offset + WORD]
    if len(length_word) != WORD:
        raise ABIDecodeError("String offset out of range")
    length = int(length_word, 16)
    raw = data[offset + WORD:offset + WORD + length * 2]
    if len(raw) != length * 2:
        raise ABIDecodeError("String data truncated", details={"expected_bytes": length})
    return bytes.fromhex(raw).decode("utf-8", errors="replace")


def decode_stake_info(hex_result: str) -> tuple[list[int], int]:
    """
    Decode getStakeInfo(address) -> (uint256[] tokensStaked, uint256 rewards).
    """
    data = _strip(hex_result)
    offset = int(_word(data, 0), 16)
    rewards = int(_word(data, 1), 16)
    return _decode_uint_array_at(data, offset), rewards


def decode_stakers(hex_result: str) -> dict[str, int]:
    """
    Decode stakers(address) ->
    (amountStaked, conditionIdOflastUpdate, timeOfLastUpdate, unclaimedRewards).
    """
    data = _strip(hex_result)
    return {
        "amount_staked": int(_word(data, 0), 16),
        "condition_id": int(_word(data, 1), 16),
        "time_of_last_update": int(_word(data, 2), 16),
        "unclaimed_rewards": int(_word(data, 3), 16),
    }


def call_selector(data: str) -> str:
    """First four bytes of call data as 0x-prefixed lowercase hex."""
    return data[:10].lower()
