"""
chains/contracts.py - Typed reads of the NFT and stake contracts.

Every read goes through RPCFailoverClient; nothing here touches the
wallet provider.
"""

from typing import Optional

from chains import abi
from chains.providers import RPCFailoverClient
from core.exceptions import ConfigurationError
from core.models import ChainDescriptor
from core.retry import RetryPolicy
from utils.validators import same_address


def nft_contract_of(chain: ChainDescriptor) -> str:
    if not chain.contracts.nft_contract:
        raise ConfigurationError(
            f"No NFT contract configured for {chain.key}",
            details={"chain_key": chain.key},
        )
    return chain.contracts.nft_contract


def stake_contract_of(chain: ChainDescriptor) -> str:
    if not chain.contracts.stake_contract:
        raise ConfigurationError(
            f"No stake contract configured for {chain.key}",
            details={"chain_key": chain.key},
        )
    return chain.contracts.stake_contract


class ChainReader:
    """
    Contract reads for one deployment per chain.

    Usage:
        reader = ChainReader(rpc)
        owner = await reader.owner_of(chain, 42)
    """

    def __init__(self, rpc: RPCFailoverClient, policy: Optional[RetryPolicy] = None):
        self.rpc = rpc
        self.policy = policy

    async def _call(self, chain: ChainDescriptor, to: str, data: str) -> str:
        return await self.rpc.eth_call(chain, to, data, policy=self.policy)

    # ERC-721

    async def owner_of(self, chain: ChainDescriptor, token_id: int) -> str:
        result = await self._call(chain, nft_contract_of(chain), abi.encode_owner_of(token_id))
        return abi.decode_address(result)

    async def token_uri(self, chain: ChainDescriptor, token_id: int) -> str:
        result = await self._call(chain, nft_contract_of(chain), abi.encode_token_uri(token_id))
        return abi.decode_string(result)

    async def is_approved_for_all(self, chain: ChainDescriptor, owner: str, operator: str) -> bool:
        result = await self._call(
            chain, nft_contract_of(chain), abi.encode_is_approved_for_all(owner, operator)
        )
        return abi.decode_bool(result)

    async def get_approved(self, chain: ChainDescriptor, token_id: int) -> str:
        result = await self._call(chain, nft_contract_of(chain), abi.encode_get_approved(token_id))
        return abi.decode_address(result)

    async def is_stake_approved(self, chain: ChainDescriptor, owner: str, token_id: int) -> bool:
        """Operator approval for the stake contract, or a per-token approval."""
        stake = stake_contract_of(chain)
        if await self.is_approved_for_all(chain, owner, stake):
            return True
        return same_address(await self.get_approved(chain, token_id), stake)

    # Staking

    async def get_stake_info(self, chain: ChainDescriptor, staker: str) -> tuple[list[int], int]:
        """(staked token ids, pending rewards) for a staker."""
        result = await self._call(chain, stake_contract_of(chain), abi.encode_get_stake_info(staker))
        return abi.decode_stake_info(result)

    async def get_staker(self, chain: ChainDescriptor, staker: str) -> dict[str, int]:
        result = await self._call(chain, stake_contract_of(chain), abi.encode_stakers(staker))
        return abi.decode_stakers(result)

    # Native

    async def native_balance(self, chain: ChainDescriptor, address: str) -> int:
        return await self.rpc.get_balance(chain, address, policy=self.policy)
