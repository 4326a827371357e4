"""
chains/registry.py - Supported chain descriptors.

Built once at start from config/chains.yaml. Descriptors are immutable;
the registry is read-only shared configuration.
"""

import os
import re
from decimal import Decimal
from pathlib import Path
from typing import Any, Iterable, Iterator, Mapping, Optional

from dotenv import load_dotenv

from config import load_chains
from core.constants import (
    DEFAULT_FALLBACK_GAS_PRICE_WEI,
    DEFAULT_GAS_LADDER,
    DEFAULT_MIN_GAS_BALANCE_WEI,
)
from core.exceptions import ConfigurationError, ValidationError
from core.logging import get_logger
from core.models import ChainContracts, ChainDescriptor, NativeCurrency
from utils.validators import is_valid_address

logger = get_logger(__name__)

_PLACEHOLDER_RE = re.compile(r"\$\{([A-Z0-9_]+)\}")


def resolve_endpoints(urls: Iterable[str], env: Mapping[str, str]) -> tuple[str, ...]:
    """
    Resolve ${VAR} placeholders in RPC URLs.

    Endpoints that reference an unset or empty variable are dropped so a
    missing API key never produces a broken URL at the head of the list.
    """
    resolved = []
    for url in urls:
        missing = [name for name in _PLACEHOLDER_RE.findall(url) if not env.get(name)]
        if missing:
            logger.debug(
                "Dropping RPC endpoint with unresolved placeholder",
                extra={"context": {"missing": missing}},
            )
            continue
        resolved.append(_PLACEHOLDER_RE.sub(lambda m: env[m.group(1)], url))
    return tuple(resolved)


def _contract(key: str, kind: str, configured: Optional[str], env: Mapping[str, str]) -> Optional[str]:
    address = env.get(f"KILN_{key}_{kind}_CONTRACT") or configured
    if not address:
        return None
    if not is_valid_address(address):
        raise ConfigurationError(
            f"Invalid {kind.lower()} contract address for {key}: {address}",
            details={"chain_key": key, "address": address},
        )
    return address


def _gwei_to_wei(value: Any) -> int:
    return int(Decimal(str(value)) * Decimal(10**9))


def parse_chain(key: str, data: Mapping[str, Any], env: Mapping[str, str]) -> ChainDescriptor:
    """Build one ChainDescriptor from its YAML mapping."""
    try:
        chain_id = int(data["chain_id"])
        name = str(data["name"])
    except (KeyError, TypeError, ValueError) as e:
        raise ConfigurationError(
            f"Chain {key} is missing chain_id or name",
            details={"chain_key": key},
        ) from e

    currency = data.get("native_currency") or {}
    contracts = data.get("contracts") or {}
    gas = data.get("gas") or {}

    ladder = tuple(int(x) for x in gas.get("ladder") or DEFAULT_GAS_LADDER)
    if list(ladder) != sorted(ladder):
        raise ConfigurationError(
            f"Gas ladder for {key} must be ascending",
            details={"chain_key": key, "ladder": list(ladder)},
        )

    fallback_price = (
        _gwei_to_wei(gas["fallback_gas_price_gwei"])
        if "fallback_gas_price_gwei" in gas
        else DEFAULT_FALLBACK_GAS_PRICE_WEI
    )
    min_balance = (
        int(Decimal(str(gas["min_balance_native"])) * Decimal(10 ** int(currency.get("decimals", 18))))
        if "min_balance_native" in gas
        else DEFAULT_MIN_GAS_BALANCE_WEI
    )

    return ChainDescriptor(
        key=key,
        chain_id=chain_id,
        name=name,
        network=str(data.get("network") or key.lower().replace("_", "-")),
        rpc_endpoints=resolve_endpoints(data.get("rpc_endpoints") or [], env),
        contracts=ChainContracts(
            nft_contract=_contract(key, "NFT", contracts.get("nft_contract"), env),
            stake_contract=_contract(key, "STAKE", contracts.get("stake_contract"), env),
        ),
        native_currency=NativeCurrency(
            name=str(currency.get("name", "Ether")),
            symbol=str(currency.get("symbol", "ETH")),
            decimals=int(currency.get("decimals", 18)),
        ),
        block_explorer_urls=tuple(data.get("block_explorer_urls") or ()),
        is_testnet=bool(data.get("is_testnet", True)),
        gas_ladder=ladder,
        fallback_gas_price_wei=fallback_price,
        min_gas_balance_wei=min_balance,
    )


class ChainRegistry:
    """
    Registry of supported chains, keyed by chain key and by chain id.
    """

    def __init__(self, chains: Iterable[ChainDescriptor], default_key: Optional[str] = None):
        self._by_key: dict[str, ChainDescriptor] = {}
        self._by_id: dict[int, ChainDescriptor] = {}
        for chain in chains:
            if chain.key in self._by_key or chain.chain_id in self._by_id:
                raise ConfigurationError(
                    f"Duplicate chain {chain.key} ({chain.chain_id})",
                    details={"chain_key": chain.key, "chain_id": chain.chain_id},
                )
            self._by_key[chain.key] = chain
            self._by_id[chain.chain_id] = chain

        if not self._by_key:
            raise ConfigurationError("No chains configured")

        if default_key is None:
            default_key = next(iter(self._by_key))
        if default_key not in self._by_key:
            raise ConfigurationError(
                f"Default chain {default_key} is not configured",
                details={"chain_key": default_key},
            )
        self.default_key = default_key

    @classmethod
    def from_config(
        cls,
        config_dir: Optional[Path] = None,
        env: Optional[Mapping[str, str]] = None,
    ) -> "ChainRegistry":
        """Load chains.yaml; env defaults to os.environ after loading .env."""
        if env is None:
            load_dotenv()
            env = os.environ
        data = load_chains(config_dir)
        chains = [
            parse_chain(key, chain_data, env)
            for key, chain_data in (data.get("chains") or {}).items()
        ]
        registry = cls(chains, data.get("default_chain"))
        logger.info(
            f"Loaded {len(registry)} chains",
            extra={"context": {"default_chain": registry.default_key}},
        )
        return registry

    def get(self, key: str) -> ChainDescriptor:
        chain = self._by_key.get(key)
        if chain is None:
            raise ValidationError(
                f"Unsupported chain: {key}",
                details={"chain_key": key, "supported": self.keys},
            )
        return chain

    def by_chain_id(self, chain_id: int) -> Optional[ChainDescriptor]:
        return self._by_id.get(chain_id)

    @property
    def default(self) -> ChainDescriptor:
        return self._by_key[self.default_key]

    @property
    def keys(self) -> list[str]:
        return list(self._by_key)

    def with_stake_contract(self) -> list[ChainDescriptor]:
        return [c for c in self._by_key.values() if c.contracts.stake_contract]

    def __iter__(self) -> Iterator[ChainDescriptor]:
        return iter(self._by_key.values())

    def __len__(self) -> int:
        return len(self._by_key)

    def __contains__(self, key: object) -> bool:
        return key in self._by_key
