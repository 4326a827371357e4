"""
chains/wallet.py - Wallet provider resolution and write access.

A wallet provider is anything exposing EIP-1193 style
    request(method, params) -> result
plus an explicit set of capability flags (e.g. {"metamask"}).
Detection reads capability flags, never property sniffing.
"""

from dataclasses import dataclass
from typing import Any, FrozenSet, Iterable, Optional, Protocol, Sequence, Union, runtime_checkable

from core.constants import (
    WALLET_UNRECOGNIZED_CHAIN_CODE,
    WALLET_USER_REJECTED_CODE,
)
from core.exceptions import (
    ChainSwitchError,
    KilnError,
    ProviderUnavailableError,
    UserRejectedError,
)
from core.logging import get_logger
from core.models import ChainDescriptor
from utils.validators import is_valid_address

logger = get_logger(__name__)

_REJECTION_MARKERS = ("user rejected", "user denied", "action_rejected", "rejected by user")


class WalletRequestError(Exception):
    """Error raised by a wallet provider (EIP-1193 ProviderRpcError)."""

    def __init__(self, code: int, message: str, data: Any = None):
        super().__init__(f"{code}: {message}")
        self.code = code
        self.message = message
        self.data = data


@runtime_checkable
class WalletProvider(Protocol):
    flags: FrozenSet[str]

    async def request(self, method: str, params: list | None = None) -> Any:
        ...


def describe_providers(providers: Sequence[WalletProvider]) -> list[list[str]]:
    """Flag sets of the given providers, for diagnostics."""
    return [sorted(getattr(p, "flags", ())) for p in providers]


def is_user_rejection(error: BaseException) -> bool:
    if isinstance(error, WalletRequestError) and error.code == WALLET_USER_REJECTED_CODE:
        return True
    text = str(error).lower()
    return any(marker in text for marker in _REJECTION_MARKERS)


# =============================================================================
# RESOLUTION
# =============================================================================

@dataclass(frozen=True)
class NoProvider:
    reason: str = "no matching wallet provider"


@dataclass(frozen=True)
class SingleProvider:
    provider: WalletProvider


@dataclass(frozen=True)
class AmbiguousProviders:
    providers: tuple


ProviderResolution = Union[NoProvider, SingleProvider, AmbiguousProviders]


class ProviderResolver:
    """
    Deterministically pick one write-capable provider.

    A provider matches when it carries every required flag and none of the
    excluded ones, e.g. required={"metamask"}, excluded={"phantom"}.
    """

    def __init__(
        self,
        providers: Iterable[WalletProvider],
        required_flags: Iterable[str] = ("metamask",),
        excluded_flags: Iterable[str] = ("phantom",),
    ):
        self.providers = list(providers)
        self.required_flags = frozenset(required_flags)
        self.excluded_flags = frozenset(excluded_flags)

    def matches(self, provider: WalletProvider) -> bool:
        flags = frozenset(getattr(provider, "flags", frozenset()))
        return self.required_flags <= flags and not (self.excluded_flags & flags)

    def resolve(self) -> ProviderResolution:
        matched = [p for p in self.providers if self.matches(p)]
        if not matched:
            return NoProvider(
                f"no provider with flags {sorted(self.required_flags)} "
                f"excluding {sorted(self.excluded_flags)}"
            )
        if len(matched) > 1:
            return AmbiguousProviders(tuple(matched))
        return SingleProvider(matched[0])

    def require(self) -> WalletProvider:
        resolution = self.resolve()
        if isinstance(resolution, SingleProvider):
            return resolution.provider
        if isinstance(resolution, AmbiguousProviders):
            raise ProviderUnavailableError(
                f"{len(resolution.providers)} wallet providers match; refusing to guess",
                details={"matches": describe_providers(resolution.providers)},
            )
        raise ProviderUnavailableError(resolution.reason)


# =============================================================================
# WRITE HANDLE
# =============================================================================

class WalletSigner:
    """
    Write handle over a resolved wallet provider.

    Translates wallet errors into KilnError kinds. Reads should go through
    RPCFailoverClient, never through this handle.
    """

    def __init__(self, provider: WalletProvider, chain: Optional[ChainDescriptor] = None):
        self.provider = provider
        self.chain = chain

    async def request(self, method: str, params: list | None = None) -> Any:
        try:
            return await self.provider.request(method, params)
        except WalletRequestError as e:
            if is_user_rejection(e):
                raise UserRejectedError(
                    f"User rejected {method}",
                    details={"method": method, "code": e.code, "reason": e.message},
                ) from e
            raise KilnError(
                f"Wallet error on {method}: {e.message}",
                details={"method": method, "code": e.code},
            ) from e

    async def get_account(self) -> str:
        """Connected account, requesting access if none is exposed yet."""
        accounts = await self.request("eth_accounts")
        if not accounts:
            accounts = await self.request("eth_requestAccounts")
        if not accounts or not is_valid_address(accounts[0]):
            raise ProviderUnavailableError("Wallet exposes no account")
        return accounts[0]

    async def get_chain_id(self) -> int:
        value = await self.request("eth_chainId")
        return int(value, 16) if isinstance(value, str) else int(value)

    async def send_transaction(self, tx: dict) -> Any:
        """Submit a transaction; returns the raw submission response."""
        return await self.request("eth_sendTransaction", [tx])

    async def switch_to(self, chain: ChainDescriptor) -> None:
        """
        Ask the wallet to switch networks, adding the chain once if unknown.

        Raises:
            UserRejectedError: user declined either prompt
            ChainSwitchError: provider failed after the add-chain retry
        """
        params = [{"chainId": chain.chain_id_hex}]
        try:
            await self.provider.request("wallet_switchEthereumChain", params)
            return
        except WalletRequestError as e:
            if is_user_rejection(e):
                raise UserRejectedError(
                    f"User rejected switch to {chain.name}",
                    details={"chain_key": chain.key, "code": e.code},
                ) from e
            if e.code != WALLET_UNRECOGNIZED_CHAIN_CODE:
                raise ChainSwitchError(
                    f"Failed to switch to {chain.name}: {e.message}",
                    details={"chain_key": chain.key, "code": e.code, "reason": e.message},
                ) from e

        logger.info(
            f"Chain {chain.key} unknown to wallet, adding it",
            extra={"context": {"chain_key": chain.key, "chain_id": chain.chain_id}},
        )
        try:
            await self.provider.request("wallet_addEthereumChain", [chain.add_chain_params()])
            await self.provider.request("wallet_switchEthereumChain", params)
        except WalletRequestError as e:
            if is_user_rejection(e):
                raise UserRejectedError(
                    f"User rejected adding {chain.name}",
                    details={"chain_key": chain.key, "code": e.code},
                ) from e
            raise ChainSwitchError(
                f"Failed to add and switch to {chain.name}: {e.message}",
                details={"chain_key": chain.key, "code": e.code, "reason": e.message},
            ) from e


