# PATH: tests/fakes.py
"""
In-memory EVM network and EIP-1193 wallet for tests.

FakeNetwork serves JSON-RPC for every FakeChain through httpx.MockTransport,
routed by endpoint host. Hosts listed in `dead_hosts` fail with a connect
error. FakeWallet applies writes directly to the chain it is connected to.
"""

import itertools
import json
import shutil
from collections import Counter
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional
from urllib.parse import urlparse

import httpx
import yaml

from chains import abi
from chains.wallet import WalletRequestError
from config import CONFIG_DIR
from core.constants import (
    DEFAULT_FALLBACK_GAS_PRICE_WEI,
    DEFAULT_GAS_LADDER,
    WALLET_UNRECOGNIZED_CHAIN_CODE,
    WALLET_USER_REJECTED_CODE,
    ZERO_ADDRESS,
)
from core.models import ChainContracts, ChainDescriptor, NativeCurrency

WALLET = "0x1111111111111111111111111111111111111111"
OTHER_WALLET = "0x2222222222222222222222222222222222222222"

ONE_ETH = 10**18


def nft_address(n: int) -> str:
    return "0x" + "a" * 38 + f"{n:02x}"


def stake_address(n: int) -> str:
    return "0x" + "5" * 38 + f"{n:02x}"


def make_chain(
    key: str,
    chain_id: int,
    hosts: list[str],
    index: int = 1,
    with_stake: bool = True,
    min_gas_balance_wei: int = 10**15,
) -> ChainDescriptor:
    return ChainDescriptor(
        key=key,
        chain_id=chain_id,
        name=key.replace("_", " ").title(),
        network=key.lower(),
        rpc_endpoints=tuple(f"https://{h}/rpc" for h in hosts),
        contracts=ChainContracts(
            nft_contract=nft_address(index),
            stake_contract=stake_address(index) if with_stake else None,
        ),
        native_currency=NativeCurrency("Ether", "ETH", 18),
        block_explorer_urls=(f"https://explorer.{key.lower()}.test/",),
        gas_ladder=DEFAULT_GAS_LADDER,
        fallback_gas_price_wei=DEFAULT_FALLBACK_GAS_PRICE_WEI,
        min_gas_balance_wei=min_gas_balance_wei,
    )


# =============================================================================
# ABI helpers (test side)
# =============================================================================

def _args(data: str) -> str:
    return data[10:]


def _word(args: str, i: int) -> str:
    return args[i * 64:(i + 1) * 64]


def _arg_uint(args: str, i: int) -> int:
    return int(_word(args, i), 16)


def _arg_address(args: str, i: int) -> str:
    return "0x" + _word(args, i)[-40:]


def _arg_uint_array(args: str) -> list[int]:
    base = _arg_uint(args, 0) // 32
    length = _arg_uint(args, base)
    return [_arg_uint(args, base + 1 + k) for k in range(length)]


def encode_string(value: str) -> str:
    raw = value.encode("utf-8").hex()
    padded = raw + "0" * (-len(raw) % 64)
    return "0x" + abi.encode_uint(32) + abi.encode_uint(len(value.encode("utf-8"))) + padded


def encode_stake_info(token_ids: list[int], rewards: int = 0) -> str:
    return (
        "0x"
        + abi.encode_uint(64)
        + abi.encode_uint(rewards)
        + abi.encode_uint(len(token_ids))
        + "".join(abi.encode_uint(t) for t in token_ids)
    )


def data_uri(metadata: dict) -> str:
    return "data:application/json," + json.dumps(metadata).replace("%", "%25").replace("#", "%23")


class RPCFault(Exception):
    def __init__(self, code: int, message: str):
        super().__init__(message)
        self.code = code
        self.message = message


def revert(reason: str) -> RPCFault:
    return RPCFault(3, f"execution reverted: {reason}")


# =============================================================================
# CHAIN
# =============================================================================

@dataclass
class FakeChain:
    descriptor: ChainDescriptor
    owners: dict[int, str] = field(default_factory=dict)
    token_uris: dict[int, str] = field(default_factory=dict)
    operator_approvals: set[tuple[str, str]] = field(default_factory=set)
    token_approvals: dict[int, str] = field(default_factory=dict)
    balances: dict[str, int] = field(default_factory=dict)
    staked: dict[str, list[int]] = field(default_factory=dict)
    stake_times: dict[str, int] = field(default_factory=dict)
    rewards: dict[str, int] = field(default_factory=dict)
    blocks: list[list[dict]] = field(default_factory=lambda: [[]])
    receipts: dict[str, dict] = field(default_factory=dict)
    gas_price: int = 2 * 10**9
    estimate_broken: bool = False
    withhold_receipts: bool = False
    approval_lag: int = 0
    clock: int = 1_700_000_000
    requests: list[str] = field(default_factory=list)

    _hashes = itertools.count(1)

    @property
    def nft(self) -> str:
        return self.descriptor.contracts.nft_contract.lower()

    @property
    def stake(self) -> str:
        return (self.descriptor.contracts.stake_contract or "").lower()

    # -- setup ----------------------------------------------------------------

    def mint(self, token_id: int, owner: str, rarity: Optional[str] = "Common") -> None:
        self.owners[token_id] = owner.lower()
        meta = {"name": f"Token #{token_id}"}
        if rarity:
            meta["attributes"] = [{"trait_type": "Rarity", "value": rarity}]
        self.token_uris[token_id] = data_uri(meta)

    def fund(self, address: str, wei: int) -> None:
        self.balances[address.lower()] = wei

    def stake_directly(self, staker: str, token_id: int) -> None:
        self.owners[token_id] = self.stake
        self.staked.setdefault(staker.lower(), []).append(token_id)
        self.stake_times[staker.lower()] = self.clock

    def owner_of(self, token_id: int) -> Optional[str]:
        return self.owners.get(token_id)

    def sent_to(self, selector: str) -> list[dict]:
        return [
            tx for block in self.blocks for tx in block
            if abi.call_selector(tx["input"]) == selector
        ]

    @property
    def transactions(self) -> list[dict]:
        return [tx for block in self.blocks for tx in block]

    # -- JSON-RPC -------------------------------------------------------------

    def handle(self, method: str, params: list) -> Any:
        self.requests.append(method)
        if method == "eth_chainId":
            return hex(self.descriptor.chain_id)
        if method == "eth_blockNumber":
            return hex(len(self.blocks) - 1)
        if method == "eth_getBlockByNumber":
            tag = params[0]
            number = len(self.blocks) - 1 if tag == "latest" else int(tag, 16)
            if number >= len(self.blocks):
                return None
            return {"number": hex(number), "transactions": list(self.blocks[number])}
        if method == "eth_getBalance":
            return hex(self.balances.get(params[0].lower(), 0))
        if method == "eth_gasPrice":
            return hex(self.gas_price)
        if method == "eth_estimateGas":
            if self.estimate_broken:
                raise RPCFault(-32000, "gas estimation failed")
            tx = params[0]
            self._check(tx["from"], tx["to"], tx["data"])
            return hex(60_000)
        if method == "eth_getTransactionReceipt":
            if self.withhold_receipts:
                return None
            return self.receipts.get(params[0])
        if method == "eth_call":
            tx = params[0]
            return self._call(tx["to"].lower(), tx["data"], tx.get("from"))
        raise RPCFault(-32601, f"method {method} not found")

    def _call(self, to: str, data: str, sender: Optional[str]) -> str:
        selector = abi.call_selector(data)
        args = _args(data)
        if to == self.nft:
            if selector == abi.SELECTOR_OWNER_OF:
                owner = self.owners.get(_arg_uint(args, 0))
                if owner is None:
                    raise revert("ERC721: invalid token ID")
                return "0x" + abi.encode_address(owner)
            if selector == abi.SELECTOR_TOKEN_URI:
                return encode_string(self.token_uris.get(_arg_uint(args, 0), ""))
            if selector == abi.SELECTOR_GET_APPROVED:
                return "0x" + abi.encode_address(self.token_approvals.get(_arg_uint(args, 0), ZERO_ADDRESS))
            if selector == abi.SELECTOR_IS_APPROVED_FOR_ALL:
                approved = (_arg_address(args, 0), _arg_address(args, 1)) in self.operator_approvals
                if approved and self.approval_lag > 0:
                    self.approval_lag -= 1
                    approved = False
                return "0x" + abi.encode_bool(approved)
        if to == self.stake:
            if selector == abi.SELECTOR_GET_STAKE_INFO:
                staker = _arg_address(args, 0)
                return encode_stake_info(self.staked.get(staker, []), self.rewards.get(staker, 0))
            if selector == abi.SELECTOR_STAKERS:
                staker = _arg_address(args, 0)
                ids = self.staked.get(staker, [])
                return "0x" + "".join(abi.encode_uint(v) for v in (
                    len(ids), 0, self.stake_times.get(staker, 0) if ids else 0, 0,
                ))
        if sender is not None and selector in (
            abi.SELECTOR_SET_APPROVAL_FOR_ALL, abi.SELECTOR_STAKE,
            abi.SELECTOR_WITHDRAW, abi.SELECTOR_TRANSFER_FROM,
        ):
            self._check(sender, to, data)
        return "0x"

    # -- state transitions ----------------------------------------------------

    def _check(self, sender: str, to: str, data: str) -> None:
        """Raise the revert a transaction would hit, without applying it."""
        sender, to = sender.lower(), to.lower()
        selector = abi.call_selector(data)
        args = _args(data)
        if to == self.nft and selector == abi.SELECTOR_TRANSFER_FROM:
            token_id = _arg_uint(args, 2)
            if self.owners.get(token_id) != _arg_address(args, 0) or sender != _arg_address(args, 0):
                raise revert("ERC721: caller is not token owner")
        elif to == self.stake and selector == abi.SELECTOR_STAKE:
            for token_id in _arg_uint_array(args):
                if self.owners.get(token_id) != sender:
                    raise revert("Not owner")
                if (sender, self.stake) not in self.operator_approvals and \
                        self.token_approvals.get(token_id, "").lower() != self.stake:
                    raise revert("ERC721: caller is not token owner or approved")
        elif to == self.stake and selector == abi.SELECTOR_WITHDRAW:
            for token_id in _arg_uint_array(args):
                if token_id not in self.staked.get(sender, []):
                    raise revert("Not staker")

    def _apply(self, sender: str, to: str, data: str) -> None:
        selector = abi.call_selector(data)
        args = _args(data)
        if to == self.nft and selector == abi.SELECTOR_SET_APPROVAL_FOR_ALL:
            pair = (sender, _arg_address(args, 0))
            if _arg_uint(args, 1):
                self.operator_approvals.add(pair)
            else:
                self.operator_approvals.discard(pair)
        elif to == self.nft and selector == abi.SELECTOR_TRANSFER_FROM:
            self.owners[_arg_uint(args, 2)] = _arg_address(args, 1)
        elif to == self.stake and selector == abi.SELECTOR_STAKE:
            for token_id in _arg_uint_array(args):
                self.stake_directly(sender, token_id)
        elif to == self.stake and selector == abi.SELECTOR_WITHDRAW:
            for token_id in _arg_uint_array(args):
                self.staked[sender].remove(token_id)
                self.owners[token_id] = sender

    def mine(self, tx: dict) -> str:
        """Execute and mine a transaction in its own block. Returns its hash."""
        sender, to, data = tx["from"].lower(), tx["to"].lower(), tx["data"]
        tx_hash = "0x" + f"{next(self._hashes):064x}"
        try:
            self._check(sender, to, data)
            self._apply(sender, to, data)
            status = "0x1"
        except RPCFault:
            status = "0x0"
        self.clock += 12
        self.blocks.append([{"hash": tx_hash, "from": sender, "to": to, "input": data}])
        self.receipts[tx_hash] = {
            "transactionHash": tx_hash,
            "status": status,
            "blockNumber": hex(len(self.blocks) - 1),
            "gasUsed": hex(55_000),
            "logs": [],
        }
        return tx_hash


# =============================================================================
# NETWORK
# =============================================================================

class FakeNetwork:
    """Routes JSON-RPC over httpx.MockTransport to chains by endpoint host."""

    def __init__(self):
        self.chains: dict[int, FakeChain] = {}
        self.by_host: dict[str, FakeChain] = {}
        self.dead_hosts: set[str] = set()
        self.hits: Counter = Counter()

    def add(self, descriptor: ChainDescriptor) -> FakeChain:
        chain = FakeChain(descriptor)
        self.chains[descriptor.chain_id] = chain
        for url in descriptor.rpc_endpoints:
            self.by_host[urlparse(url).hostname] = chain
        return chain

    def chain(self, chain_id: int) -> FakeChain:
        return self.chains[chain_id]

    def kill(self, *hosts: str) -> None:
        self.dead_hosts.update(hosts)

    def kill_chain(self, chain_id: int) -> None:
        for host, chain in self.by_host.items():
            if chain.descriptor.chain_id == chain_id:
                self.dead_hosts.add(host)

    def handler(self, request: httpx.Request) -> httpx.Response:
        host = request.url.host
        self.hits[host] += 1
        if host in self.dead_hosts or host not in self.by_host:
            raise httpx.ConnectError(f"connection refused: {host}", request=request)

        payload = json.loads(request.content)
        try:
            result = self.by_host[host].handle(payload["method"], payload.get("params") or [])
        except RPCFault as fault:
            body = {"jsonrpc": "2.0", "id": payload["id"], "error": {"code": fault.code, "message": fault.message}}
        else:
            body = {"jsonrpc": "2.0", "id": payload["id"], "result": result}
        return httpx.Response(200, json=body)

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)


# =============================================================================
# WALLET
# =============================================================================

class FakeWallet:
    """EIP-1193 provider bound to a FakeNetwork."""

    def __init__(
        self,
        network: FakeNetwork,
        chain_id: int,
        account: str = WALLET,
        flags: tuple[str, ...] = ("metamask",),
        known_chain_ids: Optional[set[int]] = None,
    ):
        self.network = network
        self.chain_id = chain_id
        self.accounts = [account]
        self.flags = frozenset(flags)
        self.known_chain_ids = set(known_chain_ids) if known_chain_ids is not None else set(network.chains)
        self.reject_methods: set[str] = set()
        self.reject_send_at: Optional[int] = None
        self.ignore_switch = False
        self.omit_hash = False
        # accepted by the wallet but never broadcast
        self.drop_submissions = False
        self.calls: list[tuple[str, Any]] = []
        self.sent: list[tuple[int, dict]] = []

    async def request(self, method: str, params: Optional[list] = None) -> Any:
        self.calls.append((method, params))
        if method in self.reject_methods:
            raise WalletRequestError(WALLET_USER_REJECTED_CODE, "User rejected the request.")

        if method in ("eth_accounts", "eth_requestAccounts"):
            return list(self.accounts)
        if method == "eth_chainId":
            return hex(self.chain_id)
        if method == "wallet_switchEthereumChain":
            target = int(params[0]["chainId"], 16)
            if target not in self.known_chain_ids:
                raise WalletRequestError(WALLET_UNRECOGNIZED_CHAIN_CODE, "Unrecognized chain ID")
            if not self.ignore_switch:
                self.chain_id = target
            return None
        if method == "wallet_addEthereumChain":
            self.known_chain_ids.add(int(params[0]["chainId"], 16))
            return None
        if method == "eth_sendTransaction":
            if self.reject_send_at is not None and len(self.sent) == self.reject_send_at:
                raise WalletRequestError(WALLET_USER_REJECTED_CODE, "User denied transaction signature.")
            tx = params[0]
            self.sent.append((self.chain_id, tx))
            if self.drop_submissions:
                return {"status": "sent"}
            tx_hash = self.network.chain(self.chain_id).mine(tx)
            return {"status": "sent"} if self.omit_hash else tx_hash
        raise WalletRequestError(4200, f"Unsupported method {method}")

    def sent_on(self, chain_id: int) -> list[dict]:
        return [tx for cid, tx in self.sent if cid == chain_id]


async def no_sleep(_: float) -> None:
    return None


def write_config_dir(path: Path, chains: list[ChainDescriptor], default_chain: str) -> Path:
    """Write chains.yaml for the given descriptors plus the shipped burn rules."""
    path.mkdir(parents=True, exist_ok=True)
    data = {
        "default_chain": default_chain,
        "chains": {
            chain.key: {
                "chain_id": chain.chain_id,
                "name": chain.name,
                "network": chain.network,
                "native_currency": chain.native_currency.to_dict(),
                "rpc_endpoints": list(chain.rpc_endpoints),
                "contracts": chain.contracts.to_dict(),
                "gas": {"ladder": list(chain.gas_ladder)},
            }
            for chain in chains
        },
    }
    (path / "chains.yaml").write_text(yaml.safe_dump(data), encoding="utf-8")
    shutil.copy(CONFIG_DIR / "burn_rules.yaml", path / "burn_rules.yaml")
    return path
