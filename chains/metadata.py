"""
chains/metadata.py - Token metadata resolution.

tokenURI -> JSON metadata -> normalised rarity.

Supported URI schemes:
- ipfs://<cid>/path     (via the configured gateway)
- http(s)://...
- data:application/json[;base64],...

Any failure falls back to the default rarity; a stake that already
landed on chain is never lost because metadata is slow or missing.
"""

import base64
import json
from dataclasses import dataclass, field
from typing import Any, Optional
from urllib.parse import unquote_to_bytes

import httpx

from chains.contracts import ChainReader
from core.constants import DEFAULT_RARITY, RARITY_KEYWORDS
from core.exceptions import KilnError
from core.logging import get_logger
from core.models import ChainDescriptor, normalize_rarity

logger = get_logger(__name__)


@dataclass(frozen=True)
class TokenMetadata:
    token_id: int
    rarity: str
    name: Optional[str] = None
    image: Optional[str] = None
    uri: Optional[str] = None
    attributes: tuple = field(default_factory=tuple)
    resolved: bool = True


def to_gateway_url(uri: str, gateway: str) -> str:
    """Rewrite ipfs:// URIs onto an HTTP gateway; other URIs pass through."""
    if not uri.startswith("ipfs://"):
        return uri
    path = uri[len("ipfs://"):]
    if path.startswith("ipfs/"):
        path = path[len("ipfs/"):]
    return gateway.rstrip("/") + "/" + path


def decode_data_uri(uri: str) -> dict:
    """Decode an inline data: URI holding JSON."""
    header, _, payload = uri.partition(",")
    if not header.startswith("data:"):
        raise ValueError("not a data URI")
    if header.endswith(";base64"):
        raw = base64.b64decode(payload)
    else:
        raw = unquote_to_bytes(payload)
    data = json.loads(raw.decode("utf-8"))
    if not isinstance(data, dict):
        raise ValueError("metadata is not a JSON object")
    return data


def rarity_from_metadata(metadata: dict) -> Optional[str]:
    """
    Extract rarity from token metadata.

    Order: "Rarity" attribute, a top-level rarity field, then keywords in
    the token name.
    """
    attributes = metadata.get("attributes")
    if isinstance(attributes, list):
        for attr in attributes:
            if not isinstance(attr, dict):
                continue
            if str(attr.get("trait_type", "")).strip().lower() == "rarity" and attr.get("value"):
                return normalize_rarity(attr["value"])

    if metadata.get("rarity"):
        return normalize_rarity(metadata["rarity"])

    name = str(metadata.get("name") or "").lower()
    for keyword in RARITY_KEYWORDS:
        if keyword in name:
            return normalize_rarity(keyword)
    return None


class MetadataResolver:
    """
    Resolve token metadata from chain.

    Usage:
        resolver = MetadataResolver(reader, "https://gateway.pinata.cloud/ipfs/")
        meta = await resolver.resolve(chain, 42)
    """

    def __init__(
        self,
        reader: ChainReader,
        gateway: str,
        timeout_seconds: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.reader = reader
        self.gateway = gateway
        self.timeout_seconds = timeout_seconds
        self._transport = transport

    async def fetch_json(self, uri: str) -> dict:
        if not uri:
            raise ValueError("empty token URI")
        if uri.startswith("data:"):
            return decode_data_uri(uri)
        url = to_gateway_url(uri, self.gateway)
        async with httpx.AsyncClient(
            timeout=httpx.Timeout(self.timeout_seconds),
            transport=self._transport,
            follow_redirects=True,
        ) as client:
            resp = await client.get(url)
            resp.raise_for_status()
            data: Any = resp.json()
        if not isinstance(data, dict):
            raise ValueError("metadata is not a JSON object")
        return data

    async def resolve(self, chain: ChainDescriptor, token_id: int) -> TokenMetadata:
        uri: Optional[str] = None
        try:
            uri = await self.reader.token_uri(chain, token_id)
            metadata = await self.fetch_json(uri)
        except (KilnError, httpx.HTTPError, ValueError) as e:
            logger.warning(
                f"Metadata unavailable for token {token_id}, using {DEFAULT_RARITY}",
                extra={"context": {"chain_key": chain.key, "token_id": token_id, "uri": uri, "error": str(e)}},
            )
            return TokenMetadata(token_id=token_id, rarity=DEFAULT_RARITY, uri=uri, resolved=False)

        rarity = rarity_from_metadata(metadata) or DEFAULT_RARITY
        image = metadata.get("image")
        return TokenMetadata(
            token_id=token_id,
            rarity=rarity,
            name=metadata.get("name"),
            image=to_gateway_url(image, self.gateway) if isinstance(image, str) else None,
            uri=uri,
            attributes=tuple(metadata.get("attributes") or ()),
        )
