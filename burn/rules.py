"""
burn/rules.py - Burn rule loading and pure selection analysis.

analyze_selection is pure and deterministic: the same multiset of
(rarity, source) always yields the same analysis or the same rejection.
"""

from pathlib import Path
from typing import Any, Iterable, Mapping, Optional, Sequence, Union

from config import load_burn_rules
from core.constants import CANONICAL_RARITIES, BurnStrategy, StakingSource
from core.exceptions import ConfigurationError, ValidationError
from core.models import BurnAnalysis, BurnGroup, BurnItem, BurnRule, normalize_rarity
from utils.validators import onchain_nft_id, parse_token_id


def parse_rules(raw: Iterable[dict]) -> tuple[BurnRule, ...]:
    rules = []
    for i, entry in enumerate(raw):
        try:
            rule = BurnRule(
                required_rarity=normalize_rarity(entry["required_rarity"]),
                required_count=int(entry["required_count"]),
                result_rarity=normalize_rarity(entry["result_rarity"]),
                tier=int(entry["tier"]) if entry.get("tier") is not None else None,
                result_name=entry.get("result_name"),
            )
        except (KeyError, TypeError, ValueError) as e:
            raise ConfigurationError(f"Invalid burn rule #{i}", details={"rule": entry}) from e
        if rule.required_count < 1:
            raise ConfigurationError(f"Burn rule #{i} needs a positive count", details={"rule": entry})
        rules.append(rule)
    return tuple(rules)


def load_rules(config_dir: Optional[Path] = None) -> tuple[BurnRule, ...]:
    """Load burn rules from config/burn_rules.yaml."""
    return parse_rules(load_burn_rules(config_dir))


def _rarity_order(rarity: str) -> tuple[int, str]:
    if rarity in CANONICAL_RARITIES:
        return CANONICAL_RARITIES.index(rarity), rarity
    return len(CANONICAL_RARITIES), rarity


def _item_key(item: BurnItem) -> tuple[str, str, str]:
    return item.source.value, item.chain_key or "", item.nft_id


def group_selection(items: Sequence[BurnItem]) -> list[BurnGroup]:
    """Group items by normalised rarity, ordered by rarity."""
    groups: dict[str, BurnGroup] = {}
    for item in items:
        rarity = normalize_rarity(item.rarity)
        group = groups.setdefault(rarity, BurnGroup(rarity=rarity))
        if item.source == StakingSource.ONCHAIN:
            group.onchain_items.append(item)
        else:
            group.offchain_items.append(item)
    return [groups[r] for r in sorted(groups, key=_rarity_order)]


def determine_strategy(items: Sequence[BurnItem]) -> BurnStrategy:
    """Strategy from source tags alone."""
    sources = {item.source for item in items}
    if sources == {StakingSource.OFFCHAIN}:
        return BurnStrategy.PURE_OFFCHAIN
    if sources == {StakingSource.ONCHAIN}:
        return BurnStrategy.PURE_ONCHAIN
    return BurnStrategy.MIXED


def analyze_selection(items: Sequence[BurnItem], rules: Sequence[BurnRule]) -> BurnAnalysis:
    """
    Validate a burn selection against the configured rules.

    Raises:
        ValidationError: empty, duplicate, multi-rarity, partial, ambiguous
            or non-matching selections, and on-chain items without a
            chain or token id
    """
    if not items:
        raise ValidationError("Burn selection is empty")

    seen: set[tuple[str, str, str]] = set()
    duplicates = []
    for item in items:
        key = _item_key(item)
        if key in seen:
            duplicates.append(item.nft_id)
        seen.add(key)
    if duplicates:
        raise ValidationError(
            f"Duplicate items in selection: {', '.join(sorted(set(duplicates)))}",
            details={"nft_ids": sorted(set(duplicates))},
        )

    incomplete = [
        item.nft_id for item in items
        if item.source == StakingSource.ONCHAIN and (not item.chain_key or item.token_id is None)
    ]
    if incomplete:
        raise ValidationError(
            "On-chain items need a chain and a token id",
            details={"nft_ids": sorted(incomplete)},
        )

    groups = group_selection(items)
    if len(groups) != 1:
        raise ValidationError(
            "Burn selection must contain a single rarity",
            details={"groups": [g.to_dict() for g in groups]},
        )

    group = groups[0]
    matching = [r for r in rules if r.matches(group.rarity, group.total)]
    if len(matching) > 1:
        raise ValidationError(
            f"Ambiguous burn rules for {group.total} {group.rarity}",
            details={"rules": [r.to_dict() for r in matching]},
        )
    if not matching:
        counts = sorted({r.required_count for r in rules if normalize_rarity(r.required_rarity) == group.rarity})
        if counts:
            message = f"{group.rarity} burns need exactly {' or '.join(map(str, counts))} items, got {group.total}"
        else:
            message = f"No burn rule for {group.rarity}"
        raise ValidationError(message, details={"group": group.to_dict(), "required_counts": counts})

    return BurnAnalysis(groups=tuple(groups), rule=matching[0], strategy=determine_strategy(items))


def parse_selection(raw: Iterable[Union[BurnItem, Mapping[str, Any]]]) -> list[BurnItem]:
    """Build BurnItems from UI payload dicts. BurnItems pass through."""
    items = []
    for entry in raw:
        if isinstance(entry, BurnItem):
            items.append(entry)
            continue
        try:
            source = StakingSource(entry["source"])
            nft_id = str(entry["nft_id"])
            token_id = None
            if source == StakingSource.ONCHAIN:
                token_id = parse_token_id(entry.get("token_id", nft_id))
                if token_id is not None:
                    nft_id = onchain_nft_id(token_id)
            items.append(BurnItem(
                nft_id=nft_id,
                rarity=normalize_rarity(entry.get("rarity")),
                source=source,
                chain_key=entry.get("chain_key"),
                token_id=token_id,
                staked=bool(entry.get("staked", False)),
            ))
        except (KeyError, TypeError, ValueError) as e:
            raise ValidationError(f"Invalid selection item: {entry!r}", details={"item": dict(entry)}) from e
    return items
