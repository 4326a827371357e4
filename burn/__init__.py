"""
burn/ - Burn-to-upgrade.

Modules:
- rules: rule loading and pure selection analysis
- orchestrator: multi-chain burn execution and ledger commit
"""

from burn.orchestrator import BurnOrchestrator, BurnOutcome
from burn.rules import analyze_selection, determine_strategy, load_rules, parse_selection

__all__ = [
    "BurnOrchestrator",
    "BurnOutcome",
    "analyze_selection",
    "determine_strategy",
    "load_rules",
    "parse_selection",
]
