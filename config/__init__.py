# PATH: config/__init__.py
"""
Configuration loading utilities for Kiln.
"""

from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml


CONFIG_DIR = Path(__file__).parent


def load_yaml(filename: str, config_dir: Optional[Path] = None) -> Dict[str, Any]:
    """
    Load a YAML configuration file.

    Args:
        filename: Name of file in config directory
        config_dir: Directory override (tests point this at tmp_path)

    Returns:
        Parsed YAML as dict
    """
    filepath = (config_dir or CONFIG_DIR) / filename
    if not filepath.exists():
        raise FileNotFoundError(f"Config file not found: {filepath}")

    with open(filepath, "r", encoding="utf-8") as f:
        return yaml.safe_load(f) or {}


def load_chains(config_dir: Optional[Path] = None) -> Dict[str, Any]:
    """Load chains configuration (default_chain + chains mapping)."""
    return load_yaml("chains.yaml", config_dir)


def load_burn_rules(config_dir: Optional[Path] = None) -> List[Dict[str, Any]]:
    """Load the raw burn rule list."""
    return list(load_yaml("burn_rules.yaml", config_dir).get("rules") or [])


def load_settings_yaml(config_dir: Optional[Path] = None) -> Dict[str, Any]:
    """Load runtime settings; a missing file means all defaults."""
    try:
        return load_yaml("settings.yaml", config_dir)
    except FileNotFoundError:
        return {}


def get_chain_config(chain_key: str, config_dir: Optional[Path] = None) -> Dict[str, Any]:
    """
    Get raw configuration for a specific chain.

    Args:
        chain_key: Chain identifier (e.g., 'POLYGON_AMOY')

    Returns:
        Chain configuration dict
    """
    chains = load_chains(config_dir).get("chains") or {}
    if chain_key not in chains:
        raise KeyError(f"Unknown chain: {chain_key}")
    return chains[chain_key]
