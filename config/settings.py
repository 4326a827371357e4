"""
config/settings.py - Runtime settings.

Defaults < config/settings.yaml < KILN_* environment variables.
"""

import os
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any, Mapping, Optional

from dotenv import load_dotenv

from config import load_settings_yaml
from core.constants import (
    DEFAULT_CONFIRMATION_TIMEOUT_SECONDS,
    DEFAULT_HASH_RECOVERY_BLOCKS,
    DEFAULT_RECEIPT_POLL_SECONDS,
    DEFAULT_RPC_TIMEOUT_SECONDS,
)
from core.exceptions import ConfigurationError

ENV_PREFIX = "KILN_"


@dataclass
class KilnSettings:
    """Process-wide settings. Built once by OrchestratorContext.build."""

    database_url: str = "sqlite+aiosqlite:///data/kiln.db"
    selection_file: str = "data/selected_chain.json"
    ipfs_gateway: str = "https://gateway.pinata.cloud/ipfs/"

    rpc_timeout_seconds: float = DEFAULT_RPC_TIMEOUT_SECONDS
    confirmation_timeout_seconds: float = DEFAULT_CONFIRMATION_TIMEOUT_SECONDS
    receipt_poll_seconds: float = DEFAULT_RECEIPT_POLL_SECONDS
    hash_recovery_blocks: int = DEFAULT_HASH_RECOVERY_BLOCKS
    metadata_timeout_seconds: float = 10.0

    log_level: str = "INFO"
    log_json: bool = True

    @property
    def selection_path(self) -> Path:
        return Path(self.selection_file)


def _coerce(name: str, target_type: Any, value: Any) -> Any:
    if target_type in (bool, "bool"):
        if isinstance(value, bool):
            return value
        return str(value).strip().lower() in ("1", "true", "yes", "on")
    try:
        if target_type in (int, "int"):
            return int(value)
        if target_type in (float, "float"):
            return float(value)
    except (TypeError, ValueError) as e:
        raise ConfigurationError(
            f"Invalid value for {name}: {value!r}",
            details={"setting": name, "value": str(value)},
        ) from e
    return str(value)


def load_settings(
    config_dir: Optional[Path] = None,
    env: Optional[Mapping[str, str]] = None,
    use_dotenv: bool = True,
) -> KilnSettings:
    """
    Load settings from YAML and the environment.

    Args:
        config_dir: Directory holding settings.yaml (default: config/)
        env: Environment mapping (default: os.environ)
        use_dotenv: Load .env into os.environ first
    """
    if use_dotenv and env is None:
        load_dotenv()
    environ = os.environ if env is None else env

    data = load_settings_yaml(config_dir)
    values: dict[str, Any] = {}
    for f in fields(KilnSettings):
        raw = environ.get(f"{ENV_PREFIX}{f.name.upper()}", data.get(f.name))
        if raw is None:
            continue
        values[f.name] = _coerce(f.name, f.type, raw)

    return KilnSettings(**values)
