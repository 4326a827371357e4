"""
core - Core utilities and models for Kiln.

This package contains:
- models.py: Data models (ChainDescriptor, StakePosition, BurnRule, ...)
- constants.py: Enums and constants
- exceptions.py: Typed exceptions with error kinds
- result.py: OpResult returned by the public operations
- retry.py: Bounded retry over ranked candidates
- time.py: UTC helpers
- logging.py: Structured JSON logging

Models are imported from core.models directly; they depend on utils.
"""

from core.constants import (
    BURN_ADDRESS,
    BurnStrategy,
    BurnType,
    ErrorKind,
    StakingSource,
    TxStatus,
)
from core.exceptions import (
    ConfigurationError,
    InfraError,
    KilnError,
    RPCUnavailableError,
    ValidationError,
)
from core.logging import get_logger, setup_logging
from core.result import OpResult

__all__ = [
    # Constants
    "BURN_ADDRESS",
    "BurnStrategy",
    "BurnType",
    "ErrorKind",
    "StakingSource",
    "TxStatus",
    # Exceptions
    "ConfigurationError",
    "InfraError",
    "KilnError",
    "RPCUnavailableError",
    "ValidationError",
    # Results
    "OpResult",
    # Logging
    "get_logger",
    "setup_logging",
]
