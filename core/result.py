# PATH: core/result.py
"""
OpResult: the discriminated result returned by every public operation.

    {success: True, data}
    {success: False, error_kind, message, details}

UNCONFIRMED is reported as success=False with error_kind UNCONFIRMED and the
transaction hash in details. Callers should treat it as "pending" rather
than "failed": reconciliation resolves it once the transaction lands.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from core.constants import ErrorKind
from core.exceptions import KilnError


@dataclass(frozen=True)
class OpResult:
    success: bool
    data: Any = None
    error_kind: Optional[ErrorKind] = None
    message: str = ""
    details: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def ok(cls, data: Any = None, message: str = "") -> "OpResult":
        return cls(success=True, data=data, message=message)

    @classmethod
    def fail(
        cls,
        error_kind: ErrorKind,
        message: str,
        details: Optional[Dict[str, Any]] = None,
    ) -> "OpResult":
        return cls(success=False, error_kind=error_kind, message=message, details=details or {})

    @classmethod
    def from_error(cls, error: KilnError) -> "OpResult":
        return cls.fail(error.kind, error.message, dict(error.details))

    @property
    def is_pending(self) -> bool:
        return self.error_kind == ErrorKind.UNCONFIRMED

    def to_dict(self) -> Dict[str, Any]:
        if self.success:
            data = self.data.to_dict() if hasattr(self.data, "to_dict") else self.data
            return {"success": True, "data": data}
        return {
            "success": False,
            "error_kind": self.error_kind.value if self.error_kind else None,
            "message": self.message,
            "details": self.details,
        }
