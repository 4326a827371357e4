"""
ledger/ - Durable off-chain state.

Modules:
- database: async engine and sessions
- db_models: ORM tables
- store: ledger operations (positions, collection, pool, burns)
- reconciler: repairs drift against on-chain stakes
"""

from ledger.database import Base, LedgerDatabase
from ledger.reconciler import LedgerReconciler
from ledger.store import LedgerStore

__all__ = ["Base", "LedgerDatabase", "LedgerReconciler", "LedgerStore"]
