"""
Storage module

SQLite-backed persistence of balances, ledger, history, rate cache and
reconciliation queue.
"""

from core.storage.balance_store import BalanceStore, new_transaction_id

__all__ = [
    "BalanceStore",
    "new_transaction_id",
]
