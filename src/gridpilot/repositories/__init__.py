from .meter_value import MeterValueRepository
from .store import DiscardingStore, SqliteTransactionStore, TransactionStore
from .transaction import TransactionRepository

__all__ = [
    "DiscardingStore",
    "MeterValueRepository",
    "SqliteTransactionStore",
    "TransactionRepository",
    "TransactionStore",
]
