from .transactions import (
    Transaction,
    TransactionItem,
    TransactionSequence,
    TRANSACTION_KINDS,
    TRANSACTION_STATUSES,
    TERMINAL_STATUSES,
    CUSTOMER_KINDS,
    SESSION_TYPES,
)
from .ledger import LedgerEntry, LedgerImmutableError, LEDGER_KINDS
from .employees import Employee, CashAdvance, ADVANCE_STATUSES

__all__ = [
    'Transaction', 'TransactionItem', 'TransactionSequence',
    'TRANSACTION_KINDS', 'TRANSACTION_STATUSES', 'TERMINAL_STATUSES',
    'CUSTOMER_KINDS', 'SESSION_TYPES',
    'LedgerEntry', 'LedgerImmutableError', 'LEDGER_KINDS',
    'Employee', 'CashAdvance', 'ADVANCE_STATUSES',
]
