from .inventory import InventoryItem, InventoryLoss
from .transactions import (
    Transaction,
    TransactionItem,
    AiTransactionMetadata,
    TRANSACTION_TYPES,
    PAYMENT_METHODS,
)
from .auth import AppUser, SessionToken, USER_ROLES
from .audit import AuditLog

__all__ = [
    'InventoryItem', 'InventoryLoss',
    'Transaction', 'TransactionItem', 'AiTransactionMetadata',
    'TRANSACTION_TYPES', 'PAYMENT_METHODS',
    'AppUser', 'SessionToken', 'USER_ROLES',
    'AuditLog',
]
