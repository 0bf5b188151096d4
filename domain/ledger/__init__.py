"""Ledger domain exports."""
from .entity import Transaction, TransactionType, TransactionStatus, EscrowAccount, EscrowStatus
from .repository import TransactionRepository, EscrowRepository

__all__ = [
    "Transaction",
    "TransactionType",
    "TransactionStatus",
    "EscrowAccount",
    "EscrowStatus",
    "TransactionRepository",
    "EscrowRepository",
]
