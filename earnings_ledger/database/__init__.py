"""Database package for the earnings ledger."""
from .connection import close_db, create_session_factory, get_db, get_session_factory, init_db
from .models import (
    Base,
    DiagnosticRecord,
    Order,
    OrderItem,
    Promoter,
    PromoterWallet,
    PromoterWalletTransaction,
    Seller,
    SellerWallet,
    WalletTransaction,
)

__all__ = [
    "Base",
    "DiagnosticRecord",
    "Order",
    "OrderItem",
    "Promoter",
    "PromoterWallet",
    "PromoterWalletTransaction",
    "Seller",
    "SellerWallet",
    "WalletTransaction",
    "close_db",
    "create_session_factory",
    "get_db",
    "get_session_factory",
    "init_db",
]
