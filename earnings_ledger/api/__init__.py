"""FastAPI application and routes."""
from .main import app, create_app
from .schemas import (
    CommissionTiersResponse,
    OrderResponse,
    WalletResponse,
    WalletTransactionsResponse,
    WebhookResponse,
)

__all__ = [
    "app",
    "create_app",
    "CommissionTiersResponse",
    "OrderResponse",
    "WalletResponse",
    "WalletTransactionsResponse",
    "WebhookResponse",
]
