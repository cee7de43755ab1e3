"""Payment provider integrations."""
from .stripe_client import StripeAPIError, StripeClient, UnconfiguredStripeClient, build_stripe_client
from .webhook_handler import WebhookHandler

__all__ = [
    "StripeAPIError",
    "StripeClient",
    "UnconfiguredStripeClient",
    "WebhookHandler",
    "build_stripe_client",
]
