"""
API routes for the earnings ledger.
"""
from dataclasses import asdict
from decimal import Decimal
from typing import Any, Dict, Optional

import structlog
from fastapi import APIRouter, Depends, Header, HTTPException, Query, Request, Response, status
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from earnings_ledger.core.dispatcher import WebhookDispatcher
from earnings_ledger.core.exceptions import (
    AuthenticationError,
    ProviderNotConfiguredError,
    ValidationError,
)
from earnings_ledger.core.tiers import COMMISSION_TIERS, next_tier, resolve_tier
from earnings_ledger.database.connection import get_db
from earnings_ledger.database.models import Order, Seller, SellerWallet, WalletTransaction
from earnings_ledger.monitoring.health import HealthCheck

from .schemas import (
    CommissionTiersResponse,
    HealthCheckResponse,
    OrderResponse,
    WalletResponse,
    WalletTransactionsResponse,
    WebhookResponse,
)

logger = structlog.get_logger(__name__)

webhook_router = APIRouter(prefix="/webhooks", tags=["webhooks"])
ledger_router = APIRouter(tags=["ledger"])
monitoring_router = APIRouter(tags=["monitoring"])


def get_dispatcher(request: Request) -> WebhookDispatcher:
    """Dispatcher built by the application lifespan."""
    return request.app.state.dispatcher


def get_health_check(request: Request) -> HealthCheck:
    return request.app.state.health_check


@webhook_router.post(
    "/stripe",
    response_model=WebhookResponse,
    summary="Stripe webhook endpoint",
    description="Materialize orders and credit seller earnings from Stripe events",
)
async def stripe_webhook(
    request: Request,
    stripe_signature: Optional[str] = Header(default=None, alias="Stripe-Signature"),
    dispatcher: WebhookDispatcher = Depends(get_dispatcher),
) -> Dict[str, Any]:
    """
    Handle Stripe webhook events.

    Returns 200 once the signature is verified and every line item has been
    attempted, even when some items were skipped.
    """
    body = await request.body()

    try:
        result = await dispatcher.handle(body, stripe_signature)

    except AuthenticationError as e:
        logger.warning("api_webhook_rejected", error=str(e))
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    except ValidationError as e:
        # Retrying a malformed event cannot succeed
        logger.error("api_webhook_malformed_event", error=str(e), **e.context)
        return {"status": "rejected", "message": str(e)}

    except ProviderNotConfiguredError as e:
        logger.error("api_webhook_provider_not_configured", error=str(e))
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Payment provider is not configured",
        )

    except Exception as e:
        logger.error(
            "api_webhook_unexpected_error",
            error=str(e),
            error_type=type(e).__name__,
        )
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Webhook processing failed",
        )

    payload = asdict(result)
    payload.pop("skipped", None)
    return payload


@ledger_router.get(
    "/orders/{session_id}",
    response_model=OrderResponse,
    summary="Get order by checkout session",
    description="Order and items created for a checkout session",
)
async def get_order(
    session_id: str,
    db: AsyncSession = Depends(get_db),
) -> Order:
    result = await db.execute(select(Order).where(Order.stripe_session_id == session_id))
    order = result.scalar_one_or_none()
    if order is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Order not found")
    return order


async def _seller_or_404(db: AsyncSession, seller_id: str) -> Seller:
    seller = await db.get(Seller, seller_id)
    if seller is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Seller not found")
    return seller


@ledger_router.get(
    "/sellers/{seller_id}/wallet",
    response_model=WalletResponse,
    summary="Get seller wallet",
    description="Wallet balances and the tier the next sale will be credited at",
)
async def get_wallet(
    seller_id: str,
    db: AsyncSession = Depends(get_db),
) -> Dict[str, Any]:
    seller = await _seller_or_404(db, seller_id)
    result = await db.execute(select(SellerWallet).where(SellerWallet.seller_id == seller_id))
    wallet = result.scalar_one_or_none()

    response: Dict[str, Any] = {
        "seller_id": seller_id,
        "sales_total": seller.sales_total,
        "commission_tier": resolve_tier(seller.sales_total).name,
    }
    if wallet is None:
        # Wallets are created on the first credit
        zero = Decimal("0")
        response.update(balance=zero, total_earnings=zero, total_withdrawn=zero, pending_balance=zero)
        return response

    response.update(
        id=wallet.id,
        balance=wallet.balance,
        total_earnings=wallet.total_earnings,
        total_withdrawn=wallet.total_withdrawn,
        pending_balance=wallet.pending_balance,
        created_at=wallet.created_at,
        updated_at=wallet.updated_at,
    )
    return response


@ledger_router.get(
    "/sellers/{seller_id}/wallet/transactions",
    response_model=WalletTransactionsResponse,
    summary="List wallet transactions",
    description="Most recent wallet transactions, newest first",
)
async def list_wallet_transactions(
    seller_id: str,
    limit: int = Query(default=100, ge=1, le=100),
    db: AsyncSession = Depends(get_db),
) -> Dict[str, Any]:
    await _seller_or_404(db, seller_id)
    result = await db.execute(
        select(WalletTransaction)
        .join(SellerWallet, SellerWallet.id == WalletTransaction.wallet_id)
        .where(SellerWallet.seller_id == seller_id)
        .order_by(WalletTransaction.created_at.desc(), WalletTransaction.id.desc())
        .limit(limit)
    )
    return {"seller_id": seller_id, "transactions": list(result.scalars())}


@ledger_router.get(
    "/commission-tiers",
    response_model=CommissionTiersResponse,
    summary="Commission tiers",
    description="Tier table; pass sales_total to see the current and next tier",
)
async def commission_tiers(sales_total: Optional[Decimal] = None) -> Dict[str, Any]:
    response: Dict[str, Any] = {"tiers": [tier.model_dump() for tier in COMMISSION_TIERS]}
    if sales_total is not None:
        if sales_total < 0:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="sales_total must be non-negative",
            )
        upcoming = next_tier(sales_total)
        response["current"] = resolve_tier(sales_total).model_dump()
        response["next"] = upcoming.model_dump() if upcoming else None
        response["remaining_to_next"] = upcoming.threshold - sales_total if upcoming else None
    return response


@monitoring_router.get(
    "/health",
    response_model=HealthCheckResponse,
    summary="Health check",
    description="Check overall system health",
)
async def health(health_check: HealthCheck = Depends(get_health_check)) -> Dict[str, Any]:
    try:
        return await health_check.check_all()
    except Exception as e:
        logger.error("health_check_error", error=str(e))
        return {"status": "unhealthy", "checks": {"error": str(e)}}


@monitoring_router.get(
    "/health/live",
    response_model=HealthCheckResponse,
    summary="Liveness probe",
)
async def liveness(health_check: HealthCheck = Depends(get_health_check)) -> Dict[str, Any]:
    return await health_check.liveness()


@monitoring_router.get(
    "/health/ready",
    response_model=HealthCheckResponse,
    summary="Readiness probe",
)
async def readiness(health_check: HealthCheck = Depends(get_health_check)) -> Dict[str, Any]:
    result = await health_check.readiness()
    if result["status"] != "healthy":
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=result)
    return result


@monitoring_router.get(
    "/metrics",
    summary="Prometheus metrics",
    include_in_schema=False,
)
async def prometheus_metrics() -> Response:
    """Expose Prometheus metrics."""
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)
