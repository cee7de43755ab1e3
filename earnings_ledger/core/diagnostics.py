"""Diagnostic sink for records that need manual reconciliation."""
from typing import Any, Dict, Optional

import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from earnings_ledger.database.models import DiagnosticRecord

logger = structlog.get_logger(__name__)


class DiagnosticSink:
    """
    Appends ``error_logs`` rows in their own transaction.

    A failure to write a diagnostic must not mask the original problem, so
    write errors are logged and the caller carries on.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def record(
        self,
        error_type: str,
        message: str,
        seller_id: Optional[str] = None,
        order_id: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> bool:
        """
        Write one diagnostic record.

        Returns:
            bool: True if the record was stored
        """
        try:
            async with self.session_factory() as db, db.begin():
                db.add(
                    DiagnosticRecord(
                        error_type=error_type,
                        seller_id=seller_id,
                        order_id=order_id,
                        message=message,
                        details=metadata,
                    )
                )
        except Exception as e:
            logger.error(
                "diagnostic_record_write_failed",
                error_type=error_type,
                seller_id=seller_id,
                order_id=order_id,
                message=message,
                error=str(e),
            )
            return False

        logger.info("diagnostic_recorded", error_type=error_type, seller_id=seller_id, order_id=order_id)
        return True
