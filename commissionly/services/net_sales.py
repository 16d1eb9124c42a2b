"""
Net sales amount: gross transaction amount minus linked returns and credits.
"""

import logging
from decimal import Decimal
from typing import Any

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from commissionly.models import SalesTransaction
from commissionly.services.errors import NetAmountUnavailable
from commissionly.services.rule_precedence import to_decimal

logger = logging.getLogger(__name__)

ZERO = Decimal("0")


def calculate_net_sales_amount(transaction: Any) -> Decimal:
    """
    Reduce the gross amount by the absolute sum of linked returns.

    Returns are stored with either sign, so their absolute value is
    subtracted. The result is floored at zero.

    Args:
        transaction: Object with `amount` and a loaded `returns` collection

    Returns:
        Net amount as Decimal, never negative
    """
    gross = to_decimal(transaction.amount)
    returns_total = sum(
        (abs(to_decimal(ret.amount)) for ret in transaction.returns),
        ZERO,
    )
    return max(ZERO, gross - returns_total)


async def load_net_sales_amount(
    db: AsyncSession,
    transaction_id: int,
    organization_id: int,
) -> Decimal:
    """
    Load a transaction with its returns and compute its net amount.

    Raises:
        NetAmountUnavailable: the transaction is missing or the query failed
    """
    try:
        result = await db.execute(
            select(SalesTransaction)
            .options(selectinload(SalesTransaction.returns))
            .where(
                SalesTransaction.id == transaction_id,
                SalesTransaction.organization_id == organization_id,
            )
            # Returns recorded after an earlier load must be seen
            .execution_options(populate_existing=True)
        )
        transaction = result.scalar_one_or_none()
    except SQLAlchemyError as e:
        logger.error(f"Failed to load returns for transaction {transaction_id}: {e}")
        raise NetAmountUnavailable(transaction_id, "returns could not be loaded") from e

    if transaction is None:
        raise NetAmountUnavailable(transaction_id, "transaction not found")

    return calculate_net_sales_amount(transaction)

