"""
Tests for net sales amounts.
"""

from decimal import Decimal
from types import SimpleNamespace

import pytest

from commissionly.models import SalesTransaction, TransactionType
from commissionly.services.errors import NetAmountUnavailable
from commissionly.services.net_sales import (
    calculate_net_sales_amount,
    load_net_sales_amount,
)

from conftest import SALE_DATE


def _sale(amount, *returns):
    return SimpleNamespace(
        amount=Decimal(amount),
        returns=[SimpleNamespace(amount=Decimal(r)) for r in returns],
    )


class TestCalculateNetSalesAmount:
    def test_no_returns(self):
        assert calculate_net_sales_amount(_sale("1000")) == Decimal("1000")

    def test_negative_return(self):
        assert calculate_net_sales_amount(_sale("1000", "-200")) == Decimal("800")

    def test_positive_return_treated_the_same(self):
        assert calculate_net_sales_amount(_sale("1000", "200")) == Decimal("800")

    def test_floor_at_zero(self):
        assert calculate_net_sales_amount(_sale("1000", "-700", "-600")) == Decimal("0")

    def test_float_amounts_do_not_drift(self):
        sale = SimpleNamespace(amount=0.3, returns=[SimpleNamespace(amount=-0.1)])
        assert calculate_net_sales_amount(sale) == Decimal("0.2")


async def _record(db, seed, amount, transaction_type=TransactionType.SALE, parent=None):
    transaction = SalesTransaction(
        organization_id=seed.org.id,
        amount=Decimal(amount),
        transaction_date=SALE_DATE,
        transaction_type=transaction_type,
        parent=parent,
        user_id=seed.seller.id,
    )
    db.add(transaction)
    await db.flush()
    return transaction


@pytest.mark.asyncio
async def test_load_net_sales_amount(db_session, seed):
    sale = await _record(db_session, seed, "1000")
    await _record(db_session, seed, "-200", TransactionType.RETURN, parent=sale)
    await _record(db_session, seed, "-50", TransactionType.ADJUSTMENT, parent=sale)
    await db_session.commit()

    assert await load_net_sales_amount(db_session, sale.id, seed.org.id) == Decimal("750")


@pytest.mark.asyncio
async def test_load_net_sales_amount_missing(db_session, seed):
    with pytest.raises(NetAmountUnavailable) as exc_info:
        await load_net_sales_amount(db_session, 9999, seed.org.id)
    assert exc_info.value.status_code == 503


@pytest.mark.asyncio
async def test_load_net_sales_amount_other_organization(db_session, seed):
    sale = await _record(db_session, seed, "1000")
    await db_session.commit()

    with pytest.raises(NetAmountUnavailable):
        await load_net_sales_amount(db_session, sale.id, seed.other_org.id)



@pytest.mark.asyncio
async def test_load_net_sales_amount_sees_later_returns(db_session, seed):
    sale = await _record(db_session, seed, "1000")
    await db_session.commit()
    assert await load_net_sales_amount(db_session, sale.id, seed.org.id) == Decimal("1000")

    db_session.add(
        SalesTransaction(
            organization_id=seed.org.id,
            amount=Decimal("-300"),
            transaction_date=SALE_DATE,
            transaction_type=TransactionType.RETURN,
            parent_transaction_id=sale.id,
            user_id=seed.seller.id,
        )
    )
    await db_session.commit()

    assert await load_net_sales_amount(db_session, sale.id, seed.org.id) == Decimal("700")
