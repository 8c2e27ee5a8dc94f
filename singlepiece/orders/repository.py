from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from sqlalchemy import and_, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from singlepiece.db.utils import fresh
from singlepiece.schema.full_schema import OrderItem, Orders, OrderStatus, Payment, PaymentStatus, Product


async def get_entry(session: AsyncSession, order_ref: str,
                    buyer_id: Optional[str] = None) -> Optional[Tuple[Orders, Payment]]:
    stmt = (
        select(Orders, Payment)
        .join(Payment, Payment.order_id == Orders.id)
        .where(Orders.order_ref == order_ref)
    )
    if buyer_id is not None:
        stmt = stmt.where(Orders.buyer_id == buyer_id)
    res = await session.execute(fresh(stmt))
    row = res.first()
    if row is None:
        return None
    return row[0], row[1]


async def get_order_items(session: AsyncSession, order_id: int) -> List[OrderItem]:
    res = await session.execute(select(OrderItem).where(OrderItem.order_id == order_id).order_by(OrderItem.id))
    return list(res.scalars().all())


async def get_order_item_keys(session: AsyncSession, order_id: int) -> List[str]:
    res = await session.execute(select(OrderItem.item_key).where(OrderItem.order_id == order_id).order_by(OrderItem.id))
    return [r[0] for r in res.all()]


async def insert_order_with_items(session: AsyncSession, *, order_ref: str, buyer_id: str,
                                  products: Sequence[Product], totals: Dict[str, int],
                                  reserved_until: datetime,
                                  customer_details: Optional[Dict[str, Any]] = None,
                                  payment_method: Optional[str] = None) -> Tuple[Orders, Payment]:
    """Stage the order, its item snapshots and the PENDING payment. Caller commits."""
    order = Orders(
        order_ref=order_ref,
        buyer_id=buyer_id,
        status=OrderStatus.RESERVED.value,
        subtotal=totals["subtotal"],
        tax=totals["tax"],
        shipping=totals["shipping"],
        total=totals["total"],
        payment_method=payment_method,
        customer_details=customer_details,
        reservation_token=order_ref,
        reserved_until=reserved_until,
    )
    session.add(order)
    await session.flush()

    session.add_all([
        OrderItem(
            order_id=order.id,
            product_id=p.id,
            item_key=p.item_key,
            name=p.name,
            quantity=1,
            unit_price_snapshot=p.price,
        )
        for p in products
    ])

    payment = Payment(
        order_id=order.id,
        order_ref=order_ref,
        buyer_id=buyer_id,
        status=PaymentStatus.PENDING.value,
        amount=totals["total"],
        method=payment_method,
    )
    session.add(payment)
    await session.flush()
    return order, payment


async def transition_payment(session: AsyncSession, payment_id: int, expected: PaymentStatus,
                             values: Dict[str, Any]) -> bool:
    """Compare-and-set on the ledger entry status. Does not commit."""
    stmt = (
        update(Payment)
        .where(and_(Payment.id == payment_id, Payment.status == int(expected)))
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    result = await session.execute(stmt)
    return result.rowcount == 1


async def transition_order(session: AsyncSession, order_id: int, expected: Iterable[OrderStatus],
                           values: Dict[str, Any]) -> bool:
    stmt = (
        update(Orders)
        .where(and_(Orders.id == order_id, Orders.status.in_([int(s) for s in expected])))
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    result = await session.execute(stmt)
    return result.rowcount == 1


async def list_payments(session: AsyncSession, *, status: Optional[PaymentStatus] = None,
                        buyer_id: Optional[str] = None, page: int = 1,
                        page_size: int = 20) -> Tuple[List[Tuple[Payment, Orders]], int]:
    conds = []
    if status is not None:
        conds.append(Payment.status == int(status))
    if buyer_id is not None:
        conds.append(Payment.buyer_id == buyer_id)

    count_stmt = select(func.count(Payment.id))
    stmt = (
        select(Payment, Orders)
        .join(Orders, Orders.id == Payment.order_id)
        .order_by(Payment.created_at.desc(), Payment.id.desc())
        .offset((page - 1) * page_size)
        .limit(page_size)
    )
    if conds:
        count_stmt = count_stmt.where(and_(*conds))
        stmt = stmt.where(and_(*conds))

    total = (await session.execute(count_stmt)).scalar_one()
    res = await session.execute(fresh(stmt))
    return [(r[0], r[1]) for r in res.all()], int(total)


async def list_lapsed_pending(session: AsyncSession, at: datetime, limit: int = 100) -> List[Tuple[Payment, Orders]]:
    """PENDING entries whose order still reads RESERVED past its deadline."""
    stmt = (
        select(Payment, Orders)
        .join(Orders, Orders.id == Payment.order_id)
        .where(
            Payment.status == PaymentStatus.PENDING.value,
            Orders.status == OrderStatus.RESERVED.value,
            Orders.reserved_until <= at,
        )
        .order_by(Orders.reserved_until, Orders.id)
        .limit(limit)
    )
    res = await session.execute(fresh(stmt))
    return [(r[0], r[1]) for r in res.all()]
