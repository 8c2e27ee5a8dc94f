from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from singlepiece.common.custom_exceptions import (
    ConflictingState,
    NotFound,
    ReservationExpired,
    ReservationMismatch,
)
from singlepiece.common.logging_setup import get_logger
from singlepiece.common.utils import iso, seconds_left
from singlepiece.inventory.reservations import Claim, ReservationManager
from singlepiece.notifications.services import Notifier, get_notifier
from singlepiece.orders.repository import (
    get_entry,
    get_order_item_keys,
    get_order_items,
    insert_order_with_items,
    list_payments,
    transition_order,
    transition_payment,
)
from singlepiece.orders.utils import compute_order_totals, next_steps, validate_payment_proof
from singlepiece.schema.full_schema import Orders, OrderStatus, Payment, PaymentStatus

logger = get_logger("singlepiece.orders")


def entry_view(order: Orders, payment: Payment, at=None, items=None) -> Dict[str, Any]:
    data = {
        "orderId": order.order_ref,
        "orderStatus": OrderStatus(order.status).name.lower(),
        "paymentStatus": PaymentStatus(payment.status).name.lower(),
        "paymentMethod": payment.method,
        "amount": payment.amount,
        "subtotal": order.subtotal,
        "tax": order.tax,
        "shipping": order.shipping,
        "reservationExpiresAt": iso(order.reserved_until),
        "submittedAt": iso(payment.submitted_at),
        "verifiedAt": iso(payment.verified_at),
        "adminNotes": payment.admin_notes,
        "rejectionReason": payment.rejection_reason,
        "createdAt": iso(payment.created_at),
    }
    if at is not None and order.status == OrderStatus.RESERVED.value:
        data["timeLeft"] = seconds_left(order.reserved_until, at)
    if items is not None:
        data["items"] = [
            {"productId": it.item_key, "name": it.name, "price": it.unit_price_snapshot}
            for it in items
        ]
    return data


async def create_entry(session: AsyncSession, claim: Claim, buyer_id: str, *,
                       customer_details: Optional[Dict[str, Any]] = None,
                       payment_method: Optional[str] = None) -> Tuple[Orders, Payment, bool]:
    """Record the order and its PENDING payment for a fresh claim.

    Keyed by the claim token, so a retry (or a re-entrant claim) returns the
    entry already written. The third element tells whether this call created it.
    Any other failure propagates; the caller owns releasing the claim.
    """
    existing = await get_entry(session, claim.token)
    if existing is not None:
        return existing[0], existing[1], False

    totals = compute_order_totals(claim.products)
    try:
        order, payment = await insert_order_with_items(
            session,
            order_ref=claim.token,
            buyer_id=buyer_id,
            products=claim.products,
            totals=totals,
            reserved_until=claim.deadline,
            customer_details=customer_details,
            payment_method=payment_method,
        )
        await session.commit()
    except SQLAlchemyError:
        await session.rollback()
        existing = await get_entry(session, claim.token)
        if existing is None:
            raise
        logger.warning("ledger.create_entry.recovered", extra={"order_ref": claim.token})
        return existing[0], existing[1], False

    logger.info("ledger.entry_created", extra={
        "order_ref": order.order_ref,
        "buyer_id": buyer_id,
        "amount": payment.amount,
        "items": len(claim.products),
    })
    return order, payment, True


async def _load_entry(session: AsyncSession, order_ref: str,
                      buyer_id: Optional[str] = None) -> Tuple[Orders, Payment]:
    entry = await get_entry(session, order_ref, buyer_id)
    if entry is None:
        raise NotFound("Payment record not found", orderId=order_ref)
    return entry


def _require_pending(payment: Payment) -> None:
    if payment.status != PaymentStatus.PENDING.value:
        raise ConflictingState(
            f"Payment is already {PaymentStatus(payment.status).name.lower()}",
            paymentStatus=PaymentStatus(payment.status).name.lower(),
        )


async def expire_entry(session: AsyncSession, manager: ReservationManager,
                       order: Orders, payment: Payment, keys: List[str]) -> Tuple[bool, int]:
    """PENDING -> EXPIRED for the entry and its order, then hand the items back.

    Returns whether this call expired the entry and how many items it released.
    """
    expired = await transition_payment(session, payment.id, PaymentStatus.PENDING, {
        "status": PaymentStatus.EXPIRED.value,
    })
    await transition_order(session, order.id, [OrderStatus.RESERVED], {
        "status": OrderStatus.EXPIRED.value,
    })
    await session.commit()
    released = await manager.release(keys, token=order.reservation_token)
    if expired:
        logger.info("ledger.entry_expired", extra={"order_ref": order.order_ref, "released": released})
    return expired, released


async def _settle(session: AsyncSession, manager: ReservationManager, order: Orders,
                  payment: Payment, keys: List[str], payment_values: Dict[str, Any]) -> None:
    """Move the entry to VERIFIED / order SOLD and sell the items in the same transaction.

    If the sale cannot go through the entry is expired and the claim released
    before the reservation error propagates.
    """
    order_ref = order.order_ref
    at = manager.clock()
    ok = await transition_payment(session, payment.id, PaymentStatus.PENDING, {
        "status": PaymentStatus.VERIFIED.value,
        "verified_at": at,
        **payment_values,
    })
    if not ok:
        await session.rollback()
        raise ConflictingState("Payment is no longer pending")
    await transition_order(session, order.id, [OrderStatus.RESERVED], {
        "status": OrderStatus.SOLD.value,
        "sold_at": at,
        "payment_method": payment_values.get("method", order.payment_method),
    })

    try:
        # commits the ledger writes above together with the items
        await manager.commit(keys, order.reservation_token)
    except (ReservationExpired, ReservationMismatch):
        await session.rollback()
        # rollback expired the loaded rows, read the entry again
        order, payment = await _load_entry(session, order_ref)
        await expire_entry(session, manager, order, payment, keys)
        raise


async def submit_payment_proof(session: AsyncSession, order_ref: str, buyer_id: str,
                               method: str, proof: Dict[str, Any], *,
                               manager: Optional[ReservationManager] = None,
                               notifier: Optional[Notifier] = None) -> Dict[str, Any]:
    """Buyer submits the UPI / bank reference for a reserved order.

    Submission settles the sale immediately; admins review verified entries out of band.
    """
    manager = manager or ReservationManager(session)
    notifier = notifier or get_notifier()

    order, payment = await _load_entry(session, order_ref, buyer_id)
    _require_pending(payment)
    keys = await get_order_item_keys(session, order.id)

    try:
        await manager.check_hold(keys, order.reservation_token)
    except (ReservationExpired, ReservationMismatch):
        await expire_entry(session, manager, order, payment, keys)
        raise

    clean_proof = validate_payment_proof(method, proof)
    amount = payment.amount
    await _settle(session, manager, order, payment, keys, {
        "method": method,
        "proof": clean_proof,
        "submitted_at": manager.clock(),
    })

    logger.info("ledger.proof_submitted", extra={"order_ref": order_ref, "buyer_id": buyer_id, "method": method})
    await notifier.send(buyer_id, {
        "template": "payment_submitted",
        "orderId": order_ref,
        "amount": amount,
        "method": method,
    })

    return {
        "orderId": order_ref,
        "paymentStatus": PaymentStatus.VERIFIED.name.lower(),
        "orderStatus": OrderStatus.SOLD.name.lower(),
        "message": "Payment details submitted successfully. Our team will verify your payment.",
        "nextSteps": next_steps(method),
    }


async def verify(session: AsyncSession, order_ref: str, admin_id: str, note: Optional[str] = None, *,
                 manager: Optional[ReservationManager] = None,
                 notifier: Optional[Notifier] = None) -> Dict[str, Any]:
    manager = manager or ReservationManager(session)
    notifier = notifier or get_notifier()

    order, payment = await _load_entry(session, order_ref)
    _require_pending(payment)
    keys = await get_order_item_keys(session, order.id)
    buyer_id = order.buyer_id

    await _settle(session, manager, order, payment, keys, {
        "verified_by": admin_id,
        "admin_notes": note,
    })

    logger.info("ledger.verified", extra={"order_ref": order_ref, "admin_id": admin_id})
    await notifier.send(buyer_id, {"template": "payment_verified", "orderId": order_ref})
    return {"orderId": order_ref, "paymentStatus": "verified", "orderStatus": "sold"}


async def reject(session: AsyncSession, order_ref: str, admin_id: str, reason: Optional[str] = None, *,
                 manager: Optional[ReservationManager] = None,
                 notifier: Optional[Notifier] = None) -> Dict[str, Any]:
    manager = manager or ReservationManager(session)
    notifier = notifier or get_notifier()

    order, payment = await _load_entry(session, order_ref)
    _require_pending(payment)
    keys = await get_order_item_keys(session, order.id)

    at = manager.clock()
    ok = await transition_payment(session, payment.id, PaymentStatus.PENDING, {
        "status": PaymentStatus.FAILED.value,
        "rejection_reason": reason,
        "admin_notes": reason,
        "verified_by": admin_id,
        "verified_at": at,
    })
    if not ok:
        await session.rollback()
        raise ConflictingState("Payment is no longer pending")
    await transition_order(session, order.id, [OrderStatus.RESERVED], {
        "status": OrderStatus.CANCELLED.value,
        "cancelled_at": at,
    })
    await session.commit()

    released = await manager.release(keys, token=order.reservation_token)
    logger.info("ledger.rejected", extra={"order_ref": order_ref, "admin_id": admin_id, "released": released})
    await notifier.send(order.buyer_id, {"template": "payment_rejected", "orderId": order_ref, "reason": reason})
    return {"orderId": order_ref, "paymentStatus": "failed", "orderStatus": "cancelled", "released": released}


async def cancel(session: AsyncSession, order_ref: str, buyer_id: str, *,
                 manager: Optional[ReservationManager] = None) -> Dict[str, Any]:
    manager = manager or ReservationManager(session)

    entry = await get_entry(session, order_ref, buyer_id)
    if entry is None or entry[0].status != OrderStatus.RESERVED.value:
        raise NotFound("Order not found or cannot be cancelled", orderId=order_ref)
    order, payment = entry
    keys = await get_order_item_keys(session, order.id)

    at = manager.clock()
    # payment row first, then order, then items: the same order every settling path writes in
    await transition_payment(session, payment.id, PaymentStatus.PENDING, {"status": PaymentStatus.EXPIRED.value})
    ok = await transition_order(session, order.id, [OrderStatus.RESERVED], {
        "status": OrderStatus.CANCELLED.value,
        "cancelled_at": at,
    })
    if not ok:
        await session.rollback()
        raise NotFound("Order not found or cannot be cancelled", orderId=order_ref)
    await session.commit()

    released = await manager.release(keys, token=order.reservation_token)
    logger.info("ledger.cancelled", extra={"order_ref": order_ref, "buyer_id": buyer_id, "released": released})
    return {"orderId": order_ref, "orderStatus": "cancelled", "paymentStatus": "expired", "released": released}


async def get_status(session: AsyncSession, order_ref: str, buyer_id: Optional[str], at) -> Dict[str, Any]:
    order, payment = await _load_entry(session, order_ref, buyer_id)
    items = await get_order_items(session, order.id)
    return entry_view(order, payment, at=at, items=items)


async def list_entries(session: AsyncSession, *, status: Optional[PaymentStatus] = None,
                       buyer_id: Optional[str] = None, page: int = 1, page_size: int = 20,
                       at=None) -> Dict[str, Any]:
    rows, total = await list_payments(session, status=status, buyer_id=buyer_id, page=page, page_size=page_size)
    return {
        "payments": [entry_view(order, payment, at=at) for payment, order in rows],
        "pagination": {
            "page": page,
            "pageSize": page_size,
            "total": total,
            "pages": (total + page_size - 1) // page_size,
        },
    }
