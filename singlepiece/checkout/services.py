from typing import Any, Dict, Iterable, List, Optional, Tuple

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from singlepiece.cart.repository import clear_cart, list_cart_products
from singlepiece.common.constants import PAYMENT_METHODS
from singlepiece.common.custom_exceptions import (
    ItemReservedByOther,
    ItemSold,
    LedgerWriteError,
    NotFound,
    ValidationError,
)
from singlepiece.common.logging_setup import get_logger
from singlepiece.common.utils import iso, seconds_left
from singlepiece.inventory.repository import find_by_either_key, logical_status, parse_item_ref
from singlepiece.inventory.reservations import Claim, ReservationManager
from singlepiece.orders.services import create_entry
from singlepiece.orders.utils import payment_instructions
from singlepiece.schema.full_schema import InventoryStatus, Orders, Payment, Product

logger = get_logger("singlepiece.checkout")


def _check_method(payment_method: Optional[str]) -> None:
    if payment_method is not None and payment_method not in PAYMENT_METHODS:
        raise ValidationError("Unsupported payment method", method=payment_method)


def _precheck(product: Product, buyer_id: str, at) -> None:
    """Fail fast before claiming; the claim itself re-checks under compare-and-set."""
    status = logical_status(product, at)
    if status is InventoryStatus.SOLD:
        raise ItemSold("Product is already sold", item=product.item_key)
    if status is InventoryStatus.RESERVED and product.reserved_by != buyer_id:
        raise ItemReservedByOther(
            "Product is currently reserved",
            time_left=seconds_left(product.reserved_until, at),
            item=product.item_key,
            reservedUntil=iso(product.reserved_until),
        )


async def _record_claim(session: AsyncSession, manager: ReservationManager, claim: Claim, buyer_id: str,
                        customer_details: Optional[Dict[str, Any]],
                        payment_method: Optional[str]) -> Tuple[Orders, Payment]:
    keys = [p.item_key for p in claim.products]
    try:
        order, payment, _ = await create_entry(
            session, claim, buyer_id,
            customer_details=customer_details,
            payment_method=payment_method,
        )
    except Exception as exc:
        await session.rollback()
        logger.error("checkout.ledger_write_failed", extra={"token": claim.token, "error": str(exc)})
        # a re-entered claim predates this call and is not ours to give back
        if not claim.reused:
            await manager.release(keys, token=claim.token)
        raise LedgerWriteError() from exc
    return order, payment


def _order_view(order: Orders, payment: Payment, at) -> Dict[str, Any]:
    return {
        "orderId": order.order_ref,
        "subtotal": order.subtotal,
        "tax": order.tax,
        "shipping": order.shipping,
        "totalAmount": payment.amount,
        "reservationExpiresAt": iso(order.reserved_until),
        "timeLeft": seconds_left(order.reserved_until, at),
    }


async def buy_now(session: AsyncSession, buyer_id: str, item_ref: str,
                  customer_details: Optional[Dict[str, Any]] = None,
                  payment_method: Optional[str] = None, *,
                  manager: Optional[ReservationManager] = None) -> Dict[str, Any]:
    manager = manager or ReservationManager(session)
    _check_method(payment_method)

    ref = parse_item_ref(item_ref)
    product = await find_by_either_key(session, ref)
    if product is None:
        raise NotFound("Product not found", productId=str(item_ref))
    _precheck(product, buyer_id, manager.clock())

    claim = await manager.claim([ref], buyer_id)
    # rows may be expired by a rollback while recording, keep plain values
    reserved = claim.products[0]
    product_view = {"id": reserved.item_key, "name": reserved.name, "price": reserved.price}
    order, payment = await _record_claim(session, manager, claim, buyer_id, customer_details, payment_method)

    logger.info("checkout.buy_now.reserved", extra={
        "buyer_id": buyer_id,
        "order_ref": order.order_ref,
        "item_key": product_view["id"],
        "reused": claim.reused,
    })
    return {
        "message": f"Product reserved for {int(manager.ttl.total_seconds() // 60)} minutes. Complete payment via UPI.",
        "order": _order_view(order, payment, manager.clock()),
        "payment": payment_instructions(payment.amount),
        "product": product_view,
    }


async def checkout_cart(session: AsyncSession, buyer_id: str,
                        item_refs: Optional[Iterable[str]] = None,
                        customer_details: Optional[Dict[str, Any]] = None,
                        payment_method: Optional[str] = None, *,
                        manager: Optional[ReservationManager] = None) -> Dict[str, Any]:
    """Claim every item of the cart (or of `item_refs`) under one token, all or nothing.

    One ledger entry spans all items. The server cart is emptied of the claimed
    items only once the entry is recorded.
    """
    manager = manager or ReservationManager(session)
    _check_method(payment_method)

    if item_refs is not None:
        refs: List = [parse_item_ref(r) for r in item_refs]
    else:
        refs = [parse_item_ref(p.item_key) for p in await list_cart_products(session, buyer_id)]
    if not refs:
        raise ValidationError("Cart is empty")

    claim = await manager.claim(refs, buyer_id)
    product_ids = [p.id for p in claim.products]
    items = [{"productId": p.item_key, "name": p.name, "price": p.price} for p in claim.products]
    order, payment = await _record_claim(session, manager, claim, buyer_id, customer_details, payment_method)
    at = manager.clock()
    order_view = _order_view(order, payment, at)

    try:
        await clear_cart(session, buyer_id, product_ids)
        await session.commit()
    except SQLAlchemyError:
        # reservation stands, cart lines are advisory
        await session.rollback()
        logger.warning("checkout.cart.clear_failed", extra={"buyer_id": buyer_id, "order_ref": order_view["orderId"]})

    logger.info("checkout.cart.reserved", extra={
        "buyer_id": buyer_id,
        "order_ref": order_view["orderId"],
        "items": len(items),
        "reused": claim.reused,
    })
    return {
        "message": f"{len(items)} items reserved. Complete payment via UPI.",
        "orderIds": [order_view["orderId"]],
        "totalAmount": order_view["totalAmount"],
        "reservationExpiresAt": order_view["reservationExpiresAt"],
        "timeLeft": order_view["timeLeft"],
        "order": order_view,
        "items": items,
        "payment": payment_instructions(order_view["totalAmount"]),
    }
