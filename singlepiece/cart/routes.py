from fastapi import APIRouter, Depends, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from singlepiece.auth.dependencies import current_buyer
from singlepiece.cart.models import CartItemIn
from singlepiece.cart.repository import (
    add_item_to_cart,
    clear_cart,
    get_or_create_cart,
    list_cart_products,
    remove_item_from_cart,
)
from singlepiece.common.custom_exceptions import ItemSold
from singlepiece.common.logging_setup import get_logger
from singlepiece.common.utils import success_response
from singlepiece.db.dependencies import get_session
from singlepiece.inventory.repository import availability_view, get_by_either_key, logical_status, parse_item_ref
from singlepiece.orders.utils import compute_order_totals
from singlepiece.schema.full_schema import InventoryStatus

logger = get_logger("singlepiece.cart")

carts_router = APIRouter()


@carts_router.get("/items")
async def get_cart(request: Request, buyer_id: str = Depends(current_buyer),
                   session: AsyncSession = Depends(get_session)):
    at = request.app.state.clock()
    products = await list_cart_products(session, buyer_id)
    resp = {
        "items": [availability_view(p, at) for p in products],
        "totals": compute_order_totals(products),
    }
    return success_response(resp)


# adding never reserves; the hold is taken at checkout
@carts_router.post("/items")
async def add_to_cart(request: Request, payload: CartItemIn, buyer_id: str = Depends(current_buyer),
                      session: AsyncSession = Depends(get_session)):
    product = await get_by_either_key(session, parse_item_ref(payload.item_key))
    if logical_status(product, request.app.state.clock()) is InventoryStatus.SOLD:
        raise ItemSold("Product is already sold", item=product.item_key)
    product_id, item_key = product.id, product.item_key

    cart_id = await get_or_create_cart(session, buyer_id)
    created = await add_item_to_cart(session, cart_id, product_id)
    await session.commit()

    logger.info("cart.item_added", extra={"buyer_id": buyer_id, "item_key": item_key, "is_new": created})
    resp = {"cartId": cart_id, "item": {"productId": item_key, "quantity": 1, "created": created}}
    return success_response(resp, status_code=status.HTTP_201_CREATED if created else status.HTTP_200_OK)


@carts_router.delete("/items/{item_ref}")
async def remove_from_cart(item_ref: str, buyer_id: str = Depends(current_buyer),
                           session: AsyncSession = Depends(get_session)):
    product = await get_by_either_key(session, parse_item_ref(item_ref))
    removed = await remove_item_from_cart(session, buyer_id, product.id)
    await session.commit()
    return success_response({"productId": product.item_key, "removed": removed})


@carts_router.delete("/clear")
async def clear(buyer_id: str = Depends(current_buyer), session: AsyncSession = Depends(get_session)):
    removed = await clear_cart(session, buyer_id)
    await session.commit()
    return success_response({"removed": removed})
