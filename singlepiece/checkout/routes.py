from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from singlepiece.auth.dependencies import current_buyer
from singlepiece.checkout.models import BuyNowIn, CartCheckoutIn
from singlepiece.checkout.services import buy_now, checkout_cart
from singlepiece.common.utils import success_response
from singlepiece.db.dependencies import get_session
from singlepiece.inventory.dependencies import get_manager
from singlepiece.inventory.reservations import ReservationManager
from singlepiece.orders.services import cancel
from singlepiece.rate_limiting.dependencies import rate_limit_dependency

checkout_router = APIRouter()


@checkout_router.post("/buy-now", dependencies=[Depends(rate_limit_dependency(route_key="checkout:buy-now"))])
async def buy_now_route(payload: BuyNowIn,
                        buyer_id: str = Depends(current_buyer),
                        session: AsyncSession = Depends(get_session),
                        manager: ReservationManager = Depends(get_manager)):
    data = await buy_now(session, buyer_id, payload.productId, payload.customer_details(),
                         payload.paymentMethod, manager=manager)
    return success_response(data, status_code=status.HTTP_201_CREATED)


@checkout_router.post("/cart", dependencies=[Depends(rate_limit_dependency(route_key="checkout:cart"))])
async def cart_checkout_route(payload: CartCheckoutIn,
                              buyer_id: str = Depends(current_buyer),
                              session: AsyncSession = Depends(get_session),
                              manager: ReservationManager = Depends(get_manager)):
    data = await checkout_cart(session, buyer_id, payload.productIds, payload.customer_details(),
                               payload.paymentMethod, manager=manager)
    return success_response(data, status_code=status.HTTP_201_CREATED)


@checkout_router.post("/{order_ref}/cancel")
async def cancel_route(order_ref: str,
                       buyer_id: str = Depends(current_buyer),
                       session: AsyncSession = Depends(get_session),
                       manager: ReservationManager = Depends(get_manager)):
    data = await cancel(session, order_ref, buyer_id, manager=manager)
    return success_response(data)
