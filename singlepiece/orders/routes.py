from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession

from singlepiece.auth.dependencies import current_buyer
from singlepiece.common.constants import DEFAULT_PAGE_SIZE, MAX_PAGE_SIZE
from singlepiece.common.utils import success_response
from singlepiece.db.dependencies import get_session
from singlepiece.inventory.dependencies import get_manager, get_request_notifier
from singlepiece.inventory.reservations import ReservationManager
from singlepiece.notifications.services import Notifier
from singlepiece.orders.models import PaymentProofIn
from singlepiece.orders.services import get_status, list_entries, submit_payment_proof
from singlepiece.schema.full_schema import PaymentStatus

payments_router = APIRouter()


@payments_router.get("/my-pending")
async def my_pending(request: Request,
                     page: int = Query(1, ge=1),
                     page_size: int = Query(DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE),
                     buyer_id: str = Depends(current_buyer),
                     session: AsyncSession = Depends(get_session)):
    data = await list_entries(session, status=PaymentStatus.PENDING, buyer_id=buyer_id,
                              page=page, page_size=page_size, at=request.app.state.clock())
    return success_response(data)


@payments_router.get("/my-payments")
async def my_payments(request: Request,
                      page: int = Query(1, ge=1),
                      page_size: int = Query(DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE),
                      buyer_id: str = Depends(current_buyer),
                      session: AsyncSession = Depends(get_session)):
    data = await list_entries(session, buyer_id=buyer_id, page=page, page_size=page_size,
                              at=request.app.state.clock())
    return success_response(data)


@payments_router.post("/{order_ref}/submit")
async def submit_proof(order_ref: str, payload: PaymentProofIn,
                       buyer_id: str = Depends(current_buyer),
                       session: AsyncSession = Depends(get_session),
                       manager: ReservationManager = Depends(get_manager),
                       notifier: Notifier = Depends(get_request_notifier)):
    data = await submit_payment_proof(session, order_ref, buyer_id, payload.paymentMethod, payload.proof(),
                                      manager=manager, notifier=notifier)
    return success_response(data)


@payments_router.get("/{order_ref}")
async def payment_status(request: Request, order_ref: str,
                         buyer_id: str = Depends(current_buyer),
                         session: AsyncSession = Depends(get_session)):
    data = await get_status(session, order_ref, buyer_id, request.app.state.clock())
    return success_response(data)
