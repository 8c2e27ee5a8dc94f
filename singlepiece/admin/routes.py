from typing import Optional

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession

from singlepiece.auth.dependencies import require_admin
from singlepiece.background_workers.expiry_sweeper import ExpirySweeper
from singlepiece.common.constants import DEFAULT_PAGE_SIZE, MAX_PAGE_SIZE
from singlepiece.common.custom_exceptions import ValidationError
from singlepiece.common.logging_setup import get_logger
from singlepiece.common.utils import success_response
from singlepiece.db.dependencies import get_session, get_session_factory
from singlepiece.inventory.dependencies import get_manager, get_request_notifier
from singlepiece.inventory.reservations import ReservationManager
from singlepiece.notifications.services import Notifier
from singlepiece.orders.models import AdminDecisionIn
from singlepiece.orders.services import list_entries, reject, verify
from singlepiece.schema.full_schema import PaymentStatus

logger = get_logger("singlepiece.admin")

admin_payments_router = APIRouter(dependencies=[Depends(require_admin)])
admin_inventory_router = APIRouter(dependencies=[Depends(require_admin)])


def _parse_status(value: Optional[str]) -> Optional[PaymentStatus]:
    if value is None:
        return None
    try:
        return PaymentStatus[value.upper()]
    except KeyError:
        raise ValidationError("Unknown payment status", status=value)


@admin_payments_router.get("/pending")
async def pending_payments(request: Request,
                           page: int = Query(1, ge=1),
                           page_size: int = Query(DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE),
                           session: AsyncSession = Depends(get_session)):
    data = await list_entries(session, status=PaymentStatus.PENDING, page=page, page_size=page_size,
                              at=request.app.state.clock())
    return success_response(data)


@admin_payments_router.get("")
async def all_payments(request: Request,
                       status: Optional[str] = Query(None),
                       page: int = Query(1, ge=1),
                       page_size: int = Query(DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE),
                       session: AsyncSession = Depends(get_session)):
    data = await list_entries(session, status=_parse_status(status), page=page, page_size=page_size,
                              at=request.app.state.clock())
    return success_response(data)


@admin_payments_router.post("/{order_ref}/verify")
async def verify_payment(order_ref: str,
                         payload: Optional[AdminDecisionIn] = None,
                         admin_id: str = Depends(require_admin),
                         session: AsyncSession = Depends(get_session),
                         manager: ReservationManager = Depends(get_manager),
                         notifier: Notifier = Depends(get_request_notifier)):
    payload = payload or AdminDecisionIn()
    data = await verify(session, order_ref, admin_id, payload.notes, manager=manager, notifier=notifier)
    return success_response(data)


@admin_payments_router.post("/{order_ref}/reject")
async def reject_payment(order_ref: str,
                         payload: Optional[AdminDecisionIn] = None,
                         admin_id: str = Depends(require_admin),
                         session: AsyncSession = Depends(get_session),
                         manager: ReservationManager = Depends(get_manager),
                         notifier: Notifier = Depends(get_request_notifier)):
    payload = payload or AdminDecisionIn()
    data = await reject(session, order_ref, admin_id, payload.reason or payload.notes,
                        manager=manager, notifier=notifier)
    return success_response(data)


@admin_inventory_router.post("/cleanup-expired")
async def cleanup_expired(request: Request, admin_id: str = Depends(require_admin)):
    sweeper = ExpirySweeper(get_session_factory(request), clock=request.app.state.clock)
    result = await sweeper.sweep_once()
    logger.info("admin.cleanup_expired", extra={"admin_id": admin_id, **result.as_dict()})
    return success_response({"message": "Expired reservations cleaned up", **result.as_dict()})
