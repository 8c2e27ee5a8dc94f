from typing import Optional

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession

from singlepiece.common.utils import success_response
from singlepiece.db.dependencies import get_session
from singlepiece.inventory.repository import (
    availability_view,
    can_reserve_reason,
    find_by_either_key,
    get_by_either_key,
    list_products,
    parse_item_ref,
)

prods_public_router = APIRouter()


@prods_public_router.get("")
async def get_products(request: Request, category: Optional[str] = Query(None),
                       session: AsyncSession = Depends(get_session)):
    at = request.app.state.clock()
    products = [availability_view(p, at) for p in await list_products(session, category)]
    return success_response({"products": products, "count": len(products)})


@prods_public_router.get("/availability")
async def get_availability(request: Request, category: Optional[str] = Query(None),
                           session: AsyncSession = Depends(get_session)):
    at = request.app.state.clock()
    views = [availability_view(p, at) for p in await list_products(session, category)]
    summary = {
        "total": len(views),
        "available": sum(1 for v in views if v["isAvailable"]),
        "reserved": sum(1 for v in views if v["isReserved"]),
        "sold": sum(1 for v in views if v["inventoryStatus"] == "sold"),
    }
    items = [
        {k: v[k] for k in ("productId", "inventoryStatus", "isAvailable", "reservedUntil", "timeLeft")}
        for v in views
    ]
    return success_response({"summary": summary, "items": items})


@prods_public_router.get("/{item_ref}/status")
async def get_product_status(request: Request, item_ref: str, session: AsyncSession = Depends(get_session)):
    product = await get_by_either_key(session, parse_item_ref(item_ref))
    return success_response(availability_view(product, request.app.state.clock()))


@prods_public_router.get("/{item_ref}/can-reserve")
async def can_reserve(request: Request, item_ref: str, session: AsyncSession = Depends(get_session)):
    product = await find_by_either_key(session, parse_item_ref(item_ref))
    reason = can_reserve_reason(product, request.app.state.clock())
    return success_response({"productId": item_ref, "canReserve": reason is None, "reason": reason})
