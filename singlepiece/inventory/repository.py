import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional, Set, Union

from sqlalchemy import and_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from singlepiece.common.custom_exceptions import NotFound
from singlepiece.common.utils import as_utc, iso, seconds_left
from singlepiece.db.utils import fresh
from singlepiece.schema.full_schema import InventoryStatus, Product


@dataclass(frozen=True)
class NativeId:
    """Storage-native identity of an item (its public uuid)."""
    value: uuid.UUID

    def __str__(self) -> str:
        return str(self.value)


@dataclass(frozen=True)
class ExternalKey:
    """Human assigned item key, e.g. `GZ-RING-014`."""
    value: str

    def __str__(self) -> str:
        return self.value


ItemRef = Union[NativeId, ExternalKey]


def parse_item_ref(raw: Union[str, uuid.UUID, ItemRef]) -> ItemRef:
    if isinstance(raw, (NativeId, ExternalKey)):
        return raw
    if isinstance(raw, uuid.UUID):
        return NativeId(raw)
    raw = str(raw).strip()
    try:
        return NativeId(uuid.UUID(raw))
    except ValueError:
        return ExternalKey(raw)


async def find_by_either_key(session: AsyncSession, ref: ItemRef) -> Optional[Product]:
    """Resolve an item reference to its row, or None.

    A NativeId is tried against `public_id` first and then against `item_key`,
    since a human assigned key may itself be uuid shaped.
    """
    if isinstance(ref, NativeId):
        res = await session.execute(fresh(select(Product).where(Product.public_id == ref.value)))
        product = res.scalar_one_or_none()
        if product is not None:
            return product
        key = str(ref.value)
    else:
        key = ref.value

    res = await session.execute(fresh(select(Product).where(Product.item_key == key)))
    return res.scalar_one_or_none()


async def get_by_either_key(session: AsyncSession, ref: ItemRef) -> Product:
    product = await find_by_either_key(session, ref)
    if product is None:
        raise NotFound(f"Product {ref} not found")
    return product


async def reload_product(session: AsyncSession, product_id: int) -> Optional[Product]:
    stmt = fresh(select(Product).where(Product.id == product_id))
    res = await session.execute(stmt)
    return res.scalar_one_or_none()


async def compare_and_set_state(session: AsyncSession, product_id: int,
                                expected_state: InventoryStatus,
                                expected_token: Optional[str],
                                values: Dict[str, Any], *,
                                expired_as_of: Optional[datetime] = None,
                                live_as_of: Optional[datetime] = None) -> bool:
    """Single-statement optimistic transition of one item.

    Applies `values` only if the row still has `expected_state` and
    `expected_token` (None matches a cleared token) and, when given, its
    `reserved_until` is at or before `expired_as_of` / after `live_as_of`. Returns whether the
    row was updated. Does not commit.
    """
    conds = [Product.id == product_id, Product.inventory_status == int(expected_state)]
    if expected_token is None:
        conds.append(Product.reservation_token.is_(None))
    else:
        conds.append(Product.reservation_token == expected_token)
    if expired_as_of is not None:
        conds.append(Product.reserved_until <= expired_as_of)
    if live_as_of is not None:
        conds.append(Product.reserved_until > live_as_of)

    stmt = (
        update(Product)
        .where(and_(*conds))
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    result = await session.execute(stmt)
    return result.rowcount == 1


async def list_held_ids(session: AsyncSession, token: str) -> Set[int]:
    """Ids of the items currently RESERVED under `token`."""
    res = await session.execute(
        select(Product.id).where(
            Product.inventory_status == InventoryStatus.RESERVED.value,
            Product.reservation_token == token,
        )
    )
    return {r[0] for r in res.all()}


async def list_expired_reservations(session: AsyncSession, at: datetime, limit: int = 100) -> List[Product]:
    stmt = (
        select(Product)
        .where(
            Product.inventory_status == InventoryStatus.RESERVED.value,
            Product.reserved_until <= at,
        )
        .order_by(Product.reserved_until, Product.id)
        .limit(limit)
    )
    res = await session.execute(fresh(stmt))
    return list(res.scalars().all())


async def list_products(session: AsyncSession, category: Optional[str] = None) -> List[Product]:
    stmt = select(Product).order_by(Product.id)
    if category:
        stmt = stmt.where(Product.category == category)
    res = await session.execute(fresh(stmt))
    return list(res.scalars().all())


def logical_status(product: Product, at: datetime) -> InventoryStatus:
    """Status as readers must see it: a lapsed reservation counts as available."""
    status = InventoryStatus(product.inventory_status)
    if status is InventoryStatus.RESERVED:
        deadline = as_utc(product.reserved_until)
        if deadline is None or at >= deadline:
            return InventoryStatus.AVAILABLE
    return status


def availability_view(product: Product, at: datetime) -> Dict[str, Any]:
    status = logical_status(product, at)
    is_reserved = status is InventoryStatus.RESERVED
    is_available = status is InventoryStatus.AVAILABLE
    return {
        "id": str(product.public_id),
        "productId": product.item_key,
        "name": product.name,
        "price": product.price,
        "category": product.category,
        "images": product.images or [],
        "isSinglePiece": product.is_single_piece,
        "inventoryStatus": status.name.lower(),
        "isAvailable": is_available,
        "isReserved": is_reserved,
        "canBeReserved": is_available and product.is_single_piece,
        "reservedUntil": iso(product.reserved_until) if is_reserved else None,
        "timeLeft": seconds_left(product.reserved_until, at) if is_reserved else 0,
    }


def can_reserve_reason(product: Optional[Product], at: datetime) -> Optional[str]:
    """None when the item can be reserved right now, otherwise a buyer facing reason."""
    if product is None:
        return "Product not found"
    status = logical_status(product, at)
    if status is InventoryStatus.SOLD:
        return "Product already sold"
    if status is InventoryStatus.RESERVED:
        return "Product is currently reserved"
    if not product.is_single_piece:
        return "Product is not a single piece item"
    return None
