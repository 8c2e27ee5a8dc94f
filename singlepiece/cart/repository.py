from typing import List, Optional

from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from singlepiece.db.utils import fresh
from singlepiece.schema.full_schema import Cart, CartItem, Product


async def get_cart_id(session: AsyncSession, buyer_id: str) -> Optional[int]:
    res = await session.execute(select(Cart.id).where(Cart.buyer_id == buyer_id))
    return res.scalar_one_or_none()


async def get_or_create_cart(session: AsyncSession, buyer_id: str) -> int:
    cart_id = await get_cart_id(session, buyer_id)
    if cart_id:
        return cart_id

    cart = Cart(buyer_id=buyer_id)
    session.add(cart)
    try:
        await session.commit()
        return cart.id
    except IntegrityError:
        # concurrent first add for the same buyer
        await session.rollback()
        return await get_cart_id(session, buyer_id)


async def add_item_to_cart(session: AsyncSession, cart_id: int, product_id: int) -> bool:
    """Returns False when the item was already in the cart. Caller commits."""
    res = await session.execute(
        select(CartItem.id).where(CartItem.cart_id == cart_id, CartItem.product_id == product_id).limit(1)
    )
    if res.scalar_one_or_none() is not None:
        return False
    session.add(CartItem(cart_id=cart_id, product_id=product_id))
    await session.flush()
    return True


async def list_cart_products(session: AsyncSession, buyer_id: str) -> List[Product]:
    stmt = (
        select(Product)
        .join(CartItem, CartItem.product_id == Product.id)
        .join(Cart, Cart.id == CartItem.cart_id)
        .where(Cart.buyer_id == buyer_id)
        .order_by(CartItem.id)
    )
    res = await session.execute(fresh(stmt))
    return list(res.scalars().all())


async def remove_item_from_cart(session: AsyncSession, buyer_id: str, product_id: int) -> int:
    cart_id = await get_cart_id(session, buyer_id)
    if cart_id is None:
        return 0
    res = await session.execute(
        delete(CartItem).where(CartItem.cart_id == cart_id, CartItem.product_id == product_id)
    )
    return res.rowcount or 0


async def clear_cart(session: AsyncSession, buyer_id: str, product_ids: Optional[List[int]] = None) -> int:
    """Drop the buyer's cart lines (only `product_ids` when given). Caller commits."""
    cart_id = await get_cart_id(session, buyer_id)
    if cart_id is None:
        return 0
    stmt = delete(CartItem).where(CartItem.cart_id == cart_id)
    if product_ids is not None:
        stmt = stmt.where(CartItem.product_id.in_(product_ids))
    res = await session.execute(stmt)
    return res.rowcount or 0
