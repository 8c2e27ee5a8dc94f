from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable, Iterable, List, Optional, Tuple

from sqlalchemy.ext.asyncio import AsyncSession

from singlepiece.common.custom_exceptions import (
    ClaimConflict,
    ItemReservedByOther,
    ItemSold,
    ReservationExpired,
    ReservationMismatch,
    ValidationError,
)
from singlepiece.common.logging_setup import get_logger
from singlepiece.common.utils import as_utc, make_order_ref, now, seconds_left
from singlepiece.config.settings import config_settings
from singlepiece.inventory.repository import (
    ItemRef,
    compare_and_set_state,
    get_by_either_key,
    list_held_ids,
    parse_item_ref,
    reload_product,
)
from singlepiece.schema.full_schema import InventoryStatus, Product

logger = get_logger("singlepiece.inventory.reservations")

RESERVED = InventoryStatus.RESERVED
AVAILABLE = InventoryStatus.AVAILABLE
SOLD = InventoryStatus.SOLD

# a second compare-and-set miss on the same item surfaces as ClaimConflict
CLAIM_CAS_ATTEMPTS = 2

_RELEASED = {
    "inventory_status": AVAILABLE.value,
    "reserved_by": None,
    "reservation_token": None,
    "reserved_until": None,
}


def default_ttl() -> timedelta:
    return timedelta(minutes=config_settings.RESERVATION_TTL_MINUTES)


@dataclass
class Claim:
    token: str
    holder: str
    deadline: datetime
    products: List[Product] = field(default_factory=list)
    reused: bool = False


@dataclass
class _Acquired:
    product_id: int
    item_key: str
    # set when the item was already ours under an older token and got re-tagged
    previous_token: Optional[str] = None
    previous_deadline: Optional[datetime] = None


class ReservationManager:
    """Claims, commits and releases holds on unique items.

    Every state change is a compare-and-set on the item row committed on its own,
    so no lock is held in the process or across items. Each public entry point
    first folds lapsed holds back to AVAILABLE (`normalize_expired`).
    """

    def __init__(self, session: AsyncSession, clock: Callable[[], datetime] = now,
                 ttl: Optional[timedelta] = None):
        self.session = session
        self.clock = clock
        self.ttl = ttl or default_ttl()

    async def _load(self, refs: Iterable) -> List[Product]:
        products: List[Product] = []
        seen = set()
        for raw in refs:
            product = await get_by_either_key(self.session, parse_item_ref(raw))
            if product.id in seen:
                continue
            seen.add(product.id)
            products.append(product)
        return products

    async def expire_lapsed(self, product: Product) -> bool:
        """Release `product` if its hold has lapsed. Returns whether this call released it.

        The write is conditioned on the observed token and on the deadline having
        passed, so a concurrent commit or re-claim wins without error.
        """
        at = self.clock()
        deadline = as_utc(product.reserved_until)
        if product.inventory_status != RESERVED.value or deadline is None or at < deadline:
            return False
        released = await compare_and_set_state(
            self.session, product.id, RESERVED, product.reservation_token, _RELEASED,
            expired_as_of=at,
        )
        await self.session.commit()
        if released:
            logger.info("reservation.expired", extra={
                "item_key": product.item_key,
                "token": product.reservation_token,
            })
        return released

    async def normalize_expired(self, product: Product) -> Product:
        """Lazy expiry: return the row as it stands after folding a lapsed hold to AVAILABLE."""
        deadline = as_utc(product.reserved_until)
        if product.inventory_status != RESERVED.value or deadline is None or self.clock() < deadline:
            return product
        await self.expire_lapsed(product)
        return await reload_product(self.session, product.id)

    async def _load_normalized(self, refs: Iterable) -> List[Product]:
        return [await self.normalize_expired(p) for p in await self._load(refs)]

    async def claim(self, refs: Iterable[ItemRef], holder: str,
                    ttl: Optional[timedelta] = None) -> Claim:
        """Reserve every item in `refs` for `holder`, all or nothing.

        If the holder already holds exactly these items under one live token, that
        token is returned unchanged. Otherwise items are taken in order under a fresh
        token; on any failure everything this call took is handed back before raising.

        Items the holder already holds keep their deadline: the batch deadline is
        capped at the earliest of them, so re-checking out never extends a hold.
        """
        products = await self._load_normalized(refs)
        if not products:
            raise ValidationError("No items to reserve")
        for product in products:
            if not product.is_single_piece:
                raise ValidationError("Product is not a single piece item", item=product.item_key)

        own = [p for p in products if p.inventory_status == RESERVED.value and p.reserved_by == holder]
        tokens = {p.reservation_token for p in products}
        if len(own) == len(products) and len(tokens) == 1 and (
            await list_held_ids(self.session, products[0].reservation_token) == {p.id for p in products}
        ):
            logger.info("reservation.claim.reentered", extra={
                "holder": holder,
                "token": products[0].reservation_token,
                "items": len(products),
            })
            return Claim(
                token=products[0].reservation_token,
                holder=holder,
                deadline=as_utc(products[0].reserved_until),
                products=products,
                reused=True,
            )

        token = make_order_ref()
        deadline = min([self.clock() + (ttl or self.ttl), *(as_utc(p.reserved_until) for p in own)])
        acquired: List[_Acquired] = []
        claimed: List[Product] = []
        try:
            for product in products:
                claimed.append(await self._claim_one(product, holder, token, deadline, acquired))
        except Exception as exc:
            await self._unwind(acquired, token)
            logger.info("reservation.claim.failed", extra={
                "holder": holder,
                "token": token,
                "unwound": len(acquired),
                "reason": type(exc).__name__,
            })
            raise

        logger.info("reservation.claim.acquired", extra={
            "holder": holder,
            "token": token,
            "items": len(claimed),
        })
        return Claim(token=token, holder=holder, deadline=deadline, products=claimed)

    async def _claim_one(self, product: Product, holder: str, token: str,
                         deadline: datetime, acquired: List[_Acquired]) -> Product:
        for _ in range(CLAIM_CAS_ATTEMPTS):
            product = await self.normalize_expired(product)
            at = self.clock()
            status = InventoryStatus(product.inventory_status)

            if status is SOLD:
                raise ItemSold(item=product.item_key)

            if status is RESERVED:
                if product.reserved_by != holder:
                    raise ItemReservedByOther(
                        item=product.item_key,
                        time_left=seconds_left(product.reserved_until, at),
                    )
                if product.reservation_token == token:
                    return product
                # ours under an earlier checkout: move it onto this batch's token
                previous = _Acquired(product.id, product.item_key,
                                     product.reservation_token, as_utc(product.reserved_until))
                ok = await compare_and_set_state(
                    self.session, product.id, RESERVED, product.reservation_token,
                    {"reservation_token": token, "reserved_until": deadline, "reserved_by": holder},
                    live_as_of=at,
                )
            else:
                previous = _Acquired(product.id, product.item_key)
                ok = await compare_and_set_state(
                    self.session, product.id, AVAILABLE, product.reservation_token,
                    {
                        "inventory_status": RESERVED.value,
                        "reserved_by": holder,
                        "reservation_token": token,
                        "reserved_until": deadline,
                    },
                )

            await self.session.commit()
            if ok:
                acquired.append(previous)
                return await reload_product(self.session, product.id)

            logger.info("reservation.claim.cas_miss", extra={"item_key": product.item_key, "token": token})
            product = await reload_product(self.session, product.id)

        raise ClaimConflict(item=product.item_key)

    async def _unwind(self, acquired: List[_Acquired], token: str) -> None:
        for item in reversed(acquired):
            if item.previous_token is None:
                values = _RELEASED
            else:
                values = {"reservation_token": item.previous_token, "reserved_until": item.previous_deadline}
            try:
                await compare_and_set_state(self.session, item.product_id, RESERVED, token, values)
                await self.session.commit()
            except Exception:
                await self.session.rollback()
                logger.exception("reservation.unwind.failed", extra={"item_key": item.item_key, "token": token})

    def _classify(self, product: Product, token: str, at: datetime) -> str:
        """'sell' when the item can be sold under `token`, 'done' when it already was; raises otherwise."""
        status = InventoryStatus(product.inventory_status)
        if status is SOLD:
            if product.sold_token == token:
                return "done"
            raise ReservationMismatch(item=product.item_key)
        if status is AVAILABLE:
            # the hold lapsed and was swept, or was released: the buyer has to claim again
            raise ReservationExpired(item=product.item_key)
        if product.reservation_token != token:
            raise ReservationMismatch(item=product.item_key)
        if at >= as_utc(product.reserved_until):
            raise ReservationExpired(item=product.item_key)
        return "sell"

    async def check_hold(self, refs: Iterable[ItemRef], token: str) -> None:
        """Raise unless every item is still held (or already sold) under `token`."""
        at = self.clock()
        for product in await self._load(refs):
            self._classify(product, token, at)

    async def commit(self, refs: Iterable[ItemRef], token: str) -> int:
        """Sell every item held under `token`. Returns the number of items sold by this call.

        All writes share one transaction; if any item's hold changed underneath us
        the whole commit is rolled back and the failure reported for that item.
        Re-committing a token whose items are already sold is a no-op.
        """
        refs = list(refs)
        for _ in range(CLAIM_CAS_ATTEMPTS):
            products = await self._load(refs)
            at = self.clock()
            to_sell = [p for p in products if self._classify(p, token, at) == "sell"]
            lost = await self._sell(to_sell, token, at)
            if lost is None:
                logger.info("reservation.committed", extra={"token": token, "items": len(to_sell)})
                return len(to_sell)

            lost_id, lost_key = lost
            current = await reload_product(self.session, lost_id)
            logger.warning("reservation.commit.lost_race", extra={"item_key": lost_key, "token": token})
            if self._classify(current, token, at) == "sell":
                # still held under the token, so only the deadline can have moved
                raise ReservationExpired(item=lost_key)
            # "done": a concurrent commit of the same token sold it, go again

        raise ClaimConflict(item=lost_key)

    async def _sell(self, products: List[Product], token: str, at: datetime) -> Optional[Tuple[int, str]]:
        """Apply RESERVED -> SOLD for all `products` in one transaction.

        Returns id and key of the first item that missed, after rolling back.
        """
        sold_values = {
            "inventory_status": SOLD.value,
            "sold_token": token,
            "sold_at": at,
            "reserved_by": None,
            "reservation_token": None,
            "reserved_until": None,
        }
        for product in products:
            ok = await compare_and_set_state(self.session, product.id, RESERVED, token, sold_values, live_as_of=at)
            if not ok:
                # rollback expires every loaded row
                lost = (product.id, product.item_key)
                await self.session.rollback()
                return lost
        await self.session.commit()
        return None

    async def release(self, refs: Iterable[ItemRef], token: Optional[str] = None,
                      holder: Optional[str] = None) -> int:
        """Hand items back to AVAILABLE when held under `token` (or by `holder`).

        Items that are available, sold, or held by another claim are left alone.
        Returns the number of items released.
        """
        if token is None and holder is None:
            raise ValueError("release needs a token or a holder")

        released = 0
        for product in await self._load(refs):
            if product.inventory_status != RESERVED.value:
                continue
            if token is not None and product.reservation_token != token:
                continue
            if token is None and product.reserved_by != holder:
                continue
            ok = await compare_and_set_state(
                self.session, product.id, RESERVED, product.reservation_token, _RELEASED,
            )
            await self.session.commit()
            if ok:
                released += 1

        if released:
            logger.info("reservation.released", extra={"token": token, "holder": holder, "items": released})
        return released
