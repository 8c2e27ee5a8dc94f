import asyncio
from dataclasses import asdict, dataclass
from datetime import datetime
from typing import Any, Callable, Dict, Optional

from singlepiece.common.logging_setup import get_logger
from singlepiece.common.utils import now
from singlepiece.config.settings import config_settings
from singlepiece.inventory.repository import list_expired_reservations, reload_product
from singlepiece.inventory.reservations import ReservationManager
from singlepiece.orders.repository import get_entry, get_order_item_keys, list_lapsed_pending
from singlepiece.orders.services import expire_entry
from singlepiece.schema.full_schema import PaymentStatus

logger = get_logger("singlepiece.workers.expiry_sweeper")


@dataclass
class SweepResult:
    released: int = 0
    expired_entries: int = 0
    errors: int = 0

    def as_dict(self) -> Dict[str, Any]:
        return asdict(self)


class ExpirySweeper:
    """Periodically hands lapsed holds back to AVAILABLE and expires their PENDING ledger entries.

    Lazy expiry already makes lapsed holds claimable; the sweep keeps stored state
    and the ledger in line with it. Every write is a compare-and-set on the state
    it observed, so racing a commit is harmless: whichever lands first wins.
    """

    def __init__(
        self,
        session_factory: Callable[[], Any],
        *,
        interval: Optional[float] = None,
        batch_size: Optional[int] = None,
        clock: Callable[[], datetime] = now,
    ):
        self.session_factory = session_factory
        self.interval = interval if interval is not None else config_settings.SWEEP_INTERVAL_SECONDS
        self.batch_size = batch_size if batch_size is not None else config_settings.SWEEP_BATCH_SIZE
        self.clock = clock
        self._stop = asyncio.Event()
        self._task: Optional[asyncio.Task] = None

    def start(self) -> asyncio.Task:
        if self._task is None or self._task.done():
            self._stop.clear()
            self._task = asyncio.create_task(self.run(), name="expiry-sweeper")
        return self._task

    def stop(self):
        self._stop.set()

    async def shutdown(self, timeout: float = 10.0) -> None:
        self.stop()
        if self._task is None:
            return
        try:
            await asyncio.wait_for(self._task, timeout=timeout)
        except asyncio.TimeoutError:
            logger.warning("sweeper.shutdown.timeout")
            self._task.cancel()
        self._task = None

    async def run(self):
        logger.info("sweeper.started", extra={"interval": self.interval})
        while not self._stop.is_set():
            try:
                await self.sweep_once()
            except Exception:
                logger.exception("sweeper.loop_error")
            try:
                await asyncio.wait_for(self._stop.wait(), timeout=self.interval)
            except asyncio.TimeoutError:
                pass
        logger.info("sweeper.stopped")

    async def sweep_once(self) -> SweepResult:
        result = SweepResult()
        await self._release_lapsed_holds(result)
        await self._expire_lapsed_entries(result)
        if result.released or result.expired_entries or result.errors:
            logger.info("sweeper.pass", extra=result.as_dict())
        return result

    async def _release_lapsed_holds(self, result: SweepResult) -> None:
        async with self.session_factory() as session:
            manager = ReservationManager(session, clock=self.clock)
            # plain values: a rollback below expires every loaded row
            lapsed = [(p.id, p.item_key) for p in await list_expired_reservations(session, self.clock(), self.batch_size)]
            for product_id, item_key in lapsed:
                try:
                    product = await reload_product(session, product_id)
                    if product is not None and await manager.expire_lapsed(product):
                        result.released += 1
                except Exception:
                    await session.rollback()
                    result.errors += 1
                    logger.exception("sweeper.release_failed", extra={"item_key": item_key})

    async def _expire_lapsed_entries(self, result: SweepResult) -> None:
        async with self.session_factory() as session:
            manager = ReservationManager(session, clock=self.clock)
            lapsed = [o.order_ref for _, o in await list_lapsed_pending(session, self.clock(), self.batch_size)]
            for order_ref in lapsed:
                try:
                    entry = await get_entry(session, order_ref)
                    if entry is None or entry[1].status != PaymentStatus.PENDING.value:
                        continue
                    order, payment = entry
                    keys = await get_order_item_keys(session, order.id)
                    expired, released = await expire_entry(session, manager, order, payment, keys)
                    result.released += released
                    result.expired_entries += int(expired)
                except Exception:
                    await session.rollback()
                    result.errors += 1
                    logger.exception("sweeper.expire_entry_failed", extra={"order_ref": order_ref})
