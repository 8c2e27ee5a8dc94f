import asyncio
from datetime import timedelta

import pytest

from singlepiece.common.custom_exceptions import (
    ItemReservedByOther,
    ItemSold,
    NotFound,
    ReservationExpired,
    ReservationMismatch,
    ValidationError,
)
from singlepiece.common.utils import as_utc
from singlepiece.inventory.repository import ExternalKey, NativeId, find_by_either_key, parse_item_ref
from singlepiece.inventory.reservations import ReservationManager
from singlepiece.schema.full_schema import InventoryStatus


@pytest.mark.asyncio
async def test_claim_holds_item_for_ttl(db_session, clock, make_product, load_product):
    await make_product("GZ-RING-001")
    manager = ReservationManager(db_session, clock=clock)

    claim = await manager.claim(["GZ-RING-001"], "buyer-a")

    assert claim.token.startswith("GZ")
    assert claim.deadline == clock() + timedelta(minutes=15)
    assert not claim.reused

    product = await load_product("GZ-RING-001")
    assert product.inventory_status == InventoryStatus.RESERVED
    assert product.reserved_by == "buyer-a"
    assert product.reservation_token == claim.token
    assert as_utc(product.reserved_until) == claim.deadline


@pytest.mark.asyncio
async def test_concurrent_claims_have_one_winner(session_factory, clock, make_product, load_product):
    await make_product("GZ-VASE-007")

    async def attempt(buyer):
        async with session_factory() as session:
            return await ReservationManager(session, clock=clock).claim(["GZ-VASE-007"], buyer)

    results = await asyncio.gather(*(attempt(f"buyer-{i}") for i in range(6)), return_exceptions=True)

    winners = [r for r in results if not isinstance(r, Exception)]
    losers = [r for r in results if isinstance(r, Exception)]
    assert len(winners) == 1
    assert len(losers) == 5
    assert all(isinstance(e, ItemReservedByOther) for e in losers)

    product = await load_product("GZ-VASE-007")
    assert product.reserved_by == winners[0].holder
    assert product.reservation_token == winners[0].token


@pytest.mark.asyncio
async def test_sold_item_cannot_be_claimed_or_sold_twice(session_factory, clock, make_product, load_product):
    await make_product("GZ-SCARF-002")
    async with session_factory() as session:
        manager = ReservationManager(session, clock=clock)
        claim = await manager.claim(["GZ-SCARF-002"], "buyer-a")
        assert await manager.commit(["GZ-SCARF-002"], claim.token) == 1
        # committing the same token again is a no-op
        assert await manager.commit(["GZ-SCARF-002"], claim.token) == 0

        with pytest.raises(ItemSold):
            await manager.claim(["GZ-SCARF-002"], "buyer-b")

    product = await load_product("GZ-SCARF-002")
    assert product.inventory_status == InventoryStatus.SOLD
    assert product.sold_token == claim.token
    assert product.reservation_token is None


@pytest.mark.asyncio
async def test_commit_under_foreign_token_is_rejected(db_session, clock, make_product):
    await make_product("GZ-BOWL-010")
    manager = ReservationManager(db_session, clock=clock)
    claim = await manager.claim(["GZ-BOWL-010"], "buyer-a")
    await manager.commit(["GZ-BOWL-010"], claim.token)

    with pytest.raises(ReservationMismatch):
        await manager.commit(["GZ-BOWL-010"], "GZ0000000000000XXXXX")


@pytest.mark.asyncio
async def test_lapsed_hold_is_claimable_without_sweep(session_factory, clock, make_product, load_product):
    await make_product("GZ-LAMP-003")
    async with session_factory() as session:
        first = await ReservationManager(session, clock=clock).claim(["GZ-LAMP-003"], "buyer-a")

    clock.advance(minutes=16)

    async with session_factory() as session:
        manager = ReservationManager(session, clock=clock)
        second = await manager.claim(["GZ-LAMP-003"], "buyer-b")
        assert second.token != first.token

        with pytest.raises(ReservationMismatch):
            await manager.commit(["GZ-LAMP-003"], first.token)

    product = await load_product("GZ-LAMP-003")
    assert product.reserved_by == "buyer-b"


@pytest.mark.asyncio
async def test_commit_after_deadline_raises_expired(db_session, clock, make_product, load_product):
    await make_product("GZ-MUG-004")
    manager = ReservationManager(db_session, clock=clock)
    claim = await manager.claim(["GZ-MUG-004"], "buyer-a")

    clock.advance(minutes=15)

    with pytest.raises(ReservationExpired):
        await manager.commit(["GZ-MUG-004"], claim.token)
    product = await load_product("GZ-MUG-004")
    assert product.inventory_status != InventoryStatus.SOLD


@pytest.mark.asyncio
async def test_reclaim_by_same_holder_returns_same_token(db_session, clock, make_product):
    await make_product("GZ-RING-005")
    await make_product("GZ-RING-006")
    manager = ReservationManager(db_session, clock=clock)

    first = await manager.claim(["GZ-RING-005", "GZ-RING-006"], "buyer-a")
    clock.advance(minutes=3)
    again = await manager.claim(["GZ-RING-006", "GZ-RING-005"], "buyer-a")

    assert again.reused
    assert again.token == first.token
    assert again.deadline == first.deadline


@pytest.mark.asyncio
async def test_new_batches_never_extend_a_held_item(session_factory, clock, make_product, load_product):
    for key in ("GZ-RING-060", "GZ-RING-061", "GZ-RING-062"):
        await make_product(key)
    async with session_factory() as session:
        first = await ReservationManager(session, clock=clock).claim(["GZ-RING-060"], "buyer-a")

    for other in ("GZ-RING-061", "GZ-RING-062", "GZ-RING-061", "GZ-RING-062"):
        clock.advance(minutes=3)
        async with session_factory() as session:
            batch = await ReservationManager(session, clock=clock).claim(["GZ-RING-060", other], "buyer-a")
        assert not batch.reused
        assert batch.deadline == first.deadline
        assert as_utc((await load_product("GZ-RING-060")).reserved_until) == first.deadline

    clock.advance(minutes=3)
    async with session_factory() as session:
        taken = await ReservationManager(session, clock=clock).claim(["GZ-RING-060"], "buyer-b")
    assert (await load_product("GZ-RING-060")).reserved_by == "buyer-b"
    assert taken.deadline == clock() + timedelta(minutes=15)


@pytest.mark.asyncio
async def test_subset_of_a_held_batch_gets_its_own_token(db_session, clock, make_product, load_product):
    await make_product("GZ-CUP-070")
    await make_product("GZ-CUP-071")
    manager = ReservationManager(db_session, clock=clock)

    cart = await manager.claim(["GZ-CUP-070", "GZ-CUP-071"], "buyer-a")
    clock.advance(minutes=5)
    single = await manager.claim(["GZ-CUP-070"], "buyer-a")

    assert not single.reused
    assert single.token != cart.token
    assert single.deadline == cart.deadline
    assert (await load_product("GZ-CUP-070")).reservation_token == single.token
    assert (await load_product("GZ-CUP-071")).reservation_token == cart.token

    # the same single item again is a re-entry
    again = await manager.claim(["GZ-CUP-070"], "buyer-a")
    assert again.reused
    assert again.token == single.token


@pytest.mark.asyncio
async def test_only_single_piece_items_can_be_claimed(db_session, clock, make_product, load_product):
    await make_product("GZ-TEA-080")
    await make_product("GZ-TEA-081", is_single_piece=False)
    manager = ReservationManager(db_session, clock=clock)

    with pytest.raises(ValidationError):
        await manager.claim(["GZ-TEA-080", "GZ-TEA-081"], "buyer-a")

    for key in ("GZ-TEA-080", "GZ-TEA-081"):
        assert (await load_product(key)).inventory_status == InventoryStatus.AVAILABLE


@pytest.mark.asyncio
async def test_reclaim_after_lapse_gets_fresh_token(db_session, clock, make_product):
    await make_product("GZ-TOTE-008")
    manager = ReservationManager(db_session, clock=clock)

    first = await manager.claim(["GZ-TOTE-008"], "buyer-a")
    clock.advance(minutes=20)
    second = await manager.claim(["GZ-TOTE-008"], "buyer-a")

    assert not second.reused
    assert second.token != first.token
    assert second.deadline == clock() + timedelta(minutes=15)


@pytest.mark.asyncio
async def test_failed_batch_claim_hands_everything_back(session_factory, clock, make_product, load_product):
    await make_product("GZ-PLATE-011")
    await make_product("GZ-PLATE-012")
    await make_product("GZ-PLATE-013")

    async with session_factory() as session:
        await ReservationManager(session, clock=clock).claim(["GZ-PLATE-013"], "buyer-a")

    async with session_factory() as session:
        with pytest.raises(ItemReservedByOther) as exc_info:
            await ReservationManager(session, clock=clock).claim(
                ["GZ-PLATE-011", "GZ-PLATE-012", "GZ-PLATE-013"], "buyer-b"
            )
    assert exc_info.value.time_left == 15 * 60

    for key in ("GZ-PLATE-011", "GZ-PLATE-012"):
        product = await load_product(key)
        assert product.inventory_status == InventoryStatus.AVAILABLE
        assert product.reservation_token is None
    assert (await load_product("GZ-PLATE-013")).reserved_by == "buyer-a"


@pytest.mark.asyncio
async def test_failed_batch_restores_retagged_hold(session_factory, clock, make_product, load_product):
    await make_product("GZ-CUP-020")
    await make_product("GZ-CUP-021")

    async with session_factory() as session:
        own = await ReservationManager(session, clock=clock).claim(["GZ-CUP-020"], "buyer-a")
    async with session_factory() as session:
        await ReservationManager(session, clock=clock).claim(["GZ-CUP-021"], "buyer-b")

    clock.advance(minutes=2)
    async with session_factory() as session:
        with pytest.raises(ItemReservedByOther):
            await ReservationManager(session, clock=clock).claim(["GZ-CUP-020", "GZ-CUP-021"], "buyer-a")

    product = await load_product("GZ-CUP-020")
    assert product.reservation_token == own.token
    assert as_utc(product.reserved_until) == own.deadline


@pytest.mark.asyncio
async def test_commit_is_all_or_nothing(db_session, clock, make_product, load_product):
    await make_product("GZ-SET-030")
    await make_product("GZ-SET-031")
    manager = ReservationManager(db_session, clock=clock)
    claim = await manager.claim(["GZ-SET-030", "GZ-SET-031"], "buyer-a")

    assert await manager.release(["GZ-SET-031"], token=claim.token) == 1

    with pytest.raises(ReservationExpired):
        await manager.commit(["GZ-SET-030", "GZ-SET-031"], claim.token)

    first = await load_product("GZ-SET-030")
    assert first.inventory_status == InventoryStatus.RESERVED
    assert first.sold_token is None


@pytest.mark.asyncio
async def test_release_only_touches_matching_holds(db_session, clock, make_product, load_product):
    await make_product("GZ-BAG-040")
    await make_product("GZ-BAG-041")
    manager = ReservationManager(db_session, clock=clock)
    claim = await manager.claim(["GZ-BAG-040"], "buyer-a")

    assert await manager.release(["GZ-BAG-040"], token="GZ0000000000000XXXXX") == 0
    assert await manager.release(["GZ-BAG-040"], holder="buyer-b") == 0
    # available items are left alone
    assert await manager.release(["GZ-BAG-041"], holder="buyer-a") == 0
    assert await manager.release(["GZ-BAG-040"], holder="buyer-a") == 1
    assert await manager.release(["GZ-BAG-040"], token=claim.token) == 0

    assert (await load_product("GZ-BAG-040")).inventory_status == InventoryStatus.AVAILABLE

    with pytest.raises(ValueError):
        await manager.release(["GZ-BAG-040"])


@pytest.mark.asyncio
async def test_claim_input_errors(db_session, clock):
    manager = ReservationManager(db_session, clock=clock)
    with pytest.raises(ValidationError):
        await manager.claim([], "buyer-a")
    with pytest.raises(NotFound):
        await manager.claim(["GZ-MISSING-1"], "buyer-a")


@pytest.mark.asyncio
async def test_item_refs_resolve_by_either_key(db_session, make_product):
    product = await make_product("GZ-COMB-050")

    assert parse_item_ref(str(product.public_id)) == NativeId(product.public_id)
    assert parse_item_ref("GZ-COMB-050") == ExternalKey("GZ-COMB-050")

    by_native = await find_by_either_key(db_session, parse_item_ref(str(product.public_id)))
    by_key = await find_by_either_key(db_session, ExternalKey("GZ-COMB-050"))
    assert by_native.id == by_key.id == product.id
    assert await find_by_either_key(db_session, ExternalKey("nope")) is None
