import pytest

from app.services.escrow import EscrowEngine
from app.services.reconcile import reconcile
from models.order import Order

from conftest import BUYER, SELLER


@pytest.mark.asyncio
async def test_clean_ledger_has_nothing_to_do(market, store):
    await market.shipped_order()

    report = await reconcile(store)

    assert report.changed == 0
    assert report.errors == []


@pytest.mark.asyncio
async def test_leftover_cancelled_order_is_removed(market, store):
    listing = await market.listing(price=40)
    order = await store.create_order(
        buyer_id=BUYER, seller_id=SELLER, listing_id=listing.id, amount=40, status="cancelled"
    )

    report = await reconcile(store)

    assert report.cancelled_removed == [order.id]
    assert report.purchases_recorded == []
    assert await market.count(Order) == 0


@pytest.mark.asyncio
async def test_released_escrow_on_pending_order_is_reported(market, store):
    order = await market.pending_order()
    escrow = await store.get_escrow(order.id)
    await store.update_escrow_if(escrow.id, "held", escrow.version, {"status": "released"})

    report = await reconcile(store)

    assert report.orders_completed == []
    assert report.errors == [f"order {order.id}: escrow released while pending"]
    assert (await store.get_order(order.id)).status == "pending"


@pytest.mark.asyncio
async def test_second_sweep_is_a_no_op(market, store):
    listing = await market.listing(price=40)
    await market.wallet(BUYER, 40)
    await store.create_order(buyer_id=BUYER, seller_id=SELLER, listing_id=listing.id, amount=40, status="pending")

    first = await reconcile(store)
    second = await reconcile(store)

    assert first.listings_marked_sold == [listing.id]
    assert len(first.purchases_recorded) == 1
    assert second.changed == 0


@pytest.mark.asyncio
async def test_released_escrow_without_seller_sale_is_reported(market, store):
    order = await market.shipped_order()
    await EscrowEngine(store).release(order, await store.get_escrow(order.id))

    report = await reconcile(store)

    assert report.orders_completed == []
    assert report.errors == [f"order {order.id}: escrow released without seller sale record"]
    assert (await store.get_order(order.id)).status == "shipped"


@pytest.mark.asyncio
async def test_released_escrow_with_seller_sale_is_completed(market, store):
    order = await market.shipped_order()
    await EscrowEngine(store).release(order, await store.get_escrow(order.id))
    await store.apply_wallet_delta(SELLER, order.amount, create=True)
    await store.add_transaction(SELLER, order.amount, "sale", "Sale: Vintage Leather Jacket", order_id=order.id)

    report = await reconcile(store)

    assert report.orders_completed == [order.id]
    assert (await store.get_order(order.id)).status == "completed"
