import asyncio

import pytest

from app.errors import AlreadySettled, Forbidden, InvalidState, MarketError, NotFound, StoreUnavailable
from app.services.reconcile import reconcile
from app.services.settlement import SettlementService, compute_payout
from models.affiliate import AffiliateEarning
from models.logs import OperationLog
from models.wallet import Transaction

from conftest import AFFILIATE, BUYER, SELLER


@pytest.mark.parametrize(
    "amount,has_affiliate,seller_share,commission",
    [
        (1000, True, 900, 100),
        (999, True, 900, 99),
        (9, True, 9, 0),
        (1000, False, 1000, 0),
        (0, True, 0, 0),
    ],
)
def test_compute_payout(amount, has_affiliate, seller_share, commission):
    payout = compute_payout(amount, has_affiliate)
    assert (payout.seller_share, payout.commission) == (seller_share, commission)


def test_payout_always_conserves_the_amount():
    for amount in range(0, 2000, 37):
        payout = compute_payout(amount, True)
        assert payout.seller_share + payout.commission == amount
        assert payout.commission >= 0


def test_payout_rejects_negative_amounts():
    with pytest.raises(ValueError):
        compute_payout(-1, False)


@pytest.mark.asyncio
async def test_confirm_delivery_pays_seller(market, store):
    order = await market.shipped_order(price=250)

    payout = await SettlementService(store).confirm_delivery(BUYER, order.id)

    assert (payout.seller_share, payout.commission) == (250, 0)
    assert await market.balance(SELLER) == 250
    assert (await store.get_escrow(order.id)).status == "released"
    completed = await store.get_order(order.id)
    assert completed.status == "completed"
    assert completed.completed_at is not None
    [sale] = await store.list_transactions(SELLER)
    assert (sale.amount, sale.type, sale.order_id) == (250, "sale", order.id)
    assert await market.count(OperationLog, OperationLog.action == "delivery_confirmed") == 1


@pytest.mark.asyncio
async def test_confirm_delivery_splits_commission(market, store):
    order = await market.shipped_order(price=999, affiliate=AFFILIATE)

    payout = await SettlementService(store).confirm_delivery(BUYER, order.id)

    assert (payout.seller_share, payout.commission) == (900, 99)
    assert await market.balance(SELLER) == 900
    assert await market.balance(AFFILIATE) == 99
    assert await market.count(AffiliateEarning, AffiliateEarning.order_id == order.id) == 1
    [commission] = await store.list_transactions(AFFILIATE)
    assert (commission.amount, commission.type) == (99, "commission")

    stats = await store.affiliate_stats(AFFILIATE)
    assert stats["sales"] == 1
    assert stats["clicks"] == 1
    assert stats["total_earned"] == 99


@pytest.mark.asyncio
async def test_coins_are_conserved_through_purchase_and_settlement(market, store):
    order = await market.shipped_order(price=1000, affiliate=AFFILIATE)
    await SettlementService(store).confirm_delivery(BUYER, order.id)

    balances = [await market.balance(user) for user in (BUYER, SELLER, AFFILIATE)]
    assert balances == [0, 900, 100]
    assert sum(balances) == 1000


@pytest.mark.asyncio
async def test_second_confirmation_is_already_settled(market, store):
    order = await market.shipped_order(price=100)
    service = SettlementService(store)
    await service.confirm_delivery(BUYER, order.id)

    with pytest.raises(AlreadySettled):
        await service.confirm_delivery(BUYER, order.id)
    assert await market.balance(SELLER) == 100
    assert await market.count(Transaction, Transaction.user_id == SELLER) == 1


@pytest.mark.asyncio
async def test_concurrent_confirmations_credit_seller_once(market, store):
    order = await market.shipped_order(price=100, affiliate=AFFILIATE)
    service = SettlementService(store)

    results = await asyncio.gather(
        *(service.confirm_delivery(BUYER, order.id) for _ in range(4)),
        return_exceptions=True,
    )

    payouts = [r for r in results if not isinstance(r, Exception)]
    failures = [r for r in results if isinstance(r, Exception)]
    assert len(payouts) == 1
    assert all(isinstance(f, MarketError) for f in failures)
    assert await market.balance(SELLER) == 90
    assert await market.balance(AFFILIATE) == 10


@pytest.mark.asyncio
async def test_pending_order_cannot_be_confirmed(market, store):
    order = await market.pending_order()

    with pytest.raises(InvalidState):
        await SettlementService(store).confirm_delivery(BUYER, order.id)
    assert (await store.get_escrow(order.id)).status == "held"
    assert await market.balance(SELLER) is None


@pytest.mark.asyncio
async def test_only_buyer_can_confirm(market, store):
    order = await market.shipped_order()

    with pytest.raises(Forbidden):
        await SettlementService(store).confirm_delivery(SELLER, order.id)


@pytest.mark.asyncio
async def test_unknown_order(store):
    with pytest.raises(NotFound):
        await SettlementService(store).confirm_delivery(BUYER, 12345)


@pytest.mark.asyncio
async def test_failed_seller_credit_puts_escrow_back(market, store, monkeypatch):
    order = await market.shipped_order(price=100)
    original = store.apply_wallet_delta

    async def seller_unreachable(user_id, delta, **kwargs):
        if user_id == SELLER:
            raise StoreUnavailable("simulated outage")
        return await original(user_id, delta, **kwargs)

    monkeypatch.setattr(store, "apply_wallet_delta", seller_unreachable)
    with pytest.raises(StoreUnavailable):
        await SettlementService(store).confirm_delivery(BUYER, order.id)

    assert (await store.get_escrow(order.id)).status == "held"
    assert (await store.get_order(order.id)).status == "shipped"
    assert await market.balance(SELLER) is None

    monkeypatch.undo()
    payout = await SettlementService(store).confirm_delivery(BUYER, order.id)
    assert payout.seller_share == 100
    assert await market.balance(SELLER) == 100


@pytest.mark.asyncio
async def test_lost_completion_is_reconciled(market, store, monkeypatch):
    order = await market.shipped_order(price=100)
    service = SettlementService(store)

    async def lost(order):
        raise StoreUnavailable("simulated outage")

    monkeypatch.setattr(service.engine, "complete", lost)
    await service.confirm_delivery(BUYER, order.id)

    assert (await store.get_order(order.id)).status == "shipped"
    assert await market.balance(SELLER) == 100
    with pytest.raises(AlreadySettled):
        await service.confirm_delivery(BUYER, order.id)

    monkeypatch.undo()
    report = await reconcile(store)

    assert report.orders_completed == [order.id]
    assert (await store.get_order(order.id)).status == "completed"
    assert await market.balance(SELLER) == 100


@pytest.mark.asyncio
async def test_vanished_affiliate_link_pays_no_commission(market, store, monkeypatch):
    order = await market.shipped_order(price=1000, affiliate=AFFILIATE)

    async def no_link(link_id):
        return None

    monkeypatch.setattr(store, "get_affiliate_link", no_link)
    payout = await SettlementService(store).confirm_delivery(BUYER, order.id)

    assert (payout.seller_share, payout.commission) == (1000, 0)
    assert await market.balance(AFFILIATE) is None


@pytest.mark.asyncio
async def test_unreadable_escrow_after_claim_still_pays_seller(market, store, monkeypatch):
    order = await market.shipped_order(price=100)
    original = store.get_escrow
    calls = []

    async def unreadable_after_first(order_id):
        calls.append(order_id)
        if len(calls) > 1:
            raise StoreUnavailable("simulated outage")
        return await original(order_id)

    monkeypatch.setattr(store, "get_escrow", unreadable_after_first)
    payout = await SettlementService(store).confirm_delivery(BUYER, order.id)

    assert payout.seller_share == 100
    monkeypatch.undo()
    assert await market.balance(SELLER) == 100
    assert (await store.get_escrow(order.id)).status == "released"
    assert (await store.get_order(order.id)).status == "completed"


@pytest.mark.asyncio
async def test_unpaid_release_is_never_completed_by_reconcile(market, store, monkeypatch):
    order = await market.shipped_order(price=100)
    original_delta = store.apply_wallet_delta
    original_escrow_update = store.update_escrow_if

    async def seller_unreachable(user_id, delta, **kwargs):
        if user_id == SELLER:
            raise StoreUnavailable("simulated outage")
        return await original_delta(user_id, delta, **kwargs)

    async def restore_fails(escrow_id, expected_status, expected_version, values):
        if expected_status == "released":
            raise StoreUnavailable("simulated outage")
        return await original_escrow_update(escrow_id, expected_status, expected_version, values)

    monkeypatch.setattr(store, "apply_wallet_delta", seller_unreachable)
    monkeypatch.setattr(store, "update_escrow_if", restore_fails)
    with pytest.raises(StoreUnavailable):
        await SettlementService(store).confirm_delivery(BUYER, order.id)

    monkeypatch.undo()
    report = await reconcile(store)

    assert report.orders_completed == []
    assert report.errors == [f"order {order.id}: escrow released without seller sale record"]
    assert (await store.get_order(order.id)).status == "shipped"
    assert await market.balance(SELLER) is None
