"""Purchase orchestration.

Preconditions are checked before anything is written. The writes then run as
a saga over the ledger store:

    debit buyer     -> compensated by crediting the same amount back
    create order    -> compensated by cancelling and deleting the order
    create escrow
    ---- committed: nothing below can undo the purchase ----
    record purchase transaction   (best effort)
    flip listing to sold          (best effort)

A best-effort step that fails leaves work for ``app.services.reconcile``.
"""

import logging

from app.errors import InsufficientFunds, MarketError, NotAvailable, NotFound, SelfPurchase
from app.services.affiliate import resolve_referral
from app.services.escrow import EscrowEngine, OrderStatus
from app.services.saga import Saga
from app.store import LedgerStore
from app.utils.operation_log import record_operation
from models.order import Order

logger = logging.getLogger("ecoswap.purchase")


class PurchaseOrchestrator:
    def __init__(self, store: LedgerStore, engine: EscrowEngine | None = None):
        self.store = store
        self.engine = engine or EscrowEngine(store)

    async def purchase(
        self,
        buyer_id: str,
        listing_id: int,
        affiliate_code: str | None = None,
        *,
        client_ip: str | None = None,
    ) -> Order:
        listing = await self.store.get_listing(listing_id)
        if listing is None:
            raise NotFound("Listing not found")
        if not listing.purchasable:
            raise NotAvailable()
        if listing.user_id == buyer_id:
            raise SelfPurchase()
        wallet = await self.store.get_wallet(buyer_id)
        if wallet is None or wallet.balance < listing.price:
            raise InsufficientFunds()

        price = listing.price
        link = await resolve_referral(
            self.store, affiliate_code, listing_id=listing.id, buyer_id=buyer_id, client_ip=client_ip
        )

        async def debit_buyer(ctx):
            return await self.store.apply_wallet_delta(buyer_id, -price)

        async def refund_buyer(ctx):
            # no ledger row: the debit it reverses was never recorded either
            await self.store.apply_wallet_delta(buyer_id, price)

        async def create_order(ctx):
            return await self.store.create_order(
                buyer_id=buyer_id,
                seller_id=listing.user_id,
                listing_id=listing.id,
                amount=price,
                affiliate_link_id=link.id if link else None,
                status=OrderStatus.PENDING.value,
            )

        async def discard_order(ctx):
            order = ctx["create_order"]
            try:
                await self.engine.cancel(order)
            finally:
                await self.store.delete_order(order.id)

        async def create_escrow(ctx):
            order = ctx["create_order"]
            return await self.store.create_escrow(order.id, order.amount)

        async def record_purchase(ctx):
            return await self.store.add_transaction(
                buyer_id, -price, "purchase", f"Purchased: {listing.title}", order_id=ctx["create_order"].id
            )

        async def mark_sold(ctx):
            if not await self.store.mark_listing_sold(listing.id):
                raise NotAvailable(f"Listing {listing.id} was no longer active")

        saga = (
            Saga("purchase")
            .step("debit_buyer", debit_buyer, refund_buyer)
            .step("create_order", create_order, discard_order)
            .step("create_escrow", create_escrow)
            .step("record_purchase", record_purchase, critical=False)
            .step("mark_sold", mark_sold, critical=False)
        )
        try:
            result = await saga.run()
        except MarketError as exc:
            logger.warning("PURCHASE_FAIL buyer=%s listing=%s code=%s", buyer_id, listing.id, exc.code)
            await record_operation(
                self.store,
                user_id=buyer_id,
                action="purchase_rolled_back",
                listing_id=listing.id,
                detail={"code": exc.code, "message": exc.message},
                ip=client_ip,
            )
            raise

        order = result.context["create_order"]
        logger.info(
            "PURCHASE_OK order=%s buyer=%s listing=%s amount=%s affiliate_link=%s tail_failures=%s",
            order.id,
            buyer_id,
            listing.id,
            price,
            order.affiliate_link_id,
            ",".join(result.tail_failures) or "-",
        )
        await record_operation(
            self.store,
            user_id=buyer_id,
            action="purchase",
            order_id=order.id,
            listing_id=listing.id,
            detail={"amount": price, "affiliate_link_id": order.affiliate_link_id},
            ip=client_ip,
        )
        return order
