"""Settlement & commission: release escrowed coins on delivery confirmation.

Payout split::

    commission   = amount * rate // 100   if the order carries a referral
                 = 0                      otherwise
    seller_share = amount - commission

Integer coins only, so the two shares always sum to the escrowed amount.
"""

import logging
from dataclasses import dataclass

from app.config import settings
from app.errors import AlreadySettled, Forbidden, InvalidState, MarketError, NotFound
from app.services.escrow import EscrowEngine, OrderStatus
from app.services.saga import Saga
from app.store import LedgerStore
from app.utils.operation_log import record_operation
from models.order import Order

logger = logging.getLogger("ecoswap.settlement")


@dataclass(frozen=True)
class Payout:
    amount: int
    seller_share: int
    commission: int


def compute_payout(amount: int, has_affiliate: bool, rate_percent: int | None = None) -> Payout:
    if amount < 0 or int(amount) != amount:
        raise ValueError("order amount must be a non-negative integer")
    rate = settings.COMMISSION_RATE_PERCENT if rate_percent is None else rate_percent
    commission = amount * rate // 100 if has_affiliate else 0
    return Payout(amount=amount, seller_share=amount - commission, commission=commission)


class SettlementService:
    def __init__(self, store: LedgerStore, engine: EscrowEngine | None = None):
        self.store = store
        self.engine = engine or EscrowEngine(store)

    async def confirm_delivery(self, caller_id: str, order_id: int) -> Payout:
        order = await self.store.get_order(order_id)
        if order is None:
            raise NotFound("Order not found")
        if order.buyer_id != caller_id:
            raise Forbidden("Only the buyer can confirm delivery")
        if order.status == OrderStatus.COMPLETED.value:
            raise AlreadySettled("Order already completed")
        if order.status != OrderStatus.SHIPPED.value:
            raise InvalidState()
        escrow = await self.store.get_escrow(order.id)
        if escrow is None:
            raise AlreadySettled("No escrow held for this order")
        if escrow.status != "held":
            raise AlreadySettled("Escrow already released")

        link = None
        if order.affiliate_link_id:
            link = await self.store.get_affiliate_link(order.affiliate_link_id)
            if link is None:
                logger.warning("SETTLE_LINK_MISSING order=%s link=%s", order.id, order.affiliate_link_id)
        payout = compute_payout(order.amount, link is not None)
        title = await self._listing_title(order)

        async def claim(ctx):
            return await self.engine.release(order, escrow)

        async def unclaim(ctx):
            await self.engine.restore(ctx["claim"])

        async def credit_seller(ctx):
            return await self.store.apply_wallet_delta(order.seller_id, payout.seller_share, create=True)

        async def complete_order(ctx):
            return await self.engine.complete(order)

        async def record_sale(ctx):
            return await self.store.add_transaction(
                order.seller_id, payout.seller_share, "sale", f"Sale: {title}", order_id=order.id
            )

        async def pay_affiliate(ctx):
            await self.store.apply_wallet_delta(link.affiliate_user_id, payout.commission, create=True)
            await self.store.add_affiliate_earning(
                affiliate_user_id=link.affiliate_user_id,
                listing_id=order.listing_id,
                affiliate_link_id=link.id,
                order_id=order.id,
                amount=payout.commission,
            )
            await self.store.add_transaction(
                link.affiliate_user_id,
                payout.commission,
                "commission",
                f"Affiliate commission: {title}",
                order_id=order.id,
            )
            logger.info("COMMISSION_PAID order=%s affiliate=%s amount=%s", order.id, link.affiliate_user_id, payout.commission)

        saga = (
            Saga("settlement")
            .step("claim", claim, unclaim)
            .step("credit_seller", credit_seller)
            .step("record_sale", record_sale, critical=False)
            .step("complete_order", complete_order, critical=False)
        )
        if payout.commission > 0:
            saga.step("pay_affiliate", pay_affiliate, critical=False)

        result = await saga.run()
        logger.info(
            "SETTLE_OK order=%s seller=%s seller_share=%s commission=%s tail_failures=%s",
            order.id,
            order.seller_id,
            payout.seller_share,
            payout.commission,
            ",".join(result.tail_failures) or "-",
        )
        await record_operation(
            self.store,
            user_id=caller_id,
            action="delivery_confirmed",
            order_id=order.id,
            listing_id=order.listing_id,
            detail={
                "seller_share": payout.seller_share,
                "commission": payout.commission,
                "tail_failures": result.tail_failures,
            },
        )
        return payout

    async def _listing_title(self, order: Order) -> str:
        try:
            listing = await self.store.get_listing(order.listing_id)
        except MarketError:
            return "Item"
        return listing.title if listing else "Item"
