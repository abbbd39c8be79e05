"""Reconciliation sweep for best-effort steps that did not complete.

Purchases and settlements commit their money movement first and treat the
bookkeeping that follows as best effort. This sweep finishes that
bookkeeping from the state of the records themselves, so it is safe to run
repeatedly.

An order is only completed when its seller ``sale`` transaction exists. A
released escrow without one is reported, never settled by the sweep.
"""

import logging
from dataclasses import dataclass, field

from app.errors import MarketError
from app.services.escrow import EscrowEngine, OrderStatus
from app.store import LedgerStore

logger = logging.getLogger("ecoswap.reconcile")


@dataclass
class ReconcileReport:
    listings_marked_sold: list[int] = field(default_factory=list)
    orders_completed: list[int] = field(default_factory=list)
    purchases_recorded: list[int] = field(default_factory=list)
    cancelled_removed: list[int] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)

    @property
    def changed(self) -> int:
        return (
            len(self.listings_marked_sold)
            + len(self.orders_completed)
            + len(self.purchases_recorded)
            + len(self.cancelled_removed)
        )


async def reconcile(store: LedgerStore) -> ReconcileReport:
    report = ReconcileReport()
    engine = EscrowEngine(store)

    for order in await store.orders_with_active_listing():
        try:
            if await store.mark_listing_sold(order.listing_id):
                report.listings_marked_sold.append(order.listing_id)
        except MarketError as exc:
            report.errors.append(f"listing {order.listing_id}: {exc.code}")

    for order in await store.orders_with_released_escrow():
        try:
            if order.status != OrderStatus.SHIPPED.value:
                report.errors.append(f"order {order.id}: escrow released while {order.status}")
            elif not await store.has_transaction(order.seller_id, order.id, "sale"):
                # the seller credit cannot be proven; needs manual review
                report.errors.append(f"order {order.id}: escrow released without seller sale record")
            else:
                await engine.complete(order)
                report.orders_completed.append(order.id)
        except MarketError as exc:
            report.errors.append(f"order {order.id}: {exc.code}")

    for order in await store.orders_missing_purchase_record():
        try:
            listing = await store.get_listing(order.listing_id)
            title = listing.title if listing else "Item"
            await store.add_transaction(
                order.buyer_id, -order.amount, "purchase", f"Purchased: {title}", order_id=order.id
            )
            report.purchases_recorded.append(order.id)
        except MarketError as exc:
            report.errors.append(f"purchase record {order.id}: {exc.code}")

    for order in await store.cancelled_orders():
        try:
            await store.delete_order(order.id)
            report.cancelled_removed.append(order.id)
        except MarketError as exc:
            report.errors.append(f"cancelled order {order.id}: {exc.code}")

    logger.info(
        "RECONCILE_DONE sold=%s completed=%s purchases=%s cancelled=%s errors=%s",
        len(report.listings_marked_sold),
        len(report.orders_completed),
        len(report.purchases_recorded),
        len(report.cancelled_removed),
        len(report.errors),
    )
    for error in report.errors:
        logger.warning("RECONCILE_ERROR %s", error)
    return report
