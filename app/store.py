"""Ledger store: record-level access to wallets, listings, orders and escrow.

Each public coroutine is one short unit of work in its own session. Nothing
here spans several records atomically; multi-record sequences are built on
top of these primitives by the saga in ``app.services.saga``.

Mutations of contended rows (wallets, escrows, orders, listings) are
conditional updates keyed on the previously read ``version`` (and status),
so a concurrent writer makes the update match zero rows instead of silently
overwriting it.
"""

import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone

from sqlalchemy import select, update, delete, func, and_, exists
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from app.config import settings
from app.database import AsyncSessionLocal
from app.errors import (
    Conflict,
    InsufficientFunds,
    NotAvailable,
    NotFound,
    StoreUnavailable,
    ValidationFailed,
)
from app.utils.operation_log import build_operation_log
from models.affiliate import AffiliateClick, AffiliateEarning, AffiliateLink
from models.listing import Listing
from models.order import Escrow, Order
from models.user_role import UserRole
from models.wallet import Transaction, Wallet

logger = logging.getLogger("ecoswap.store")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def snapshot(row, **changes):
    """Detached copy of ``row`` with ``changes`` applied.

    Used after a committed conditional update, where the new state is known
    without reading it back.
    """
    fields = {column.key: getattr(row, column.key) for column in row.__table__.columns}
    fields.update(changes)
    return type(row)(**fields)


class LedgerStore:
    def __init__(self, session_factory, *, cas_retries: int | None = None):
        self._session_factory = session_factory
        self.cas_retries = max(1, cas_retries or settings.LEDGER_CAS_RETRIES)

    @asynccontextmanager
    async def _unit(self, op: str):
        async with self._session_factory() as session:
            try:
                yield session
                await session.commit()
            except IntegrityError:
                await session.rollback()
                raise
            except ValueError as exc:
                await session.rollback()
                raise ValidationFailed(str(exc)) from exc
            except SQLAlchemyError as exc:
                await session.rollback()
                logger.warning("STORE_FAIL op=%s error=%s", op, exc)
                raise StoreUnavailable(f"Ledger store failed during {op}") from exc

    async def _get(self, model, op: str, *criteria):
        async with self._unit(op) as session:
            result = await session.execute(select(model).where(*criteria))
            return result.scalar_one_or_none()

    async def _insert(self, op: str, model, **fields):
        async with self._unit(op) as session:
            row = model(**fields)
            session.add(row)
            await session.flush()
            await session.refresh(row)
        return row

    async def _conditional_update(self, model, op: str, criteria, values) -> bool:
        async with self._unit(op) as session:
            result = await session.execute(
                update(model)
                .where(*criteria)
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            matched = result.rowcount
        return matched == 1

    # wallets

    async def get_wallet(self, user_id: str) -> Wallet | None:
        return await self._get(Wallet, "get_wallet", Wallet.user_id == user_id)

    async def ensure_wallet(self, user_id: str, initial_balance: int | None = None) -> Wallet:
        wallet = await self.get_wallet(user_id)
        if wallet:
            return wallet
        balance = settings.WALLET_SIGNUP_BONUS if initial_balance is None else initial_balance
        try:
            return await self._insert("create_wallet", Wallet, user_id=user_id, balance=balance)
        except IntegrityError:
            # created concurrently by another request
            wallet = await self.get_wallet(user_id)
            if wallet is None:
                raise Conflict("Wallet creation raced and vanished")
            return wallet

    async def apply_wallet_delta(self, user_id: str, delta: int, *, create: bool = False) -> int:
        """Add ``delta`` coins to a wallet and return the new balance.

        The write is conditional on the version read just before it. A miss
        re-reads and retries up to ``cas_retries`` times, then raises
        ``Conflict``. A debit below zero raises ``InsufficientFunds``.
        """
        for attempt in range(1, self.cas_retries + 1):
            wallet = await self.get_wallet(user_id)
            if wallet is None:
                if not create:
                    raise NotFound("Wallet not found")
                wallet = await self.ensure_wallet(user_id)
            new_balance = wallet.balance + delta
            if new_balance < 0:
                raise InsufficientFunds()
            applied = await self._conditional_update(
                Wallet,
                "wallet_delta",
                (Wallet.id == wallet.id, Wallet.version == wallet.version),
                {"balance": new_balance, "version": wallet.version + 1},
            )
            if applied:
                return new_balance
            logger.info("WALLET_CAS_MISS user=%s delta=%s attempt=%s", user_id, delta, attempt)
        raise Conflict("Wallet was modified concurrently")

    # listings

    async def get_listing(self, listing_id: int) -> Listing | None:
        return await self._get(Listing, "get_listing", Listing.id == listing_id)

    async def create_listing(self, **fields) -> Listing:
        return await self._insert("create_listing", Listing, **fields)

    async def list_listings(self, *, status: str = "active", category: str | None = None) -> list[Listing]:
        filters = [Listing.status == status]
        if category:
            filters.append(Listing.category == category)
        async with self._unit("list_listings") as session:
            rows = await session.execute(select(Listing).where(*filters).order_by(Listing.created_at.desc()))
            return list(rows.scalars().all())

    async def mark_listing_sold(self, listing_id: int) -> bool:
        return await self._conditional_update(
            Listing,
            "mark_listing_sold",
            (Listing.id == listing_id, Listing.status == "active"),
            {"status": "sold", "version": Listing.version + 1},
        )

    # orders

    async def get_order(self, order_id: int) -> Order | None:
        return await self._get(Order, "get_order", Order.id == order_id)

    async def create_order(self, **fields) -> Order:
        try:
            return await self._insert("create_order", Order, **fields)
        except IntegrityError as exc:
            raise NotAvailable("Listing already has an order") from exc

    async def update_order_if(self, order_id: int, expected_status: str, expected_version: int, values: dict) -> bool:
        values = {**values, "version": expected_version + 1}
        return await self._conditional_update(
            Order,
            "update_order",
            (Order.id == order_id, Order.status == expected_status, Order.version == expected_version),
            values,
        )

    async def delete_order(self, order_id: int) -> None:
        async with self._unit("delete_order") as session:
            await session.execute(delete(Order).where(Order.id == order_id))

    async def list_orders_for_user(self, user_id: str) -> list[Order]:
        async with self._unit("list_orders") as session:
            rows = await session.execute(
                select(Order)
                .where((Order.buyer_id == user_id) | (Order.seller_id == user_id))
                .order_by(Order.created_at.desc())
            )
            return list(rows.scalars().all())

    # escrow

    async def get_escrow(self, order_id: int) -> Escrow | None:
        return await self._get(Escrow, "get_escrow", Escrow.order_id == order_id)

    async def create_escrow(self, order_id: int, amount: int) -> Escrow:
        try:
            return await self._insert("create_escrow", Escrow, order_id=order_id, amount=amount, status="held")
        except IntegrityError as exc:
            raise Conflict("Escrow already exists for order") from exc

    async def update_escrow_if(self, escrow_id: int, expected_status: str, expected_version: int, values: dict) -> bool:
        values = {**values, "version": expected_version + 1}
        return await self._conditional_update(
            Escrow,
            "update_escrow",
            (Escrow.id == escrow_id, Escrow.status == expected_status, Escrow.version == expected_version),
            values,
        )

    # transactions

    async def add_transaction(
        self,
        user_id: str,
        amount: int,
        type: str,
        description: str = "",
        order_id: int | None = None,
    ) -> Transaction:
        return await self._insert(
            "add_transaction",
            Transaction,
            user_id=user_id,
            amount=amount,
            type=type,
            description=description,
            order_id=order_id,
        )

    async def list_transactions(self, user_id: str) -> list[Transaction]:
        async with self._unit("list_transactions") as session:
            rows = await session.execute(
                select(Transaction)
                .where(Transaction.user_id == user_id)
                .order_by(Transaction.created_at.desc(), Transaction.id.desc())
            )
            return list(rows.scalars().all())

    async def has_transaction(self, user_id: str, order_id: int, type: str) -> bool:
        async with self._unit("has_transaction") as session:
            found = await session.execute(
                select(Transaction.id).where(
                    Transaction.user_id == user_id,
                    Transaction.order_id == order_id,
                    Transaction.type == type,
                ).limit(1)
            )
            return found.first() is not None

    # roles

    async def has_role(self, user_id: str, role: str) -> bool:
        row = await self._get(UserRole, "has_role", UserRole.user_id == user_id, UserRole.role == role)
        return row is not None

    async def grant_role(self, user_id: str, role: str) -> UserRole:
        existing = await self._get(UserRole, "get_role", UserRole.user_id == user_id, UserRole.role == role)
        if existing:
            return existing
        try:
            return await self._insert("grant_role", UserRole, user_id=user_id, role=role)
        except IntegrityError:
            return await self._get(UserRole, "get_role", UserRole.user_id == user_id, UserRole.role == role)

    # affiliate

    async def get_affiliate_link(self, link_id: int) -> AffiliateLink | None:
        return await self._get(AffiliateLink, "get_affiliate_link", AffiliateLink.id == link_id)

    async def find_affiliate_link(self, code: str, listing_id: int) -> AffiliateLink | None:
        return await self._get(
            AffiliateLink,
            "find_affiliate_link",
            AffiliateLink.code == code,
            AffiliateLink.listing_id == listing_id,
        )

    async def get_or_create_affiliate_link(self, affiliate_user_id: str, listing_id: int, code: str) -> AffiliateLink:
        criteria = (AffiliateLink.affiliate_user_id == affiliate_user_id, AffiliateLink.listing_id == listing_id)
        link = await self._get(AffiliateLink, "get_affiliate_link", *criteria)
        if link:
            return link
        try:
            return await self._insert(
                "create_affiliate_link",
                AffiliateLink,
                affiliate_user_id=affiliate_user_id,
                listing_id=listing_id,
                code=code,
            )
        except IntegrityError:
            link = await self._get(AffiliateLink, "get_affiliate_link", *criteria)
            if link is None:
                raise Conflict("Affiliate link code collision, please retry")
            return link

    async def record_click(self, link_id: int, ip_address: str | None) -> None:
        await self._insert("record_click", AffiliateClick, affiliate_link_id=link_id, ip_address=ip_address or "unknown")

    async def add_affiliate_earning(self, **fields) -> AffiliateEarning:
        return await self._insert("add_affiliate_earning", AffiliateEarning, **fields)

    async def affiliate_stats(self, affiliate_user_id: str) -> dict:
        async with self._unit("affiliate_stats") as session:
            links = (await session.execute(
                select(AffiliateLink).where(AffiliateLink.affiliate_user_id == affiliate_user_id)
            )).scalars().all()
            link_ids = [link.id for link in links]
            clicks = 0
            if link_ids:
                clicks = (await session.execute(
                    select(func.count(AffiliateClick.id)).where(AffiliateClick.affiliate_link_id.in_(link_ids))
                )).scalar() or 0
            earned, sales = (await session.execute(
                select(func.coalesce(func.sum(AffiliateEarning.amount), 0), func.count(AffiliateEarning.id))
                .where(AffiliateEarning.affiliate_user_id == affiliate_user_id)
            )).one()
        return {
            "links": list(links),
            "clicks": int(clicks),
            "sales": int(sales),
            "total_earned": int(earned),
        }

    # audit

    async def add_operation_log(self, **fields) -> None:
        async with self._unit("add_operation_log") as session:
            row = build_operation_log(**fields)
            if row is not None:
                session.add(row)

    # reconciliation queries

    async def orders_with_active_listing(self) -> list[Order]:
        async with self._unit("orders_with_active_listing") as session:
            rows = await session.execute(
                select(Order)
                .join(Listing, Listing.id == Order.listing_id)
                .where(Listing.status == "active", Order.status != "cancelled")
            )
            return list(rows.scalars().all())

    async def orders_with_released_escrow(self) -> list[Order]:
        async with self._unit("orders_with_released_escrow") as session:
            rows = await session.execute(
                select(Order)
                .join(Escrow, Escrow.order_id == Order.id)
                .where(Escrow.status == "released", Order.status != "completed")
            )
            return list(rows.scalars().all())

    async def orders_missing_purchase_record(self) -> list[Order]:
        recorded = exists().where(and_(
            Transaction.order_id == Order.id,
            Transaction.user_id == Order.buyer_id,
            Transaction.type == "purchase",
        ))
        async with self._unit("orders_missing_purchase_record") as session:
            rows = await session.execute(select(Order).where(Order.status != "cancelled", ~recorded))
            return list(rows.scalars().all())

    async def cancelled_orders(self) -> list[Order]:
        async with self._unit("cancelled_orders") as session:
            rows = await session.execute(select(Order).where(Order.status == "cancelled"))
            return list(rows.scalars().all())


def get_store() -> LedgerStore:
    return LedgerStore(AsyncSessionLocal)
