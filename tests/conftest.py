"""Shared fixtures: a throwaway SQLite ledger per test and a small seeding helper."""

import pytest_asyncio
from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from app.database import create_tables
from app.services.affiliate import get_or_create_link
from app.services.escrow import EscrowEngine
from app.services.purchase import PurchaseOrchestrator
from app.store import LedgerStore
from models.order import Order
from models.wallet import Wallet

SELLER = "seller-0001"
BUYER = "buyer-0001"
AFFILIATE = "affiliate-0001"


class Market:
    """Seeds and inspects the ledger the way the UI collaborators would."""

    def __init__(self, store: LedgerStore, session_factory):
        self.store = store
        self.session_factory = session_factory

    async def wallet(self, user_id: str, balance: int = 0) -> Wallet:
        return await self.store.ensure_wallet(user_id, initial_balance=balance)

    async def balance(self, user_id: str) -> int | None:
        wallet = await self.store.get_wallet(user_id)
        return wallet.balance if wallet else None

    async def listing(self, owner: str = SELLER, price: int | None = 100, title: str = "Vintage Leather Jacket"):
        return await self.store.create_listing(user_id=owner, title=title, price=price, status="active")

    async def affiliate(self, user_id: str = AFFILIATE):
        await self.store.grant_role(user_id, "affiliate")
        return user_id

    async def count(self, model, *criteria) -> int:
        async with self.session_factory() as session:
            result = await session.execute(select(func.count()).select_from(model).where(*criteria))
            return result.scalar() or 0

    async def bump_version(self, model, *criteria) -> None:
        """Simulate a concurrent writer touching the row."""
        async with self.session_factory() as session:
            await session.execute(update(model).where(*criteria).values(version=model.version + 1))
            await session.commit()

    async def pending_order(
        self,
        *,
        buyer: str = BUYER,
        seller: str = SELLER,
        price: int = 100,
        affiliate: str | None = None,
    ) -> Order:
        await self.wallet(buyer, price)
        listing = await self.listing(seller, price)
        code = None
        if affiliate:
            await self.affiliate(affiliate)
            link = await get_or_create_link(self.store, affiliate, listing.id)
            code = link.code
        return await PurchaseOrchestrator(self.store).purchase(buyer, listing.id, code)

    async def shipped_order(self, **kwargs) -> Order:
        order = await self.pending_order(**kwargs)
        return await EscrowEngine(self.store).mark_shipped(order.seller_id, order.id, "TRACK-0001")


@pytest_asyncio.fixture
async def engine(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'ledger.db'}")
    await create_tables(engine)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture
async def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def store(session_factory):
    return LedgerStore(session_factory, cas_retries=3)


@pytest_asyncio.fixture
async def market(store, session_factory):
    return Market(store, session_factory)
