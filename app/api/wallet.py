from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select
from app.config import settings
from app.database import get_db
from app.security import get_current_user
from models.wallet import Wallet, Transaction
from schemas.wallet import WalletInfo, WalletResponse, TransactionResponse

router = APIRouter()

async def _load_wallet(db: AsyncSession, user_id: str) -> Wallet:
    result = await db.execute(select(Wallet).where(Wallet.user_id == user_id))
    wallet = result.scalar_one_or_none()
    if not wallet:
        # first visit opens the wallet
        wallet = Wallet(user_id=user_id, balance=settings.WALLET_SIGNUP_BONUS)
        db.add(wallet)
        await db.commit()
        await db.refresh(wallet)
    return wallet

@router.get("/info", response_model=WalletInfo)
async def get_wallet_info(
    user_id: str = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    wallet = await _load_wallet(db, user_id)
    return WalletInfo(user_id=wallet.user_id, balance=wallet.balance)

@router.get("/transactions", response_model=WalletResponse)
async def get_transactions(
    user_id: str = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    wallet = await _load_wallet(db, user_id)
    trans_query = select(Transaction).where(
        Transaction.user_id == user_id
    ).order_by(Transaction.created_at.desc(), Transaction.id.desc())
    trans_result = await db.execute(trans_query)
    transactions = trans_result.scalars().all()
    return WalletResponse(
        balance=wallet.balance,
        transactions=[TransactionResponse.model_validate(t) for t in transactions],
    )
