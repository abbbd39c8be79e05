from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, CheckConstraint
from sqlalchemy.orm import validates
from sqlalchemy.sql import func
from app.database import Base

TRANSACTION_TYPES = ("purchase", "sale", "commission")

class Wallet(Base):
    __tablename__ = "wallets"
    __table_args__ = (
        CheckConstraint("balance >= 0", name="ck_wallet_balance_non_negative"),
    )

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String, unique=True, index=True, nullable=False)
    balance = Column(Integer, default=0, nullable=False)
    version = Column(Integer, default=0, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    @validates("balance")
    def _check_balance(self, key, value):
        if value is None or int(value) != value or value < 0:
            raise ValueError("wallet balance must be a non-negative integer")
        return value

class Transaction(Base):
    __tablename__ = "transactions"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String, index=True, nullable=False)
    order_id = Column(Integer, ForeignKey("orders.id", ondelete="SET NULL"), index=True, nullable=True)
    amount = Column(Integer, nullable=False)  # signed
    type = Column(String, nullable=False)  # purchase/sale/commission
    description = Column(String, default="")
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    @validates("type")
    def _check_type(self, key, value):
        if value not in TRANSACTION_TYPES:
            raise ValueError(f"unknown transaction type: {value}")
        return value
