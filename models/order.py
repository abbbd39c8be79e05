from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, CheckConstraint
from sqlalchemy.orm import validates
from sqlalchemy.sql import func
from app.database import Base

ORDER_STATUSES = ("pending", "shipped", "completed", "cancelled")
ESCROW_STATUSES = ("held", "released")

class Order(Base):
    __tablename__ = "orders"
    __table_args__ = (
        CheckConstraint("amount >= 0", name="ck_order_amount_non_negative"),
    )

    id = Column(Integer, primary_key=True, index=True)
    buyer_id = Column(String, index=True, nullable=False)
    seller_id = Column(String, index=True, nullable=False)
    # one live order per listing; rollback deletes the row
    listing_id = Column(Integer, ForeignKey("listings.id"), unique=True, index=True, nullable=False)
    amount = Column(Integer, nullable=False)  # price snapshot at purchase time
    affiliate_link_id = Column(Integer, ForeignKey("affiliate_links.id"), nullable=True)
    status = Column(String, index=True, default="pending", nullable=False)
    tracking_number = Column(String, nullable=True)
    version = Column(Integer, default=0, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    shipped_at = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)

    @validates("status")
    def _check_status(self, key, value):
        if value not in ORDER_STATUSES:
            raise ValueError(f"unknown order status: {value}")
        return value

class Escrow(Base):
    __tablename__ = "escrows"
    __table_args__ = (
        CheckConstraint("amount >= 0", name="ck_escrow_amount_non_negative"),
    )

    id = Column(Integer, primary_key=True, index=True)
    order_id = Column(Integer, ForeignKey("orders.id"), unique=True, index=True, nullable=False)
    amount = Column(Integer, nullable=False)
    status = Column(String, default="held", nullable=False)
    version = Column(Integer, default=0, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    released_at = Column(DateTime(timezone=True), nullable=True)

    @validates("status")
    def _check_status(self, key, value):
        if value not in ESCROW_STATUSES:
            raise ValueError(f"unknown escrow status: {value}")
        return value
