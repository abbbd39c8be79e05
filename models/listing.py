from sqlalchemy import Column, Integer, String, DateTime, Text, JSON, CheckConstraint
from sqlalchemy.orm import validates
from sqlalchemy.sql import func
from app.database import Base

LISTING_STATUSES = ("active", "sold")

class Listing(Base):
    __tablename__ = "listings"
    __table_args__ = (
        CheckConstraint("price IS NULL OR price > 0", name="ck_listing_price_positive"),
    )

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String, index=True, nullable=False)  # owner
    title = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    category = Column(String, index=True, nullable=True)
    condition = Column(String, nullable=True)
    price = Column(Integer, nullable=True)  # unset until owner or valuation provides one
    suggested_price = Column(Integer, nullable=True)
    valuation_note = Column(Text, nullable=True)
    photos = Column(JSON, default=list)
    status = Column(String, index=True, default="active", nullable=False)
    version = Column(Integer, default=0, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    @validates("price")
    def _check_price(self, key, value):
        if value is not None and (int(value) != value or value <= 0):
            raise ValueError("listing price must be a positive integer")
        return value

    @validates("status")
    def _check_status(self, key, value):
        if value not in LISTING_STATUSES:
            raise ValueError(f"unknown listing status: {value}")
        return value

    @property
    def purchasable(self) -> bool:
        return self.status == "active" and bool(self.price)
