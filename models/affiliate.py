from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, UniqueConstraint
from sqlalchemy.sql import func
from app.database import Base

class AffiliateLink(Base):
    __tablename__ = "affiliate_links"
    __table_args__ = (
        UniqueConstraint('affiliate_user_id', 'listing_id', name='uq_affiliate_listing'),
    )

    id = Column(Integer, primary_key=True, index=True)
    affiliate_user_id = Column(String, index=True, nullable=False)
    listing_id = Column(Integer, ForeignKey("listings.id"), index=True, nullable=False)
    code = Column(String, unique=True, index=True, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

class AffiliateClick(Base):
    __tablename__ = "affiliate_clicks"

    id = Column(Integer, primary_key=True, index=True)
    affiliate_link_id = Column(Integer, ForeignKey("affiliate_links.id"), index=True, nullable=False)
    ip_address = Column(String, nullable=True)
    clicked_at = Column(DateTime(timezone=True), server_default=func.now())

class AffiliateEarning(Base):
    __tablename__ = "affiliate_earnings"

    id = Column(Integer, primary_key=True, index=True)
    affiliate_user_id = Column(String, index=True, nullable=False)
    listing_id = Column(Integer, ForeignKey("listings.id"), nullable=True)
    affiliate_link_id = Column(Integer, ForeignKey("affiliate_links.id"), nullable=True)
    order_id = Column(Integer, ForeignKey("orders.id"), index=True, nullable=True)
    amount = Column(Integer, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
