from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class ErrorBody(BaseModel):
    code: str
    message: str


class ErrorResponse(BaseModel):
    success: bool = False
    error: ErrorBody


class SuccessResponse(BaseModel):
    success: bool = True


class ListingCreate(BaseModel):
    title: str = Field(min_length=1, max_length=200)
    description: Optional[str] = None
    category: Optional[str] = None
    condition: Optional[str] = None
    price: Optional[int] = Field(default=None, gt=0)
    photos: list[str] = Field(default_factory=list)


class ListingResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    user_id: str
    title: str
    description: Optional[str] = None
    category: Optional[str] = None
    condition: Optional[str] = None
    price: Optional[int] = None
    suggested_price: Optional[int] = None
    valuation_note: Optional[str] = None
    photos: Optional[list[str]] = None
    status: str
    created_at: Optional[datetime] = None


class ListingsResponse(BaseModel):
    listings: list[ListingResponse]


class PurchaseRequest(BaseModel):
    listing_id: int
    affiliate_code: Optional[str] = None


class PurchaseResponse(SuccessResponse):
    order_id: int


class ShipRequest(BaseModel):
    tracking_number: Optional[str] = None


class SettlementResponse(SuccessResponse):
    seller_share: int
    commission: int


class OrderResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    buyer_id: str
    seller_id: str
    listing_id: int
    amount: int
    affiliate_link_id: Optional[int] = None
    status: str
    tracking_number: Optional[str] = None
    created_at: Optional[datetime] = None
    shipped_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None


class OrdersResponse(BaseModel):
    orders: list[OrderResponse]


class AffiliateLinkResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    listing_id: int
    code: str


class AffiliateStatsResponse(BaseModel):
    links: list[AffiliateLinkResponse]
    clicks: int
    sales: int
    total_earned: int
