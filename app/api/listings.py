import logging

from fastapi import APIRouter, Depends

from app.errors import NotFound
from app.security import get_current_user
from app.services.valuation import suggest_price
from app.store import LedgerStore, get_store
from schemas.market import ListingCreate, ListingResponse, ListingsResponse

router = APIRouter()
logger = logging.getLogger("ecoswap.listings")


@router.post("", response_model=ListingResponse)
async def create_listing(
    payload: ListingCreate,
    user_id: str = Depends(get_current_user),
    store: LedgerStore = Depends(get_store),
):
    fields = payload.model_dump()
    if payload.price is None:
        # price stays unset when the valuation service has nothing to offer
        valuation = await suggest_price(
            title=payload.title,
            description=payload.description,
            category=payload.category,
            condition=payload.condition,
            photos=payload.photos,
        )
        if valuation:
            fields["price"] = valuation.price
            fields["suggested_price"] = valuation.price
            fields["valuation_note"] = valuation.note
    listing = await store.create_listing(user_id=user_id, status="active", **fields)
    logger.info("LISTING_CREATED listing=%s owner=%s price=%s", listing.id, user_id, listing.price)
    return ListingResponse.model_validate(listing)


@router.get("", response_model=ListingsResponse)
async def list_listings(category: str | None = None, store: LedgerStore = Depends(get_store)):
    listings = await store.list_listings(status="active", category=category)
    return ListingsResponse(listings=[ListingResponse.model_validate(item) for item in listings])


@router.get("/{listing_id}", response_model=ListingResponse)
async def get_listing(listing_id: int, store: LedgerStore = Depends(get_store)):
    listing = await store.get_listing(listing_id)
    if listing is None:
        raise NotFound("Listing not found")
    return ListingResponse.model_validate(listing)
