from fastapi import APIRouter, Depends

from app.security import get_current_user
from app.services.affiliate import get_or_create_link, require_affiliate
from app.store import LedgerStore, get_store
from schemas.market import AffiliateLinkResponse, AffiliateStatsResponse

router = APIRouter()


@router.post("/links/{listing_id}", response_model=AffiliateLinkResponse)
async def affiliate_link(
    listing_id: int,
    user_id: str = Depends(get_current_user),
    store: LedgerStore = Depends(get_store),
):
    link = await get_or_create_link(store, user_id, listing_id)
    return AffiliateLinkResponse.model_validate(link)


@router.get("/stats", response_model=AffiliateStatsResponse)
async def affiliate_stats(
    user_id: str = Depends(get_current_user),
    store: LedgerStore = Depends(get_store),
):
    await require_affiliate(store, user_id)
    stats = await store.affiliate_stats(user_id)
    return AffiliateStatsResponse(
        links=[AffiliateLinkResponse.model_validate(link) for link in stats["links"]],
        clicks=stats["clicks"],
        sales=stats["sales"],
        total_earned=stats["total_earned"],
    )
