import logging
import uuid

from app.errors import Forbidden, MarketError, NotFound
from app.store import LedgerStore
from models.affiliate import AffiliateLink

logger = logging.getLogger("ecoswap.affiliate")


def generate_link_code() -> str:
    return uuid.uuid4().hex[:12]


AFFILIATE_ROLE = "affiliate"


async def require_affiliate(store: LedgerStore, user_id: str) -> None:
    if not await store.has_role(user_id, AFFILIATE_ROLE):
        logger.info("AFFILIATE_DENY user=%s", user_id)
        raise Forbidden("You need to be an affiliate to use referral links")


async def get_or_create_link(store: LedgerStore, affiliate_user_id: str, listing_id: int) -> AffiliateLink:
    """At most one link per (affiliate, listing); created on first request."""
    await require_affiliate(store, affiliate_user_id)
    listing = await store.get_listing(listing_id)
    if listing is None:
        raise NotFound("Listing not found")
    return await store.get_or_create_affiliate_link(affiliate_user_id, listing_id, generate_link_code())


async def resolve_referral(
    store: LedgerStore,
    code: str | None,
    *,
    listing_id: int,
    buyer_id: str,
    client_ip: str | None = None,
) -> AffiliateLink | None:
    """Resolve a referral code for a purchase.

    A bad, stale or foreign code never blocks the purchase: any failure
    resolves to ``None``. Buyers referring themselves are not attributed.
    A click is recorded once the link is honoured.
    """
    code = (code or "").strip()
    if not code:
        return None
    try:
        link = await store.find_affiliate_link(code, listing_id)
    except MarketError as exc:
        logger.warning("REFERRAL_LOOKUP_FAIL code=%s listing=%s error=%s", code, listing_id, exc)
        return None
    if link is None:
        logger.info("REFERRAL_UNKNOWN code=%s listing=%s", code, listing_id)
        return None
    if link.affiliate_user_id == buyer_id:
        logger.info("REFERRAL_SELF code=%s buyer=%s", code, buyer_id)
        return None
    try:
        await store.record_click(link.id, client_ip)
    except MarketError as exc:
        logger.warning("REFERRAL_CLICK_FAIL link=%s error=%s", link.id, exc)
    return link
