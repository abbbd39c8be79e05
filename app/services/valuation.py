import logging
from dataclasses import dataclass

import httpx

from app.config import settings

logger = logging.getLogger("ecoswap.valuation")


@dataclass
class Valuation:
    price: int
    note: str = ""


async def suggest_price(
    *,
    title: str,
    description: str | None = None,
    category: str | None = None,
    condition: str | None = None,
    photos: list[str] | None = None,
) -> Valuation | None:
    """Ask the external valuation service for a price; ``None`` on any failure."""
    url = (settings.VALUATION_URL or "").strip()
    if not url:
        return None
    payload = {
        "title": title,
        "description": description or "",
        "category": category or "",
        "condition": condition or "",
        "photos": photos or [],
    }
    timeout = httpx.Timeout(settings.VALUATION_TIMEOUT_SECONDS, connect=5.0)
    try:
        async with httpx.AsyncClient(timeout=timeout) as client:
            resp = await client.post(url, json=payload)
        if resp.status_code >= 400:
            logger.warning("VALUATION_HTTP status=%s", resp.status_code)
            return None
        data = resp.json()
    except (httpx.HTTPError, ValueError) as exc:
        logger.warning("VALUATION_FAIL error=%r", exc)
        return None
    try:
        price = int(data.get("suggested_price") or data.get("price") or 0)
    except (TypeError, ValueError, AttributeError):
        return None
    if price <= 0:
        return None
    return Valuation(price=price, note=str(data.get("reasoning") or data.get("note") or ""))
