import json
import logging

from app.errors import MarketError
from models.logs import OperationLog

logger = logging.getLogger("ecoswap.audit")


def build_operation_log(
    *,
    user_id: str | None,
    action: str | None,
    order_id: int | None = None,
    listing_id: int | None = None,
    detail=None,
    ip: str | None = None,
) -> OperationLog | None:
    if not user_id or not action:
        return None
    detail_value = detail
    if detail is not None and not isinstance(detail, str):
        try:
            detail_value = json.dumps(detail, ensure_ascii=False)
        except (TypeError, ValueError):
            detail_value = str(detail)
    return OperationLog(
        user_id=user_id,
        action=action,
        order_id=order_id,
        listing_id=listing_id,
        detail=detail_value,
        ip=ip,
    )


async def record_operation(store, **fields) -> None:
    # audit rows never decide the outcome of the operation they describe
    try:
        await store.add_operation_log(**fields)
    except MarketError as exc:
        logger.warning("OPLOG_FAIL action=%s error=%s", fields.get("action"), exc)
