import logging

from fastapi import APIRouter, Depends, Request

from app.errors import Forbidden, MarketError, NotFound
from app.security import get_current_user
from app.services.escrow import EscrowEngine
from app.services.purchase import PurchaseOrchestrator
from app.services.settlement import SettlementService
from app.store import LedgerStore, get_store
from app.ws import event_manager
from models.order import Order
from schemas.market import (
    OrderResponse,
    OrdersResponse,
    PurchaseRequest,
    PurchaseResponse,
    SettlementResponse,
    ShipRequest,
    SuccessResponse,
)

router = APIRouter()
logger = logging.getLogger("ecoswap.orders")


def _client_ip(request: Request) -> str | None:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else None


async def _push_order_update(order: Order, **extra):
    await event_manager.broadcast([order.buyer_id, order.seller_id], {
        "type": "order_update",
        "order_id": order.id,
        "status": order.status,
        **extra,
    })


@router.post("/purchase", response_model=PurchaseResponse)
async def process_purchase(
    payload: PurchaseRequest,
    request: Request,
    user_id: str = Depends(get_current_user),
    store: LedgerStore = Depends(get_store),
):
    order = await PurchaseOrchestrator(store).purchase(
        user_id,
        payload.listing_id,
        payload.affiliate_code,
        client_ip=_client_ip(request),
    )
    await _push_order_update(order)
    return PurchaseResponse(order_id=order.id)


@router.post("/{order_id}/ship", response_model=SuccessResponse)
async def mark_shipped(
    order_id: int,
    payload: ShipRequest,
    user_id: str = Depends(get_current_user),
    store: LedgerStore = Depends(get_store),
):
    order = await EscrowEngine(store).mark_shipped(user_id, order_id, payload.tracking_number)
    await _push_order_update(order, tracking_number=order.tracking_number)
    return SuccessResponse()


@router.post("/{order_id}/confirm-delivery", response_model=SettlementResponse)
async def confirm_delivery(
    order_id: int,
    user_id: str = Depends(get_current_user),
    store: LedgerStore = Depends(get_store),
):
    payout = await SettlementService(store).confirm_delivery(user_id, order_id)
    # settlement is committed; event push is best effort
    try:
        order = await store.get_order(order_id)
        if order is not None:
            await _push_order_update(order)
            await event_manager.send(order.seller_id, {"type": "wallet_update", "op": "sale", "amount": payout.seller_share})
    except MarketError as exc:
        logger.warning("SETTLE_PUSH_FAIL order=%s code=%s", order_id, exc.code)
    return SettlementResponse(seller_share=payout.seller_share, commission=payout.commission)


@router.get("/mine", response_model=OrdersResponse)
async def my_orders(
    user_id: str = Depends(get_current_user),
    store: LedgerStore = Depends(get_store),
):
    orders = await store.list_orders_for_user(user_id)
    return OrdersResponse(orders=[OrderResponse.model_validate(o) for o in orders])


@router.get("/{order_id}", response_model=OrderResponse)
async def get_order(
    order_id: int,
    user_id: str = Depends(get_current_user),
    store: LedgerStore = Depends(get_store),
):
    order = await store.get_order(order_id)
    if order is None:
        raise NotFound("Order not found")
    if user_id not in (order.buyer_id, order.seller_id):
        raise Forbidden("Only the buyer or seller can view this order")
    return OrderResponse.model_validate(order)
