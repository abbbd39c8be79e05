import logging
import os

from fastapi import FastAPI, Request, WebSocket, WebSocketDisconnect
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles
from sqlalchemy.exc import IntegrityError

from app.api import affiliate, listings, orders, wallet
from app.api import upload as upload_api
from app.database import create_tables
from app.errors import Conflict, MarketError, ValidationFailed
from app.security import verify_request_user
from app.ws import event_manager

logger = logging.getLogger("ecoswap.api")

app = FastAPI(title="EcoSwap marketplace")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(listings.router, prefix="/api/listings", tags=["listings"])
app.include_router(orders.router, prefix="/api/orders", tags=["orders"])
app.include_router(wallet.router, prefix="/api/wallet", tags=["wallet"])
app.include_router(affiliate.router, prefix="/api/affiliate", tags=["affiliate"])
app.include_router(upload_api.router, prefix="/api", tags=["upload"])


def error_response(exc: MarketError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content={"success": False, "error": exc.to_dict()})


@app.exception_handler(MarketError)
async def market_error_handler(request: Request, exc: MarketError):
    if exc.status_code >= 500:
        logger.error("REQUEST_FAIL path=%s code=%s message=%s", request.url.path, exc.code, exc.message)
    return error_response(exc)


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    first = exc.errors()[0] if exc.errors() else {}
    where = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
    message = f"{where}: {first.get('msg')}" if where else "Invalid request"
    return error_response(ValidationFailed(message))


@app.exception_handler(IntegrityError)
async def integrity_error_handler(request: Request, exc: IntegrityError):
    logger.warning("INTEGRITY_CONFLICT path=%s error=%s", request.url.path, exc.orig)
    return error_response(Conflict("Record changed concurrently, please retry"))


@app.on_event("startup")
async def startup():
    await create_tables()
    os.makedirs("static", exist_ok=True)
    app.mount("/static", StaticFiles(directory="static"), name="static")


@app.get("/")
async def root():
    return {"message": "EcoSwap marketplace API"}


@app.websocket("/ws/user/{user_id}")
async def websocket_user_events(websocket: WebSocket, user_id: str):
    try:
        caller = verify_request_user(websocket)
    except MarketError:
        caller = None
    if caller != user_id:
        await websocket.close(code=1008)
        return
    # push-only channel; anything the client sends is ignored
    await event_manager.connect(user_id, websocket)
    try:
        while True:
            await websocket.receive_text()
    except WebSocketDisconnect:
        event_manager.disconnect(user_id, websocket)
