from typing import Dict, Iterable, Set
from fastapi import WebSocket, WebSocketDisconnect


class ConnectionManager:
    """Per-user websocket fan-out for order and wallet events."""

    def __init__(self):
        self.active: Dict[str, Set[WebSocket]] = {}

    async def connect(self, user_id: str, websocket: WebSocket):
        await websocket.accept()
        self.active.setdefault(user_id, set()).add(websocket)

    def disconnect(self, user_id: str, websocket: WebSocket):
        sockets = self.active.get(user_id)
        if not sockets:
            return
        sockets.discard(websocket)
        if not sockets:
            self.active.pop(user_id, None)

    async def send(self, user_id: str, message: dict):
        for ws in list(self.active.get(user_id, set())):
            try:
                await ws.send_json(message)
            except (WebSocketDisconnect, RuntimeError, OSError):
                self.disconnect(user_id, ws)

    async def broadcast(self, user_ids: Iterable[str], message: dict):
        for user_id in dict.fromkeys(u for u in user_ids if u):
            await self.send(user_id, message)


event_manager = ConnectionManager()
