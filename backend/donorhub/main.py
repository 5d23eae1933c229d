from __future__ import annotations

from typing import Any, Dict

import socketio
from fastapi import FastAPI, Request, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from loguru import logger
from pymongo.errors import PyMongoError

from .errors import WorkflowError
from .routers import (
    appointments,
    auth,
    blood_requests,
    eligibility,
    events,
    inventory,
    notifications,
    registrations,
    reports,
)


class LiveUpdateHub:
    """Pushes committed changes to open dashboards so their tables stay current."""

    def __init__(self, sio_server: socketio.AsyncServer) -> None:
        self.sio = sio_server
        self.websockets: set[WebSocket] = set()

    async def connect(self, websocket: WebSocket) -> None:
        await websocket.accept()
        self.websockets.add(websocket)

    def disconnect(self, websocket: WebSocket) -> None:
        self.websockets.discard(websocket)

    async def notify(self, event: str, payload: Dict[str, Any]) -> None:
        message = {"event": event, "payload": payload}
        stale = []
        for connection in self.websockets:
            try:
                await connection.send_json(message)
            except Exception:
                stale.append(connection)
        for connection in stale:
            self.disconnect(connection)
        await self.sio.emit(event, payload)


sio = socketio.AsyncServer(async_mode="asgi", cors_allowed_origins="*")
app = FastAPI(title="DonorHub Admin API", version="1.0.0")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

hub = LiveUpdateHub(sio)

registrations.init_router(hub)
inventory.init_router(hub)
eligibility.init_router(hub)
appointments.init_router(hub)
events.init_router(hub)
blood_requests.init_router(hub)

app.include_router(auth.router)
app.include_router(registrations.router)
app.include_router(inventory.router)
app.include_router(eligibility.router)
app.include_router(appointments.router)
app.include_router(events.router)
app.include_router(blood_requests.router)
app.include_router(notifications.router)
app.include_router(reports.router)


@app.exception_handler(WorkflowError)
async def workflow_error_handler(request: Request, exc: WorkflowError) -> JSONResponse:
    logger.warning("{} {} refused: {}", request.method, request.url.path, exc.message)
    return JSONResponse({"detail": exc.message}, status_code=exc.status_code)


@app.get("/health")
async def healthcheck() -> Dict[str, str]:
    return {"status": "ok"}


@app.websocket("/ws/updates")
async def updates_websocket(websocket: WebSocket) -> None:
    await hub.connect(websocket)
    try:
        while True:
            await websocket.receive_text()
    except WebSocketDisconnect:
        hub.disconnect(websocket)


@sio.event
async def connect(sid, environ):  # pragma: no cover - socket handshake
    logger.info("Dashboard socket connected: {}", sid)


@sio.event
async def disconnect(sid):  # pragma: no cover - socket handshake
    logger.info("Dashboard socket disconnected: {}", sid)


socket_app = socketio.ASGIApp(sio, other_asgi_app=app)


@app.on_event("startup")
async def ensure_indexes() -> None:
    from .database import db

    try:
        await db.get_collection("slot_bookings").create_index([("event_id", 1), ("booked_at", -1)])
        await db.get_collection("notifications").create_index([("user_id", 1), ("created_at", -1)])
        await db.get_collection("blood_stock").create_index("hospital_id")
        await db.get_collection("blood_requests").create_index([("created_at", -1)])
        await db.get_collection("users").create_index("email", unique=True)
    except PyMongoError as exc:  # pragma: no cover - external service
        logger.warning("MongoDB unavailable; skipping index creation: {}", exc)
