"""
FastAPI application entry point.

Routes:
  GET  /             browser test page (requester and responder in one)
  GET  /api/status   live connection and pending-request counts

  WS   /ws           broker socket; JSON frames {"event": ..., "data": ...}

Client → server events:  newRequest, respondToRequest, ping
Server → client events:  connected, requestPending, requestReceived,
                         requestResponse, requestExpired, pong, ping, error
"""
from __future__ import annotations

import asyncio
import json
import logging
import uuid
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse

from broker.broadcast.connection_registry import connections
from broker.config import (
    ALLOWED_METHODS, ALLOWED_ORIGINS, EVENT_CONNECTED, EVENT_PING, HOST,
    INDEX_HTML, KEEPALIVE_SECONDS, LOG_LEVEL, PORT,
)
from broker.pending import pending_requests
from broker.routing.request_router import router
from broker.scheduler.jobs import setup_scheduler

log = logging.getLogger(__name__)

# ── Lifespan ──────────────────────────────────────────────────────────────────

@asynccontextmanager
async def lifespan(app: FastAPI):
    app.state.scheduler = await setup_scheduler()
    log.info("Broker ready on port %d", PORT)
    yield
    app.state.scheduler.shutdown(wait=False)


app = FastAPI(title="RequestBroker", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=ALLOWED_ORIGINS,
    allow_methods=ALLOWED_METHODS,
    allow_headers=["*"],
)


# ── HTTP ──────────────────────────────────────────────────────────────────────

@app.get("/")
async def serve_index():
    if not INDEX_HTML.exists():
        raise HTTPException(404, "index.html not found")
    return FileResponse(str(INDEX_HTML), media_type="text/html")


@app.get("/api/status")
async def status():
    return {
        "connections": connections.connection_count(),
        "pending": len(pending_requests),
    }


# ── WebSocket broker ──────────────────────────────────────────────────────────

async def _drain(websocket: WebSocket, q: asyncio.Queue, connection_id: str) -> None:
    """Forward queued events to the socket; ping when idle."""
    while True:
        try:
            msg = await asyncio.wait_for(q.get(), timeout=KEEPALIVE_SECONDS)
        except asyncio.TimeoutError:
            msg = {"event": EVENT_PING, "data": None}
        text = json.dumps(msg, ensure_ascii=False)
        try:
            text.encode("utf-8")
        except UnicodeEncodeError:
            log.warning("Dropped %s event for %s: not valid UTF-8", msg.get("event"), connection_id)
            continue
        await websocket.send_text(text)


async def _read(websocket: WebSocket, connection_id: str) -> None:
    try:
        while True:
            raw = await websocket.receive_text()
            await router.dispatch(connection_id, raw)
    except WebSocketDisconnect:
        pass


@app.websocket("/ws")
async def ws_broker(websocket: WebSocket):
    await websocket.accept()

    connection_id = uuid.uuid4().hex
    q = connections.register(connection_id)
    log.info("User connected: %s", connection_id)
    await connections.send_to(connection_id, EVENT_CONNECTED, {"connectionId": connection_id})

    # The connection lives only as long as both halves do
    reader = asyncio.create_task(_read(websocket, connection_id), name="reader")
    writer = asyncio.create_task(_drain(websocket, q, connection_id), name="writer")
    try:
        done, _ = await asyncio.wait({reader, writer}, return_when=asyncio.FIRST_COMPLETED)
        for task in done:
            exc = task.exception()
            if exc is not None:
                log.error(
                    "WebSocket %s failed for connection %s", task.get_name(), connection_id,
                    exc_info=exc,
                )
    finally:
        # Unregister first so nothing new is routed to this connection
        connections.unregister(connection_id)
        router.handle_disconnect(connection_id)
        reader.cancel()
        writer.cancel()
        await asyncio.gather(reader, writer, return_exceptions=True)

    if writer in done:
        try:
            await websocket.close(code=1011)
        except RuntimeError:
            pass  # already closed
    log.info("User disconnected: %s", connection_id)


# ── Process entry ─────────────────────────────────────────────────────────────

def run() -> None:
    import uvicorn

    logging.basicConfig(
        level=LOG_LEVEL,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    uvicorn.run(app, host=HOST, port=PORT, log_level=LOG_LEVEL.lower())


if __name__ == "__main__":
    run()
