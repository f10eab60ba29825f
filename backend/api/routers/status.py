"""WebSocket status stream.

Routes
------
WS /ws    Every hub message, JSON-encoded, for as long as the socket is open.

Message format::

    {"type": "crawl_status", "payload": {"url_id": 1, "status": "running"}}
    {"type": "crawl_status", "payload": {"url_id": 1, "status": "failed", "error": "..."}}
    {"type": "url_update",   "payload": {"url_id": 1, "url": "...", "status": "pending"}}

Messages sent by the client are read and discarded; reading is how a
disconnect is noticed.
"""

from __future__ import annotations

import asyncio

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from backend.events.hub import StatusHub, Subscriber
from backend.events.messages import to_wire

router = APIRouter()


async def _forward(websocket: WebSocket, subscriber: Subscriber) -> None:
    async for message in subscriber:
        await websocket.send_json(to_wire(message))


async def _drain(websocket: WebSocket) -> None:
    try:
        while True:
            await websocket.receive_text()
    except WebSocketDisconnect:
        return


@router.websocket("/ws")
async def status_stream(websocket: WebSocket) -> None:
    """Subscribe the socket to the status hub until either side goes away."""
    hub: StatusHub = websocket.app.state.hub
    # Subscribe before accepting so nothing published after the handshake is missed.
    subscriber = hub.subscribe()
    tasks: list[asyncio.Task] = []
    try:
        await websocket.accept()
        sender = asyncio.create_task(_forward(websocket, subscriber))
        receiver = asyncio.create_task(_drain(websocket))
        tasks = [sender, receiver]
        await asyncio.wait(tasks, return_when=asyncio.FIRST_COMPLETED)
        if sender.done() and not receiver.done():
            # Hub shut down or the send failed; the client is still connected.
            await websocket.close()
    finally:
        hub.unsubscribe(subscriber)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
