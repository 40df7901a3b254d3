"""WebSocket endpoint streaming booking progress events."""

from __future__ import annotations

import asyncio
import contextlib
import json

from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect

from servicehub.api.deps import get_realtime_hub
from servicehub.logging import get_logger
from servicehub.realtime.events import ProgressEvent
from servicehub.services.common import coerce_uuid

logger = get_logger(__name__)

router = APIRouter(tags=["websocket-progress"])

OUTBOX_MAX = 256


@router.websocket("/ws/bookings/{booking_id}/progress")
async def booking_progress_websocket(websocket: WebSocket, booking_id: str, hub=Depends(get_realtime_hub)):
    """
    Stream task, milestone and booking changes for one booking.

    Client messages:
    - {type: "ping"} - Keep-alive ping, answered with {type: "pong"}

    Server messages are ``ProgressEvent`` envelopes serialized as JSON.
    """
    try:
        booking_id = str(coerce_uuid(booking_id, "booking_id"))
    except Exception:
        await websocket.close(code=1008)
        return
    await websocket.accept()

    loop = asyncio.get_running_loop()
    outbox: asyncio.Queue[ProgressEvent] = asyncio.Queue(maxsize=OUTBOX_MAX)

    def _enqueue(event: ProgressEvent) -> None:
        if outbox.full():
            logger.warning("progress_websocket_outbox_full booking_id=%s", booking_id)
            return
        outbox.put_nowait(event)

    # Hub listeners run on whichever thread committed the change.
    def on_change(event: ProgressEvent) -> None:
        loop.call_soon_threadsafe(_enqueue, event)

    unsubscribe = hub.subscribe_booking(booking_id, on_change)
    sender = asyncio.create_task(_pump(websocket, outbox))
    try:
        while True:
            data = await websocket.receive_text()
            await _handle_client_message(websocket, booking_id, data)
    except WebSocketDisconnect:
        logger.debug("progress_websocket_disconnected booking_id=%s", booking_id)
    except Exception as exc:
        logger.warning("progress_websocket_error booking_id=%s error=%s", booking_id, exc)
    finally:
        unsubscribe()
        await _stop_sender(sender)


async def _pump(websocket: WebSocket, outbox: asyncio.Queue) -> None:
    while True:
        event = await outbox.get()
        await websocket.send_json(event.model_dump(mode="json"))


async def _stop_sender(sender: asyncio.Task) -> None:
    sender.cancel()
    with contextlib.suppress(asyncio.CancelledError, Exception):
        await sender


async def _handle_client_message(websocket: WebSocket, booking_id: str, raw_data: str) -> None:
    try:
        data = json.loads(raw_data)
    except json.JSONDecodeError:
        logger.warning("progress_websocket_invalid_json booking_id=%s", booking_id)
        return
    if isinstance(data, dict) and data.get("type") == "ping":
        await websocket.send_json({"type": "pong", "booking_id": booking_id})
