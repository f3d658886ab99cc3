import asyncio
import logging

from fastapi import APIRouter, Query, WebSocket, WebSocketDisconnect, status

from jobqueue.services.notifier import broker

logger = logging.getLogger(__name__)

router = APIRouter()


async def _wait_for_disconnect(websocket: WebSocket):
    # Clients only listen; any inbound frame is ignored until they hang up.
    while True:
        message = await websocket.receive()
        if message["type"] == "websocket.disconnect":
            return


@router.websocket("/events")
async def stream_events(websocket: WebSocket, owner_id: str = Query(...)):
    """
    Streams job change events for one owner as JSON messages:
        {"job_id", "owner_id", "job_type", "status", "progress_percent",
         "progress_message", "error_message", "error_code", "updated_at"}

    Best-effort: a slow client misses events rather than slowing the queue
    down, and should re-read jobs it cares about after reconnecting.
    """
    if not owner_id:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION, reason="owner_id required")
        return

    # Subscribed before the handshake completes so nothing committed after
    # the client sees the accept is missed.
    sub = broker.subscribe(owner_id)
    disconnect = None
    try:
        await websocket.accept()
        disconnect = asyncio.create_task(_wait_for_disconnect(websocket))
        while True:
            next_event = asyncio.create_task(sub.get())
            done, _ = await asyncio.wait({next_event, disconnect}, return_when=asyncio.FIRST_COMPLETED)
            if disconnect in done:
                next_event.cancel()
                break
            await websocket.send_json(next_event.result().to_dict())
    except WebSocketDisconnect:
        pass
    finally:
        sub.close()
        if disconnect:
            disconnect.cancel()
        logger.debug("Event stream closed for owner %s", owner_id)
