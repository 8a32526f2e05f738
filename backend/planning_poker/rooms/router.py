"""WebSocket endpoint for planning poker rooms.

Protocol Flow:
    1. Client connects to ``/ws`` → connection accepted, session is Unbound
    2. Client sends: {type: "join", payload: {name, roomId?}}
       → Room broadcast: {type: "state", payload: ClientState} (joiner included)
       → Or to the joiner only: {type: "name_taken"} / {type: "error", payload: {message}}
    3. Client sends: {type: "vote", payload: {vote}} / {type: "reset"} / {type: "reveal"}
       → Room broadcast: {type: "state", ...}
    4. On disconnect → participant marked offline, room broadcast

Every recipient's ``state`` is redacted for that recipient: before reveal it
never contains anyone else's vote.
"""
import asyncio
import logging

from fastapi import APIRouter, WebSocket

from .service import PokerService

logger = logging.getLogger(__name__)

router = APIRouter(tags=["rooms"])

# Seconds to wait for the writer to flush its close frame on shutdown
WRITER_SHUTDOWN_TIMEOUT = 1.0


@router.websocket("/ws")
async def poker_websocket(websocket: WebSocket) -> None:
    """Serve one planning poker connection until it closes.

    Args:
        websocket: The WebSocket connection.
    """
    service: PokerService = websocket.app.state.poker
    await websocket.accept()
    session = service.open_session(websocket)
    writer = asyncio.create_task(session.run_writer())
    logger.info(f"[WS] Connection {session.id} accepted; {len(service.connections)} live")

    try:
        while True:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                break
            raw = message.get("text")
            if raw is None:
                raw = message.get("bytes")
            if raw is None:
                continue
            try:
                await service.dispatcher.dispatch(session, raw)
            except Exception:
                # Keep the connection alive; one bad frame must not end the session.
                logger.exception(f"[WS] Failed to handle frame from {session.id}")
            if not session.is_open:
                logger.info(f"[WS] Connection {session.id} was dropped by the server")
                break
    finally:
        await service.close_session(session)
        # close_session queued a close request; let the writer deliver it.
        try:
            await asyncio.wait_for(writer, timeout=WRITER_SHUTDOWN_TIMEOUT)
        except asyncio.TimeoutError:
            logger.debug(f"[WS] Writer for {session.id} did not finish; cancelled")
        logger.info(f"[WS] Connection {session.id} closed; {len(service.connections)} live")
