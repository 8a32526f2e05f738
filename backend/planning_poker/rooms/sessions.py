"""Live connection bookkeeping.

A :class:`ConnectionSession` binds one WebSocket to (at most) one room and
one participant.  Outbound frames never go straight to the socket: they are
queued on a bounded per-session outbox and written by a dedicated writer
task, so a slow or stuck peer cannot hold up the room that is broadcasting
to it.  A peer whose outbox overflows is dropped.

Thread Safety:
    Designed for a single asyncio event loop.  ``send()`` and ``close()``
    never await, which lets callers enqueue a whole broadcast while holding
    a room lock without yielding.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, Iterator, List, Optional

from fastapi import WebSocket
from starlette.websockets import WebSocketState

from .ids import new_id, unique_id
from .models import Room
from .redaction import build_client_state
from .schemas import state_message

logger = logging.getLogger(__name__)

# Default bound for each session's outbox
DEFAULT_SEND_QUEUE_SIZE = 64

_CLOSE = object()


class ConnectionSession:
    """Per-connection binding of a WebSocket to a room and participant.

    Attributes:
        id: Server-side session id, used only for logging and indexing.
        websocket: The underlying transport.
        room_id: Room the session is bound to, None while unbound.
        participant_id: Participant the session is bound to, None while unbound.
        outbox: Frames waiting to be written by :meth:`run_writer`.
    """

    def __init__(self, websocket: WebSocket, send_queue_size: int = DEFAULT_SEND_QUEUE_SIZE) -> None:
        self.id = new_id()
        self.websocket = websocket
        self.room_id: Optional[str] = None
        self.participant_id: Optional[str] = None
        self.outbox: asyncio.Queue = asyncio.Queue(maxsize=send_queue_size)
        self._closed = False
        self._close_code = 1000

    def __repr__(self) -> str:
        return f"<ConnectionSession {self.id} room={self.room_id} participant={self.participant_id}>"

    @property
    def is_bound(self) -> bool:
        return self.room_id is not None and self.participant_id is not None

    @property
    def is_open(self) -> bool:
        """True while the session is usable and the socket is connected on both sides."""
        if self._closed:
            return False
        return (
            self.websocket.client_state == WebSocketState.CONNECTED
            and self.websocket.application_state == WebSocketState.CONNECTED
        )

    def bind(self, room_id: str, participant_id: str) -> None:
        self.room_id = room_id
        self.participant_id = participant_id

    def send(self, message: Dict[str, Any]) -> bool:
        """Queue a frame for delivery without waiting.

        Returns:
            True if queued, False if the session is closed or was dropped
            because its outbox is full.
        """
        if self._closed:
            return False
        try:
            self.outbox.put_nowait(message)
        except asyncio.QueueFull:
            logger.warning(f"[Session] Outbox full for {self.id}, dropping slow connection")
            self.close(code=1013)
            return False
        return True

    def close(self, code: int = 1000) -> None:
        """Mark the session closed and ask the writer to close the socket.

        Pending frames are discarded.  Safe to call more than once.
        """
        if self._closed:
            return
        self._closed = True
        self._close_code = code
        while True:
            try:
                self.outbox.get_nowait()
            except asyncio.QueueEmpty:
                break
        self.outbox.put_nowait(_CLOSE)

    async def run_writer(self) -> None:
        """Write queued frames to the socket until the session closes."""
        while True:
            message = await self.outbox.get()
            if message is _CLOSE:
                break
            try:
                await self.websocket.send_json(message)
            except Exception as e:
                logger.debug(f"[Session] Send to {self.id} failed: {e}")
                self._closed = True
                self._close_code = 1011
                break

        try:
            await self.websocket.close(code=self._close_code)
        except Exception as e:
            logger.debug(f"[Session] Close of {self.id} failed: {e}")


class ConnectionRegistry:
    """All live sessions, with per-room lookup and broadcasting."""

    def __init__(self) -> None:
        # session id -> session, in registration order
        self._sessions: Dict[str, ConnectionSession] = {}

    def add(self, session: ConnectionSession) -> None:
        current = self._sessions.get(session.id)
        if current is not None and current is not session:
            session.id = unique_id(self._sessions, len(session.id))
        self._sessions[session.id] = session

    def remove(self, session: ConnectionSession) -> None:
        self._sessions.pop(session.id, None)

    def in_room(self, room_id: str) -> List[ConnectionSession]:
        """Every registered session bound to ``room_id``, open or not."""
        return [s for s in self._sessions.values() if s.room_id == room_id]

    def is_occupied(self, room_id: str) -> bool:
        return any(s.room_id == room_id for s in self._sessions.values())

    def broadcast_state(self, room: Room) -> int:
        """Queue a redacted snapshot for every open session in ``room``.

        Each recipient gets its own snapshot built for its own participant.

        Returns:
            Number of sessions the snapshot was queued for.
        """
        delivered = 0
        for session in self.in_room(room.id):
            if not session.is_open:
                continue
            state = build_client_state(room, session.participant_id)
            if session.send(state_message(state)):
                delivered += 1
        return delivered

    def __iter__(self) -> Iterator[ConnectionSession]:
        return iter(list(self._sessions.values()))

    def __len__(self) -> int:
        return len(self._sessions)
