"""Inbound message dispatch for the planning poker protocol.

Per-connection states:
    Unbound → Bound (after a successful join) → closed.

Message handling:
    - join:   any state; binds on success, otherwise replies ``error`` or
              ``name_taken`` and leaves the connection as it was.
    - vote:   Bound only; silently ignored otherwise.
    - reset:  Bound only; silently ignored otherwise.
    - reveal: Bound only; silently ignored otherwise.

Malformed frames are dropped without a reply and without closing the
connection, so one bad frame cannot tear down a session.

Every room mutation and the broadcast it triggers happen under
``room.lock`` with no await in between.
"""
from __future__ import annotations

import logging
from typing import Optional, Union

from pydantic import ValidationError

from ..config import RoomSettings
from .models import Room
from .presence import reconcile_presence
from .registry import (
    JoinError,
    NameTakenError,
    ParticipantRegistry,
    VoteError,
    normalize_name,
)
from .schemas import (
    JoinMessage,
    ResetMessage,
    RevealMessage,
    VoteMessage,
    error_message,
    name_taken_message,
    parse_inbound,
)
from .sessions import ConnectionRegistry, ConnectionSession
from .store import RoomStore

logger = logging.getLogger(__name__)


class MessageDispatcher:
    """Validates inbound frames and applies them to room state."""

    def __init__(
        self,
        store: RoomStore,
        connections: ConnectionRegistry,
        settings: Optional[RoomSettings] = None,
    ) -> None:
        self.store = store
        self.connections = connections
        self.settings = settings or RoomSettings()

    def registry_for(self, room: Room) -> ParticipantRegistry:
        return ParticipantRegistry(
            room,
            max_participants=self.settings.max_participants,
            allowed_votes=self.settings.allowed_votes,
            id_length=self.settings.id_length,
        )

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    async def dispatch(self, session: ConnectionSession, raw: Union[str, bytes]) -> None:
        """Parse one raw frame from ``session`` and apply it.

        Frames from a session that has been closed (reclaimed by a
        reconnection, dropped for overflow, or failed on send) are ignored.
        """
        if not session.is_open:
            logger.debug(f"[Dispatch] Ignoring frame from closed connection {session.id}")
            return
        try:
            message = parse_inbound(raw)
        except ValidationError as e:
            logger.debug(f"[Dispatch] Dropping malformed frame from {session.id}: {e.error_count()} error(s)")
            return

        if isinstance(message, JoinMessage):
            await self._handle_join(session, message)
        elif isinstance(message, VoteMessage):
            await self._handle_vote(session, message)
        elif isinstance(message, ResetMessage):
            await self._handle_reset(session)
        elif isinstance(message, RevealMessage):
            await self._handle_reveal(session)

    async def handle_close(self, session: ConnectionSession) -> None:
        """Forget ``session`` and update presence in the room it was bound to."""
        session.close()
        self.connections.remove(session)

        room = self.store.get(session.room_id)
        if room is None:
            logger.info(f"[Dispatch] Unbound connection {session.id} closed")
            return

        async with room.lock:
            participant = room.find(session.participant_id)
            if participant is not None:
                participant.is_online = False
                logger.info(
                    f"[Dispatch] {participant.name} ({participant.id}) disconnected from room {room.id}"
                )
            # Another live connection may still hold the participant.
            reconcile_presence(room, self.connections.in_room(room.id))
            self.connections.broadcast_state(room)

    # ------------------------------------------------------------------
    # Handlers
    # ------------------------------------------------------------------

    async def _handle_join(self, session: ConnectionSession, message: JoinMessage) -> None:
        try:
            name = normalize_name(message.payload.name)
        except JoinError as e:
            session.send(error_message(str(e)))
            return

        previous_room_id = session.room_id
        previous_participant_id = session.participant_id
        room: Optional[Room] = None
        requested_id = message.payload.roomId

        while room is None:
            candidate, room_id = self.store.get_or_create(requested_id)
            async with candidate.lock:
                # The room may have been evicted while we waited for its lock.
                if self.store.get(room_id) is not candidate:
                    requested_id = room_id
                    continue
                room = candidate
                try:
                    self.registry_for(room).join(name, session, self.connections.in_room(room.id))
                except NameTakenError:
                    session.send(name_taken_message())
                    return
                except JoinError as e:
                    session.send(error_message(str(e)))
                    return
                self.connections.broadcast_state(room)

        if previous_room_id is None:
            return
        if (previous_room_id, previous_participant_id) == (session.room_id, session.participant_id):
            return

        # The session moved; the participant it left may now be offline.
        previous_room = self.store.get(previous_room_id)
        if previous_room is None:
            return
        async with previous_room.lock:
            reconcile_presence(previous_room, self.connections.in_room(previous_room.id))
            self.connections.broadcast_state(previous_room)

    async def _handle_vote(self, session: ConnectionSession, message: VoteMessage) -> None:
        room = self._bound_room(session, "vote")
        if room is None:
            return
        async with room.lock:
            try:
                self.registry_for(room).record_vote(session.participant_id, message.payload.vote)
            except VoteError as e:
                logger.debug(f"[Dispatch] Ignoring vote from {session.id}: {e}")
                return
            self.connections.broadcast_state(room)

    async def _handle_reset(self, session: ConnectionSession) -> None:
        room = self._bound_room(session, "reset")
        if room is None:
            return
        async with room.lock:
            self.registry_for(room).reset()
            self.connections.broadcast_state(room)

    async def _handle_reveal(self, session: ConnectionSession) -> None:
        room = self._bound_room(session, "reveal")
        if room is None:
            return
        async with room.lock:
            self.registry_for(room).reveal()
            self.connections.broadcast_state(room)

    def _bound_room(self, session: ConnectionSession, action: str) -> Optional[Room]:
        if not session.is_bound:
            logger.debug(f"[Dispatch] Ignoring {action} from unbound connection {session.id}")
            return None
        if not session.is_open:
            logger.debug(f"[Dispatch] Ignoring {action} from closed connection {session.id}")
            return None
        room = self.store.get(session.room_id)
        if room is None:
            logger.debug(f"[Dispatch] Ignoring {action}: room {session.room_id} no longer exists")
        return room
