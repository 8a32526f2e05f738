"""Presence tracking.

A participant is online exactly when some open session is bound to it.
Close events update this eagerly, but sockets can also die silently, so a
background task periodically recomputes every room's online flags from the
live sessions and re-broadcasts.  Both paths run under the room lock.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Iterable, Optional

from .models import Room
from .sessions import ConnectionRegistry, ConnectionSession
from .store import RoomStore

logger = logging.getLogger(__name__)


def reconcile_presence(room: Room, sessions: Iterable[ConnectionSession]) -> bool:
    """Recompute ``is_online`` for every participant of ``room``.

    Args:
        room: Room to reconcile.
        sessions: Sessions to consider; only open ones bound to this room count.

    Returns:
        True if any participant's flag changed.
    """
    online_ids = {
        s.participant_id
        for s in sessions
        if s.room_id == room.id and s.participant_id is not None and s.is_open
    }
    changed = False
    for participant in room.participants:
        is_online = participant.id in online_ids
        if participant.is_online != is_online:
            participant.is_online = is_online
            changed = True
    return changed


class PresenceSweeper:
    """Background task reconciling presence for every room at a fixed interval."""

    def __init__(
        self,
        store: RoomStore,
        connections: ConnectionRegistry,
        interval_seconds: float = 5.0,
        idle_ttl_seconds: float = 0,
    ) -> None:
        self._store = store
        self._connections = connections
        self._interval = interval_seconds
        self._idle_ttl = idle_ttl_seconds
        self._sweep_task: Optional[asyncio.Task] = None  # type: ignore[type-arg]

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @property
    def running(self) -> bool:
        return self._sweep_task is not None and not self._sweep_task.done()

    async def start(self) -> None:
        """Start the background sweep task (no-op when the interval is 0)."""
        if self._interval <= 0:
            logger.info("Presence sweep disabled (interval=0)")
            return
        if self.running:
            return
        self._sweep_task = asyncio.create_task(self._sweep_loop())
        logger.info("Presence sweep task started (interval=%ss)", self._interval)

    async def stop(self) -> None:
        """Cancel the sweep task and wait for it to finish."""
        if self._sweep_task:
            self._sweep_task.cancel()
            try:
                await self._sweep_task
            except asyncio.CancelledError:
                pass
            self._sweep_task = None
            logger.info("Presence sweep task stopped")

    # ------------------------------------------------------------------
    # Sweep
    # ------------------------------------------------------------------

    async def _sweep_loop(self) -> None:
        while True:
            await asyncio.sleep(self._interval)
            try:
                await self.sweep_once()
            except Exception:
                logger.exception("Presence sweep failed")

    async def sweep_once(self) -> int:
        """Reconcile and broadcast every room, then evict idle rooms.

        Returns:
            Number of rooms reconciled.
        """
        rooms = self._store.rooms()
        for room in rooms:
            async with room.lock:
                if reconcile_presence(room, self._connections.in_room(room.id)):
                    logger.debug("Presence changed in room %s", room.id)
                self._connections.broadcast_state(room)

        self._store.evict_idle(self._idle_ttl, self._connections.is_occupied)
        return len(rooms)
