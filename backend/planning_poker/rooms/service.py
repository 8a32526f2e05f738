"""Coordinating service for all planning poker rooms.

``PokerService`` owns the room store, the live connection registry, the
message dispatcher and the presence sweeper.  One instance is created in the
application lifespan and stored on ``app.state.poker``; route handlers reach
it from there instead of through module globals.

Usage:
    service = PokerService(config)
    await service.start()
    session = service.open_session(websocket)
    await service.dispatcher.dispatch(session, raw_frame)
    await service.close_session(session)
    await service.stop()
"""
from __future__ import annotations

import logging
from typing import Optional

from fastapi import WebSocket

from ..config import AppConfig
from .dispatcher import MessageDispatcher
from .presence import PresenceSweeper
from .sessions import ConnectionRegistry, ConnectionSession
from .store import RoomStore

logger = logging.getLogger(__name__)


class PokerService:
    """Single owner of all in-memory room and connection state.

    Attributes:
        config: Application configuration.
        store: Room id → Room mapping.
        connections: Every live session.
        dispatcher: Applies inbound frames.
        sweeper: Periodic presence reconciliation.
    """

    def __init__(self, config: Optional[AppConfig] = None) -> None:
        self.config = config or AppConfig()
        self.store = RoomStore(id_length=self.config.rooms.id_length)
        self.connections = ConnectionRegistry()
        self.dispatcher = MessageDispatcher(self.store, self.connections, self.config.rooms)
        self.sweeper = PresenceSweeper(
            self.store,
            self.connections,
            interval_seconds=self.config.presence.sweep_interval_seconds,
            idle_ttl_seconds=self.config.rooms.idle_ttl_seconds,
        )

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        await self.sweeper.start()
        logger.info("PokerService started")

    async def stop(self) -> None:
        """Stop the sweeper and close every remaining connection."""
        await self.sweeper.stop()
        for session in self.connections:
            session.close(code=1001)
        logger.info("PokerService stopped (%d room(s) in memory)", len(self.store))

    # ------------------------------------------------------------------
    # Connections
    # ------------------------------------------------------------------

    def open_session(self, websocket: WebSocket) -> ConnectionSession:
        """Register an accepted WebSocket as a new, unbound session."""
        session = ConnectionSession(websocket, send_queue_size=self.config.connections.send_queue_size)
        self.connections.add(session)
        return session

    async def close_session(self, session: ConnectionSession) -> None:
        await self.dispatcher.handle_close(session)

    async def sweep(self) -> int:
        """Run one presence sweep immediately."""
        return await self.sweeper.sweep_once()
