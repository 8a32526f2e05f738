"""Room store: owns every room for the lifetime of the process.

Rooms are created lazily.  Asking for an id that does not exist never fails:
a fresh empty room is created under that id, so a client holding a stale
link simply lands in an empty room.
"""
from __future__ import annotations

import logging
import time
from typing import Callable, Dict, List, Optional, Tuple

from .ids import DEFAULT_ID_LENGTH, unique_id
from .models import Room

logger = logging.getLogger(__name__)


class RoomStore:
    """Mapping from room id to :class:`Room`."""

    def __init__(self, id_length: int = DEFAULT_ID_LENGTH) -> None:
        self._rooms: Dict[str, Room] = {}
        self._id_length = id_length

    def get_or_create(self, room_id: Optional[str] = None) -> Tuple[Room, str]:
        """Return the room for ``room_id``, creating it if needed.

        Args:
            room_id: Requested room id.  ``None`` or a blank string allocates
                a new unique id.

        Returns:
            Tuple of (room, room_id).
        """
        if room_id is not None:
            room_id = room_id.strip() or None

        if room_id is None:
            room_id = unique_id(self._rooms, self._id_length)
            logger.info("Created room %s", room_id)
        elif room_id not in self._rooms:
            logger.info("Room %s unknown, creating it", room_id)

        room = self._rooms.get(room_id)
        if room is None:
            room = Room(id=room_id)
            self._rooms[room_id] = room
        return room, room_id

    def get(self, room_id: Optional[str]) -> Optional[Room]:
        if room_id is None:
            return None
        return self._rooms.get(room_id)

    def rooms(self) -> List[Room]:
        return list(self._rooms.values())

    def evict_idle(
        self,
        ttl_seconds: float,
        is_occupied: Callable[[str], bool],
        now: Optional[float] = None,
    ) -> List[str]:
        """Remove unoccupied rooms whose last mutation is older than the TTL.

        Args:
            ttl_seconds: Idle time after which an unoccupied room is removed.
                Values ``<= 0`` disable eviction.
            is_occupied: Returns True while any session is registered for
                the room id.
            now: Monotonic "current time" override, for tests.

        Returns:
            Ids of the evicted rooms.
        """
        if ttl_seconds <= 0:
            return []
        now = time.monotonic() if now is None else now
        evicted = [
            room_id
            for room_id, room in self._rooms.items()
            if now - room.last_active >= ttl_seconds and not is_occupied(room_id)
        ]
        for room_id in evicted:
            del self._rooms[room_id]
        if evicted:
            logger.info("Evicted %d idle room(s): %s", len(evicted), ", ".join(evicted))
        return evicted

    def __contains__(self, room_id: object) -> bool:
        return room_id in self._rooms

    def __len__(self) -> int:
        return len(self._rooms)
