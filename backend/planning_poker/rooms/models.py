"""In-memory room state.

These dataclasses are the server-side source of truth.  They are never sent
over the wire directly; :mod:`planning_poker.rooms.redaction` turns them into
per-viewer :class:`~planning_poker.rooms.schemas.ClientState` snapshots.
"""
from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from typing import List, Optional


@dataclass
class Participant:
    """A named identity within a room, independent of any connection."""

    id: str
    name: str
    is_online: bool = True
    vote: Optional[str] = None
    has_voted: bool = False

    def clear_vote(self) -> None:
        self.vote = None
        self.has_voted = False


@dataclass
class Room:
    """One voting session.

    Attributes:
        id: Opaque room identifier.
        participants: Participants in join order (governs display order).
        votes_revealed: Whether the current round has been revealed.
        creator_id: Participant id of the first successful joiner.
        last_active: Monotonic timestamp of the last mutation.
        lock: Serializes every mutation of this room and its broadcast.
    """

    id: str
    participants: List[Participant] = field(default_factory=list)
    votes_revealed: bool = False
    creator_id: Optional[str] = None
    last_active: float = field(default_factory=time.monotonic)
    lock: asyncio.Lock = field(default_factory=asyncio.Lock, repr=False, compare=False)

    def find(self, participant_id: Optional[str]) -> Optional[Participant]:
        if participant_id is None:
            return None
        for participant in self.participants:
            if participant.id == participant_id:
                return participant
        return None

    def find_by_name(self, name: str) -> Optional[Participant]:
        """Case-insensitive name lookup."""
        wanted = name.casefold()
        for participant in self.participants:
            if participant.name.casefold() == wanted:
                return participant
        return None

    def touch(self) -> None:
        self.last_active = time.monotonic()
