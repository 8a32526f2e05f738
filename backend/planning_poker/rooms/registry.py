"""Participant registry for a single room.

Name is the only identity a human supplies, so the registry has to tell
"name in use by a live peer" apart from "name left behind by a dropped
connection".  The first is rejected; the second is a reconnection that
re-binds the new connection to the existing participant and keeps its vote.

Callers must hold ``room.lock`` for every operation here.
"""
from __future__ import annotations

import logging
from typing import Iterable, Optional, Sequence

from .ids import DEFAULT_ID_LENGTH, unique_id
from .models import Participant, Room
from .sessions import ConnectionSession

logger = logging.getLogger(__name__)


# =============================================================================
# Errors
# =============================================================================


class JoinError(Exception):
    """A join request was rejected."""


class EmptyNameError(JoinError):
    def __init__(self) -> None:
        super().__init__("Name cannot be empty")


class NameTakenError(JoinError):
    def __init__(self, name: str) -> None:
        super().__init__(f"Name '{name}' is already taken")
        self.name = name


class RoomFullError(JoinError):
    def __init__(self, room_id: str, limit: int) -> None:
        super().__init__("Room is full")
        self.room_id = room_id
        self.limit = limit


class VoteError(Exception):
    """A vote was rejected."""


class NotJoinedError(VoteError):
    def __init__(self, participant_id: Optional[str]) -> None:
        super().__init__(f"Participant {participant_id} is not in this room")
        self.participant_id = participant_id


class InvalidVoteError(VoteError):
    def __init__(self, vote: Optional[str]) -> None:
        super().__init__(f"Vote {vote!r} is not accepted")
        self.vote = vote


def normalize_name(name: Optional[str]) -> str:
    """Trim ``name`` and reject it if nothing is left.

    Raises:
        EmptyNameError: If the name is missing or blank.
    """
    trimmed = (name or "").strip()
    if not trimmed:
        raise EmptyNameError()
    return trimmed


# =============================================================================
# Registry
# =============================================================================


class ParticipantRegistry:
    """Identity, name uniqueness and vote state of one room.

    Args:
        room: The room this registry operates on.
        max_participants: Cap on distinct participants; 0 means unlimited.
        allowed_votes: Accepted vote values; None accepts any non-empty string.
        id_length: Length of generated participant ids.
    """

    def __init__(
        self,
        room: Room,
        max_participants: int = 0,
        allowed_votes: Optional[Sequence[str]] = None,
        id_length: int = DEFAULT_ID_LENGTH,
    ) -> None:
        self.room = room
        self.max_participants = max_participants
        self.allowed_votes = frozenset(allowed_votes) if allowed_votes is not None else None
        self.id_length = id_length

    def join(
        self,
        name: Optional[str],
        session: ConnectionSession,
        room_sessions: Iterable[ConnectionSession],
    ) -> Participant:
        """Bind ``session`` to the participant called ``name``.

        A new name creates a participant.  An existing name (compared
        case-insensitively) is a reconnection unless another open session is
        still bound to that participant.

        Args:
            name: Requested display name.
            session: Connection asking to join.
            room_sessions: Every registered session currently bound to this room.

        Returns:
            The participant now bound to ``session``.

        Raises:
            EmptyNameError: The name is blank.
            NameTakenError: Another open connection holds the name.
            RoomFullError: Creating a participant would exceed the room cap.
        """
        trimmed = normalize_name(name)
        room = self.room
        existing = room.find_by_name(trimmed)

        if existing is None:
            if self.max_participants and len(room.participants) >= self.max_participants:
                logger.info(
                    "Join of '%s' rejected: room %s is full (%d)",
                    trimmed, room.id, self.max_participants,
                )
                raise RoomFullError(room.id, self.max_participants)

            participant = Participant(
                id=unique_id({p.id for p in room.participants}, self.id_length),
                name=trimmed,
            )
            room.participants.append(participant)
            if room.creator_id is None:
                room.creator_id = participant.id
            session.bind(room.id, participant.id)
            room.touch()
            logger.info(
                "Participant '%s' (%s) joined room %s; %d participant(s)",
                trimmed, participant.id, room.id, len(room.participants),
            )
            return participant

        others = [
            s for s in room_sessions
            if s is not session and s.participant_id == existing.id
        ]
        if any(s.is_open for s in others):
            logger.info(
                "Name '%s' in room %s is held by a live connection", trimmed, room.id
            )
            raise NameTakenError(trimmed)

        # Nobody live holds the name: reclaim it and drop any stale sockets.
        for stale in others:
            logger.info("Closing stale connection %s for %s", stale.id, existing.id)
            stale.close()

        existing.is_online = True
        session.bind(room.id, existing.id)
        room.touch()
        logger.info(
            "Participant '%s' (%s) reconnected to room %s (hasVoted=%s)",
            existing.name, existing.id, room.id, existing.has_voted,
        )
        return existing

    def record_vote(self, participant_id: Optional[str], vote: Optional[str]) -> Participant:
        """Set the participant's vote, replacing any earlier one.

        Raises:
            NotJoinedError: The participant is not in this room.
            InvalidVoteError: The vote is empty or outside ``allowed_votes``.
        """
        participant = self.room.find(participant_id)
        if participant is None:
            raise NotJoinedError(participant_id)
        if not vote:
            raise InvalidVoteError(vote)
        if self.allowed_votes is not None and vote not in self.allowed_votes:
            raise InvalidVoteError(vote)

        participant.vote = vote
        participant.has_voted = True
        self.room.touch()
        logger.debug("Participant %s voted in room %s", participant.id, self.room.id)
        return participant

    def reset(self) -> None:
        """Clear every vote and hide the round again."""
        for participant in self.room.participants:
            participant.clear_vote()
        self.room.votes_revealed = False
        self.room.touch()
        logger.info("Votes reset in room %s", self.room.id)

    def reveal(self) -> None:
        """Expose all votes.  Revealing twice is a no-op."""
        self.room.votes_revealed = True
        self.room.touch()
        logger.info("Votes revealed in room %s", self.room.id)
