"""Planning poker rooms: state, protocol and connection handling."""
from .registry import (
    EmptyNameError,
    InvalidVoteError,
    JoinError,
    NameTakenError,
    NotJoinedError,
    ParticipantRegistry,
    RoomFullError,
    VoteError,
)
from .service import PokerService

__all__ = [
    "EmptyNameError",
    "InvalidVoteError",
    "JoinError",
    "NameTakenError",
    "NotJoinedError",
    "ParticipantRegistry",
    "PokerService",
    "RoomFullError",
    "VoteError",
]
