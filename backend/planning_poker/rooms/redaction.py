"""Per-viewer room snapshots.

Until a round is revealed, a viewer may see only their own vote.  Other
participants' ``vote`` keys are left out of the frame entirely, so "hidden"
is distinguishable from "voted an empty value", and ``currentVotes`` holds
at most the viewer's own entry.  After reveal every vote is visible.

The mask depends on who is looking, so a snapshot must be built for every
recipient of every broadcast and never shared between recipients.
"""
from typing import Optional

from .models import Room
from .schemas import ClientState, ParticipantView


def build_client_state(room: Room, viewer_id: Optional[str]) -> ClientState:
    """Build the snapshot of ``room`` that ``viewer_id`` is allowed to see.

    Args:
        room: Room to snapshot.
        viewer_id: Participant bound to the receiving connection, or None
            for a connection that has not joined.

    Returns:
        A new ClientState sharing no mutable data with ``room``.
    """
    revealed = room.votes_revealed
    participants = []
    current_votes = {}

    for participant in room.participants:
        visible = revealed or (viewer_id is not None and participant.id == viewer_id)
        vote = participant.vote if visible else None
        participants.append(
            ParticipantView(
                id=participant.id,
                name=participant.name,
                isOnline=participant.is_online,
                hasVoted=participant.has_voted,
                vote=vote,
            )
        )
        if visible and participant.has_voted and vote is not None:
            current_votes[participant.id] = vote

    return ClientState(
        roomId=room.id,
        participants=participants,
        votesRevealed=revealed,
        currentVotes=current_votes,
        isCreator=viewer_id is not None and viewer_id == room.creator_id,
    )
