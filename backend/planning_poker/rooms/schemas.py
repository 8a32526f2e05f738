"""Wire protocol for the planning poker WebSocket.

Every frame is a JSON object ``{"type": str, "payload"?: object}``.

Inbound (client → server):
    - join:   ``{name, roomId?}``
    - vote:   ``{vote}``
    - reset:  no payload
    - reveal: no payload

Outbound (server → client):
    - state:      ``{payload: ClientState}``
    - name_taken: no payload
    - error:      ``{payload: {message}}``

Inbound frames are parsed into a discriminated union keyed on ``type``; any
frame that does not fit one of the variants raises ``ValidationError``.
"""
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, Field, TypeAdapter

# =============================================================================
# Inbound messages
# =============================================================================


class JoinPayload(BaseModel):
    """Payload of a ``join`` message.

    Attributes:
        name: Display name requested by the client (trimmed server-side).
        roomId: Room to join; omitted to create a new room.
    """
    name: Optional[str] = Field(default=None, description="Requested display name")
    roomId: Optional[str] = Field(default=None, description="Room to join")


class VotePayload(BaseModel):
    vote: Optional[str] = Field(default=None, description="Estimate value")


class JoinMessage(BaseModel):
    type: Literal["join"]
    payload: JoinPayload = Field(default_factory=JoinPayload)


class VoteMessage(BaseModel):
    type: Literal["vote"]
    payload: VotePayload


class ResetMessage(BaseModel):
    type: Literal["reset"]
    payload: Optional[Dict[str, Any]] = None


class RevealMessage(BaseModel):
    type: Literal["reveal"]
    payload: Optional[Dict[str, Any]] = None


InboundMessage = Annotated[
    Union[JoinMessage, VoteMessage, ResetMessage, RevealMessage],
    Field(discriminator="type"),
]

_inbound_adapter: TypeAdapter = TypeAdapter(InboundMessage)


def parse_inbound(raw: Union[str, bytes]) -> Union[JoinMessage, VoteMessage, ResetMessage, RevealMessage]:
    """Parse one raw frame into a typed message.

    Raises:
        pydantic.ValidationError: If the frame is not JSON, is not an object,
            has an unknown ``type``, or its payload has the wrong shape.
    """
    return _inbound_adapter.validate_json(raw)


# =============================================================================
# Client state (outbound snapshot)
# =============================================================================


class ParticipantView(BaseModel):
    """One participant as seen by a specific viewer.

    ``vote`` is ``None`` when hidden from the viewer or not cast; it is
    dropped from the serialized frame in both cases.
    """
    id: str
    name: str
    isOnline: bool
    hasVoted: bool
    vote: Optional[str] = None


class ClientState(BaseModel):
    """Room snapshot delivered to one connection."""
    roomId: str
    participants: List[ParticipantView] = Field(default_factory=list)
    votesRevealed: bool = False
    currentVotes: Dict[str, str] = Field(default_factory=dict)
    isCreator: bool = False

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump(exclude_none=True)


# =============================================================================
# Outbound frames
# =============================================================================


def state_message(state: ClientState) -> Dict[str, Any]:
    return {"type": "state", "payload": state.to_wire()}


def name_taken_message() -> Dict[str, Any]:
    return {"type": "name_taken"}


def error_message(message: str) -> Dict[str, Any]:
    return {"type": "error", "payload": {"message": message}}
