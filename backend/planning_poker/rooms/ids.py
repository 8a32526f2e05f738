"""Short opaque identifiers for rooms, participants and sessions."""
import uuid
from typing import Callable, Container

DEFAULT_ID_LENGTH = 8


def new_id(length: int = DEFAULT_ID_LENGTH) -> str:
    """Return a random lowercase hex identifier of ``length`` characters."""
    return uuid.uuid4().hex[:length]


def unique_id(
    taken: Container[str],
    length: int = DEFAULT_ID_LENGTH,
    factory: Callable[[int], str] = new_id,
) -> str:
    """Draw identifiers until one is not in ``taken``."""
    candidate = factory(length)
    while candidate in taken:
        candidate = factory(length)
    return candidate
