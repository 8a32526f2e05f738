"""Planning poker room server.

Participants join a room over a WebSocket, cast hidden estimates, and reveal
them together.  All room state lives in memory in a single process.
"""

__version__ = "0.1.0"
