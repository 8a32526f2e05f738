"""Tests for MessageDispatcher protocol handling (no real sockets)."""
import asyncio
import json

import pytest

from planning_poker.config import AppConfig, PresenceSettings, RoomSettings
from planning_poker.rooms.service import PokerService


def frame(type_, **payload):
    message = {"type": type_}
    if payload:
        message["payload"] = payload
    return json.dumps(message)


@pytest.fixture
def service():
    return PokerService(AppConfig(presence=PresenceSettings(sweep_interval_seconds=0)))


@pytest.fixture
def connect(service, make_session):
    def _connect():
        session = make_session()
        service.connections.add(session)
        return session
    return _connect


def last_state(frames):
    states = [f for f in frames if f["type"] == "state"]
    assert states, f"no state frame in {frames}"
    return states[-1]["payload"]


class TestJoin:
    @pytest.mark.asyncio
    async def test_join_without_room_creates_one(self, service, connect, drain):
        alice = connect()
        await service.dispatcher.dispatch(alice, frame("join", name="Alice"))

        frames = drain(alice)
        assert len(frames) == 1
        state = last_state(frames)
        assert state["roomId"] == alice.room_id
        assert state["isCreator"] is True
        assert [p["name"] for p in state["participants"]] == ["Alice"]
        assert service.store.get(alice.room_id) is not None

    @pytest.mark.asyncio
    async def test_second_joiner_broadcasts_to_room(self, service, connect, drain):
        alice, bob = connect(), connect()
        await service.dispatcher.dispatch(alice, frame("join", name="Alice"))
        room_id = alice.room_id
        drain(alice)

        await service.dispatcher.dispatch(bob, frame("join", name="Bob", roomId=room_id))

        to_alice = last_state(drain(alice))
        to_bob = last_state(drain(bob))
        assert [p["name"] for p in to_alice["participants"]] == ["Alice", "Bob"]
        assert to_bob["isCreator"] is False
        assert to_bob["roomId"] == room_id

    @pytest.mark.asyncio
    async def test_empty_name_returns_error_and_stays_unbound(self, service, connect, drain):
        session = connect()
        await service.dispatcher.dispatch(session, frame("join", name="   "))
        assert drain(session) == [{"type": "error", "payload": {"message": "Name cannot be empty"}}]
        assert session.is_bound is False
        assert len(service.store) == 0

    @pytest.mark.asyncio
    async def test_name_taken(self, service, connect, drain):
        alice, impostor = connect(), connect()
        await service.dispatcher.dispatch(alice, frame("join", name="Alice"))
        room_id = alice.room_id
        drain(alice)

        await service.dispatcher.dispatch(impostor, frame("join", name="ALICE", roomId=room_id))

        assert drain(impostor) == [{"type": "name_taken"}]
        assert drain(alice) == []
        assert impostor.is_bound is False

    @pytest.mark.asyncio
    async def test_same_name_in_other_room_is_fine(self, service, connect, drain):
        a, b = connect(), connect()
        await service.dispatcher.dispatch(a, frame("join", name="Alice", roomId="one"))
        await service.dispatcher.dispatch(b, frame("join", name="Alice", roomId="two"))
        assert a.room_id == "one"
        assert b.room_id == "two"

    @pytest.mark.asyncio
    async def test_room_full_returns_error(self, make_session, drain):
        service = PokerService(AppConfig(
            rooms=RoomSettings(max_participants=1),
            presence=PresenceSettings(sweep_interval_seconds=0),
        ))
        first, second = make_session(), make_session()
        service.connections.add(first)
        service.connections.add(second)
        await service.dispatcher.dispatch(first, frame("join", name="Alice", roomId="r"))
        await service.dispatcher.dispatch(second, frame("join", name="Bob", roomId="r"))
        assert drain(second) == [{"type": "error", "payload": {"message": "Room is full"}}]

    @pytest.mark.asyncio
    async def test_rejoin_elsewhere_releases_previous_participant(self, service, connect, drain):
        alice, watcher = connect(), connect()
        await service.dispatcher.dispatch(alice, frame("join", name="Alice", roomId="one"))
        await service.dispatcher.dispatch(watcher, frame("join", name="Watcher", roomId="one"))
        drain(watcher)

        await service.dispatcher.dispatch(alice, frame("join", name="Alice", roomId="two"))

        assert alice.room_id == "two"
        seen = {p["name"]: p for p in last_state(drain(watcher))["participants"]}
        assert seen["Alice"]["isOnline"] is False
        assert seen["Watcher"]["isOnline"] is True

    @pytest.mark.asyncio
    async def test_concurrent_joins_with_same_name(self, service, connect, drain):
        room, _ = service.store.get_or_create("r")
        first, second = connect(), connect()

        # Hold the room so both joins queue up before either commits.
        async with room.lock:
            joins = asyncio.gather(
                service.dispatcher.dispatch(first, frame("join", name="Alice", roomId="r")),
                service.dispatcher.dispatch(second, frame("join", name="alice", roomId="r")),
            )
            await asyncio.sleep(0)
        await joins

        bound = [s for s in (first, second) if s.is_bound]
        [loser] = [s for s in (first, second) if not s.is_bound]
        assert len(bound) == 1
        assert drain(loser) == [{"type": "name_taken"}]
        assert [p.name.casefold() for p in room.participants] == ["alice"]

    @pytest.mark.asyncio
    async def test_concurrent_reclaims_of_abandoned_name(self, service, connect, drain):
        old = connect()
        await service.dispatcher.dispatch(old, frame("join", name="Alice", roomId="r"))
        old.websocket.drop()
        room = service.store.get("r")
        first, second = connect(), connect()

        async with room.lock:
            joins = asyncio.gather(
                service.dispatcher.dispatch(first, frame("join", name="alice", roomId="r")),
                service.dispatcher.dispatch(second, frame("join", name="ALICE", roomId="r")),
            )
            await asyncio.sleep(0)
        await joins

        [winner] = [s for s in (first, second) if s.is_bound]
        [loser] = [s for s in (first, second) if not s.is_bound]
        assert winner.participant_id == old.participant_id
        assert drain(loser) == [{"type": "name_taken"}]
        [alice] = room.participants
        assert alice.is_online is True


class TestRoundFlow:
    @pytest.mark.asyncio
    async def test_votes_hidden_until_reveal_then_reset(self, service, connect, drain):
        alice, bob = connect(), connect()
        await service.dispatcher.dispatch(alice, frame("join", name="Alice"))
        room_id = alice.room_id
        await service.dispatcher.dispatch(bob, frame("join", name="Bob", roomId=room_id))
        await service.dispatcher.dispatch(alice, frame("vote", vote="5"))
        await service.dispatcher.dispatch(bob, frame("vote", vote="8"))
        drain(alice)

        before = last_state(drain(bob))
        assert before["currentVotes"] == {bob.participant_id: "8"}
        alice_entry = next(p for p in before["participants"] if p["name"] == "Alice")
        assert "vote" not in alice_entry
        assert alice_entry["hasVoted"] is True

        await service.dispatcher.dispatch(alice, frame("reveal"))
        after = last_state(drain(bob))
        assert after["votesRevealed"] is True
        assert after["currentVotes"] == {alice.participant_id: "5", bob.participant_id: "8"}

        await service.dispatcher.dispatch(bob, frame("reset"))
        cleared = last_state(drain(alice))
        assert cleared["votesRevealed"] is False
        assert cleared["currentVotes"] == {}
        assert all(not p["hasVoted"] and "vote" not in p for p in cleared["participants"])

    @pytest.mark.asyncio
    async def test_reveal_twice_is_stable(self, service, connect, drain):
        alice = connect()
        await service.dispatcher.dispatch(alice, frame("join", name="Alice"))
        await service.dispatcher.dispatch(alice, frame("vote", vote="3"))
        await service.dispatcher.dispatch(alice, frame("reveal"))
        first = last_state(drain(alice))
        await service.dispatcher.dispatch(alice, frame("reveal"))
        second = last_state(drain(alice))
        assert first == second


class TestIgnoredFrames:
    @pytest.mark.asyncio
    @pytest.mark.parametrize("raw", [
        frame("vote", vote="5"),
        frame("reset"),
        frame("reveal"),
    ])
    async def test_unbound_actions_ignored(self, service, connect, drain, raw):
        session = connect()
        await service.dispatcher.dispatch(session, raw)
        assert drain(session) == []
        assert len(service.store) == 0

    @pytest.mark.asyncio
    @pytest.mark.parametrize("raw", [
        "garbage",
        b"\x00\xff",
        '{"type": "leave"}',
        '{"type": "vote"}',
        frame("vote", vote=""),
    ])
    async def test_malformed_or_empty_vote_ignored(self, service, connect, drain, raw):
        session = connect()
        await service.dispatcher.dispatch(session, frame("join", name="Alice"))
        drain(session)

        await service.dispatcher.dispatch(session, raw)

        assert drain(session) == []
        assert session.is_open is True
        room = service.store.get(session.room_id)
        assert room.participants[0].has_voted is False


class TestClose:
    @pytest.mark.asyncio
    async def test_close_marks_offline_and_broadcasts(self, service, connect, drain):
        alice, bob = connect(), connect()
        await service.dispatcher.dispatch(alice, frame("join", name="Alice"))
        await service.dispatcher.dispatch(bob, frame("join", name="Bob", roomId=alice.room_id))
        drain(alice)

        await service.close_session(bob)

        state = last_state(drain(alice))
        bob_entry = next(p for p in state["participants"] if p["name"] == "Bob")
        assert bob_entry["isOnline"] is False
        assert len(state["participants"]) == 2
        assert bob not in list(service.connections)

    @pytest.mark.asyncio
    async def test_close_of_unbound_session(self, service, connect):
        session = connect()
        await service.close_session(session)
        assert len(service.connections) == 0

    @pytest.mark.asyncio
    async def test_stale_close_after_reconnect_keeps_participant_online(self, service, connect, drain):
        old, watcher = connect(), connect()
        await service.dispatcher.dispatch(old, frame("join", name="Alice", roomId="r"))
        await service.dispatcher.dispatch(watcher, frame("join", name="Watcher", roomId="r"))
        old.websocket.drop()

        new = connect()
        await service.dispatcher.dispatch(new, frame("join", name="alice", roomId="r"))
        assert new.participant_id == old.participant_id

        # The stale socket's close event arrives after the reconnection.
        await service.close_session(old)

        state = last_state(drain(watcher))
        alice_entry = next(p for p in state["participants"] if p["name"] == "Alice")
        assert alice_entry["isOnline"] is True

    @pytest.mark.asyncio
    async def test_reconnect_preserves_vote(self, service, connect, drain):
        old = connect()
        await service.dispatcher.dispatch(old, frame("join", name="Bob", roomId="r"))
        await service.dispatcher.dispatch(old, frame("vote", vote="5"))
        await service.close_session(old)

        new = connect()
        await service.dispatcher.dispatch(new, frame("join", name="BOB", roomId="r"))

        state = last_state(drain(new))
        [bob] = state["participants"]
        assert bob["vote"] == "5"
        assert bob["hasVoted"] is True
        assert bob["isOnline"] is True
        assert state["currentVotes"] == {new.participant_id: "5"}

    @pytest.mark.asyncio
    async def test_reclaimed_connection_cannot_act(self, service, connect):
        old = connect()
        await service.dispatcher.dispatch(old, frame("join", name="Alice", roomId="r"))

        async def boom(data):
            raise RuntimeError("socket gone")

        old.websocket.send_json = boom
        await asyncio.wait_for(old.run_writer(), timeout=1)
        assert old.websocket.close_code == 1011

        new = connect()
        await service.dispatcher.dispatch(new, frame("join", name="alice", roomId="r"))
        assert new.participant_id == old.participant_id

        await service.dispatcher.dispatch(old, frame("vote", vote="99"))
        await service.dispatcher.dispatch(old, frame("reveal"))

        room = service.store.get("r")
        [alice] = room.participants
        assert alice.vote is None
        assert alice.has_voted is False
        assert room.votes_revealed is False

    @pytest.mark.asyncio
    async def test_overflowed_connection_cannot_act(self, service, connect, make_session, drain):
        slow = make_session(send_queue_size=1)
        service.connections.add(slow)
        watcher = connect()
        await service.dispatcher.dispatch(slow, frame("join", name="Slow", roomId="r"))
        await service.dispatcher.dispatch(watcher, frame("join", name="Watcher", roomId="r"))
        assert slow.is_open is False
        drain(watcher)

        await service.dispatcher.dispatch(slow, frame("vote", vote="5"))
        await service.dispatcher.dispatch(slow, frame("reveal"))

        room = service.store.get("r")
        assert room.find(slow.participant_id).has_voted is False
        assert room.votes_revealed is False
        assert drain(watcher) == []
