import asyncio
import random

from connect4live.data.analytics import EventLogAnalytics
from connect4live.data.data_manager import DataManager
from connect4live.session.coordinator import ConnectionState, RealtimeCoordinator
from connect4live.session.models import Identity

from conftest import FakeConnection


async def join(coordinator, connection, name, session_id=None):
    message = {"type": "join-session", "identityName": name}
    if session_id is not None:
        message["sessionId"] = session_id
    await coordinator.dispatch(connection, message)


async def move(coordinator, connection, session_id, column):
    await coordinator.dispatch(connection, {"type": "make-move", "sessionId": session_id, "column": column})


async def paired(coordinator):
    """Two humans matched through the FIFO queue; alice moves first."""
    alice, bob = FakeConnection("alice"), FakeConnection("bob")
    await join(coordinator, alice, "alice")
    await join(coordinator, bob, "bob")
    update = await alice.wait_for("session-update")
    await bob.wait_for("session-update")
    return alice, bob, update["session"]["id"]


async def eventually(predicate, timeout=2.0):
    deadline = asyncio.get_running_loop().time() + timeout
    while not predicate():
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.02)


async def test_queue_join_acknowledges_waiting(coordinator):
    alice = FakeConnection("alice")
    await join(coordinator, alice, "alice")
    created = await alice.wait_for("session-created")
    assert created["waiting"] is True
    assert created["sessionId"] is None
    assert created["fallbackDelayMs"] == 200
    assert coordinator.binding_for(alice).state == ConnectionState.QUEUED


async def test_horizontal_win_ends_session(coordinator):
    alice, bob, session_id = await paired(coordinator)

    for column in (0, 0, 1, 1, 2, 2):
        mover = alice if len(alice.of_type("move-applied")) % 2 == 0 else bob
        await move(coordinator, mover, session_id, column)
    await move(coordinator, alice, session_id, 3)

    over = await alice.wait_for("session-over")
    assert over["winner"]["name"] == "alice"
    assert over["forfeit"] is False
    assert over["session"]["status"] == "won"
    assert over["session"]["board"][5][:4] == [1, 1, 1, 1]
    assert (await bob.wait_for("session-over"))["winner"]["name"] == "alice"

    last = alice.of_type("move-applied")[-1]
    assert (last["row"], last["column"]) == (5, 3)
    assert len(bob.of_type("move-applied")) == 7


async def test_move_out_of_turn(coordinator):
    alice, bob, session_id = await paired(coordinator)
    await move(coordinator, bob, session_id, 3)
    error = await bob.wait_for("error")
    assert error["code"] == "NOT_YOUR_TURN"
    assert alice.of_type("move-applied") == []


async def test_invalid_column(coordinator):
    alice, bob, session_id = await paired(coordinator)
    await move(coordinator, alice, session_id, 7)
    assert (await alice.wait_for("error"))["code"] == "INVALID_MOVE"

    for i in range(6):
        await move(coordinator, alice if i % 2 == 0 else bob, session_id, 4)
    await move(coordinator, alice, session_id, 4)
    assert alice.of_type("error")[-1]["code"] == "INVALID_MOVE"
    assert len(alice.of_type("move-applied")) == 6


async def test_no_moves_after_session_over(coordinator):
    alice, bob, session_id = await paired(coordinator)
    for i, column in enumerate((0, 1, 0, 1, 0, 1, 0)):
        await move(coordinator, alice if i % 2 == 0 else bob, session_id, column)
    await bob.wait_for("session-over")
    await move(coordinator, bob, session_id, 1)
    assert (await bob.wait_for("error"))["code"] == "SESSION_OVER"


async def test_name_taken_is_disambiguated(coordinator):
    first, second, third = FakeConnection("1"), FakeConnection("2"), FakeConnection("3")
    await join(coordinator, first, "sam")
    await join(coordinator, second, "sam")
    await join(coordinator, third, "sam")

    taken = await second.wait_for("name-taken")
    assert taken["requested"] == "sam"
    assert taken["assigned"] == "sam1"
    assert (await third.wait_for("name-taken"))["assigned"] == "sam2"
    assert first.of_type("name-taken") == []


async def test_name_is_freed_on_disconnect(coordinator):
    first, second = FakeConnection("1"), FakeConnection("2")
    await join(coordinator, first, "sam")
    await coordinator.handle_disconnect(first)
    await join(coordinator, second, "sam")
    assert second.of_type("name-taken") == []


async def test_fallback_bot_joins_and_replies(coordinator):
    alice = FakeConnection("alice")
    await coordinator.dispatch(alice, {"type": "create-session", "identityName": "alice"})
    created = await alice.wait_for("session-created")
    assert created["waiting"] is True and created["sessionId"]

    update = await alice.wait_for("session-update", timeout=2.0)
    session = update["session"]
    assert session["id"] == created["sessionId"]
    assert session["second"]["kind"] == "bot"
    assert session["currentTurn"]["name"] == "alice"

    await move(coordinator, alice, session["id"], 3)
    reply = await alice.wait_for("move-applied", count=2)
    assert reply["identityId"] == session["second"]["id"]
    assert reply["session"]["currentTurn"]["name"] == "alice"


async def test_bot_keeps_alternating_with_human(coordinator):
    alice = FakeConnection("alice")
    await coordinator.dispatch(alice, {"type": "create-session", "identityName": "alice"})
    session_id = (await alice.wait_for("session-update", timeout=2.0))["session"]["id"]

    await move(coordinator, alice, session_id, 0)
    await alice.wait_for("move-applied", count=2)
    board = coordinator.registry.get(session_id).engine.board
    column = next(c for c in (1, 2, 6) if board.cell(5, c) == 0)
    await move(coordinator, alice, session_id, column)
    await alice.wait_for("move-applied", count=4)

    session = coordinator.registry.get(session_id)
    assert len(session.moves) == 4
    assert [m.identity_id for m in session.moves][1::2] == [session.second.id] * 2


async def test_join_invite_by_session_id(coordinator):
    host, guest = FakeConnection("host"), FakeConnection("guest")
    await coordinator.dispatch(host, {"type": "create-session", "identityName": "host"})
    session_id = (await host.wait_for("session-created"))["sessionId"]

    await join(coordinator, guest, "guest", session_id)
    update = await guest.wait_for("session-update")
    assert update["session"]["id"] == session_id
    assert update["session"]["first"]["name"] == "host"
    assert update["session"]["second"]["name"] == "guest"
    assert (await host.wait_for("session-update"))["session"]["id"] == session_id

    await asyncio.sleep(0.4)
    assert coordinator.registry.get(session_id).second.name == "guest"


async def test_join_unknown_session(coordinator):
    guest = FakeConnection("guest")
    await join(coordinator, guest, "guest", "no-such-session")
    assert (await guest.wait_for("error"))["code"] == "SESSION_NOT_FOUND"


async def test_join_existing_session_as_stranger(coordinator):
    alice, bob, session_id = await paired(coordinator)
    eve = FakeConnection("eve")
    await join(coordinator, eve, "eve", session_id)
    assert (await eve.wait_for("error"))["code"] == "IDENTITY_NOT_IN_SESSION"


async def test_reconnect_within_window_keeps_session(coordinator):
    alice, bob, session_id = await paired(coordinator)
    await move(coordinator, alice, session_id, 3)

    await coordinator.handle_disconnect(bob)
    gone = await alice.wait_for("opponent-disconnected")
    assert gone["identityId"] == alice.of_type("session-update")[0]["session"]["second"]["id"]

    bob_again = FakeConnection("bob-again")
    await coordinator.dispatch(bob_again, {"type": "reconnect", "identityName": "bob", "sessionId": session_id})
    update = await bob_again.wait_for("session-update")
    assert update["session"]["board"][5][3] == 1
    await alice.wait_for("opponent-reconnected")

    await asyncio.sleep(0.5)
    assert alice.of_type("session-over") == []

    await move(coordinator, bob_again, session_id, 3)
    applied = await alice.wait_for("move-applied", count=2)
    assert applied["row"] == 4


async def test_reconnect_without_session_id_finds_session_by_name(coordinator):
    alice, bob, session_id = await paired(coordinator)
    await coordinator.handle_disconnect(alice)
    alice_again = FakeConnection("alice-again")
    await coordinator.dispatch(alice_again, {"type": "reconnect", "identityName": "alice"})
    assert (await alice_again.wait_for("session-update"))["session"]["id"] == session_id


async def test_disconnect_beyond_window_forfeits(coordinator):
    alice, bob, session_id = await paired(coordinator)
    await coordinator.handle_disconnect(bob)

    over = await alice.wait_for("session-over", timeout=2.0)
    assert over["forfeit"] is True
    assert over["winner"]["name"] == "alice"
    assert over["session"]["status"] == "won"

    late = FakeConnection("bob-late")
    await coordinator.dispatch(late, {"type": "reconnect", "identityName": "bob", "sessionId": session_id})
    update = await late.wait_for("session-update")
    assert update["session"]["forfeit"] is True


async def test_disconnect_while_queued_leaves_queue(coordinator):
    alice = FakeConnection("alice")
    await join(coordinator, alice, "alice")
    await coordinator.handle_disconnect(alice)
    assert len(coordinator.queue) == 0
    await asyncio.sleep(0.4)
    assert len(coordinator.registry) == 0


async def test_failed_send_does_not_stop_broadcast(coordinator):
    alice, bob, session_id = await paired(coordinator)
    alice.fail_sends = True
    await move(coordinator, alice, session_id, 2)
    applied = await bob.wait_for("move-applied")
    assert applied["column"] == 2


async def test_unknown_message_type(coordinator):
    client = FakeConnection()
    await coordinator.dispatch(client, {"type": "dance"})
    assert (await client.wait_for("error"))["code"] == "PROTOCOL_ERROR"


async def test_missing_name_is_rejected(coordinator):
    client = FakeConnection()
    await coordinator.dispatch(client, {"type": "join-session", "identityName": "   "})
    assert (await client.wait_for("error"))["code"] == "PROTOCOL_ERROR"


async def test_second_join_while_queued_is_rejected(coordinator):
    client = FakeConnection()
    await join(coordinator, client, "alice")
    await join(coordinator, client, "alice")
    assert (await client.wait_for("error"))["code"] == "PROTOCOL_ERROR"
    assert len(coordinator.queue) == 1


async def test_move_before_joining(coordinator):
    client = FakeConnection()
    await move(coordinator, client, "whatever", 3)
    assert (await client.wait_for("error"))["code"] == "PROTOCOL_ERROR"


async def test_finished_session_is_persisted_and_logged(config):
    data = DataManager(config.data_dir)
    analytics = EventLogAnalytics(config.data_dir)
    coordinator = RealtimeCoordinator(config, data_manager=data, analytics=analytics, rng=random.Random(1))
    try:
        alice, bob, session_id = await paired(coordinator)
        for i, column in enumerate((0, 1, 0, 1, 0, 1, 0)):
            await move(coordinator, alice if i % 2 == 0 else bob, session_id, column)
        await alice.wait_for("session-over")

        await eventually(lambda: len(data.get_completed_sessions()) == 1)
        record = data.get_completed_sessions()[0]
        assert record["id"] == session_id
        assert record["status"] == "won"

        await eventually(lambda: data.get_leaderboard() and data.get_leaderboard()[0]["sessions_won"] == 1)
        assert data.get_leaderboard()[0]["name"] == "alice"

        await eventually(lambda: analytics.read_events("session.completed"))
        await eventually(lambda: len(analytics.read_events("move.made")) == 7)
        assert len(analytics.read_events("session.started")) == 1
    finally:
        await coordinator.close()


async def test_finished_session_is_removed_after_grace_period(coordinator):
    alice, bob, session_id = await paired(coordinator)
    for i, column in enumerate((0, 1, 0, 1, 0, 1, 0)):
        await move(coordinator, alice if i % 2 == 0 else bob, session_id, column)
    await alice.wait_for("session-over")
    assert coordinator.registry.get(session_id) is not None
    await eventually(lambda: coordinator.registry.get(session_id) is None)


async def play_first_player_win(coordinator, first, second, session_id):
    for i, column in enumerate((0, 1, 0, 1, 0, 1, 0)):
        await move(coordinator, first if i % 2 == 0 else second, session_id, column)


async def test_returning_player_wins_accumulate(config):
    data = DataManager(config.data_dir)
    coordinator = RealtimeCoordinator(config, data_manager=data, rng=random.Random(1))
    try:
        alice, bob, first_id = await paired(coordinator)
        await play_first_player_win(coordinator, alice, bob, first_id)
        await alice.wait_for("session-over")

        await join(coordinator, alice, "alice")
        await join(coordinator, bob, "bob")
        second_id = (await alice.wait_for("session-update", count=2))["session"]["id"]
        assert second_id != first_id
        await play_first_player_win(coordinator, alice, bob, second_id)
        await alice.wait_for("session-over", count=2)

        def standings():
            return [(e["name"], e["sessions_won"], e["sessions_played"]) for e in data.get_leaderboard()]

        await eventually(lambda: standings() == [("alice", 2, 2), ("bob", 0, 2)])
        alice_record = data.find_identity("alice")
        assert len(data.get_completed_sessions(alice_record["id"])) == 2
    finally:
        await coordinator.close()


async def test_simultaneous_moves_by_one_player_apply_once(coordinator):
    alice, bob, session_id = await paired(coordinator)
    await asyncio.gather(
        move(coordinator, alice, session_id, 3),
        move(coordinator, alice, session_id, 4),
    )
    assert len(alice.of_type("move-applied")) == 1
    assert [e["code"] for e in alice.of_type("error")] == ["NOT_YOUR_TURN"]
    assert len(coordinator.registry.get(session_id).moves) == 1


async def test_session_registered_during_retry_is_found(coordinator):
    alice = FakeConnection("alice")

    async def register_late():
        coordinator.registry.create(Identity.human("alice"), Identity.human("bob"), "late-session")

    late = asyncio.create_task(register_late())
    await coordinator.dispatch(alice, {"type": "reconnect", "identityName": "alice", "sessionId": "late-session"})
    await late

    assert alice.of_type("error") == []
    update = await alice.wait_for("session-update")
    assert update["session"]["id"] == "late-session"
    assert coordinator.binding_for(alice).state == ConnectionState.IN_SESSION


async def test_disconnected_seat_keeps_its_name(coordinator):
    alice, bob, session_id = await paired(coordinator)
    await coordinator.handle_disconnect(bob)

    newcomer = FakeConnection("newcomer")
    await join(coordinator, newcomer, "bob")
    assert (await newcomer.wait_for("name-taken"))["assigned"] == "bob1"

    bob_again = FakeConnection("bob-again")
    await coordinator.dispatch(bob_again, {"type": "reconnect", "identityName": "bob", "sessionId": session_id})
    await bob_again.wait_for("session-update")
    assert bob_again.of_type("error") == []
    assert coordinator.is_name_taken("bob", newcomer.connection_id)
    assert coordinator.binding_for(newcomer).identity.name == "bob1"


async def test_forfeit_releases_the_name(coordinator):
    alice, bob, session_id = await paired(coordinator)
    await coordinator.handle_disconnect(bob)
    await alice.wait_for("session-over", timeout=2.0)
    assert not coordinator.is_name_taken("bob")
