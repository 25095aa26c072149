import logging

from rprd.codec import encode
from rprd.constants import (
    B_MSG_CONTENT,
    B_MSG_FROM,
    B_MSG_TO,
    B_MSG_TS,
    B_PEER_NAME,
    B_PRESENCE_EVENT,
    B_PRESENCE_NAME,
    B_PRESENCE_TEXT,
    B_REGISTERED_NAME,
    B_REGISTERED_STATUS,
    K_BODY,
    K_TS,
    T_ERROR,
    T_MESSAGE,
    T_PEERS,
    T_PRESENCE,
    T_REGISTERED,
)

from conftest import list_peers_packet, register_packet, send_packet


def _peers(env: dict) -> list[str]:
    return [entry[B_PEER_NAME] for entry in env[K_BODY]]


def _errors(conn) -> list[str]:
    return [env[K_BODY] for env in conn.received(T_ERROR)]


def test_register_sends_result_peer_list_and_presence(hub, connect) -> None:
    alice = connect("a")
    hub.deliver(alice, register_packet("alice"))

    envs = alice.received()
    assert [e[1] for e in envs] == [T_REGISTERED, T_PEERS, T_PRESENCE]
    assert envs[0][K_BODY] == {B_REGISTERED_STATUS: "success", B_REGISTERED_NAME: "alice"}
    assert _peers(envs[1]) == []
    assert envs[2][K_BODY][B_PRESENCE_TEXT] == "alice has connected"
    assert envs[2][K_BODY][B_PRESENCE_NAME] == "alice"
    assert envs[2][K_BODY][B_PRESENCE_EVENT] == "connected"


def test_register_broadcasts_personalized_lists_to_everyone(hub, connect) -> None:
    alice = connect("a", "alice")
    bob = connect("b", "bob")
    alice.clear()
    bob.clear()

    carol = connect("c", "carol")

    assert _peers(alice.received(T_PEERS)[-1]) == ["bob", "carol"]
    assert _peers(bob.received(T_PEERS)[-1]) == ["alice", "carol"]
    assert _peers(carol.received(T_PEERS)[-1]) == ["alice", "bob"]
    for conn in (alice, bob, carol):
        texts = [e[K_BODY][B_PRESENCE_TEXT] for e in conn.received(T_PRESENCE)]
        assert texts == ["carol has connected"]


def test_unregistered_connections_get_no_broadcasts(hub, connect) -> None:
    lurker = connect("l")
    connect("a", "alice")
    assert lurker.sent == []


def test_duplicate_name_from_other_connection_is_rejected(hub, connect) -> None:
    first = connect("a", "alice")
    first.clear()
    second = connect("b")

    hub.deliver(second, register_packet("alice"))

    assert _errors(second) == ["name already taken"]
    assert second.received(T_REGISTERED) == []
    assert second.name is None
    assert first.name == "alice"
    assert hub.directory.lookup("alice") is first
    assert first.sent == []


def test_invalid_names_are_rejected_without_broadcast(hub, connect) -> None:
    bob = connect("b", "bob")
    bob.clear()
    conn = connect("x")

    for bad in ("", None, 7):
        hub.deliver(conn, register_packet(bad))

    assert _errors(conn) == ["invalid name"] * 3
    assert conn.name is None
    assert bob.sent == []


def test_reregistering_with_other_name_is_rejected(hub, connect) -> None:
    alice = connect("a", "alice")
    bob = connect("b", "bob")
    alice.clear()
    bob.clear()

    hub.deliver(alice, register_packet("alicia"))

    assert _errors(alice) == ["already registered as alice"]
    assert hub.directory.lookup("alicia") is None
    assert hub.directory.lookup("alice") is alice
    assert bob.sent == []


def test_reregistering_same_name_only_confirms(hub, connect) -> None:
    alice = connect("a", "alice")
    bob = connect("b", "bob")
    alice.clear()
    bob.clear()

    hub.deliver(alice, register_packet("alice"))

    assert [e[1] for e in alice.received()] == [T_REGISTERED]
    assert bob.sent == []


def test_list_peers_excludes_self(hub, connect) -> None:
    alice = connect("a", "alice")
    connect("b", "bob")
    connect("c", "carol")
    alice.clear()

    hub.deliver(alice, list_peers_packet())

    (env,) = alice.received(T_PEERS)
    assert _peers(env) == ["bob", "carol"]
    assert "alice" not in _peers(env)


def test_list_peers_requires_registration(hub, connect) -> None:
    conn = connect("x")
    hub.deliver(conn, list_peers_packet())
    assert _errors(conn) == ["not registered"]
    assert conn.received(T_PEERS) == []


def test_list_peers_sees_registration_immediately(hub, connect) -> None:
    alice = connect("a", "alice")
    bob = connect("b")
    hub.deliver(bob, register_packet("bob"))
    alice.clear()
    hub.deliver(alice, list_peers_packet())
    assert _peers(alice.received(T_PEERS)[-1]) == ["bob"]


def test_send_delivers_identical_record_to_both_sides(hub, connect) -> None:
    alice = connect("a", "alice")
    bob = connect("b", "bob")
    alice.clear()
    bob.clear()

    hub.deliver(alice, send_packet("bob", "hi"))

    assert len(bob.sent) == 1
    assert len(alice.sent) == 1
    assert bob.sent[0] == alice.sent[0]

    (env,) = bob.received(T_MESSAGE)
    body = env[K_BODY]
    assert body[B_MSG_FROM] == "alice"
    assert body[B_MSG_TO] == "bob"
    assert body[B_MSG_CONTENT] == "hi"
    assert body[B_MSG_TS] == env[K_TS]
    assert hub.stats.get("msgs_relayed") == 1


def test_send_to_self_is_rejected(hub, connect) -> None:
    alice = connect("a", "alice")
    alice.clear()
    hub.deliver(alice, send_packet("alice", "me"))
    assert _errors(alice) == ["cannot message self"]
    assert alice.received(T_MESSAGE) == []


def test_send_to_self_is_rejected_when_alone(hub, connect) -> None:
    alice = connect("a", "alice")
    connect("b", "bob")
    alice.clear()
    hub.deliver(alice, send_packet("alice", "me"))
    assert _errors(alice) == ["cannot message self"]


def test_send_to_unknown_recipient(hub, connect) -> None:
    alice = connect("a", "alice")
    bob = connect("b", "bob")
    alice.clear()
    bob.clear()

    hub.deliver(alice, send_packet("carol", "hello?"))

    assert _errors(alice) == ["recipient not found or disconnected"]
    assert bob.sent == []


def test_send_to_closed_recipient(hub, connect) -> None:
    alice = connect("a", "alice")
    bob = connect("b", "bob")
    alice.clear()
    bob.open = False

    hub.deliver(alice, send_packet("bob", "hi"))

    assert _errors(alice) == ["recipient not found or disconnected"]
    assert alice.received(T_MESSAGE) == []


def test_send_without_recipient_field(hub, connect) -> None:
    alice = connect("a", "alice")
    alice.clear()
    hub.deliver(alice, send_packet(None, "hi"))
    assert _errors(alice) == ["recipient not found or disconnected"]


def test_send_requires_registration(hub, connect) -> None:
    connect("b", "bob")
    conn = connect("x")
    hub.deliver(conn, send_packet("bob", "hi"))
    assert _errors(conn) == ["not registered"]


def test_send_rejects_non_string_content(hub, connect) -> None:
    alice = connect("a", "alice")
    bob = connect("b", "bob")
    alice.clear()
    bob.clear()
    hub.deliver(alice, send_packet("bob", None))
    assert _errors(alice) == ["invalid message content"]
    assert bob.sent == []


def test_send_rejects_oversized_content(hub, connect) -> None:
    alice = connect("a", "alice")
    bob = connect("b", "bob")
    alice.clear()
    bob.clear()
    hub.deliver(alice, send_packet("bob", "x" * 351))
    assert _errors(alice) == ["message too large"]
    assert bob.sent == []


def test_send_rejects_record_that_does_not_fit_link(hub, connect) -> None:
    alice = connect("a", "alice")
    bob = connect("b", "bob")
    bob.mdu = 16
    alice.clear()
    bob.clear()
    hub.deliver(alice, send_packet("bob", "hi"))
    assert _errors(alice) == ["message too large"]
    assert bob.sent == []


def test_disconnect_broadcasts_list_and_presence(hub, connect) -> None:
    alice = connect("a", "alice")
    bob = connect("b", "bob")
    bob.clear()

    assert hub.disconnect(alice) == "alice"

    assert _peers(bob.received(T_PEERS)[-1]) == []
    (presence,) = bob.received(T_PRESENCE)
    assert presence[K_BODY][B_PRESENCE_TEXT] == "alice has disconnected"
    assert presence[K_BODY][B_PRESENCE_EVENT] == "disconnected"
    assert alice not in hub.connection_snapshot()


def test_disconnect_of_unregistered_connection_is_silent(hub, connect) -> None:
    bob = connect("b", "bob")
    bob.clear()
    lurker = connect("l")

    assert hub.disconnect(lurker) is None
    assert bob.sent == []


def test_disconnect_twice_is_harmless(hub, connect) -> None:
    alice = connect("a", "alice")
    bob = connect("b", "bob")
    hub.disconnect(alice)
    bob.clear()
    assert hub.disconnect(alice) is None
    assert bob.sent == []


def test_name_can_be_reclaimed_after_disconnect(hub, connect) -> None:
    first = connect("a", "alice")
    hub.disconnect(first)
    second = connect("b")
    hub.deliver(second, register_packet("alice"))
    assert second.name == "alice"
    assert hub.directory.lookup("alice") is second


def test_sends_to_closed_connections_are_dropped(hub, connect) -> None:
    alice = connect("a", "alice")
    bob = connect("b", "bob")
    bob.open = False
    bob.clear()
    connect("c", "carol")
    # bob is skipped by the broadcasts; alice still hears about carol.
    assert bob.sent == []
    assert _peers(alice.received(T_PEERS)[-1]) == ["bob", "carol"]


def test_stats_count_registrations_and_errors(hub, connect) -> None:
    connect("a", "alice")
    conn = connect("x")
    hub.deliver(conn, register_packet("alice"))
    assert hub.stats.get("registrations") == 1
    assert hub.stats.get("errors_sent") == 1
    assert "clients_registered=1" in hub.stats.format_stats()


def test_broadcast_payloads_share_one_encoding(hub, connect) -> None:
    alice = connect("a", "alice")
    bob = connect("b", "bob")
    alice.clear()
    bob.clear()
    connect("c", "carol")
    assert alice.received(T_PRESENCE) == bob.received(T_PRESENCE)
    assert encode(alice.received(T_PRESENCE)[0]) == encode(bob.received(T_PRESENCE)[0])


def test_commands_after_close_leave_directory_untouched(hub, connect) -> None:
    bob = connect("b", "bob")
    alice = connect("a")
    alice.close()
    assert hub.disconnect(alice) is None
    bob.clear()

    hub.deliver(alice, register_packet("alice"))
    hub.deliver(alice, send_packet("bob", "hi"))

    assert alice.name is None
    assert hub.directory.lookup("alice") is None
    assert hub.directory.names_excluding(None) == ["bob"]
    assert bob.sent == []
    assert alice.sent == []

    hub.deliver(bob, list_peers_packet())
    assert _peers(bob.received(T_PEERS)[-1]) == []


def test_register_after_disconnect_of_open_handle_is_ignored(hub, connect) -> None:
    bob = connect("b", "bob")
    alice = connect("a")
    # The close is processed while the transport still reports the link open.
    hub.disconnect(alice)
    bob.clear()

    hub.deliver(alice, register_packet("alice"))

    assert hub.directory.lookup("alice") is None
    assert bob.sent == []


def test_reclaimed_name_announces_departure_before_arrival(hub, connect) -> None:
    stale = connect("a", "alice")
    bob = connect("b", "bob")
    stale.open = False
    bob.clear()

    fresh = connect("c", "alice")

    texts = [e[K_BODY][B_PRESENCE_TEXT] for e in bob.received(T_PRESENCE)]
    assert texts == ["alice has disconnected", "alice has connected"]
    assert hub.directory.lookup("alice") is fresh

    # The stale handle's own close no longer announces anything.
    bob.clear()
    assert hub.disconnect(stale) is None
    assert bob.sent == []


def test_stop_logs_counts_from_before_shutdown(hub, connect, caplog) -> None:
    connect("a", "alice")
    connect("b")

    with caplog.at_level(logging.INFO, logger="rprd.hub"):
        hub.stop()

    summary = [r.getMessage() for r in caplog.records if "Hub stopped" in r.getMessage()]
    assert len(summary) == 1
    assert "clients_total=2 clients_registered=1" in summary[0]
    assert hub.connection_snapshot() == []
    assert len(hub.directory) == 0
