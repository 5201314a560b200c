import pytest

from skew.clock import Tick
from skew.server import Server, main

CLIENT = ("127.0.0.1", 50000)
OTHER = ("127.0.0.1", 50001)
KEY = b"\x11\x22\x33\x44"


class FakeSocket:
    def __init__(self):
        self.inbox = []
        self.sent = []
        self.closed = False

    def sendto(self, data, addr):
        self.sent.append((bytes(data), addr))
        return len(data)

    def recvfrom(self, bufsize):
        if not self.inbox:
            raise BlockingIOError
        data, addr = self.inbox.pop(0)
        return data[:bufsize], addr

    def close(self):
        self.closed = True


class BrokenSocket(FakeSocket):
    def recvfrom(self, bufsize):
        raise ConnectionRefusedError("refused")


def make_server():
    return Server(game_socket=FakeSocket(), ping_socket=FakeSocket())


def deliver(server, data, addr=CLIENT):
    server.game_socket.inbox.append((data, addr))
    server.poll_game()


def handshake(server, addr=CLIENT):
    deliver(server, b"\x00\x01" + KEY + b"\x86\x00", addr)


def password_packet(name):
    return (
        b"\x24\x00"
        + name.encode().ljust(32, b"\x00")
        + b"password".ljust(32, b"\x00")
    )


def test_handshake_adds_connection_and_echoes_key():
    server = make_server()
    handshake(server)
    assert server.game_socket.sent == [(b"\x00\x02" + KEY + b"\x00", CLIENT)]
    assert list(server.connections) == [CLIENT]


def test_stranger_non_handshake_is_ignored():
    server = make_server()
    deliver(server, b"\x00\x05\x00\x00\x00\x00\x00\x00")
    assert server.connections == {}
    assert server.game_socket.sent == []


def test_idle_poll_changes_nothing():
    server = make_server()
    server.poll_game()
    server.poll_ping()
    assert server.connections == {}
    assert server.game_socket.sent == [] and server.ping_socket.sent == []


def test_ping_reply_carries_count_and_timestamp():
    server = make_server()
    stamp = b"\x01\x02\x03\x04"
    server.ping_socket.inbox.append((stamp, CLIENT))
    server.poll_ping()
    assert server.ping_socket.sent == [((69).to_bytes(4, "little") + stamp, CLIENT)]


@pytest.mark.parametrize("data", [b"\x01\x02\x03", b"\x01\x02\x03\x04\x05"])
def test_ping_of_wrong_size_is_ignored(data):
    server = make_server()
    server.ping_socket.inbox.append((data, CLIENT))
    server.poll_ping()
    assert server.ping_socket.sent == []


def test_client_disconnect_removes_connection():
    server = make_server()
    handshake(server)
    server.game_socket.sent.clear()
    deliver(server, b"\x00\x07")
    assert CLIENT not in server.connections
    assert server.game_socket.sent == [(b"\x00\x07", CLIENT)]


def test_stale_connection_times_out():
    server = make_server()
    handshake(server)
    server.connections[CLIENT].last_packet_time = Tick(Tick.now().value - 5000)
    server.game_socket.sent.clear()
    server.poll_game()
    assert server.connections == {}
    assert server.game_socket.sent == [(b"\x00\x07", CLIENT)]


def test_recent_connection_is_kept():
    server = make_server()
    handshake(server)
    server.timeout_connection()
    assert list(server.connections) == [CLIENT]


def test_packet_refreshes_last_packet_time():
    server = make_server()
    handshake(server)
    old = Tick(Tick.now().value - 500)
    server.connections[CLIENT].last_packet_time = old
    deliver(server, b"\x00\x05\x00\x00\x00\x00")
    assert server.connections[CLIENT].last_packet_time.gt(old)


def test_remove_connection_notifies_other_players():
    server = make_server()
    handshake(server, CLIENT)
    handshake(server, OTHER)
    deliver(server, b"\x00\x03\x00\x00\x00\x00" + password_packet("alice"), CLIENT)
    deliver(server, b"\x00\x03\x00\x00\x00\x00" + password_packet("bob"), OTHER)
    leaving = server.connections[CLIENT].player_id
    server.game_socket.sent.clear()

    server.remove_connection(CLIENT)
    assert CLIENT not in server.connections
    assert leaving not in server.game.player_manager.players
    assert (b"\x04" + leaving.to_bytes(2, "little"), OTHER) in server.game_socket.sent
    assert (b"\x00\x07", CLIENT) in server.game_socket.sent


def test_remove_unknown_connection_does_nothing():
    server = make_server()
    server.remove_connection(CLIENT)
    assert server.game_socket.sent == []


def test_receive_errors_propagate():
    server = Server(game_socket=BrokenSocket(), ping_socket=FakeSocket())
    with pytest.raises(ConnectionRefusedError):
        server.poll_game()


def test_context_manager_closes_sockets():
    with make_server() as server:
        pass
    assert server.game_socket.closed and server.ping_socket.closed


def test_main_rejects_bad_port():
    with pytest.raises(SystemExit) as excinfo:
        main(["--port", "not-a-number"])
    assert excinfo.value.code == 2