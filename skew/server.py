"""UDP server polling a game socket and a ping socket."""

from __future__ import annotations

import argparse
import logging
import socket
from typing import Optional

from skew.clock import Tick
from skew.game import Connection, Game
from skew.packet import MAX_PACKET_SIZE, Packet
from skew.player import Address

log = logging.getLogger(__name__)

DEFAULT_PORT = 5000
TIMEOUT_TICKS = 1000
PING_PLAYER_COUNT = 69


def _bind(host: str, port: int) -> socket.socket:
    sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
    try:
        sock.bind((host, port))
        sock.setblocking(False)
    except OSError:
        sock.close()
        raise
    return sock


def _receive(sock) -> Optional[tuple[bytes, Address]]:
    try:
        data, src = sock.recvfrom(MAX_PACKET_SIZE)
    except BlockingIOError:
        return None
    return bytes(data), src


class Server:
    """Game server; the game socket is on ``port`` and the ping socket on ``port + 1``."""

    def __init__(
        self,
        port: int = DEFAULT_PORT,
        host: str = "0.0.0.0",
        *,
        game_socket=None,
        ping_socket=None,
    ) -> None:
        own_game = game_socket is None
        self.game_socket = _bind(host, port) if own_game else game_socket
        try:
            self.ping_socket = _bind(host, port + 1) if ping_socket is None else ping_socket
        except OSError:
            if own_game:
                self.game_socket.close()
            raise
        self.connections: dict[Address, Connection] = {}
        self.game = Game()

    def __enter__(self) -> Server:
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def close(self) -> None:
        self.game_socket.close()
        self.ping_socket.close()

    def remove_connection(self, addr: Address) -> None:
        """Drop the connection at ``addr``, telling it and the other players."""
        conn = self.connections.pop(addr, None)
        if conn is None:
            return
        conn.send_disconnect(self.game_socket)
        self.game.broadcast_player_leave(self.game_socket, conn.player_id)

    def timeout_connection(self) -> None:
        """Drop the first connection that has been silent for too long."""
        now = Tick.now()
        for addr, conn in self.connections.items():
            if now.diff(conn.last_packet_time) >= TIMEOUT_TICKS:
                log.info("Timing out %s", addr)
                break
        else:
            return
        self.remove_connection(addr)

    def poll_game(self) -> None:
        """Handle at most one datagram waiting on the game socket."""
        self.timeout_connection()

        received = _receive(self.game_socket)
        if received is None:
            return
        buf, src = received

        conn = self.connections.get(src)
        if conn is None:
            if len(buf) >= 8 and buf[0] == 0x00 and buf[1] == 0x01:
                key = buf[2:6]
                # Echoing the key back disables encryption; the final zero means no billing.
                self.game_socket.sendto(b"\x00\x02" + key + b"\x00", src)
                self.connections[src] = Connection(src)
                log.info("Adding new connection")
            return

        log.debug("Recv: %s", list(buf))
        conn.last_packet_time = Tick.now()

        if not self.game.on_data(self.game_socket, self.connections, conn.addr, Packet(buf)):
            self.remove_connection(conn.addr)

    def poll_ping(self) -> None:
        """Answer one waiting ping with the player count and the echoed timestamp."""
        received = _receive(self.ping_socket)
        if received is None:
            return
        buf, src = received
        if len(buf) != 4:
            return
        self.ping_socket.sendto(PING_PLAYER_COUNT.to_bytes(4, "little") + buf, src)


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(prog="skew", description="Run the game server.")
    parser.add_argument("--port", type=int, default=DEFAULT_PORT, help="game port")
    args = parser.parse_args(argv)
    logging.basicConfig(level=logging.INFO, format="%(message)s")

    with Server(args.port) as server:
        try:
            while True:
                server.poll_ping()
                server.poll_game()
        except KeyboardInterrupt:
            return 0


if __name__ == "__main__":
    raise SystemExit(main())