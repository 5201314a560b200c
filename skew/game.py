"""Game session handling: connections, packet dispatch and player broadcasts."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Protocol

from skew.clock import Tick
from skew.packet import MAX_PACKET_SIZE, Packet
from skew.player import INVALID_PLAYER_ID, Address, PlayerId, PlayerManager
from skew.sequencer import PacketSequencer, ReliableMessage

log = logging.getLogger(__name__)

RELIABLE_HEADER_SIZE = 6
SMALL_CHUNK_HEADER_SIZE = 2
ENTER_PACKET_SIZE = 64
MAX_NAME_LEN = 20
PASSWORD_PACKET_SIZE = 66

MAP_NAME = b"pub.lvl"
MAP_CHECKSUM = 1889723958
MAP_FILESIZE = 58992
VERSION_CHECKSUM = 0xC9B61486
SERVER_VERSION = 134
SUBSPACE_CHECKSUM = 0

ARENA_SETTINGS = bytes((
    15, 1, 7, 0, 112, 23, 0, 0, 160, 15, 0, 0, 220, 5, 100, 0, 20, 0, 30, 0, 44, 1, 50, 0, 14, 1,
    150, 0, 208, 7, 213, 7, 0, 0, 244, 1, 100, 0, 77, 1, 100, 0, 250, 0, 34, 1, 19, 0, 178, 12,
    126, 4, 164, 6, 34, 1, 18, 0, 184, 11, 232, 3, 64, 6, 40, 0, 2, 0, 250, 0, 166, 0, 100, 0, 0,
    0, 144, 1, 184, 11, 1, 0, 125, 0, 24, 0, 50, 0, 150, 0, 125, 0, 232, 3, 75, 0, 44, 1, 100, 0,
    80, 0, 224, 46, 12, 0, 64, 0, 196, 9, 10, 24, 5, 3, 3, 3, 3, 3, 3, 3, 0, 0, 0, 0, 0, 0, 0, 0,
    72, 80, 181, 2, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 112, 23, 0, 0, 160, 15, 0, 0,
    220, 5, 100, 0, 20, 0, 30, 0, 44, 1, 50, 0, 14, 1, 150, 0, 208, 7, 213, 7, 0, 0, 244, 1, 100,
    0, 77, 1, 100, 0, 250, 0, 230, 0, 17, 0, 166, 14, 126, 4, 164, 6, 200, 0, 17, 0, 116, 14, 232,
    3, 64, 6, 40, 0, 2, 0, 250, 0, 166, 0, 100, 0, 176, 4, 144, 1, 184, 11, 1, 0, 125, 0, 24, 0,
    50, 0, 150, 0, 125, 0, 232, 3, 75, 0, 44, 1, 100, 0, 80, 0, 224, 46, 12, 0, 64, 0, 196, 9, 10,
    24, 5, 3, 3, 3, 3, 3, 3, 3, 0, 0, 0, 0, 0, 0, 0, 0, 72, 80, 189, 2, 0, 0, 0, 0, 0, 0, 0, 0, 0,
    0, 0, 0, 0, 0, 0, 0, 112, 23, 0, 0, 160, 15, 0, 0, 220, 5, 100, 0, 20, 0, 30, 0, 44, 1, 50, 0,
    14, 1, 150, 0, 208, 7, 213, 7, 0, 0, 244, 1, 100, 0, 77, 1, 100, 0, 250, 0, 230, 0, 18, 0, 178,
    12, 126, 4, 164, 6, 200, 0, 17, 0, 184, 11, 76, 4, 64, 6, 40, 0, 2, 0, 250, 0, 166, 0, 100, 0,
    176, 4, 144, 1, 184, 11, 1, 0, 125, 0, 24, 0, 50, 0, 150, 0, 125, 0, 232, 3, 75, 0, 44, 1, 100,
    0, 80, 0, 224, 46, 12, 0, 64, 0, 196, 9, 10, 24, 5, 3, 3, 3, 3, 3, 3, 3, 0, 0, 0, 0, 0, 1, 0,
    0, 72, 100, 53, 2, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 112, 23, 0, 0, 160, 15, 0,
    0, 220, 5, 100, 0, 20, 0, 30, 0, 44, 1, 50, 0, 14, 1, 150, 0, 208, 7, 213, 7, 0, 0, 244, 1,
    100, 0, 77, 1, 100, 0, 250, 0, 230, 0, 18, 0, 178, 12, 126, 4, 164, 6, 200, 0, 17, 0, 184, 11,
    232, 3, 64, 6, 40, 0, 2, 0, 250, 0, 166, 0, 100, 0, 176, 4, 144, 1, 184, 11, 1, 0, 125, 0, 24,
    0, 50, 0, 150, 0, 125, 0, 232, 3, 75, 0, 44, 1, 100, 0, 80, 0, 224, 46, 12, 0, 64, 0, 196, 9,
    10, 24, 5, 3, 3, 3, 3, 3, 3, 3, 0, 0, 0, 0, 0, 0, 0, 0, 72, 80, 245, 3, 0, 0, 0, 0, 0, 0, 0, 0,
    0, 0, 0, 0, 0, 0, 0, 0, 112, 23, 0, 0, 160, 15, 0, 0, 220, 5, 100, 0, 20, 0, 30, 0, 44, 1, 50,
    0, 14, 1, 150, 0, 208, 7, 213, 7, 0, 0, 244, 1, 100, 0, 77, 1, 100, 0, 250, 0, 230, 0, 18, 0,
    178, 12, 126, 4, 164, 6, 200, 0, 17, 0, 184, 11, 232, 3, 64, 6, 40, 0, 2, 0, 250, 0, 166, 0,
    100, 0, 176, 4, 144, 1, 184, 11, 1, 0, 125, 0, 29, 0, 50, 0, 150, 0, 125, 0, 232, 3, 75, 0, 44,
    1, 100, 0, 80, 0, 224, 46, 12, 0, 64, 0, 196, 9, 10, 24, 5, 3, 3, 3, 3, 3, 3, 3, 0, 0, 0, 0, 0,
    0, 0, 0, 72, 80, 53, 6, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 112, 23, 0, 0, 160, 15,
    0, 0, 220, 5, 100, 0, 20, 0, 30, 0, 44, 1, 50, 0, 14, 1, 150, 0, 208, 7, 213, 7, 0, 0, 244, 1,
    100, 0, 77, 1, 100, 0, 250, 0, 230, 0, 18, 0, 178, 12, 126, 4, 164, 6, 200, 0, 17, 0, 184, 11,
    232, 3, 64, 6, 40, 0, 2, 0, 250, 0, 166, 0, 100, 0, 176, 4, 144, 1, 184, 11, 1, 0, 125, 0, 24,
    0, 50, 0, 150, 0, 125, 0, 232, 3, 75, 0, 44, 1, 100, 0, 80, 0, 224, 46, 12, 0, 64, 0, 196, 9,
    10, 24, 5, 3, 3, 3, 3, 3, 3, 3, 0, 0, 0, 0, 0, 0, 0, 0, 64, 80, 181, 26, 0, 0, 0, 0, 0, 0, 0,
    0, 0, 0, 0, 0, 0, 0, 0, 0, 112, 23, 0, 0, 160, 15, 0, 0, 220, 5, 100, 0, 20, 0, 30, 0, 44, 1,
    50, 0, 14, 1, 150, 0, 208, 7, 213, 7, 0, 0, 244, 1, 100, 0, 77, 1, 100, 0, 250, 0, 230, 0, 18,
    0, 178, 12, 126, 4, 164, 6, 200, 0, 17, 0, 184, 11, 232, 3, 64, 6, 40, 0, 2, 0, 250, 0, 166, 0,
    100, 0, 176, 4, 144, 1, 184, 11, 1, 0, 125, 0, 24, 0, 50, 0, 150, 0, 125, 0, 232, 3, 75, 0, 44,
    1, 100, 0, 80, 0, 224, 46, 12, 0, 64, 0, 196, 9, 10, 24, 5, 3, 3, 3, 3, 3, 3, 3, 0, 0, 0, 0, 0,
    0, 0, 2, 72, 80, 181, 2, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 112, 23, 0, 0, 160,
    15, 0, 0, 220, 5, 100, 0, 20, 0, 30, 0, 44, 1, 50, 0, 44, 1, 150, 0, 208, 7, 213, 7, 1, 0, 244,
    1, 44, 1, 44, 1, 100, 0, 250, 0, 4, 1, 18, 0, 178, 12, 126, 4, 164, 6, 200, 0, 17, 0, 184, 11,
    232, 3, 64, 6, 40, 0, 2, 0, 250, 0, 166, 0, 100, 0, 176, 4, 144, 1, 184, 11, 1, 0, 125, 0, 16,
    0, 40, 0, 150, 0, 125, 0, 232, 3, 75, 0, 44, 1, 100, 0, 80, 0, 224, 46, 12, 0, 64, 0, 196, 9,
    10, 24, 5, 3, 3, 3, 3, 3, 3, 3, 0, 0, 0, 0, 0, 0, 0, 0, 72, 80, 53, 2, 0, 0, 0, 0, 0, 0, 0, 0,
    0, 0, 0, 0, 0, 0, 0, 0, 112, 17, 1, 0, 176, 113, 11, 0, 38, 2, 0, 0, 112, 23, 0, 0, 184, 11, 0,
    0, 64, 105, 71, 0, 132, 3, 0, 0, 15, 39, 0, 0, 104, 16, 0, 0, 224, 46, 0, 0, 48, 87, 5, 0, 88,
    21, 1, 0, 80, 70, 0, 0, 112, 23, 0, 0, 25, 0, 0, 0, 148, 17, 0, 0, 184, 11, 0, 0, 232, 3, 0, 0,
    0, 0, 0, 0, 184, 11, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 244, 1, 185, 0, 10,
    0, 80, 0, 32, 3, 72, 0, 200, 0, 188, 2, 3, 0, 20, 0, 22, 0, 10, 0, 15, 0, 0, 0, 0, 0, 39, 1, 0,
    2, 232, 3, 1, 0, 0, 0, 48, 12, 44, 1, 0, 1, 0, 0, 112, 23, 160, 15, 32, 78, 88, 2, 176, 4, 254,
    255, 200, 0, 200, 0, 10, 0, 224, 46, 192, 1, 144, 1, 232, 3, 128, 0, 112, 23, 0, 0, 232, 3,
    232, 3, 50, 0, 90, 0, 232, 3, 232, 3, 0, 0, 20, 0, 100, 0, 208, 7, 0, 0, 0, 0, 44, 1, 0, 0, 0,
    0, 0, 0, 0, 0, 0, 0, 0, 1, 1, 1, 3, 4, 2, 12, 1, 0, 0, 0, 1, 85, 1, 0, 1, 1, 0, 0, 0, 0, 1, 1,
    0, 0, 0, 0, 0, 0, 0, 0, 70, 90, 50, 40, 30, 20, 5, 60, 60, 40, 80, 70, 60, 3, 30, 40, 5, 2, 60,
    10, 40, 5, 10, 15, 20, 10, 10, 30,
))


class DatagramSocket(Protocol):
    """What the game needs from a UDP socket."""

    def sendto(self, data: bytes, address: Address) -> int:
        """Send ``data`` to ``address``."""


def _u32(buf: bytes, offset: int) -> int:
    return int.from_bytes(buf[offset:offset + 4], "little")


def _enter_entry(pid: PlayerId, name: str) -> bytes:
    """One player-enter record: type, ship, name (up to 20 bytes) and id."""
    entry = bytearray(ENTER_PACKET_SIZE)
    entry[0:2] = b"\x03\x08"
    name_bytes = name.encode("utf-8")[:MAX_NAME_LEN]
    entry[3:3 + len(name_bytes)] = name_bytes
    entry[51:53] = pid.to_bytes(2, "little")
    return bytes(entry)


@dataclass(eq=False)
class Connection:
    """State kept for one client address."""

    addr: Address
    packet_sequencer: PacketSequencer = field(default_factory=PacketSequencer)
    player_id: PlayerId = INVALID_PLAYER_ID
    last_packet_time: Tick = field(default_factory=Tick.now)
    connected: bool = True

    def send(self, sock: DatagramSocket, packet: Packet) -> None:
        """Send a raw packet; socket errors propagate."""
        data = bytes(packet)
        log.debug("Sending: %s", list(data))
        sock.sendto(data, self.addr)

    def send_reliable_message(self, sock: DatagramSocket, message: bytes) -> bool:
        """Send ``message`` reliably; False if it is too large or could not be sent."""
        if len(message) + RELIABLE_HEADER_SIZE > MAX_PACKET_SIZE:
            return False

        sequencer = self.packet_sequencer
        reliable = ReliableMessage(sequencer.next_reliable_gen_id, bytes(message))
        try:
            self.send(sock, Packet.reliable(reliable.id, reliable.message))
        except OSError as exc:
            log.warning("Failed to send reliable message: %s", exc)
            return False

        sequencer.reliable_sent.append(reliable)
        sequencer.increment_id()
        return True

    def send_small_chunked_message(self, sock: DatagramSocket, message: bytes) -> None:
        """Split ``message`` into reliable small-chunk pieces, the last one marked final."""
        limit = MAX_PACKET_SIZE - RELIABLE_HEADER_SIZE - SMALL_CHUNK_HEADER_SIZE
        message = bytes(message)
        for start in range(0, len(message), limit):
            chunk = message[start:start + limit]
            final = start + len(chunk) == len(message)
            marker = b"\x00\x09" if final else b"\x00\x08"
            self.send_reliable_message(sock, marker + chunk)

    def send_disconnect(self, sock: DatagramSocket) -> None:
        try:
            self.send(sock, Packet.empty().concat_u8(0x00).concat_u8(0x07))
        except OSError as exc:
            log.warning("Failed to send disconnect packet: %s", exc)
        self.connected = False

    def send_enter_list(self, player_manager: PlayerManager, sock: DatagramSocket) -> None:
        """Send an enter record for every known player, batched into reliable messages."""
        batch = bytearray()
        for pid, player in player_manager.players.items():
            if MAX_PACKET_SIZE - len(batch) < ENTER_PACKET_SIZE:
                self.send_reliable_message(sock, bytes(batch))
                batch.clear()
            batch += _enter_entry(pid, player.name)

        if batch:
            self.send_reliable_message(sock, bytes(batch))


class Game:
    """Dispatches incoming packets and keeps the players."""

    def __init__(self) -> None:
        self.player_manager = PlayerManager()

    def on_data(
        self,
        sock: DatagramSocket,
        connections: dict[Address, Connection],
        addr: Address,
        packet: Packet,
    ) -> bool:
        """Handle a received packet, then at most one in-order reliable message.

        Returns False when the connection should be dropped.
        """
        self.handle_packet(sock, connections, addr, packet)

        conn = connections.get(addr)
        if conn is None:
            return False

        queued = conn.packet_sequencer.pop_process_queue()
        if queued is not None:
            return self.handle_packet(sock, connections, addr, Packet(queued.message))
        return conn.connected

    def handle_packet(
        self,
        sock: DatagramSocket,
        connections: dict[Address, Connection],
        addr: Address,
        packet: Packet,
    ) -> bool:
        """Handle one packet; returns whether the connection is still alive."""
        buf = bytes(packet)
        if not buf:
            return False

        if buf[0] == 0x00:
            if len(buf) < 2:
                return False
            handled = self._handle_core(sock, connections, addr, buf)
        else:
            handled = self._handle_game(sock, connections, addr, buf)
        if not handled:
            return False

        conn = connections.get(addr)
        return conn is not None and conn.connected

    def _handle_core(
        self,
        sock: DatagramSocket,
        connections: dict[Address, Connection],
        addr: Address,
        buf: bytes,
    ) -> bool:
        conn = connections.get(addr)
        kind = buf[1]

        if kind == 0x03:
            if len(buf) < 7:
                if conn is not None:
                    conn.send_disconnect(sock)
                return False
            reliable_id = _u32(buf, 2)
            if conn is not None:
                try:
                    conn.send(sock, Packet.reliable_ack(reliable_id))
                except OSError as exc:
                    log.warning("Failed to send reliable ack: %s", exc)
                    conn.send_disconnect(sock)
                conn.packet_sequencer.reliable_queue.append(
                    ReliableMessage(reliable_id, buf[6:])
                )
        elif kind == 0x04:
            if len(buf) < 6:
                if conn is not None:
                    conn.send_disconnect(sock)
                return False
            if conn is not None:
                conn.packet_sequencer.handle_ack(_u32(buf, 2))
        elif kind == 0x05:
            if len(buf) < 6:
                return False
            if conn is not None:
                try:
                    conn.send(sock, Packet.sync_response(Tick(_u32(buf, 2))))
                except OSError as exc:
                    log.warning("Error sending sync response: %s", exc)
        elif kind == 0x07:
            if conn is not None:
                conn.connected = False
                log.info("Received disconnect packet")
        elif kind == 0x0E:
            self._handle_cluster(sock, connections, addr, buf)
        return True

    def _handle_cluster(
        self,
        sock: DatagramSocket,
        connections: dict[Address, Connection],
        addr: Address,
        buf: bytes,
    ) -> None:
        pos = 2
        while pos < len(buf):
            end = pos + 1 + buf[pos]
            if end > len(buf):
                break
            self.handle_packet(sock, connections, addr, Packet(buf[pos + 1:end]))
            pos = end

    def _handle_game(
        self,
        sock: DatagramSocket,
        connections: dict[Address, Connection],
        addr: Address,
        buf: bytes,
    ) -> bool:
        if buf[0] == 0x01:
            return self._arena_login(sock, connections, addr)
        if buf[0] == 0x24:
            return self._password(sock, connections, addr, buf)
        return True

    def _arena_login(
        self,
        sock: DatagramSocket,
        connections: dict[Address, Connection],
        addr: Address,
    ) -> bool:
        conn = connections.get(addr)
        if conn is None:
            return False

        player = self.player_manager.get_player_by_id(conn.player_id)
        if player is None:
            conn.send_disconnect(sock)
            return False
        pid = player.id

        conn.send_reliable_message(sock, b"\x01" + pid.to_bytes(2, "little"))
        conn.send_small_chunked_message(sock, ARENA_SETTINGS)

        map_info = bytearray(25)
        map_info[0] = 0x29
        map_info[1:1 + len(MAP_NAME)] = MAP_NAME
        map_info[17:21] = MAP_CHECKSUM.to_bytes(4, "little")
        map_info[21:25] = MAP_FILESIZE.to_bytes(4, "little")
        conn.send_reliable_message(sock, bytes(map_info))

        conn.send_enter_list(self.player_manager, sock)
        conn.send_reliable_message(sock, b"\x02")
        self.broadcast_player_enter(sock, pid)
        return True

    def _password(
        self,
        sock: DatagramSocket,
        connections: dict[Address, Connection],
        addr: Address,
        buf: bytes,
    ) -> bool:
        conn = connections.get(addr)
        if conn is None:
            return False
        if len(buf) < PASSWORD_PACKET_SIZE:
            conn.send_disconnect(sock)
            return False

        try:
            name = buf[2:34].rstrip(b"\x00").decode("utf-8")
            buf[34:66].decode("utf-8")
        except UnicodeDecodeError:
            log.warning("Malformed login from %s", addr)
            conn.send_disconnect(sock)
            return False
        log.info("Name: %s", name)

        player = self.player_manager.create_player(addr)
        if player is None:
            log.warning("Failed to create player for: %r", name)
            conn.send_disconnect(sock)
            return False
        player.name = name
        conn.player_id = player.id

        data = bytearray(36)
        data[0:3] = bytes((0x34, 40, 0x00))
        data[3:7] = VERSION_CHECKSUM.to_bytes(4, "little")
        conn.send_reliable_message(sock, bytes(data[:7]))

        # The response is built over the version buffer; byte 6 keeps its old value.
        data[0:2] = b"\x0a\x00"
        data[2:6] = SERVER_VERSION.to_bytes(4, "little")
        data[10:14] = SUBSPACE_CHECKSUM.to_bytes(4, "little")
        conn.send_reliable_message(sock, bytes(data))
        return True

    def broadcast_player_enter(self, sock: DatagramSocket, player_id: PlayerId) -> None:
        """Tell every other player that ``player_id`` has entered."""
        joined = self.player_manager.get_player_by_id(player_id)
        if joined is None:
            return

        entry = _enter_entry(joined.id, joined.name)
        for pid, player in self.player_manager.players.items():
            if pid == player_id:
                continue
            try:
                sock.sendto(entry, player.addr)
            except OSError as exc:
                log.warning("Error sending player enter: %s", exc)

    def broadcast_player_leave(self, sock: DatagramSocket, player_id: PlayerId) -> None:
        """Remove ``player_id`` and tell the remaining players it left."""
        self.player_manager.remove_player(player_id)

        data = bytes(Packet.empty().concat_u8(0x04).concat_u16(player_id))
        for player in self.player_manager.players.values():
            try:
                sock.sendto(data, player.addr)
            except OSError as exc:
                log.warning("Failed to send player leave: %s", exc)