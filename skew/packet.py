"""Fixed-capacity little-endian packet builder."""

from __future__ import annotations

from skew.clock import Tick

MAX_PACKET_SIZE = 520


class PacketOverflowError(ValueError):
    """Raised when a packet would grow past MAX_PACKET_SIZE."""


class Packet:
    """A datagram of at most MAX_PACKET_SIZE bytes."""

    __slots__ = ("data",)

    def __init__(self, message: bytes = b"") -> None:
        if len(message) > MAX_PACKET_SIZE:
            raise PacketOverflowError(
                f"message of {len(message)} bytes exceeds {MAX_PACKET_SIZE}"
            )
        self.data = bytearray(message)

    @classmethod
    def empty(cls) -> Packet:
        return cls()

    @classmethod
    def reliable(cls, reliable_id: int, message: bytes) -> Packet:
        """Wrap ``message`` in a reliable-message header."""
        return cls(b"\x00\x03" + _encode(reliable_id, 4, False) + bytes(message))

    @classmethod
    def reliable_ack(cls, reliable_id: int) -> Packet:
        return cls(b"\x00\x04" + _encode(reliable_id, 4, False))

    @classmethod
    def sync_response(cls, recv_timestamp: Tick) -> Packet:
        """Answer a time sync request with the received and the local timestamps."""
        local = Tick.now()
        return cls(
            b"\x00\x06"
            + _encode(recv_timestamp.value, 4, False)
            + _encode(local.value, 4, False)
        )

    @property
    def size(self) -> int:
        return len(self.data)

    def remaining(self) -> int:
        return MAX_PACKET_SIZE - len(self.data)

    def _append(self, chunk: bytes) -> None:
        if len(chunk) > self.remaining():
            raise PacketOverflowError(
                f"cannot append {len(chunk)} bytes, {self.remaining()} remaining"
            )
        self.data.extend(chunk)

    def _concat(self, chunk: bytes) -> Packet:
        result = Packet(bytes(self.data))
        result._append(chunk)
        return result

    def concat_u8(self, val: int) -> Packet:
        return self._concat(_encode(val, 1, False))

    def concat_u16(self, val: int) -> Packet:
        return self._concat(_encode(val, 2, False))

    def concat_u32(self, val: int) -> Packet:
        return self._concat(_encode(val, 4, False))

    def concat_i8(self, val: int) -> Packet:
        return self._concat(_encode(val, 1, True))

    def concat_i16(self, val: int) -> Packet:
        return self._concat(_encode(val, 2, True))

    def concat_i32(self, val: int) -> Packet:
        return self._concat(_encode(val, 4, True))

    def write_u8(self, val: int) -> None:
        self._append(_encode(val, 1, False))

    def write_u16(self, val: int) -> None:
        self._append(_encode(val, 2, False))

    def write_u32(self, val: int) -> None:
        self._append(_encode(val, 4, False))

    def write_i8(self, val: int) -> None:
        self._append(_encode(val, 1, True))

    def write_i16(self, val: int) -> None:
        self._append(_encode(val, 2, True))

    def write_i32(self, val: int) -> None:
        self._append(_encode(val, 4, True))

    def __bytes__(self) -> bytes:
        return bytes(self.data)

    def __len__(self) -> int:
        return len(self.data)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Packet):
            return NotImplemented
        return self.data == other.data

    def __repr__(self) -> str:
        return f"Packet {{ data={list(self.data)} size={self.size} }}"


def _encode(val: int, width: int, signed: bool) -> bytes:
    return int(val).to_bytes(width, "little", signed=signed)