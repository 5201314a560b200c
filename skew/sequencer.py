"""Reliable message bookkeeping and ordered delivery."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional, TypeVar

from skew.clock import Tick
from skew.packet import MAX_PACKET_SIZE, Packet

_U32 = 0xFFFFFFFF
_CHUNK_HEADER_SIZE = 6

T = TypeVar("T")


def _swap_remove(items: list[T], index: int) -> T:
    """Remove ``items[index]`` by moving the last element into its place."""
    last = items.pop()
    if index == len(items):
        return last
    removed = items[index]
    items[index] = last
    return removed


@dataclass
class ReliableMessage:
    """A reliable message with its sequence id and the time it was created."""

    id: int
    message: bytes
    timestamp: Tick = field(default_factory=Tick.now)

    def __post_init__(self) -> None:
        self.message = bytes(self.message)
        if len(self.message) > MAX_PACKET_SIZE:
            raise ValueError(
                f"reliable message of {len(self.message)} bytes exceeds {MAX_PACKET_SIZE}"
            )

    @property
    def size(self) -> int:
        return len(self.message)


@dataclass
class OutboundChunkedPacket:
    """A large message sent out piece by piece."""

    data: bytes
    max_outbound: int
    index: int = 0
    # Ids of sent pieces still waiting for an ack; limits how many are in flight.
    outbound_ids: list[int] = field(default_factory=list)

    def remaining(self) -> int:
        return len(self.data) - self.index


@dataclass
class PacketSequencer:
    """Tracks sent and received reliable messages for one connection.

    Iterating yields raw packets that should be sent.
    """

    next_process_id: int = 0
    next_reliable_gen_id: int = 0
    reliable_sent: list[ReliableMessage] = field(default_factory=list)
    reliable_queue: list[ReliableMessage] = field(default_factory=list)
    outbound_chunked: Optional[OutboundChunkedPacket] = None

    def __iter__(self) -> PacketSequencer:
        return self

    def __next__(self) -> Packet:
        chunked = self.outbound_chunked
        if chunked is None:
            raise StopIteration

        if len(chunked.outbound_ids) < chunked.max_outbound:
            chunked.max_outbound += 1

            size = min(chunked.remaining(), MAX_PACKET_SIZE - _CHUNK_HEADER_SIZE)
            piece = chunked.data[chunked.index:chunked.index + size]
            data = b"\x00\x0a" + size.to_bytes(4, "little") + piece
            chunked.index += size

            if chunked.remaining() == 0:
                self.outbound_chunked = None

            return Packet(data[:size])

        self.outbound_chunked = None
        raise StopIteration

    def pop_process_queue(self) -> Optional[ReliableMessage]:
        """Take the next in-order received message, or None if it has not arrived."""
        for index, msg in enumerate(self.reliable_queue):
            if msg.id == self.next_process_id:
                self.next_process_id = (self.next_process_id + 1) & _U32
                return _swap_remove(self.reliable_queue, index)
        return None

    def handle_ack(self, reliable_id: int) -> None:
        """Forget a sent message once the peer acknowledges it."""
        for index, msg in enumerate(self.reliable_sent):
            if msg.id == reliable_id:
                _swap_remove(self.reliable_sent, index)
                break
        else:
            return

        chunked = self.outbound_chunked
        if chunked is not None and reliable_id in chunked.outbound_ids:
            _swap_remove(chunked.outbound_ids, chunked.outbound_ids.index(reliable_id))

    def increment_id(self) -> None:
        self.next_reliable_gen_id = (self.next_reliable_gen_id + 1) & _U32