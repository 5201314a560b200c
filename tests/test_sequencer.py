import pytest

from skew.packet import MAX_PACKET_SIZE
from skew.sequencer import OutboundChunkedPacket, PacketSequencer, ReliableMessage


def test_reliable_message_fields():
    msg = ReliableMessage(3, b"xyz")
    assert msg.id == 3
    assert msg.message == b"xyz"
    assert msg.size == 3


def test_reliable_message_too_large():
    with pytest.raises(ValueError):
        ReliableMessage(0, bytes(MAX_PACKET_SIZE + 1))


def test_outbound_remaining():
    chunked = OutboundChunkedPacket(b"abcdef", max_outbound=2)
    assert chunked.remaining() == 6
    chunked.index = 4
    assert chunked.remaining() == 2


def test_pop_process_queue_in_order():
    seq = PacketSequencer()
    seq.reliable_queue.append(ReliableMessage(1, b"second"))
    seq.reliable_queue.append(ReliableMessage(0, b"first"))

    first = seq.pop_process_queue()
    second = seq.pop_process_queue()

    assert first.message == b"first"
    assert second.message == b"second"
    assert seq.pop_process_queue() is None
    assert seq.next_process_id == 2
    assert seq.reliable_queue == []


def test_pop_process_queue_waits_for_gap():
    seq = PacketSequencer()
    seq.reliable_queue.append(ReliableMessage(1, b"later"))
    assert seq.pop_process_queue() is None
    assert seq.next_process_id == 0
    assert len(seq.reliable_queue) == 1


def test_process_id_wraps():
    seq = PacketSequencer(next_process_id=0xFFFFFFFF)
    seq.reliable_queue.append(ReliableMessage(0xFFFFFFFF, b"x"))
    assert seq.pop_process_queue().message == b"x"
    assert seq.next_process_id == 0


def test_increment_id_wraps():
    seq = PacketSequencer()
    seq.increment_id()
    assert seq.next_reliable_gen_id == 1
    seq.next_reliable_gen_id = 0xFFFFFFFF
    seq.increment_id()
    assert seq.next_reliable_gen_id == 0


def test_handle_ack_removes_sent():
    seq = PacketSequencer()
    seq.reliable_sent.extend(ReliableMessage(i, b"m") for i in range(3))
    seq.handle_ack(1)
    assert sorted(m.id for m in seq.reliable_sent) == [0, 2]
    seq.handle_ack(9)
    assert sorted(m.id for m in seq.reliable_sent) == [0, 2]


def test_handle_ack_clears_outbound_id():
    seq = PacketSequencer()
    seq.reliable_sent.append(ReliableMessage(5, b"m"))
    seq.outbound_chunked = OutboundChunkedPacket(b"data", max_outbound=4, outbound_ids=[4, 5, 6])
    seq.handle_ack(5)
    assert sorted(seq.outbound_chunked.outbound_ids) == [4, 6]


def test_handle_ack_unknown_leaves_outbound_ids():
    seq = PacketSequencer()
    seq.outbound_chunked = OutboundChunkedPacket(b"data", max_outbound=4, outbound_ids=[5])
    seq.handle_ack(5)
    assert seq.outbound_chunked.outbound_ids == [5]


def test_iteration_without_chunked_is_empty():
    assert list(PacketSequencer()) == []


def test_iteration_small_chunk():
    seq = PacketSequencer()
    seq.outbound_chunked = OutboundChunkedPacket(b"abcdefghij", max_outbound=1)
    packet = next(seq)
    data = bytes(packet)
    assert packet.size == 10
    assert data[:2] == b"\x00\x0a"
    assert int.from_bytes(data[2:6], "little") == 10
    assert data[6:] == b"abcd"
    assert seq.outbound_chunked is None
    with pytest.raises(StopIteration):
        next(seq)


def test_iteration_large_chunk_progresses():
    seq = PacketSequencer()
    payload = bytes(range(256)) * 3
    seq.outbound_chunked = OutboundChunkedPacket(payload, max_outbound=1)
    first = next(seq)
    assert first.size == MAX_PACKET_SIZE - 6
    assert seq.outbound_chunked.remaining() == len(payload) - (MAX_PACKET_SIZE - 6)
    second = next(seq)
    assert second.size == len(payload) - (MAX_PACKET_SIZE - 6)
    assert seq.outbound_chunked is None


def test_iteration_with_full_window_drops_chunked():
    seq = PacketSequencer()
    seq.outbound_chunked = OutboundChunkedPacket(b"abc", max_outbound=0)
    with pytest.raises(StopIteration):
        next(seq)
    assert seq.outbound_chunked is None