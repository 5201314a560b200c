# skew

A small game zone server that speaks a reliable-UDP protocol. It accepts
client connections, acknowledges and orders incoming reliable messages,
answers clock sync and ping requests, logs players in and places them in a
single arena.

## Running

```
skew
skew --port 6000
```

The server listens for game traffic on UDP port 5000, or on the port given
with `--port`. It listens for ping requests on the next port up. It logs at
INFO level to standard error and runs until interrupted with Ctrl-C.

A connection that has sent nothing for 1000 ticks (ten seconds) is dropped.
The server checks for this each time it polls the game socket, and drops at
most one such connection per poll.

## What the server handles

- A connection request (`00 01` with an encryption key and a version). The
  server echoes the key back, which turns encryption off, and tracks the new
  address.
- Reliable messages (`00 03`). Each one is acknowledged at once and queued.
  After each datagram, at most one queued message is handled: the next one
  in sequence.
- Acknowledgements (`00 04`), which clear the matching sent message.
- Clock sync requests (`00 05`). The reply carries the client's timestamp
  and the server's own tick.
- Disconnects (`00 07`) and clusters (`00 0E`). A cluster is a series of
  length-prefixed sub-packets, each handled in turn.
- Login (`0x24`). The server reads a name, gives the player a free id and
  replies with a version packet and a login response.
- Arena entry (`0x01`). The server sends the player id, the arena settings in
  small chunks, the map information (`pub.lvl`), the list of players already
  present and an "entering complete" message. It then tells the other players
  that the new player has entered.

A ping on the ping port is a 4-byte timestamp. The reply is a fixed player
count of 69 followed by the same timestamp.

When a connection is dropped, the server sends it a disconnect, removes its
player and tells the remaining players that the player has left.

## What it does not do

- It does not check passwords. Any name is accepted.
- It does not encrypt traffic.
- It does not send map files.
- It does not resend reliable messages that are never acknowledged.
- It handles no gameplay traffic beyond login and arena entry: no movement,
  no chat and no scores.
- The arena settings are a fixed block of bytes built into `skew.game` as
  `ARENA_SETTINGS`. They are not read from any file.

## Using the pieces

The protocol building blocks can also be used on their own.

- `skew.clock.Tick`: a 31-bit timestamp in hundredths of a second. It
  compares across wrap-around with `diff`, `gt` and `gte`. `Tick.now()`
  reads the system clock.
- `skew.packet.Packet`: a packet builder that holds at most `MAX_PACKET_SIZE`
  (520) bytes.
  - Constructors: `empty`, `reliable`, `reliable_ack` and `sync_response`.
  - `concat_*` methods return a new packet. `write_*` methods append in
    place. Both come in `u8`, `u16`, `u32`, `i8`, `i16` and `i32` forms.
  - Growing a packet past its limit raises `PacketOverflowError`.
- `skew.sequencer.PacketSequencer`: tracks sent and received
  `ReliableMessage`s. `pop_process_queue` returns received messages in
  order, `handle_ack` clears acknowledged ones, and `increment_id` advances
  the outgoing id.
- `skew.player.PlayerManager`: hands out player ids from a `PidSet`, lowest
  free id first and at most 1024 of them. It looks players up by id with
  `get_player_by_id`.
- `skew.game.Game` and `skew.game.Connection`: handle incoming packets and
  send replies. They work with any object that has a
  `sendto(data, address)` method.
- `skew.server.Server`: owns the sockets and provides `poll_game`,
  `poll_ping`, `timeout_connection`, `remove_connection` and `close`.
  - It can be used as a context manager.
  - It accepts ready-made sockets through the `game_socket` and
    `ping_socket` keyword arguments.

```python
from skew.packet import Packet

ack = Packet.reliable_ack(7)
assert bytes(ack) == b"\x00\x04\x07\x00\x00\x00"

leave = Packet.empty().concat_u8(0x04).concat_u16(3)
assert bytes(leave) == b"\x04\x03\x00"
```

## Tests

```
pip install -e .[test]
pytest
```