"""Players and player id allocation."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Optional

log = logging.getLogger(__name__)

PlayerId = int
Address = tuple[str, int]

INVALID_PLAYER_ID: PlayerId = 65535
MAX_PIDS = 1024


@dataclass
class Player:
    id: PlayerId
    addr: Address
    name: str = ""


class PidSet:
    """Bitset of allocated player ids below MAX_PIDS."""

    def __init__(self) -> None:
        self._bits = 0

    def set(self, pid: int) -> None:
        if pid >= MAX_PIDS:
            return
        self._bits |= 1 << pid

    def test(self, pid: int) -> bool:
        """True if ``pid`` is taken; ids at or above MAX_PIDS always count as taken."""
        if pid >= MAX_PIDS:
            return True
        return bool(self._bits >> pid & 1)

    def get_and_set_free_pid(self) -> Optional[int]:
        """Claim and return the lowest free id, or None when all are taken."""
        for pid in range(MAX_PIDS):
            if not self.test(pid):
                self.set(pid)
                return pid
        return None


@dataclass
class PlayerManager:
    players: dict[PlayerId, Player] = field(default_factory=dict)
    _pidset: PidSet = field(default_factory=PidSet, repr=False)

    def get_player_by_id(self, pid: PlayerId) -> Optional[Player]:
        if not self._pidset.test(pid):
            log.debug("Pid %d is not set in pidset.", pid)
            return None
        return self.players.get(pid)

    def create_player(self, addr: Address) -> Optional[Player]:
        """Allocate an id and register a new nameless player at ``addr``."""
        pid = self._pidset.get_and_set_free_pid()
        if pid is None:
            return None
        self.players[pid] = Player(pid, addr)
        return self.get_player_by_id(pid)

    def remove_player(self, pid: PlayerId) -> None:
        self.players.pop(pid, None)