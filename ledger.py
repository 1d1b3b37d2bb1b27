"""Account stores: the durable home of balances, player stats and game history.

Balances are integer cents keyed by account name. Player accounts use the
player id; the two house accounts use ``BOT_POOL`` and ``RAKE_POOL``.
Only the settlement service writes here.
"""

from __future__ import annotations

import json
import os
import tempfile
import threading
from abc import ABC, abstractmethod
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator

from errors import AlreadySettledError, ContractError, InsufficientFundsError
from schemas import GameHistoryRecord, PlayerStats

BOT_POOL = "bot_pool"
RAKE_POOL = "rake_pool"
HOUSE_ACCOUNTS = frozenset({BOT_POOL, RAKE_POOL})


class AccountStore(ABC):
    """Balances, stats and history behind one re-entrant lock.

    ``transaction()`` holds the lock for a whole check-then-act sequence;
    the individual operations take it too, so they are safe on their own.
    """

    def __init__(self) -> None:
        self._lock = threading.RLock()

    @contextmanager
    def transaction(self) -> Iterator[AccountStore]:
        with self._lock:
            yield self

    # -- balances ------------------------------------------------------

    @abstractmethod
    def balance(self, account: str) -> int:
        """Current balance in cents; unknown accounts hold zero."""

    @abstractmethod
    def balances(self) -> dict[str, int]:
        ...

    @abstractmethod
    def _write_balance(self, account: str, cents: int) -> None:
        ...

    def adjust(self, account: str, delta: int) -> int:
        """Add *delta* cents to *account* and return the new balance.

        Raises
        ------
        InsufficientFundsError
            If the balance would go negative. Nothing is written.
        """
        if not isinstance(delta, int):
            raise ContractError(f"delta must be integer cents, got {delta!r}")
        with self._lock:
            current = self.balance(account)
            new = current + delta
            if new < 0:
                raise InsufficientFundsError(account, -delta, current)
            self._write_balance(account, new)
            return new

    def deposit(self, account: str, cents: int) -> int:
        if cents < 0:
            raise ContractError(f"deposit must be >= 0, got {cents}")
        return self.adjust(account, cents)

    # -- stats and history ---------------------------------------------

    @abstractmethod
    def stats(self, player_id: str) -> PlayerStats:
        ...

    @abstractmethod
    def save_stats(self, player_id: str, stats: PlayerStats) -> None:
        ...

    @abstractmethod
    def append_history(self, record: GameHistoryRecord) -> None:
        ...

    @abstractmethod
    def history(self, player_id: str | None = None) -> list[GameHistoryRecord]:
        """Records in write order, optionally for one player."""

    # -- settled rounds ------------------------------------------------

    @abstractmethod
    def is_settled(self, round_id: str) -> bool:
        ...

    @abstractmethod
    def mark_settled(self, round_id: str) -> None:
        """Record *round_id* as settled. Raises ``AlreadySettledError`` if it is."""

    @abstractmethod
    def unmark_settled(self, round_id: str) -> None:
        ...


class InMemoryAccountStore(AccountStore):
    """Process-local store, used by tests and the demo server."""

    def __init__(self, balances: dict[str, int] | None = None) -> None:
        super().__init__()
        self._balances: dict[str, int] = {}
        self._stats: dict[str, PlayerStats] = {}
        self._history: list[GameHistoryRecord] = []
        self._settled: set[str] = set()
        for account, cents in (balances or {}).items():
            self.deposit(account, cents)

    def balance(self, account: str) -> int:
        with self._lock:
            return self._balances.get(account, 0)

    def balances(self) -> dict[str, int]:
        with self._lock:
            return dict(self._balances)

    def _write_balance(self, account: str, cents: int) -> None:
        self._balances[account] = cents

    def stats(self, player_id: str) -> PlayerStats:
        with self._lock:
            return self._stats.get(player_id, PlayerStats())

    def save_stats(self, player_id: str, stats: PlayerStats) -> None:
        with self._lock:
            self._stats[player_id] = stats

    def append_history(self, record: GameHistoryRecord) -> None:
        with self._lock:
            self._history.append(record)

    def history(self, player_id: str | None = None) -> list[GameHistoryRecord]:
        with self._lock:
            return [r for r in self._history if player_id is None or r.player_id == player_id]

    def is_settled(self, round_id: str) -> bool:
        with self._lock:
            return round_id in self._settled

    def mark_settled(self, round_id: str) -> None:
        with self._lock:
            if round_id in self._settled:
                raise AlreadySettledError(round_id)
            self._settled.add(round_id)

    def unmark_settled(self, round_id: str) -> None:
        with self._lock:
            self._settled.discard(round_id)


def _atomic_write_json(data: dict, path: Path) -> None:
    """Write JSON to *path* via a temp file and rename."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp = tempfile.mkstemp(dir=str(path.parent), suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2, sort_keys=True)
        os.replace(tmp, str(path))
    except BaseException:
        try:
            os.unlink(tmp)
        except OSError:
            pass
        raise


class JsonFileAccountStore(AccountStore):
    """Store backed by a directory.

    ``accounts.json`` holds balances, stats and the ids of settled rounds,
    and is rewritten atomically on every change; ``history.jsonl`` is
    append-only, one record per line.
    """

    ACCOUNTS_FILE = "accounts.json"
    HISTORY_FILE = "history.jsonl"

    def __init__(self, directory: str | Path) -> None:
        super().__init__()
        self.directory = Path(directory)
        self._accounts_path = self.directory / self.ACCOUNTS_FILE
        self._history_path = self.directory / self.HISTORY_FILE
        self._balances: dict[str, int] = {}
        self._stats: dict[str, PlayerStats] = {}
        self._settled: set[str] = set()
        if self._accounts_path.exists():
            with open(self._accounts_path, encoding="utf-8") as f:
                data = json.load(f)
            self._balances = {k: int(v) for k, v in data.get("balances", {}).items()}
            self._stats = {
                k: PlayerStats.model_validate(v) for k, v in data.get("stats", {}).items()
            }
            self._settled = set(data.get("settled_rounds", []))

    def _flush(self) -> None:
        _atomic_write_json(
            {
                "balances": self._balances,
                "stats": {k: v.model_dump() for k, v in self._stats.items()},
                "settled_rounds": sorted(self._settled),
            },
            self._accounts_path,
        )

    def balance(self, account: str) -> int:
        with self._lock:
            return self._balances.get(account, 0)

    def balances(self) -> dict[str, int]:
        with self._lock:
            return dict(self._balances)

    def _write_balance(self, account: str, cents: int) -> None:
        previous = self._balances.get(account)
        self._balances[account] = cents
        try:
            self._flush()
        except BaseException:
            if previous is None:
                del self._balances[account]
            else:
                self._balances[account] = previous
            raise

    def stats(self, player_id: str) -> PlayerStats:
        with self._lock:
            return self._stats.get(player_id, PlayerStats())

    def save_stats(self, player_id: str, stats: PlayerStats) -> None:
        with self._lock:
            previous = self._stats.get(player_id)
            self._stats[player_id] = stats
            try:
                self._flush()
            except BaseException:
                if previous is None:
                    del self._stats[player_id]
                else:
                    self._stats[player_id] = previous
                raise

    def is_settled(self, round_id: str) -> bool:
        with self._lock:
            return round_id in self._settled

    def mark_settled(self, round_id: str) -> None:
        with self._lock:
            if round_id in self._settled:
                raise AlreadySettledError(round_id)
            self._settled.add(round_id)
            try:
                self._flush()
            except BaseException:
                self._settled.discard(round_id)
                raise

    def unmark_settled(self, round_id: str) -> None:
        with self._lock:
            if round_id not in self._settled:
                return
            self._settled.discard(round_id)
            try:
                self._flush()
            except BaseException:
                self._settled.add(round_id)
                raise

    def append_history(self, record: GameHistoryRecord) -> None:
        with self._lock:
            self.directory.mkdir(parents=True, exist_ok=True)
            with open(self._history_path, "a", encoding="utf-8") as f:
                f.write(record.model_dump_json() + "\n")

    def history(self, player_id: str | None = None) -> list[GameHistoryRecord]:
        with self._lock:
            if not self._history_path.exists():
                return []
            out = []
            with open(self._history_path, encoding="utf-8") as f:
                for line in f:
                    line = line.strip()
                    if not line:
                        continue
                    rec = GameHistoryRecord.model_validate_json(line)
                    if player_id is None or rec.player_id == player_id:
                        out.append(rec)
            return out
