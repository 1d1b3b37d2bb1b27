"""Party mode: an in-person tournament run by a host.

Everyone plays on their own device and reports the result; the host
enters the results and the tournament ranks them and splits the pool.

Lifecycle: ``setup`` (players join and leave) -> ``playing`` (entries
collected) -> ``collecting`` (results entered) -> ``finished``.
"""

from __future__ import annotations

import random
import uuid
from dataclasses import dataclass
from decimal import ROUND_UP, Decimal
from enum import Enum

from currency import to_cents
from errors import ContractError
from log import get_logger
from payouts import collapse_bands
from tournament import Outcome, TournamentResult, rank_results

logger = get_logger("party")

ENTRY_FEE_CENTS = to_cents("1.10")
MAX_PLAYERS = 10
MIN_PLAYERS = 2
RAKE_RATE = Decimal("0.0643")
PRIZE_SHARES: tuple[int, ...] = (50, 25, 15, 10)

_ID_ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"


def party_id(rng: random.Random) -> str:
    return "FESTA-" + "".join(rng.choice(_ID_ALPHABET) for _ in range(4))


def party_rake(total_cents: int) -> int:
    """Rake on the total entry, rounded up to the cent."""
    return int((total_cents * RAKE_RATE).to_integral_value(rounding=ROUND_UP))


def party_prizes(pool_cents: int, players: int) -> list[int]:
    """Prizes for ranks 1..k, k = min(players, 4), floored to the cent."""
    weights = collapse_bands(PRIZE_SHARES, min(players, len(PRIZE_SHARES)))
    total = sum(PRIZE_SHARES)
    return [pool_cents * w // total for w in weights]


class PartyStatus(str, Enum):
    SETUP = "setup"
    PLAYING = "playing"
    COLLECTING = "collecting"
    FINISHED = "finished"


@dataclass(frozen=True)
class PartyPlayer:
    id: str
    name: str


@dataclass(frozen=True)
class PartyStanding:
    player: PartyPlayer
    result: TournamentResult
    prize_cents: int

    @property
    def rank(self) -> int:
        return self.result.rank


class PartyTournament:
    """One party, created by its host, who is also its first player."""

    def __init__(
        self,
        host_name: str,
        name: str = "Party",
        rng: random.Random | None = None,
    ) -> None:
        self._rng = rng or random.Random()
        self.id = party_id(self._rng)
        self.name = name
        self.host = self._new_player(host_name)
        self.status = PartyStatus.SETUP
        self.pool_cents = 0
        self.rake_cents = 0
        self._players: list[PartyPlayer] = [self.host]
        self._results: dict[str, TournamentResult] = {}
        self._standings: list[PartyStanding] | None = None
        logger.info("party %s created by %s", self.id, host_name)

    @property
    def players(self) -> list[PartyPlayer]:
        return list(self._players)

    def _new_player(self, name: str) -> PartyPlayer:
        name = name.strip()
        if not name:
            raise ContractError("player name must not be empty")
        return PartyPlayer(id=f"party-{uuid.UUID(int=self._rng.getrandbits(128)).hex[:12]}", name=name)

    def _require(self, *allowed: PartyStatus) -> None:
        if self.status not in allowed:
            raise ContractError(f"party is {self.status.value}")

    def _player(self, player_id: str) -> PartyPlayer:
        for p in self._players:
            if p.id == player_id:
                return p
        raise ContractError(f"unknown player {player_id!r}")

    # -- setup -----------------------------------------------------------

    def add_player(self, name: str) -> PartyPlayer:
        self._require(PartyStatus.SETUP)
        if len(self._players) >= MAX_PLAYERS:
            raise ContractError(f"party is full ({MAX_PLAYERS} players)")
        if any(p.name.casefold() == name.strip().casefold() for p in self._players):
            raise ContractError(f"player {name!r} already joined")
        player = self._new_player(name)
        self._players.append(player)
        return player

    def remove_player(self, player_id: str) -> None:
        self._require(PartyStatus.SETUP)
        if player_id == self.host.id:
            raise ContractError("the host cannot be removed")
        self._players.remove(self._player(player_id))

    def start(self) -> int:
        """Collect entries. Returns the prize pool in cents."""
        self._require(PartyStatus.SETUP)
        if len(self._players) < MIN_PLAYERS:
            raise ContractError(f"at least {MIN_PLAYERS} players are required")
        total = ENTRY_FEE_CENTS * len(self._players)
        self.rake_cents = party_rake(total)
        self.pool_cents = total - self.rake_cents
        self.status = PartyStatus.PLAYING
        logger.info("party %s started: %d players, pool %d cents",
                    self.id, len(self._players), self.pool_cents)
        return self.pool_cents

    # -- results ---------------------------------------------------------

    def begin_collecting(self) -> None:
        self._require(PartyStatus.PLAYING)
        self.status = PartyStatus.COLLECTING

    def record_result(
        self,
        player_id: str,
        won: bool,
        attempts: int,
        time_remaining: float,
        score: int,
        overwrite: bool = False,
    ) -> TournamentResult:
        self._require(PartyStatus.PLAYING, PartyStatus.COLLECTING)
        self._player(player_id)
        if player_id in self._results and not overwrite:
            raise ContractError(f"result for {player_id!r} already recorded")
        if attempts < 0 or score < 0 or time_remaining < 0:
            raise ContractError("attempts, score and time remaining must be >= 0")
        result = TournamentResult(
            player_id=player_id,
            outcome=Outcome.WON if won else Outcome.LOST,
            attempts_used=attempts,
            score=score,
            time_remaining=time_remaining,
        )
        self._results[player_id] = result
        return result

    def missing_results(self) -> list[PartyPlayer]:
        return [p for p in self._players if p.id not in self._results]

    def finish(self) -> list[PartyStanding]:
        """Rank the reported results and split the pool."""
        self._require(PartyStatus.PLAYING, PartyStatus.COLLECTING)
        if not self._results:
            raise ContractError("no results recorded")
        ordered = [self._results[p.id] for p in self._players if p.id in self._results]
        ranked = rank_results(ordered)
        prizes = party_prizes(self.pool_cents, len(ranked))
        self._standings = [
            PartyStanding(
                player=self._player(r.player_id),
                result=r,
                prize_cents=prizes[r.rank - 1] if r.rank <= len(prizes) else 0,
            )
            for r in ranked
        ]
        self.status = PartyStatus.FINISHED
        logger.info("party %s finished, house keeps %d cents",
                    self.id, self.house_cents)
        return list(self._standings)

    @property
    def standings(self) -> list[PartyStanding]:
        if self._standings is None:
            raise ContractError("party has not finished")
        return list(self._standings)

    @property
    def house_cents(self) -> int:
        """Rake plus whatever the floored prizes left in the pool."""
        paid = sum(s.prize_cents for s in self._standings or [])
        return self.rake_cents + (self.pool_cents - paid if self._standings else 0)
