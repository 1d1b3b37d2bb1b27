"""Official races: every registered player plays the same secret.

Players register while the race is open. Starting the race draws the one
shared secret; from then on each registered player may submit exactly one
result. A submission carries the guesses, not a score: the race replays
them against the secret and keeps its own result, whatever the client
claimed. When a settlement service is attached, each accepted result also
updates the player's stats and history.

Lifecycle: ``registration`` -> ``playing`` -> ``finished``.
"""

from __future__ import annotations

import random
import uuid
from dataclasses import dataclass
from enum import Enum
from typing import Sequence

from currency import from_cents, to_cents
from errors import AlreadySettledError, ContractError
from log import get_logger
from mastermind_env import (
    CODE_LENGTH,
    Code,
    DuplicatePolicy,
    MastermindRound,
    RoundRules,
    check_code,
    generate_secret,
)
from settlement import SettlementService
from tournament import Outcome, TournamentResult, rank_results, result_from_round

logger = get_logger("official")

ENTRY_FEE_CENTS = to_cents("1.10")
PRIZE_PER_PLAYER_CENTS = to_cents("1.00")
MIN_PLAYERS = 2
MAX_PLAYERS = 16


class RaceStatus(str, Enum):
    REGISTRATION = "registration"
    PLAYING = "playing"
    FINISHED = "finished"


@dataclass(frozen=True)
class RacePlayer:
    id: str
    name: str


@dataclass(frozen=True)
class RaceStanding:
    player: RacePlayer
    result: TournamentResult
    submitted: bool

    @property
    def rank(self) -> int:
        return self.result.rank


class _ReplayClock:
    """Frozen clock; ``elapsed`` is set by hand."""

    def __init__(self) -> None:
        self.elapsed = 0.0

    def __call__(self) -> float:
        return self.elapsed


def replay_round(
    rules: RoundRules,
    secret: Sequence[str],
    guesses: Sequence[Sequence[str]],
    time_remaining: float | None,
) -> MastermindRound:
    """Rebuild a finished round from its guesses.

    Guesses are scored with *time_remaining* on the clock. A round that
    the guesses leave unfinished ends as a timeout.

    Raises
    ------
    ContractError
        A guess is malformed or comes after the round ended, there are no
        guesses, or a win is reported with no time left.
    """
    if not guesses:
        raise ContractError("a result needs at least one guess")
    if time_remaining is not None and time_remaining < 0:
        raise ContractError(f"time_remaining must be >= 0, got {time_remaining}")
    left = min(time_remaining or 0.0, rules.duration)

    clock = _ReplayClock()
    game = MastermindRound(rules, secret=secret, clock=clock)
    if left > 0:
        clock.elapsed = rules.duration - left
    for guess in guesses:
        game.submit(guess)
    if not game.game_over():
        game.expire()
    if game.won and left == 0:
        raise ContractError("a winning result must report time remaining")
    return game


class OfficialRace:
    """One scheduled race shared by all of its registered players.

    Parameters
    ----------
    name : str
        Display name.
    rules : RoundRules
        Ruleset every player's round is replayed under.
    service : SettlementService or None
        Receives each accepted result for stats and history.
    min_players, max_players : int
        Registration bounds.
    rng : random.Random or None
        Source of the race id and the secret.
    """

    def __init__(
        self,
        name: str = "Official race",
        rules: RoundRules | None = None,
        service: SettlementService | None = None,
        min_players: int = MIN_PLAYERS,
        max_players: int = MAX_PLAYERS,
        rng: random.Random | None = None,
    ) -> None:
        if not 1 <= min_players <= max_players:
            raise ContractError(
                f"need 1 <= min_players <= max_players, got {min_players}, {max_players}"
            )
        self._rng = rng or random.Random()
        self.id = f"race-{uuid.UUID(int=self._rng.getrandbits(128)).hex[:12]}"
        self.name = name
        self.rules = rules or RoundRules()
        self.service = service
        self.min_players = min_players
        self.max_players = max_players
        self.status = RaceStatus.REGISTRATION
        self._players: list[RacePlayer] = []
        self._secret: Code | None = None
        self._results: dict[str, TournamentResult] = {}
        self._standings: list[RaceStanding] | None = None

    @property
    def players(self) -> list[RacePlayer]:
        return list(self._players)

    @property
    def prize_pool_cents(self) -> int:
        return PRIZE_PER_PLAYER_CENTS * len(self._players)

    @property
    def secret(self) -> Code:
        """The shared secret, revealed once the race has finished."""
        if self.status is not RaceStatus.FINISHED:
            raise ContractError(f"race is {self.status.value}")
        return self._secret

    def round_id(self, player_id: str) -> str:
        return f"{self.id}:{player_id}"

    def _require(self, status: RaceStatus, action: str) -> None:
        if self.status is not status:
            raise ContractError(f"cannot {action}: race is {self.status.value}")

    def _player(self, player_id: str) -> RacePlayer:
        for p in self._players:
            if p.id == player_id:
                return p
        raise ContractError(f"player {player_id!r} is not registered for this race")

    # -- registration ----------------------------------------------------

    def register(self, player_id: str, name: str | None = None) -> RacePlayer:
        self._require(RaceStatus.REGISTRATION, "register")
        SettlementService.check_player(player_id)
        if any(p.id == player_id for p in self._players):
            raise ContractError(f"player {player_id!r} is already registered")
        if len(self._players) >= self.max_players:
            raise ContractError(f"race is full ({self.max_players} players)")
        player = RacePlayer(player_id, (name or player_id).strip())
        self._players.append(player)
        logger.info("%s registered for %s", player_id, self.id)
        return player

    def unregister(self, player_id: str) -> None:
        self._require(RaceStatus.REGISTRATION, "unregister")
        self._players.remove(self._player(player_id))

    def start(self, secret: Sequence[str] | None = None) -> None:
        """Close registration and fix the shared secret."""
        self._require(RaceStatus.REGISTRATION, "start")
        if len(self._players) < self.min_players:
            raise ContractError(f"at least {self.min_players} players are required")
        if secret is None:
            self._secret = generate_secret(self.rules.policy, rng=self._rng)
        else:
            code = check_code(secret, what="secret")
            if (self.rules.policy is DuplicatePolicy.UNIQUE
                    and len(set(code)) != CODE_LENGTH):
                raise ContractError("secret repeats a symbol under the unique policy")
            self._secret = code
        self.status = RaceStatus.PLAYING
        logger.info("race %s started with %d players", self.id, len(self._players))

    # -- results ---------------------------------------------------------

    def submit_result(
        self,
        player_id: str,
        guesses: Sequence[Sequence[str]],
        time_remaining: float | None,
        claimed_score: int | None = None,
    ) -> TournamentResult:
        """Accept one player's result, recomputed from *guesses*.

        Raises
        ------
        ContractError
            The race is not playing, the player is not registered, or the
            guesses do not replay to a valid round.
        AlreadySettledError
            The player already submitted a result for this race.
        """
        self._require(RaceStatus.PLAYING, "submit a result")
        self._player(player_id)
        round_id = self.round_id(player_id)
        if player_id in self._results:
            raise AlreadySettledError(round_id)

        game = replay_round(self.rules, self._secret, guesses, time_remaining)
        result = result_from_round(player_id, game)
        if claimed_score is not None and claimed_score != result.score:
            logger.warning("score mismatch for %s in %s: claimed %d, replayed %d",
                           player_id, self.id, claimed_score, result.score)

        if self.service is not None:
            self.service.record_result(
                player_id,
                round_id,
                mode="official",
                won=result.won,
                attempts=result.attempts_used,
                score=result.score,
                time_remaining=result.time_remaining,
                buy_in=from_cents(ENTRY_FEE_CENTS),
                pool=from_cents(self.prize_pool_cents),
            )
        self._results[player_id] = result
        return result

    def missing_results(self) -> list[RacePlayer]:
        return [p for p in self._players if p.id not in self._results]

    def finish(self) -> list[RaceStanding]:
        """Close the race and rank everyone; no result counts as a loss."""
        self._require(RaceStatus.PLAYING, "finish")
        results = [
            self._results.get(p.id)
            or TournamentResult(p.id, Outcome.LOST, attempts_used=0, score=0, time_remaining=0.0)
            for p in self._players
        ]
        self._standings = [
            RaceStanding(self._player(r.player_id), r, r.player_id in self._results)
            for r in rank_results(results)
        ]
        self.status = RaceStatus.FINISHED
        logger.info("race %s finished: %d of %d results",
                    self.id, len(self._results), len(self._players))
        return list(self._standings)

    @property
    def standings(self) -> list[RaceStanding]:
        if self._standings is None:
            raise ContractError("race has not finished")
        return list(self._standings)
