#!/usr/bin/env python3
"""Arena tournament: one real player against a field of bots.

Features:
  - Bots are simulated offline, in parallel (one task per bot), each
    against its own private secret.
  - A misbehaving bot gets a random legal move substituted; it never
    stalls the round.
  - Deterministic ranking, payout ladder, and the settlement request
    for the round.
  - CLI prints standings and ladder tables, optionally JSON.
"""

from __future__ import annotations

import argparse
import json
import random
import sys
import time
import uuid
from concurrent.futures import ProcessPoolExecutor, as_completed
from dataclasses import asdict, dataclass, field, replace
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Callable, Sequence

from currency import format_amount, from_cents, to_cents
from errors import ContractError, StrategistError
from log import configure_logging, get_logger
from mastermind_env import (
    SYMBOL_IDS,
    AttemptRecord,
    DuplicatePolicy,
    MastermindRound,
    RoundRules,
    generate_secret,
)
from payouts import allocate_prizes, describe_ladder, pool_size
from schemas import CommitRequest, ValidateRequest
from strategies import strategy_for_level
from strategies.random_strat import RandomStrategy
from strategy import (
    BotGameResult,
    BotPlayer,
    Decision,
    DecisionSource,
    GameConfig,
    SkilledBot,
    create_bot,
    is_legal_guess,
    simulate_game,
    skill_tier,
)

logger = get_logger("tournament")


# ------------------------------------------------------------------
# Competitors and results
# ------------------------------------------------------------------

@dataclass(frozen=True)
class Competitor:
    id: str
    display_name: str
    tier_iq: int | None = None

    @property
    def is_bot(self) -> bool:
        return self.tier_iq is not None


class Outcome(str, Enum):
    WON = "won"
    LOST = "lost"


@dataclass(frozen=True)
class TournamentResult:
    player_id: str
    outcome: Outcome
    attempts_used: int
    score: int
    time_remaining: float | None
    rank: int | None = None

    @property
    def won(self) -> bool:
        return self.outcome is Outcome.WON


def _rank_key(result: TournamentResult) -> tuple:
    won = result.won
    return (
        0 if won else 1,
        result.attempts_used if won else 0,
        -result.score,
        -(result.time_remaining or 0.0),
    )


def rank_results(results: Sequence[TournamentResult]) -> list[TournamentResult]:
    """Assign ranks 1..n.

    Won before lost, then fewer attempts (winners only), higher score,
    more time remaining. Remaining ties keep input order.
    """
    ordered = sorted(results, key=_rank_key)
    return [replace(r, rank=i) for i, r in enumerate(ordered, 1)]


def reveal_order(results: Sequence[TournamentResult]) -> list[TournamentResult]:
    """Display order for revealing bots: winners first, then more time left."""
    return sorted(results, key=lambda r: (0 if r.won else 1, -(r.time_remaining or 0.0)))


def result_from_bot(result: BotGameResult) -> TournamentResult:
    return TournamentResult(
        player_id=result.player_id,
        outcome=Outcome.WON if result.won else Outcome.LOST,
        attempts_used=result.attempts,
        score=result.score,
        time_remaining=result.time_remaining,
    )


def result_from_round(player_id: str, game: MastermindRound) -> TournamentResult:
    if not game.game_over():
        raise ContractError("round is still in progress")
    return TournamentResult(
        player_id=player_id,
        outcome=Outcome.WON if game.won else Outcome.LOST,
        attempts_used=game.attempts,
        score=game.score,
        time_remaining=game.time_remaining(),
    )


# ------------------------------------------------------------------
# Configuration
# ------------------------------------------------------------------

@dataclass(frozen=True)
class ArenaConfig:
    """Economy and field of one arena.

    Amounts are integer cents. ``tiers`` is cycled over the bots.
    """
    buy_in_cents: int = 55
    rake_cents: int = 5
    bot_count: int = 9
    tiers: tuple[int, ...] = (80,)
    rules: RoundRules = field(default_factory=RoundRules)
    seed: int | None = None
    max_workers: int | None = 1

    def __post_init__(self) -> None:
        if self.bot_count < 1:
            raise ContractError(f"bot_count must be >= 1, got {self.bot_count}")
        if self.buy_in_cents <= 0:
            raise ContractError(f"buy-in must be > 0, got {self.buy_in_cents}")
        if not 0 <= self.rake_cents <= self.buy_in_cents:
            raise ContractError(f"rake must be within [0, buy-in], got {self.rake_cents}")
        if not self.tiers:
            raise ContractError("at least one skill tier is required")
        for iq in self.tiers:
            skill_tier(iq)

    @property
    def entrants(self) -> int:
        return self.bot_count + 1

    @property
    def pool_cents(self) -> int:
        return pool_size(self.buy_in_cents, self.rake_cents, self.entrants)

    def validate_request(self) -> ValidateRequest:
        return ValidateRequest(
            buy_in=from_cents(self.buy_in_cents),
            rake=from_cents(self.rake_cents),
            synthetic_opponent_count=self.bot_count,
        )


def create_bots(count: int, tiers: Sequence[int], rng: random.Random) -> list[BotPlayer]:
    return [
        create_bot(i, skill_tier(tiers[i % len(tiers)]), token=f"{rng.getrandbits(32):08x}")
        for i in range(count)
    ]


# ------------------------------------------------------------------
# Bot simulation (runs in a child process)
# ------------------------------------------------------------------

class GuardedBot(SkilledBot):
    """A bot whose illegal or failed moves are replaced by random ones."""

    def __init__(self, player, strategy, rng) -> None:
        super().__init__(player, strategy, rng)
        self._fallback = RandomStrategy()

    def begin_game(self, config) -> None:
        self._fallback.begin_game(config, self.rng)
        try:
            super().begin_game(config)
        except Exception as exc:
            logger.warning("bot %s failed to start: %s", self.player.id, exc)

    def decide(self, history: Sequence[AttemptRecord]) -> Decision:
        try:
            decision = super().decide(history)
            guess = decision.guess
            if not is_legal_guess(guess, self._config):
                raise StrategistError(f"illegal guess {guess!r}")
        except Exception as exc:
            logger.warning("bot %s produced no legal move (%s); substituting", self.player.id, exc)
            move = self._fallback.deduce(history)
            return Decision(move.guess, DecisionSource.SUBSTITUTE)
        return decision


def _simulate_bot_worker(
    player: BotPlayer,
    rules: RoundRules,
    seed: int,
) -> BotGameResult:
    """Draw a private secret for *player* and play it out."""
    rng = random.Random(seed)
    secret = generate_secret(rules.policy, SYMBOL_IDS, rng=rng)
    strategy = strategy_for_level(player.tier.level)()
    bot = GuardedBot(player, strategy, rng)
    return simulate_game(bot, secret, rules)


def simulate_field(
    bots: Sequence[BotPlayer],
    rules: RoundRules,
    seeds: Sequence[int],
    max_workers: int | None = 1,
) -> list[BotGameResult]:
    """Simulate every bot. Results come back in *bots* order.

    ``max_workers`` of 1 runs in-process; anything else uses a process
    pool (None lets the executor pick).
    """
    if len(seeds) != len(bots):
        raise ContractError("one seed per bot is required")
    if max_workers == 1:
        return [_simulate_bot_worker(b, rules, s) for b, s in zip(bots, seeds)]

    results: dict[int, BotGameResult] = {}
    with ProcessPoolExecutor(max_workers=max_workers) as executor:
        futures = {
            executor.submit(_simulate_bot_worker, b, rules, s): i
            for i, (b, s) in enumerate(zip(bots, seeds))
        }
        for fut in as_completed(futures):
            results[futures[fut]] = fut.result()
    return [results[i] for i in range(len(bots))]


# ------------------------------------------------------------------
# Tournament
# ------------------------------------------------------------------

@dataclass(frozen=True)
class Standings:
    results: list[TournamentResult]
    prizes: dict[str, int]
    pool_cents: int
    player_id: str
    bot_reveal: list[TournamentResult]

    @property
    def player_result(self) -> TournamentResult:
        return next(r for r in self.results if r.player_id == self.player_id)

    @property
    def player_prize(self) -> int:
        return self.prizes.get(self.player_id, 0)

    @property
    def bot_prizes_total(self) -> int:
        return sum(c for pid, c in self.prizes.items() if pid != self.player_id)

    @property
    def residual(self) -> int:
        return self.pool_cents - sum(self.prizes.values())


class Tournament:
    """One arena round: the player's round, the bot field and the standings.

    ``start_round`` is the only way a round comes into existence; the
    round object is then read by everyone and replaced by nobody.
    """

    def __init__(
        self,
        config: ArenaConfig | None = None,
        player_id: str = "player",
        player_name: str = "You",
    ) -> None:
        self.config = config or ArenaConfig()
        self.round_id = f"arena-{uuid.uuid4().hex}"
        self._rng = random.Random(self.config.seed)
        self.player = Competitor(player_id, player_name)
        self.bots = create_bots(self.config.bot_count, self.config.tiers, self._rng)
        self._seeds = [self._rng.getrandbits(64) for _ in self.bots]
        self._round: MastermindRound | None = None
        self._bot_results: list[BotGameResult] | None = None

    @property
    def competitors(self) -> list[Competitor]:
        return [self.player] + [
            Competitor(b.id, b.display_name, b.tier.iq) for b in self.bots
        ]

    @property
    def round(self) -> MastermindRound:
        if self._round is None:
            raise ContractError("no round started")
        return self._round

    def start_round(
        self,
        secret: Sequence[str] | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> MastermindRound:
        if self._round is not None:
            raise ContractError("this tournament already has a round")
        self._round = MastermindRound(
            self.config.rules,
            secret=secret,
            rng=random.Random(self._rng.getrandbits(64)),
            clock=clock,
        )
        logger.info("round started: %d bots, pool %s",
                    len(self.bots), format_amount(self.config.pool_cents))
        return self._round

    def simulate_bots(self) -> list[BotGameResult]:
        if self._bot_results is None:
            self._bot_results = simulate_field(
                self.bots, self.config.rules, self._seeds, self.config.max_workers
            )
        return self._bot_results

    def finish(self) -> Standings:
        """Rank everyone and price the ladder. The round must be over."""
        player = result_from_round(self.player.id, self.round)
        bots = [result_from_bot(r) for r in self.simulate_bots()]
        ranked = rank_results([player] + bots)
        pool = self.config.pool_cents
        ladder = allocate_prizes(self.config.entrants, pool)
        prizes = {r.player_id: ladder[r.rank - 1] for r in ranked if r.rank <= len(ladder)}
        bot_ids = {b.id for b in self.bots}
        return Standings(
            results=ranked,
            prizes=prizes,
            pool_cents=pool,
            player_id=self.player.id,
            bot_reveal=reveal_order([r for r in ranked if r.player_id in bot_ids]),
        )

    def commit_request(self, standings: Standings) -> CommitRequest:
        me = standings.player_result
        return CommitRequest(
            round_id=self.round_id,
            buy_in=from_cents(self.config.buy_in_cents),
            rake=from_cents(self.config.rake_cents),
            synthetic_opponent_count=self.config.bot_count,
            final_rank=me.rank,
            player_prize=from_cents(standings.player_prize),
            synthetic_prizes_total=from_cents(standings.bot_prizes_total),
            attempts=me.attempts_used,
            score=me.score,
            time_remaining=me.time_remaining,
            won=me.won,
        )


def autoplay(game: MastermindRound, bot: SkilledBot) -> MastermindRound:
    """Play *game* to the end with *bot*'s decisions."""
    bot.begin_game(GameConfig.from_rules(game.rules))
    while not game.game_over():
        game.submit(bot.decide(game.history).guess)
    return game


# ------------------------------------------------------------------
# Reporting
# ------------------------------------------------------------------

def print_standings(tournament: Tournament, standings: Standings) -> None:
    names = {c.id: c.display_name for c in tournament.competitors}
    print(f"\n{'Rank':<6}{'Player':<16}{'Result':<8}{'Att':>4}{'Score':>7}"
          f"{'Left':>8}{'Prize':>13}")
    print("-" * 62)
    for r in standings.results:
        left = "-" if r.time_remaining is None else f"{r.time_remaining:.1f}s"
        prize = standings.prizes.get(r.player_id, 0)
        marker = "*" if r.player_id == standings.player_id else " "
        print(f"{r.rank:<5}{marker}{names[r.player_id]:<16}{r.outcome.value:<8}"
              f"{r.attempts_used:>4}{r.score:>7}{left:>8}"
              f"{format_amount(prize) if prize else '':>13}")
    print(f"\nPool {format_amount(standings.pool_cents)}, "
          f"house residual {standings.residual} cent(s)")


def print_ladder(entrants: int, pool_cents: int) -> None:
    print(f"\n{'Position':<10}{'Prize each':>14}  Label")
    print("-" * 36)
    for row in describe_ladder(entrants, pool_cents):
        print(f"{row.position_range:<10}{format_amount(row.prize_each):>14}  {row.label}")


def build_tournament_json(tournament: Tournament, standings: Standings) -> dict:
    return {
        "timestamp": datetime.now().isoformat(),
        "config": {
            "buy_in": str(from_cents(tournament.config.buy_in_cents)),
            "rake": str(from_cents(tournament.config.rake_cents)),
            "bot_count": tournament.config.bot_count,
            "tiers": list(tournament.config.tiers),
            "seed": tournament.config.seed,
        },
        "competitors": [asdict(c) for c in tournament.competitors],
        "results": [
            {**asdict(r), "outcome": r.outcome.value,
             "prize": str(from_cents(standings.prizes.get(r.player_id, 0)))}
            for r in standings.results
        ],
        "pool": str(from_cents(standings.pool_cents)),
        "residual_cents": standings.residual,
        "commit_request": json.loads(tournament.commit_request(standings).model_dump_json()),
    }


# ------------------------------------------------------------------
# CLI
# ------------------------------------------------------------------

def _read_guess(game: MastermindRound) -> list[str]:
    prompt = (f"[{game.attempts + 1}/{game.rules.max_attempts}, "
              f"{game.time_remaining():.0f}s] guess ({' '.join(SYMBOL_IDS)}): ")
    return input(prompt).split()


def _play_interactive(game: MastermindRound) -> None:
    game.start_countdown()
    while not game.game_over():
        try:
            guess = _read_guess(game)
        except EOFError:
            game.expire()
            break
        if game.game_over():
            break
        try:
            rec = game.submit(guess)
        except ContractError as exc:
            if game.game_over():
                break
            print(f"  rejected: {exc}")
            continue
        print(f"  exact {rec.feedback.exact}, present {rec.feedback.present}")
    print("Solved!" if game.won else f"Out of {'time' if game.timed_out else 'attempts'}. "
          f"Secret: {' '.join(game.secret)}")


def main() -> None:
    parser = argparse.ArgumentParser(
        description="Mastermind arena tournament",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""\
examples:
  python tournament.py                             # 9 tier-80 bots, auto-played seat
  python tournament.py --tiers 80 90 100 110       # mixed field
  python tournament.py --bots 99 --workers 4       # 100-entrant field in parallel
  python tournament.py --interactive               # play the seat yourself
  python tournament.py --json results/arena.json   # export standings
""",
    )
    parser.add_argument("--bots", type=int, default=9, help="Number of bots (default: 9)")
    parser.add_argument("--tiers", type=int, nargs="+", default=[80],
                        help="Skill tiers cycled over the bots (default: 80)")
    parser.add_argument("--buy-in", type=str, default="0.55", help="Buy-in (default: 0.55)")
    parser.add_argument("--rake", type=str, default="0.05", help="Rake per entrant (default: 0.05)")
    parser.add_argument("--max-attempts", type=int, default=RoundRules().max_attempts)
    parser.add_argument("--duration", type=float, default=RoundRules().duration,
                        help="Round time budget in seconds")
    parser.add_argument("--allow-duplicates", action="store_true",
                        help="Secrets and guesses may repeat symbols")
    parser.add_argument("--seed", type=int, default=None, help="Random seed")
    parser.add_argument("--workers", type=int, default=1,
                        help="Parallel bot workers (default: 1, in-process)")
    parser.add_argument("--player-tier", type=int, default=110,
                        help="Tier auto-playing the player's seat (default: 110)")
    parser.add_argument("--interactive", action="store_true", help="Play the seat from stdin")
    parser.add_argument("--json", type=str, default=None, help="Save results JSON path")
    parser.add_argument("--ledger", type=str, default=None,
                        help="Settle the round into a JSON account store in this directory")
    parser.add_argument("--log-level", type=str, default=None,
                        help="QUIET, NORMAL, VERBOSE or DEBUG (default: $ARENA_LOG_LEVEL)")
    args = parser.parse_args()

    configure_logging(args.log_level)

    policy = DuplicatePolicy.ALLOW if args.allow_duplicates else DuplicatePolicy.UNIQUE
    config = ArenaConfig(
        buy_in_cents=to_cents(args.buy_in),
        rake_cents=to_cents(args.rake),
        bot_count=args.bots,
        tiers=tuple(args.tiers),
        rules=RoundRules(args.max_attempts, args.duration, policy),
        seed=args.seed,
        max_workers=args.workers,
    )
    tournament = Tournament(config)

    snapshot = None
    service = None
    if args.ledger:
        from ledger import JsonFileAccountStore
        from settlement import SettlementService
        service = SettlementService(JsonFileAccountStore(args.ledger))
        snapshot = service.validate(tournament.player.id, config.validate_request())
        if not snapshot.accepted:
            print(f"Cannot enter: {snapshot.reason} (short {snapshot.shortfall})", file=sys.stderr)
            sys.exit(1)

    print(f"Arena: {config.entrants} entrants, buy-in {format_amount(config.buy_in_cents)}, "
          f"pool {format_amount(config.pool_cents)}")
    t0 = time.time()
    game = tournament.start_round()
    if args.interactive:
        _play_interactive(game)
    else:
        seat = SkilledBot(
            create_bot(0, skill_tier(args.player_tier)),
            strategy_for_level(skill_tier(args.player_tier).level)(),
            random.Random(args.seed),
        )
        autoplay(game, seat)

    standings = tournament.finish()
    print_standings(tournament, standings)
    print_ladder(config.entrants, config.pool_cents)
    print(f"\nElapsed: {time.time() - t0:.1f}s")

    if args.json:
        dest = Path(args.json)
        dest.parent.mkdir(parents=True, exist_ok=True)
        data = build_tournament_json(tournament, standings)
        dest.write_text(json.dumps(data, indent=2, ensure_ascii=False), encoding="utf-8")
        print(f"JSON saved to {dest}")

    if service is not None:
        response = service.commit(tournament.player.id, tournament.commit_request(standings), snapshot)
        if response.accepted:
            print(f"Settled. New balance: k$ {response.new_player_balance}")
        else:
            print(f"Settlement rejected: {response.reason}", file=sys.stderr)
            sys.exit(1)


if __name__ == "__main__":
    main()
