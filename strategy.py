"""Bot strategist: skill tiers, the strategy interface and the game simulator."""

from __future__ import annotations

import random
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import ClassVar, Sequence

from errors import ContractError
from mastermind_env import (
    CODE_LENGTH,
    GAME_DURATION,
    MAX_ATTEMPTS,
    SYMBOL_IDS,
    WIN_POINTS,
    AttemptRecord,
    Code,
    DuplicatePolicy,
    RoundRules,
    RoundStatus,
    evaluate,
    guess_points,
    is_victory,
    time_bonus,
)


@dataclass(frozen=True)
class GameConfig:
    """All information a strategy receives at the start of each game.

    Attributes
    ----------
    symbols : tuple[str, ...]
        Symbol ids a code may use.
    policy : DuplicatePolicy
        Whether codes may repeat a symbol. Guesses follow the same policy.
    max_attempts : int
        Attempt cap for the round.
    duration : float
        Round time budget in seconds.
    """

    symbols: tuple[str, ...] = SYMBOL_IDS
    policy: DuplicatePolicy = DuplicatePolicy.UNIQUE
    max_attempts: int = MAX_ATTEMPTS
    duration: float = GAME_DURATION

    @classmethod
    def from_rules(cls, rules: RoundRules, symbols: Sequence[str] = SYMBOL_IDS) -> GameConfig:
        return cls(
            symbols=tuple(symbols),
            policy=rules.policy,
            max_attempts=rules.max_attempts,
            duration=rules.duration,
        )


# ------------------------------------------------------------------
# Skill tiers
# ------------------------------------------------------------------

@dataclass(frozen=True)
class SkillTier:
    """A bot's configured sophistication.

    ``error_rate`` is the per-turn probability of ignoring history;
    ``level`` selects the deduction strategy used otherwise.
    """
    iq: int
    error_rate: float
    level: int


SKILL_TIERS: dict[int, SkillTier] = {
    80: SkillTier(iq=80, error_rate=0.30, level=1),
    90: SkillTier(iq=90, error_rate=0.20, level=2),
    100: SkillTier(iq=100, error_rate=0.10, level=3),
    110: SkillTier(iq=110, error_rate=0.05, level=4),
}


def skill_tier(iq: int) -> SkillTier:
    try:
        return SKILL_TIERS[iq]
    except KeyError:
        raise ContractError(
            f"unknown skill tier {iq}; known tiers: {sorted(SKILL_TIERS)}"
        ) from None


def think_time(tier: SkillTier, rng: random.Random) -> float:
    """Simulated seconds a bot spends before a guess. Lower IQ is slower."""
    return 3.0 + rng.random() * 5.0 + (100 - tier.iq) / 100 * 2.0


# ------------------------------------------------------------------
# Decisions
# ------------------------------------------------------------------

class DecisionSource(str, Enum):
    DEDUCTION = "deduction"
    MISTAKE = "mistake"
    SUBSTITUTE = "substitute"


@dataclass(frozen=True)
class Decision:
    """A guess tagged with how it was produced.

    ``confirmed`` holds the slots the strategy locked as probable
    confirmed positions; every other slot is a guess.
    """
    guess: Code
    source: DecisionSource = DecisionSource.DEDUCTION
    confirmed: frozenset[int] = frozenset()

    @property
    def is_mistake(self) -> bool:
        return self.source is DecisionSource.MISTAKE


# ------------------------------------------------------------------
# History helpers shared by the strategies
# ------------------------------------------------------------------

def eliminated_symbols(history: Sequence[AttemptRecord]) -> set[str]:
    """Symbols that appeared in any guess scoring ``(0, 0)``."""
    out: set[str] = set()
    for rec in history:
        if rec.feedback.exact == 0 and rec.feedback.present == 0:
            out.update(rec.guess)
    return out


def random_code(
    pool: Sequence[str],
    config: GameConfig,
    rng: random.Random,
) -> Code:
    """A uniformly random legal code drawn from *pool*.

    Under the unique policy a pool smaller than the code is topped up
    with the remaining catalog symbols.
    """
    pool = list(dict.fromkeys(pool)) or list(config.symbols)
    if config.policy is DuplicatePolicy.ALLOW:
        return tuple(rng.choice(pool) for _ in range(CODE_LENGTH))
    if len(pool) < CODE_LENGTH:
        rest = [s for s in config.symbols if s not in pool]
        pool += rng.sample(rest, CODE_LENGTH - len(pool))
    return tuple(rng.sample(pool, CODE_LENGTH))


def is_legal_guess(guess: Sequence[str], config: GameConfig) -> bool:
    if isinstance(guess, str) or len(guess) != CODE_LENGTH:
        return False
    if any(s not in config.symbols for s in guess):
        return False
    if config.policy is DuplicatePolicy.UNIQUE and len(set(guess)) != CODE_LENGTH:
        return False
    return True


# ------------------------------------------------------------------
# Strategy interface
# ------------------------------------------------------------------

class Strategy(ABC):
    """Interface every deduction strategy implements.

    ``level`` is the sophistication level the strategy serves; skill
    tiers pick their strategy by it.
    """

    level: ClassVar[int] = 0

    @property
    @abstractmethod
    def name(self) -> str:
        """Human-readable strategy name (used in reports)."""
        ...

    def begin_game(self, config: GameConfig, rng: random.Random) -> None:
        """Called at the start of each game.

        The default implementation keeps *config* and *rng* on the
        instance as ``_config`` and ``_rng``.
        """
        self._config = config
        self._rng = rng

    @abstractmethod
    def deduce(self, history: Sequence[AttemptRecord]) -> Decision:
        """Return the next decision given the (guess, feedback) history."""
        ...

    def end_game(self, secret: Code, solved: bool, num_attempts: int) -> None:
        """Called at the end of each game. The default does nothing."""


# ------------------------------------------------------------------
# Bot players
# ------------------------------------------------------------------

BOT_NAMES = [
    "CyberMind", "LogicBot", "DeepThink", "NeuroPlex",
    "SynthBrain", "CodeBreaker", "MindMeld", "ByteLogic",
    "Axiom", "Cerebrum", "Cortex", "Synapse",
    "Quantum", "Vector", "Matrix", "Cipher",
]


@dataclass(frozen=True)
class BotPlayer:
    id: str
    display_name: str
    tier: SkillTier


def create_bot(index: int, tier: SkillTier, token: str | None = None) -> BotPlayer:
    """Build the *index*-th bot of a field.

    Names repeat with a numeric suffix once the roster wraps.
    """
    base = BOT_NAMES[index % len(BOT_NAMES)]
    name = f"{base}{index}" if index >= len(BOT_NAMES) else base
    token = token or uuid.uuid4().hex[:8]
    return BotPlayer(id=f"bot-{index}-{token}", display_name=name, tier=tier)


class SkilledBot:
    """A bot player driving a strategy with its tier's error rate.

    Each bot owns its rng, so simulations of different bots share no
    mutable state.
    """

    def __init__(self, player: BotPlayer, strategy: Strategy, rng: random.Random) -> None:
        self.player = player
        self.strategy = strategy
        self.rng = rng
        self._config = GameConfig()

    def begin_game(self, config: GameConfig) -> None:
        self._config = config
        self.strategy.begin_game(config, self.rng)

    def decide(self, history: Sequence[AttemptRecord]) -> Decision:
        if self.rng.random() < self.player.tier.error_rate:
            pool = [s for s in self._config.symbols if s not in eliminated_symbols(history)]
            return Decision(random_code(pool, self._config, self.rng), DecisionSource.MISTAKE)
        return self.strategy.deduce(history)

    def end_game(self, secret: Code, solved: bool, num_attempts: int) -> None:
        self.strategy.end_game(secret, solved, num_attempts)


# ------------------------------------------------------------------
# Full-game simulation
# ------------------------------------------------------------------

@dataclass(frozen=True)
class BotGameResult:
    player_id: str
    secret: Code
    status: RoundStatus
    attempts: int
    score: int
    time_remaining: float
    timed_out: bool = False
    history: tuple[AttemptRecord, ...] = field(default_factory=tuple)
    decisions: tuple[Decision, ...] = field(default_factory=tuple)

    @property
    def won(self) -> bool:
        return self.status is RoundStatus.WON

    @property
    def mistakes(self) -> int:
        return sum(1 for d in self.decisions if d.is_mistake)


def simulate_game(bot: SkilledBot, secret: Sequence[str], rules: RoundRules) -> BotGameResult:
    """Play one bot through a whole round without real-time rendering.

    The game ends on a win, at the attempt cap, or when the simulated
    thinking time exhausts the round budget (a loss with zero time left).
    """
    secret = tuple(secret)
    config = GameConfig.from_rules(rules)
    bot.begin_game(config)

    history: list[AttemptRecord] = []
    decisions: list[Decision] = []
    spent = 0.0
    score = 0
    status = RoundStatus.PLAYING
    timed_out = False
    remaining = rules.duration

    while status is RoundStatus.PLAYING and len(history) < rules.max_attempts:
        spent += think_time(bot.player.tier, bot.rng)
        if spent >= rules.duration:
            status = RoundStatus.LOST
            timed_out = True
            remaining = 0.0
            break

        decision = bot.decide(tuple(history))
        fb = evaluate(secret, decision.guess, config.symbols)
        history.append(AttemptRecord(decision.guess, fb))
        decisions.append(decision)
        score += guess_points(fb)

        if is_victory(fb):
            status = RoundStatus.WON
            remaining = max(0.0, rules.duration - spent)
            score += WIN_POINTS + time_bonus(remaining)

    if status is RoundStatus.PLAYING:
        status = RoundStatus.LOST
        remaining = max(0.0, rules.duration - spent)

    bot.end_game(secret, status is RoundStatus.WON, len(history))
    return BotGameResult(
        player_id=bot.player.id,
        secret=secret,
        status=status,
        attempts=len(history),
        score=score,
        time_remaining=remaining,
        timed_out=timed_out,
        history=tuple(history),
        decisions=tuple(decisions),
    )
