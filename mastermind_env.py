"""Mastermind environment: code engine, scoring and the interactive round."""

from __future__ import annotations

import itertools
import random
import threading
import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Iterable, NamedTuple, Sequence

from errors import ContractError, RoundClosedError

CODE_LENGTH = 4
MAX_ATTEMPTS = 8
GAME_DURATION = 180.0  # seconds

Code = tuple[str, ...]


# ------------------------------------------------------------------
# Symbol catalog
# ------------------------------------------------------------------

@dataclass(frozen=True)
class Symbol:
    """A catalog entry. Only ``id`` matters to the game logic."""
    id: str
    label: str
    color: str


SYMBOLS: tuple[Symbol, ...] = (
    Symbol("circle", "●", "#E53935"),
    Symbol("square", "■", "#1E88E5"),
    Symbol("triangle", "▲", "#43A047"),
    Symbol("diamond", "◆", "#FDD835"),
    Symbol("star", "★", "#8E24AA"),
    Symbol("hexagon", "⬡", "#00BCD4"),
)
SYMBOL_IDS: tuple[str, ...] = tuple(s.id for s in SYMBOLS)


def symbol_by_id(symbol_id: str) -> Symbol:
    for s in SYMBOLS:
        if s.id == symbol_id:
            return s
    raise ContractError(f"unknown symbol id {symbol_id!r}")


class DuplicatePolicy(str, Enum):
    """Whether a code may repeat a symbol."""
    UNIQUE = "unique"
    ALLOW = "allow"


class Feedback(NamedTuple):
    exact: int
    present: int


@dataclass(frozen=True)
class AttemptRecord:
    guess: Code
    feedback: Feedback


# ------------------------------------------------------------------
# Pure engine
# ------------------------------------------------------------------

_SYSTEM_RNG = random.SystemRandom()


def check_code(
    code: Sequence[str],
    symbols: Sequence[str] = SYMBOL_IDS,
    what: str = "code",
) -> Code:
    """Validate *code* and return it as a tuple.

    Raises
    ------
    ContractError
        If *code* does not hold exactly ``CODE_LENGTH`` known symbol ids.
    """
    if isinstance(code, str):
        raise ContractError(f"{what} must be a sequence of symbol ids, got a string")
    out = tuple(code)
    if len(out) != CODE_LENGTH:
        raise ContractError(f"{what} length ({len(out)}) != {CODE_LENGTH}")
    unknown = [s for s in out if s not in symbols]
    if unknown:
        raise ContractError(f"{what} contains unknown symbol ids: {unknown}")
    return out


def generate_secret(
    policy: DuplicatePolicy = DuplicatePolicy.UNIQUE,
    symbols: Sequence[str] = SYMBOL_IDS,
    rng: random.Random | None = None,
) -> Code:
    """Draw a secret code under *policy*.

    The default source is the OS entropy pool; pass a seeded
    ``random.Random`` for reproducible runs.
    """
    rng = rng or _SYSTEM_RNG
    pool = list(symbols)
    if policy is DuplicatePolicy.UNIQUE:
        if len(pool) < CODE_LENGTH:
            raise ContractError(
                f"need at least {CODE_LENGTH} symbols for unique codes, got {len(pool)}"
            )
        return tuple(rng.sample(pool, CODE_LENGTH))
    return tuple(rng.choice(pool) for _ in range(CODE_LENGTH))


def _score(secret: Code, guess: Code) -> Feedback:
    # Unchecked two-pass scan; callers validate.
    secret_used = [False] * CODE_LENGTH
    guess_used = [False] * CODE_LENGTH
    exact = 0
    present = 0

    # Pass 1 - exact
    for i in range(CODE_LENGTH):
        if guess[i] == secret[i]:
            exact += 1
            secret_used[i] = True
            guess_used[i] = True

    # Pass 2 - present, first unconsumed secret slot wins
    for i in range(CODE_LENGTH):
        if guess_used[i]:
            continue
        for j in range(CODE_LENGTH):
            if not secret_used[j] and guess[i] == secret[j]:
                present += 1
                secret_used[j] = True
                guess_used[i] = True
                break

    return Feedback(exact, present)


def evaluate(
    secret: Sequence[str],
    guess: Sequence[str],
    symbols: Sequence[str] = SYMBOL_IDS,
) -> Feedback:
    """Return ``(exact, present)`` for *guess* against *secret*.

    Neither argument is mutated. Malformed input raises ``ContractError``;
    it is never reported as ``(0, 0)``.
    """
    return _score(
        check_code(secret, symbols, "secret"),
        check_code(guess, symbols, "guess"),
    )


def is_victory(feedback: Feedback) -> bool:
    return feedback.exact == CODE_LENGTH


def all_codes(
    policy: DuplicatePolicy = DuplicatePolicy.UNIQUE,
    symbols: Sequence[str] = SYMBOL_IDS,
) -> list[Code]:
    """Every legal code under *policy*, in lexicographic catalog order."""
    if policy is DuplicatePolicy.UNIQUE:
        return list(itertools.permutations(symbols, CODE_LENGTH))
    return list(itertools.product(symbols, repeat=CODE_LENGTH))


def filter_candidates(
    candidates: Iterable[Code],
    guess: Code,
    feedback: Feedback,
) -> list[Code]:
    """Keep only candidates consistent with the observed *feedback*."""
    return [c for c in candidates if _score(c, guess) == feedback]


# ------------------------------------------------------------------
# Scoring
# ------------------------------------------------------------------

EXACT_POINTS = 60
PRESENT_POINTS = 25
WIN_POINTS = 1000


def guess_points(feedback: Feedback) -> int:
    return feedback.exact * EXACT_POINTS + feedback.present * PRESENT_POINTS


def time_bonus(time_remaining: float) -> int:
    """Win bonus banded by seconds left on the clock."""
    if time_remaining > 120:
        return 700
    if time_remaining >= 60:
        return 500
    if time_remaining >= 30:
        return 300
    return 100


# ------------------------------------------------------------------
# Interactive round
# ------------------------------------------------------------------

@dataclass(frozen=True)
class RoundRules:
    """Ruleset shared by every participant of one round."""
    max_attempts: int = MAX_ATTEMPTS
    duration: float = GAME_DURATION
    policy: DuplicatePolicy = DuplicatePolicy.UNIQUE

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ContractError(f"max_attempts must be >= 1, got {self.max_attempts}")
        if self.duration <= 0:
            raise ContractError(f"duration must be > 0, got {self.duration}")


class RoundStatus(str, Enum):
    PLAYING = "playing"
    WON = "won"
    LOST = "lost"


class MastermindRound:
    """One player's round against a fixed secret.

    The secret is drawn (or accepted) once in the constructor and has no
    setter; a new round means a new object. Submissions, the countdown and
    explicit expiry all go through one lock, and the first terminating
    condition wins. Later triggers are no-ops.

    Parameters
    ----------
    rules : RoundRules
        Attempt cap, time budget and duplicate policy.
    secret : sequence of str or None
        Fixed secret; drawn with *rng* when None.
    rng : random.Random or None
        Source for the secret when it is drawn here.
    clock : callable
        Monotonic seconds source, injectable for tests.
    on_finish : callable or None
        Called exactly once, with the round, when it terminates.
    """

    def __init__(
        self,
        rules: RoundRules | None = None,
        secret: Sequence[str] | None = None,
        rng: random.Random | None = None,
        clock: Callable[[], float] = time.monotonic,
        on_finish: Callable[[MastermindRound], None] | None = None,
    ) -> None:
        self._rules = rules or RoundRules()
        if secret is None:
            self._secret = generate_secret(self._rules.policy, rng=rng)
        else:
            self._secret = check_code(secret, what="secret")
            if (self._rules.policy is DuplicatePolicy.UNIQUE
                    and len(set(self._secret)) != CODE_LENGTH):
                raise ContractError("secret repeats a symbol under the unique policy")

        self._clock = clock
        self._on_finish = on_finish
        self._lock = threading.RLock()
        self._history: list[AttemptRecord] = []
        self._status = RoundStatus.PLAYING
        self._score = 0
        self._timed_out = False
        self._started_at = clock()
        self._final_remaining: float | None = None
        self._timer: threading.Timer | None = None

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def submit(self, guess: Sequence[str]) -> AttemptRecord:
        """Evaluate one guess against the round's secret.

        Raises
        ------
        RoundClosedError
            If the round already ended (including a timeout noticed now).
        ContractError
            If *guess* is malformed, or repeats a symbol in a unique round.
        """
        with self._lock:
            self._expire_if_due()
            if self._status is not RoundStatus.PLAYING:
                raise RoundClosedError(f"round is {self._status.value}")
            code = check_code(guess, what="guess")
            if (self._rules.policy is DuplicatePolicy.UNIQUE
                    and len(set(code)) != CODE_LENGTH):
                raise ContractError("guess repeats a symbol under the unique policy")

            fb = _score(self._secret, code)
            record = AttemptRecord(code, fb)
            self._history.append(record)
            self._score += guess_points(fb)

            if is_victory(fb):
                remaining = self._remaining_now()
                self._score += WIN_POINTS + time_bonus(remaining)
                self._finish(RoundStatus.WON)
            elif len(self._history) >= self._rules.max_attempts:
                self._finish(RoundStatus.LOST)
            return record

    def expire(self) -> bool:
        """End the round as a timeout. Returns False if it had already ended."""
        with self._lock:
            return self._finish(RoundStatus.LOST, timed_out=True)

    def check_clock(self) -> bool:
        """Expire the round if its time budget is spent. True if it ended now."""
        with self._lock:
            return self._expire_if_due()

    def start_countdown(self) -> threading.Timer:
        """Arm a background timer that expires the round at its deadline."""
        with self._lock:
            if self._timer is None and self._status is RoundStatus.PLAYING:
                self._timer = threading.Timer(self._remaining_now(), self.expire)
                self._timer.daemon = True
                self._timer.start()
            return self._timer

    def time_remaining(self) -> float:
        with self._lock:
            if self._final_remaining is not None:
                return self._final_remaining
            return self._remaining_now()

    def game_over(self) -> bool:
        with self._lock:
            return self._status is not RoundStatus.PLAYING

    @property
    def status(self) -> RoundStatus:
        return self._status

    @property
    def rules(self) -> RoundRules:
        return self._rules

    @property
    def history(self) -> tuple[AttemptRecord, ...]:
        with self._lock:
            return tuple(self._history)

    @property
    def attempts(self) -> int:
        return len(self._history)

    @property
    def score(self) -> int:
        return self._score

    @property
    def won(self) -> bool:
        return self._status is RoundStatus.WON

    @property
    def timed_out(self) -> bool:
        return self._timed_out

    @property
    def secret(self) -> Code:
        """Reveal the secret (only after the round ended)."""
        if not self.game_over():
            raise RuntimeError("Round is still in progress")
        return self._secret

    # ------------------------------------------------------------------
    # Internals (called with the lock held)
    # ------------------------------------------------------------------

    def _remaining_now(self) -> float:
        elapsed = self._clock() - self._started_at
        return max(0.0, self._rules.duration - elapsed)

    def _expire_if_due(self) -> bool:
        if self._status is RoundStatus.PLAYING and self._remaining_now() <= 0:
            return self._finish(RoundStatus.LOST, timed_out=True)
        return False

    def _finish(self, status: RoundStatus, timed_out: bool = False) -> bool:
        if self._status is not RoundStatus.PLAYING:
            return False
        self._status = status
        self._timed_out = timed_out
        self._final_remaining = 0.0 if timed_out else self._remaining_now()
        if self._timer is not None and self._timer is not threading.current_thread():
            self._timer.cancel()
        if self._on_finish is not None:
            self._on_finish(self)
        return True
