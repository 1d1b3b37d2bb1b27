"""Tier-2 strategy: keep exact hits in place, move partial hits elsewhere."""

from __future__ import annotations

import itertools
from typing import Sequence

from log import VERBOSE, get_logger
from mastermind_env import CODE_LENGTH, AttemptRecord, DuplicatePolicy
from strategy import Decision, Strategy, eliminated_symbols, random_code

logger = get_logger("strategies.positional")


class PositionalStrategy(Strategy):
    """Build on the previous guess.

    Feedback does not say *which* slots scored, so the strategy keeps
    ``exact`` randomly chosen slots of the last guess where they were,
    relocates ``present`` other symbols of the last guess to different
    slots, and fills the rest with symbols the last guess did not use.
    """

    level = 2

    @property
    def name(self) -> str:
        return "Positional"

    def deduce(self, history: Sequence[AttemptRecord]) -> Decision:
        return self._arrange(history, {})

    def _arrange(self, history: Sequence[AttemptRecord], locked: dict[int, str]) -> Decision:
        cfg, rng = self._config, self._rng
        unique = cfg.policy is DuplicatePolicy.UNIQUE
        ruled_out = eliminated_symbols(history)
        pool = [s for s in cfg.symbols if s not in ruled_out]
        if not history and not locked:
            return Decision(random_code(pool, cfg, rng))

        guess: list[str | None] = [None] * CODE_LENGTH
        used: set[str] = set()

        def place(slot: int, sym: str) -> bool:
            if unique and sym in used:
                return False
            guess[slot] = sym
            used.add(sym)
            return True

        for slot, sym in locked.items():
            place(slot, sym)

        stale: set[str] = set()
        barred: dict[int, str] = {}
        if history:
            last = history[-1]
            stale = set(last.guess)
            covered = sum(1 for slot, sym in locked.items() if last.guess[slot] == sym)
            open_slots = [i for i in range(CODE_LENGTH) if guess[i] is None]
            keep_n = min(max(0, last.feedback.exact - covered), len(open_slots))
            keep = rng.sample(open_slots, keep_n)
            for i in keep:
                place(i, last.guess[i])

            origins = [
                i for i in range(CODE_LENGTH)
                if i not in keep and i not in locked and not (unique and last.guess[i] in used)
            ]
            movers = rng.sample(origins, min(last.feedback.present, len(origins)))
            free = [i for i in range(CODE_LENGTH) if guess[i] is None]
            moves = self._derange(movers, free)
            for origin, target in moves.items():
                place(target, last.guess[origin])
            barred = {o: last.guess[o] for o in movers if o not in moves}

        for i in range(CODE_LENGTH):
            if guess[i] is not None:
                continue
            choices = (
                [s for s in pool if s not in stale and not (unique and s in used)]
                or [s for s in pool if s != barred.get(i) and not (unique and s in used)]
                or [s for s in cfg.symbols if s != barred.get(i) and not (unique and s in used)]
            )
            place(i, rng.choice(choices))

        return Decision(tuple(guess), confirmed=frozenset(locked))

    def _derange(self, origins: list[int], free: list[int]) -> dict[int, int]:
        """Map origins to distinct free slots, never a slot onto itself.

        When no such assignment covers every origin, the largest one that
        exists is used and the remaining symbols are dropped from the guess.
        """
        for k in range(len(origins), 0, -1):
            options = [
                dict(zip(movers, targets))
                for movers in itertools.combinations(origins, k)
                for targets in itertools.permutations(free, k)
                if all(t != o for o, t in zip(movers, targets))
            ]
            if options:
                break
        else:
            options = [{}]
        moves = self._rng.choice(options)
        if len(moves) < len(origins):
            dropped = sorted(set(origins) - set(moves))
            logger.log(VERBOSE, "no other free slot for origin(s) %s; dropping them", dropped)
        return moves
