"""Tier-4 strategy: only guess codes consistent with every feedback so far."""

from __future__ import annotations

import random
from typing import Sequence

from mastermind_env import (
    CODE_LENGTH,
    AttemptRecord,
    DuplicatePolicy,
    all_codes,
    filter_candidates,
)
from strategies.cross_reference import CrossReferenceStrategy, probable_positions
from strategy import Decision, GameConfig


class ConsistentStrategy(CrossReferenceStrategy):
    """Keep the set of codes that could still be the secret.

    Among those, prefer codes agreeing with the cross-referenced slots.
    Slots on which every remaining candidate agrees are reported as
    confirmed, since they are certain rather than probable.
    """

    level = 4

    @property
    def name(self) -> str:
        return "Consistent"

    def begin_game(self, config: GameConfig, rng: random.Random) -> None:
        super().begin_game(config, rng)
        self._candidates = all_codes(config.policy, config.symbols)
        self._seen = 0

    def deduce(self, history: Sequence[AttemptRecord]) -> Decision:
        if len(history) < self._seen:
            self._candidates = all_codes(self._config.policy, self._config.symbols)
            self._seen = 0
        for rec in history[self._seen:]:
            self._candidates = filter_candidates(self._candidates, rec.guess, rec.feedback)
        self._seen = len(history)

        if not self._candidates:
            return super().deduce(history)

        unique = self._config.policy is DuplicatePolicy.UNIQUE
        locked = probable_positions(history, unique)
        preferred = [
            c for c in self._candidates
            if all(c[i] == sym for i, sym in locked.items())
        ] or self._candidates
        certain = frozenset(
            i for i in range(CODE_LENGTH)
            if len({c[i] for c in self._candidates}) == 1
        )
        return Decision(self._rng.choice(preferred), confirmed=certain)
