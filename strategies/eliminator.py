"""Tier-1 strategy: drop symbols from all-miss guesses, guess at random."""

from __future__ import annotations

from typing import Sequence

from mastermind_env import AttemptRecord
from strategy import Decision, Strategy, eliminated_symbols, random_code


class EliminatorStrategy(Strategy):
    """Guess randomly among symbols not yet ruled out.

    Slot order is shuffled every turn, so position information is lost.
    """

    level = 1

    @property
    def name(self) -> str:
        return "Eliminator"

    def deduce(self, history: Sequence[AttemptRecord]) -> Decision:
        out = eliminated_symbols(history)
        pool = [s for s in self._config.symbols if s not in out]
        return Decision(random_code(pool, self._config, self._rng))
