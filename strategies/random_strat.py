"""Random strategy: a uniformly random legal code, ignoring history."""

from __future__ import annotations

from typing import Sequence

from mastermind_env import AttemptRecord
from strategy import Decision, Strategy, random_code


class RandomStrategy(Strategy):
    """Guess a random legal code from the full catalog.

    Also serves as the substitute move source when a bot misbehaves.
    """

    level = 0

    @property
    def name(self) -> str:
        return "Random"

    def deduce(self, history: Sequence[AttemptRecord]) -> Decision:
        return Decision(random_code(self._config.symbols, self._config, self._rng))
