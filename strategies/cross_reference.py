"""Tier-3 strategy: lock slots that held steady across improving guesses."""

from __future__ import annotations

from typing import Sequence

from mastermind_env import CODE_LENGTH, AttemptRecord, DuplicatePolicy
from strategies.positional import PositionalStrategy
from strategy import Decision


def probable_positions(
    history: Sequence[AttemptRecord],
    unique: bool = True,
) -> dict[int, str]:
    """Slots that look confirmed from pairs of past guesses.

    A slot counts when it held the same symbol in an older and a newer
    guess and the newer guess's ``exact`` count did not drop. Slots of
    guesses that scored zero exact are known wrong and never count. The
    result holds at most as many slots as the best ``exact`` seen, the
    most recent evidence winning. This is a pattern match, not a proof.
    """
    if not history:
        return {}
    known_wrong = {
        (i, rec.guess[i])
        for rec in history
        if rec.feedback.exact == 0
        for i in range(CODE_LENGTH)
    }

    locked: dict[int, str] = {}
    for b in range(1, len(history)):
        newer = history[b]
        if newer.feedback.exact == 0:
            continue
        for a in range(b):
            older = history[a]
            if newer.feedback.exact < older.feedback.exact:
                continue
            for i in range(CODE_LENGTH):
                sym = newer.guess[i]
                if sym != older.guess[i] or (i, sym) in known_wrong:
                    continue
                if unique:
                    for slot in [s for s, v in locked.items() if v == sym and s != i]:
                        del locked[slot]
                locked.pop(i, None)
                locked[i] = sym

    cap = max(rec.feedback.exact for rec in history)
    if len(locked) > cap:
        locked = dict(list(locked.items())[len(locked) - cap:])
    return locked


class CrossReferenceStrategy(PositionalStrategy):
    """Positional play on top of slots locked by cross-referencing history."""

    level = 3

    @property
    def name(self) -> str:
        return "CrossReference"

    def deduce(self, history: Sequence[AttemptRecord]) -> Decision:
        unique = self._config.policy is DuplicatePolicy.UNIQUE
        return self._arrange(history, probable_positions(history, unique))
