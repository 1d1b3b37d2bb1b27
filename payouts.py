"""Poker-style payout ladder for arena fields of any size.

The reference schedule is the 100-entrant field: 25 positions in the
money, graded from a large first prize down to a min-cash band, given
as cents of a 5000-cent pool. Other field sizes pay
``ceil(25% of entrants)`` positions:

  - up to 3 paid: the short-field split 50/30/20, collapsed onto fewer
    positions when only one or two are paid;
  - 4 to 25 paid: the schedule is collapsed into that many
    contiguous bands (larger bands first) and each band's share goes to
    one position;
  - more than 25 paid: the schedule is stretched by linear interpolation.

Prizes are ``floor(pool * share)`` in cents, so the ladder never pays
more than the pool. The rounding residual stays with the house.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Sequence

import numpy as np

from errors import ContractError

CANONICAL_FIELD = 100
ITM_FRACTION = 0.25

CANONICAL_SCHEDULE: tuple[int, ...] = (
    1350, 800, 500, 350, 275, 200, 175, 150, 125, 100,
    75, 75, 75, 75, 75,
    65, 65, 65, 65, 65,
    55, 55, 55, 55, 55,
)
SHORT_FIELD_SCHEDULE: tuple[int, ...] = (50, 30, 20)

_LABELS = {1: "Champion", 2: "Runner-up", 3: "Bronze"}
_STRETCH_RESOLUTION = 1000


def pool_size(buy_in_cents: int, rake_cents: int, entrants: int) -> int:
    """Prize pool in cents: every entrant's buy-in minus rake."""
    if rake_cents > buy_in_cents:
        raise ContractError(f"rake ({rake_cents}) exceeds buy-in ({buy_in_cents})")
    return (buy_in_cents - rake_cents) * entrants


def paid_positions(entrants: int) -> int:
    if entrants < 1:
        raise ContractError(f"entrants must be >= 1, got {entrants}")
    return min(entrants, max(1, math.ceil(entrants * ITM_FRACTION)))


def collapse_bands(schedule: Sequence[int], positions: int) -> list[int]:
    """Merge *schedule* into *positions* contiguous bands, larger bands first."""
    if not 1 <= positions <= len(schedule):
        raise ContractError(f"cannot collapse {len(schedule)} shares into {positions}")
    base, extra = divmod(len(schedule), positions)
    weights = []
    start = 0
    for band in range(positions):
        size = base + (1 if band < extra else 0)
        weights.append(sum(schedule[start:start + size]))
        start += size
    return weights


def ladder_weights(entrants: int) -> list[int]:
    """Non-increasing integer weights, one per paid position."""
    paid = paid_positions(entrants)
    if paid <= len(SHORT_FIELD_SCHEDULE):
        return collapse_bands(SHORT_FIELD_SCHEDULE, paid)
    n = len(CANONICAL_SCHEDULE)
    if paid <= n:
        return collapse_bands(CANONICAL_SCHEDULE, paid)

    positions = np.linspace(1, n, paid)
    curve = np.interp(positions, np.arange(1, n + 1), np.asarray(CANONICAL_SCHEDULE, dtype=float))
    return [int(v) for v in np.floor(curve * _STRETCH_RESOLUTION)]


def allocate_prizes(entrants: int, pool_cents: int) -> list[int]:
    """Prize in cents for ranks ``1..paid_positions(entrants)``."""
    if pool_cents < 0:
        raise ContractError(f"pool must be >= 0, got {pool_cents}")
    weights = ladder_weights(entrants)
    total = sum(weights)
    return [pool_cents * w // total for w in weights]


def prize_for_rank(rank: int, entrants: int, pool_cents: int) -> int:
    """Prize in cents for *rank*; zero outside the paid band."""
    if not 1 <= rank <= entrants:
        raise ContractError(f"rank {rank} outside field of {entrants}")
    prizes = allocate_prizes(entrants, pool_cents)
    return prizes[rank - 1] if rank <= len(prizes) else 0


@dataclass(frozen=True)
class LadderRow:
    first: int
    last: int
    prize_each: int
    label: str = ""

    @property
    def position_range(self) -> str:
        return str(self.first) if self.first == self.last else f"{self.first}-{self.last}"


def describe_ladder(entrants: int, pool_cents: int) -> list[LadderRow]:
    """The full paid table, consecutive equal prizes grouped into one row."""
    rows: list[LadderRow] = []
    for rank, prize in enumerate(allocate_prizes(entrants, pool_cents), 1):
        if prize == 0:
            break
        if rows and rows[-1].prize_each == prize:
            prev = rows[-1]
            rows[-1] = LadderRow(prev.first, rank, prize, prev.label)
        else:
            rows.append(LadderRow(rank, rank, prize, _LABELS.get(rank, "")))
    if len(rows) > 3 and not rows[-1].label:
        last = rows[-1]
        rows[-1] = LadderRow(last.first, last.last, last.prize_each, "Min-cash")
    return rows
