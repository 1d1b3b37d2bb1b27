"""Pydantic v2 models for the settlement surface and the records it writes.

Amounts cross this boundary as two-decimal ``Decimal`` values; the core
works in integer cents (see ``currency``).
"""

from __future__ import annotations

import datetime
from decimal import Decimal
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator

from currency import to_cents

GameMode = Literal["arena", "party", "official"]


class ValidateRequest(BaseModel):
    """Read-only pre-play check of a round's economics."""

    model_config = ConfigDict(frozen=True)

    buy_in: Decimal = Field(..., gt=0, decimal_places=2)
    rake: Decimal = Field(default=Decimal("0"), ge=0, decimal_places=2)
    synthetic_opponent_count: int = Field(..., ge=1)

    @model_validator(mode="after")
    def _check_rake(self) -> ValidateRequest:
        if self.rake > self.buy_in:
            raise ValueError(f"rake ({self.rake}) must not exceed buy_in ({self.buy_in})")
        return self

    @property
    def buy_in_cents(self) -> int:
        return to_cents(self.buy_in)

    @property
    def rake_cents(self) -> int:
        return to_cents(self.rake)

    @property
    def entrants(self) -> int:
        return self.synthetic_opponent_count + 1

    @property
    def pool_cents(self) -> int:
        return (self.buy_in_cents - self.rake_cents) * self.entrants


class ValidateResponse(BaseModel):
    accepted: bool
    pool_total: Decimal
    reason: str | None = None
    shortfall: Decimal | None = None


class CommitRequest(ValidateRequest):
    """Final outcome of a round, settled once at round completion."""

    round_id: str = Field(..., min_length=1, max_length=128)
    final_rank: int = Field(..., ge=1)
    player_prize: Decimal = Field(default=Decimal("0"), ge=0, decimal_places=2)
    synthetic_prizes_total: Decimal = Field(default=Decimal("0"), ge=0, decimal_places=2)
    attempts: int = Field(..., ge=0)
    score: int = Field(..., ge=0)
    time_remaining: float | None = Field(default=None, ge=0)
    won: bool
    mode: GameMode = "arena"

    @model_validator(mode="after")
    def _check_outcome(self) -> CommitRequest:
        if self.final_rank > self.entrants:
            raise ValueError(
                f"final_rank ({self.final_rank}) outside field of {self.entrants}"
            )
        if self.player_prize_cents + self.synthetic_prizes_cents > self.pool_cents:
            raise ValueError("prizes exceed the pool")
        return self

    @property
    def player_prize_cents(self) -> int:
        return to_cents(self.player_prize)

    @property
    def synthetic_prizes_cents(self) -> int:
        return to_cents(self.synthetic_prizes_total)


class CommitResponse(BaseModel):
    accepted: bool
    new_player_balance: Decimal | None = None
    reason: str | None = None
    shortfall: Decimal | None = None


class GameHistoryRecord(BaseModel):
    """One settled round. Append-only; never mutated after it is written."""

    model_config = ConfigDict(frozen=True)

    player_id: str = Field(..., min_length=1)
    mode: GameMode
    round_id: str | None = None
    won: bool
    attempts: int = Field(..., ge=0)
    score: int = Field(..., ge=0)
    time_remaining: float | None = None
    rank: int | None = Field(default=None, ge=1)
    prize_won: Decimal
    buy_in: Decimal
    pool: Decimal
    timestamp: datetime.datetime


class PlayerStats(BaseModel):
    """Cumulative per-player statistics."""

    model_config = ConfigDict(frozen=True)

    races_played: int = Field(default=0, ge=0)
    wins: int = Field(default=0, ge=0)
    best_time_remaining: float | None = None

    def record(self, won: bool, time_remaining: float | None) -> PlayerStats:
        """Return the stats after one more race."""
        best = self.best_time_remaining
        if won and time_remaining and (best is None or time_remaining > best):
            best = time_remaining
        return PlayerStats(
            races_played=self.races_played + 1,
            wins=self.wins + (1 if won else 0),
            best_time_remaining=best,
        )
