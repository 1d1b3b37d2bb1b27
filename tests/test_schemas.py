"""Tests for the request/response models."""

from __future__ import annotations

from decimal import Decimal

import pytest
from pydantic import ValidationError

from schemas import CommitRequest, PlayerStats, ValidateRequest


def _commit(**overrides) -> dict:
    body = {
        "round_id": "round-1",
        "buy_in": "0.55",
        "rake": "0.05",
        "synthetic_opponent_count": 9,
        "final_rank": 1,
        "player_prize": "2.35",
        "synthetic_prizes_total": "2.65",
        "attempts": 4,
        "score": 1900,
        "time_remaining": 125.0,
        "won": True,
    }
    body.update(overrides)
    return body


class TestValidateRequest:
    def test_derived_amounts(self) -> None:
        req = ValidateRequest(buy_in="0.55", rake="0.05", synthetic_opponent_count=9)
        assert req.buy_in_cents == 55
        assert req.rake_cents == 5
        assert req.entrants == 10
        assert req.pool_cents == 500

    def test_float_input_is_exact(self) -> None:
        req = ValidateRequest(buy_in=0.55, synthetic_opponent_count=1)
        assert req.buy_in == Decimal("0.55")

    @pytest.mark.parametrize("body", [
        {"buy_in": "0", "synthetic_opponent_count": 1},
        {"buy_in": "-1", "synthetic_opponent_count": 1},
        {"buy_in": "1.00", "rake": "-0.01", "synthetic_opponent_count": 1},
        {"buy_in": "1.00", "synthetic_opponent_count": 0},
        {"buy_in": "1.001", "synthetic_opponent_count": 1},
        {"buy_in": "0.50", "rake": "0.60", "synthetic_opponent_count": 1},
    ])
    def test_rejects(self, body) -> None:
        with pytest.raises(ValidationError):
            ValidateRequest.model_validate(body)


class TestCommitRequest:
    def test_valid(self) -> None:
        req = CommitRequest.model_validate(_commit())
        assert req.player_prize_cents == 235
        assert req.synthetic_prizes_cents == 265
        assert req.mode == "arena"

    def test_prizes_cannot_exceed_pool(self) -> None:
        with pytest.raises(ValidationError, match="prizes exceed the pool"):
            CommitRequest.model_validate(_commit(player_prize="3.00"))

    def test_rank_within_field(self) -> None:
        with pytest.raises(ValidationError, match="final_rank"):
            CommitRequest.model_validate(_commit(final_rank=11))

    def test_null_time_remaining(self) -> None:
        req = CommitRequest.model_validate(_commit(time_remaining=None, won=False))
        assert req.time_remaining is None

    def test_round_id_required(self) -> None:
        body = _commit()
        del body["round_id"]
        with pytest.raises(ValidationError, match="round_id"):
            CommitRequest.model_validate(body)
        with pytest.raises(ValidationError):
            CommitRequest.model_validate(_commit(round_id=""))

    def test_unknown_mode(self) -> None:
        with pytest.raises(ValidationError):
            CommitRequest.model_validate(_commit(mode="casino"))


class TestPlayerStats:
    def test_win_updates_best_time(self) -> None:
        stats = PlayerStats().record(True, 100.0).record(True, 80.0).record(True, 140.0)
        assert stats.races_played == 3
        assert stats.wins == 3
        assert stats.best_time_remaining == 140.0

    def test_loss_keeps_best_time(self) -> None:
        stats = PlayerStats().record(True, 50.0).record(False, 170.0)
        assert stats.races_played == 2
        assert stats.wins == 1
        assert stats.best_time_remaining == 50.0
