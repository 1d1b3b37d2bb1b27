"""Tests for the account stores."""

from __future__ import annotations

import datetime
import json
from decimal import Decimal
from pathlib import Path
from unittest.mock import patch

import pytest

from errors import AlreadySettledError, ContractError, InsufficientFundsError
from ledger import BOT_POOL, InMemoryAccountStore, JsonFileAccountStore
from schemas import GameHistoryRecord, PlayerStats


def _record(player_id: str = "player", rank: int = 1) -> GameHistoryRecord:
    return GameHistoryRecord(
        player_id=player_id,
        mode="arena",
        won=True,
        attempts=4,
        score=1900,
        time_remaining=130.0,
        rank=rank,
        prize_won=Decimal("1.35"),
        buy_in=Decimal("0.55"),
        pool=Decimal("5.00"),
        timestamp=datetime.datetime(2024, 1, 1, tzinfo=datetime.timezone.utc),
    )


@pytest.fixture(params=["memory", "file"])
def any_store(request, tmp_path: Path):
    if request.param == "memory":
        return InMemoryAccountStore()
    return JsonFileAccountStore(tmp_path / "accounts")


class TestBalances:
    def test_unknown_account_is_zero(self, any_store) -> None:
        assert any_store.balance("nobody") == 0

    def test_adjust(self, any_store) -> None:
        any_store.deposit("player", 500)
        assert any_store.adjust("player", -200) == 300
        assert any_store.balances() == {"player": 300}

    def test_never_negative(self, any_store) -> None:
        any_store.deposit(BOT_POOL, 100)
        with pytest.raises(InsufficientFundsError) as exc_info:
            any_store.adjust(BOT_POOL, -150)
        assert exc_info.value.shortfall == 50
        assert any_store.balance(BOT_POOL) == 100

    def test_rejects_fractional_cents(self, any_store) -> None:
        with pytest.raises(ContractError):
            any_store.adjust("player", 1.5)

    def test_rejects_negative_deposit(self, any_store) -> None:
        with pytest.raises(ContractError):
            any_store.deposit("player", -1)


class TestStatsAndHistory:
    def test_default_stats(self, any_store) -> None:
        assert any_store.stats("player") == PlayerStats()

    def test_save_stats(self, any_store) -> None:
        stats = PlayerStats().record(True, 120.0)
        any_store.save_stats("player", stats)
        assert any_store.stats("player") == stats

    def test_history_in_write_order_and_filtered(self, any_store) -> None:
        any_store.append_history(_record("player", 1))
        any_store.append_history(_record("other", 2))
        any_store.append_history(_record("player", 3))
        assert [r.rank for r in any_store.history()] == [1, 2, 3]
        assert [r.rank for r in any_store.history("player")] == [1, 3]


class TestSettledRounds:
    def test_mark_once(self, any_store) -> None:
        assert not any_store.is_settled("round-1")
        any_store.mark_settled("round-1")
        assert any_store.is_settled("round-1")
        with pytest.raises(AlreadySettledError):
            any_store.mark_settled("round-1")

    def test_unmark(self, any_store) -> None:
        any_store.mark_settled("round-1")
        any_store.unmark_settled("round-1")
        any_store.unmark_settled("round-2")
        assert not any_store.is_settled("round-1")


class TestJsonFileStore:
    def test_reload_from_disk(self, tmp_path: Path) -> None:
        store = JsonFileAccountStore(tmp_path)
        store.deposit("player", 1000)
        store.save_stats("player", PlayerStats(races_played=2, wins=1, best_time_remaining=90.0))
        store.append_history(_record())
        store.mark_settled("round-1")

        reopened = JsonFileAccountStore(tmp_path)
        assert reopened.is_settled("round-1")
        assert reopened.balance("player") == 1000
        assert reopened.stats("player").wins == 1
        assert reopened.history() == [_record()]

    def test_history_is_json_lines(self, tmp_path: Path) -> None:
        store = JsonFileAccountStore(tmp_path)
        store.append_history(_record())
        store.append_history(_record(rank=2))
        lines = (tmp_path / "history.jsonl").read_text(encoding="utf-8").splitlines()
        assert [json.loads(line)["rank"] for line in lines] == [1, 2]

    def test_failed_write_keeps_old_balance(self, tmp_path: Path) -> None:
        store = JsonFileAccountStore(tmp_path)
        store.deposit("player", 1000)
        with patch("ledger.os.replace", side_effect=OSError("disk full")):
            with pytest.raises(OSError):
                store.adjust("player", -100)
        assert store.balance("player") == 1000
        assert JsonFileAccountStore(tmp_path).balance("player") == 1000
        assert not list(tmp_path.glob("*.tmp"))
