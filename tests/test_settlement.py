"""Tests for the two-phase settlement service."""

from __future__ import annotations

import itertools
from decimal import Decimal
from unittest.mock import patch

import pytest

from errors import (
    AlreadySettledError,
    ContractError,
    InsufficientFundsError,
    PoolInsufficientError,
    SettlementError,
    StaleBalanceError,
)
from ledger import BOT_POOL, RAKE_POOL, InMemoryAccountStore
from schemas import CommitRequest, PlayerStats, ValidateRequest
from settlement import SagaStep, SettlementService, run_saga

VALIDATE = ValidateRequest(buy_in="0.55", rake="0.05", synthetic_opponent_count=9)

_round_ids = itertools.count(1)


def _commit(**overrides) -> CommitRequest:
    body = {
        "round_id": f"round-{next(_round_ids)}",
        "buy_in": "0.55",
        "rake": "0.05",
        "synthetic_opponent_count": 9,
        "final_rank": 1,
        "player_prize": "2.35",
        "synthetic_prizes_total": "2.63",
        "attempts": 4,
        "score": 1900,
        "time_remaining": 125.0,
        "won": True,
    }
    body.update(overrides)
    return CommitRequest.model_validate(body)


def _total(store: InMemoryAccountStore) -> int:
    return store.balance("player") + store.balance(BOT_POOL) + store.balance(RAKE_POOL)


class TestValidate:
    def test_accepts_and_reports_pool(self, service, store) -> None:
        before = store.balances()
        response = service.validate("player", VALIDATE)
        assert response.accepted
        assert response.pool_total == Decimal("5.00")
        assert store.balances() == before

    def test_player_short(self, store, service) -> None:
        store.adjust("player", -950)
        response = service.validate("player", VALIDATE)
        assert not response.accepted
        assert response.reason == "insufficient_funds"
        assert response.shortfall == Decimal("0.05")

    def test_pool_short_is_distinguishable(self, store, service) -> None:
        store.adjust(BOT_POOL, -10000 + 400)
        response = service.validate("player", VALIDATE)
        assert not response.accepted
        assert response.reason == "pool_insufficient"
        assert response.shortfall == Decimal("0.95")

    def test_check_funds_raises_typed_errors(self, store, service) -> None:
        with pytest.raises(InsufficientFundsError) as exc_info:
            service.check_funds("stranger", VALIDATE)
        assert not isinstance(exc_info.value, PoolInsufficientError)
        store.adjust(BOT_POOL, -10000)
        with pytest.raises(PoolInsufficientError):
            service.check_funds("player", VALIDATE)


class TestCommit:
    def test_balances_after_commit(self, service, store) -> None:
        response = service.commit("player", _commit())
        assert response.accepted
        assert response.new_player_balance == Decimal("11.80")
        assert store.balance("player") == 1000 - 55 + 235
        assert store.balance(BOT_POOL) == 10000 - 9 * 55 + 263
        assert store.balance(RAKE_POOL) == 10 * 5 + 2

    def test_zero_sum(self, service, store) -> None:
        before = _total(store)
        service.commit("player", _commit())
        service.commit("player", _commit(final_rank=10, player_prize="0",
                                         synthetic_prizes_total="4.98", won=False,
                                         time_remaining=None))
        assert _total(store) == before

    def test_rake_pool_grows_by_rake_and_residual_only(self, service, store) -> None:
        service.commit("player", _commit(player_prize="0", synthetic_prizes_total="0"))
        assert store.balance(RAKE_POOL) == 50 + 500

    def test_records_history_and_stats(self, service, store) -> None:
        service.commit("player", _commit())
        service.commit("player", _commit(final_rank=4, player_prize="0", won=False,
                                         time_remaining=None, synthetic_prizes_total="4.98"))
        history = store.history("player")
        assert [r.rank for r in history] == [1, 4]
        assert history[0].prize_won == Decimal("2.35")
        assert history[0].pool == Decimal("5.00")
        assert history[0].mode == "arena"
        assert store.stats("player") == PlayerStats(
            races_played=2, wins=1, best_time_remaining=125.0
        )

    def test_insufficient_player_funds_rejected_before_mutation(self, service, store) -> None:
        store.adjust("player", -1000)
        before = store.balances()
        response = service.commit("player", _commit())
        assert not response.accepted
        assert response.reason == "insufficient_funds"
        assert response.new_player_balance is None
        assert store.balances() == before
        assert store.history() == []

    def test_pool_insufficient_rejected_before_mutation(self, service, store) -> None:
        store.adjust(BOT_POOL, -10000)
        before = store.balances()
        response = service.commit("player", _commit())
        assert response.reason == "pool_insufficient"
        assert store.balances() == before

    def test_stale_balance_after_validate(self, service, store) -> None:
        snapshot = service.validate("player", VALIDATE)
        assert snapshot.accepted
        store.adjust("player", -990)
        with pytest.raises(StaleBalanceError) as exc_info:
            service.settle("player", _commit(), snapshot)
        assert exc_info.value.shortfall == 45
        assert service.commit("player", _commit(), snapshot).reason == "stale_balance"


class TestAtomicity:
    def _fail_on(self, store, account, sign):
        real = store.adjust

        def adjust(name, delta):
            if name == account and (delta > 0) == (sign > 0) and delta != 0:
                raise OSError("storage partition unavailable")
            return real(name, delta)
        return adjust

    def _fail_house_credits(self, store):
        real = store.adjust

        def adjust(name, delta):
            if name in (RAKE_POOL, BOT_POOL) and delta > 0:
                raise OSError("storage partition unavailable")
            return real(name, delta)
        return adjust

    def test_failure_after_pool_debit_restores_balances(self, service, store) -> None:
        before = store.balances()
        with patch.object(store, "adjust", side_effect=self._fail_on(store, RAKE_POOL, +1)):
            with pytest.raises(SettlementError) as exc_info:
                service.settle("player", _commit())
        assert exc_info.value.step == f"credit {RAKE_POOL}"
        assert store.balance("player") == before["player"]
        assert store.balance(BOT_POOL) == before[BOT_POOL]
        assert store.balance(RAKE_POOL) == 0
        assert store.history() == []

    def test_failure_on_late_credit_reverses_everything(self, service, store) -> None:
        before = dict(store.balances())
        with patch.object(store, "save_stats", side_effect=OSError("boom")):
            response = service.commit("player", _commit())
        assert not response.accepted
        assert response.reason == "settlement_failed"
        after = store.balances()
        assert all(after.get(k, 0) == before.get(k, 0) for k in set(before) | set(after))
        assert store.stats("player") == PlayerStats()

    def test_history_failure_restores_stats(self, service, store) -> None:
        with patch.object(store, "append_history", side_effect=OSError("boom")):
            with pytest.raises(SettlementError, match="append history"):
                service.settle("player", _commit())
        assert store.stats("player") == PlayerStats()
        assert store.balance("player") == 1000

    def test_failed_commit_leaves_round_open(self, service, store) -> None:
        request = _commit()
        with patch.object(store, "append_history", side_effect=OSError("boom")):
            assert service.commit("player", request).reason == "settlement_failed"
        assert not store.is_settled(request.round_id)
        assert service.commit("player", request).accepted

    def test_failed_undo_is_reported(self, service, store) -> None:
        with patch.object(store, "adjust", side_effect=self._fail_house_credits(store)):
            with pytest.raises(SettlementError) as exc_info:
                service.settle("player", _commit())
        err = exc_info.value
        assert err.compensation_failed
        assert err.reason == "compensation_failed"
        assert err.step == f"credit {RAKE_POOL}"
        assert err.still_applied == ("mark round settled", "debit player", f"debit {BOT_POOL}")
        assert store.balance(BOT_POOL) == 10000 - 9 * 55

    def test_failed_undo_surfaces_as_response(self, service, store) -> None:
        with patch.object(store, "adjust", side_effect=self._fail_house_credits(store)):
            response = service.commit("player", _commit())
        assert not response.accepted
        assert response.reason == "compensation_failed"


class TestSettledOnce:
    def test_same_round_twice_is_rejected(self, service, store) -> None:
        request = _commit()
        assert service.commit("player", request).accepted
        balances = store.balances()
        response = service.commit("player", request)
        assert not response.accepted
        assert response.reason == "already_settled"
        assert response.new_player_balance is None
        assert store.balances() == balances
        assert len(store.history("player")) == 1
        assert store.stats("player").races_played == 1

    def test_settle_raises(self, service) -> None:
        request = _commit()
        service.settle("player", request)
        with pytest.raises(AlreadySettledError) as exc_info:
            service.settle("player", request)
        assert exc_info.value.round_id == request.round_id

    def test_history_carries_round_id(self, service, store) -> None:
        request = _commit()
        service.commit("player", request)
        assert store.history("player")[0].round_id == request.round_id


class TestHouseAccounts:
    @pytest.mark.parametrize("account", [BOT_POOL, RAKE_POOL, "", "  "])
    def test_commit_rejected(self, service, store, account) -> None:
        before = store.balances()
        with pytest.raises(ContractError):
            service.commit(account, _commit(player_prize="5.00", synthetic_prizes_total="0"))
        assert store.balances() == before
        assert store.stats(BOT_POOL) == PlayerStats()
        assert store.history() == []

    @pytest.mark.parametrize("account", [BOT_POOL, RAKE_POOL])
    def test_validate_rejected(self, service, account) -> None:
        with pytest.raises(ContractError, match="house account"):
            service.validate(account, VALIDATE)


class TestRecordResult:
    def _record(self, service, round_id="race-1:player", **overrides):
        kwargs = {"mode": "official", "won": True, "attempts": 3, "score": 2000,
                  "time_remaining": 90.0}
        kwargs.update(overrides)
        return service.record_result("player", round_id, **kwargs)

    def test_updates_stats_and_history_without_moving_money(self, service, store) -> None:
        balances = store.balances()
        stats = self._record(service, buy_in=Decimal("1.10"), pool=Decimal("3.00"))
        assert stats == PlayerStats(races_played=1, wins=1, best_time_remaining=90.0)
        record = store.history("player")[0]
        assert record.mode == "official"
        assert record.round_id == "race-1:player"
        assert record.prize_won == Decimal("0.00")
        assert record.pool == Decimal("3.00")
        assert store.balances() == balances

    def test_recorded_once(self, service, store) -> None:
        self._record(service)
        with pytest.raises(AlreadySettledError):
            self._record(service, won=False)
        assert store.stats("player").races_played == 1
        assert len(store.history("player")) == 1

    def test_history_failure_leaves_round_open(self, service, store) -> None:
        with patch.object(store, "append_history", side_effect=OSError("boom")):
            with pytest.raises(SettlementError, match="append history"):
                self._record(service)
        assert not store.is_settled("race-1:player")
        assert store.stats("player") == PlayerStats()

    def test_house_account_rejected(self, service) -> None:
        with pytest.raises(ContractError, match="house account"):
            service.record_result(RAKE_POOL, "race-1:rake", mode="official", won=True,
                                  attempts=1, score=1, time_remaining=1.0)


class TestRunSaga:
    def test_compensates_in_reverse_order(self) -> None:
        log: list[str] = []

        def fail():
            raise RuntimeError("nope")

        steps = [
            SagaStep("one", lambda: log.append("do one"), lambda: log.append("undo one")),
            SagaStep("two", lambda: log.append("do two"), lambda: log.append("undo two")),
            SagaStep("three", fail, lambda: log.append("undo three")),
        ]
        with pytest.raises(SettlementError) as exc_info:
            run_saga(steps)
        assert exc_info.value.step == "three"
        assert isinstance(exc_info.value.cause, RuntimeError)
        assert log == ["do one", "do two", "undo two", "undo one"]

    def test_failed_undo_names_steps_left_applied(self) -> None:
        def fail():
            raise RuntimeError("nope")

        steps = [
            SagaStep("one", lambda: None, lambda: None),
            SagaStep("two", lambda: None, fail),
            SagaStep("three", lambda: None),
            SagaStep("four", fail),
        ]
        with pytest.raises(SettlementError) as exc_info:
            run_saga(steps)
        err = exc_info.value
        assert err.step == "four"
        assert err.compensation_failed
        assert err.still_applied == ("one", "two", "three")
        assert isinstance(err.__cause__, RuntimeError)


class TestConcurrentCommits:
    def test_no_overdraft_under_contention(self) -> None:
        import threading

        store = InMemoryAccountStore({"player": 55 * 5, BOT_POOL: 100000})
        service = SettlementService(store)
        results = []

        def worker():
            results.append(service.commit(
                "player", _commit(final_rank=10, player_prize="0",
                                  synthetic_prizes_total="0", won=False)))

        threads = [threading.Thread(target=worker) for _ in range(12)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert sum(1 for r in results if r.accepted) == 5
        assert store.balance("player") == 0
        assert _total(store) == 55 * 5 + 100000
