"""Two-phase settlement of a round: read-only validate, then one commit.

The commit runs as a saga. Each step is an action with an explicit
inverse; when a step fails, the inverses of every applied step run in
reverse order before the failure is reported. The whole commit, from the
balance re-check to the last write, holds the store's transaction lock.
Every commit names its round, and a round id is settled at most once.

Per commit the sum of the player balance, the bot pool and the rake pool
is unchanged: the buy-ins debited equal the rake, the prizes and the
rounding residual credited.
"""

from __future__ import annotations

import datetime
from dataclasses import dataclass
from decimal import Decimal
from typing import Callable

from currency import from_cents
from errors import (
    AlreadySettledError,
    ContractError,
    InsufficientFundsError,
    PoolInsufficientError,
    SettlementError,
    StaleBalanceError,
)
from ledger import BOT_POOL, HOUSE_ACCOUNTS, RAKE_POOL, AccountStore
from log import VERBOSE, get_logger
from schemas import (
    CommitRequest,
    CommitResponse,
    GameHistoryRecord,
    PlayerStats,
    ValidateRequest,
    ValidateResponse,
)

logger = get_logger("settlement")


@dataclass(frozen=True)
class SagaStep:
    name: str
    action: Callable[[], object]
    compensate: Callable[[], object] | None = None


def run_saga(steps: list[SagaStep]) -> None:
    """Apply *steps* in order; on failure undo the applied ones and raise.

    Raises
    ------
    SettlementError
        After compensation, naming the step that failed. If an undo failed
        as well, ``compensation_failed`` is set.
    """
    applied: list[SagaStep] = []
    for step in steps:
        try:
            step.action()
        except Exception as exc:
            logger.error("step %s failed: %s; compensating %d step(s)",
                         step.name, exc, len(applied))
            _compensate(applied, step, exc)
            raise SettlementError(step.name, exc) from exc
        logger.log(VERBOSE, "applied %s", step.name)
        applied.append(step)


def _compensate(applied: list[SagaStep], failed: SagaStep, cause: BaseException) -> None:
    """Undo *applied* in reverse.

    Raises
    ------
    SettlementError
        With ``compensation_failed`` set when an undo itself fails; every
        applied step not yet reversed is listed in ``still_applied``.
    """
    undone: set[int] = set()
    for i in reversed(range(len(applied))):
        step = applied[i]
        if step.compensate is None:
            continue
        try:
            step.compensate()
        except Exception as exc:
            still_applied = tuple(s.name for j, s in enumerate(applied) if j not in undone)
            logger.critical(
                "compensation of %s failed: %s; still applied: %s",
                step.name, exc, ", ".join(still_applied),
            )
            raise SettlementError(
                failed.name, cause, compensation_failed=True, still_applied=still_applied
            ) from exc
        logger.warning("compensated %s", step.name)
        undone.add(i)


class SettlementService:
    """The only writer of account balances.

    Parameters
    ----------
    store : AccountStore
        Where balances, stats and history live.
    clock : callable
        Returns the timestamp stamped on history records.
    """

    def __init__(
        self,
        store: AccountStore,
        clock: Callable[[], datetime.datetime] | None = None,
    ) -> None:
        self.store = store
        self._clock = clock or (lambda: datetime.datetime.now(datetime.timezone.utc))

    @staticmethod
    def check_player(player_id: str) -> None:
        """Reject ids that are empty or name a house account."""
        if not player_id or not player_id.strip():
            raise ContractError("player_id must not be empty")
        if player_id in HOUSE_ACCOUNTS:
            raise ContractError(f"{player_id!r} is a house account, not a player")

    # ------------------------------------------------------------------
    # Validate
    # ------------------------------------------------------------------

    def check_funds(self, player_id: str, request: ValidateRequest) -> None:
        """Raise if the player or the bot pool cannot cover the buy-ins."""
        required = request.buy_in_cents
        available = self.store.balance(player_id)
        if available < required:
            raise InsufficientFundsError(player_id, required, available)
        pool_required = request.synthetic_opponent_count * request.buy_in_cents
        pool_available = self.store.balance(BOT_POOL)
        if pool_available < pool_required:
            raise PoolInsufficientError(BOT_POOL, pool_required, pool_available)

    def validate(self, player_id: str, request: ValidateRequest) -> ValidateResponse:
        """Pre-play check. Never mutates anything."""
        self.check_player(player_id)
        pool_total = from_cents(request.pool_cents)
        try:
            self.check_funds(player_id, request)
        except InsufficientFundsError as exc:
            logger.info("validate rejected for %s: %s", player_id, exc)
            return ValidateResponse(
                accepted=False,
                pool_total=pool_total,
                reason=exc.reason,
                shortfall=from_cents(exc.shortfall),
            )
        return ValidateResponse(accepted=True, pool_total=pool_total)

    # ------------------------------------------------------------------
    # Commit
    # ------------------------------------------------------------------

    def settle(
        self,
        player_id: str,
        request: CommitRequest,
        snapshot: ValidateResponse | None = None,
    ) -> int:
        """Apply a round's outcome. Returns the player's new balance in cents.

        Raises
        ------
        ContractError
            *player_id* is empty or a house account.
        AlreadySettledError
            ``request.round_id`` was settled before.
        InsufficientFundsError, PoolInsufficientError
            Funds re-checked under the lock do not cover the round.
        StaleBalanceError
            Same, although *snapshot* reported the round as affordable.
        SettlementError
            A step failed; every applied step was reversed.
        """
        self.check_player(player_id)
        store = self.store
        with store.transaction():
            if store.is_settled(request.round_id):
                raise AlreadySettledError(request.round_id)
            try:
                self.check_funds(player_id, request)
            except InsufficientFundsError as exc:
                if snapshot is not None and snapshot.accepted:
                    raise StaleBalanceError(exc.account, exc.required, exc.available) from exc
                raise

            buy_in = request.buy_in_cents
            bots = request.synthetic_opponent_count
            rake_total = request.rake_cents * request.entrants
            player_prize = request.player_prize_cents
            bot_prizes = request.synthetic_prizes_cents
            residual = request.pool_cents - player_prize - bot_prizes
            record = GameHistoryRecord(
                player_id=player_id,
                mode=request.mode,
                round_id=request.round_id,
                won=request.won,
                attempts=request.attempts,
                score=request.score,
                time_remaining=request.time_remaining,
                rank=request.final_rank,
                prize_won=request.player_prize,
                buy_in=request.buy_in,
                pool=from_cents(request.pool_cents),
                timestamp=self._clock(),
            )

            def move(account: str, delta: int, what: str = "") -> SagaStep:
                return SagaStep(
                    name=f"{'credit' if delta >= 0 else 'debit'} {account}{what}",
                    action=lambda: store.adjust(account, delta),
                    compensate=lambda: store.adjust(account, -delta),
                )

            steps = [
                self._mark_step(request.round_id),
                move(player_id, -buy_in),
                move(BOT_POOL, -bots * buy_in),
                move(RAKE_POOL, rake_total),
                move(RAKE_POOL, residual, " residual"),
                move(player_id, player_prize),
                move(BOT_POOL, bot_prizes),
                *self._record_steps(record),
            ]
            run_saga(steps)
            new_balance = store.balance(player_id)

        logger.info(
            "settled %s round %s: rank %d, prize %d, rake %d, residual %d, balance %d",
            player_id, request.round_id, request.final_rank, player_prize,
            rake_total, residual, new_balance,
        )
        return new_balance

    def commit(
        self,
        player_id: str,
        request: CommitRequest,
        snapshot: ValidateResponse | None = None,
    ) -> CommitResponse:
        """Like ``settle`` but reports expected failures as a response."""
        try:
            balance = self.settle(player_id, request, snapshot)
        except InsufficientFundsError as exc:
            logger.info("commit rejected for %s: %s", player_id, exc)
            return CommitResponse(
                accepted=False, reason=exc.reason, shortfall=from_cents(exc.shortfall)
            )
        except AlreadySettledError as exc:
            logger.info("commit rejected for %s: %s", player_id, exc)
            return CommitResponse(accepted=False, reason=exc.reason)
        except SettlementError as exc:
            return CommitResponse(accepted=False, reason=exc.reason)
        return CommitResponse(accepted=True, new_player_balance=from_cents(balance))

    # ------------------------------------------------------------------
    # Results without money
    # ------------------------------------------------------------------

    def record_result(
        self,
        player_id: str,
        round_id: str,
        *,
        mode: str,
        won: bool,
        attempts: int,
        score: int,
        time_remaining: float | None,
        buy_in: Decimal = Decimal("0.00"),
        pool: Decimal = Decimal("0.00"),
        rank: int | None = None,
    ) -> PlayerStats:
        """Update stats and history for a round that moves no money.

        *round_id* is marked settled in the same saga, so a result is
        recorded at most once. Returns the player's new stats.

        Raises
        ------
        AlreadySettledError
            A result for *round_id* was recorded before.
        """
        self.check_player(player_id)
        if not round_id:
            raise ContractError("round_id must not be empty")
        store = self.store
        with store.transaction():
            if store.is_settled(round_id):
                raise AlreadySettledError(round_id)
            record = GameHistoryRecord(
                player_id=player_id,
                mode=mode,
                round_id=round_id,
                won=won,
                attempts=attempts,
                score=score,
                time_remaining=time_remaining,
                rank=rank,
                prize_won=Decimal("0.00"),
                buy_in=buy_in,
                pool=pool,
                timestamp=self._clock(),
            )
            run_saga([self._mark_step(round_id), *self._record_steps(record)])
            stats = store.stats(player_id)
        logger.info("recorded %s result for %s in round %s", mode, player_id, round_id)
        return stats

    def _mark_step(self, round_id: str) -> SagaStep:
        return SagaStep(
            name="mark round settled",
            action=lambda: self.store.mark_settled(round_id),
            compensate=lambda: self.store.unmark_settled(round_id),
        )

    def _record_steps(self, record: GameHistoryRecord) -> list[SagaStep]:
        store = self.store
        player_id = record.player_id
        previous = store.stats(player_id)
        return [
            SagaStep(
                name="update stats",
                action=lambda: store.save_stats(
                    player_id, previous.record(record.won, record.time_remaining)
                ),
                compensate=lambda: store.save_stats(player_id, previous),
            ),
            SagaStep(name="append history", action=lambda: store.append_history(record)),
        ]
