"""Exception hierarchy shared by the engine, the orchestrator and settlement."""

from __future__ import annotations


class ArenaError(Exception):
    """Base class for every error raised by this project."""


class ContractError(ArenaError, ValueError):
    """A caller broke a precondition (wrong length, unknown symbol, ...).

    These are programming errors, never gameplay outcomes.
    """


class RoundClosedError(ContractError):
    """A guess was submitted to a round that is not in progress."""


class InsufficientFundsError(ArenaError):
    """An account cannot cover the amount a settlement needs.

    Attributes
    ----------
    account : str
        Account that came up short.
    required, available : int
        Amounts in cents.
    """

    reason = "insufficient_funds"

    def __init__(self, account: str, required: int, available: int) -> None:
        self.account = account
        self.required = required
        self.available = available
        super().__init__(
            f"{account}: requires {required} cents, has {available} "
            f"(short {self.shortfall})"
        )

    @property
    def shortfall(self) -> int:
        return max(0, self.required - self.available)


class PoolInsufficientError(InsufficientFundsError):
    """The shared bot-funding pool cannot cover the synthetic buy-ins."""

    reason = "pool_insufficient"


class StaleBalanceError(InsufficientFundsError):
    """A balance that passed validation no longer covers the commit."""

    reason = "stale_balance"


class AlreadySettledError(ArenaError):
    """A commit names a round id that was settled before."""

    reason = "already_settled"

    def __init__(self, round_id: str) -> None:
        self.round_id = round_id
        super().__init__(f"round {round_id!r} was already settled")


class SettlementError(ArenaError):
    """A commit step failed.

    Normally raised after every applied step was reversed. When one of the
    reversals failed too, ``compensation_failed`` is set and
    ``still_applied`` names the steps whose effects remain, in the order
    they were applied.
    """

    def __init__(
        self,
        step: str,
        cause: BaseException,
        compensation_failed: bool = False,
        still_applied: tuple[str, ...] = (),
    ) -> None:
        self.step = step
        self.cause = cause
        self.compensation_failed = compensation_failed
        self.still_applied = still_applied
        message = f"settlement step {step!r} failed: {cause}"
        if compensation_failed:
            message += f"; still applied: {', '.join(still_applied)}"
        super().__init__(message)

    @property
    def reason(self) -> str:
        return "compensation_failed" if self.compensation_failed else "settlement_failed"


class StrategistError(ArenaError):
    """A bot produced an illegal move."""
