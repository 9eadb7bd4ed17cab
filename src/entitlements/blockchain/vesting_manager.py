from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable, Sequence

from ..core import entitlement_metrics as metrics
from ..core.capabilities import (
    AccessGate,
    ReentrancyGuard,
    call_collaborator,
    derive_address,
    normalize_address,
    read_clock,
)
from ..core.entitlement_exceptions import (
    ArgumentError,
    NothingToWithdraw,
    ProtectedCurrencyError,
)
from ..core.events import OTHER_TOKENS_WITHDRAWN, TOKENS_UNLOCKED, EventEmitter, EventListener
from ..core.protocols import TokenService

logger = logging.getLogger("entitlements.blockchain.vesting_manager")


@dataclass(frozen=True)
class VestingPeriod:
    block_length: int
    token_amount: int


@dataclass
class VestingLedger:
    """The only mutable state of a schedule; written once per successful unlock."""

    amount_withdrawn: int = 0


def _validate_positive_ints(values: Sequence[int], field: str) -> None:
    for index, value in enumerate(values):
        if isinstance(value, bool) or not isinstance(value, int):
            raise ArgumentError(f"{field}[{index}] must be an integer, got {value!r}")
        if value <= 0:
            raise ArgumentError(f"{field}[{index}] must be positive, got {value}")


class VestingSchedule:
    """
    Block-height-gated vesting of a token balance.

    The schedule releases ``token_amounts[i]`` once the chain reaches
    ``start_block + sum(block_lengths[:i + 1])``. Once ``end_block`` is
    reached, whatever balance the contract still holds becomes withdrawable.
    Only the owner can unlock.
    """

    def __init__(
        self,
        token: TokenService,
        start_block: int,
        end_block: int,
        block_lengths: Sequence[int],
        token_amounts: Sequence[int],
        period_count: int,
        owner: str | None = None,
        access_gate: AccessGate | None = None,
        block_height_provider: Callable[[], int] | None = None,
        address: str | None = None,
        listeners: list[EventListener] | None = None,
    ):
        if not isinstance(token, TokenService):
            raise ArgumentError("token must provide address, balance_of, transfer and approve")
        if isinstance(period_count, bool) or not isinstance(period_count, int) or period_count <= 0:
            raise ArgumentError(f"Period count must be a positive integer, got {period_count!r}")
        if len(block_lengths) != period_count or len(token_amounts) != period_count:
            raise ArgumentError(
                "Period arrays must both have period_count entries",
                details={
                    "period_count": period_count,
                    "block_lengths": len(block_lengths),
                    "token_amounts": len(token_amounts),
                },
            )
        _validate_positive_ints(block_lengths, "block_lengths")
        _validate_positive_ints(token_amounts, "token_amounts")
        for name, value in (("start_block", start_block), ("end_block", end_block)):
            if isinstance(value, bool) or not isinstance(value, int) or value < 0:
                raise ArgumentError(f"{name} must be a non-negative integer, got {value!r}")
        if end_block <= start_block:
            raise ArgumentError(f"End block ({end_block}) must be after start block ({start_block}).")
        if access_gate is None:
            if owner is None:
                raise ArgumentError("Either owner or access_gate is required.")
            access_gate = AccessGate(owner)

        self.token = token
        self.start_block = start_block
        self.end_block = end_block
        self.periods: tuple[VestingPeriod, ...] = tuple(
            VestingPeriod(length, amount) for length, amount in zip(block_lengths, token_amounts)
        )
        self.ledger = VestingLedger()

        self._gate = access_gate
        self._guard = ReentrancyGuard("vesting")
        self._block_height_provider = block_height_provider

        if address is None:
            address = derive_address("vesting", token.address, start_block, end_block, access_gate.owner)
        self.address = normalize_address(address)
        self._events = EventEmitter(self.address, listeners)

        logger.info(
            "Vesting schedule created",
            extra={
                "event": "vesting.created",
                "address": self.address[:10],
                "start_block": start_block,
                "end_block": end_block,
                "periods": period_count,
                "total_scheduled": self.total_scheduled,
            },
        )

    # ==================== Views ====================

    @property
    def owner(self) -> str:
        return self._gate.owner

    @property
    def amount_withdrawn(self) -> int:
        return self.ledger.amount_withdrawn

    @property
    def total_scheduled(self) -> int:
        return sum(period.token_amount for period in self.periods)

    @property
    def events(self):
        return self._events.events

    def subscribe(self, listener: EventListener) -> None:
        self._events.subscribe(listener)

    def total_unlocked(self, block_height: int) -> int:
        """
        Cumulative amount the schedule has released by ``block_height``.

        Walks the periods in order and stops at the first boundary not yet reached.
        """
        boundary = self.start_block
        total = 0
        for period in self.periods:
            boundary += period.block_length
            if block_height < boundary:
                break
            total += period.token_amount
        return total

    def releasable_amount(self, current_block: int | None = None) -> int:
        """What unlock() would pay right now, or 0."""
        height = self._current_block(current_block)
        return max(0, self._payable(height, self._balance()))

    def get_status(self, current_block: int | None = None) -> dict[str, Any]:
        height = self._current_block(current_block)
        return {
            "address": self.address,
            "token": self.token.address,
            "owner": self.owner,
            "start_block": self.start_block,
            "end_block": self.end_block,
            "current_block": height,
            "total_scheduled": self.total_scheduled,
            "total_unlocked": self.total_unlocked(height),
            "amount_withdrawn": self.ledger.amount_withdrawn,
            "fully_vested": height >= self.end_block,
        }

    # ==================== Owner Operations ====================

    def unlock(self, caller: str, current_block: int | None = None) -> int:
        """
        Release everything unlocked since the last withdrawal to the owner.

        Args:
            caller: Address invoking the unlock (must be the owner)
            current_block: Chain height; defaults to the injected height provider

        Returns:
            The amount transferred

        Raises:
            AuthorizationError: If caller is not the owner
            NothingToWithdraw: If nothing new is unlocked or the contract holds no tokens
            CollaboratorError: If the token transfer fails (the ledger is left untouched)
        """
        with self._guard.locked("unlock"):
            self._gate.require_privileged(caller)
            height = self._current_block(current_block)

            amount = self._payable(height, self._balance())
            if amount <= 0:
                metrics.record_rejection("vesting", "nothing_to_withdraw")
                logger.warning(
                    "Nothing to unlock",
                    extra={
                        "event": "vesting.nothing_to_withdraw",
                        "address": self.address[:10],
                        "block": height,
                        "amount_withdrawn": self.ledger.amount_withdrawn,
                    },
                )
                raise NothingToWithdraw(
                    "Unlock: Nothing to withdraw",
                    details={"block": height, "amount_withdrawn": self.ledger.amount_withdrawn},
                )

            withdrawn_before = self.ledger.amount_withdrawn
            self.ledger.amount_withdrawn = withdrawn_before + amount
            try:
                call_collaborator("token", self.token.transfer, self.address, self.owner, amount)
            except Exception:
                self.ledger.amount_withdrawn = withdrawn_before
                raise

            self._events.emit(TOKENS_UNLOCKED, block_number=height, amount=amount)
            metrics.record_unlock(amount)
            logger.info(
                "Tokens unlocked",
                extra={
                    "event": "vesting.unlocked",
                    "address": self.address[:10],
                    "block": height,
                    "amount": amount,
                    "amount_withdrawn": self.ledger.amount_withdrawn,
                },
            )
            return amount

    def withdraw_other_currency(self, caller: str, currency: TokenService) -> int:
        """
        Sweep the full balance of any token other than the vested one to the owner.

        Raises:
            ProtectedCurrencyError: If ``currency`` is the vested token
            NothingToWithdraw: If the contract holds none of ``currency``
        """
        with self._guard.locked("withdraw_other_currency"):
            self._gate.require_privileged(caller)
            currency_address = normalize_address(currency.address, "currency address")
            if currency_address == normalize_address(self.token.address, "token address"):
                raise ProtectedCurrencyError("Owner: Cannot withdraw the vested token")

            balance = call_collaborator("currency", currency.balance_of, self.address)
            if balance <= 0:
                metrics.record_rejection("vesting", "nothing_to_withdraw")
                raise NothingToWithdraw(
                    "Owner: Nothing to withdraw",
                    details={"currency": currency.address},
                )

            call_collaborator("currency", currency.transfer, self.address, self.owner, balance)

            self._events.emit(OTHER_TOKENS_WITHDRAWN, currency=currency_address, amount=balance)
            metrics.record_owner_withdrawal("other_currency", balance)
            logger.info(
                "Other currency withdrawn",
                extra={
                    "event": "vesting.other_currency_withdrawn",
                    "address": self.address[:10],
                    "currency": currency.address[:10],
                    "amount": balance,
                },
            )
            return balance

    # ==================== Helpers ====================

    def _payable(self, height: int, balance: int) -> int:
        if height >= self.end_block:
            return balance
        return min(self.total_unlocked(height) - self.ledger.amount_withdrawn, balance)

    def _balance(self) -> int:
        return call_collaborator("token", self.token.balance_of, self.address)

    def _current_block(self, current_block: int | None) -> int:
        if current_block is not None:
            return read_clock(lambda: current_block, "current_block")
        if self._block_height_provider is None:
            raise ArgumentError("No current_block given and no block_height_provider configured.")
        return read_clock(self._block_height_provider, "block_height_provider")
