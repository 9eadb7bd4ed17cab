"""
Round-based cumulative Merkle reward distributor.

Each round publishes a fresh Merkle root over ``(user, cumulative amount)``
leaves and a per-user cap. A user proves their lifetime entitlement as of
the current round and is paid the difference with what they already
received, either directly or as a deposit into the staking pool.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Sequence

from eth_utils import encode_hex

from ..core import config
from ..core import entitlement_metrics as metrics
from ..core.capabilities import (
    AccessGate,
    PauseFlag,
    ReentrancyGuard,
    call_collaborator,
    derive_address,
    normalize_address,
    read_clock,
)
from ..core.entitlement_exceptions import (
    AlreadyClaimed,
    AmountExceedsCap,
    ArgumentError,
    CooldownNotElapsed,
    InvalidProof,
    RootReused,
)
from ..core.events import (
    PAUSED,
    REWARDS_CLAIM,
    STAKING_POOL_UPDATE,
    TOKEN_WITHDRAWN_OWNER,
    UNPAUSED,
    UPDATE_LISTING_REWARDS,
    EventEmitter,
    EventListener,
)
from ..core.protocols import StakingSink, TokenService
from .merkle import ProofElement, as_bytes32, hash_leaf, verify_proof

logger = logging.getLogger("entitlements.blockchain.reward_distributor")


@dataclass
class DistributorState:
    """Persistent distributor fields; mutated only through RewardDistributor."""

    current_round: int = 0
    maximum_amount_per_user: int = 0
    merkle_root_of_round: dict[int, str] = field(default_factory=dict)
    used_roots: set[str] = field(default_factory=set)
    amount_claimed: dict[str, int] = field(default_factory=dict)
    claimed_in_round: dict[int, set[str]] = field(default_factory=dict)


class RewardDistributor:
    """
    Distributes cumulative rewards proven against the current round's Merkle root.

    Starts paused at round 0 with no root. The owner publishes rounds and
    unpauses; users claim at most once per round.
    """

    def __init__(
        self,
        token: TokenService,
        staking_sink: StakingSink,
        owner: str | None = None,
        access_gate: AccessGate | None = None,
        time_provider: Callable[[], int] | None = None,
        emergency_withdraw_buffer: int | None = None,
        address: str | None = None,
        listeners: list[EventListener] | None = None,
    ):
        if not isinstance(token, TokenService):
            raise ArgumentError("token must provide address, balance_of, transfer and approve")
        if not isinstance(staking_sink, StakingSink):
            raise ArgumentError("staking_sink must provide address and deposit_for")
        if access_gate is None:
            if owner is None:
                raise ArgumentError("Either owner or access_gate is required.")
            access_gate = AccessGate(owner)
        if emergency_withdraw_buffer is None:
            emergency_withdraw_buffer = config.EMERGENCY_WITHDRAW_BUFFER_SECONDS
        if isinstance(emergency_withdraw_buffer, bool) or not isinstance(emergency_withdraw_buffer, int) \
                or emergency_withdraw_buffer < 0:
            raise ArgumentError("Emergency withdraw buffer must be a non-negative integer.")

        self.token = token
        self.staking_sink = staking_sink
        self.emergency_withdraw_buffer = emergency_withdraw_buffer
        self.state = DistributorState()

        self._gate = access_gate
        self._guard = ReentrancyGuard("distributor")
        self._time_provider = time_provider or (lambda: int(time.time()))
        self._pause_flag = PauseFlag(paused=True, paused_at=self._now())

        if address is None:
            address = derive_address("distributor", token.address, staking_sink.address, access_gate.owner)
        self.address = normalize_address(address)
        self._events = EventEmitter(self.address, listeners, clock=self._now)

        logger.info(
            "Reward distributor created",
            extra={
                "event": "distributor.created",
                "address": self.address[:10],
                "token": token.address[:10],
                "staking_sink": staking_sink.address[:10],
            },
        )

    # ==================== Views ====================

    @property
    def owner(self) -> str:
        return self._gate.owner

    @property
    def current_round(self) -> int:
        return self.state.current_round

    @property
    def maximum_amount_per_user(self) -> int:
        return self.state.maximum_amount_per_user

    @property
    def paused(self) -> bool:
        return self._pause_flag.paused

    @property
    def last_paused_timestamp(self) -> int | None:
        return self._pause_flag.last_paused_timestamp

    @property
    def events(self):
        return self._events.events

    def subscribe(self, listener: EventListener) -> None:
        self._events.subscribe(listener)

    def merkle_root_of_round(self, round_id: int) -> str | None:
        return self.state.merkle_root_of_round.get(round_id)

    def is_root_used(self, root: ProofElement) -> bool:
        return encode_hex(as_bytes32(root, "root")) in self.state.used_roots

    def amount_claimed(self, user: str) -> int:
        return self.state.amount_claimed.get(normalize_address(user, "user"), 0)

    def has_claimed(self, round_id: int, user: str) -> bool:
        return normalize_address(user, "user") in self.state.claimed_in_round.get(round_id, set())

    def can_claim(self, user: str, amount: int, proof: Sequence[ProofElement]) -> tuple[bool, int]:
        """
        Check a cumulative claim against the current round only.

        Returns:
            (eligible, payable delta). The delta can legitimately be zero.
        """
        user_norm = normalize_address(user, "user")
        current_round = self.state.current_round

        leaf = hash_leaf(user_norm, amount)
        if not verify_proof(proof, self.state.merkle_root_of_round.get(current_round), leaf):
            return False, 0
        if user_norm in self.state.claimed_in_round.get(current_round, set()):
            return False, 0

        return True, max(0, amount - self.state.amount_claimed.get(user_norm, 0))

    def get_status(self) -> dict[str, Any]:
        return {
            "address": self.address,
            "token": self.token.address,
            "staking_sink": self.staking_sink.address,
            "owner": self.owner,
            "paused": self.paused,
            "last_paused_timestamp": self.last_paused_timestamp,
            "current_round": self.state.current_round,
            "current_root": self.state.merkle_root_of_round.get(self.state.current_round),
            "maximum_amount_per_user": self.state.maximum_amount_per_user,
            "rounds_published": len(self.state.used_roots),
            "users_with_claims": len(self.state.amount_claimed),
        }

    # ==================== User Operations ====================

    def claim(
        self,
        caller: str,
        amount: int,
        route_to_staking: bool,
        proof: Sequence[ProofElement],
    ) -> int:
        """
        Claim the unpaid part of a cumulative entitlement for the current round.

        Args:
            caller: The claiming user (the leaf's address)
            amount: Cumulative lifetime entitlement encoded in the leaf
            route_to_staking: Deposit the payout into the staking sink instead of transferring it
            proof: Sibling hashes from the leaf up to the current root

        Returns:
            The payable delta (may be 0)

        Raises:
            PauseStateError: If claims are paused
            AlreadyClaimed: If caller already claimed in this round
            InvalidProof: If the proof does not verify against the current root
            AmountExceedsCap: If ``amount`` is above the round's per-user maximum
            CollaboratorError: If the payout fails (no state is changed)
        """
        with self._guard.locked("claim"):
            self._pause_flag.require_not_paused()
            user = normalize_address(caller, "caller")
            current_round = self.state.current_round

            if user in self.state.claimed_in_round.get(current_round, set()):
                self._reject("already_claimed", user, current_round)
                raise AlreadyClaimed(
                    "Rewards: Already claimed",
                    details={"user": user, "round": current_round},
                )

            eligible, delta = self.can_claim(user, amount, proof)
            if not eligible:
                self._reject("invalid_proof", user, current_round)
                raise InvalidProof(
                    "Rewards: Invalid proof",
                    details={"user": user, "round": current_round, "amount": amount},
                )

            if amount > self.state.maximum_amount_per_user:
                self._reject("amount_exceeds_cap", user, current_round)
                raise AmountExceedsCap(
                    "Rewards: Amount higher than max",
                    details={"amount": amount, "maximum": self.state.maximum_amount_per_user},
                )

            claimed_before = self.state.amount_claimed.get(user)
            self.state.claimed_in_round.setdefault(current_round, set()).add(user)
            self.state.amount_claimed[user] = (claimed_before or 0) + delta
            try:
                self._pay_out(user, delta, route_to_staking)
            except Exception:
                self.state.claimed_in_round[current_round].discard(user)
                if claimed_before is None:
                    del self.state.amount_claimed[user]
                else:
                    self.state.amount_claimed[user] = claimed_before
                raise

            route = "staking" if route_to_staking else "transfer"
            self._events.emit(REWARDS_CLAIM, user=user, round=current_round, amount=delta)
            metrics.record_claim(route, delta)
            logger.info(
                "Rewards claimed",
                extra={
                    "event": "distributor.claimed",
                    "user": user[:10],
                    "round": current_round,
                    "amount": delta,
                    "route": route,
                    "amount_claimed": self.state.amount_claimed[user],
                },
            )
            return delta

    # ==================== Owner Operations ====================

    def publish_round(self, caller: str, merkle_root: ProofElement, maximum_amount_per_user: int) -> int:
        """
        Open a new round with a never-before-used root and a new per-user cap.

        Returns:
            The new round id

        Raises:
            RootReused: If the root was published in any earlier round
        """
        with self._guard.locked("publish_round"):
            self._gate.require_privileged(caller)
            root = encode_hex(as_bytes32(merkle_root, "merkle_root"))
            if isinstance(maximum_amount_per_user, bool) or not isinstance(maximum_amount_per_user, int) \
                    or maximum_amount_per_user < 0:
                raise ArgumentError("Maximum amount per user must be a non-negative integer.")

            if root in self.state.used_roots:
                self._reject("root_reused", caller, self.state.current_round)
                raise RootReused("Owner: Merkle root already used", details={"root": root})

            self.state.current_round += 1
            new_round = self.state.current_round
            self.state.merkle_root_of_round[new_round] = root
            self.state.used_roots.add(root)
            self.state.maximum_amount_per_user = maximum_amount_per_user

            self._events.emit(UPDATE_LISTING_REWARDS, round=new_round)
            metrics.record_round_published(self.address, new_round)
            logger.info(
                "Reward round published",
                extra={
                    "event": "distributor.round_published",
                    "round": new_round,
                    "root": root[:18],
                    "maximum_amount_per_user": maximum_amount_per_user,
                },
            )
            return new_round

    def update_staking_pool(self, caller: str, new_staking_sink: StakingSink) -> None:
        with self._guard.locked("update_staking_pool"):
            self._gate.require_privileged(caller)
            if not isinstance(new_staking_sink, StakingSink):
                raise ArgumentError("staking sink must provide address and deposit_for")

            self.staking_sink = new_staking_sink
            new_address = normalize_address(new_staking_sink.address, "staking sink address")
            self._events.emit(STAKING_POOL_UPDATE, new_sink_address=new_address)
            logger.info(
                "Staking pool updated",
                extra={"event": "distributor.staking_pool_updated", "staking_sink": new_address[:10]},
            )

    def pause(self, caller: str) -> None:
        with self._guard.locked("pause"):
            self._gate.require_privileged(caller)
            now = self._now()
            self._pause_flag.pause(now)
            self._events.emit(PAUSED, account=normalize_address(caller, "caller"))
            logger.warning(
                "Reward distribution paused",
                extra={"event": "distributor.paused", "by": caller[:10], "timestamp": now},
            )

    def unpause(self, caller: str) -> None:
        with self._guard.locked("unpause"):
            self._gate.require_privileged(caller)
            self._pause_flag.unpause()
            self._events.emit(UNPAUSED, account=normalize_address(caller, "caller"))
            logger.info(
                "Reward distribution unpaused",
                extra={"event": "distributor.unpaused", "by": caller[:10]},
            )

    def emergency_withdraw(self, caller: str, amount: int) -> int:
        """
        Owner override: pull ``amount`` tokens out while paused.

        Only allowed once the distributor has stayed paused for
        ``emergency_withdraw_buffer`` seconds. No entitlement accounting applies.

        Raises:
            PauseStateError: If the distributor is not paused
            CooldownNotElapsed: If the buffer has not elapsed since pausing
        """
        with self._guard.locked("emergency_withdraw"):
            self._gate.require_privileged(caller)
            self._pause_flag.require_paused()
            if isinstance(amount, bool) or not isinstance(amount, int) or amount < 0:
                raise ArgumentError("Withdrawal amount must be a non-negative integer.")

            now = self._now()
            available_at = (self._pause_flag.last_paused_timestamp or 0) + self.emergency_withdraw_buffer
            if now < available_at:
                self._reject("cooldown_not_elapsed", caller, self.state.current_round)
                raise CooldownNotElapsed(
                    "Owner: Too early to withdraw",
                    details={"now": now, "available_at": available_at},
                )

            call_collaborator("token", self.token.transfer, self.address, self.owner, amount)

            self._events.emit(TOKEN_WITHDRAWN_OWNER, amount=amount)
            metrics.record_owner_withdrawal("emergency", amount)
            logger.warning(
                "Owner emergency withdrawal",
                extra={"event": "distributor.emergency_withdraw", "by": caller[:10], "amount": amount},
            )
            return amount

    # ==================== Helpers ====================

    def _pay_out(self, user: str, amount: int, route_to_staking: bool) -> None:
        if amount == 0:
            return
        if route_to_staking:
            sink = self.staking_sink
            call_collaborator("token", self.token.approve, self.address, sink.address, amount)
            try:
                call_collaborator("staking", sink.deposit_for, self.address, user, amount)
            except Exception:
                # withdraw the allowance granted for this deposit
                call_collaborator("token", self.token.approve, self.address, sink.address, 0)
                raise
        else:
            call_collaborator("token", self.token.transfer, self.address, user, amount)

    def _reject(self, reason: str, who: str, round_id: int) -> None:
        metrics.record_rejection("distributor", reason)
        logger.warning(
            "Distributor operation rejected",
            extra={
                "event": f"distributor.{reason}",
                "caller": str(who)[:10],
                "round": round_id,
            },
        )

    def _now(self) -> int:
        return read_clock(self._time_provider, "time_provider")
