"""
Entitlement engine instrumentation.

Provides Prometheus metrics that track how much is unlocked from vesting,
how much is paid out by the reward distributor, and how often operations
are rejected, with helper functions that are safe to call from the payout path.
"""

from __future__ import annotations

from prometheus_client import Counter, Gauge

from . import config

tokens_unlocked_counter = Counter(
    "entitlements_vesting_tokens_unlocked_total",
    "Total tokens released by vesting schedules",
)

rewards_claimed_counter = Counter(
    "entitlements_rewards_claimed_total",
    "Total reward tokens paid out by the distributor",
    ["route"],
)

claims_counter = Counter(
    "entitlements_reward_claims_total",
    "Number of successful reward claims, including zero-delta claims",
    ["route"],
)

rejections_counter = Counter(
    "entitlements_operation_rejections_total",
    "Operations rejected by an engine precondition",
    ["engine", "reason"],
)

rounds_published_counter = Counter(
    "entitlements_reward_rounds_published_total",
    "Number of reward rounds published",
)

owner_withdrawals_counter = Counter(
    "entitlements_owner_withdrawals_total",
    "Total tokens withdrawn by privileged callers outside entitlement accounting",
    ["kind"],
)

current_round_gauge = Gauge(
    "entitlements_reward_current_round",
    "Current reward round of the distributor",
    ["distributor"],
)


def record_unlock(amount: int) -> None:
    if not config.METRICS_ENABLED or amount <= 0:
        return
    tokens_unlocked_counter.inc(amount)


def record_claim(route: str, amount: int) -> None:
    """Count a successful claim; the payout counter only moves for positive deltas."""
    if not config.METRICS_ENABLED:
        return
    claims_counter.labels(route=route).inc()
    if amount > 0:
        rewards_claimed_counter.labels(route=route).inc(amount)


def record_rejection(engine: str, reason: str) -> None:
    if not config.METRICS_ENABLED:
        return
    rejections_counter.labels(engine=engine, reason=reason).inc()


def record_round_published(distributor: str, round_id: int) -> None:
    if not config.METRICS_ENABLED:
        return
    rounds_published_counter.inc()
    current_round_gauge.labels(distributor=distributor).set(round_id)


def record_owner_withdrawal(kind: str, amount: int) -> None:
    if not config.METRICS_ENABLED or amount <= 0:
        return
    owner_withdrawals_counter.labels(kind=kind).inc(amount)
