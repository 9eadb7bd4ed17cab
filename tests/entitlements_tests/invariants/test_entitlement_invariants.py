"""
Entitlement Invariant Tests using Property-Based Testing

Checks that vesting never releases more than it should and that cumulative
claims always settle at the proven entitlement, across generated schedules
and claim histories.
"""

import pytest
from hypothesis import given, settings, strategies as st

from entitlements.blockchain.merkle import MerkleTree
from entitlements.blockchain.reward_distributor import RewardDistributor
from entitlements.blockchain.vesting_manager import VestingSchedule
from entitlements.core.contracts import ERC20Token, StakingPool
from entitlements.core.entitlement_exceptions import AlreadyClaimed, NothingToWithdraw

OWNER = "0x" + "11" * 20
USER = "0x" + "a1" * 20
FILLER = "0x" + "b2" * 20
VESTING = "0x" + "7e" * 20
DISTRIBUTOR = "0x" + "d1" * 20

periods_strategy = st.lists(
    st.tuples(st.integers(min_value=1, max_value=50), st.integers(min_value=1, max_value=1_000)),
    min_size=1,
    max_size=8,
)


def build_schedule(periods, start=1_000, end=10**9, funded=None):
    token = ERC20Token(name="Vest", symbol="VST", address="0x" + "70" * 20, owner=OWNER)
    lengths = [length for length, _ in periods]
    amounts = [amount for _, amount in periods]
    if funded is None:
        funded = sum(amounts)
    if funded:
        token.mint(OWNER, VESTING, funded)
    schedule = VestingSchedule(
        token, start, end, lengths, amounts, len(periods), owner=OWNER, address=VESTING
    )
    return token, schedule


class TestVestingInvariants:

    @given(
        periods_strategy,
        st.integers(min_value=0, max_value=2_000),
        st.integers(min_value=0, max_value=2_000),
    )
    @settings(max_examples=200)
    def test_total_unlocked_is_monotonic(self, periods, h1, h2):
        _, schedule = build_schedule(periods)
        low, high = sorted((h1, h2))
        assert schedule.total_unlocked(low) <= schedule.total_unlocked(high)
        assert schedule.total_unlocked(high) <= schedule.total_scheduled

    @given(
        periods_strategy,
        st.lists(st.integers(min_value=0, max_value=500), min_size=1, max_size=12),
        st.integers(min_value=0, max_value=10_000),
    )
    @settings(max_examples=100, deadline=None)
    def test_never_over_withdraw(self, periods, steps, funded):
        token, schedule = build_schedule(periods, funded=funded)
        height = 1_000
        for step in steps:
            height += step
            try:
                schedule.unlock(OWNER, current_block=height)
            except NothingToWithdraw:
                pass
            assert schedule.amount_withdrawn <= schedule.total_unlocked(height)
            assert schedule.amount_withdrawn <= funded
            assert schedule.amount_withdrawn == token.balance_of(OWNER)


class TestDistributorInvariants:

    @given(st.lists(st.integers(min_value=0, max_value=10_000), min_size=1, max_size=6))
    @settings(max_examples=50, deadline=None)
    def test_cumulative_claim_settles_at_proven_amount(self, entitlements):
        token = ERC20Token(name="Reward", symbol="RWD", address="0x" + "70" * 20, owner=OWNER)
        token.mint(OWNER, DISTRIBUTOR, 10**6)
        pool = StakingPool(token=token, address="0x" + "50" * 20)
        distributor = RewardDistributor(
            token, pool, owner=OWNER, time_provider=lambda: 1_700_000_000, address=DISTRIBUTOR
        )
        distributor.unpause(OWNER)

        for round_index, amount in enumerate(entitlements, start=1):
            # the filler leaf keeps every round's root distinct
            tree = MerkleTree({USER: amount, FILLER: round_index})
            distributor.publish_round(OWNER, tree.get_root(), 10_000)
            proof = tree.generate_merkle_proof(USER)

            before = distributor.amount_claimed(USER)
            paid = distributor.claim(USER, amount, round_index % 2 == 0, proof)

            assert paid == max(0, amount - before)
            assert distributor.amount_claimed(USER) == before + max(0, amount - before)
            assert distributor.amount_claimed(USER) >= before

            with pytest.raises(AlreadyClaimed):
                distributor.claim(USER, amount, False, proof)

        assert token.balance_of(USER) + pool.stake_of(USER) == distributor.amount_claimed(USER)
        assert distributor.amount_claimed(USER) == max(entitlements)
