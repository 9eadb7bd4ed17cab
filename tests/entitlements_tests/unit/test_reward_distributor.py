"""
Unit tests for the round-based cumulative reward distributor.
"""

from dataclasses import dataclass
from typing import Callable, Optional

import pytest

from entitlements.blockchain.merkle import MerkleTree
from entitlements.blockchain.reward_distributor import RewardDistributor
from entitlements.core.contracts import ERC20Token, StakingPool
from entitlements.core.entitlement_exceptions import (
    AlreadyClaimed,
    AmountExceedsCap,
    ArgumentError,
    AuthorizationError,
    CollaboratorError,
    CooldownNotElapsed,
    InvalidProof,
    PauseStateError,
    ReentrancyDetected,
    RootReused,
)

OWNER = "0x" + "11" * 20
USER_A = "0x" + "a1" * 20
USER_B = "0x" + "b2" * 20
USER_C = "0x" + "c3" * 20
DISTRIBUTOR = "0x" + "d1" * 20
POOL = "0x" + "50" * 20
OTHER_POOL = "0x" + "51" * 20

BUFFER = 72 * 3600


class ManualClock:
    def __init__(self, start_time: int):
        self.current_time = start_time

    def now(self) -> int:
        return self.current_time

    def advance(self, seconds: int):
        self.current_time += seconds


@dataclass
class HookedToken(ERC20Token):
    on_transfer: Optional[Callable[[], None]] = None

    def transfer(self, sender, recipient, amount):
        if self.on_transfer is not None:
            self.on_transfer()
        return super().transfer(sender, recipient, amount)


class BrokenPool:
    address = "0x" + "bb" * 20

    def deposit_for(self, caller, user, amount):
        raise RuntimeError("staking is closed")


@pytest.fixture
def clock():
    return ManualClock(start_time=1_700_000_000)


@pytest.fixture
def pool(token):
    return StakingPool(token=token, address=POOL)


@pytest.fixture
def distributor(token, pool, clock):
    token.mint(token.owner, DISTRIBUTOR, 1_000)
    return RewardDistributor(
        token,
        pool,
        owner=OWNER,
        time_provider=clock.now,
        emergency_withdraw_buffer=BUFFER,
        address=DISTRIBUTOR,
    )


def open_round(distributor, claims, maximum):
    tree = MerkleTree(claims)
    distributor.publish_round(OWNER, tree.get_root(), maximum)
    return tree


def test_starts_paused_at_genesis_round(distributor, clock):
    assert distributor.paused is True
    assert distributor.current_round == 0
    assert distributor.merkle_root_of_round(0) is None
    assert distributor.last_paused_timestamp == clock.now()
    assert distributor.can_claim(USER_A, 100, []) == (False, 0)
    with pytest.raises(PauseStateError):
        distributor.claim(USER_A, 100, False, [])


def test_cumulative_claims_across_rounds(distributor, token):
    tree1 = open_round(distributor, {USER_A: 100, USER_B: 40}, maximum=100)
    distributor.unpause(OWNER)

    assert distributor.can_claim(USER_A, 100, tree1.generate_merkle_proof(USER_A)) == (True, 100)
    assert distributor.claim(USER_A, 100, False, tree1.generate_merkle_proof(USER_A)) == 100
    assert token.balance_of(USER_A) == 100
    assert distributor.amount_claimed(USER_A) == 100

    tree2 = open_round(distributor, {USER_A: 150, USER_B: 40}, maximum=150)
    assert distributor.current_round == 2
    proof2 = tree2.generate_merkle_proof(USER_A)
    assert distributor.claim(USER_A, 150, False, proof2) == 50
    assert token.balance_of(USER_A) == 150
    assert distributor.amount_claimed(USER_A) == 150

    with pytest.raises(AlreadyClaimed):
        distributor.claim(USER_A, 150, False, proof2)

    with pytest.raises(RootReused):
        distributor.publish_round(OWNER, tree1.get_root(), 150)
    assert distributor.current_round == 2

    tree3 = open_round(distributor, {USER_A: 150, USER_B: 90}, maximum=150)
    assert distributor.claim(USER_A, 150, False, tree3.generate_merkle_proof(USER_A)) == 0
    assert distributor.has_claimed(3, USER_A)
    assert distributor.amount_claimed(USER_A) == 150
    assert token.balance_of(USER_A) == 150

    claims = [event for event in distributor.events if event.event_type == "RewardsClaim"]
    assert [(e["round"], e["amount"]) for e in claims] == [(1, 100), (2, 50), (3, 0)]
    rounds = [e["round"] for e in distributor.events if e.event_type == "UpdateListingRewards"]
    assert rounds == [1, 2, 3]


def test_user_skipping_rounds_gets_full_catch_up(distributor, token):
    open_round(distributor, {USER_A: 10, USER_B: 40}, maximum=100)
    distributor.unpause(OWNER)
    tree2 = open_round(distributor, {USER_A: 70, USER_B: 90}, maximum=100)

    assert distributor.claim(USER_B, 90, False, tree2.generate_merkle_proof(USER_B)) == 90
    assert token.balance_of(USER_B) == 90


def test_already_claimed_is_checked_before_proof(distributor):
    tree = open_round(distributor, {USER_A: 100, USER_B: 40}, maximum=100)
    distributor.unpause(OWNER)
    distributor.claim(USER_A, 100, False, tree.generate_merkle_proof(USER_A))

    with pytest.raises(AlreadyClaimed):
        distributor.claim(USER_A, 1, False, [])
    assert distributor.can_claim(USER_A, 100, tree.generate_merkle_proof(USER_A)) == (False, 0)


def test_invalid_proof_is_rejected(distributor):
    tree = open_round(distributor, {USER_A: 100, USER_B: 40}, maximum=1_000)
    distributor.unpause(OWNER)

    with pytest.raises(InvalidProof):
        distributor.claim(USER_A, 101, False, tree.generate_merkle_proof(USER_A))
    with pytest.raises(InvalidProof):
        distributor.claim(USER_C, 100, False, tree.generate_merkle_proof(USER_A))
    assert distributor.amount_claimed(USER_A) == 0
    assert not distributor.has_claimed(1, USER_A)


def test_proofs_from_past_rounds_do_not_verify(distributor):
    tree1 = open_round(distributor, {USER_A: 100, USER_B: 40}, maximum=1_000)
    distributor.unpause(OWNER)
    open_round(distributor, {USER_A: 200, USER_B: 40}, maximum=1_000)

    with pytest.raises(InvalidProof):
        distributor.claim(USER_A, 100, False, tree1.generate_merkle_proof(USER_A))


def test_amount_above_cap_is_rejected(distributor):
    tree = open_round(distributor, {USER_A: 200, USER_B: 40}, maximum=100)
    distributor.unpause(OWNER)

    with pytest.raises(AmountExceedsCap):
        distributor.claim(USER_A, 200, False, tree.generate_merkle_proof(USER_A))
    assert not distributor.has_claimed(1, USER_A)
    assert distributor.amount_claimed(USER_A) == 0

    assert distributor.claim(USER_B, 40, False, tree.generate_merkle_proof(USER_B)) == 40


def test_claim_routed_to_staking(distributor, token, pool):
    tree = open_round(distributor, {USER_A: 100, USER_B: 40}, maximum=100)
    distributor.unpause(OWNER)

    assert distributor.claim(USER_A, 100, True, tree.generate_merkle_proof(USER_A)) == 100
    assert pool.stake_of(USER_A) == 100
    assert token.balance_of(POOL) == 100
    assert token.balance_of(USER_A) == 0
    assert token.allowance(DISTRIBUTOR, POOL) == 0
    assert distributor.amount_claimed(USER_A) == 100


def test_failed_staking_deposit_rolls_back_claim(distributor, token, pool):
    tree = open_round(distributor, {USER_A: 100, USER_B: 40}, maximum=100)
    distributor.unpause(OWNER)
    distributor.update_staking_pool(OWNER, BrokenPool())

    with pytest.raises(CollaboratorError) as excinfo:
        distributor.claim(USER_A, 100, True, tree.generate_merkle_proof(USER_A))
    assert isinstance(excinfo.value.__cause__, RuntimeError)
    assert excinfo.value.collaborator == "staking"
    assert not distributor.has_claimed(1, USER_A)
    assert distributor.amount_claimed(USER_A) == 0
    assert token.allowance(DISTRIBUTOR, BrokenPool.address) == 0
    assert token.balance_of(DISTRIBUTOR) == 1_000

    distributor.update_staking_pool(OWNER, pool)
    assert distributor.claim(USER_A, 100, True, tree.generate_merkle_proof(USER_A)) == 100


def test_underfunded_distributor_rolls_back_claim(token, pool, clock):
    distributor = RewardDistributor(token, pool, owner=OWNER, time_provider=clock.now, address=DISTRIBUTOR)
    tree = open_round(distributor, {USER_A: 100, USER_B: 40}, maximum=100)
    distributor.unpause(OWNER)

    with pytest.raises(CollaboratorError):
        distributor.claim(USER_A, 100, False, tree.generate_merkle_proof(USER_A))
    assert distributor.amount_claimed(USER_A) == 0
    assert not distributor.has_claimed(1, USER_A)

    token.mint(token.owner, DISTRIBUTOR, 100)
    assert distributor.claim(USER_A, 100, False, tree.generate_merkle_proof(USER_A)) == 100


def test_reentrant_claim_is_rejected(pool, clock):
    token = HookedToken(name="Evil", symbol="EVL", address="0x" + "e0" * 20, owner=OWNER)
    token.mint(OWNER, DISTRIBUTOR, 1_000)
    pool = StakingPool(token=token, address=POOL)
    distributor = RewardDistributor(token, pool, owner=OWNER, time_provider=clock.now, address=DISTRIBUTOR)
    tree = open_round(distributor, {USER_A: 100, USER_B: 40}, maximum=100)
    distributor.unpause(OWNER)

    proof_b = tree.generate_merkle_proof(USER_B)
    token.on_transfer = lambda: distributor.claim(USER_B, 40, False, proof_b)

    with pytest.raises(ReentrancyDetected):
        distributor.claim(USER_A, 100, False, tree.generate_merkle_proof(USER_A))
    assert distributor.amount_claimed(USER_A) == 0
    assert distributor.amount_claimed(USER_B) == 0
    assert token.balance_of(DISTRIBUTOR) == 1_000

    token.on_transfer = None
    assert distributor.claim(USER_A, 100, False, tree.generate_merkle_proof(USER_A)) == 100


def test_publish_round_validation(distributor):
    with pytest.raises(AuthorizationError):
        distributor.publish_round(USER_A, "0x" + "ab" * 32, 100)
    with pytest.raises(ArgumentError):
        distributor.publish_round(OWNER, "0x1234", 100)
    with pytest.raises(ArgumentError):
        distributor.publish_round(OWNER, "0x" + "zz" * 32, 100)
    with pytest.raises(ArgumentError):
        distributor.publish_round(OWNER, "0x" + "ab" * 32, -1)
    assert distributor.current_round == 0

    root = bytes.fromhex("ab" * 32)
    assert distributor.publish_round(OWNER, root, 100) == 1
    assert distributor.merkle_root_of_round(1) == "0x" + "ab" * 32
    assert distributor.is_root_used("0x" + "AB" * 32)
    with pytest.raises(RootReused):
        distributor.publish_round(OWNER, "0x" + "ab" * 32, 500)
    assert distributor.maximum_amount_per_user == 100


def test_pause_transitions(distributor, clock):
    with pytest.raises(PauseStateError):
        distributor.pause(OWNER)
    with pytest.raises(AuthorizationError):
        distributor.unpause(USER_A)

    distributor.unpause(OWNER)
    assert distributor.paused is False
    with pytest.raises(PauseStateError):
        distributor.unpause(OWNER)

    clock.advance(60)
    distributor.pause(OWNER)
    assert distributor.paused is True
    assert distributor.last_paused_timestamp == clock.now()

    kinds = [event.event_type for event in distributor.events]
    assert kinds == ["Unpaused", "Paused"]
    assert distributor.events[-1].timestamp == clock.now()


def test_emergency_withdraw_requires_pause_and_cooldown(distributor, token, clock):
    distributor.unpause(OWNER)
    with pytest.raises(PauseStateError):
        distributor.emergency_withdraw(OWNER, 10)

    distributor.pause(OWNER)
    clock.advance(BUFFER - 1)
    with pytest.raises(CooldownNotElapsed):
        distributor.emergency_withdraw(OWNER, 10)
    with pytest.raises(AuthorizationError):
        distributor.emergency_withdraw(USER_A, 10)

    clock.advance(1)
    assert distributor.emergency_withdraw(OWNER, 300) == 300
    assert token.balance_of(OWNER) == 300
    assert token.balance_of(DISTRIBUTOR) == 700
    assert distributor.events[-1].event_type == "TokenWithdrawnOwner"
    assert distributor.events[-1]["amount"] == 300

    with pytest.raises(CollaboratorError):
        distributor.emergency_withdraw(OWNER, 10_000)


def test_genesis_pause_starts_cooldown(distributor, token, clock):
    with pytest.raises(CooldownNotElapsed):
        distributor.emergency_withdraw(OWNER, 1)
    clock.advance(BUFFER)
    assert distributor.emergency_withdraw(OWNER, 1) == 1


def test_update_staking_pool(distributor, token):
    new_pool = StakingPool(token=token, address=OTHER_POOL)
    with pytest.raises(AuthorizationError):
        distributor.update_staking_pool(USER_A, new_pool)
    with pytest.raises(ArgumentError):
        distributor.update_staking_pool(OWNER, object())

    distributor.update_staking_pool(OWNER, new_pool)
    assert distributor.staking_sink is new_pool
    assert distributor.events[-1].event_type == "StakingPoolUpdate"
    assert distributor.events[-1]["new_sink_address"] == OTHER_POOL

    tree = open_round(distributor, {USER_A: 100, USER_B: 40}, maximum=100)
    distributor.unpause(OWNER)
    distributor.claim(USER_A, 100, True, tree.generate_merkle_proof(USER_A))
    assert new_pool.stake_of(USER_A) == 100


def test_claim_accepts_mixed_case_caller(distributor, token):
    tree = open_round(distributor, {USER_A: 100, USER_B: 40}, maximum=100)
    distributor.unpause(OWNER)

    assert distributor.claim(USER_A.upper().replace("0X", "0x"), 100, False, tree.generate_merkle_proof(USER_A)) == 100
    assert distributor.has_claimed(1, USER_A)


def test_claim_rejects_second_spelling_of_same_account(distributor, token):
    tree = open_round(distributor, {USER_A: 100, USER_B: 40}, maximum=100)
    distributor.unpause(OWNER)
    proof = tree.generate_merkle_proof(USER_A)

    assert distributor.claim(USER_A, 100, False, proof) == 100
    assert distributor.can_claim(USER_A[2:], 100, proof) == (False, 0)
    with pytest.raises(AlreadyClaimed):
        distributor.claim(USER_A[2:], 100, False, proof)

    assert token.balance_of(USER_A) == 100
    assert token.balance_of(DISTRIBUTOR) == 900
    assert distributor.amount_claimed(USER_A[2:]) == 100
    assert distributor.has_claimed(1, USER_A[2:])
    assert distributor.get_status()["users_with_claims"] == 1


def test_claim_rejects_malformed_caller(distributor):
    tree = open_round(distributor, {USER_A: 100, USER_B: 40}, maximum=100)
    distributor.unpause(OWNER)
    for caller in ("0x1234", "a1" * 19, "0x" + "zz" * 20):
        with pytest.raises(ArgumentError):
            distributor.claim(caller, 100, False, tree.generate_merkle_proof(USER_A))
    assert distributor.amount_claimed(USER_A) == 0


@pytest.mark.parametrize(
    "reenter",
    [
        lambda d: d.emergency_withdraw(OWNER, 1),
        lambda d: d.publish_round(OWNER, "0x" + "ee" * 32, 1_000),
        lambda d: d.pause(OWNER),
        lambda d: d.update_staking_pool(OWNER, StakingPool(token=d.token, address=OTHER_POOL)),
    ],
)
def test_claim_payout_cannot_reenter_owner_operations(clock, reenter):
    token = HookedToken(name="Evil", symbol="EVL", address="0x" + "e0" * 20, owner=OWNER)
    token.mint(OWNER, DISTRIBUTOR, 1_000)
    pool = StakingPool(token=token, address=POOL)
    distributor = RewardDistributor(
        token, pool, owner=OWNER, time_provider=clock.now, emergency_withdraw_buffer=0, address=DISTRIBUTOR
    )
    tree = open_round(distributor, {USER_A: 100, USER_B: 40}, maximum=100)
    distributor.unpause(OWNER)
    events_before = list(distributor.events)

    token.on_transfer = lambda: reenter(distributor)
    with pytest.raises(ReentrancyDetected):
        distributor.claim(USER_A, 100, False, tree.generate_merkle_proof(USER_A))

    assert distributor.amount_claimed(USER_A) == 0
    assert not distributor.has_claimed(1, USER_A)
    assert distributor.current_round == 1
    assert distributor.paused is False
    assert distributor.staking_sink is pool
    assert distributor.events == events_before
    assert token.balance_of(DISTRIBUTOR) == 1_000
    assert token.balance_of(OWNER) == 0


def test_emergency_withdraw_transfer_cannot_reenter_claim(clock):
    token = HookedToken(name="Evil", symbol="EVL", address="0x" + "e0" * 20, owner=OWNER)
    token.mint(OWNER, DISTRIBUTOR, 1_000)
    pool = StakingPool(token=token, address=POOL)
    distributor = RewardDistributor(
        token, pool, owner=OWNER, time_provider=clock.now, emergency_withdraw_buffer=0, address=DISTRIBUTOR
    )
    tree = open_round(distributor, {USER_A: 100, USER_B: 40}, maximum=100)
    proof = tree.generate_merkle_proof(USER_A)

    token.on_transfer = lambda: distributor.claim(USER_A, 100, False, proof)
    with pytest.raises(ReentrancyDetected):
        distributor.emergency_withdraw(OWNER, 10)

    assert token.balance_of(DISTRIBUTOR) == 1_000
    assert distributor.amount_claimed(USER_A) == 0
    assert distributor.events[-1].event_type == "UpdateListingRewards"


def test_status_and_listeners(distributor):
    seen = []
    distributor.subscribe(seen.append)
    open_round(distributor, {USER_A: 100}, maximum=100)

    status = distributor.get_status()
    assert status["current_round"] == 1
    assert status["paused"] is True
    assert status["maximum_amount_per_user"] == 100
    assert status["rounds_published"] == 1
    assert [event.event_type for event in seen] == ["UpdateListingRewards"]
