"""
Entitlement Engines

- Vesting schedule: discrete cumulative unlocks gated by block height
- Reward distributor: per-round Merkle roots over cumulative entitlements
- Merkle utilities: leaf hashing, proof verification and tree building
"""

from .merkle import MerkleTree, hash_leaf, verify_proof
from .reward_distributor import DistributorState, RewardDistributor
from .vesting_manager import VestingLedger, VestingPeriod, VestingSchedule

__all__ = [
    "MerkleTree",
    "hash_leaf",
    "verify_proof",
    "DistributorState",
    "RewardDistributor",
    "VestingLedger",
    "VestingPeriod",
    "VestingSchedule",
]
