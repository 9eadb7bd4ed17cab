"""
Entitlements - token vesting and cumulative reward distribution engines.

Main Components:
- VestingSchedule: block-height-gated release of a token balance in discrete steps
- RewardDistributor: round-based cumulative Merkle airdrop with staking routing
- Capabilities: access gate, pause flag and reentrancy guard composed into both engines
"""

__version__ = "0.1.0"
__author__ = "Entitlements Development Team"

__all__ = []
