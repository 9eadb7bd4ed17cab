"""
Reference collaborator contracts.

- ERC20: in-memory fungible token consumed by both engines
- StakingPool: staking sink for claims routed to staking
"""

from .erc20 import ERC20Token, TokenEvent
from .staking_pool import StakingPool

__all__ = [
    "ERC20Token",
    "TokenEvent",
    "StakingPool",
]
