"""
In-memory staking pool used as the reward distributor's staking sink.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from ..entitlement_exceptions import TokenError
from .erc20 import ERC20Token

logger = logging.getLogger(__name__)


@dataclass
class StakingPool:
    """Accepts deposits on behalf of users, pulling tokens through an allowance."""

    token: ERC20Token
    address: str
    stakes: dict[str, int] = field(default_factory=dict)
    total_staked: int = 0

    def __post_init__(self) -> None:
        self.address = self.address.lower()

    def deposit_for(self, caller: str, user: str, amount: int) -> None:
        if amount <= 0:
            raise TokenError("Staking: deposit amount must be positive")
        user_norm = user.lower()

        self.token.transfer_from(self.address, caller, self.address, amount)

        self.stakes[user_norm] = self.stakes.get(user_norm, 0) + amount
        self.total_staked += amount

        logger.info(
            "Deposit credited",
            extra={
                "event": "staking_pool.deposit",
                "user": user_norm[:10],
                "depositor": caller[:10],
                "amount": amount,
            },
        )

    def stake_of(self, user: str) -> int:
        return self.stakes.get(user.lower(), 0)
