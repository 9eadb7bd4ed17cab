"""
Entitlements - Collaborator Protocol Interfaces

The engines only ever talk to a token service and a staking sink through
these structural interfaces, so any object with the right methods (the
in-memory reference contracts, a web3 adapter, a test double) can be
injected.
"""

from __future__ import annotations

from typing import Protocol, runtime_checkable


@runtime_checkable
class TokenService(Protocol):
    """
    Protocol for a fungible token.

    Every state-changing method takes the acting address explicitly
    (the equivalent of msg.sender).
    """

    address: str

    def balance_of(self, account: str) -> int:
        """
        Get the token balance of an account.

        Must be idempotent: repeated queries without transfers return the same value.
        """
        ...

    def transfer(self, sender: str, recipient: str, amount: int) -> bool:
        """
        Move ``amount`` from ``sender`` to ``recipient``.

        Returns:
            True on success. A False return or any raised exception is
            treated as a fatal failure of the enclosing operation.
        """
        ...

    def approve(self, owner: str, spender: str, amount: int) -> bool:
        """Allow ``spender`` to pull up to ``amount`` from ``owner``."""
        ...


@runtime_checkable
class StakingSink(Protocol):
    """Protocol for a staking pool that accepts deposits on behalf of a user."""

    address: str

    def deposit_for(self, caller: str, user: str, amount: int) -> None:
        """
        Pull ``amount`` tokens from ``caller`` (which has approved this sink)
        and credit them to ``user``'s stake.
        """
        ...
