"""
In-memory ERC20 token.

Reference implementation of the fungible-token service the engines consume:
- Balance queries, transfer, approve, transferFrom
- Owner-only minting with an optional supply cap
- Transfer and Approval events

Security features:
- 256-bit amount bounds
- Zero address checks
- Balance and allowance underflow prevention
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field

from ..capabilities import derive_address
from ..entitlement_exceptions import TokenError

logger = logging.getLogger(__name__)

ZERO_ADDRESS = "0x" + "0" * 40


@dataclass
class TokenEvent:
    """Represents an ERC20 event."""

    event_type: str  # "Transfer" or "Approval"
    from_address: str
    to_address: str
    value: int
    timestamp: float = field(default_factory=time.time)


@dataclass
class ERC20Token:
    """
    Minimal ERC20 token held entirely in memory.

    Balances and allowances are keyed by lower-cased address.
    """

    name: str
    symbol: str
    decimals: int = 18
    total_supply: int = 0

    address: str = ""

    # Owner (for minting permissions)
    owner: str = ""

    balances: dict[str, int] = field(default_factory=dict)
    allowances: dict[str, dict[str, int]] = field(default_factory=dict)

    events: list[TokenEvent] = field(default_factory=list)

    # Supply cap (0 = unlimited)
    max_supply: int = 0

    UINT256_MAX: int = 2**256 - 1

    def __post_init__(self) -> None:
        if not self.address:
            self.address = derive_address("erc20", self.name, self.symbol)
        self.address = self._normalize(self.address)
        self.owner = self._normalize(self.owner)

    # ==================== View Functions ====================

    def balance_of(self, account: str) -> int:
        return self.balances.get(self._normalize(account), 0)

    def allowance(self, owner: str, spender: str) -> int:
        owner_norm = self._normalize(owner)
        spender_norm = self._normalize(spender)
        return self.allowances.get(owner_norm, {}).get(spender_norm, 0)

    # ==================== State-Changing Functions ====================

    def transfer(self, sender: str, recipient: str, amount: int) -> bool:
        """
        Transfer tokens from sender to recipient.

        Raises:
            TokenError: If the recipient is invalid or the balance is too low
        """
        sender_norm = self._normalize(sender)
        recipient_norm = self._normalize(recipient)

        self._validate_address(recipient_norm, "recipient")
        self._validate_amount(amount)

        sender_balance = self.balances.get(sender_norm, 0)
        if sender_balance < amount:
            raise TokenError(
                f"ERC20: transfer amount exceeds balance ({amount} > {sender_balance})"
            )

        self.balances[sender_norm] = sender_balance - amount
        self.balances[recipient_norm] = self.balances.get(recipient_norm, 0) + amount

        self._emit("Transfer", sender_norm, recipient_norm, amount)

        logger.debug(
            "ERC20 transfer",
            extra={
                "event": "erc20.transfer",
                "token": self.symbol,
                "from": sender_norm[:10],
                "to": recipient_norm[:10],
                "amount": amount,
            }
        )

        return True

    def approve(self, owner: str, spender: str, amount: int) -> bool:
        owner_norm = self._normalize(owner)
        spender_norm = self._normalize(spender)

        self._validate_address(spender_norm, "spender")
        self._validate_amount(amount)

        self.allowances.setdefault(owner_norm, {})[spender_norm] = amount
        self._emit("Approval", owner_norm, spender_norm, amount)
        return True

    def transfer_from(
        self, spender: str, from_addr: str, to_addr: str, amount: int
    ) -> bool:
        """
        Transfer tokens using an allowance.

        Raises:
            TokenError: If the allowance or balance is insufficient
        """
        spender_norm = self._normalize(spender)
        from_norm = self._normalize(from_addr)
        to_norm = self._normalize(to_addr)

        self._validate_address(to_norm, "recipient")
        self._validate_amount(amount)

        current_allowance = self.allowance(from_norm, spender_norm)
        if current_allowance < amount:
            raise TokenError(
                f"ERC20: insufficient allowance ({current_allowance} < {amount})"
            )

        from_balance = self.balances.get(from_norm, 0)
        if from_balance < amount:
            raise TokenError(
                f"ERC20: transfer amount exceeds balance ({amount} > {from_balance})"
            )

        if current_allowance != self.UINT256_MAX:
            self.allowances[from_norm][spender_norm] = current_allowance - amount

        self.balances[from_norm] = from_balance - amount
        self.balances[to_norm] = self.balances.get(to_norm, 0) + amount

        self._emit("Transfer", from_norm, to_norm, amount)

        return True

    def mint(self, minter: str, to: str, amount: int) -> bool:
        """Mint new tokens (owner only)."""
        self._require_owner(minter)

        to_norm = self._normalize(to)
        self._validate_address(to_norm, "recipient")
        self._validate_amount(amount)

        if self.max_supply > 0 and self.total_supply + amount > self.max_supply:
            raise TokenError(
                f"ERC20: mint would exceed max supply "
                f"({self.total_supply + amount} > {self.max_supply})"
            )

        self.total_supply += amount
        self.balances[to_norm] = self.balances.get(to_norm, 0) + amount

        self._emit("Transfer", ZERO_ADDRESS, to_norm, amount)

        logger.info(
            "ERC20 mint",
            extra={
                "event": "erc20.mint",
                "token": self.symbol,
                "to": to_norm[:10],
                "amount": amount,
                "new_supply": self.total_supply,
            }
        )

        return True

    # ==================== Helpers ====================

    def _normalize(self, address: str) -> str:
        return address.lower()

    def _validate_address(self, address: str, field: str) -> None:
        if address == ZERO_ADDRESS or not address:
            raise TokenError(f"ERC20: {field} is zero address")

    def _validate_amount(self, amount: int) -> None:
        if isinstance(amount, bool) or not isinstance(amount, int):
            raise TokenError("ERC20: amount must be an integer")
        if amount < 0:
            raise TokenError("ERC20: amount cannot be negative")
        if amount > self.UINT256_MAX:
            raise TokenError("ERC20: amount exceeds uint256")

    def _require_owner(self, caller: str) -> None:
        if self._normalize(caller) != self.owner:
            raise TokenError("ERC20: caller is not owner")

    def _emit(self, event_type: str, from_addr: str, to_addr: str, amount: int) -> None:
        self.events.append(
            TokenEvent(
                event_type=event_type,
                from_address=from_addr,
                to_address=to_addr,
                value=amount,
            )
        )
