"""
Composable capabilities shared by the entitlement engines.

Each engine is handed an access gate, a pause flag and a reentrancy guard
instead of inheriting them, so a deployment can share one gate between
several engines or swap in its own implementation.
"""

from __future__ import annotations

import hashlib
import itertools
import logging
from contextlib import contextmanager
from typing import Callable, Iterator

from eth_utils import to_normalized_address

from .entitlement_exceptions import (
    ArgumentError,
    AuthorizationError,
    CollaboratorError,
    PauseStateError,
    ReentrancyDetected,
    ReentrancyError,
)

logger = logging.getLogger(__name__)

TimeProvider = Callable[[], int]


def read_clock(provider: TimeProvider, name: str = "time_provider") -> int:
    """Read an injected clock, rejecting anything that is not an integer."""
    value = provider()
    if isinstance(value, bool) or not isinstance(value, int):
        raise ArgumentError(f"{name} must return an integer, got {value!r}")
    if value < 0:
        raise ArgumentError(f"{name} returned a negative value: {value}")
    return value


def normalize_address(address: str, field: str = "address") -> str:
    """
    Canonicalize an address to lower-case 0x-prefixed hex.

    Every spelling eth_utils accepts for the same 20 bytes (with or without
    the 0x prefix, any letter case) maps to one key.
    """
    if not isinstance(address, str) or not address:
        raise ArgumentError(f"{field} must be a non-empty string")
    try:
        return to_normalized_address(address)
    except (TypeError, ValueError) as exc:
        raise ArgumentError(f"{field} must be a 20-byte hex address, got {address!r}") from exc


_deployment_nonce = itertools.count()


def derive_address(kind: str, *parts: object) -> str:
    """Derive a contract address from its constructor inputs and a deployment nonce."""
    seed = ":".join([kind, *(str(part) for part in parts), str(next(_deployment_nonce))])
    return f"0x{hashlib.sha3_256(seed.encode()).digest()[-20:].hex()}"


class AccessGate:
    """Single-owner privilege check consulted by every owner-only operation."""

    def __init__(self, owner: str):
        self._owner = normalize_address(owner, "owner")

    @property
    def owner(self) -> str:
        return self._owner

    def is_privileged(self, caller: str) -> bool:
        try:
            return normalize_address(caller, "caller") == self._owner
        except ArgumentError:
            return False

    def require_privileged(self, caller: str) -> None:
        if not self.is_privileged(caller):
            logger.warning(
                "Access denied",
                extra={"event": "access_gate.denied", "caller": str(caller)[:10]},
            )
            raise AuthorizationError(
                "Caller is not the owner",
                details={"caller": caller},
            )

    def transfer_ownership(self, caller: str, new_owner: str) -> None:
        self.require_privileged(caller)
        self._owner = normalize_address(new_owner, "new owner")
        logger.info(
            "Ownership transferred",
            extra={"event": "access_gate.ownership_transferred", "new_owner": self._owner[:10]},
        )


class PauseFlag:
    """
    Operational pause flag with guarded transitions.

    Records the timestamp of the last transition to paused so that
    owner-only overrides can be held back behind a cool-down window.
    """

    def __init__(self, paused: bool = False, paused_at: int | None = None):
        self._paused = paused
        self.last_paused_timestamp: int | None = paused_at if paused else None

    @property
    def paused(self) -> bool:
        return self._paused

    def pause(self, now: int) -> None:
        self.require_not_paused()
        self._paused = True
        self.last_paused_timestamp = now

    def unpause(self) -> None:
        self.require_paused()
        self._paused = False

    def require_paused(self) -> None:
        if not self._paused:
            raise PauseStateError("Operation requires the paused state")

    def require_not_paused(self) -> None:
        if self._paused:
            raise PauseStateError("Operation is paused")


class ReentrancyGuard:
    """
    Scoped exclusive execution lock.

    Usage:
        with guard.locked("claim"):
            ...  # nested entry raises ReentrancyDetected
    """

    def __init__(self, name: str = ""):
        self.name = name
        self._locked = False
        self._holder: str | None = None

    @property
    def is_locked(self) -> bool:
        return self._locked

    @contextmanager
    def locked(self, operation: str = "") -> Iterator[None]:
        if self._locked:
            logger.error(
                "Reentrant call rejected",
                extra={
                    "event": "reentrancy_guard.rejected",
                    "guard": self.name,
                    "operation": operation,
                    "holder": self._holder,
                },
            )
            raise ReentrancyDetected(
                f"Reentrant call to {operation or 'guarded operation'} while {self._holder} is running",
                details={"guard": self.name, "operation": operation, "holder": self._holder},
            )
        self._locked = True
        self._holder = operation or "guarded operation"
        try:
            yield
        finally:
            self._locked = False
            self._holder = None


def call_collaborator(collaborator: str, operation: Callable[..., object], *args: object) -> object:
    """
    Invoke an external token or staking call.

    A raised exception or an explicit False return becomes CollaboratorError;
    a reentrancy rejection from a nested call propagates unchanged.
    """
    try:
        result = operation(*args)
    except ReentrancyError:
        raise
    except Exception as exc:
        logger.error(
            "Collaborator call failed",
            extra={
                "event": "collaborator.failed",
                "collaborator": collaborator,
                "error": str(exc),
            },
        )
        raise CollaboratorError(
            f"{collaborator} call failed: {exc}",
            collaborator=collaborator,
        ) from exc
    if result is False:
        logger.error(
            "Collaborator reported failure",
            extra={"event": "collaborator.rejected", "collaborator": collaborator},
        )
        raise CollaboratorError(f"{collaborator} call returned failure", collaborator=collaborator)
    return result
