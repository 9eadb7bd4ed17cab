"""
Entitlement-specific exception hierarchy.

Provides typed exceptions for the vesting and reward distribution engines so
callers can tell configuration mistakes, authorization failures, recoverable
state rejections and collaborator failures apart.
"""

from __future__ import annotations
from typing import Optional, Any, Dict


class EntitlementError(Exception):
    """Base exception for all entitlement accounting errors.

    Attributes:
        message: Human-readable error description
        details: Additional context about the error
        recoverable: Whether the caller can resubmit after fixing the condition
    """

    recoverable = False

    def __init__(
        self,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        recoverable: Optional[bool] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}
        if recoverable is not None:
            self.recoverable = recoverable


# ==================== Configuration Errors ====================


class ConfigurationError(EntitlementError):
    """Raised when engine or environment configuration is invalid."""
    recoverable = False


class ArgumentError(ConfigurationError):
    """Raised when an argument fails validation.

    Examples: mismatched period arrays, zero-valued period entries,
    end block not after start block, malformed Merkle root.
    """
    pass


# ==================== Authorization Errors ====================


class AuthorizationError(EntitlementError):
    """Raised when the caller lacks the required privilege."""
    pass


# ==================== State Errors ====================


class StateError(EntitlementError):
    """Raised when an operation's precondition does not hold right now."""
    recoverable = True


class NothingToWithdraw(StateError):
    """Raised when the payable amount is zero."""
    pass


class AlreadyClaimed(StateError):
    """Raised when a user already claimed in the current round."""
    pass


class InvalidProof(StateError):
    """Raised when a Merkle proof does not verify against the current root."""
    pass


class AmountExceedsCap(StateError):
    """Raised when the proven cumulative amount is above the per-user cap."""
    pass


class RootReused(StateError):
    """Raised when a Merkle root was already published in any round."""
    pass


class PauseStateError(StateError):
    """Raised when an operation requires the opposite pause state."""
    pass


class CooldownNotElapsed(StateError):
    """Raised when the emergency withdrawal buffer has not elapsed since pausing."""
    pass


class ProtectedCurrencyError(StateError):
    """Raised when the owner tries to sweep the vested token as an 'other' currency."""
    recoverable = False


# ==================== Reentrancy Errors ====================


class ReentrancyError(EntitlementError):
    """Raised when a guarded operation is entered while already running."""
    pass


class ReentrancyDetected(ReentrancyError):
    """Raised to the nested call that attempted re-entry."""
    pass


# ==================== Collaborator Errors ====================


class CollaboratorError(EntitlementError):
    """Raised when a token or staking collaborator call fails.

    The enclosing operation is rolled back before this propagates.
    """

    def __init__(
        self,
        message: str,
        collaborator: Optional[str] = None,
        **kwargs: Any,
    ) -> None:
        super().__init__(message, **kwargs)
        self.collaborator = collaborator


class TokenError(EntitlementError):
    """Raised by the in-memory reference token when an operation is invalid."""
    pass


# ==================== Utility Functions ====================


def is_recoverable_error(exc: Exception) -> bool:
    """Check if an exception represents a condition the caller can fix and resubmit.

    Args:
        exc: The exception to check

    Returns:
        True if the operation can be resubmitted once the precondition holds
    """
    if isinstance(exc, EntitlementError):
        return exc.recoverable
    return False


def get_error_context(exc: Exception) -> Dict[str, Any]:
    """Extract error context from an exception for logging.

    Args:
        exc: The exception to extract context from

    Returns:
        Dictionary containing error type, message, and any additional details
    """
    context = {
        "error_type": type(exc).__name__,
        "error_message": str(exc),
    }

    if isinstance(exc, EntitlementError):
        context["recoverable"] = exc.recoverable
        if exc.details:
            context["details"] = exc.details

    if isinstance(exc, CollaboratorError):
        if exc.collaborator:
            context["collaborator"] = exc.collaborator
        if exc.__cause__ is not None:
            context["cause"] = f"{type(exc.__cause__).__name__}: {exc.__cause__}"

    return context
