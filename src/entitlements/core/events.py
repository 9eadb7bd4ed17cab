"""
Observable events emitted by the entitlement engines.

Events are appended to the emitting engine's ``events`` list and pushed to
any registered listeners (audit or monitoring collaborators).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable

logger = logging.getLogger(__name__)

TOKENS_UNLOCKED = "TokensUnlocked"
OTHER_TOKENS_WITHDRAWN = "OtherTokensWithdrawn"
REWARDS_CLAIM = "RewardsClaim"
UPDATE_LISTING_REWARDS = "UpdateListingRewards"
TOKEN_WITHDRAWN_OWNER = "TokenWithdrawnOwner"
STAKING_POOL_UPDATE = "StakingPoolUpdate"
PAUSED = "Paused"
UNPAUSED = "Unpaused"

EVENT_FIELDS: dict[str, tuple[str, ...]] = {
    TOKENS_UNLOCKED: ("amount",),
    OTHER_TOKENS_WITHDRAWN: ("currency", "amount"),
    REWARDS_CLAIM: ("user", "round", "amount"),
    UPDATE_LISTING_REWARDS: ("round",),
    TOKEN_WITHDRAWN_OWNER: ("amount",),
    STAKING_POOL_UPDATE: ("new_sink_address",),
    PAUSED: ("account",),
    UNPAUSED: ("account",),
}

EventListener = Callable[["EntitlementEvent"], None]


@dataclass
class EntitlementEvent:
    """Represents an event emitted by a vesting schedule or reward distributor."""

    event_type: str
    emitter: str
    fields: dict[str, Any]
    block_number: int | None = None
    timestamp: int | None = None

    def __getitem__(self, key: str) -> Any:
        return self.fields[key]

    def to_dict(self) -> dict[str, Any]:
        return {
            "event_type": self.event_type,
            "emitter": self.emitter,
            "fields": dict(self.fields),
            "block_number": self.block_number,
            "timestamp": self.timestamp,
        }


class EventEmitter:
    """Append-only event log with listener fan-out, composed into each engine."""

    def __init__(
        self,
        emitter: str,
        listeners: list[EventListener] | None = None,
        clock: Callable[[], int] | None = None,
    ):
        self.emitter = emitter
        self._clock = clock
        self.events: list[EntitlementEvent] = []
        self._listeners: list[EventListener] = list(listeners or [])

    def subscribe(self, listener: EventListener) -> None:
        self._listeners.append(listener)

    def emit(self, event_type: str, block_number: int | None = None, **fields: Any) -> EntitlementEvent:
        expected = EVENT_FIELDS.get(event_type)
        if expected is None:
            raise ValueError(f"Unknown event type {event_type!r}")
        if set(fields) != set(expected):
            raise ValueError(f"{event_type} requires fields {expected}, got {tuple(fields)}")

        event = EntitlementEvent(
            event_type=event_type,
            emitter=self.emitter,
            fields=fields,
            block_number=block_number,
            timestamp=self._clock() if self._clock is not None else None,
        )
        self.events.append(event)

        for listener in self._listeners:
            try:
                listener(event)
            except Exception as exc:
                logger.error(
                    "Event listener failed",
                    extra={
                        "event": "events.listener_failed",
                        "event_type": event_type,
                        "error": str(exc),
                    },
                )
        return event

    def of_type(self, event_type: str) -> list[EntitlementEvent]:
        return [event for event in self.events if event.event_type == event_type]
