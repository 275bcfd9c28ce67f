"""
OpenDID Contract Events
Events emitted by the gateway and the claims ledger, plus the per-component
log that collects them.
"""

import logging
from collections import deque
from dataclasses import asdict, dataclass
from typing import Any, Callable, Deque, Dict, Iterator, List, Optional, Type

logger = logging.getLogger(__name__)

DEFAULT_HISTORY_SIZE = 1024


def _hex(value: Any) -> Any:
    if isinstance(value, (bytes, bytearray)):
        return "0x" + bytes(value).hex()
    return value


@dataclass(frozen=True)
class Event:
    """Base class for emitted events."""

    @property
    def name(self) -> str:
        return type(self).__name__

    def to_dict(self) -> Dict[str, Any]:
        """JSON-friendly view (bytes as 0x-prefixed hex)."""
        return {key: _hex(value) for key, value in asdict(self).items()}


# ============ Gateway events ============

@dataclass(frozen=True)
class DIDClaimed(Event):
    node: bytes
    ens_name: str
    did_record: str
    claimer: str


@dataclass(frozen=True)
class DIDUpdated(Event):
    node: bytes
    ens_name: str
    old_record: str
    new_record: str
    updater: str


@dataclass(frozen=True)
class DIDRevoked(Event):
    node: bytes
    ens_name: str
    revoker: str


@dataclass(frozen=True)
class ClaimMessageGenerated(Event):
    node: bytes
    ens_name: str
    message_hash: bytes
    claimer: str


# ============ Ledger events ============

@dataclass(frozen=True)
class DIDRegistered(Event):
    did_hash: bytes
    did: str
    eth_owner: str


@dataclass(frozen=True)
class ClaimTypeCreated(Event):
    claim_type: str
    issuer: str
    description: str


@dataclass(frozen=True)
class ClaimAppended(Event):
    did_hash: bytes
    did: str
    index: int
    cid: str
    claim_type: str
    submitter: str


Subscriber = Callable[[str, Event], None]


class EventLog:
    """
    Ordered record of the most recent events one component emitted.

    Only the last `maxlen` events stay in memory; the full history lives in
    the journal subscribed to the log.

    Subscribers are notified after the event is recorded. A failing
    subscriber is logged and never undoes the state change that emitted it.
    """

    def __init__(self, source: str, maxlen: int = DEFAULT_HISTORY_SIZE):
        self.source = source
        self._events: Deque[Event] = deque(maxlen=maxlen)
        self._subscribers: List[Subscriber] = []

    def emit(self, event: Event) -> None:
        self._events.append(event)
        logger.debug(f"{self.source} emitted {event.name}: {event.to_dict()}")
        for subscriber in list(self._subscribers):
            try:
                subscriber(self.source, event)
            except Exception as e:
                logger.warning(f"[!] Event subscriber failed for {event.name}: {e}")

    def subscribe(self, subscriber: Subscriber) -> None:
        self._subscribers.append(subscriber)

    def unsubscribe(self, subscriber: Subscriber) -> None:
        if subscriber in self._subscribers:
            self._subscribers.remove(subscriber)

    def of_type(self, event_type: Type[Event]) -> List[Event]:
        return [event for event in self._events if isinstance(event, event_type)]

    def last(self, event_type: Optional[Type[Event]] = None) -> Optional[Event]:
        events = self.of_type(event_type) if event_type else self._events
        return events[-1] if events else None

    def __iter__(self) -> Iterator[Event]:
        return iter(list(self._events))

    def __len__(self) -> int:
        return len(self._events)
