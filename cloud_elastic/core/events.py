"""Simulation events and event types."""

from enum import Enum
from typing import Any, Callable, Dict, List
from dataclasses import dataclass, field
from loguru import logger


class EventType(Enum):
    """Types of simulation events."""

    # Cloudlet events
    CLOUDLET_SUBMITTED = "cloudlet_submitted"
    CLOUDLET_STARTED = "cloudlet_started"
    CLOUDLET_COMPLETED = "cloudlet_completed"
    CLOUDLET_FAILED = "cloudlet_failed"

    # VM events
    VM_CREATED = "vm_created"
    VM_REJECTED = "vm_rejected"
    VM_DRAINING = "vm_draining"
    VM_DESTROYED = "vm_destroyed"


@dataclass
class SimulationEvent:
    """A simulation event with timestamp and associated data."""

    timestamp: float
    event_type: EventType
    resource_id: Any
    data: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        logger.debug(
            f"Event: {self.event_type.value} at {self.timestamp:.2f}s "
            f"for {self.resource_id}"
        )


class EventBus:
    """Publishes engine events to subscribers and keeps an event log."""

    def __init__(self) -> None:
        self.event_log: List[SimulationEvent] = []
        self.event_handlers: Dict[EventType, List[Callable[[SimulationEvent], None]]] = {}

    def subscribe(self, event_type: EventType, handler: Callable[[SimulationEvent], None]) -> None:
        """Subscribe a handler to an event type."""
        self.event_handlers.setdefault(event_type, []).append(handler)
        logger.debug(f"Handler subscribed to {event_type.value}")

    def publish(self, event: SimulationEvent) -> None:
        """Record an event and hand it to all subscribers."""
        self.event_log.append(event)

        for handler in self.event_handlers.get(event.event_type, []):
            try:
                handler(event)
            except Exception as e:
                logger.error(f"Error handling event {event.event_type.value}: {e}")

    def events_of(self, event_type: EventType) -> List[SimulationEvent]:
        return [e for e in self.event_log if e.event_type == event_type]
