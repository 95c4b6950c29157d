"""Simulation events, scheduler signals and the event bus."""

from enum import Enum
from typing import Any, Callable, Dict, List, Optional
from dataclasses import dataclass, field
from loguru import logger


class EventType(Enum):
    """Types of simulation events and scheduler signals."""

    # Substrate events delivered to the scheduler
    TASK_ARRIVAL = "task_arrival"
    TASK_COMPLETION = "task_completion"
    MIGRATION_COMPLETE = "migration_complete"
    POWER_TRANSITION_COMPLETE = "power_transition_complete"
    MEMORY_PRESSURE = "memory_pressure"
    PERIODIC_TICK = "periodic_tick"
    SHUTDOWN = "shutdown"

    # Signals raised by the scheduler
    TASK_ASSIGNED = "task_assigned"
    TASK_DEFERRED = "task_deferred"
    TASK_OFFLOADED = "task_offloaded"
    MACHINE_WAKE_REQUESTED = "machine_wake_requested"
    MACHINE_ACTIVATED = "machine_activated"
    MACHINE_POWERED_DOWN = "machine_powered_down"
    SLA_VIOLATION = "sla_violation"


@dataclass
class SimulationEvent:
    """A simulation event with timestamp and associated data."""

    timestamp: float
    event_type: EventType
    resource_id: Optional[int] = None
    data: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        logger.debug(
            f"Event created: {self.event_type.value} at {self.timestamp:.2f}s "
            f"for resource {self.resource_id}"
        )


EventHandler = Callable[[SimulationEvent], None]


class EventBus:
    """Event bus for publishing scheduler signals."""

    def __init__(self) -> None:
        self.event_handlers: Dict[EventType, List[EventHandler]] = {}

    def subscribe(self, event_type: EventType, handler: EventHandler) -> None:
        """Subscribe a handler to an event type."""
        self.event_handlers.setdefault(event_type, []).append(handler)
        logger.debug(f"Handler subscribed to {event_type.value}")

    def publish(self, event: SimulationEvent) -> None:
        """Publish an event to all subscribers."""
        for handler in self.event_handlers.get(event.event_type, []):
            try:
                handler(event)
            except Exception as e:
                logger.error(f"Error handling event {event.event_type.value}: {e}")

    def emit(
        self,
        event_type: EventType,
        timestamp: float,
        resource_id: Optional[int] = None,
        **data: Any,
    ) -> SimulationEvent:
        """Build and publish an event in one call."""
        event = SimulationEvent(
            timestamp=timestamp,
            event_type=event_type,
            resource_id=resource_id,
            data=data,
        )
        self.publish(event)
        return event
