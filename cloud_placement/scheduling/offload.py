"""Offloader: relieve congested machines by relocating resident tasks."""

from typing import Optional
from loguru import logger

from ..core.events import EventBus, EventType
from ..core.substrate import ClusterSubstrate
from .placement import PlacementPolicy
from .registry import ResourceRegistry


class Offloader:
    """Moves one task off a machine to another eligible machine.

    The victim is re-placed with the placement policy's direct search, with
    its current machine excluded and the destination chosen before the task
    is evicted. That search never wakes a machine or starts another offload,
    so a relocation cannot cascade.

    Only one offload runs at a time. A trigger that arrives while an offload
    is in flight is rejected.
    """

    def __init__(
        self,
        registry: ResourceRegistry,
        substrate: ClusterSubstrate,
        placement: PlacementPolicy,
        event_bus: Optional[EventBus] = None,
    ):
        self.registry = registry
        self.substrate = substrate
        self.placement = placement
        self.event_bus = event_bus or EventBus()
        self._in_progress = False
        self.offload_count = 0
        self.rejected_count = 0

    @property
    def in_progress(self) -> bool:
        return self._in_progress

    def offload(self, machine_id: int, now: float, min_memory: int = 0) -> bool:
        """Relocate the oldest movable task off a machine.

        Only tasks with a footprint of at least ``min_memory`` MB are
        considered, so a successful offload frees at least that much.
        """
        if self._in_progress:
            self.rejected_count += 1
            logger.debug(f"Offload of machine {machine_id} rejected, another offload is running")
            return False

        self._in_progress = True
        try:
            return self._relocate_one(machine_id, now, min_memory)
        finally:
            self._in_progress = False

    def _relocate_one(self, machine_id: int, now: float, min_memory: int) -> bool:
        for placement in self.registry.oldest_tasks(machine_id):
            if placement.memory < min_memory:
                continue
            task = self.substrate.task_requirements(placement.task_id)
            # Pick the destination before touching the source
            target = self.placement.select_machine(task, exclude={machine_id})
            if target is None:
                continue

            self.placement.relocate(task, placement, target.machine_id, now)
            self.offload_count += 1
            logger.info(f"Offloaded task {task.task_id} ({task.memory}MB) "
                       f"from machine {machine_id} to machine {target.machine_id}")
            self.event_bus.emit(EventType.TASK_OFFLOADED, now, task.task_id,
                                source=machine_id, destination=target.machine_id)
            return True

        logger.info(f"No movable task on machine {machine_id}")
        return False
