"""Placement policy: choose a machine and VM for each task."""

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Collection, Dict, List, Optional
from dataclasses import dataclass
from enum import Enum
from loguru import logger

from ..core.events import EventBus, EventType
from ..core.substrate import ClusterSubstrate
from ..core.workload import Priority, PriorityClassifier, TaskSpec, sla_priority
from .registry import MachineRecord, Placement, ResourceRegistry

if TYPE_CHECKING:
    from .offload import Offloader
    from .power import PowerStateController


class SelectionStrategy(ABC):
    """Orders eligible machines, the first one wins."""

    name: str = ""

    @abstractmethod
    def order(self, candidates: List[MachineRecord], task: TaskSpec) -> List[MachineRecord]:
        pass


class LeastLoadedStrategy(SelectionStrategy):
    """Fewest resident tasks first, ties broken by machine id."""

    name = "least_loaded"

    def order(self, candidates: List[MachineRecord], task: TaskSpec) -> List[MachineRecord]:
        return sorted(candidates, key=lambda m: (m.task_count, m.machine_id))


class EnergyAscendingStrategy(SelectionStrategy):
    """Lowest reported energy first."""

    name = "energy_ascending"

    def __init__(self, substrate: ClusterSubstrate):
        self.substrate = substrate

    def order(self, candidates: List[MachineRecord], task: TaskSpec) -> List[MachineRecord]:
        return sorted(
            candidates,
            key=lambda m: (self.substrate.machine_info(m.machine_id).energy_consumed, m.machine_id),
        )


class FirstFitStrategy(SelectionStrategy):
    """Machine id order."""

    name = "first_fit"

    def order(self, candidates: List[MachineRecord], task: TaskSpec) -> List[MachineRecord]:
        return sorted(candidates, key=lambda m: m.machine_id)


class BestFitStrategy(SelectionStrategy):
    """Tightest memory fit first."""

    name = "best_fit"

    def order(self, candidates: List[MachineRecord], task: TaskSpec) -> List[MachineRecord]:
        return sorted(candidates, key=lambda m: (m.memory_free - task.memory, m.machine_id))


def create_strategy(name: str, substrate: ClusterSubstrate) -> SelectionStrategy:
    """Build a selection strategy by name."""
    strategies: Dict[str, SelectionStrategy] = {
        LeastLoadedStrategy.name: LeastLoadedStrategy(),
        EnergyAscendingStrategy.name: EnergyAscendingStrategy(substrate),
        FirstFitStrategy.name: FirstFitStrategy(),
        BestFitStrategy.name: BestFitStrategy(),
    }
    if name not in strategies:
        raise ValueError(f"Unknown selection policy: '{name}'. "
                         f"Must be one of {sorted(strategies)}")
    return strategies[name]


class PlacementKind(Enum):
    """What happened to a task handed to the placement policy."""
    ASSIGNED = "assigned"
    WOKE_MACHINE = "woke_machine"
    DEFERRED = "deferred"


@dataclass
class PlacementOutcome:
    """Result of a placement attempt."""
    kind: PlacementKind
    task_id: int
    machine_id: Optional[int] = None
    vm_id: Optional[int] = None
    reason: str = ""

    @property
    def assigned(self) -> bool:
        return self.kind == PlacementKind.ASSIGNED


class PlacementPolicy:
    """Places tasks on eligible active machines.

    When no active machine qualifies it asks the power controller to wake
    one, then falls back to a bounded number of offloads, and finally
    reports the task as deferred.
    """

    def __init__(
        self,
        registry: ResourceRegistry,
        substrate: ClusterSubstrate,
        strategy: SelectionStrategy,
        power: "PowerStateController",
        event_bus: Optional[EventBus] = None,
        classifier: PriorityClassifier = sla_priority,
        vm_task_capacity: Optional[int] = None,
        max_vms_per_machine: Optional[int] = None,
        max_offload_attempts: int = 3,
        high_priority_prefers_fresh: bool = True,
    ):
        self.registry = registry
        self.substrate = substrate
        self.strategy = strategy
        self.power = power
        self.event_bus = event_bus or EventBus()
        self.classifier = classifier
        self.vm_task_capacity = vm_task_capacity
        self.max_vms_per_machine = max_vms_per_machine
        self.max_offload_attempts = max_offload_attempts
        self.high_priority_prefers_fresh = high_priority_prefers_fresh
        self.offloader: Optional["Offloader"] = None

        self.logger = logger.bind(component="PlacementPolicy")
        self.logger.info(f"Placement policy initialized with {strategy.name} selection")

    # Eligibility

    def _can_host(self, machine: MachineRecord, task: TaskSpec) -> bool:
        """Is there a VM slot for the task on this machine?"""
        if self.registry.find_vm(machine.machine_id, task.vm_type, task.cpu) is not None:
            return True
        return self.max_vms_per_machine is None or len(machine.vm_ids) < self.max_vms_per_machine

    def eligible_machines(
        self, task: TaskSpec, exclude: Collection[int] = ()
    ) -> List[MachineRecord]:
        """Active machines that can take the task right now."""
        return [
            machine for machine in self.registry.machines_of_cpu(task.cpu)
            if machine.machine_id not in exclude
            and self.registry.is_eligible(machine.machine_id, task.cpu, task.memory)
            and self._can_host(machine, task)
        ]

    def select_machine(
        self,
        task: TaskSpec,
        exclude: Collection[int] = (),
        fresh_only: bool = False,
    ) -> Optional[MachineRecord]:
        """Pick the best eligible machine, or None."""
        candidates = self.eligible_machines(task, exclude)
        if fresh_only:
            candidates = [m for m in candidates if m.task_count == 0]
        if not candidates:
            return None
        return self.strategy.order(candidates, task)[0]

    # Assignment

    def assign(self, task: TaskSpec, priority: Priority, machine_id: int, now: float) -> PlacementOutcome:
        """Put a task on a machine, reusing a VM of its type when one has room."""
        vm = self.registry.find_vm(machine_id, task.vm_type, task.cpu)
        if vm is None:
            vm_id = self.substrate.vm_create(task.vm_type, task.cpu)
            self.substrate.vm_attach(vm_id, machine_id)
            vm = self.registry.add_vm(vm_id, machine_id, task.vm_type, task.cpu,
                                      capacity=self.vm_task_capacity)
            self.logger.debug(f"Created VM {vm_id} ({task.vm_type.value}) on machine {machine_id}")
        return self.assign_to_vm(task, priority, vm.vm_id, now)

    def assign_to_vm(self, task: TaskSpec, priority: Priority, vm_id: int, now: float) -> PlacementOutcome:
        """Put a task on a specific, already attached VM."""
        machine_id = self.registry.vms[vm_id].machine_id
        self.registry.record_assign(task.task_id, machine_id, vm_id, task.memory, now)
        self.substrate.vm_add_task(vm_id, task.task_id, priority)

        self.logger.info(f"Task {task.task_id} assigned to machine {machine_id} VM {vm_id}")
        self.event_bus.emit(EventType.TASK_ASSIGNED, now, task.task_id,
                            machine_id=machine_id, vm_id=vm_id)
        return PlacementOutcome(PlacementKind.ASSIGNED, task.task_id, machine_id, vm_id)

    def relocate(self, task: TaskSpec, placement: Placement, machine_id: int, now: float) -> PlacementOutcome:
        """Move a resident task to another machine."""
        priority = self.classifier(task)
        self.substrate.vm_remove_task(placement.vm_id, task.task_id)
        self.registry.record_complete(task.task_id, now)
        return self.assign(task, priority, machine_id, now)

    def try_direct(
        self,
        task: TaskSpec,
        now: float,
        exclude: Collection[int] = (),
        priority: Optional[Priority] = None,
    ) -> Optional[PlacementOutcome]:
        """Assign to an eligible active machine without waking or offloading."""
        priority = priority or self.classifier(task)
        machine = self.select_machine(task, exclude)
        if machine is None:
            return None
        return self.assign(task, priority, machine.machine_id, now)

    def try_machine(self, task: TaskSpec, machine_id: int, now: float) -> Optional[PlacementOutcome]:
        """Assign to one given machine if it is eligible."""
        machine = self.registry.machine(machine_id)
        if not self.registry.is_eligible(machine_id, task.cpu, task.memory):
            return None
        if not self._can_host(machine, task):
            return None
        return self.assign(task, self.classifier(task), machine_id, now)

    # Full placement

    def place(self, task_id: int, now: float, exclude: Collection[int] = ()) -> PlacementOutcome:
        """Place an arriving task: direct, wake, offload, or defer."""
        task = self.substrate.task_requirements(task_id)
        priority = self.classifier(task)

        existing = self.registry.placement(task_id)
        if existing is not None:
            self.logger.warning(f"Task {task_id} is already placed on machine {existing.machine_id}")
            return PlacementOutcome(PlacementKind.ASSIGNED, task_id,
                                    existing.machine_id, existing.vm_id)

        if not self.registry.machines_of_cpu(task.cpu):
            self.logger.warning(f"No {task.cpu.value} machine exists for task {task_id}")
            return PlacementOutcome(PlacementKind.DEFERRED, task_id,
                                    reason=f"no {task.cpu.value} machine")

        if priority == Priority.HIGH and self.high_priority_prefers_fresh:
            # Fresh capacity first, loaded machines last
            machine = self.select_machine(task, exclude, fresh_only=True)
            if machine is not None:
                return self.assign(task, priority, machine.machine_id, now)
            outcome = self._wake(task, now, exclude)
            if outcome is not None:
                return outcome
            outcome = self.try_direct(task, now, exclude, priority)
            if outcome is not None:
                return outcome
        else:
            outcome = self.try_direct(task, now, exclude, priority)
            if outcome is not None:
                return outcome
            outcome = self._wake(task, now, exclude)
            if outcome is not None:
                return outcome

        outcome = self._place_after_offload(task, priority, now, exclude)
        if outcome is not None:
            return outcome

        self.logger.warning(f"Task {task_id} is unplaceable, SLA at risk")
        self.event_bus.emit(EventType.SLA_VIOLATION, now, task_id, sla=task.sla.value)
        return PlacementOutcome(PlacementKind.DEFERRED, task_id, reason="no capacity")

    def _wake(self, task: TaskSpec, now: float, exclude: Collection[int]) -> Optional[PlacementOutcome]:
        request = self.power.request_wake(task, now, exclude)
        if request is None:
            return None
        return PlacementOutcome(PlacementKind.WOKE_MACHINE, task.task_id,
                                request.machine_id, request.vm_id)

    def _place_after_offload(
        self,
        task: TaskSpec,
        priority: Priority,
        now: float,
        exclude: Collection[int],
    ) -> Optional[PlacementOutcome]:
        """Free room by offloading from congested machines, then retry.

        A machine is only offloaded when moving one of its tasks could make
        the new task fit there.
        """
        if self.offloader is None or self.offloader.in_progress:
            return None

        congested = sorted(
            (m for m in self.registry.machines_of_cpu(task.cpu)
             if m.accepts_tasks and m.task_count and m.machine_id not in exclude
             and m.memory_capacity >= task.memory),
            key=lambda m: (-m.memory_used, m.machine_id),
        )
        for machine in congested[:self.max_offload_attempts]:
            shortfall = task.memory - machine.memory_free
            if not self.offloader.offload(machine.machine_id, now, min_memory=shortfall):
                continue
            outcome = self.try_direct(task, now, exclude, priority)
            if outcome is not None:
                return outcome
        return None
