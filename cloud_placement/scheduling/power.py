"""Power-state controller: machine wake-ups and idle power-down."""

from typing import Collection, Dict, List, Optional
from dataclasses import dataclass
from loguru import logger

from ..core.events import EventBus, EventType
from ..core.resources import CorePerformance, PowerState
from ..core.substrate import ClusterSubstrate
from ..core.workload import TaskSpec
from .registry import MachineRecord, ResourceRegistry


@dataclass
class WakeRequest:
    """A machine being powered on for a task that is held until it is up."""
    machine_id: int
    vm_id: int
    task_id: int
    requested_at: float


class PowerStateController:
    """Drives machines between active and low-power states.

    Wake-ups are asynchronous: ``request_wake`` issues the transition and
    records a ``WakeRequest``; ``complete_wake`` resolves it when the
    substrate reports the machine is up.
    """

    def __init__(
        self,
        registry: ResourceRegistry,
        substrate: ClusterSubstrate,
        event_bus: Optional[EventBus] = None,
        idle_grace_period: float = 30.0,
        idle_power_state: PowerState = PowerState.OFF,
        min_active_per_cpu: int = 0,
        vm_task_capacity: Optional[int] = None,
    ):
        if idle_power_state == PowerState.ACTIVE:
            raise ValueError("idle_power_state must be a low-power state")

        self.registry = registry
        self.substrate = substrate
        self.event_bus = event_bus or EventBus()
        self.idle_grace_period = idle_grace_period
        self.idle_power_state = idle_power_state
        self.min_active_per_cpu = min_active_per_cpu
        self.vm_task_capacity = vm_task_capacity

        self.pending: Dict[int, WakeRequest] = {}
        self.wake_count = 0
        self.power_down_count = 0

    # Activation

    def set_full_performance(self, machine_id: int) -> None:
        """Run every core of a machine at P0."""
        num_cores = self.substrate.machine_info(machine_id).num_cores
        for core in range(num_cores):
            self.substrate.set_core_performance(machine_id, core, CorePerformance.P0)

    def pending_tasks(self) -> List[int]:
        """Tasks held until their machine finishes waking."""
        return [request.task_id for request in self.pending.values()]

    def wake_candidates(
        self, task: TaskSpec, exclude: Collection[int] = ()
    ) -> List[MachineRecord]:
        """Sleeping machines that could host the task, quickest to wake first."""
        candidates = [
            machine for machine in self.registry.machines_of_cpu(task.cpu)
            if machine.power_state != PowerState.ACTIVE
            and not machine.waking
            and machine.machine_id not in exclude
            and machine.memory_capacity >= task.memory
        ]
        return sorted(
            candidates,
            key=lambda m: (m.power_state == PowerState.OFF, m.machine_id),
        )

    def request_wake(
        self, task: TaskSpec, now: float, exclude: Collection[int] = ()
    ) -> Optional[WakeRequest]:
        """Power on one machine for the task, None if nothing can be woken."""
        candidates = self.wake_candidates(task, exclude)
        if not candidates:
            return None

        machine = candidates[0]
        self.substrate.set_machine_state(machine.machine_id, PowerState.ACTIVE)
        self.registry.mark_waking(machine.machine_id, True)

        # The VM is created now so the task's image and CPU type are fixed
        vm_id = self.substrate.vm_create(task.vm_type, task.cpu)
        request = WakeRequest(
            machine_id=machine.machine_id,
            vm_id=vm_id,
            task_id=task.task_id,
            requested_at=now,
        )
        self.pending[machine.machine_id] = request
        self.wake_count += 1

        logger.info(f"Waking machine {machine.machine_id} "
                   f"({machine.power_state.value}) for task {task.task_id}")
        self.event_bus.emit(EventType.MACHINE_WAKE_REQUESTED, now, machine.machine_id,
                            task_id=task.task_id, vm_id=vm_id)
        return request

    def complete_wake(self, machine_id: int, now: float) -> Optional[WakeRequest]:
        """Bring a woken machine into service and attach its held VM."""
        request = self.pending.pop(machine_id, None)
        if request is None:
            return None

        task = self.substrate.task_requirements(request.task_id)
        self.substrate.vm_attach(request.vm_id, machine_id)
        self.registry.mark_waking(machine_id, False)
        self.registry.set_power_state(machine_id, PowerState.ACTIVE, now)
        self.registry.add_vm(request.vm_id, machine_id, task.vm_type, task.cpu,
                             capacity=self.vm_task_capacity)
        self.set_full_performance(machine_id)

        logger.info(f"Machine {machine_id} is active after "
                   f"{now - request.requested_at:.2f}s, VM {request.vm_id} attached")
        self.event_bus.emit(EventType.MACHINE_ACTIVATED, now, machine_id, vm_id=request.vm_id)
        return request

    # Power-down

    def _active_count(self, machine: MachineRecord) -> int:
        return sum(
            1 for m in self.registry.machines_of_cpu(machine.cpu)
            if m.power_state == PowerState.ACTIVE
        )

    def is_idle_expired(self, machine: MachineRecord, now: float) -> bool:
        """Has the machine been empty for the whole grace period?"""
        return (
            machine.power_state == PowerState.ACTIVE
            and not machine.waking
            and machine.task_count == 0
            and machine.idle_since is not None
            and now - machine.idle_since >= self.idle_grace_period
        )

    def power_down(self, machine_id: int, now: float, state: Optional[PowerState] = None) -> None:
        """Shut down a machine's empty VMs and put it into a low-power state."""
        state = state or self.idle_power_state
        for vm_id in list(self.registry.machine(machine_id).vm_ids):
            self.registry.remove_vm(vm_id)
            self.substrate.vm_shutdown(vm_id)

        self.substrate.set_machine_state(machine_id, state)
        self.registry.set_power_state(machine_id, state, now)
        self.power_down_count += 1

        logger.info(f"Machine {machine_id} powered down to {state.value}")
        self.event_bus.emit(EventType.MACHINE_POWERED_DOWN, now, machine_id, state=state.value)

    def power_down_idle(self, now: float) -> List[int]:
        """Power down every machine whose idle timer expired."""
        powered_down = []
        for machine_id in sorted(self.registry.machines):
            machine = self.registry.machine(machine_id)
            if not self.is_idle_expired(machine, now):
                continue
            if self._active_count(machine) <= self.min_active_per_cpu:
                continue
            self.power_down(machine_id, now)
            powered_down.append(machine_id)
        return powered_down
