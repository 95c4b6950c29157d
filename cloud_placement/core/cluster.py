"""In-memory cluster substrate with power, energy and SLA accounting."""

from typing import Callable, Dict, List, Optional, Set
from dataclasses import dataclass, field
from loguru import logger

from .resources import CorePerformance, CPUType, MachineInfo, PowerState, VMInfo, VMType
from .substrate import ClusterSubstrate
from .workload import SLA_LATENCY_FACTOR, Priority, SLAClass, TaskSpec


JOULES_PER_KWH = 3.6e6


@dataclass
class PowerProfile:
    """Power draw and transition latency of a machine."""
    active_watts: float = 200.0
    per_task_watts: float = 15.0
    idle_low_power_watts: float = 40.0
    off_watts: float = 0.0
    wake_from_off_latency: float = 10.0  # seconds
    wake_from_idle_latency: float = 1.0  # seconds
    power_down_latency: float = 2.0  # seconds


@dataclass
class _MachineState:
    info: MachineInfo
    vm_ids: Set[int] = field(default_factory=set)
    core_performance: List[CorePerformance] = field(default_factory=list)
    pending_state: Optional[PowerState] = None
    last_update: float = 0.0


@dataclass
class _TaskState:
    spec: TaskSpec
    vm_id: Optional[int] = None
    priority: Optional[Priority] = None
    start_time: Optional[float] = None
    end_time: Optional[float] = None
    sla_violated: bool = False


TransitionListener = Callable[[int, PowerState, float], None]
MigrationListener = Callable[[int, int, float], None]
StartListener = Callable[[int], None]


class SimulatedCluster(ClusterSubstrate):
    """Cluster substrate kept entirely in memory.

    Power transitions and VM migrations are asynchronous: they stay pending
    until ``complete_transition`` / ``complete_migration`` is called, which
    the simulator does after the configured latency.
    """

    def __init__(
        self,
        power_profile: Optional[PowerProfile] = None,
        vm_memory_overhead: int = 0,
        migration_latency: float = 5.0,
    ):
        self.power_profile = power_profile or PowerProfile()
        self.vm_memory_overhead = vm_memory_overhead
        self.migration_latency = migration_latency
        self.now = 0.0

        self.machines: Dict[int, _MachineState] = {}
        self.vms: Dict[int, VMInfo] = {}
        self.tasks: Dict[int, _TaskState] = {}
        self.pending_migrations: Dict[int, int] = {}  # vm_id -> destination
        self._next_vm_id = 0

        # Hooks the simulator uses to schedule follow-up events
        self.transition_listener: Optional[TransitionListener] = None
        self.migration_listener: Optional[MigrationListener] = None
        self.start_listener: Optional[StartListener] = None

    # Setup

    def add_machine(
        self,
        cpu: CPUType,
        memory_size: int,
        num_cores: int = 8,
        state: PowerState = PowerState.ACTIVE,
    ) -> int:
        """Add a machine and return its id."""
        machine_id = len(self.machines)
        info = MachineInfo(
            machine_id=machine_id,
            cpu=cpu,
            memory_size=memory_size,
            power_state=state,
            num_cores=num_cores,
        )
        self.machines[machine_id] = _MachineState(
            info=info,
            core_performance=[CorePerformance.P3] * num_cores,
            last_update=self.now,
        )
        logger.debug(f"Machine {machine_id} added: {cpu.value}, {memory_size}MB, {state.value}")
        return machine_id

    def submit_task(self, spec: TaskSpec) -> None:
        """Register a task so its requirements can be queried."""
        self.tasks[spec.task_id] = _TaskState(spec=spec)

    # Clock and energy

    def power_draw(self, machine_id: int) -> float:
        """Instantaneous power draw of a machine in watts."""
        info = self.machines[machine_id].info
        profile = self.power_profile
        if info.power_state == PowerState.ACTIVE:
            return profile.active_watts + profile.per_task_watts * info.active_tasks
        if info.power_state == PowerState.IDLE_LOW_POWER:
            return profile.idle_low_power_watts
        return profile.off_watts

    def advance(self, now: float) -> None:
        """Move the clock forward, integrating energy up to ``now``."""
        if now < self.now:
            return
        for machine_id, state in self.machines.items():
            elapsed = now - state.last_update
            if elapsed > 0:
                state.info.energy_consumed += self.power_draw(machine_id) * elapsed
            state.last_update = now
        self.now = now

    # ClusterSubstrate: tasks

    def task_requirements(self, task_id: int) -> TaskSpec:
        return self.tasks[task_id].spec

    # ClusterSubstrate: machines

    def machine_count(self) -> int:
        return len(self.machines)

    def machine_info(self, machine_id: int) -> MachineInfo:
        return self.machines[machine_id].info

    def set_machine_state(self, machine_id: int, state: PowerState) -> None:
        machine = self.machines[machine_id]
        current = machine.info.power_state
        if current == state and machine.pending_state is None:
            return

        machine.pending_state = state
        latency = self.transition_latency(machine_id, state)
        logger.debug(f"Machine {machine_id} transition {current.value} -> {state.value} "
                    f"({latency:.1f}s)")
        if self.transition_listener:
            self.transition_listener(machine_id, state, latency)

    def transition_latency(self, machine_id: int, state: PowerState) -> float:
        """Time a transition from the machine's current state takes."""
        current = self.machines[machine_id].info.power_state
        if state != PowerState.ACTIVE:
            return self.power_profile.power_down_latency
        if current == PowerState.OFF:
            return self.power_profile.wake_from_off_latency
        return self.power_profile.wake_from_idle_latency

    def complete_transition(self, machine_id: int, state: Optional[PowerState] = None) -> bool:
        """Apply a pending transition, ignoring stale completions."""
        machine = self.machines[machine_id]
        if machine.pending_state is None:
            return False
        if state is not None and machine.pending_state != state:
            return False

        machine.info.power_state = machine.pending_state
        machine.pending_state = None
        logger.debug(f"Machine {machine_id} is now {machine.info.power_state.value}")
        return True

    def set_core_performance(
        self, machine_id: int, core: int, performance: CorePerformance
    ) -> None:
        self.machines[machine_id].core_performance[core] = performance

    # ClusterSubstrate: VMs

    def vm_create(self, vm_type: VMType, cpu: CPUType) -> int:
        vm_id = self._next_vm_id
        self._next_vm_id += 1
        self.vms[vm_id] = VMInfo(vm_id=vm_id, vm_type=vm_type, cpu=cpu)
        return vm_id

    def vm_attach(self, vm_id: int, machine_id: int) -> None:
        vm = self.vms[vm_id]
        machine = self.machines[machine_id]
        if vm.cpu != machine.info.cpu:
            raise ValueError(f"VM {vm_id} ({vm.cpu.value}) cannot run on "
                             f"machine {machine_id} ({machine.info.cpu.value})")
        vm.machine_id = machine_id
        machine.vm_ids.add(vm_id)
        self._refresh(machine_id)

    def vm_shutdown(self, vm_id: int) -> None:
        vm = self.vms.pop(vm_id)
        if vm.active_tasks:
            raise ValueError(f"VM {vm_id} still runs tasks {vm.active_tasks}")
        if vm.machine_id is not None:
            self.machines[vm.machine_id].vm_ids.discard(vm_id)
            self._refresh(vm.machine_id)

    def vm_info(self, vm_id: int) -> VMInfo:
        return self.vms[vm_id]

    def vm_add_task(self, vm_id: int, task_id: int, priority: Priority) -> None:
        vm = self.vms[vm_id]
        if vm.machine_id is None:
            raise ValueError(f"VM {vm_id} is not attached to a machine")
        if self.machines[vm.machine_id].info.power_state != PowerState.ACTIVE:
            raise ValueError(f"Machine {vm.machine_id} is not active")

        task = self.tasks[task_id]
        vm.active_tasks.append(task_id)
        task.vm_id = vm_id
        task.priority = priority
        self._refresh(vm.machine_id)

        if task.start_time is None:
            task.start_time = self.now
            if self.start_listener:
                self.start_listener(task_id)

    def vm_remove_task(self, vm_id: int, task_id: int) -> None:
        vm = self.vms[vm_id]
        vm.active_tasks.remove(task_id)
        self.tasks[task_id].vm_id = None
        self._refresh(vm.machine_id)

    def vm_migrate(self, vm_id: int, machine_id: int) -> None:
        """Start moving a VM to another machine."""
        self.pending_migrations[vm_id] = machine_id
        if self.migration_listener:
            self.migration_listener(vm_id, machine_id, self.migration_latency)

    def complete_migration(self, vm_id: int) -> bool:
        """Land a pending migration on its destination machine."""
        destination = self.pending_migrations.pop(vm_id, None)
        if destination is None or vm_id not in self.vms:
            return False

        vm = self.vms[vm_id]
        source = vm.machine_id
        if source is not None:
            self.machines[source].vm_ids.discard(vm_id)
            self._refresh(source)
        vm.machine_id = destination
        self.machines[destination].vm_ids.add(vm_id)
        self._refresh(destination)
        return True

    # Task lifecycle

    def complete_task(self, task_id: int) -> None:
        """Finish a running task and account its SLA."""
        task = self.tasks[task_id]
        if task.vm_id is not None:
            self.vm_remove_task(task.vm_id, task_id)
        task.end_time = self.now

        factor = SLA_LATENCY_FACTOR[task.spec.sla]
        if factor is not None:
            turnaround = task.end_time - task.spec.arrival_time
            task.sla_violated = turnaround > factor * task.spec.duration

    # ClusterSubstrate: metering

    def sla_report(self, sla: SLAClass) -> float:
        finished = [t for t in self.tasks.values()
                    if t.end_time is not None and t.spec.sla == sla]
        if not finished:
            return 0.0
        return 100.0 * sum(1 for t in finished if t.sla_violated) / len(finished)

    def cluster_energy(self) -> float:
        joules = sum(m.info.energy_consumed for m in self.machines.values())
        return joules / JOULES_PER_KWH

    def machines_over_memory(self, threshold: float) -> List[int]:
        """Machines whose memory utilization is at or above ``threshold``."""
        return [
            machine_id for machine_id, m in self.machines.items()
            if m.info.memory_size > 0
            and m.info.memory_used / m.info.memory_size >= threshold
        ]

    def _refresh(self, machine_id: int) -> None:
        machine = self.machines[machine_id]
        task_ids = [t for vm_id in machine.vm_ids for t in self.vms[vm_id].active_tasks]
        machine.info.active_vms = len(machine.vm_ids)
        machine.info.active_tasks = len(task_ids)
        machine.info.memory_used = (
            sum(self.tasks[t].spec.memory for t in task_ids)
            + self.vm_memory_overhead * len(machine.vm_ids)
        )
