"""Resource registry: the scheduler's bookkeeping of machines, VMs and tasks."""

from typing import Dict, Iterator, List, Optional
from dataclasses import dataclass, field
from itertools import count
from loguru import logger

from ..core.resources import CPUType, PowerState, VMType


class RegistryError(ValueError):
    """A mutation would break a registry invariant."""


@dataclass
class MachineRecord:
    """What the scheduler knows about a machine."""
    machine_id: int
    cpu: CPUType
    memory_capacity: int  # MB
    power_state: PowerState = PowerState.ACTIVE
    memory_used: int = 0  # MB committed to resident tasks
    task_count: int = 0
    idle_since: Optional[float] = None  # None while the machine is busy
    waking: bool = False
    vm_ids: List[int] = field(default_factory=list)

    @property
    def memory_free(self) -> int:
        return self.memory_capacity - self.memory_used

    @property
    def accepts_tasks(self) -> bool:
        return self.power_state == PowerState.ACTIVE and not self.waking


@dataclass
class VMRecord:
    """A VM and its resident tasks, oldest first."""
    vm_id: int
    machine_id: int
    vm_type: VMType
    cpu: CPUType
    capacity: Optional[int] = None
    task_ids: List[int] = field(default_factory=list)

    def has_room(self) -> bool:
        return self.capacity is None or len(self.task_ids) < self.capacity


@dataclass
class Placement:
    """Where a placed task lives."""
    task_id: int
    machine_id: int
    vm_id: int
    memory: int
    placed_at: float
    sequence: int


class ResourceRegistry:
    """Owns machine, VM and task state for one cluster.

    Every placement, completion, offload and power transition goes through
    this class so that load and memory counters always agree with the
    task -> machine/VM map.
    """

    def __init__(self) -> None:
        self.machines: Dict[int, MachineRecord] = {}
        self.vms: Dict[int, VMRecord] = {}
        self.placements: Dict[int, Placement] = {}
        self._sequence = count()

    # Machines

    def register_machine(
        self,
        machine_id: int,
        cpu: CPUType,
        memory_capacity: int,
        power_state: PowerState = PowerState.ACTIVE,
        now: Optional[float] = None,
    ) -> MachineRecord:
        """Start tracking a machine, idle from ``now`` when it is active."""
        record = MachineRecord(
            machine_id=machine_id,
            cpu=cpu,
            memory_capacity=memory_capacity,
            power_state=power_state,
            idle_since=now if power_state == PowerState.ACTIVE else None,
        )
        self.machines[machine_id] = record
        return record

    def machine(self, machine_id: int) -> MachineRecord:
        return self.machines[machine_id]

    def machines_of_cpu(self, cpu: CPUType) -> List[MachineRecord]:
        """All machines of a CPU type, in id order."""
        return sorted(
            (m for m in self.machines.values() if m.cpu == cpu),
            key=lambda m: m.machine_id,
        )

    def memory_used(self, machine_id: int) -> int:
        return self.machines[machine_id].memory_used

    def is_eligible(self, machine_id: int, cpu: CPUType, memory: int) -> bool:
        """Can the machine take a task of this CPU type and footprint right now?"""
        machine = self.machines[machine_id]
        return (
            machine.accepts_tasks
            and machine.cpu == cpu
            and machine.memory_free >= memory
        )

    def set_power_state(self, machine_id: int, state: PowerState, now: float) -> None:
        machine = self.machines[machine_id]
        if state != PowerState.ACTIVE and machine.task_count:
            raise RegistryError(
                f"Machine {machine_id} still hosts {machine.task_count} tasks"
            )
        machine.power_state = state
        machine.idle_since = now if state == PowerState.ACTIVE and not machine.task_count else None

    def mark_waking(self, machine_id: int, waking: bool) -> None:
        self.machines[machine_id].waking = waking

    # VMs

    def add_vm(
        self,
        vm_id: int,
        machine_id: int,
        vm_type: VMType,
        cpu: CPUType,
        capacity: Optional[int] = None,
    ) -> VMRecord:
        """Record a VM attached to a machine."""
        machine = self.machines[machine_id]
        if machine.cpu != cpu:
            raise RegistryError(f"VM {vm_id} needs {cpu.value}, machine {machine_id} "
                                f"is {machine.cpu.value}")
        record = VMRecord(vm_id=vm_id, machine_id=machine_id, vm_type=vm_type,
                          cpu=cpu, capacity=capacity)
        self.vms[vm_id] = record
        machine.vm_ids.append(vm_id)
        return record

    def remove_vm(self, vm_id: int) -> VMRecord:
        """Forget an empty VM."""
        vm = self.vms[vm_id]
        if vm.task_ids:
            raise RegistryError(f"VM {vm_id} still hosts tasks {vm.task_ids}")
        del self.vms[vm_id]
        self.machines[vm.machine_id].vm_ids.remove(vm_id)
        return vm

    def move_vm(self, vm_id: int, machine_id: int, now: float) -> None:
        """Re-home a VM and its tasks after a migration."""
        vm = self.vms[vm_id]
        if vm.machine_id == machine_id:
            return

        source = self.machines[vm.machine_id]
        destination = self.machines[machine_id]
        memory = self.vm_memory(vm_id)
        if destination.memory_free < memory:
            raise RegistryError(f"Machine {machine_id} cannot absorb VM {vm_id} ({memory}MB)")

        source.vm_ids.remove(vm_id)
        source.memory_used -= memory
        source.task_count -= len(vm.task_ids)
        if source.task_count == 0:
            source.idle_since = now

        destination.vm_ids.append(vm_id)
        destination.memory_used += memory
        destination.task_count += len(vm.task_ids)
        if destination.task_count:
            destination.idle_since = None

        vm.machine_id = machine_id
        for task_id in vm.task_ids:
            self.placements[task_id].machine_id = machine_id

    def vm_memory(self, vm_id: int) -> int:
        """Memory committed to the tasks resident in a VM."""
        return sum(self.placements[t].memory for t in self.vms[vm_id].task_ids)

    def find_vm(self, machine_id: int, vm_type: VMType, cpu: CPUType) -> Optional[VMRecord]:
        """An existing VM of the right type with spare capacity."""
        for vm_id in self.machines[machine_id].vm_ids:
            vm = self.vms[vm_id]
            if vm.vm_type == vm_type and vm.cpu == cpu and vm.has_room():
                return vm
        return None

    # Tasks

    def record_assign(
        self, task_id: int, machine_id: int, vm_id: int, memory: int, now: float
    ) -> Placement:
        """Commit a task to a VM on a machine."""
        if task_id in self.placements:
            raise RegistryError(f"Task {task_id} is already placed on "
                                f"machine {self.placements[task_id].machine_id}")
        machine = self.machines[machine_id]
        vm = self.vms[vm_id]
        if vm.machine_id != machine_id:
            raise RegistryError(f"VM {vm_id} is not hosted on machine {machine_id}")
        if not machine.accepts_tasks:
            raise RegistryError(f"Machine {machine_id} is not accepting tasks")
        if machine.memory_free < memory:
            raise RegistryError(f"Machine {machine_id} has {machine.memory_free}MB free, "
                                f"task {task_id} needs {memory}MB")
        if not vm.has_room():
            raise RegistryError(f"VM {vm_id} is at capacity")

        placement = Placement(
            task_id=task_id,
            machine_id=machine_id,
            vm_id=vm_id,
            memory=memory,
            placed_at=now,
            sequence=next(self._sequence),
        )
        self.placements[task_id] = placement
        vm.task_ids.append(task_id)
        machine.memory_used += memory
        machine.task_count += 1
        machine.idle_since = None

        logger.debug(f"Task {task_id} recorded on machine {machine_id} VM {vm_id} "
                    f"({machine.memory_used}/{machine.memory_capacity}MB)")
        return placement

    def record_complete(self, task_id: int, now: float) -> Optional[Placement]:
        """Release a task's resources, None when the task is unknown."""
        placement = self.placements.pop(task_id, None)
        if placement is None:
            return None

        machine = self.machines[placement.machine_id]
        self.vms[placement.vm_id].task_ids.remove(task_id)
        machine.memory_used -= placement.memory
        machine.task_count -= 1
        if machine.task_count == 0:
            machine.idle_since = now
        return placement

    def placement(self, task_id: int) -> Optional[Placement]:
        return self.placements.get(task_id)

    def is_placed(self, task_id: int) -> bool:
        return task_id in self.placements

    def placed_count(self) -> int:
        return len(self.placements)

    def oldest_tasks(self, machine_id: int) -> Iterator[Placement]:
        """Resident tasks of a machine, oldest placement first."""
        resident = [
            self.placements[task_id]
            for vm_id in self.machines[machine_id].vm_ids
            for task_id in self.vms[vm_id].task_ids
        ]
        return iter(sorted(resident, key=lambda p: p.sequence))
