"""Outbound interface the scheduler uses to observe and drive the cluster."""

from abc import ABC, abstractmethod

from .resources import CorePerformance, CPUType, MachineInfo, PowerState, VMInfo, VMType
from .workload import Priority, SLAClass, TaskSpec


class ClusterSubstrate(ABC):
    """Machines, VMs, energy metering and SLA accounting.

    Calls are synchronous and their results are trusted: a successful
    ``vm_create`` always returns a fresh VM id. Power-state changes are
    asynchronous; the substrate reports completion later through
    ``Scheduler.on_power_transition_complete``.
    """

    # Tasks

    @abstractmethod
    def task_requirements(self, task_id: int) -> TaskSpec:
        """Return CPU type, VM type, memory and SLA class of a task."""

    # Machines

    @abstractmethod
    def machine_count(self) -> int:
        """Total number of machines, ids are ``range(machine_count())``."""

    @abstractmethod
    def machine_info(self, machine_id: int) -> MachineInfo:
        """Current state of a machine."""

    @abstractmethod
    def set_machine_state(self, machine_id: int, state: PowerState) -> None:
        """Request a power-state transition."""

    @abstractmethod
    def set_core_performance(
        self, machine_id: int, core: int, performance: CorePerformance
    ) -> None:
        """Set the performance state of one core."""

    # VMs

    @abstractmethod
    def vm_create(self, vm_type: VMType, cpu: CPUType) -> int:
        """Create an unattached VM and return its id."""

    @abstractmethod
    def vm_attach(self, vm_id: int, machine_id: int) -> None:
        """Attach a VM to a machine."""

    @abstractmethod
    def vm_shutdown(self, vm_id: int) -> None:
        """Destroy a VM, it must not hold tasks."""

    @abstractmethod
    def vm_info(self, vm_id: int) -> VMInfo:
        """Current state of a VM."""

    @abstractmethod
    def vm_add_task(self, vm_id: int, task_id: int, priority: Priority) -> None:
        """Start or resume a task on a VM."""

    @abstractmethod
    def vm_remove_task(self, vm_id: int, task_id: int) -> None:
        """Take a running task off a VM."""

    # Metering

    @abstractmethod
    def sla_report(self, sla: SLAClass) -> float:
        """Percentage of completed tasks of a class that violated their SLA."""

    @abstractmethod
    def cluster_energy(self) -> float:
        """Total energy consumed by the cluster in kWh."""
