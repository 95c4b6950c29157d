"""Scheduler: the callback surface the simulation substrate drives."""

from typing import Dict, List, Optional, Tuple
from dataclasses import asdict, dataclass, field
from loguru import logger

from ..core.events import EventBus, EventType, SimulationEvent
from ..core.resources import PowerState
from ..core.substrate import ClusterSubstrate
from ..core.workload import PriorityClassifier, SLAClass, sla_priority
from ..utils.config import SchedulerConfig
from .deferred import DeferredQueue
from .offload import Offloader
from .placement import PlacementKind, PlacementOutcome, PlacementPolicy, create_strategy
from .power import PowerStateController
from .registry import Placement, ResourceRegistry


@dataclass
class ShutdownReport:
    """Final statistics of a run."""
    time: float
    sla_violation_pct: Dict[str, float] = field(default_factory=dict)
    total_energy_kwh: float = 0.0
    tasks_assigned: int = 0
    tasks_completed: int = 0
    tasks_deferred: int = 0
    tasks_wake_pending: int = 0
    wakes: int = 0
    power_downs: int = 0
    offloads: int = 0
    sla_signals: int = 0

    @property
    def simulated_seconds(self) -> float:
        return self.time

    def as_dict(self) -> Dict:
        result = asdict(self)
        result['simulated_seconds'] = self.simulated_seconds
        return result


class Scheduler:
    """Decision core of the cluster scheduler.

    Owns the resource registry, placement policy, power-state controller,
    deferred queue and offloader of one cluster, and exposes the inbound
    callbacks the substrate invokes one event at a time.
    """

    def __init__(
        self,
        substrate: ClusterSubstrate,
        config: Optional[SchedulerConfig] = None,
        classifier: PriorityClassifier = sla_priority,
        event_bus: Optional[EventBus] = None,
    ):
        self.substrate = substrate
        self.config = config or SchedulerConfig()
        self.classifier = classifier
        self.event_bus = event_bus or EventBus()

        self.registry = ResourceRegistry()
        self.deferred = DeferredQueue()
        self.power = PowerStateController(
            self.registry,
            substrate,
            event_bus=self.event_bus,
            idle_grace_period=self.config.idle_grace_period,
            idle_power_state=self.config.idle_power_state,
            min_active_per_cpu=self.config.min_active_per_cpu,
            vm_task_capacity=self.config.vm_task_capacity,
        )
        self.placement = PlacementPolicy(
            self.registry,
            substrate,
            create_strategy(self.config.selection_policy, substrate),
            self.power,
            event_bus=self.event_bus,
            classifier=classifier,
            vm_task_capacity=self.config.vm_task_capacity,
            max_vms_per_machine=self.config.max_vms_per_machine,
            max_offload_attempts=self.config.max_offload_attempts,
            high_priority_prefers_fresh=self.config.high_priority_prefers_fresh,
        )
        self.offloader = Offloader(self.registry, substrate, self.placement,
                                   event_bus=self.event_bus)
        self.placement.offloader = self.offloader

        self.assigned_count = 0
        self.completed_count = 0
        self.sla_violations: List[Tuple[float, int]] = []
        self.event_bus.subscribe(EventType.TASK_ASSIGNED, self._count_assignment)
        self.event_bus.subscribe(EventType.SLA_VIOLATION, self._record_sla_violation)

    def _count_assignment(self, event: SimulationEvent) -> None:
        self.assigned_count += 1

    def _record_sla_violation(self, event: SimulationEvent) -> None:
        self.sla_violations.append((event.timestamp, event.resource_id))

    # Inbound callbacks

    def init(self, now: float = 0.0) -> None:
        """Register the machine pool and power off machines beyond the footprint."""
        logger.info("Scheduler initializing")
        active_by_cpu: Dict = {}

        for machine_id in range(self.substrate.machine_count()):
            info = self.substrate.machine_info(machine_id)
            state = info.power_state
            if state == PowerState.ACTIVE and self.config.active_footprint is not None:
                if active_by_cpu.get(info.cpu, 0) >= self.config.active_footprint:
                    self.substrate.set_machine_state(machine_id, PowerState.OFF)
                    state = PowerState.OFF

            self.registry.register_machine(machine_id, info.cpu, info.memory_size, state, now)
            if state == PowerState.ACTIVE:
                active_by_cpu[info.cpu] = active_by_cpu.get(info.cpu, 0) + 1
                self.power.set_full_performance(machine_id)

        logger.info(f"Scheduler initialized with {len(self.registry.machines)} machines, "
                   f"{sum(active_by_cpu.values())} active")

    def on_task_arrival(self, now: float, task_id: int) -> PlacementOutcome:
        """Place a newly submitted task."""
        logger.debug(f"Task {task_id} arrived at {now:.2f}s")
        if task_id in self.deferred:
            logger.warning(f"Task {task_id} is already deferred")
            return PlacementOutcome(PlacementKind.DEFERRED, task_id, reason="already deferred")
        if task_id in self.power.pending_tasks():
            logger.warning(f"Task {task_id} is already waiting for a machine")
            return PlacementOutcome(PlacementKind.WOKE_MACHINE, task_id, reason="already pending")

        outcome = self.placement.place(task_id, now)
        if outcome.kind == PlacementKind.DEFERRED:
            self.deferred.push(task_id)
            self.event_bus.emit(EventType.TASK_DEFERRED, now, task_id, reason=outcome.reason)
        return outcome

    def on_task_complete(self, now: float, task_id: int) -> Optional[Placement]:
        """Release a finished task and retry deferred work."""
        placement = self.registry.record_complete(task_id, now)
        if placement is None:
            logger.warning(f"Completion for unknown task {task_id} ignored")
            return None

        self.completed_count += 1
        logger.debug(f"Task {task_id} completed on machine {placement.machine_id} at {now:.2f}s")
        self.retry_deferred(now)
        return placement

    def on_migration_complete(self, now: float, vm_id: int) -> None:
        """Record the VM's new host."""
        if vm_id not in self.registry.vms:
            logger.warning(f"Migration of unknown VM {vm_id} ignored")
            return

        machine_id = self.substrate.vm_info(vm_id).machine_id
        if machine_id is None or machine_id not in self.registry.machines:
            logger.warning(f"VM {vm_id} landed on unknown machine {machine_id}")
            return

        source = self.registry.vms[vm_id].machine_id
        needed = self.registry.vm_memory(vm_id)
        if source != machine_id and self.registry.machine(machine_id).memory_free < needed:
            # Destination filled up while the VM was in flight; keep it booked on the source
            logger.warning(f"Machine {machine_id} cannot absorb migrated VM {vm_id} "
                           f"({needed}MB), keeping it accounted on machine {source}")
            return

        self.registry.move_vm(vm_id, machine_id, now)
        logger.info(f"VM {vm_id} migrated from machine {source} to machine {machine_id}")
        self.retry_deferred(now)

    def on_power_transition_complete(self, now: float, machine_id: int) -> List[int]:
        """Resolve a pending wake and place the tasks it was held for."""
        request = self.power.complete_wake(machine_id, now)
        if request is None:
            logger.debug(f"Machine {machine_id} transition complete, nothing pending")
            return []

        placed = []
        task = self.substrate.task_requirements(request.task_id)
        if self.registry.is_eligible(machine_id, task.cpu, task.memory):
            self.placement.assign_to_vm(task, self.classifier(task), request.vm_id, now)
            placed.append(task.task_id)
        else:
            logger.warning(f"Task {task.task_id} no longer fits woken machine {machine_id}")
            self.deferred.push(task.task_id)

        cpu = self.registry.machine(machine_id).cpu

        def matches(task_id: int) -> bool:
            return self.substrate.task_requirements(task_id).cpu == cpu

        def attempt(task_id: int) -> bool:
            spec = self.substrate.task_requirements(task_id)
            return self.placement.try_machine(spec, machine_id, now) is not None

        placed.extend(self.deferred.retry(attempt, predicate=matches))
        return placed

    def on_memory_pressure(self, now: float, machine_id: int) -> bool:
        """Offload one task from a machine reporting memory pressure."""
        logger.info(f"Memory warning on machine {machine_id} at {now:.2f}s")
        if machine_id not in self.registry.machines:
            logger.warning(f"Memory warning for unknown machine {machine_id} ignored")
            return False

        relieved = self.offloader.offload(machine_id, now)
        if not relieved:
            logger.warning(f"No relief available for machine {machine_id}")
        return relieved

    def on_periodic_tick(self, now: float) -> List[int]:
        """Power down machines idle for longer than the grace period."""
        return self.power.power_down_idle(now)

    def on_shutdown(self, now: float) -> ShutdownReport:
        """Report final statistics, then release every VM and machine."""
        report = ShutdownReport(
            time=now,
            sla_violation_pct={sla.name: self.substrate.sla_report(sla) for sla in SLAClass},
            total_energy_kwh=self.substrate.cluster_energy(),
            tasks_assigned=self.assigned_count,
            tasks_completed=self.completed_count,
            tasks_deferred=len(self.deferred),
            tasks_wake_pending=len(self.power.pending),
            wakes=self.power.wake_count,
            power_downs=self.power.power_down_count,
            offloads=self.offloader.offload_count,
            sla_signals=len(self.sla_violations),
        )

        logger.info("SLA violation report")
        for sla_name, pct in report.sla_violation_pct.items():
            logger.info(f"{sla_name}: {pct:.2f}%")
        logger.info(f"Total Energy {report.total_energy_kwh:.4f} KW-Hour")
        logger.info(f"Simulation run finished in {report.simulated_seconds:.2f} seconds")

        for placement in list(self.registry.placements.values()):
            self.substrate.vm_remove_task(placement.vm_id, placement.task_id)
            self.registry.record_complete(placement.task_id, now)
        for request in self.power.pending.values():
            self.substrate.vm_shutdown(request.vm_id)
        self.power.pending.clear()

        for machine_id in sorted(self.registry.machines):
            machine = self.registry.machine(machine_id)
            if machine.power_state == PowerState.ACTIVE or machine.vm_ids or machine.waking:
                self.registry.mark_waking(machine_id, False)
                self.power.power_down(machine_id, now, PowerState.OFF)

        logger.info(f"Scheduler shutdown complete at {now:.2f}s")
        return report

    # Deferred work

    def retry_deferred(self, now: float) -> List[int]:
        """Try every deferred task against the currently eligible machines."""
        if not len(self.deferred):
            return []

        def attempt(task_id: int) -> bool:
            spec = self.substrate.task_requirements(task_id)
            return self.placement.try_direct(spec, now) is not None

        return self.deferred.retry(attempt)
