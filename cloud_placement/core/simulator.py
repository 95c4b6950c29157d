"""Discrete-event driver that feeds a scheduler using SimPy."""

import simpy
from typing import List, Optional, Set
from dataclasses import dataclass
import time
from loguru import logger

from .cluster import PowerProfile, SimulatedCluster
from .events import EventBus
from .resources import PowerState
from .workload import PriorityClassifier, TaskGenerator, TaskSpec, sla_priority
from ..scheduling.scheduler import Scheduler, ShutdownReport
from ..utils.config import ClusterConfig, Config


@dataclass
class SimulationMetrics:
    """Cluster snapshot taken on every periodic tick."""
    timestamp: float
    active_machines: int = 0
    sleeping_machines: int = 0
    waking_machines: int = 0
    placed_tasks: int = 0
    deferred_tasks: int = 0
    avg_memory_utilization: float = 0.0
    power_draw_watts: float = 0.0


def build_cluster(config: ClusterConfig) -> SimulatedCluster:
    """Create a simulated cluster from configuration."""
    profile = PowerProfile(
        active_watts=config.active_watts,
        per_task_watts=config.per_task_watts,
        idle_low_power_watts=config.idle_low_power_watts,
        wake_from_off_latency=config.wake_from_off_latency,
        wake_from_idle_latency=config.wake_from_idle_latency,
        power_down_latency=config.power_down_latency,
    )
    cluster = SimulatedCluster(
        power_profile=profile,
        vm_memory_overhead=config.vm_memory_overhead,
        migration_latency=config.migration_latency,
    )
    for spec in config.machines:
        for _ in range(spec.count):
            cluster.add_machine(spec.cpu, spec.memory, num_cores=spec.cores)
    return cluster


class CloudSimulator:
    """Delivers arrivals, completions, ticks and transitions to a scheduler."""

    def __init__(
        self,
        config: Config,
        tasks: Optional[List[TaskSpec]] = None,
        classifier: PriorityClassifier = sla_priority,
    ):
        self.config = config
        self.env = simpy.Environment()
        self.event_bus = EventBus()
        self.cluster = build_cluster(config.cluster)
        self.scheduler = Scheduler(self.cluster, config.scheduler, classifier, self.event_bus)

        sim = config.simulation
        if tasks is None:
            generator = TaskGenerator(sim.random_seed)
            tasks = generator.generate_task_stream(
                sim.simulation_duration,
                sim.task_arrival_rate,
                memory_mean=sim.task_memory_mean,
                duration_mean=sim.task_duration_mean,
                duration_std=sim.task_duration_std,
            )
        self.tasks = sorted(tasks, key=lambda t: t.arrival_time)

        self.cluster.transition_listener = self._on_transition_requested
        self.cluster.migration_listener = self._on_migration_requested
        self.cluster.start_listener = self._on_task_started

        self.metrics_history: List[SimulationMetrics] = []
        self.report: Optional[ShutdownReport] = None
        self._warned: Set[int] = set()

        logger.info(f"CloudSimulator initialized with {len(self.tasks)} tasks, "
                   f"{self.cluster.machine_count()} machines, "
                   f"{sim.simulation_duration}s duration")

    def run(self) -> ShutdownReport:
        """Run the simulation and return the scheduler's final report."""
        logger.info("Starting cloud simulation")
        start_time = time.time()

        self.scheduler.init(self.env.now)
        self.env.process(self._arrival_process())
        self.env.process(self._tick_process())
        self.env.run(until=self.config.simulation.simulation_duration)

        self._sync()
        self._collect_metrics()
        self.report = self.scheduler.on_shutdown(self.env.now)

        elapsed_time = time.time() - start_time
        logger.info(f"Simulation completed in {elapsed_time:.2f}s "
                   f"(simulated {self.config.simulation.simulation_duration}s)")
        return self.report

    def _sync(self) -> None:
        self.cluster.advance(self.env.now)

    # Processes

    def _arrival_process(self):
        for task in self.tasks:
            delay = task.arrival_time - self.env.now
            if delay > 0:
                yield self.env.timeout(delay)
            self._sync()
            self.cluster.submit_task(task)
            self.scheduler.on_task_arrival(self.env.now, task.task_id)
            self._check_memory()

    def _tick_process(self):
        while True:
            yield self.env.timeout(self.config.simulation.tick_interval)
            self._sync()
            self.scheduler.on_periodic_tick(self.env.now)
            self._collect_metrics()

    def _completion_process(self, task_id: int):
        yield self.env.timeout(self.cluster.task_requirements(task_id).duration)
        self._sync()
        self.cluster.complete_task(task_id)
        self.scheduler.on_task_complete(self.env.now, task_id)
        self._check_memory()

    def _transition_process(self, machine_id: int, state: PowerState, latency: float):
        yield self.env.timeout(latency)
        self._sync()
        if self.cluster.complete_transition(machine_id, state):
            self.scheduler.on_power_transition_complete(self.env.now, machine_id)
            self._check_memory()

    def _migration_process(self, vm_id: int, latency: float):
        yield self.env.timeout(latency)
        self._sync()
        if self.cluster.complete_migration(vm_id):
            self.scheduler.on_migration_complete(self.env.now, vm_id)
            self._check_memory()

    # Substrate hooks

    def _on_task_started(self, task_id: int) -> None:
        self.env.process(self._completion_process(task_id))

    def _on_transition_requested(self, machine_id: int, state: PowerState, latency: float) -> None:
        self.env.process(self._transition_process(machine_id, state, latency))

    def _on_migration_requested(self, vm_id: int, machine_id: int, latency: float) -> None:
        self.env.process(self._migration_process(vm_id, latency))

    def _check_memory(self) -> None:
        """Raise a memory warning once per crossing of the threshold."""
        over = set(self.cluster.machines_over_memory(
            self.config.simulation.memory_warning_threshold
        ))
        for machine_id in sorted(over - self._warned):
            self.scheduler.on_memory_pressure(self.env.now, machine_id)
        self._warned = over

    def _collect_metrics(self) -> None:
        registry = self.scheduler.registry
        machines = list(registry.machines.values())
        metrics = SimulationMetrics(timestamp=self.env.now)

        metrics.active_machines = sum(1 for m in machines if m.accepts_tasks)
        metrics.waking_machines = sum(1 for m in machines if m.waking)
        metrics.sleeping_machines = sum(
            1 for m in machines if m.power_state != PowerState.ACTIVE and not m.waking
        )
        metrics.placed_tasks = registry.placed_count()
        metrics.deferred_tasks = len(self.scheduler.deferred)

        active = [m for m in machines if m.accepts_tasks]
        if active:
            metrics.avg_memory_utilization = (
                sum(m.memory_used / m.memory_capacity for m in active) / len(active)
            )
        metrics.power_draw_watts = sum(
            self.cluster.power_draw(machine_id) for machine_id in self.cluster.machines
        )

        self.metrics_history.append(metrics)
        logger.debug(f"Metrics collected at {self.env.now:.2f}s: "
                    f"{metrics.placed_tasks} placed, {metrics.deferred_tasks} deferred, "
                    f"{metrics.active_machines} active machines")
