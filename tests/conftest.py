import pytest

from cloud_placement.core.cluster import SimulatedCluster
from cloud_placement.core.resources import CPUType, VMType
from cloud_placement.core.workload import SLAClass, TaskSpec
from cloud_placement.scheduling.scheduler import Scheduler
from cloud_placement.utils.config import SchedulerConfig


@pytest.fixture
def cluster():
    return SimulatedCluster()


@pytest.fixture
def submit(cluster):
    """Register a task with the cluster and return its spec."""

    def _submit(
        task_id,
        memory=1000,
        cpu=CPUType.X86,
        vm_type=VMType.LINUX,
        sla=SLAClass.SLA2,
        duration=60.0,
        arrival_time=0.0,
    ):
        spec = TaskSpec(
            task_id=task_id,
            cpu=cpu,
            vm_type=vm_type,
            memory=memory,
            sla=sla,
            arrival_time=arrival_time,
            duration=duration,
        )
        cluster.submit_task(spec)
        return spec

    return _submit


@pytest.fixture
def make_scheduler(cluster):
    """Build and initialize a scheduler over the fixture cluster."""

    def _make(classifier=None, **overrides):
        kwargs = {"config": SchedulerConfig(**overrides)}
        if classifier is not None:
            kwargs["classifier"] = classifier
        scheduler = Scheduler(cluster, **kwargs)
        scheduler.init(0.0)
        return scheduler

    return _make


@pytest.fixture
def check_invariants():
    """Assert the registry's bookkeeping invariants."""

    def _check(scheduler):
        registry = scheduler.registry
        machines = registry.machines.values()

        assert sum(m.task_count for m in machines) == registry.placed_count()

        for machine in machines:
            assert 0 <= machine.memory_used <= machine.memory_capacity
            committed = sum(
                p.memory for p in registry.placements.values()
                if p.machine_id == machine.machine_id
            )
            assert machine.memory_used == committed

        resident = [t for vm in registry.vms.values() for t in vm.task_ids]
        assert len(resident) == len(set(resident)) == registry.placed_count()

    return _check
