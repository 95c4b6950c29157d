import pytest

from cloud_placement.core.events import EventType
from cloud_placement.core.resources import CorePerformance, CPUType, PowerState, VMType
from cloud_placement.core.workload import TaskSpec
from cloud_placement.scheduling.power import PowerStateController
from cloud_placement.scheduling.registry import ResourceRegistry


def test_idle_power_state_must_be_low_power(cluster):
    with pytest.raises(ValueError):
        PowerStateController(ResourceRegistry(), cluster, idle_power_state=PowerState.ACTIVE)


def test_init_runs_active_machines_at_full_performance(cluster, make_scheduler):
    cluster.add_machine(CPUType.X86, 4096, num_cores=4)
    cluster.add_machine(CPUType.X86, 4096, num_cores=4, state=PowerState.OFF)
    make_scheduler()

    assert cluster.machines[0].core_performance == [CorePerformance.P0] * 4
    assert cluster.machines[1].core_performance == [CorePerformance.P3] * 4


def test_active_footprint_powers_off_extra_machines(cluster, make_scheduler):
    for _ in range(3):
        cluster.add_machine(CPUType.X86, 4096)
    cluster.add_machine(CPUType.ARM, 4096)
    scheduler = make_scheduler(active_footprint=1)

    states = [scheduler.registry.machine(m).power_state for m in range(4)]
    assert states == [PowerState.ACTIVE, PowerState.OFF, PowerState.OFF, PowerState.ACTIVE]
    assert cluster.machines[1].pending_state == PowerState.OFF


def test_wake_candidates_prefer_idle_over_off(cluster, make_scheduler):
    cluster.add_machine(CPUType.X86, 4096, state=PowerState.OFF)
    cluster.add_machine(CPUType.X86, 4096, state=PowerState.IDLE_LOW_POWER)
    cluster.add_machine(CPUType.X86, 1024, state=PowerState.IDLE_LOW_POWER)
    scheduler = make_scheduler()
    task = TaskSpec(task_id=0, cpu=CPUType.X86, vm_type=VMType.LINUX, memory=2000)

    candidates = scheduler.power.wake_candidates(task)

    assert [m.machine_id for m in candidates] == [1, 0]


def test_wake_holds_task_until_machine_is_up(cluster, submit, make_scheduler, check_invariants):
    cluster.add_machine(CPUType.X86, 4096, state=PowerState.OFF)
    scheduler = make_scheduler()
    activated = []
    scheduler.event_bus.subscribe(EventType.MACHINE_ACTIVATED, activated.append)

    submit(0, memory=1000)
    scheduler.on_task_arrival(1.0, 0)

    machine = scheduler.registry.machine(0)
    assert machine.waking
    assert not machine.accepts_tasks
    assert not scheduler.registry.is_placed(0)
    request = scheduler.power.pending[0]
    assert cluster.vm_info(request.vm_id).machine_id is None

    assert cluster.complete_transition(0)
    placed = scheduler.on_power_transition_complete(11.0, 0)

    assert placed == [0]
    assert not machine.waking
    assert machine.power_state == PowerState.ACTIVE
    assert scheduler.registry.placement(0).vm_id == request.vm_id
    assert cluster.vm_info(request.vm_id).machine_id == 0
    assert cluster.tasks[0].start_time is not None
    assert [e.resource_id for e in activated] == [0]
    check_invariants(scheduler)


def test_waking_machine_is_not_woken_twice(cluster, submit, make_scheduler):
    cluster.add_machine(CPUType.X86, 4096, state=PowerState.OFF)
    scheduler = make_scheduler()

    submit(0)
    submit(1)
    scheduler.on_task_arrival(1.0, 0)
    scheduler.on_task_arrival(2.0, 1)

    assert scheduler.power.wake_count == 1
    assert 1 in scheduler.deferred


def test_wake_completion_places_deferred_tasks_of_same_cpu(cluster, submit, make_scheduler):
    cluster.add_machine(CPUType.ARM, 8192, state=PowerState.OFF)
    cluster.add_machine(CPUType.X86, 1024)
    scheduler = make_scheduler()

    submit(0, cpu=CPUType.ARM)
    submit(1, cpu=CPUType.ARM)
    submit(2, cpu=CPUType.X86, memory=2000)
    submit(3, cpu=CPUType.ARM)
    for task_id in range(4):
        scheduler.on_task_arrival(1.0, task_id)
    assert list(scheduler.deferred) == [1, 2, 3]

    cluster.complete_transition(0)
    placed = scheduler.on_power_transition_complete(11.0, 0)

    assert placed == [0, 1, 3]
    assert list(scheduler.deferred) == [2]
    sequence = [scheduler.registry.placement(t).sequence for t in (0, 1, 3)]
    assert sequence == sorted(sequence)


def test_transition_without_pending_wake_is_ignored(cluster, make_scheduler):
    cluster.add_machine(CPUType.X86, 4096)
    scheduler = make_scheduler()

    assert scheduler.on_power_transition_complete(5.0, 0) == []


def test_idle_machine_powers_down_after_grace_period(cluster, make_scheduler):
    cluster.add_machine(CPUType.X86, 4096)
    scheduler = make_scheduler(idle_grace_period=30.0)

    assert scheduler.on_periodic_tick(29.0) == []
    assert scheduler.on_periodic_tick(30.0) == [0]

    assert scheduler.registry.machine(0).power_state == PowerState.OFF
    assert cluster.machines[0].pending_state == PowerState.OFF


def test_idle_power_state_is_configurable(cluster, make_scheduler):
    cluster.add_machine(CPUType.X86, 4096)
    scheduler = make_scheduler(idle_grace_period=10.0,
                               idle_power_state=PowerState.IDLE_LOW_POWER)

    scheduler.on_periodic_tick(10.0)

    assert scheduler.registry.machine(0).power_state == PowerState.IDLE_LOW_POWER


def test_activity_resets_idle_timer(cluster, submit, make_scheduler):
    cluster.add_machine(CPUType.X86, 4096)
    scheduler = make_scheduler(idle_grace_period=30.0)

    submit(0)
    scheduler.on_task_arrival(25.0, 0)
    assert scheduler.on_periodic_tick(30.0) == []

    cluster.complete_task(0)
    scheduler.on_task_complete(35.0, 0)
    assert scheduler.registry.machine(0).idle_since == 35.0
    assert scheduler.on_periodic_tick(60.0) == []
    assert scheduler.on_periodic_tick(65.0) == [0]


def test_power_down_shuts_down_empty_vms(cluster, submit, make_scheduler):
    cluster.add_machine(CPUType.X86, 4096)
    scheduler = make_scheduler(idle_grace_period=10.0)

    submit(0)
    outcome = scheduler.on_task_arrival(1.0, 0)
    cluster.complete_task(0)
    scheduler.on_task_complete(2.0, 0)
    scheduler.on_periodic_tick(12.0)

    assert outcome.vm_id not in cluster.vms
    assert outcome.vm_id not in scheduler.registry.vms
    assert scheduler.registry.machine(0).vm_ids == []


def test_min_active_per_cpu_keeps_machines_up(cluster, make_scheduler):
    cluster.add_machine(CPUType.X86, 4096)
    cluster.add_machine(CPUType.X86, 4096)
    cluster.add_machine(CPUType.ARM, 4096)
    scheduler = make_scheduler(idle_grace_period=10.0, min_active_per_cpu=1)

    assert scheduler.on_periodic_tick(10.0) == [0]
    assert scheduler.registry.machine(1).power_state == PowerState.ACTIVE
    assert scheduler.registry.machine(2).power_state == PowerState.ACTIVE
