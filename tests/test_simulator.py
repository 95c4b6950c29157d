import pytest

from cloud_placement.core.events import EventType
from cloud_placement.core.resources import CPUType, PowerState, VMType
from cloud_placement.core.simulator import CloudSimulator, build_cluster
from cloud_placement.core.workload import SLAClass, TaskGenerator, TaskSpec
from cloud_placement.evaluation.metrics import SimulationAnalyzer, TASK_COLUMNS, task_frame
from cloud_placement.utils.config import ClusterConfig, Config, MachineSpec


def small_config(duration=100.0, **scheduler):
    return Config.model_validate({
        "scheduler": scheduler,
        "cluster": {"machines": [{"cpu": "x86", "memory": 4096, "count": 2}]},
        "simulation": {"simulation_duration": duration, "tick_interval": 5.0},
    })


def make_task(task_id, arrival_time, memory=1000, duration=20.0):
    return TaskSpec(task_id=task_id, cpu=CPUType.X86, vm_type=VMType.LINUX,
                    memory=memory, sla=SLAClass.SLA2,
                    arrival_time=arrival_time, duration=duration)


def test_build_cluster_expands_machine_groups():
    config = ClusterConfig(machines=[
        MachineSpec(cpu=CPUType.X86, memory=4096, count=3),
        MachineSpec(cpu=CPUType.ARM, memory=2048, count=1, cores=4),
    ])
    cluster = build_cluster(config)

    assert cluster.machine_count() == 4
    assert cluster.machine_info(3).cpu == CPUType.ARM
    assert cluster.machine_info(3).num_cores == 4


def test_task_generator_is_reproducible():
    first = TaskGenerator(random_seed=3).generate_task_stream(120.0, 0.5)
    second = TaskGenerator(random_seed=3).generate_task_stream(120.0, 0.5)

    assert first == second
    assert [t.task_id for t in first] == list(range(len(first)))
    assert all(t.memory >= 64 and t.duration >= 1.0 for t in first)
    assert all(0.0 < t.arrival_time < 120.0 for t in first)


def test_wake_then_run_then_power_down():
    config = small_config(active_footprint=0, idle_grace_period=30.0)
    config.cluster.machines[0].count = 1
    simulator = CloudSimulator(config, tasks=[make_task(0, arrival_time=5.0)])

    report = simulator.run()

    task = simulator.cluster.tasks[0]
    assert task.start_time == pytest.approx(15.0)
    assert task.end_time == pytest.approx(35.0)
    assert not task.sla_violated
    assert report.wakes == 1
    assert report.tasks_completed == 1
    assert report.power_downs == 1
    assert report.total_energy_kwh > 0
    assert simulator.scheduler.registry.machine(0).power_state == PowerState.OFF


def test_memory_warning_triggers_offload():
    config = small_config(duration=20.0, selection_policy="first_fit")
    config.simulation.memory_warning_threshold = 0.9
    tasks = [make_task(0, 1.0, memory=2000, duration=50.0),
             make_task(1, 2.0, memory=2000, duration=50.0)]
    simulator = CloudSimulator(config, tasks=tasks)
    offloaded = []
    simulator.event_bus.subscribe(EventType.TASK_OFFLOADED, offloaded.append)

    report = simulator.run()

    assert [e.resource_id for e in offloaded] == [0]
    assert offloaded[0].data["destination"] == 1
    assert report.offloads == 1


def test_generated_run_and_analysis():
    config = small_config(duration=300.0)
    config.simulation.task_arrival_rate = 0.2
    config.simulation.task_memory_mean = 512.0
    config.simulation.task_duration_mean = 30.0
    config.simulation.task_duration_std = 5.0
    simulator = CloudSimulator(config)

    report = simulator.run()
    tasks = task_frame(simulator.cluster)
    analysis = SimulationAnalyzer().analyze(report, tasks, simulator.metrics_history)

    assert simulator.metrics_history
    assert list(tasks.columns) == TASK_COLUMNS
    assert analysis["total_tasks"] == len(simulator.tasks)
    assert 0.0 <= analysis["completion_rate"] <= 1.0
    assert analysis["report"]["tasks_assigned"] == report.tasks_assigned
    assert simulator.scheduler.registry.placed_count() == 0
