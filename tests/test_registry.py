import pytest

from cloud_placement.core.resources import CPUType, PowerState, VMType
from cloud_placement.scheduling.registry import RegistryError, ResourceRegistry


@pytest.fixture
def registry():
    registry = ResourceRegistry()
    registry.register_machine(0, CPUType.X86, 4096, PowerState.ACTIVE, now=0.0)
    registry.register_machine(1, CPUType.X86, 4096, PowerState.OFF, now=0.0)
    registry.register_machine(2, CPUType.ARM, 2048, PowerState.ACTIVE, now=0.0)
    registry.add_vm(10, 0, VMType.LINUX, CPUType.X86)
    return registry


def test_register_starts_idle_timer_only_for_active_machines(registry):
    assert registry.machine(0).idle_since == 0.0
    assert registry.machine(1).idle_since is None


def test_assign_and_complete_keep_counters_in_step(registry):
    registry.record_assign(1, 0, 10, 1000, now=1.0)
    registry.record_assign(2, 0, 10, 500, now=2.0)

    machine = registry.machine(0)
    assert machine.memory_used == 1500
    assert machine.task_count == 2
    assert machine.idle_since is None

    placement = registry.record_complete(1, now=3.0)
    assert placement.machine_id == 0
    assert machine.memory_used == 500
    assert machine.idle_since is None

    registry.record_complete(2, now=4.0)
    assert machine.memory_used == 0
    assert machine.idle_since == 4.0


def test_complete_unknown_task_returns_none(registry):
    assert registry.record_complete(99, now=1.0) is None


def test_assign_rejects_memory_overcommit(registry):
    registry.record_assign(1, 0, 10, 4000, now=1.0)
    with pytest.raises(RegistryError):
        registry.record_assign(2, 0, 10, 200, now=1.0)
    assert not registry.is_placed(2)
    assert registry.machine(0).memory_used == 4000


def test_assign_rejects_duplicate_task(registry):
    registry.record_assign(1, 0, 10, 100, now=1.0)
    with pytest.raises(RegistryError):
        registry.record_assign(1, 0, 10, 100, now=1.0)


def test_assign_rejects_sleeping_or_waking_machine(registry):
    registry.add_vm(11, 1, VMType.LINUX, CPUType.X86)
    with pytest.raises(RegistryError):
        registry.record_assign(1, 1, 11, 100, now=1.0)

    registry.mark_waking(0, True)
    with pytest.raises(RegistryError):
        registry.record_assign(2, 0, 10, 100, now=1.0)


def test_add_vm_rejects_cpu_mismatch(registry):
    with pytest.raises(RegistryError):
        registry.add_vm(12, 2, VMType.LINUX, CPUType.X86)


def test_remove_vm_requires_empty_vm(registry):
    registry.record_assign(1, 0, 10, 100, now=1.0)
    with pytest.raises(RegistryError):
        registry.remove_vm(10)

    registry.record_complete(1, now=2.0)
    registry.remove_vm(10)
    assert registry.machine(0).vm_ids == []


def test_power_down_rejected_while_tasks_resident(registry):
    registry.record_assign(1, 0, 10, 100, now=1.0)
    with pytest.raises(RegistryError):
        registry.set_power_state(0, PowerState.OFF, now=2.0)
    assert registry.machine(0).power_state == PowerState.ACTIVE


def test_is_eligible_checks_cpu_memory_and_state(registry):
    assert registry.is_eligible(0, CPUType.X86, 4096)
    assert not registry.is_eligible(0, CPUType.X86, 4097)
    assert not registry.is_eligible(0, CPUType.ARM, 100)
    assert not registry.is_eligible(1, CPUType.X86, 100)


def test_find_vm_respects_type_and_capacity(registry):
    registry.add_vm(11, 0, VMType.WIN, CPUType.X86, capacity=1)
    assert registry.find_vm(0, VMType.WIN, CPUType.X86).vm_id == 11

    registry.record_assign(1, 0, 11, 100, now=1.0)
    assert registry.find_vm(0, VMType.WIN, CPUType.X86) is None
    assert registry.find_vm(0, VMType.LINUX, CPUType.X86).vm_id == 10


def test_oldest_tasks_follow_placement_order(registry):
    registry.add_vm(11, 0, VMType.WIN, CPUType.X86)
    registry.record_assign(5, 0, 11, 100, now=1.0)
    registry.record_assign(3, 0, 10, 100, now=2.0)
    registry.record_assign(4, 0, 11, 100, now=3.0)

    assert [p.task_id for p in registry.oldest_tasks(0)] == [5, 3, 4]


def test_move_vm_transfers_memory_and_tasks(registry):
    registry.set_power_state(1, PowerState.ACTIVE, now=1.0)
    registry.record_assign(1, 0, 10, 1000, now=1.0)
    registry.record_assign(2, 0, 10, 500, now=1.0)

    registry.move_vm(10, 1, now=5.0)

    assert registry.machine(0).memory_used == 0
    assert registry.machine(0).task_count == 0
    assert registry.machine(0).idle_since == 5.0
    assert registry.machine(1).memory_used == 1500
    assert registry.machine(1).task_count == 2
    assert registry.machine(1).idle_since is None
    assert registry.placement(1).machine_id == 1
    assert registry.machine(1).vm_ids == [10]


def test_move_vm_rejects_overfull_destination(registry):
    registry.set_power_state(1, PowerState.ACTIVE, now=1.0)
    registry.add_vm(11, 1, VMType.LINUX, CPUType.X86)
    registry.record_assign(1, 1, 11, 3000, now=1.0)
    registry.record_assign(2, 0, 10, 2000, now=1.0)

    with pytest.raises(RegistryError):
        registry.move_vm(10, 1, now=2.0)
    assert registry.placement(2).machine_id == 0
