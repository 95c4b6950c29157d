"""Cloud resource models: machines, VMs and their observable state."""

from typing import List, Optional
from dataclasses import dataclass, field
from enum import Enum


class CPUType(Enum):
    """CPU architecture class of a machine."""
    X86 = "x86"
    ARM = "arm"
    POWER = "power"
    RISCV = "riscv"


class VMType(Enum):
    """VM image type."""
    LINUX = "linux"
    LINUX_RT = "linux_rt"
    WIN = "win"
    AIX = "aix"


class PowerState(Enum):
    """Machine power state."""
    ACTIVE = "active"
    IDLE_LOW_POWER = "idle_low_power"
    OFF = "off"


class CorePerformance(Enum):
    """Per-core performance state, P0 is the fastest."""
    P0 = 0
    P1 = 1
    P2 = 2
    P3 = 3


@dataclass
class MachineInfo:
    """Snapshot of a machine as reported by the substrate."""
    machine_id: int
    cpu: CPUType
    memory_size: int  # MB
    memory_used: int = 0  # MB
    power_state: PowerState = PowerState.ACTIVE
    active_tasks: int = 0
    active_vms: int = 0
    energy_consumed: float = 0.0  # joules
    num_cores: int = 8

    @property
    def memory_free(self) -> int:
        return self.memory_size - self.memory_used


@dataclass
class VMInfo:
    """Snapshot of a VM as reported by the substrate."""
    vm_id: int
    vm_type: VMType
    cpu: CPUType
    machine_id: Optional[int] = None
    active_tasks: List[int] = field(default_factory=list)
