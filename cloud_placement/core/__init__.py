"""Core simulation components."""

from .resources import CPUType, VMType, PowerState, MachineInfo, VMInfo
from .workload import TaskSpec, TaskGenerator, Priority, SLAClass
from .events import EventBus, EventType, SimulationEvent
from .substrate import ClusterSubstrate
from .cluster import SimulatedCluster, PowerProfile

__all__ = [
    "CPUType",
    "VMType",
    "PowerState",
    "MachineInfo",
    "VMInfo",
    "TaskSpec",
    "TaskGenerator",
    "Priority",
    "SLAClass",
    "EventBus",
    "EventType",
    "SimulationEvent",
    "ClusterSubstrate",
    "SimulatedCluster",
    "PowerProfile",
]
