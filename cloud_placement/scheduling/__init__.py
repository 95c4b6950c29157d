"""Placement, offload and power-state control."""

from .registry import ResourceRegistry, RegistryError, MachineRecord, VMRecord, Placement
from .placement import (
    PlacementPolicy,
    PlacementKind,
    PlacementOutcome,
    SelectionStrategy,
    LeastLoadedStrategy,
    EnergyAscendingStrategy,
    FirstFitStrategy,
    BestFitStrategy,
    create_strategy,
)
from .power import PowerStateController, WakeRequest
from .deferred import DeferredQueue
from .offload import Offloader
from .scheduler import Scheduler, ShutdownReport

__all__ = [
    "ResourceRegistry",
    "RegistryError",
    "MachineRecord",
    "VMRecord",
    "Placement",
    "PlacementPolicy",
    "PlacementKind",
    "PlacementOutcome",
    "SelectionStrategy",
    "LeastLoadedStrategy",
    "EnergyAscendingStrategy",
    "FirstFitStrategy",
    "BestFitStrategy",
    "create_strategy",
    "PowerStateController",
    "WakeRequest",
    "DeferredQueue",
    "Offloader",
    "Scheduler",
    "ShutdownReport",
]
