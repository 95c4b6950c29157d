"""Utility modules for the placement core."""

from .config import (
    Config,
    SchedulerConfig,
    ClusterConfig,
    SimulationConfig,
    MachineSpec,
    load_config,
    save_config,
    save_results,
    create_default_config,
)

__all__ = [
    "Config",
    "SchedulerConfig",
    "ClusterConfig",
    "SimulationConfig",
    "MachineSpec",
    "load_config",
    "save_config",
    "save_results",
    "create_default_config",
]
