"""Configuration management utilities."""

from typing import Any, Dict, List, Literal, Optional
from pathlib import Path
import yaml
import json
from pydantic import BaseModel, Field, field_validator
from loguru import logger

from ..core.resources import CPUType, PowerState


SelectionPolicyName = Literal["least_loaded", "energy_ascending", "first_fit", "best_fit"]


class SchedulerConfig(BaseModel):
    """Knobs of the placement, offload and power-state logic."""

    selection_policy: SelectionPolicyName = "least_loaded"
    idle_grace_period: float = Field(30.0, ge=0.0)
    idle_power_state: PowerState = PowerState.OFF
    max_offload_attempts: int = Field(3, ge=0)
    vm_task_capacity: Optional[int] = Field(None, ge=1)
    max_vms_per_machine: Optional[int] = Field(None, ge=1)
    active_footprint: Optional[int] = Field(None, ge=0)  # per CPU type
    min_active_per_cpu: int = Field(0, ge=0)
    high_priority_prefers_fresh: bool = True

    @field_validator("idle_power_state")
    @classmethod
    def _low_power_only(cls, value: PowerState) -> PowerState:
        if value == PowerState.ACTIVE:
            raise ValueError("idle_power_state must be 'idle_low_power' or 'off'")
        return value


class MachineSpec(BaseModel):
    """A group of identical machines."""

    cpu: CPUType
    memory: int = Field(..., gt=0)  # MB
    count: int = Field(1, ge=1)
    cores: int = Field(8, ge=1)


class ClusterConfig(BaseModel):
    """Machines and their power model."""

    machines: List[MachineSpec] = Field(default_factory=lambda: [
        MachineSpec(cpu=CPUType.X86, memory=16384, count=8),
        MachineSpec(cpu=CPUType.ARM, memory=8192, count=4),
        MachineSpec(cpu=CPUType.POWER, memory=32768, count=2),
    ])
    active_watts: float = 200.0
    per_task_watts: float = 15.0
    idle_low_power_watts: float = 40.0
    wake_from_off_latency: float = 10.0
    wake_from_idle_latency: float = 1.0
    power_down_latency: float = 2.0
    migration_latency: float = 5.0
    vm_memory_overhead: int = Field(0, ge=0)


class SimulationConfig(BaseModel):
    """Configuration for simulation runs."""

    simulation_duration: float = Field(3600.0, gt=0.0)
    tick_interval: float = Field(5.0, gt=0.0)
    random_seed: int = 42
    task_arrival_rate: float = Field(0.5, gt=0.0)  # tasks per second
    task_memory_mean: float = Field(1024.0, gt=0.0)  # MB
    task_duration_mean: float = Field(120.0, gt=0.0)
    task_duration_std: float = Field(40.0, ge=0.0)
    memory_warning_threshold: float = Field(0.95, gt=0.0, le=1.0)


class Config(BaseModel):
    """Main configuration class."""

    scheduler: SchedulerConfig = Field(default_factory=SchedulerConfig)
    cluster: ClusterConfig = Field(default_factory=ClusterConfig)
    simulation: SimulationConfig = Field(default_factory=SimulationConfig)
    experiment: Dict[str, Any] = Field(default_factory=dict)


def load_config(config_path: Path) -> Config:
    """Load configuration from a YAML or JSON file."""
    config_path = Path(config_path)
    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    logger.info(f"Loading configuration from {config_path}")

    with open(config_path, 'r') as f:
        if config_path.suffix.lower() in ['.yaml', '.yml']:
            config_data = yaml.safe_load(f)
        elif config_path.suffix.lower() == '.json':
            config_data = json.load(f)
        else:
            raise ValueError(f"Unsupported configuration file format: {config_path.suffix}")

    if config_data is None:
        raise ValueError(f"Config file is empty: {config_path}")

    config = Config.model_validate(config_data)
    logger.info(f"Configuration loaded: {config.scheduler.selection_policy} selection, "
               f"{sum(m.count for m in config.cluster.machines)} machines, "
               f"{config.simulation.simulation_duration}s duration")
    return config


def save_config(config: Config, config_path: Path) -> None:
    """Save configuration to file."""
    config_path = Path(config_path)
    config_path.parent.mkdir(parents=True, exist_ok=True)
    config_dict = config.model_dump(mode="json")

    with open(config_path, 'w') as f:
        if config_path.suffix.lower() in ['.yaml', '.yml']:
            yaml.dump(config_dict, f, default_flow_style=False, indent=2, sort_keys=False)
        elif config_path.suffix.lower() == '.json':
            json.dump(config_dict, f, indent=2)
        else:
            raise ValueError(f"Unsupported configuration file format: {config_path.suffix}")

    logger.info(f"Configuration saved to {config_path}")


def save_results(analysis: Dict[str, Any], output_dir: Path) -> Path:
    """Save simulation results to a JSON file."""
    output_dir = Path(output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)

    results_file = output_dir / "simulation_results.json"
    with open(results_file, 'w') as f:
        json.dump(analysis, f, indent=2, default=str)

    logger.info(f"Results saved to {results_file}")
    return results_file


def create_default_config(config_path: Path) -> Config:
    """Write a default configuration file."""
    config = Config(
        experiment={
            'name': 'energy_aware_placement',
            'description': 'Least-loaded placement with idle power-down',
        }
    )
    save_config(config, config_path)
    return config
