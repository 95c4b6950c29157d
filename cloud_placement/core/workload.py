"""Task models, priority classification and synthetic task generation."""

from typing import Callable, Dict, Iterable, List, Optional
from dataclasses import dataclass
from enum import Enum
import numpy as np
from loguru import logger

from .resources import CPUType, VMType


class SLAClass(Enum):
    """Service level agreement tier of a task."""
    SLA0 = "sla0"
    SLA1 = "sla1"
    SLA2 = "sla2"
    SLA3 = "sla3"


class Priority(Enum):
    """Placement priority of a task."""
    HIGH = 0
    MID = 1
    LOW = 2


@dataclass
class TaskSpec:
    """A task with its resource requirements."""
    task_id: int
    cpu: CPUType
    vm_type: VMType
    memory: int  # MB
    sla: SLAClass = SLAClass.SLA2
    arrival_time: float = 0.0
    duration: float = 60.0


PriorityClassifier = Callable[[TaskSpec], Priority]


def sla_priority(task: TaskSpec) -> Priority:
    """Map the task's SLA tier onto a placement priority."""
    if task.sla == SLAClass.SLA0:
        return Priority.HIGH
    if task.sla == SLAClass.SLA1:
        return Priority.MID
    return Priority.LOW


def designated_priority(
    high_priority_ids: Iterable[int],
    default: Priority = Priority.MID,
) -> PriorityClassifier:
    """Build a classifier that marks a fixed set of task ids as high priority."""
    high_ids = frozenset(high_priority_ids)

    def classify(task: TaskSpec) -> Priority:
        return Priority.HIGH if task.task_id in high_ids else default

    return classify


# Runtime a task may stretch to before its SLA is violated, per tier
SLA_LATENCY_FACTOR: Dict[SLAClass, Optional[float]] = {
    SLAClass.SLA0: 1.2,
    SLAClass.SLA1: 1.5,
    SLAClass.SLA2: 2.0,
    SLAClass.SLA3: None,  # best effort
}


class TaskGenerator:
    """Generates synthetic task streams."""

    def __init__(self, random_seed: int = 42):
        self.random_seed = random_seed
        self.rng = np.random.RandomState(random_seed)
        self.task_counter = 0

        # Mix of required platforms
        self.cpu_mix: Dict[CPUType, float] = {
            CPUType.X86: 0.6,
            CPUType.ARM: 0.3,
            CPUType.POWER: 0.1,
        }
        self.vm_mix: Dict[VMType, float] = {
            VMType.LINUX: 0.7,
            VMType.LINUX_RT: 0.1,
            VMType.WIN: 0.2,
        }
        self.sla_mix: Dict[SLAClass, float] = {
            SLAClass.SLA0: 0.1,
            SLAClass.SLA1: 0.2,
            SLAClass.SLA2: 0.5,
            SLAClass.SLA3: 0.2,
        }

        logger.info(f"TaskGenerator initialized with seed {random_seed}")

    def _choose(self, mix: Dict) -> Enum:
        options = list(mix.keys())
        weights = np.array(list(mix.values()), dtype=float)
        return options[self.rng.choice(len(options), p=weights / weights.sum())]

    def generate_task(
        self,
        arrival_time: float,
        memory_mean: float = 1024.0,
        duration_mean: float = 60.0,
        duration_std: float = 20.0,
    ) -> TaskSpec:
        """Generate a single task."""
        task_id = self.task_counter
        self.task_counter += 1

        memory = int(max(64, self.rng.exponential(memory_mean)))
        duration = float(max(1.0, self.rng.normal(duration_mean, duration_std)))

        return TaskSpec(
            task_id=task_id,
            cpu=self._choose(self.cpu_mix),
            vm_type=self._choose(self.vm_mix),
            memory=memory,
            sla=self._choose(self.sla_mix),
            arrival_time=arrival_time,
            duration=duration,
        )

    def generate_task_stream(
        self,
        duration: float,
        arrival_rate: float,
        memory_mean: float = 1024.0,
        duration_mean: float = 60.0,
        duration_std: float = 20.0,
    ) -> List[TaskSpec]:
        """Generate Poisson arrivals over a time period."""
        tasks = []
        current_time = 0.0

        while True:
            current_time += self.rng.exponential(1.0 / arrival_rate)
            if current_time >= duration:
                break
            tasks.append(self.generate_task(
                current_time, memory_mean, duration_mean, duration_std
            ))

        logger.info(f"Generated {len(tasks)} tasks over {duration:.1f}s")
        return tasks
