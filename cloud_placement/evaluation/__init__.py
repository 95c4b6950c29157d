"""Evaluation of simulation runs."""

from .metrics import SimulationAnalyzer, task_frame, metrics_frame

__all__ = ["SimulationAnalyzer", "task_frame", "metrics_frame"]
