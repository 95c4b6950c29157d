"""Simulation analysis and metrics calculation."""

from typing import Any, Dict, List
from dataclasses import asdict
import numpy as np
import pandas as pd
from loguru import logger

from ..core.cluster import SimulatedCluster
from ..core.simulator import SimulationMetrics
from ..scheduling.scheduler import ShutdownReport


TASK_COLUMNS = [
    "task_id", "cpu", "vm_type", "memory", "sla", "arrival_time", "duration",
    "start_time", "end_time", "queue_time", "turnaround", "sla_violated",
]


def task_frame(cluster: SimulatedCluster) -> pd.DataFrame:
    """One row per submitted task with its timing."""
    rows = []
    for state in cluster.tasks.values():
        spec = state.spec
        rows.append({
            "task_id": spec.task_id,
            "cpu": spec.cpu.value,
            "vm_type": spec.vm_type.value,
            "memory": spec.memory,
            "sla": spec.sla.name,
            "arrival_time": spec.arrival_time,
            "duration": spec.duration,
            "start_time": state.start_time,
            "end_time": state.end_time,
            "sla_violated": state.sla_violated,
        })

    df = pd.DataFrame(rows, columns=[c for c in TASK_COLUMNS
                                     if c not in ("queue_time", "turnaround")])
    df["start_time"] = pd.to_numeric(df["start_time"], errors="coerce")
    df["end_time"] = pd.to_numeric(df["end_time"], errors="coerce")
    df["queue_time"] = df["start_time"] - df["arrival_time"]
    df["turnaround"] = df["end_time"] - df["arrival_time"]
    return df[TASK_COLUMNS]


def metrics_frame(history: List[SimulationMetrics]) -> pd.DataFrame:
    """Periodic cluster snapshots as a time-indexed frame."""
    if not history:
        return pd.DataFrame()
    return pd.DataFrame([asdict(m) for m in history]).set_index("timestamp")


class SimulationAnalyzer:
    """Summarizes a finished run."""

    def __init__(self):
        self.logger = logger.bind(component="SimulationAnalyzer")

    def queue_statistics(self, tasks: pd.DataFrame) -> Dict[str, float]:
        started = tasks["queue_time"].dropna().to_numpy()
        if started.size == 0:
            return {"avg_queue_time": 0.0, "p95_queue_time": 0.0, "max_queue_time": 0.0}
        return {
            "avg_queue_time": float(np.mean(started)),
            "p95_queue_time": float(np.percentile(started, 95)),
            "max_queue_time": float(np.max(started)),
        }

    def analyze(
        self,
        report: ShutdownReport,
        tasks: pd.DataFrame,
        history: List[SimulationMetrics],
    ) -> Dict[str, Any]:
        """Combine the shutdown report, task timings and snapshots."""
        total = len(tasks)
        completed = int(tasks["end_time"].notna().sum()) if total else 0
        never_started = int(tasks["start_time"].isna().sum()) if total else 0

        analysis: Dict[str, Any] = {
            "report": report.as_dict(),
            "total_tasks": total,
            "completed_tasks": completed,
            "never_started_tasks": never_started,
            "completion_rate": completed / total if total else 0.0,
        }
        analysis.update(self.queue_statistics(tasks))

        snapshots = metrics_frame(history)
        if not snapshots.empty:
            analysis["avg_active_machines"] = float(snapshots["active_machines"].mean())
            analysis["peak_deferred_tasks"] = int(snapshots["deferred_tasks"].max())
            analysis["avg_power_draw_watts"] = float(snapshots["power_draw_watts"].mean())
            analysis["metrics_history"] = snapshots.reset_index().to_dict(orient="records")

        self.logger.info(f"Analyzed {total} tasks: {completed} completed, "
                        f"avg queue {analysis['avg_queue_time']:.2f}s, "
                        f"energy {report.total_energy_kwh:.4f} kWh")
        return analysis
