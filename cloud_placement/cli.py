"""Command-line interface for the placement simulator."""

import typer
from typing import Optional
from pathlib import Path
from rich.console import Console
from rich.table import Table
from rich.progress import Progress, SpinnerColumn, TextColumn
from loguru import logger

from .core.simulator import CloudSimulator
from .evaluation.metrics import SimulationAnalyzer, task_frame
from .utils.config import Config, create_default_config, load_config, save_results

app = typer.Typer(name="cloud-place", help="Energy-aware cloud placement simulator")
console = Console()


@app.command()
def simulate(
    config: Optional[Path] = typer.Option(None, "--config", "-c", help="Configuration file path"),
    duration: Optional[float] = typer.Option(None, "--duration", "-d", help="Simulation duration in seconds"),
    policy: Optional[str] = typer.Option(None, "--policy", "-p", help="Machine selection policy"),
    seed: Optional[int] = typer.Option(None, "--seed", help="Random seed for the task stream"),
    output: Optional[Path] = typer.Option(None, "--output", "-o", help="Output directory"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose logging"),
) -> None:
    """Run a placement simulation."""

    if verbose:
        logger.remove()
        logger.add("logs/simulation_{time}.log", level="DEBUG")
        logger.add(lambda msg: console.print(msg, style="dim"), level="INFO")

    console.print("🚀 Starting placement simulation", style="bold blue")

    if config:
        sim_config = load_config(config)
        console.print(f"📋 Loaded configuration from {config}")
    else:
        sim_config = Config()
        console.print("📋 Using default configuration")

    # Command-line overrides
    if duration is not None:
        sim_config.simulation.simulation_duration = duration
    if policy is not None:
        sim_config.scheduler.selection_policy = policy
    if seed is not None:
        sim_config.simulation.random_seed = seed
    sim_config = Config.model_validate(sim_config.model_dump())

    simulator = CloudSimulator(sim_config)

    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        console=console,
    ) as progress:
        task = progress.add_task(
            f"Simulating {sim_config.simulation.simulation_duration:.0f}s "
            f"with {sim_config.scheduler.selection_policy}...",
            total=None,
        )
        report = simulator.run()
        progress.update(task, description="Simulation completed")

    console.print("📊 Analyzing results...")
    tasks = task_frame(simulator.cluster)
    analysis = SimulationAnalyzer().analyze(report, tasks, simulator.metrics_history)

    display_results_summary(analysis)

    if output:
        output.mkdir(parents=True, exist_ok=True)
        save_results(analysis, output)
        tasks.to_csv(output / "tasks.csv", index=False)
        console.print(f"💾 Results saved to {output}")

    console.print("✅ Simulation completed successfully!", style="bold green")


@app.command("init-config")
def init_config(
    path: Path = typer.Argument(Path("configs/default.yaml"), help="Where to write the config"),
) -> None:
    """Write a default configuration file."""
    create_default_config(path)
    console.print(f"📝 Default configuration written to {path}")


def display_results_summary(analysis: dict) -> None:
    """Display simulation results summary."""

    table = Table(title="Simulation Results Summary")
    table.add_column("Metric", style="cyan")
    table.add_column("Value", style="green")
    table.add_column("Unit", style="yellow")

    report = analysis.get('report', {})

    metrics = [
        ("Total Tasks", f"{analysis.get('total_tasks', 0)}", "count"),
        ("Completed Tasks", f"{analysis.get('completed_tasks', 0)}", "count"),
        ("Still Deferred", f"{report.get('tasks_deferred', 0)}", "count"),
        ("Average Queue Time", f"{analysis.get('avg_queue_time', 0):.2f}", "seconds"),
        ("P95 Queue Time", f"{analysis.get('p95_queue_time', 0):.2f}", "seconds"),
        ("Machine Wakes", f"{report.get('wakes', 0)}", "count"),
        ("Machine Power-downs", f"{report.get('power_downs', 0)}", "count"),
        ("Offloads", f"{report.get('offloads', 0)}", "count"),
        ("Total Energy", f"{report.get('total_energy_kwh', 0):.4f}", "kWh"),
    ]
    for sla_name, pct in report.get('sla_violation_pct', {}).items():
        metrics.append((f"{sla_name} Violations", f"{pct:.2f}", "percentage"))

    for metric, value, unit in metrics:
        table.add_row(metric, value, unit)

    console.print(table)


def main() -> None:
    """Main entry point."""
    app()


if __name__ == "__main__":
    main()
