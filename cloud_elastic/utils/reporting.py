"""Console tables for simulation results."""

from typing import List, Optional
from rich.console import Console
from rich.table import Table

from ..core.workload import CloudletStatus, CompletionRecord
from ..scheduling.autoscaling import CycleReport, ScalingSummary


def _fmt(value: Optional[float]) -> str:
    return "-" if value is None else f"{value:.2f}"


def cloudlet_table(records: List[CompletionRecord]) -> Table:
    """Cloudlet results in cloudlet id order."""
    table = Table(title="Cloudlet Results")
    table.add_column("Cloudlet ID", justify="right", style="cyan")
    table.add_column("Status")
    table.add_column("VM ID", justify="right")
    table.add_column("Time", justify="right")
    table.add_column("Start Time", justify="right")
    table.add_column("Finish Time", justify="right")

    for record in sorted(records, key=lambda r: r.cloudlet_id):
        style = "green" if record.status == CloudletStatus.SUCCESS else "red"
        table.add_row(
            str(record.cloudlet_id),
            f"[{style}]{record.status.value.upper()}[/{style}]",
            "-" if record.vm_id is None else str(record.vm_id),
            _fmt(record.cpu_time),
            _fmt(record.start_time),
            _fmt(record.finish_time),
        )

    return table


def cycles_table(cycles: List[CycleReport]) -> Table:
    """One row per control cycle."""
    table = Table(title="Scaling Cycles")
    table.add_column("Cycle", justify="right", style="cyan")
    table.add_column("Time", justify="right")
    table.add_column("Readings")
    table.add_column("Added", style="green")
    table.add_column("Removed", style="yellow")
    table.add_column("VMs", justify="right")

    for cycle in cycles:
        readings = ", ".join(
            f"#{vm_id}: {'n/a' if u is None else f'{u:.0%}'}"
            for vm_id, u in cycle.readings.items()
        )
        table.add_row(
            str(cycle.index),
            f"{cycle.timestamp:.1f}",
            readings,
            ", ".join(f"#{v}" for v in cycle.added),
            ", ".join(f"#{v}" for v in cycle.removed),
            f"{cycle.pool_size_before} -> {cycle.pool_size_after}",
        )

    return table


def summary_table(summary: ScalingSummary) -> Table:
    table = Table(title="Autoscaling Summary")
    table.add_column("Metric", style="cyan")
    table.add_column("Value", style="green")

    rows = [
        ("Control cycles", summary.cycles),
        ("Scale-ups", summary.scale_ups),
        ("Scale-downs", summary.scale_downs),
        ("Rejected scale-ups", summary.rejected_scale_ups),
        ("Skipped scale-downs", summary.skipped_scale_downs),
        ("Unavailable samples", summary.unavailable_samples),
        ("Final pool size", summary.final_pool_size),
    ]
    for metric, value in rows:
        table.add_row(metric, str(value))

    return table


def print_results(console: Console, result, show_cycles: bool = False) -> None:
    """Print the cloudlet list and the scaling summary."""
    console.print(cloudlet_table(result.completions))
    if show_cycles:
        console.print(cycles_table(result.cycles))
    console.print(summary_table(result.summary))
