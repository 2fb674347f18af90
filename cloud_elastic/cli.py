"""Command-line interface for the autoscaling simulator."""

import typer
from typing import Optional
from pathlib import Path
from rich.console import Console
from rich.progress import Progress, SpinnerColumn, TextColumn
from loguru import logger

from .runner import run_simulation
from .utils.config import Config, config_from_dict, config_to_dict, load_config, save_config, save_results
from .utils.reporting import print_results

app = typer.Typer(name="cloud-elastic", help="Elastic VM pool autoscaling simulator")
console = Console()


@app.command()
def simulate(
    config: Optional[Path] = typer.Option(None, "--config", "-c", help="Configuration file path"),
    cycles: Optional[int] = typer.Option(None, "--cycles", "-n", help="Stop the controller after N cycles"),
    interval: Optional[float] = typer.Option(None, "--interval", "-i", help="Control interval in simulated seconds"),
    sampler: Optional[str] = typer.Option(None, "--sampler", "-s", help="Utilization source: random or engine"),
    seed: Optional[int] = typer.Option(None, "--seed", help="Random seed"),
    show_cycles: bool = typer.Option(False, "--show-cycles", help="Print a row per control cycle"),
    output: Optional[Path] = typer.Option(None, "--output", "-o", help="Output directory"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose logging"),
) -> None:
    """Run the cloudlet batch under the autoscaling controller."""

    if verbose:
        logger.remove()
        logger.add("logs/simulation_{time}.log", level="DEBUG")
        logger.add(lambda msg: console.print(msg, style="dim", end=""), level="INFO")

    console.print("🚀 Starting AutoScaling simulation", style="bold blue")

    # Load configuration
    if config:
        full_config = load_config(config)
        console.print(f"📋 Loaded configuration from {config}")
    else:
        full_config = Config()
        console.print("📋 Using default configuration")

    # Command-line overrides
    try:
        full_config = apply_overrides(full_config, interval=interval, sampler=sampler, seed=seed)
    except ValueError as e:
        console.print(f"❌ {e}", style="bold red")
        raise typer.Exit(code=1)

    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        console=console,
    ) as progress:
        task = progress.add_task("Simulating...", total=None)
        try:
            result = run_simulation(full_config.simulation, full_config.autoscaling, max_cycles=cycles)
        except ValueError as e:
            progress.stop()
            console.print(f"❌ {e}", style="bold red")
            raise typer.Exit(code=1)
        progress.update(task, description="Simulation completed")

    print_results(console, result, show_cycles=show_cycles)

    if output:
        save_results(result.to_dict(), output)
        console.print(f"💾 Results saved to {output}")

    console.print("✅ AutoScaling simulation finished!", style="bold green")


@app.command("init-config")
def init_config(
    path: Path = typer.Argument(Path("configs/default.yaml"), help="Where to write the config"),
    force: bool = typer.Option(False, "--force", "-f", help="Overwrite an existing file"),
) -> None:
    """Write a configuration file with the default settings."""
    if path.exists() and not force:
        console.print(f"❌ {path} already exists (use --force to overwrite)", style="bold red")
        raise typer.Exit(code=1)

    save_config(Config(), path)
    console.print(f"📝 Default configuration written to {path}")


def apply_overrides(
    config: Config,
    interval: Optional[float] = None,
    sampler: Optional[str] = None,
    seed: Optional[int] = None,
) -> Config:
    """Return a copy of ``config`` with command-line values applied."""
    data = config_to_dict(config)
    if interval is not None:
        data['autoscaling']['control_interval'] = interval
    if sampler is not None:
        data['autoscaling']['sampler'] = sampler
    if seed is not None:
        data['simulation']['random_seed'] = seed
    return config_from_dict(data)


def main() -> None:
    """Main entry point."""
    app()


if __name__ == "__main__":
    main()
