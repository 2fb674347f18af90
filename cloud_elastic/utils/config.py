"""Configuration management utilities."""

from typing import Dict, Any
from dataclasses import asdict
from pathlib import Path
import yaml
import json
from pydantic import BaseModel, ConfigDict, Field
from loguru import logger

from ..core.resources import HostSpecs, VmProfile
from ..core.simulator import SimulationConfig
from ..core.workload import CloudletSpec
from ..scheduling.autoscaling import AutoscalingConfig


class Config(BaseModel):
    """Main configuration class."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    simulation: SimulationConfig = Field(default_factory=SimulationConfig)
    autoscaling: AutoscalingConfig = Field(default_factory=AutoscalingConfig)

    # Free-form experiment metadata
    experiment: Dict[str, Any] = Field(default_factory=dict)


def _read_file(config_path: Path) -> Dict[str, Any]:
    with open(config_path, 'r') as f:
        if config_path.suffix.lower() in ['.yaml', '.yml']:
            try:
                config_data = yaml.safe_load(f)
            except yaml.YAMLError as e:
                raise ValueError(f"Failed to parse YAML config file: {e}")
        elif config_path.suffix.lower() == '.json':
            config_data = json.load(f)
        else:
            raise ValueError(f"Unsupported configuration file format: {config_path.suffix}")

    if config_data is None:
        raise ValueError(f"Config file is empty: {config_path}")
    if not isinstance(config_data, dict):
        raise ValueError(f"Config file must contain a mapping: {config_path}")
    return config_data


def config_from_dict(config_data: Dict[str, Any]) -> Config:
    """Build a validated Config from plain data; missing keys take defaults."""
    sim_data = config_data.get('simulation', {}) or {}
    auto_data = config_data.get('autoscaling', {}) or {}

    simulation = SimulationConfig(
        max_duration=sim_data.get('max_duration', 3600.0),
        random_seed=sim_data.get('random_seed', 42),
        num_hosts=sim_data.get('num_hosts', 1),
        host_specs=HostSpecs(**sim_data.get('host', {})),
        vm_profile=VmProfile(**sim_data.get('vm', {})),
        initial_vms=sim_data.get('initial_vms', 2),
        num_cloudlets=sim_data.get('num_cloudlets', 10),
        cloudlet_spec=CloudletSpec(**sim_data.get('cloudlet', {})),
    )

    autoscaling = AutoscalingConfig(
        upper_threshold=auto_data.get('upper_threshold', 0.8),
        lower_threshold=auto_data.get('lower_threshold', 0.2),
        min_pool_size=auto_data.get('min_pool_size', 1),
        control_interval=auto_data.get('control_interval', 5.0),
        sample_timeout=auto_data.get('sample_timeout', 1.0),
        removal_timeout=auto_data.get('removal_timeout', 30.0),
        enabled=auto_data.get('enabled', True),
        sampler=auto_data.get('sampler', 'random'),
    )

    if simulation.initial_vms < autoscaling.min_pool_size:
        raise ValueError(
            f"simulation.initial_vms ({simulation.initial_vms}) must be >= "
            f"autoscaling.min_pool_size ({autoscaling.min_pool_size})"
        )

    return Config(
        simulation=simulation,
        autoscaling=autoscaling,
        experiment=config_data.get('experiment', {}) or {},
    )


def config_to_dict(config: Config) -> Dict[str, Any]:
    sim = config.simulation
    return {
        'simulation': {
            'max_duration': sim.max_duration,
            'random_seed': sim.random_seed,
            'num_hosts': sim.num_hosts,
            'host': asdict(sim.host_specs),
            'vm': asdict(sim.vm_profile),
            'initial_vms': sim.initial_vms,
            'num_cloudlets': sim.num_cloudlets,
            'cloudlet': asdict(sim.cloudlet_spec),
        },
        'autoscaling': asdict(config.autoscaling),
        'experiment': config.experiment,
    }


def load_config(config_path: Path) -> Config:
    """Load configuration from a YAML or JSON file."""
    config_path = Path(config_path)

    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    logger.info(f"Loading configuration from {config_path}")

    config = config_from_dict(_read_file(config_path))

    logger.info(f"Configuration loaded: {config.simulation.initial_vms} initial VMs, "
               f"{config.simulation.num_cloudlets} cloudlets, "
               f"thresholds {config.autoscaling.lower_threshold}/{config.autoscaling.upper_threshold}")
    return config


def save_config(config: Config, config_path: Path) -> None:
    """Save configuration to file."""
    config_path = Path(config_path)
    config_path.parent.mkdir(parents=True, exist_ok=True)

    config_dict = config_to_dict(config)

    with open(config_path, 'w') as f:
        if config_path.suffix.lower() in ['.yaml', '.yml']:
            yaml.dump(config_dict, f, default_flow_style=False, indent=2, sort_keys=False)
        elif config_path.suffix.lower() == '.json':
            json.dump(config_dict, f, indent=2)
        else:
            raise ValueError(f"Unsupported configuration file format: {config_path.suffix}")

    logger.info(f"Configuration saved to {config_path}")


def save_results(results: Dict[str, Any], output_dir: Path) -> Path:
    """Save simulation results to a JSON file."""
    output_dir = Path(output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)

    results_file = output_dir / "simulation_results.json"
    with open(results_file, 'w') as f:
        json.dump(results, f, indent=2, default=str)

    logger.info(f"Results saved to {results_file}")
    return results_file
