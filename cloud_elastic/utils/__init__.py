"""Utility modules for the autoscaling simulator."""

from .config import load_config, save_config, save_results, Config
from .reporting import print_results, cloudlet_table, summary_table

__all__ = [
    "load_config",
    "save_config",
    "save_results",
    "Config",
    "print_results",
    "cloudlet_table",
    "summary_table",
]
