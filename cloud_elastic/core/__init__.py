"""Core simulation components."""

from .errors import (
    CloudElasticError,
    VmNotFoundError,
    FloorViolationError,
    SampleUnavailableError,
    EngineSubmitFailedError,
    EngineRemovalFailedError,
)
from .resources import Host, HostSpecs, VirtualMachine, VmProfile, ResourcePool
from .workload import Cloudlet, CloudletSpec, CloudletStatus, CompletionRecord, JobSubmitter
from .events import EventBus, SimulationEvent, EventType
from .simulator import CloudSimulator, SimulationConfig, SimulationEngine

__all__ = [
    "CloudElasticError",
    "VmNotFoundError",
    "FloorViolationError",
    "SampleUnavailableError",
    "EngineSubmitFailedError",
    "EngineRemovalFailedError",
    "Host",
    "HostSpecs",
    "VirtualMachine",
    "VmProfile",
    "ResourcePool",
    "Cloudlet",
    "CloudletSpec",
    "CloudletStatus",
    "CompletionRecord",
    "JobSubmitter",
    "EventBus",
    "SimulationEvent",
    "EventType",
    "CloudSimulator",
    "SimulationConfig",
    "SimulationEngine",
]
