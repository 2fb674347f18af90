"""Utilization sampling, scaling policy and the autoscaling control loop."""

from .sampling import (
    UtilizationSampler,
    RandomUtilizationSampler,
    SequenceUtilizationSampler,
    EngineUtilizationSampler,
)
from .autoscaling import (
    MAX_SCALE_DOWNS_PER_CYCLE,
    AutoscalingConfig,
    ControllerState,
    CycleReport,
    ScalingAction,
    ScalingController,
    ScalingDecision,
    ScalingSummary,
    ThresholdScalingPolicy,
)

__all__ = [
    "UtilizationSampler",
    "RandomUtilizationSampler",
    "SequenceUtilizationSampler",
    "EngineUtilizationSampler",
    "MAX_SCALE_DOWNS_PER_CYCLE",
    "AutoscalingConfig",
    "ControllerState",
    "CycleReport",
    "ScalingAction",
    "ScalingController",
    "ScalingDecision",
    "ScalingSummary",
    "ThresholdScalingPolicy",
]
