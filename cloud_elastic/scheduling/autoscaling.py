"""Threshold autoscaling policy and the control loop that applies it."""

from typing import Collection, Dict, List, Mapping, Optional, Sequence
from dataclasses import asdict, dataclass, field
from enum import Enum
import math
import simpy
from loguru import logger

from ..core.errors import (
    EngineRemovalFailedError,
    EngineSubmitFailedError,
    FloorViolationError,
    SampleUnavailableError,
    VmNotFoundError,
)
from ..core.resources import ResourcePool, VirtualMachine, VmProfile
from ..core.simulator import SimulationEngine
from .sampling import UtilizationSampler


# Anti-flapping rule: a single noisy low reading may remove at most this
# many VMs per cycle. Scale-ups are not capped.
MAX_SCALE_DOWNS_PER_CYCLE = 1


class ScalingAction(Enum):
    """Types of scaling actions."""
    SCALE_UP = "scale_up"
    SCALE_DOWN = "scale_down"
    NO_OP = "no_op"


@dataclass
class ScalingDecision:
    """What to do about one sampled VM in one cycle."""
    action: ScalingAction
    vm_id: int
    utilization: Optional[float] = None
    template: Optional[VmProfile] = None  # set for SCALE_UP
    reason: str = ""


@dataclass
class AutoscalingConfig:
    """Configuration for the autoscaling controller."""
    upper_threshold: float = 0.8
    lower_threshold: float = 0.2
    min_pool_size: int = 1

    # Timing, in simulated seconds
    control_interval: float = 5.0
    sample_timeout: float = 1.0
    removal_timeout: float = 30.0

    enabled: bool = True
    sampler: str = "random"  # "random" or "engine"

    def __post_init__(self):
        if not (0.0 <= self.lower_threshold < self.upper_threshold <= 1.0):
            raise ValueError("thresholds must satisfy 0 <= lower_threshold < upper_threshold <= 1")
        if not isinstance(self.min_pool_size, int) or self.min_pool_size < 1:
            raise ValueError("min_pool_size must be an integer >= 1")
        if self.control_interval <= 0:
            raise ValueError("control_interval must be positive")
        if self.sample_timeout <= 0:
            raise ValueError("sample_timeout must be positive")
        if self.removal_timeout <= 0:
            raise ValueError("removal_timeout must be positive")
        if self.sampler not in ("random", "engine"):
            raise ValueError(f"Unknown sampler: {self.sampler}")


class ThresholdScalingPolicy:
    """Per-VM threshold policy.

    Each VM above ``upper`` asks for one clone of itself. A VM below
    ``lower`` is removed only while the pool, as sized at the start of the
    cycle, is above the floor, and only up to ``MAX_SCALE_DOWNS_PER_CYCLE``
    removals per cycle. Low VMs past that budget are left alone, but
    later VMs are still checked for scale-up.
    """

    def __init__(self, upper: float = 0.8, lower: float = 0.2):
        if not (0.0 <= lower < upper <= 1.0):
            raise ValueError("thresholds must satisfy 0 <= lower < upper <= 1")
        self.upper = upper
        self.lower = lower

    def decide(
        self,
        snapshot: Sequence[VirtualMachine],
        utilizations: Mapping[int, Optional[float]],
        min_size: int,
        draining: Collection[int] = (),
    ) -> List[ScalingDecision]:
        """Map one cycle's readings to decisions, in snapshot order.

        VMs in ``draining`` are already on their way out and do not count
        towards the pool size used for the floor check.
        """
        pool_size = sum(1 for vm in snapshot if vm.vm_id not in draining)
        scale_downs = 0
        decisions = []

        for vm in snapshot:
            utilization = utilizations.get(vm.vm_id)

            if utilization is None:
                decisions.append(ScalingDecision(
                    ScalingAction.NO_OP, vm.vm_id, reason="utilization unavailable"
                ))
            elif utilization > self.upper:
                decisions.append(ScalingDecision(
                    ScalingAction.SCALE_UP, vm.vm_id, utilization,
                    template=vm.profile,
                    reason=f"utilization {utilization:.2f} > {self.upper}",
                ))
            elif utilization < self.lower and pool_size <= min_size:
                decisions.append(ScalingDecision(
                    ScalingAction.NO_OP, vm.vm_id, utilization,
                    reason=f"pool at minimum size {min_size}",
                ))
            elif utilization < self.lower and scale_downs >= MAX_SCALE_DOWNS_PER_CYCLE:
                decisions.append(ScalingDecision(
                    ScalingAction.NO_OP, vm.vm_id, utilization,
                    reason="scale-down limit reached this cycle",
                ))
            elif utilization < self.lower:
                scale_downs += 1
                decisions.append(ScalingDecision(
                    ScalingAction.SCALE_DOWN, vm.vm_id, utilization,
                    reason=f"utilization {utilization:.2f} < {self.lower}",
                ))
            else:
                decisions.append(ScalingDecision(
                    ScalingAction.NO_OP, vm.vm_id, utilization, reason="within band"
                ))

        return decisions


class ControllerState(Enum):
    """Phases of the control loop."""
    IDLE = "idle"
    SAMPLING = "sampling"
    DECIDING = "deciding"
    APPLYING = "applying"
    STOPPED = "stopped"


@dataclass
class CycleReport:
    """Outcome of one Sample-Decide-Apply cycle."""
    index: int
    timestamp: float
    pool_size_before: int
    readings: Dict[int, Optional[float]] = field(default_factory=dict)
    decisions: List[ScalingDecision] = field(default_factory=list)
    added: List[int] = field(default_factory=list)
    removed: List[int] = field(default_factory=list)
    rejected: List[int] = field(default_factory=list)
    skipped: List[int] = field(default_factory=list)
    pending_removal: List[int] = field(default_factory=list)
    pool_size_after: int = 0

    def to_dict(self) -> dict:
        data = asdict(self)
        data["decisions"] = [
            {"action": d.action.value, "vm_id": d.vm_id,
             "utilization": d.utilization, "reason": d.reason}
            for d in self.decisions
        ]
        return data


@dataclass
class ScalingSummary:
    """Totals reported when the controller shuts down."""
    cycles: int = 0
    scale_ups: int = 0
    scale_downs: int = 0
    rejected_scale_ups: int = 0
    skipped_scale_downs: int = 0
    unavailable_samples: int = 0
    final_pool_size: int = 0

    def to_dict(self) -> dict:
        return asdict(self)


class ScalingController:
    """Samples the pool, asks the policy, and applies its decisions.

    The controller is the only writer of the resource pool while it runs.
    It runs as a single SimPy process, so cycles never overlap: a new
    Sampling phase starts only after the previous Apply phase finished.
    """

    def __init__(
        self,
        env: simpy.Environment,
        pool: ResourcePool,
        sampler: UtilizationSampler,
        engine: SimulationEngine,
        config: Optional[AutoscalingConfig] = None,
        policy: Optional[ThresholdScalingPolicy] = None,
    ):
        self.env = env
        self.pool = pool
        self.sampler = sampler
        self.engine = engine
        self.config = config or AutoscalingConfig(min_pool_size=pool.min_size)
        self.policy = policy or ThresholdScalingPolicy(
            self.config.upper_threshold, self.config.lower_threshold
        )

        self.state = ControllerState.IDLE
        self.history: List[CycleReport] = []
        self.stats = ScalingSummary(final_pool_size=len(pool))
        self.process: Optional[simpy.Process] = None

        self._stop_requested = False
        self._stop_event = env.event()
        # Removals the engine answered after their cycle timed out waiting
        self._late_acks: Dict[int, bool] = {}

        self.logger = logger.bind(component="ScalingController")
        self.logger.info(
            f"Controller initialized: thresholds {self.policy.lower}/{self.policy.upper}, "
            f"pool size {len(pool)} (min {pool.min_size})"
        )

    @property
    def stopped(self) -> bool:
        return self.state == ControllerState.STOPPED

    def start(self, max_cycles: Optional[int] = None) -> simpy.Process:
        """Register the control loop with the environment."""
        self.process = self.env.process(self.run(max_cycles))
        return self.process

    def stop(self) -> None:
        """Stop after the current cycle; no new Sampling phase starts."""
        self._stop_requested = True
        if not self._stop_event.triggered:
            self._stop_event.succeed()

    def summary(self) -> ScalingSummary:
        self.stats.cycles = len(self.history)
        self.stats.final_pool_size = len(self.pool)
        return self.stats

    def run(self, max_cycles: Optional[int] = None):
        """Control loop: one cycle per tick until stopped."""
        while not self._stop_requested:
            yield from self.cycle()

            if max_cycles is not None and len(self.history) >= max_cycles:
                break
            yield self.env.any_of([
                self.env.timeout(self.config.control_interval),
                self._stop_event,
            ])

        self._settle_late_removals()
        self.state = ControllerState.STOPPED

        summary = self.summary()
        self.logger.info(
            f"Controller stopped after {summary.cycles} cycles: "
            f"{summary.scale_ups} scale-ups, {summary.scale_downs} scale-downs, "
            f"final pool size {summary.final_pool_size}"
        )
        return summary

    def cycle(self):
        """One Sample -> Decide -> Apply pass."""
        self._settle_late_removals()

        self.state = ControllerState.SAMPLING
        snapshot = self.pool.snapshot()
        report = CycleReport(
            index=len(self.history),
            timestamp=self.env.now,
            pool_size_before=len(snapshot),
        )
        report.readings = yield from self._sample(snapshot)

        self.state = ControllerState.DECIDING
        report.decisions = self.policy.decide(
            snapshot,
            report.readings,
            self.pool.min_size,
            draining=[vm.vm_id for vm in snapshot if self.pool.is_draining(vm.vm_id)],
        )

        self.state = ControllerState.APPLYING
        for decision in report.decisions:
            if decision.action == ScalingAction.SCALE_UP:
                self._scale_up(decision, report)
            elif decision.action == ScalingAction.SCALE_DOWN:
                yield from self._scale_down(decision, report)

        report.pool_size_after = len(self.pool)
        self.history.append(report)
        self.state = ControllerState.IDLE

        self.logger.info(
            f"Cycle {report.index} at {report.timestamp:.2f}s: "
            f"+{len(report.added)} -{len(report.removed)}, "
            f"total VMs after scaling: {report.pool_size_after}"
        )
        return report

    def _sample(self, snapshot: Sequence[VirtualMachine]):
        self.sampler.start_cycle([vm.vm_id for vm in snapshot])

        readings: Dict[int, Optional[float]] = {}
        reads: Dict[int, simpy.Process] = {}
        races = []
        for vm in snapshot:
            if self.pool.is_draining(vm.vm_id):
                self.logger.debug(f"VM #{vm.vm_id} is draining; no sample this cycle")
                readings[vm.vm_id] = None
                self.stats.unavailable_samples += 1
                continue

            read = self.env.process(self._read(vm.vm_id))
            reads[vm.vm_id] = read
            races.append(self.env.any_of([read, self.env.timeout(self.config.sample_timeout)]))

        if races:
            yield self.env.all_of(races)

        for vm_id, read in reads.items():
            if not read.triggered:
                self.logger.warning(
                    f"Sampling VM #{vm_id} timed out after {self.config.sample_timeout}s"
                )
                readings[vm_id] = None
            else:
                readings[vm_id] = read.value

            if readings[vm_id] is None:
                self.stats.unavailable_samples += 1
            else:
                self.logger.info(f"VM #{vm_id} CPU utilization: {readings[vm_id]:.2%}")

        # Keep snapshot order
        return {vm.vm_id: readings[vm.vm_id] for vm in snapshot}

    def _read(self, vm_id: int):
        delay = self.sampler.sample_delay(vm_id)
        if delay > 0:
            yield self.env.timeout(delay)

        try:
            value = float(self.sampler.sample(vm_id))
        except SampleUnavailableError as e:
            self.logger.debug(str(e))
            return None
        except Exception as e:
            self.logger.warning(f"Error sampling VM #{vm_id}: {e}")
            return None

        if math.isnan(value):
            self.logger.warning(f"VM #{vm_id} returned a NaN utilization; ignoring it")
            return None
        return min(1.0, max(0.0, value))

    def _scale_up(self, decision: ScalingDecision, report: CycleReport) -> None:
        self.logger.info(f"VM #{decision.vm_id} exceeds upper threshold ({decision.reason}). "
                        f"Scaling up...")

        vm = self.pool.add(decision.template)
        try:
            self.engine.submit_vms([vm])
        except EngineSubmitFailedError as e:
            self.logger.error(f"Engine rejected VM #{vm.vm_id}: {e.reason}; rolling back")
            self.pool.remove(vm.vm_id)
            report.rejected.append(vm.vm_id)
            self.stats.rejected_scale_ups += 1
            return

        report.added.append(vm.vm_id)
        self.stats.scale_ups += 1
        self.logger.info(f"New VM #{vm.vm_id} created and submitted.")

    def _scale_down(self, decision: ScalingDecision, report: CycleReport):
        vm_id = decision.vm_id
        self.logger.info(f"VM #{vm_id} below lower threshold ({decision.reason}). Scaling down...")

        try:
            self.pool.reserve_removal(vm_id)
        except (VmNotFoundError, FloorViolationError) as e:
            self.logger.warning(f"Scale-down skipped: {e}")
            report.skipped.append(vm_id)
            self.stats.skipped_scale_downs += 1
            return

        removal = self.engine.request_vm_removal(vm_id)
        try:
            result = yield self.env.any_of([
                removal,
                self.env.timeout(self.config.removal_timeout),
            ])
        except EngineRemovalFailedError as e:
            self.logger.error(f"Scale-down of VM #{vm_id} failed: {e.reason}")
            self.pool.release_removal(vm_id)
            report.skipped.append(vm_id)
            self.stats.skipped_scale_downs += 1
            return

        if removal in result:
            self._finish_removal(vm_id)
            report.removed.append(vm_id)
            return

        self.logger.warning(
            f"VM #{vm_id} not drained after {self.config.removal_timeout}s; "
            f"leaving it draining"
        )
        report.pending_removal.append(vm_id)
        self.env.process(self._await_removal(vm_id, removal))

    def _await_removal(self, vm_id: int, removal: simpy.Event):
        try:
            yield removal
        except EngineRemovalFailedError as e:
            self.logger.error(f"Late scale-down of VM #{vm_id} failed: {e.reason}")
            self._late_acks[vm_id] = False
            return
        self._late_acks[vm_id] = True

    def _settle_late_removals(self) -> None:
        for vm_id, acknowledged in list(self._late_acks.items()):
            del self._late_acks[vm_id]
            if acknowledged:
                self._finish_removal(vm_id)
            else:
                self.pool.release_removal(vm_id)
                self.stats.skipped_scale_downs += 1

    def _finish_removal(self, vm_id: int) -> None:
        try:
            self.pool.remove(vm_id)
        except (VmNotFoundError, FloorViolationError) as e:
            self.logger.warning(f"Removal of VM #{vm_id} not recorded: {e}")
            return

        self.stats.scale_downs += 1
        self.logger.info(f"VM #{vm_id} removed from pool")
