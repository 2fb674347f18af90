"""Per-VM utilization sources for the autoscaling controller."""

from abc import ABC, abstractmethod
from typing import Dict, Iterator, List, Mapping, Optional, Sequence, Union
import numpy as np
from loguru import logger

from ..core.errors import SampleUnavailableError
from ..core.simulator import SimulationEngine


class UtilizationSampler(ABC):
    """Source of a utilization reading in [0, 1] for a VM.

    Implementations must not touch the resource pool. A reading that cannot
    be produced is reported with ``SampleUnavailableError``.
    """

    @abstractmethod
    def sample(self, vm_id: int) -> float:
        """Return the current utilization of ``vm_id``."""

    def sample_delay(self, vm_id: int) -> float:
        """Simulated seconds a read of ``vm_id`` takes."""
        return 0.0

    def start_cycle(self, vm_ids: Sequence[int]) -> None:
        """Called by the controller with the snapshot about to be sampled."""


class RandomUtilizationSampler(UtilizationSampler):
    """Uniform random readings, one draw per call."""

    def __init__(self, seed: Optional[int] = None, delay: float = 0.0):
        self.rng = np.random.default_rng(seed)
        self.delay = delay
        logger.info(f"RandomUtilizationSampler initialized with seed {seed}")

    def sample(self, vm_id: int) -> float:
        return float(self.rng.uniform(0.0, 1.0))

    def sample_delay(self, vm_id: int) -> float:
        return self.delay


Readings = Union[Sequence[Sequence[Optional[float]]], Mapping[int, Sequence[Optional[float]]]]


class SequenceUtilizationSampler(UtilizationSampler):
    """Replays fixed readings, for deterministic runs.

    ``readings`` is either one list per cycle, matched by position to the
    cycle's snapshot, or a mapping from VM id to that VM's successive
    readings. ``None`` entries and exhausted sequences are reported as
    unavailable. Per-VM delays can be given to simulate slow metric reads.
    """

    def __init__(self, readings: Readings, delays: Optional[Mapping[int, float]] = None):
        self.delays = dict(delays or {})
        self._by_vm: Optional[Dict[int, Iterator[Optional[float]]]] = None
        self._by_cycle: Optional[Iterator[Sequence[Optional[float]]]] = None
        self._current: Dict[int, Optional[float]] = {}

        if isinstance(readings, Mapping):
            self._by_vm = {vm_id: iter(values) for vm_id, values in readings.items()}
        else:
            self._by_cycle = iter(readings)

    def start_cycle(self, vm_ids: Sequence[int]) -> None:
        if self._by_cycle is not None:
            values: List[Optional[float]] = list(next(self._by_cycle, []))
            self._current = dict(zip(vm_ids, values))

    def sample(self, vm_id: int) -> float:
        if self._by_vm is not None:
            values = self._by_vm.get(vm_id)
            value = next(values, None) if values is not None else None
        else:
            value = self._current.pop(vm_id, None)

        if value is None:
            raise SampleUnavailableError(vm_id, "no scripted reading")
        return value

    def sample_delay(self, vm_id: int) -> float:
        return self.delays.get(vm_id, 0.0)


class EngineUtilizationSampler(UtilizationSampler):
    """Reads the busy-PE fraction the engine reports for each VM."""

    def __init__(self, engine: SimulationEngine):
        self.engine = engine

    def sample(self, vm_id: int) -> float:
        return self.engine.vm_utilization(vm_id)
