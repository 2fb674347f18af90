"""Cloudlet (batch job) models and batch submission."""

from typing import List, Optional, TYPE_CHECKING
from dataclasses import dataclass
from enum import Enum
from loguru import logger

if TYPE_CHECKING:
    from .simulator import SimulationEngine


class CloudletStatus(Enum):
    """Cloudlet lifecycle states."""
    CREATED = "created"
    QUEUED = "queued"
    RUNNING = "running"
    SUCCESS = "success"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (CloudletStatus.SUCCESS, CloudletStatus.FAILED)


@dataclass
class CloudletSpec:
    """Parameters of the cloudlets in a batch."""
    length: int = 10000  # MI
    pes: int = 1
    file_size: int = 300
    output_size: int = 300


@dataclass(frozen=True)
class CompletionRecord:
    """Outcome of one cloudlet, as reported by the engine."""
    cloudlet_id: int
    vm_id: Optional[int]
    status: CloudletStatus
    start_time: Optional[float]
    finish_time: Optional[float]

    @property
    def cpu_time(self) -> float:
        if self.start_time is None or self.finish_time is None:
            return 0.0
        return self.finish_time - self.start_time


class Cloudlet:
    """A unit of batch work executed on a VM."""

    def __init__(
        self,
        cloudlet_id: int,
        length: int,
        pes: int = 1,
        file_size: int = 300,
        output_size: int = 300,
    ):
        self.cloudlet_id = cloudlet_id
        self.length = length
        self.pes = pes
        self.file_size = file_size
        self.output_size = output_size
        self.status = CloudletStatus.CREATED

        # Assigned at dispatch, not at creation
        self.vm_id: Optional[int] = None

        self.submit_time: Optional[float] = None
        self.start_time: Optional[float] = None
        self.finish_time: Optional[float] = None

    def __repr__(self) -> str:
        return f"Cloudlet({self.cloudlet_id}, {self.status.value}, vm={self.vm_id})"

    def _transition(self, status: CloudletStatus) -> None:
        if self.status.is_terminal:
            raise ValueError(
                f"Cloudlet {self.cloudlet_id} is already {self.status.value}"
            )
        self.status = status

    def mark_queued(self, current_time: float) -> None:
        self._transition(CloudletStatus.QUEUED)
        self.submit_time = current_time

    def mark_running(self, vm_id: int, current_time: float) -> None:
        self._transition(CloudletStatus.RUNNING)
        self.vm_id = vm_id
        self.start_time = current_time

        logger.debug(f"Cloudlet {self.cloudlet_id} started on VM #{vm_id} at {current_time:.2f}s")

    def mark_success(self, current_time: float) -> None:
        self._transition(CloudletStatus.SUCCESS)
        self.finish_time = current_time

        logger.debug(f"Cloudlet {self.cloudlet_id} finished at {current_time:.2f}s")

    def mark_failed(self, current_time: float) -> None:
        self._transition(CloudletStatus.FAILED)
        self.finish_time = current_time

        logger.warning(f"Cloudlet {self.cloudlet_id} failed at {current_time:.2f}s")

    def to_record(self) -> CompletionRecord:
        return CompletionRecord(
            cloudlet_id=self.cloudlet_id,
            vm_id=self.vm_id,
            status=self.status,
            start_time=self.start_time,
            finish_time=self.finish_time,
        )


class JobSubmitter:
    """Generates a fixed batch of cloudlets and hands it to the engine."""

    def __init__(self, spec: Optional[CloudletSpec] = None, count: int = 10):
        if count < 0:
            raise ValueError("count must be non-negative")

        self.spec = spec or CloudletSpec()
        self.count = count

    def create_cloudlets(self) -> List[Cloudlet]:
        return [
            Cloudlet(
                cloudlet_id=i,
                length=self.spec.length,
                pes=self.spec.pes,
                file_size=self.spec.file_size,
                output_size=self.spec.output_size,
            )
            for i in range(self.count)
        ]

    def submit(self, engine: "SimulationEngine") -> List[Cloudlet]:
        cloudlets = self.create_cloudlets()
        engine.submit_cloudlets(cloudlets)

        logger.info(f"Submitted {len(cloudlets)} cloudlets "
                   f"({self.spec.length} MI, {self.spec.pes} PE each)")
        return cloudlets
