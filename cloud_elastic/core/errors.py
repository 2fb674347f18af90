"""Errors raised by the VM pool, the samplers and the simulation engine."""

from typing import List, Optional


class CloudElasticError(Exception):
    """Base class for all simulator errors."""


class VmNotFoundError(CloudElasticError):
    """The VM id is unknown to the resource pool."""

    def __init__(self, vm_id: int):
        self.vm_id = vm_id
        super().__init__(f"VM #{vm_id} is not in the pool")


class FloorViolationError(CloudElasticError):
    """Removing the VM would drop the pool below its minimum size."""

    def __init__(self, vm_id: int, pool_size: int, min_size: int):
        self.vm_id = vm_id
        self.pool_size = pool_size
        self.min_size = min_size
        super().__init__(
            f"Removing VM #{vm_id} would leave {pool_size - 1} VMs "
            f"(minimum is {min_size})"
        )


class SampleUnavailableError(CloudElasticError):
    """Transient failure reading a VM's utilization."""

    def __init__(self, vm_id: int, reason: str = "no reading"):
        self.vm_id = vm_id
        self.reason = reason
        super().__init__(f"Utilization of VM #{vm_id} unavailable: {reason}")


class EngineSubmitFailedError(CloudElasticError):
    """The engine rejected one or more new VMs."""

    def __init__(self, vm_ids: List[int], reason: Optional[str] = None):
        self.vm_ids = list(vm_ids)
        self.reason = reason or "rejected by engine"
        super().__init__(f"VMs {self.vm_ids} not accepted: {self.reason}")


class EngineRemovalFailedError(CloudElasticError):
    """The engine refused to tear a VM down."""

    def __init__(self, vm_id: int, reason: Optional[str] = None):
        self.vm_id = vm_id
        self.reason = reason or "removal refused by engine"
        super().__init__(f"VM #{vm_id} not removed: {self.reason}")
