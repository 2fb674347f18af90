"""Cloud resource models: Hosts, VMs and the autoscaled VM pool."""

from typing import Dict, Iterator, List, Optional, Set, Tuple
from dataclasses import dataclass
from enum import Enum
from loguru import logger

from .errors import FloorViolationError, VmNotFoundError


class ResourceState(Enum):
    """Resource state enumeration."""
    AVAILABLE = "available"
    DRAINING = "draining"
    DESTROYED = "destroyed"


@dataclass(frozen=True)
class VmProfile:
    """Capacity profile of a VM, also used as the template for clones."""
    mips: float = 1000.0
    pes: int = 2
    ram_mb: int = 512
    bw_mbps: int = 1000
    size_mb: int = 10000  # image size
    vmm: str = "Xen"
    cloudlet_scheduler: str = "space_shared"

    def __post_init__(self) -> None:
        if self.mips <= 0:
            raise ValueError("mips must be positive")
        if self.pes < 1:
            raise ValueError("pes must be >= 1")


@dataclass
class HostSpecs:
    """Physical host capacity."""
    pes: int = 8
    mips: float = 1000.0
    ram_mb: int = 16384  # 16 GB
    bw_mbps: int = 10000  # 10 Gbps
    storage_mb: int = 1000000  # 1 TB


@dataclass
class VirtualMachine:
    """A VM managed by the resource pool."""
    vm_id: int
    profile: VmProfile
    host_id: Optional[str] = None

    @property
    def mips(self) -> float:
        return self.profile.mips

    @property
    def pes(self) -> int:
        return self.profile.pes


class Host:
    """Physical host in the datacenter."""

    def __init__(self, host_id: str, specs: HostSpecs):
        self.host_id = host_id
        self.specs = specs
        self.state = ResourceState.AVAILABLE

        # Resource tracking
        self.used_pes = 0
        self.used_ram_mb = 0
        self.used_bw_mbps = 0
        self.used_storage_mb = 0

        # VMs placed on this host
        self.vms: Dict[int, VirtualMachine] = {}

        logger.info(f"Host {host_id} created with {specs.pes} PEs x {specs.mips} MIPS, "
                   f"{specs.ram_mb}MB RAM")

    @property
    def free_pes(self) -> int:
        return self.specs.pes - self.used_pes

    def can_accommodate(self, profile: VmProfile) -> bool:
        """Check if host can accommodate a VM with the given profile."""
        return (
            self.state == ResourceState.AVAILABLE and
            profile.mips <= self.specs.mips and
            self.free_pes >= profile.pes and
            self.specs.ram_mb - self.used_ram_mb >= profile.ram_mb and
            self.specs.bw_mbps - self.used_bw_mbps >= profile.bw_mbps and
            self.specs.storage_mb - self.used_storage_mb >= profile.size_mb
        )

    def allocate(self, vm: VirtualMachine) -> bool:
        """Allocate resources for a VM on this host."""
        if not self.can_accommodate(vm.profile):
            return False

        self.used_pes += vm.pes
        self.used_ram_mb += vm.profile.ram_mb
        self.used_bw_mbps += vm.profile.bw_mbps
        self.used_storage_mb += vm.profile.size_mb
        self.vms[vm.vm_id] = vm
        vm.host_id = self.host_id

        logger.debug(f"Allocated VM #{vm.vm_id} ({vm.pes} PEs, {vm.profile.ram_mb}MB) "
                    f"on host {self.host_id}")
        return True

    def deallocate(self, vm: VirtualMachine) -> None:
        """Release the resources held by a VM."""
        if vm.vm_id not in self.vms:
            return

        del self.vms[vm.vm_id]
        self.used_pes = max(0, self.used_pes - vm.pes)
        self.used_ram_mb = max(0, self.used_ram_mb - vm.profile.ram_mb)
        self.used_bw_mbps = max(0, self.used_bw_mbps - vm.profile.bw_mbps)
        self.used_storage_mb = max(0, self.used_storage_mb - vm.profile.size_mb)

        logger.debug(f"Deallocated VM #{vm.vm_id} from host {self.host_id}")


class ResourcePool:
    """The authoritative, ordered set of live VMs.

    VM ids come from a counter owned by the pool; they increase strictly and
    are never reused, even after the VM is removed. The pool never shrinks
    below ``min_size`` once initialized.

    A VM can be reserved for removal while the engine drains it. Reserved
    VMs stay in the pool (and in snapshots) but already count as gone for
    the floor check.
    """

    def __init__(self, min_size: int = 1):
        if not isinstance(min_size, int) or min_size < 1:
            raise ValueError("min_size must be an integer >= 1")

        self.min_size = min_size
        self._vms: Dict[int, VirtualMachine] = {}
        self._draining: Set[int] = set()
        self._next_id = 0

    @classmethod
    def with_initial(cls, template: VmProfile, count: int, min_size: int = 1) -> "ResourcePool":
        """Create a pool holding ``count`` clones of ``template``."""
        if count < min_size:
            raise ValueError(f"Initial pool size {count} is below the minimum {min_size}")

        pool = cls(min_size=min_size)
        for _ in range(count):
            pool.add(template)
        return pool

    @property
    def next_id(self) -> int:
        return self._next_id

    @property
    def vm_ids(self) -> List[int]:
        return list(self._vms)

    def __len__(self) -> int:
        return len(self._vms)

    def __contains__(self, vm_id: object) -> bool:
        return vm_id in self._vms

    def __iter__(self) -> Iterator[VirtualMachine]:
        return iter(self.snapshot())

    def get(self, vm_id: int) -> VirtualMachine:
        try:
            return self._vms[vm_id]
        except KeyError:
            raise VmNotFoundError(vm_id) from None

    def add(self, template: VmProfile) -> VirtualMachine:
        """Clone ``template`` into a new VM with the next id."""
        vm = VirtualMachine(vm_id=self._next_id, profile=template)
        self._next_id += 1
        self._vms[vm.vm_id] = vm

        logger.debug(f"VM #{vm.vm_id} added to pool (size {len(self._vms)})")
        return vm

    def remove(self, vm_id: int) -> VirtualMachine:
        """Drop a VM from the pool.

        Raises:
            VmNotFoundError: the id is not in the pool
            FloorViolationError: the pool would fall below ``min_size``
        """
        self._check_removable(vm_id)

        vm = self._vms.pop(vm_id)
        self._draining.discard(vm_id)

        logger.debug(f"VM #{vm_id} removed from pool (size {len(self._vms)})")
        return vm

    def reserve_removal(self, vm_id: int) -> VirtualMachine:
        """Mark a VM as draining; same checks as ``remove``."""
        self._check_removable(vm_id)
        self._draining.add(vm_id)
        return self._vms[vm_id]

    def release_removal(self, vm_id: int) -> None:
        """Cancel a pending removal."""
        self._draining.discard(vm_id)

    def is_draining(self, vm_id: int) -> bool:
        return vm_id in self._draining

    def snapshot(self) -> Tuple[VirtualMachine, ...]:
        """Read-only view of the live VMs in creation order."""
        return tuple(self._vms.values())

    def _check_removable(self, vm_id: int) -> None:
        if vm_id not in self._vms:
            raise VmNotFoundError(vm_id)

        remaining = len(self._vms) - len(self._draining | {vm_id})
        if remaining < self.min_size:
            raise FloorViolationError(vm_id, len(self._vms) - len(self._draining), self.min_size)
