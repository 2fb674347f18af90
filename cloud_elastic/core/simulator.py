"""Simulation engine interface and the SimPy-backed cloud simulator."""

from abc import ABC, abstractmethod
from typing import Dict, List, Optional
from dataclasses import dataclass, field
import simpy
from loguru import logger

from .errors import EngineRemovalFailedError, EngineSubmitFailedError, SampleUnavailableError
from .events import EventBus, EventType, SimulationEvent
from .resources import Host, HostSpecs, ResourceState, VirtualMachine, VmProfile
from .workload import Cloudlet, CloudletSpec, CompletionRecord


@dataclass
class SimulationConfig:
    """Configuration for simulation runs."""
    max_duration: float = 3600.0  # 1 hour
    random_seed: int = 42

    # Datacenter
    num_hosts: int = 1
    host_specs: HostSpecs = field(default_factory=HostSpecs)

    # Initial VM pool
    vm_profile: VmProfile = field(default_factory=VmProfile)
    initial_vms: int = 2

    # Cloudlet batch
    num_cloudlets: int = 10
    cloudlet_spec: CloudletSpec = field(default_factory=CloudletSpec)

    def __post_init__(self):
        if self.max_duration <= 0:
            raise ValueError("max_duration must be positive")
        if self.num_hosts < 1:
            raise ValueError("num_hosts must be >= 1")
        if self.initial_vms < 1:
            raise ValueError("initial_vms must be >= 1")
        if self.num_cloudlets < 0:
            raise ValueError("num_cloudlets must be non-negative")


class SimulationEngine(ABC):
    """What the autoscaling core needs from a simulation engine."""

    env: simpy.Environment

    @abstractmethod
    def submit_vms(self, vms: List[VirtualMachine]) -> None:
        """Place new VMs onto hosts.

        Raises:
            EngineSubmitFailedError: if any VM cannot be hosted; none of the
                VMs in the batch are kept in that case
        """

    @abstractmethod
    def request_vm_removal(self, vm_id: int) -> simpy.Event:
        """Drain and stop a VM.

        The returned event succeeds once the VM is torn down, or fails with
        ``EngineRemovalFailedError``.
        """

    @abstractmethod
    def submit_cloudlets(self, cloudlets: List[Cloudlet]) -> None:
        """Accept a batch of cloudlets for execution."""

    @abstractmethod
    def cloudlet_completions(self) -> List[CompletionRecord]:
        """Completion records issued so far."""

    def vm_utilization(self, vm_id: int) -> float:
        """Busy fraction of a VM, for metric-backed sampling."""
        raise SampleUnavailableError(vm_id, "engine exposes no utilization metric")


class CloudSimulator(SimulationEngine):
    """Datacenter simulator using SimPy.

    VMs are placed on the host with the most free PEs that fits them.
    Cloudlets wait in a broker queue and are bound, in submission order, to
    the first active VM with enough free PEs; each holds its PEs for
    ``length / mips`` seconds (space-shared).
    """

    def __init__(self, config: SimulationConfig, env: Optional[simpy.Environment] = None):
        self.config = config
        self.env = env or simpy.Environment()
        self.event_bus = EventBus()

        # Infrastructure
        self.hosts: Dict[str, Host] = {
            f"host-{i}": Host(f"host-{i}", config.host_specs)
            for i in range(config.num_hosts)
        }
        self.vms: Dict[int, VirtualMachine] = {}
        self.vm_states: Dict[int, ResourceState] = {}
        self.busy_pes: Dict[int, int] = {}
        self._removals: Dict[int, simpy.Event] = {}

        # Cloudlet management
        self.cloudlets: List[Cloudlet] = []
        self.cloudlet_queue: List[Cloudlet] = []
        self.completions: List[CompletionRecord] = []
        self.all_done = self.env.event()

        logger.info(f"CloudSimulator initialized with {len(self.hosts)} hosts")

    @property
    def active_vms(self) -> List[VirtualMachine]:
        return [vm for vm in self.vms.values()
                if self.vm_states[vm.vm_id] == ResourceState.AVAILABLE]

    def submit_vms(self, vms: List[VirtualMachine]) -> None:
        placed: List[VirtualMachine] = []
        for vm in vms:
            host = self._select_host(vm.profile)
            if host is None:
                for done in placed:
                    self.hosts[done.host_id].deallocate(done)
                    done.host_id = None

                self._publish(EventType.VM_REJECTED, vm.vm_id)
                raise EngineSubmitFailedError(
                    [v.vm_id for v in vms],
                    f"no host can accommodate VM #{vm.vm_id}",
                )
            host.allocate(vm)
            placed.append(vm)

        for vm in placed:
            self.vms[vm.vm_id] = vm
            self.vm_states[vm.vm_id] = ResourceState.AVAILABLE
            self.busy_pes[vm.vm_id] = 0
            self._publish(EventType.VM_CREATED, vm.vm_id, host_id=vm.host_id)
            logger.info(f"VM #{vm.vm_id} created on {vm.host_id} at {self.env.now:.2f}s")

        self._dispatch()

    def request_vm_removal(self, vm_id: int) -> simpy.Event:
        if vm_id in self._removals:
            return self._removals[vm_id]

        event = self.env.event()
        if self.vm_states.get(vm_id) != ResourceState.AVAILABLE:
            event.fail(EngineRemovalFailedError(vm_id, "VM is not running on this engine"))
            return event

        self.vm_states[vm_id] = ResourceState.DRAINING
        self._removals[vm_id] = event
        self._publish(EventType.VM_DRAINING, vm_id, running_pes=self.busy_pes[vm_id])
        logger.info(f"VM #{vm_id} draining at {self.env.now:.2f}s")

        self._destroy_if_drained(vm_id)
        return event

    def submit_cloudlets(self, cloudlets: List[Cloudlet]) -> None:
        for cloudlet in cloudlets:
            cloudlet.mark_queued(self.env.now)
            self._publish(EventType.CLOUDLET_SUBMITTED, cloudlet.cloudlet_id)

        self.cloudlets.extend(cloudlets)
        self.cloudlet_queue.extend(cloudlets)
        self._dispatch()
        self._check_all_done()

    def cloudlet_completions(self) -> List[CompletionRecord]:
        return list(self.completions)

    def vm_utilization(self, vm_id: int) -> float:
        if self.vm_states.get(vm_id) not in (ResourceState.AVAILABLE, ResourceState.DRAINING):
            raise SampleUnavailableError(vm_id, "VM is not running on this engine")
        return self.busy_pes[vm_id] / self.vms[vm_id].pes

    def shutdown(self) -> None:
        """Fail every cloudlet that has not finished."""
        for cloudlet in self.cloudlets:
            if cloudlet.status.is_terminal:
                continue
            if cloudlet in self.cloudlet_queue:
                self.cloudlet_queue.remove(cloudlet)
            cloudlet.mark_failed(self.env.now)
            self.completions.append(cloudlet.to_record())
            self._publish(EventType.CLOUDLET_FAILED, cloudlet.cloudlet_id, reason="shutdown")

        logger.info(f"Engine shut down at {self.env.now:.2f}s: "
                   f"{len(self.completions)} completion records")

    def _select_host(self, profile: VmProfile) -> Optional[Host]:
        candidates = [h for h in self.hosts.values() if h.can_accommodate(profile)]
        if not candidates:
            return None
        return max(candidates, key=lambda h: h.free_pes)

    def _find_vm(self, pes: int) -> Optional[VirtualMachine]:
        for vm in self.active_vms:
            if vm.pes - self.busy_pes[vm.vm_id] >= pes:
                return vm
        return None

    def _dispatch(self) -> None:
        waiting = []
        for cloudlet in self.cloudlet_queue:
            vm = self._find_vm(cloudlet.pes)
            if vm is None:
                waiting.append(cloudlet)
                continue

            self.busy_pes[vm.vm_id] += cloudlet.pes
            cloudlet.mark_running(vm.vm_id, self.env.now)
            self._publish(EventType.CLOUDLET_STARTED, cloudlet.cloudlet_id, vm_id=vm.vm_id)
            self.env.process(self._execute(cloudlet, vm))

        self.cloudlet_queue = waiting

    def _execute(self, cloudlet: Cloudlet, vm: VirtualMachine):
        yield self.env.timeout(cloudlet.length / vm.mips)

        self.busy_pes[vm.vm_id] -= cloudlet.pes
        if cloudlet.status.is_terminal:
            return

        cloudlet.mark_success(self.env.now)
        self.completions.append(cloudlet.to_record())
        self._publish(EventType.CLOUDLET_COMPLETED, cloudlet.cloudlet_id, vm_id=vm.vm_id)

        self._destroy_if_drained(vm.vm_id)
        self._dispatch()
        self._check_all_done()

    def _destroy_if_drained(self, vm_id: int) -> None:
        if self.vm_states[vm_id] != ResourceState.DRAINING or self.busy_pes[vm_id] > 0:
            return

        vm = self.vms[vm_id]
        self.hosts[vm.host_id].deallocate(vm)
        self.vm_states[vm_id] = ResourceState.DESTROYED
        self._publish(EventType.VM_DESTROYED, vm_id)
        logger.info(f"VM #{vm_id} destroyed at {self.env.now:.2f}s")

        self._removals.pop(vm_id).succeed(vm_id)

    def _check_all_done(self) -> None:
        if self.all_done.triggered:
            return
        if all(c.status.is_terminal for c in self.cloudlets):
            self.all_done.succeed(self.env.now)

    def _publish(self, event_type: EventType, resource_id, **data) -> None:
        self.event_bus.publish(SimulationEvent(
            timestamp=self.env.now,
            event_type=event_type,
            resource_id=resource_id,
            data=data,
        ))
