"""Pytest configuration and shared fixtures."""

from typing import Iterable, List

import pytest
import simpy

from cloud_elastic.core.errors import EngineRemovalFailedError, EngineSubmitFailedError
from cloud_elastic.core.resources import ResourcePool, VirtualMachine, VmProfile
from cloud_elastic.core.simulator import SimulationEngine
from cloud_elastic.core.workload import Cloudlet, CompletionRecord
from cloud_elastic.scheduling.autoscaling import AutoscalingConfig, ScalingController
from cloud_elastic.scheduling.sampling import SequenceUtilizationSampler


class FakeEngine(SimulationEngine):
    """Records what the controller asks for; acknowledges removals on demand."""

    def __init__(
        self,
        env: simpy.Environment,
        reject_all: bool = False,
        removal_delay: float = 0.0,
        refuse_removal: Iterable[int] = (),
    ):
        self.env = env
        self.reject_all = reject_all
        self.removal_delay = removal_delay
        self.refuse_removal = set(refuse_removal)

        self.submitted: List[int] = []
        self.removal_requests: List[int] = []
        self.removed: List[int] = []
        self.cloudlets: List[Cloudlet] = []

    def submit_vms(self, vms: List[VirtualMachine]) -> None:
        vm_ids = [vm.vm_id for vm in vms]
        if self.reject_all:
            raise EngineSubmitFailedError(vm_ids, "capacity exhausted")
        self.submitted.extend(vm_ids)

    def request_vm_removal(self, vm_id: int) -> simpy.Event:
        self.removal_requests.append(vm_id)
        event = self.env.event()

        if vm_id in self.refuse_removal:
            event.fail(EngineRemovalFailedError(vm_id, "refused"))
        elif self.removal_delay > 0:
            self.env.process(self._ack_later(vm_id, event))
        else:
            self.removed.append(vm_id)
            event.succeed(vm_id)
        return event

    def _ack_later(self, vm_id: int, event: simpy.Event):
        yield self.env.timeout(self.removal_delay)
        self.removed.append(vm_id)
        event.succeed(vm_id)

    def submit_cloudlets(self, cloudlets: List[Cloudlet]) -> None:
        self.cloudlets.extend(cloudlets)

    def cloudlet_completions(self) -> List[CompletionRecord]:
        return []


def run_cycle(controller: ScalingController):
    """Run exactly one control cycle and return its report."""
    process = controller.env.process(controller.cycle())
    return controller.env.run(until=process)


@pytest.fixture
def env():
    return simpy.Environment()


@pytest.fixture
def profile():
    return VmProfile(mips=1000.0, pes=2)


@pytest.fixture
def make_pool(profile):
    def _make(count: int = 2, min_size: int = 1) -> ResourcePool:
        return ResourcePool.with_initial(profile, count, min_size=min_size)
    return _make


@pytest.fixture
def make_controller(env):
    """Build a controller over a pool, scripted readings and a fake engine."""
    def _make(pool, readings, engine=None, delays=None, **config):
        engine = engine or FakeEngine(env)
        config.setdefault("min_pool_size", pool.min_size)
        controller = ScalingController(
            env,
            pool,
            SequenceUtilizationSampler(readings, delays=delays),
            engine,
            AutoscalingConfig(**config),
        )
        return controller, engine
    return _make
