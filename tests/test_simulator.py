"""Tests for cloudlets, the SimPy cloud simulator and the samplers."""

import pytest

from cloud_elastic.core.errors import (
    EngineRemovalFailedError,
    EngineSubmitFailedError,
    SampleUnavailableError,
)
from cloud_elastic.core.events import EventType
from cloud_elastic.core.resources import HostSpecs, ResourcePool, VirtualMachine, VmProfile
from cloud_elastic.core.simulator import CloudSimulator, SimulationConfig
from cloud_elastic.core.workload import Cloudlet, CloudletSpec, CloudletStatus, JobSubmitter
from cloud_elastic.scheduling.sampling import (
    EngineUtilizationSampler,
    RandomUtilizationSampler,
    SequenceUtilizationSampler,
)


@pytest.fixture
def engine(env):
    return CloudSimulator(SimulationConfig(), env)


def make_vms(count, profile=None, start=0):
    profile = profile or VmProfile()
    return [VirtualMachine(start + i, profile) for i in range(count)]


class TestCloudlet:
    """Tests for Cloudlet state transitions."""

    def test_lifecycle(self):
        cloudlet = Cloudlet(0, length=10000)
        assert cloudlet.status == CloudletStatus.CREATED
        assert cloudlet.vm_id is None

        cloudlet.mark_queued(0.0)
        cloudlet.mark_running(vm_id=3, current_time=1.0)
        cloudlet.mark_success(11.0)

        record = cloudlet.to_record()
        assert record.status == CloudletStatus.SUCCESS
        assert record.vm_id == 3
        assert record.cpu_time == pytest.approx(10.0)

    def test_terminal_status_is_final(self):
        cloudlet = Cloudlet(0, length=10000)
        cloudlet.mark_queued(0.0)
        cloudlet.mark_failed(5.0)

        with pytest.raises(ValueError):
            cloudlet.mark_running(0, 6.0)
        with pytest.raises(ValueError):
            cloudlet.mark_success(6.0)


class TestJobSubmitter:
    """Tests for JobSubmitter."""

    def test_batch_matches_spec(self):
        submitter = JobSubmitter(CloudletSpec(length=5000, pes=2), count=4)

        cloudlets = submitter.create_cloudlets()

        assert [c.cloudlet_id for c in cloudlets] == [0, 1, 2, 3]
        assert all(c.length == 5000 and c.pes == 2 for c in cloudlets)

    def test_submit_hands_batch_to_engine(self, engine):
        engine.submit_vms(make_vms(1))

        cloudlets = JobSubmitter(count=3).submit(engine)

        assert engine.cloudlets == cloudlets
        assert all(c.status != CloudletStatus.CREATED for c in cloudlets)

    def test_negative_count(self):
        with pytest.raises(ValueError):
            JobSubmitter(count=-1)


class TestCloudSimulator:
    """Tests for the SimPy engine."""

    def test_vm_placement(self, engine):
        engine.submit_vms(make_vms(2))

        host = engine.hosts["host-0"]
        assert host.free_pes == 4
        assert all(vm.host_id == "host-0" for vm in engine.vms.values())
        assert len(engine.event_bus.events_of(EventType.VM_CREATED)) == 2

    def test_subscribers_see_engine_events(self, engine):
        seen = []

        def broken_handler(event):
            raise RuntimeError("handler bug")

        engine.event_bus.subscribe(EventType.VM_CREATED, broken_handler)
        engine.event_bus.subscribe(EventType.VM_CREATED, seen.append)
        engine.submit_vms(make_vms(2))

        assert [e.resource_id for e in seen] == [0, 1]
        assert all(e.data["host_id"] == "host-0" for e in seen)

    def test_placement_prefers_host_with_most_free_pes(self, env):
        engine = CloudSimulator(SimulationConfig(num_hosts=2), env)

        engine.submit_vms(make_vms(3))

        placements = [engine.vms[i].host_id for i in range(3)]
        assert placements == ["host-0", "host-1", "host-0"]

    def test_rejected_batch_keeps_nothing(self, env):
        engine = CloudSimulator(SimulationConfig(host_specs=HostSpecs(pes=4)), env)

        with pytest.raises(EngineSubmitFailedError) as exc_info:
            engine.submit_vms(make_vms(3))

        assert exc_info.value.vm_ids == [0, 1, 2]
        assert engine.vms == {}
        assert engine.hosts["host-0"].free_pes == 4

    def test_batch_runs_to_completion(self, env, engine):
        engine.submit_vms(make_vms(2))
        cloudlets = JobSubmitter(count=10).submit(engine)

        env.run(until=engine.all_done)

        assert all(c.status == CloudletStatus.SUCCESS for c in cloudlets)
        # 4 PEs, 10 cloudlets of 10s each
        assert env.now == pytest.approx(30.0)
        assert len(engine.cloudlet_completions()) == 10
        assert {r.vm_id for r in engine.cloudlet_completions()} == {0, 1}

    def test_new_vm_picks_up_queued_cloudlets(self, env, engine):
        engine.submit_vms(make_vms(1))
        cloudlets = JobSubmitter(count=4).submit(engine)
        assert [c.status for c in cloudlets].count(CloudletStatus.QUEUED) == 2

        engine.submit_vms(make_vms(1, start=1))

        assert all(c.status == CloudletStatus.RUNNING for c in cloudlets)
        assert {c.vm_id for c in cloudlets} == {0, 1}

    def test_utilization_is_busy_pe_fraction(self, engine):
        engine.submit_vms(make_vms(2))
        JobSubmitter(count=3).submit(engine)

        assert engine.vm_utilization(0) == pytest.approx(1.0)
        assert engine.vm_utilization(1) == pytest.approx(0.5)
        with pytest.raises(SampleUnavailableError):
            engine.vm_utilization(9)

    def test_removal_drains_running_cloudlets(self, env, engine):
        engine.submit_vms(make_vms(2))
        cloudlets = JobSubmitter(count=2).submit(engine)
        busy_vm = cloudlets[0].vm_id

        removal = engine.request_vm_removal(busy_vm)
        env.run(until=removal)

        assert env.now == pytest.approx(10.0)
        assert removal.value == busy_vm
        assert all(c.status == CloudletStatus.SUCCESS for c in cloudlets)
        assert engine.hosts["host-0"].free_pes == 6
        assert len(engine.event_bus.events_of(EventType.VM_DESTROYED)) == 1

    def test_draining_vm_gets_no_new_cloudlets(self, env, engine):
        engine.submit_vms(make_vms(2))
        engine.request_vm_removal(0)

        cloudlets = JobSubmitter(count=2).submit(engine)

        assert {c.vm_id for c in cloudlets} == {1}

    def test_idle_vm_is_removed_immediately(self, env, engine):
        engine.submit_vms(make_vms(2))

        removal = engine.request_vm_removal(1)

        assert removal.triggered
        assert engine.hosts["host-0"].free_pes == 6

    def test_removal_of_unknown_vm_fails(self, env, engine):
        removal = engine.request_vm_removal(5)

        def waiter():
            with pytest.raises(EngineRemovalFailedError):
                yield removal

        env.run(until=env.process(waiter()))

    def test_shutdown_fails_unfinished_cloudlets(self, env, engine):
        engine.submit_vms(make_vms(1))
        cloudlets = JobSubmitter(count=4).submit(engine)

        env.run(until=5.0)
        engine.shutdown()

        assert all(c.status == CloudletStatus.FAILED for c in cloudlets)
        assert engine.cloudlet_queue == []
        assert len(engine.cloudlet_completions()) == 4


class TestSamplers:
    """Tests for the utilization sources."""

    def test_random_sampler_is_seeded(self):
        first = RandomUtilizationSampler(seed=7)
        second = RandomUtilizationSampler(seed=7)

        values = [first.sample(0) for _ in range(20)]

        assert values == [second.sample(0) for _ in range(20)]
        assert all(0.0 <= v <= 1.0 for v in values)

    def test_sequence_sampler_by_cycle(self):
        sampler = SequenceUtilizationSampler([[0.1, 0.9], [0.5]])

        sampler.start_cycle([3, 7])
        assert sampler.sample(7) == 0.9
        assert sampler.sample(3) == 0.1

        sampler.start_cycle([3, 7])
        assert sampler.sample(3) == 0.5
        with pytest.raises(SampleUnavailableError):
            sampler.sample(7)

    def test_sequence_sampler_by_vm(self):
        sampler = SequenceUtilizationSampler({0: [0.2, None]}, delays={0: 2.0})

        sampler.start_cycle([0])
        assert sampler.sample(0) == 0.2
        assert sampler.sample_delay(0) == 2.0
        with pytest.raises(SampleUnavailableError):
            sampler.sample(0)
        with pytest.raises(SampleUnavailableError):
            sampler.sample(1)

    def test_engine_sampler(self, engine):
        engine.submit_vms(make_vms(1))
        JobSubmitter(count=1).submit(engine)
        sampler = EngineUtilizationSampler(engine)

        assert sampler.sample(0) == pytest.approx(0.5)
        with pytest.raises(SampleUnavailableError):
            sampler.sample(1)

    def test_sampling_does_not_touch_pool(self, engine, profile):
        pool = ResourcePool.with_initial(profile, 2)
        engine.submit_vms(list(pool.snapshot()))
        before = pool.snapshot()

        sampler = EngineUtilizationSampler(engine)
        for vm in before:
            sampler.sample(vm.vm_id)

        assert pool.snapshot() == before
