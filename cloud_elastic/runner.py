"""Wires engine, pool, cloudlets and controller into one simulation run."""

from typing import List, Optional
from dataclasses import dataclass, field
import time
import simpy
from loguru import logger

from .core.errors import EngineSubmitFailedError
from .core.resources import ResourcePool
from .core.simulator import CloudSimulator, SimulationConfig, SimulationEngine
from .core.workload import Cloudlet, CompletionRecord, JobSubmitter
from .scheduling.autoscaling import (
    AutoscalingConfig,
    CycleReport,
    ScalingController,
    ScalingSummary,
)
from .scheduling.sampling import (
    EngineUtilizationSampler,
    RandomUtilizationSampler,
    UtilizationSampler,
)


@dataclass
class SimulationResult:
    """Everything a finished run reports."""
    cloudlets: List[Cloudlet]
    completions: List[CompletionRecord]
    summary: ScalingSummary
    cycles: List[CycleReport] = field(default_factory=list)
    final_vm_ids: List[int] = field(default_factory=list)
    end_time: float = 0.0

    def to_dict(self) -> dict:
        return {
            "summary": self.summary.to_dict(),
            "end_time": self.end_time,
            "final_vm_ids": self.final_vm_ids,
            "cycles": [c.to_dict() for c in self.cycles],
            "completions": [
                {
                    "cloudlet_id": r.cloudlet_id,
                    "vm_id": r.vm_id,
                    "status": r.status.value,
                    "start_time": r.start_time,
                    "finish_time": r.finish_time,
                }
                for r in self.completions
            ],
        }


def create_sampler(kind: str, engine: SimulationEngine, seed: Optional[int] = None) -> UtilizationSampler:
    """Create a utilization sampler by name."""
    samplers = {
        "random": lambda: RandomUtilizationSampler(seed=seed),
        "engine": lambda: EngineUtilizationSampler(engine),
    }

    if kind not in samplers:
        raise ValueError(f"Unknown sampler type: {kind}")

    return samplers[kind]()


def run_simulation(
    sim_config: SimulationConfig,
    autoscaling_config: AutoscalingConfig,
    sampler: Optional[UtilizationSampler] = None,
    max_cycles: Optional[int] = None,
) -> SimulationResult:
    """Run the batch to completion (or ``max_duration``) under autoscaling."""
    logger.info("Starting autoscaling simulation")
    start_time = time.time()

    env = simpy.Environment()
    engine = CloudSimulator(sim_config, env)

    pool = ResourcePool.with_initial(
        sim_config.vm_profile,
        sim_config.initial_vms,
        min_size=autoscaling_config.min_pool_size,
    )
    try:
        engine.submit_vms(list(pool.snapshot()))
    except EngineSubmitFailedError as e:
        raise ValueError(
            f"Initial pool of {sim_config.initial_vms} VMs does not fit on "
            f"{sim_config.num_hosts} host(s): {e.reason}"
        ) from e

    cloudlets = JobSubmitter(sim_config.cloudlet_spec, sim_config.num_cloudlets).submit(engine)

    if sampler is None:
        sampler = create_sampler(autoscaling_config.sampler, engine, sim_config.random_seed)

    controller = ScalingController(env, pool, sampler, engine, autoscaling_config)
    if autoscaling_config.enabled:
        controller.start(max_cycles)

    env.run(until=env.any_of([engine.all_done, env.timeout(sim_config.max_duration)]))

    # Let an in-flight cycle finish its Apply phase
    controller.stop()
    if controller.process is not None:
        env.run(until=controller.process)

    engine.shutdown()
    summary = controller.summary()

    elapsed_time = time.time() - start_time
    logger.info(f"Simulation completed in {elapsed_time:.2f}s "
               f"(simulated {env.now:.2f}s, final pool size {summary.final_pool_size})")

    return SimulationResult(
        cloudlets=cloudlets,
        completions=engine.cloudlet_completions(),
        summary=summary,
        cycles=list(controller.history),
        final_vm_ids=pool.vm_ids,
        end_time=env.now,
    )
