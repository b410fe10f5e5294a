"""
Round controller: drive the workload, verify, repeat.

Each round applies the scenario's workload for that round and then asks the
checker to confirm the expected state. Fault injection (shard transfers,
optimizer restarts) runs concurrently in background tasks; the transfer loop
starts once the first round has completed, so the freshly created collection
can settle first.

The loop is unbounded unless a round limit is given. It ends on:
- A confirmed inconsistency (``InconsistencyError``)
- Any fatal error, from the round loop or from a background task
- Cancellation from outside
"""

import asyncio
import itertools
import random
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Iterator, List, Optional, Sequence

from shardsweep.checker import ConsistencyChecker, Expectation
from shardsweep.config import HarnessConfig
from shardsweep.errors import FatalError, RemoteError
from shardsweep.gate import TransferGate
from shardsweep.logging import get_logger
from shardsweep.models import CrossNodeExpectation, ExistenceExpectation, ScalarExpectation
from shardsweep.nodes import Node
from shardsweep.transfers import OptimizerCanceller, TransferCoordinator
from shardsweep.workload import WorkloadDriver, sweep_ranges

logger = get_logger(__name__)


@dataclass(frozen=True)
class RoundState:
    """Position of the run: the round number and the window size it implies."""

    number: int
    window: int

    @property
    def sweep_start(self) -> int:
        return self.number * self.window

    @property
    def delete_range(self) -> range:
        return sweep_ranges(self.sweep_start, self.window)[0]

    @property
    def upsert_range(self) -> range:
        return sweep_ranges(self.sweep_start, self.window)[1]


def iter_rounds(window: int, start: int = 0, limit: Optional[int] = None) -> Iterator[RoundState]:
    """Yield round states from ``start``, forever or for ``limit`` rounds."""
    numbers = itertools.count(start)
    if limit is not None:
        numbers = itertools.islice(numbers, limit)
    for number in numbers:
        yield RoundState(number=number, window=window)


def collection_params(config: HarnessConfig) -> dict:
    return {
        "vectors": {"size": config.dim, "distance": "Cosine", "on_disk": True},
        "optimizers_config": {
            "default_segment_number": config.segment_count,
            "indexing_threshold": config.indexing_threshold,
        },
        "shard_number": config.shard_count,
        "replication_factor": config.effective_replication_factor,
        "write_consistency_factor": config.write_consistency_factor,
    }


async def setup_collection(node: Node, config: HarnessConfig) -> None:
    """Drop and recreate the test collection through ``node``."""
    logger.info("Set up collection")

    try:
        await node.handle.delete_collection(config.collection)
    except RemoteError as e:
        logger.warning(f"Failed to delete collection: {e}")

    try:
        await node.handle.create_collection(config.collection, collection_params(config))
    except RemoteError as e:
        raise FatalError(f"failed to create collection {config.collection}: {e}") from e


class Scenario(ABC):
    """A workload plus the invariant it should leave behind after each round."""

    name = "scenario"

    def __init__(self, workload: WorkloadDriver, config: HarnessConfig):
        self.workload = workload
        self.config = config

    async def setup(self) -> None:
        await setup_collection(self.workload.nodes[0], self.config)

    @abstractmethod
    async def run_round(self, state: RoundState) -> None:
        """Apply this round's mutations."""

    @abstractmethod
    def expected_for(self, state: RoundState) -> List[Expectation]:
        """The invariants every node must satisfy after ``state``'s round."""

    def should_check(self, state: RoundState) -> bool:
        return True


class SweepScenario(Scenario):
    """Slide a window of live points forward by one window per round."""

    name = "sweep"

    async def run_round(self, state: RoundState) -> None:
        await self.workload.sweep(state.sweep_start)

    def expected_for(self, state: RoundState) -> List[Expectation]:
        expectations: List[Expectation] = [
            ExistenceExpectation(start=state.sweep_start, count=state.window)
        ]
        if self.config.cross_check:
            expectations.append(CrossNodeExpectation(start=state.sweep_start, count=state.window))
        return expectations


class CounterScenario(Scenario):
    """Increment a counter on a fixed set of points once per round."""

    name = "counters"

    async def setup(self) -> None:
        await super().setup()
        await self.workload.seed_counters(range(self.config.point_count))

    async def run_round(self, state: RoundState) -> None:
        logger.info(f"Touch points: {state.number} -> {state.number + 1}")
        await self.workload.touch(range(self.config.point_count))

    def expected_for(self, state: RoundState) -> List[Expectation]:
        return [ScalarExpectation(key=self.config.counter_key, value=state.number + 1,
                                  start=0, count=self.config.point_count)]

    def should_check(self, state: RoundState) -> bool:
        return self.config.always_check or state.number % 10 == 0 or state.number < 5


@dataclass
class RunSummary:
    rounds_completed: int = 0
    transfers_completed: int = 0
    transfers_rejected: int = 0
    optimizer_cancels: int = 0


class RoundController:
    """Top-level loop tying workload, checker and fault injection together."""

    def __init__(self, scenario: Scenario, checker: ConsistencyChecker,
                 config: HarnessConfig,
                 coordinator: Optional[TransferCoordinator] = None,
                 canceller: Optional[OptimizerCanceller] = None):
        self.scenario = scenario
        self.checker = checker
        self.config = config
        self.coordinator = coordinator
        self.canceller = canceller
        self.summary = RunSummary()

    async def run_rounds(self, start_round: int = 0, max_rounds: Optional[int] = None,
                         booted: Optional[asyncio.Event] = None) -> int:
        """Run rounds in the foreground; returns the number of rounds completed."""
        for state in iter_rounds(self.config.point_count, start=start_round, limit=max_rounds):
            logger.info(f"Round {state.number}")
            await self.scenario.run_round(state)

            if self.scenario.should_check(state):
                await self.checker.verify(self.scenario.expected_for(state),
                                          self.config.check_retries)

            self.summary.rounds_completed += 1
            if booted is not None and not booted.is_set():
                booted.set()

        return self.summary.rounds_completed

    def _background(self, booted: asyncio.Event) -> List[asyncio.Task]:
        tasks = []
        if self.coordinator is not None:
            tasks.append(asyncio.create_task(self.coordinator.run(start_after=booted),
                                             name="transfers"))
        if self.canceller is not None:
            tasks.append(asyncio.create_task(self.canceller.run(), name="cancel-optimizers"))
        return tasks

    async def run(self, start_round: int = 0, max_rounds: Optional[int] = None,
                  setup: bool = True) -> RunSummary:
        """
        Set up the collection and run rounds with fault injection in the background.

        A failure in any background task aborts the round loop and is re-raised.
        """
        if setup:
            await self.scenario.setup()

        booted = asyncio.Event()
        main = asyncio.create_task(self.run_rounds(start_round, max_rounds, booted), name="rounds")
        background = self._background(booted)
        pending = {main, *background}

        try:
            while not main.done():
                done, pending = await asyncio.wait(pending, return_when=asyncio.FIRST_COMPLETED)
                for task in done:
                    if task.exception() is not None:
                        raise task.exception()
            return self.summary
        finally:
            for task in (main, *background):
                task.cancel()
            await asyncio.gather(main, *background, return_exceptions=True)
            self._collect_stats()

    def _collect_stats(self) -> None:
        if self.coordinator is not None:
            self.summary.transfers_completed = self.coordinator.completed
            self.summary.transfers_rejected = self.coordinator.rejected
        if self.canceller is not None:
            self.summary.optimizer_cancels = self.canceller.cancelled


def build_controller(scenario_name: str, nodes: Sequence[Node], config: HarnessConfig,
                     rng: Optional[random.Random] = None) -> RoundController:
    """Wire up workload, checker and fault injectors for a scenario."""
    rng = rng or random.Random(config.seed)
    gate = TransferGate()
    workload = WorkloadDriver(nodes, config, rng)
    scenarios = {SweepScenario.name: SweepScenario, CounterScenario.name: CounterScenario}
    try:
        scenario = scenarios[scenario_name](workload, config)
    except KeyError as e:
        raise ValueError(f"unknown scenario: {scenario_name}") from e

    checker = ConsistencyChecker(nodes, gate, config)
    coordinator = TransferCoordinator(nodes, gate, config, rng) if config.transfers else None
    canceller = OptimizerCanceller(nodes, config, rng) if config.cancel_optimizers else None
    return RoundController(scenario, checker, config, coordinator, canceller)
