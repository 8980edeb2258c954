"""Concurrent execution of client contexts.

Each worker thread is one client context: it owns a TxnClient (and so one
connection and one random source) and executes its operations one at a
time. Operations are generated up front by the coordinating thread, so
workers share nothing mutable; each returns its own event list and the
coordinator merges them into one History.

An exception the classifier does not recognize means the state of that
operation is unknown. The worker records an INFO completion carrying the
exception text, logs the traceback, and continues as a new process on a
fresh connection.
"""

from __future__ import annotations

import logging
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from typing import Callable, List, Optional, Tuple

from chicory.client import DEFAULT_PORT, Connector
from chicory.history import History
from chicory.op import MicroOp, Operation
from chicory.schema import await_ready
from chicory.workload import ClientConfig, TxnClient, Workload

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RunnerConfig:
    nodes: Tuple[str, ...] = ("n1",)
    port: int = DEFAULT_PORT
    concurrency: int = 5
    op_count: int = 100                 # Total operations across all workers
    seed: Optional[int] = None
    await_ready: bool = True

    def __post_init__(self):
        if not self.nodes:
            raise ValueError("at least one node is required")
        if self.concurrency < 1:
            raise ValueError(f"concurrency must be >= 1, got {self.concurrency}")
        if self.op_count < 0:
            raise ValueError(f"op_count must be >= 0, got {self.op_count}")


class Runner:
    """Runs a workload against a cluster with concurrent client contexts.

    Usage:
        runner = Runner(client_config, workload, cluster.connect, runner_config)
        runner.setup()
        history = runner.run()
    """

    def __init__(
        self,
        client_config: ClientConfig,
        workload: Workload,
        connector: Connector,
        config: RunnerConfig,
        sleep: Callable[[float], None] = time.sleep,
        progress: Optional[Callable[[int], None]] = None,
    ):
        self.client_config = client_config
        self.workload = workload
        self.connector = connector
        self.config = config
        self._sleep = sleep
        self._progress = progress
        self._start_ns = 0

    def setup(self) -> None:
        """Wait for the first node and apply the schema once."""
        client = self._new_client(0)
        try:
            if self.config.await_ready:
                await_ready(client.conn, sleep=self._sleep)
            client.setup()
        finally:
            client.close()
        logger.info(f"Schema applied via {self.config.nodes[0]}")

    def plan(self) -> List[List[Tuple[MicroOp, ...]]]:
        """Deal op_count generated transactions round-robin to the workers."""
        plans: List[List[Tuple[MicroOp, ...]]] = [[] for _ in range(self.config.concurrency)]
        for i in range(self.config.op_count):
            plans[i % self.config.concurrency].append(self.workload.next_txn())
        return plans

    def run(self) -> History:
        plans = self.plan()
        history = History()
        self._start_ns = time.monotonic_ns()
        logger.info(
            f"Running {self.config.op_count} operations on "
            f"{self.config.concurrency} workers against {len(self.config.nodes)} node(s)"
        )
        with ThreadPoolExecutor(max_workers=self.config.concurrency,
                                thread_name_prefix="chicory-worker") as pool:
            futures = [
                pool.submit(self._run_worker, worker, plan)
                for worker, plan in enumerate(plans)
            ]
            for future in as_completed(futures):
                history.extend(future.result())
        logger.info(
            f"Completed: {history.ok} ok, {history.failed} fail, "
            f"{history.indeterminate} info"
        )
        return history

    # ------------------------------------------------------------------

    def _now(self) -> int:
        return time.monotonic_ns() - self._start_ns

    def _worker_seed(self, worker: int, incarnation: int) -> Optional[int]:
        if self.config.seed is None:
            return None
        return (self.config.seed + 1000 * (incarnation + 1) + worker) % 2**32

    def _new_client(self, worker: int, incarnation: int = 0) -> TxnClient:
        node = self.config.nodes[worker % len(self.config.nodes)]
        client = TxnClient(
            self.client_config,
            self.connector,
            seed=self._worker_seed(worker, incarnation),
            sleep=self._sleep,
        )
        return client.open(node, self.config.port)

    def _run_worker(
        self,
        worker: int,
        plan: List[Tuple[MicroOp, ...]],
    ) -> List[Tuple[int, Operation]]:
        events: List[Tuple[int, Operation]] = []
        process = worker
        incarnation = 0
        client = self._new_client(worker)
        try:
            for value in plan:
                op = Operation(process=process, value=value)
                events.append((self._now(), op))
                try:
                    completion = client.invoke(op)
                except Exception as e:
                    logger.exception(f"Process {process} crashed executing {op}")
                    events.append((self._now(), op.info(None, exception=f"{type(e).__name__}: {e}")))
                    process += self.config.concurrency
                    incarnation += 1
                    client.close()
                    client = self._new_client(worker, incarnation)
                else:
                    events.append((self._now(), completion))
                if self._progress is not None:
                    self._progress(1)
        finally:
            client.teardown()
            client.close()
        return events
