"""Transactional read/write workload over integer keys and values.

Key types:
- ClientConfig: immutable per-test client options
- execute(): runs an operation's micro-ops inside one transaction
- TxnClient: one client context (open, setup, invoke, teardown, close)
- WorkloadConfig / Workload: randomized operation generator

Each key is stored as a record {key_i: k, val_j: v}, where key_i and val_j
are the key's shard predicates.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Callable, Generator, List, Optional, Tuple

import numpy as np

from chicory.classify import with_conflict_as_fail
from chicory.client import Client, Connector, DEFAULT_PORT, Sequencing, Txn, open_client, query
from chicory.errors import UnexpectedResultsError
from chicory.op import MicroOp, MicroOpKind, Operation
from chicory.predicates import pred_for
from chicory.schema import (
    KEY_PREFIX,
    VALUE_PREFIX,
    SchemaConfig,
    alter_schema,
    schema_text,
)
from chicory.txn import with_transaction
from chicory.upsert import insert, upsert

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ClientConfig:
    """Client options, shared read-only by every client context.

    blind_insert_on_write skips the upsert existence check and inserts on
    every write. Only appropriate when no key is ever written twice.
    """
    schema: SchemaConfig = field(default_factory=SchemaConfig)
    blind_insert_on_write: bool = False
    sequencing: Sequencing = Sequencing.SERVER


# ---------------------------------------------------------------------------
# Executor
# ---------------------------------------------------------------------------

def key_pred(config: ClientConfig, k: int) -> str:
    return pred_for(KEY_PREFIX, config.schema.key_predicate_count, k)


def value_pred(config: ClientConfig, k: int) -> str:
    return pred_for(VALUE_PREFIX, config.schema.value_predicate_count, k)


def read_key(txn: Txn, config: ClientConfig, k: int) -> Optional[int]:
    """Read the value of k, or None if k has never been written."""
    kp = key_pred(config, k)
    vp = value_pred(config, k)
    res = query(txn, f"{{ q(func: eq({kp}, $key)) {{\n  {vp}\n}}}}", {"key": k})
    reads = res.get("q") or []
    if len(reads) == 0:
        return None
    if len(reads) == 1:
        return reads[0].get(vp)
    raise UnexpectedResultsError(k, reads)


def write_key(txn: Txn, config: ClientConfig, k: int, v: int) -> None:
    kp = key_pred(config, k)
    vp = value_pred(config, k)
    record = {kp: k, vp: v}
    if config.blind_insert_on_write:
        insert(txn, record)
    else:
        upsert(txn, kp, record)


def execute_micro_op(txn: Txn, config: ClientConfig, mop: MicroOp) -> MicroOp:
    """Execute one micro-op; returns it with its resolved value."""
    if mop.kind == MicroOpKind.READ:
        return mop.with_value(read_key(txn, config, mop.key))
    write_key(txn, config, mop.key, mop.value)
    return mop


def execute(op: Operation, config: ClientConfig, txn: Txn) -> Operation:
    """Execute every micro-op of op, in order, in txn.

    Returns the OK completion. Any exception aborts the remaining
    micro-ops and propagates to the caller.
    """
    results = [execute_micro_op(txn, config, mop) for mop in op.value]
    return op.ok(tuple(results))


# ---------------------------------------------------------------------------
# Client
# ---------------------------------------------------------------------------

class TxnClient:
    """A client context executing transactional workloads.

    Each instance owns one connection, one random source and at most one
    open transaction. Instances are never shared between threads.

    Usage:
        client = TxnClient(config, connector, seed=7).open("n1")
        client.setup()
        completion = client.invoke(op)
        client.close()
    """

    def __init__(
        self,
        config: ClientConfig,
        connector: Connector,
        seed: Optional[int] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.config = config
        self._connector = connector
        self._rng = np.random.RandomState(seed)
        self._sleep = sleep
        self.conn: Optional[Client] = None

    def open(self, node: str, port: int = DEFAULT_PORT) -> TxnClient:
        self.conn = open_client(self._connector, node, port)
        return self

    def setup(self) -> None:
        """Declare every key and value predicate."""
        alter_schema(self._require_conn(), schema_text(self.config.schema))

    def invoke(self, op: Operation) -> Operation:
        """Execute op and return its OK, FAIL or INFO completion.

        Raises:
            Any error the classifier does not recognize.
        """
        conn = self._require_conn()
        return with_conflict_as_fail(
            op,
            lambda: with_transaction(
                self.config, conn, lambda t: execute(op, self.config, t)
            ),
            rng=self._rng,
            sleep=self._sleep,
        )

    def teardown(self) -> None:
        pass

    def close(self) -> None:
        if self.conn is not None:
            self.conn.close()
            self.conn = None

    def _require_conn(self) -> Client:
        if self.conn is None:
            raise RuntimeError("TxnClient is not open")
        return self.conn


# ---------------------------------------------------------------------------
# Workload generator
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class WorkloadConfig:
    """Shape of generated operations.

    write_once makes every write target a fresh key, which is what
    blind_insert_on_write requires. Reads then pick among keys already
    handed to a write.
    """
    key_count: int = 10
    min_txn_length: int = 1
    max_txn_length: int = 4
    read_fraction: float = 0.5
    write_once: bool = False

    def __post_init__(self):
        if self.key_count < 1:
            raise ValueError(f"key_count must be >= 1, got {self.key_count}")
        if not 1 <= self.min_txn_length <= self.max_txn_length:
            raise ValueError(
                f"need 1 <= min_txn_length <= max_txn_length, got "
                f"{self.min_txn_length}, {self.max_txn_length}"
            )
        if not 0.0 <= self.read_fraction <= 1.0:
            raise ValueError(f"read_fraction must be in [0, 1], got {self.read_fraction}")


class Workload:
    """Generator of random micro-op sequences.

    Written values are unique and increasing across the whole workload, so
    a checker can attribute every read to exactly one write.
    """

    def __init__(self, config: WorkloadConfig, seed: Optional[int] = None):
        self._config = config
        self._rng = np.random.RandomState(seed)
        self._next_value = 1
        self._next_fresh_key = 0

    @property
    def config(self) -> WorkloadConfig:
        return self._config

    def generate(self) -> Generator[Tuple[MicroOp, ...], None, None]:
        """Yield micro-op sequences indefinitely."""
        while True:
            yield self.next_txn()

    def next_txn(self) -> Tuple[MicroOp, ...]:
        n = int(self._rng.randint(self._config.min_txn_length,
                                  self._config.max_txn_length + 1))
        return tuple(self._next_micro_op() for _ in range(n))

    def operations(self, process: int, count: int) -> List[Operation]:
        """Generate count invocations for a process."""
        return [Operation(process=process, value=self.next_txn()) for _ in range(count)]

    def _next_micro_op(self) -> MicroOp:
        if float(self._rng.random_sample()) < self._config.read_fraction:
            return MicroOp.read(self._read_key())
        value = self._next_value
        self._next_value += 1
        return MicroOp.write(self._write_key(), value)

    def _read_key(self) -> int:
        if self._config.write_once:
            # Keys up to the next fresh one, including one never written
            return int(self._rng.randint(0, self._next_fresh_key + 1))
        return int(self._rng.randint(0, self._config.key_count))

    def _write_key(self) -> int:
        if self._config.write_once:
            k = self._next_fresh_key
            self._next_fresh_key += 1
            return k
        return int(self._rng.randint(0, self._config.key_count))
