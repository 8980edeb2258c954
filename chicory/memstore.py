"""In-memory document store implementing the client RPC surface.

Lets the harness run without a cluster. It understands exactly the
queries the harness issues (``eq`` lookups on an indexed predicate, and
``schema {}``) and implements:

- snapshot isolation: a transaction reads the state as of its start
  timestamp plus its own pending writes
- commit-time conflict detection on (uid, predicate) keys, and on index
  keys of predicates declared ``@upsert``; without ``@upsert`` two
  concurrent inserts of the same key both commit
- fault injection: random RPC failure signals before a call takes effect,
  and commits that time out after being applied

Key types:
- FieldDecl: one parsed schema declaration
- FaultConfig: fault injection probabilities (frozen)
- InMemoryCluster: shared store state; its connect() is a Connector
- InMemoryConnection / InMemoryTxn: Connection and Txn implementations
"""

from __future__ import annotations

import logging
import re
import threading
from dataclasses import dataclass
from typing import Dict, Hashable, List, Mapping, Optional, Set, Tuple

import numpy as np

from chicory.client import Connection, Txn
from chicory.errors import RpcError, TxnConflictError, TxnFinishedError
from chicory.values import ValueType, decode_value

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class FieldDecl:
    name: str
    type: ValueType
    indexed: bool = False
    upsert: bool = False


_SCHEMA_LINE = re.compile(r"^(\w+)\s*:\s*(\w+)((?:\s+@\w+(?:\([^)]*\))?)*)\s*\.$")


def parse_schema(text: str) -> Dict[str, FieldDecl]:
    """Parse ``name: type [@index(...)] [@upsert] .`` lines."""
    decls = {}
    for line in text.splitlines():
        line = line.strip()
        if not line:
            continue
        m = _SCHEMA_LINE.match(line)
        if m is None:
            raise RpcError(f"INVALID_ARGUMENT: while lexing schema: {line!r}", code="INVALID_ARGUMENT")
        name, type_name, directives = m.groups()
        try:
            vtype = ValueType(type_name)
        except ValueError:
            raise RpcError(
                f"INVALID_ARGUMENT: Undefined type {type_name} for {name}",
                code="INVALID_ARGUMENT",
            ) from None
        decls[name] = FieldDecl(
            name=name,
            type=vtype,
            indexed="@index" in directives,
            upsert="@upsert" in directives,
        )
    return decls


# ---------------------------------------------------------------------------
# Faults
# ---------------------------------------------------------------------------

DEFAULT_FAULT_MESSAGES: Tuple[str, ...] = (
    "UNAVAILABLE: rpc error: code = Unavailable desc = all SubConns are in TransientFailure",
    "UNAVAILABLE: rpc error: code = Unavailable desc = transport is closing",
    "UNAVAILABLE: io exception",
    "UNKNOWN: rpc error: code = Unknown desc = Predicate is being moved, please retry later",
    "UNKNOWN: rpc error: code = Unknown desc = Please retry again, server is not ready to accept requests",
    "DEADLINE_EXCEEDED: deadline exceeded after 4999958250ns",
)


@dataclass(frozen=True)
class FaultConfig:
    """Fault injection for the in-memory store.

    rpc_error_probability applies independently to each query, mutate and
    commit call, before the call has any effect. commit_timeout_probability
    applies to successful commits: the commit is applied, then the call
    fails with DEADLINE_EXCEEDED anyway.
    """
    rpc_error_probability: float = 0.0
    commit_timeout_probability: float = 0.0
    messages: Tuple[str, ...] = DEFAULT_FAULT_MESSAGES

    def __post_init__(self):
        for name in ("rpc_error_probability", "commit_timeout_probability"):
            p = getattr(self, name)
            if not 0.0 <= p <= 1.0:
                raise ValueError(f"{name} must be in [0, 1], got {p}")
        if self.rpc_error_probability > 0 and not self.messages:
            raise ValueError("rpc_error_probability > 0 requires fault messages")


# ---------------------------------------------------------------------------
# Cluster
# ---------------------------------------------------------------------------

class InMemoryCluster:
    """Shared, thread-safe store state.

    Every committed version of a record is kept as (commit_ts, record),
    with record None once deleted.
    """

    def __init__(
        self,
        faults: Optional[FaultConfig] = None,
        rng: Optional[np.random.RandomState] = None,
    ):
        self.faults = faults if faults is not None else FaultConfig()
        self._rng = rng if rng is not None else np.random.RandomState()
        self._lock = threading.Lock()
        self._ts = 0
        self._next_uid = 1
        self._schema: Dict[str, FieldDecl] = {}
        self._versions: Dict[str, List[Tuple[int, Optional[dict]]]] = {}
        self._last_commit: Dict[Hashable, int] = {}

        self.commits = 0
        self.conflicts = 0

    # Connector
    def connect(self, node: str, port: int, deadline_s: float) -> InMemoryConnection:
        return InMemoryConnection(self, node, port, deadline_s)

    def alter(self, text: str) -> None:
        decls = parse_schema(text)
        with self._lock:
            self._schema.update(decls)
        logger.debug(f"Schema altered: {sorted(decls)}")

    def field(self, pred: str) -> Optional[FieldDecl]:
        with self._lock:
            return self._schema.get(pred)

    def schema_decls(self) -> List[FieldDecl]:
        with self._lock:
            return [self._schema[name] for name in sorted(self._schema)]

    def begin(self) -> int:
        with self._lock:
            return self._ts

    def allocate_uid(self) -> str:
        with self._lock:
            uid = f"0x{self._next_uid:x}"
            self._next_uid += 1
            return uid

    def snapshot(self, ts: int) -> Dict[str, dict]:
        """Every record visible at timestamp ts, by uid."""
        with self._lock:
            return self._snapshot(ts)

    def records(self) -> Dict[str, dict]:
        """Every currently committed record, by uid."""
        with self._lock:
            return self._snapshot(self._ts)

    def _snapshot(self, ts: int) -> Dict[str, dict]:
        visible = {}
        for uid, versions in self._versions.items():
            record = None
            for commit_ts, rec in versions:
                if commit_ts > ts:
                    break
                record = rec
            if record is not None:
                visible[uid] = record
        return visible

    def commit(
        self,
        start_ts: int,
        writes: Mapping[str, Optional[dict]],
        conflict_keys: Set[Hashable],
    ) -> int:
        """Atomically apply writes unless a conflict key changed since start_ts.

        Raises:
            TxnConflictError: a concurrent transaction committed an
                overlapping write after start_ts
        """
        with self._lock:
            for key in conflict_keys:
                if self._last_commit.get(key, -1) > start_ts:
                    self.conflicts += 1
                    raise TxnConflictError("Transaction has been aborted. Please retry.")
            if not writes:
                return self._ts
            self._ts += 1
            for uid, record in writes.items():
                self._versions.setdefault(uid, []).append(
                    (self._ts, dict(record) if record is not None else None)
                )
            for key in conflict_keys:
                self._last_commit[key] = self._ts
            self.commits += 1
            return self._ts

    def maybe_fail(self, call: str) -> None:
        """Raise a random RPC failure signal, with the configured probability."""
        p = self.faults.rpc_error_probability
        if p <= 0:
            return
        with self._lock:
            if float(self._rng.random_sample()) >= p:
                return
            message = self.faults.messages[int(self._rng.randint(len(self.faults.messages)))]
        logger.debug(f"Injecting fault into {call}: {message}")
        raise RpcError(message, code=message.split(":", 1)[0])

    def should_time_out_commit(self) -> bool:
        p = self.faults.commit_timeout_probability
        if p <= 0:
            return False
        with self._lock:
            return float(self._rng.random_sample()) < p


# ---------------------------------------------------------------------------
# Connection and transaction
# ---------------------------------------------------------------------------

class InMemoryConnection(Connection):

    def __init__(self, cluster: InMemoryCluster, node: str, port: int, deadline_s: float):
        self.cluster = cluster
        self.node = node
        self.port = port
        self.deadline_s = deadline_s
        self.closed = False

    def new_txn(self) -> InMemoryTxn:
        self._check_open()
        return InMemoryTxn(self.cluster)

    def alter(self, schema_text: str) -> None:
        self._check_open()
        self.cluster.alter(schema_text)

    def close(self) -> None:
        self.closed = True

    def _check_open(self) -> None:
        if self.closed:
            raise RpcError("UNAVAILABLE: Channel shutdown invoked", code="UNAVAILABLE")


_EQ_BLOCK = re.compile(r"(\w+)\(func:\s*eq\((\w+),\s*\$(\w+)\)\)\s*\{([^}]*)\}")


class InMemoryTxn(Txn):
    """Transaction against an InMemoryCluster.

    Terminated by exactly one commit() or discard(); any further use raises
    TxnFinishedError.
    """

    def __init__(self, cluster: InMemoryCluster):
        self._cluster = cluster
        self._start_ts = cluster.begin()
        self._writes: Dict[str, Optional[dict]] = {}
        self._conflict_keys: Set[Hashable] = set()
        self.finished = False
        self.committed = False
        self.discarded = False

    def query(self, text: str, variables: Optional[Mapping[str, str]] = None) -> dict:
        self._check_open()
        if text.strip() == "schema {}":
            return {"schema": [
                {"predicate": d.name, "type": d.type.value, "index": d.indexed, "upsert": d.upsert}
                for d in self._cluster.schema_decls()
            ]}
        self._cluster.maybe_fail("query")

        m = _EQ_BLOCK.search(text)
        if m is None:
            raise RpcError(f"UNKNOWN: while parsing query: {text!r}", code="UNKNOWN")
        block, pred, var, fields = m.groups()
        decl = self._cluster.field(pred)
        if decl is None or not decl.indexed:
            raise RpcError(
                f"UNKNOWN: rpc error: code = Unknown desc = Attribute {pred} is not indexed.",
                code="UNKNOWN",
            )
        raw = (variables or {}).get(f"${var}")
        if raw is None:
            raise RpcError(f"UNKNOWN: Variable ${var} not defined", code="UNKNOWN")
        try:
            target = decode_value(raw, decl.type)
        except ValueError:
            raise RpcError(
                f"UNKNOWN: rpc error: code = Unknown desc = Type mismatch for ${var}: "
                f"{raw!r} is not a valid {decl.type.value} for {pred}",
                code="UNKNOWN",
            ) from None

        selected = fields.split()
        matches = []
        for uid, record in sorted(self._visible().items()):
            if record.get(pred) != target:
                continue
            row = {}
            for f in selected:
                if f == "uid":
                    row["uid"] = uid
                elif f in record:
                    row[f] = record[f]
            matches.append(row)
        return {block: matches}

    def mutate(
        self,
        set_obj: Optional[dict] = None,
        delete_obj: Optional[dict] = None,
    ) -> Dict[str, str]:
        self._check_open()
        self._cluster.maybe_fail("mutate")
        assigned = {}
        if set_obj is not None:
            assigned.update(self._set(set_obj))
        if delete_obj is not None:
            self._delete(delete_obj)
        return assigned

    def commit(self) -> None:
        self._check_open()
        self.finished = True
        # Read-only transactions commit without a round trip
        if not self._writes:
            self.committed = True
            return
        self._cluster.maybe_fail("commit")
        self._cluster.commit(self._start_ts, self._writes, self._conflict_keys)
        self.committed = True
        if self._cluster.should_time_out_commit():
            raise RpcError(
                "DEADLINE_EXCEEDED: context deadline exceeded", code="DEADLINE_EXCEEDED",
            )

    def discard(self) -> None:
        self._check_open()
        self.finished = True
        self.discarded = True

    # ------------------------------------------------------------------

    def _check_open(self) -> None:
        if self.finished:
            raise TxnFinishedError("Transaction has already been committed or discarded")

    def _visible(self) -> Dict[str, dict]:
        visible = self._cluster.snapshot(self._start_ts)
        for uid, record in self._writes.items():
            if record is None:
                visible.pop(uid, None)
            else:
                visible[uid] = record
        return visible

    def _current(self, uid: str) -> Optional[dict]:
        if uid in self._writes:
            return self._writes[uid]
        return self._cluster.snapshot(self._start_ts).get(uid)

    def _touch(self, uid: str, pred: str, value) -> None:
        self._conflict_keys.add((uid, pred))
        decl = self._cluster.field(pred)
        if decl is not None and decl.upsert:
            self._conflict_keys.add(("index", pred, value))

    def _set(self, obj: dict) -> Dict[str, str]:
        assigned = {}
        uid = obj.get("uid")
        if uid is None:
            uid = self._cluster.allocate_uid()
            assigned[f"blank-{len(assigned)}"] = uid
        record = dict(self._current(uid) or {})
        for pred, value in obj.items():
            if pred == "uid":
                continue
            record[pred] = value
            self._touch(uid, pred, value)
        self._writes[uid] = record
        return assigned

    def _delete(self, obj: dict) -> None:
        uid = obj.get("uid")
        if uid is None:
            raise RpcError("UNKNOWN: delete mutation needs a uid", code="UNKNOWN")
        existing = self._current(uid)
        if existing is None:
            return
        preds = [p for p in obj if p != "uid"] or list(existing)
        record = dict(existing)
        for pred in preds:
            if pred in record:
                self._touch(uid, pred, record.pop(pred))
        self._writes[uid] = record or None
