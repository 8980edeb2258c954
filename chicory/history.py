"""Operation history for an external checker.

A history is the merged, time-ordered stream of invocations and
completions from every client context. It can be exported to parquet
(one row per event) or inspected as a DataFrame.
"""

from __future__ import annotations

import json
from collections import Counter
from typing import Iterable, List, Optional, Tuple

import pandas as pd
import pyarrow as pa
import pyarrow.parquet as pq

from chicory.op import MicroOp, Operation, OutcomeType


_ARROW_SCHEMA = pa.schema([
    ("index", pa.int64()),
    ("time_ns", pa.int64()),
    ("process", pa.int64()),
    ("type", pa.string()),
    ("value", pa.string()),       # JSON: [["r", 1, 5], ["w", 2, 7], ...]
    ("error", pa.string()),
    ("exception", pa.string()),
])


def encode_micro_ops(value: Iterable[MicroOp]) -> str:
    return json.dumps([[m.kind.value, m.key, m.value] for m in value])


def _type_name(op: Operation) -> str:
    return "invoke" if op.type is None else op.type.value


def _entry_to_row(index: int, time_ns: int, op: Operation) -> dict:
    return {
        "index": index,
        "time_ns": time_ns,
        "process": op.process,
        "type": _type_name(op),
        "value": encode_micro_ops(op.value),
        "error": op.error.value if op.error is not None else None,
        "exception": op.exception,
    }


class History:
    """Invocations and completions, ordered by time.

    Events recorded with equal timestamps keep their recording order.
    """

    def __init__(self):
        self._events: List[Tuple[int, int, Operation]] = []
        self._seq = 0

    def record(self, time_ns: int, op: Operation) -> None:
        self._events.append((time_ns, self._seq, op))
        self._seq += 1

    def extend(self, events: Iterable[Tuple[int, Operation]]) -> None:
        for time_ns, op in events:
            self.record(time_ns, op)

    def events(self) -> List[Tuple[int, Operation]]:
        return [(t, op) for t, _, op in sorted(self._events, key=lambda e: (e[0], e[1]))]

    def __len__(self) -> int:
        return len(self._events)

    @property
    def completions(self) -> List[Operation]:
        return [op for _, op in self.events() if not op.is_invoke]

    def count(self, type: Optional[OutcomeType]) -> int:
        return sum(1 for _, _, op in self._events if op.type == type)

    @property
    def ok(self) -> int:
        return self.count(OutcomeType.OK)

    @property
    def failed(self) -> int:
        return self.count(OutcomeType.FAIL)

    @property
    def indeterminate(self) -> int:
        return self.count(OutcomeType.INFO)

    def error_counts(self) -> Counter:
        """Completions per (type, error) pair, e.g. ("fail", "conflict")."""
        counts: Counter = Counter()
        for _, _, op in self._events:
            if op.type in (OutcomeType.FAIL, OutcomeType.INFO):
                error = op.error.value if op.error is not None else "exception"
                counts[(op.type.value, error)] += 1
        return counts

    def _rows(self) -> List[dict]:
        return [
            _entry_to_row(i, t, op) for i, (t, op) in enumerate(self.events())
        ]

    def to_arrow(self) -> pa.Table:
        rows = self._rows()
        arrays = {
            f.name: pa.array([row[f.name] for row in rows], type=f.type)
            for f in _ARROW_SCHEMA
        }
        return pa.table(arrays, schema=_ARROW_SCHEMA)

    def to_dataframe(self) -> pd.DataFrame:
        if not self._events:
            return pd.DataFrame(columns=_ARROW_SCHEMA.names)
        return self.to_arrow().to_pandas()

    def export_parquet(self, path: str) -> None:
        pq.write_table(self.to_arrow(), path, compression="snappy")
