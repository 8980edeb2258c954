"""Tests for History.

Tests:
- Events ordered by time, ties broken by recording order
- Outcome counts and (type, error) breakdown
- DataFrame and parquet export
"""

import json

import pandas as pd
import pyarrow.parquet as pq

from chicory.history import History, encode_micro_ops
from chicory.op import ErrorKind, MicroOp, Operation


def make_history():
    invoke = Operation(process=0, value=(MicroOp.write(1, 5), MicroOp.read(1)))
    other = Operation(process=1, value=(MicroOp.read(2),))
    h = History()
    h.record(10, invoke)
    h.record(5, other)
    h.record(20, invoke.ok((MicroOp.write(1, 5), MicroOp.read(1).with_value(5))))
    h.record(20, other.fail(ErrorKind.CONFLICT))
    h.record(30, other.info(None, exception="RuntimeError: boom"))
    return h


class TestHistory:
    def test_ordering(self):
        events = make_history().events()
        assert [t for t, _ in events] == [5, 10, 20, 20, 30]
        # equal timestamps keep recording order
        assert events[2][1].type.value == "ok"
        assert events[3][1].type.value == "fail"

    def test_counts(self):
        h = make_history()
        assert len(h) == 5
        assert (h.ok, h.failed, h.indeterminate) == (1, 1, 1)
        assert len(h.completions) == 3

    def test_error_counts(self):
        counts = make_history().error_counts()
        assert counts == {("fail", "conflict"): 1, ("info", "exception"): 1}

    def test_extend(self):
        h = History()
        h.extend([(2, Operation(0, ())), (1, Operation(1, ()))])
        assert [op.process for _, op in h.events()] == [1, 0]


class TestExport:
    def test_encode_micro_ops(self):
        assert json.loads(encode_micro_ops((MicroOp.write(1, 5), MicroOp.read(2)))) == \
            [["w", 1, 5], ["r", 2, None]]

    def test_dataframe(self):
        df = make_history().to_dataframe()
        assert list(df.columns) == ["index", "time_ns", "process", "type", "value", "error", "exception"]
        assert list(df["type"]) == ["invoke", "invoke", "ok", "fail", "info"]
        assert df["error"].iloc[3] == "conflict"

    def test_empty_dataframe(self):
        df = History().to_dataframe()
        assert isinstance(df, pd.DataFrame)
        assert len(df) == 0
        assert "exception" in df.columns

    def test_parquet_roundtrip(self, tmp_path):
        path = str(tmp_path / "history.parquet")
        make_history().export_parquet(path)
        table = pq.read_table(path)
        assert table.num_rows == 5
        assert table.column("exception").to_pylist()[-1] == "RuntimeError: boom"
