"""Tests for the client surface and operation records."""

import logging

import pytest

from chicory.client import Client, Connection, Sequencing, delete, open_client, query
from chicory.op import ErrorKind, MicroOp, Operation, OutcomeType


class StubConnection(Connection):
    def __init__(self, name, fail_close=False):
        self.name = name
        self.fail_close = fail_close
        self.closed = False
        self.altered = []

    def new_txn(self):
        return StubTxn(self.name)

    def alter(self, schema_text):
        self.altered.append(schema_text)

    def close(self):
        if self.fail_close:
            raise OSError("already closed")
        self.closed = True


class StubTxn:
    def __init__(self, conn_name):
        self.conn_name = conn_name
        self.calls = []

    def query(self, text, variables=None):
        self.calls.append(("query", text, variables))
        return {}

    def mutate(self, set_obj=None, delete_obj=None):
        self.calls.append(("mutate", set_obj, delete_obj))
        return {}


class TestClient:
    def test_round_robin(self):
        client = Client("n1", 9080, [StubConnection("a"), StubConnection("b")])
        names = [client.new_transaction().conn_name for _ in range(4)]
        assert names == ["a", "b", "a", "b"]

    def test_sequencing_set_on_txn(self):
        client = Client("n1", 9080, [StubConnection("a")])
        assert client.new_transaction(Sequencing.CLIENT).sequencing == Sequencing.CLIENT

    def test_requires_connection(self):
        with pytest.raises(ValueError):
            Client("n1", 9080, [])

    def test_close_is_best_effort(self, caplog):
        ok = StubConnection("b")
        client = Client("n1", 9080, [StubConnection("a", fail_close=True), ok])
        with caplog.at_level(logging.WARNING):
            client.close()
        assert ok.closed
        assert "already closed" in caplog.text

    def test_open_client_passes_deadline(self):
        seen = []

        def connector(node, port, deadline_s):
            seen.append((node, port, deadline_s))
            return StubConnection(node)

        client = open_client(connector, "n3", 9180, deadline_s=2.5)
        assert seen == [("n3", 9180, 2.5)]
        assert client.node == "n3"


class TestHelpers:
    def test_query_without_variables_is_raw(self):
        txn = StubTxn("a")
        query(txn, "schema {}")
        assert txn.calls == [("query", "schema {}", None)]

    def test_query_with_variables(self):
        txn = StubTxn("a")
        query(txn, "{ q(func: eq(key_0, $k)) { uid } }", {"k": 3})
        assert txn.calls == [(
            "query",
            "query all($k: int) { q(func: eq(key_0, $k)) { uid } }",
            {"$k": "3"},
        )]

    def test_delete_uid(self):
        txn = StubTxn("a")
        delete(txn, "0x2a")
        assert txn.calls == [("mutate", None, {"uid": "0x2a"})]


class TestOperation:
    def test_invoke(self):
        op = Operation(process=1, value=(MicroOp.read(1),))
        assert op.is_invoke

    def test_ok(self):
        op = Operation(process=1, value=(MicroOp.read(1),))
        done = op.ok([MicroOp.read(1).with_value(4)])
        assert done.type == OutcomeType.OK
        assert done.value == (MicroOp.read(1).with_value(4),)
        assert not done.is_invoke

    def test_complete_rejects_ok(self):
        op = Operation(process=1, value=())
        with pytest.raises(ValueError):
            op.complete(OutcomeType.OK, ErrorKind.TIMEOUT)

    def test_micro_op_str(self):
        assert str(MicroOp.write(2, 7)) == "[w 2 7]"
        assert str(MicroOp.read(2)) == "[r 2 nil]"
