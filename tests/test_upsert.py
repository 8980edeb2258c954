"""Tests for insert-if-absent.

Tests:
- First upsert inserts; a second for the same key is a no-op
- Missing key value is rejected before any query
- Several existing matches raise DuplicateRecordsError
- Lookup query text and variables
- Blind insert never queries
"""

import pytest

from chicory.client import Txn, open_client
from chicory.errors import DuplicateRecordsError, MissingKeyValueError
from chicory.memstore import InMemoryCluster
from chicory.txn import transaction
from chicory.upsert import insert, upsert


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

class ScriptedTxn(Txn):
    """Returns a fixed query response and records every call."""

    def __init__(self, response=None):
        self.response = response if response is not None else {"all": []}
        self.queries = []
        self.mutations = []

    def query(self, text, variables=None):
        self.queries.append((text, variables))
        return self.response

    def mutate(self, set_obj=None, delete_obj=None):
        self.mutations.append(set_obj)
        return {"blank-0": "0x1"}

    def commit(self):
        pass

    def discard(self):
        pass


def memory_client(upsert_index=False):
    cluster = InMemoryCluster()
    directive = " @upsert" if upsert_index else ""
    cluster.alter(f"key_0: int @index(int){directive} .\nval_0: int .\n")
    return cluster, open_client(cluster.connect, "n1")


# ---------------------------------------------------------------------------
# Tests
# ---------------------------------------------------------------------------

class TestUpsert:
    def test_inserts_when_absent(self):
        txn = ScriptedTxn()
        assert upsert(txn, "key_0", {"key_0": 1, "val_0": 2}) == {"blank-0": "0x1"}
        assert txn.mutations == [{"key_0": 1, "val_0": 2}]

    def test_noop_when_present(self):
        txn = ScriptedTxn({"all": [{"uid": "0x1"}]})
        assert upsert(txn, "key_0", {"key_0": 1}) is None
        assert txn.mutations == []

    def test_missing_key_value(self):
        txn = ScriptedTxn()
        with pytest.raises(MissingKeyValueError):
            upsert(txn, "key_0", {"val_0": 2})
        assert txn.queries == []

    def test_false_is_a_value(self):
        txn = ScriptedTxn()
        upsert(txn, "flag", {"flag": False})
        assert txn.queries[0][1] == {"$a": "false"}

    def test_duplicates_raise(self):
        txn = ScriptedTxn({"all": [{"uid": "0x1"}, {"uid": "0x2"}]})
        with pytest.raises(DuplicateRecordsError) as excinfo:
            upsert(txn, "key_0", {"key_0": 1})
        assert excinfo.value.matches == [{"uid": "0x1"}, {"uid": "0x2"}]
        assert txn.mutations == []

    def test_query_text(self):
        txn = ScriptedTxn()
        upsert(txn, "key_3", {"key_3": 7})
        text, variables = txn.queries[0]
        assert text.startswith("query all($a: int) {")
        assert "all(func: eq(key_3, $a))" in text
        assert variables == {"$a": "7"}


class TestUpsertInMemory:
    def test_twice_in_sequence_inserts_once(self):
        cluster, client = memory_client()
        with transaction(client) as t:
            assert upsert(t, "key_0", {"key_0": 1, "val_0": 10}) is not None
        with transaction(client) as t:
            assert upsert(t, "key_0", {"key_0": 1, "val_0": 11}) is None
        assert list(cluster.records().values()) == [{"key_0": 1, "val_0": 10}]

    def test_twice_in_one_transaction(self):
        cluster, client = memory_client()
        with transaction(client) as t:
            upsert(t, "key_0", {"key_0": 1})
            assert upsert(t, "key_0", {"key_0": 1}) is None
        assert len(cluster.records()) == 1

    def test_duplicates_after_blind_inserts(self):
        _, client = memory_client()
        for _ in range(2):
            with transaction(client) as t:
                insert(t, {"key_0": 1})
        with pytest.raises(DuplicateRecordsError):
            with transaction(client) as t:
                upsert(t, "key_0", {"key_0": 1})


class TestInsert:
    def test_never_queries(self):
        txn = ScriptedTxn({"all": [{"uid": "0x1"}]})
        insert(txn, {"key_0": 1})
        assert txn.queries == []
        assert txn.mutations == [{"key_0": 1}]
