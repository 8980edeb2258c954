"""Insert-if-absent on a store with no native uniqueness constraint.

upsert() looks for an existing record whose key predicate equals the
record's value, and inserts only if there is none. Whether two concurrent
upserts of the same key are serialized is up to the store (an ``@upsert``
index turns them into a commit conflict). If duplicates slip through
anyway, the next lookup sees more than one match and raises
DuplicateRecordsError instead of picking one.
"""

from __future__ import annotations

from typing import Dict, Optional

from chicory.client import Txn, mutate, query
from chicory.errors import DuplicateRecordsError, MissingKeyValueError


def upsert(txn: Txn, pred: str, record: dict) -> Optional[Dict[str, str]]:
    """Insert record unless a record with the same pred value exists.

    Returns:
        The assigned uids if an insert took place, otherwise None.

    Raises:
        MissingKeyValueError: record has no value for pred
        DuplicateRecordsError: more than one record already has that value
    """
    pred_value = record.get(pred)
    if pred_value is None:
        raise MissingKeyValueError(f"Record {record!r} has no value for {pred!r}")

    res = query(
        txn,
        "{\n"
        f"  all(func: eq({pred}, $a)) {{\n"
        "    uid\n"
        "  }\n"
        "}",
        {"a": pred_value},
    )
    matches = res.get("all") or []
    if len(matches) > 1:
        raise DuplicateRecordsError(pred, pred_value, matches)
    if matches:
        return None
    return mutate(txn, record)


def insert(txn: Txn, record: dict) -> Dict[str, str]:
    """Blind insert: no existence check.

    Only safe for workloads that never write the same key twice; that is
    the caller's promise, not something checked here.
    """
    return mutate(txn, record)
