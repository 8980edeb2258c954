"""Predicate sharding.

Logical keys and values are striped over several schema predicates
(``key_0 .. key_{n-1}``) to spread contention across tablets. The mapping
is a pure function of the key and the shard count.
"""

import hashlib
import numbers
from typing import Any, List


def stable_hash(key: Any) -> int:
    """Hash a key deterministically across processes.

    Python's builtin hash() is salted per process for strings, so it can't
    be used where test runs must be reproducible.
    """
    # numpy integers hash like the equal Python int
    if isinstance(key, numbers.Integral) and not isinstance(key, bool):
        encoded = f"int:{int(key)}".encode("utf-8")
    else:
        encoded = f"{type(key).__name__}:{key}".encode("utf-8")
    return int.from_bytes(hashlib.sha256(encoded).digest()[:8], "big")


def pred_for(prefix: str, n: int, key: Any) -> str:
    """Predicate for a key, given a prefix and a number of predicates."""
    if n < 1:
        raise ValueError(f"predicate count must be >= 1, got {n}")
    return f"{prefix}_{stable_hash(key) % n}"


def all_preds(prefix: str, n: int) -> List[str]:
    """Every predicate name pred_for() can produce for this prefix and count."""
    if n < 1:
        raise ValueError(f"predicate count must be >= 1, got {n}")
    return [f"{prefix}_{i}" for i in range(n)]
