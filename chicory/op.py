"""Operation data model.

An Operation is one logical test operation: an ordered sequence of
micro-ops executed inside a single transaction. The same type carries
both the invocation (type=None) and its completion (OK, FAIL or INFO).

Key types:
- MicroOpKind / MicroOp: a single read or write of an integer key
- OutcomeType: certainty about whether an operation took effect
- ErrorKind: canonical error reasons attached to FAIL/INFO outcomes
- Operation: invocation or completion record
"""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Tuple


class MicroOpKind(Enum):
    READ = "r"
    WRITE = "w"


@dataclass(frozen=True)
class MicroOp:
    """One read or write within an operation.

    For reads, value is None until the read has been executed.
    """
    kind: MicroOpKind
    key: int
    value: Optional[int] = None

    @classmethod
    def read(cls, key: int) -> MicroOp:
        return cls(MicroOpKind.READ, key)

    @classmethod
    def write(cls, key: int, value: int) -> MicroOp:
        return cls(MicroOpKind.WRITE, key, value)

    def with_value(self, value: Optional[int]) -> MicroOp:
        return dataclasses.replace(self, value=value)

    def __str__(self) -> str:
        value = "nil" if self.value is None else self.value
        return f"[{self.kind.value} {self.key} {value}]"


class OutcomeType(Enum):
    """Completion types.

    OK: the operation definitely took effect.
    FAIL: the operation definitely did not take effect.
    INFO: indeterminate; a checker must treat it as "maybe happened".
    """
    OK = "ok"
    FAIL = "fail"
    INFO = "info"


class ErrorKind(Enum):
    TIMEOUT = "timeout"
    CONFLICT = "conflict"
    OLD_TIMESTAMP = "old-timestamp"
    PREDICATE_MOVING = "predicate-moving"
    TABLET_NOT_SERVED = "tablet-not-served"
    WRONG_SERVER = "wrong-server"
    NOT_READY = "not-ready"
    UNAVAILABLE = "unavailable"
    NO_CONNECTION = "no-connection"
    UNAVAILABLE_ALL_SUBCONNS_DOWN = "unavailable-all-subconns-down"
    UNAVAILABLE_TRANSPORT_CLOSING = "unavailable-transport-closing"
    UNHEALTHY_CONNECTION = "unhealthy-connection"
    ONLY_LEADER_CAN_COMMIT = "only-leader-can-commit"
    SERVER_DOESNT_SERVE_GROUP = "server-doesnt-serve-group"


@dataclass(frozen=True)
class Operation:
    """An invocation (type=None) or a completion of a transactional operation."""
    process: int
    value: Tuple[MicroOp, ...]
    type: Optional[OutcomeType] = None
    error: Optional[ErrorKind] = None
    exception: Optional[str] = None    # Text of an unrecognized exception, if any

    @property
    def is_invoke(self) -> bool:
        return self.type is None

    def ok(self, value: Tuple[MicroOp, ...]) -> Operation:
        return dataclasses.replace(self, type=OutcomeType.OK, value=tuple(value), error=None)

    def fail(self, error: ErrorKind) -> Operation:
        return dataclasses.replace(self, type=OutcomeType.FAIL, error=error)

    def info(self, error: Optional[ErrorKind], exception: Optional[str] = None) -> Operation:
        return dataclasses.replace(
            self, type=OutcomeType.INFO, error=error, exception=exception,
        )

    def complete(self, type: OutcomeType, error: ErrorKind) -> Operation:
        """Return a FAIL or INFO completion for this invocation."""
        if type == OutcomeType.OK:
            raise ValueError("OK completions carry values; use ok()")
        return dataclasses.replace(self, type=type, error=error)
