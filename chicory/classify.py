"""Error classification for transactional operations.

Maps failure signals raised by the RPC layer onto the OK/FAIL/INFO
outcome taxonomy so a checker can tell "definitely did not happen"
(FAIL) from "may or may not have happened" (INFO).

Rules are evaluated in order; the first match wins. Signals that match
no rule are re-raised unchanged so novel failure modes stay visible.
"""

from __future__ import annotations

import logging
import re
import time
from dataclasses import dataclass
from typing import Callable, FrozenSet, Optional, Pattern, Tuple

import numpy as np

from chicory.errors import RpcError, TxnConflictError
from chicory.op import ErrorKind, Operation, OutcomeType

logger = logging.getLogger(__name__)

# Upper bound (exclusive) of the random backoff, in milliseconds
BACKOFF_MAX_MS = 2000


@dataclass(frozen=True)
class Rule:
    pattern: Pattern[str]
    type: OutcomeType
    error: ErrorKind

    def matches(self, message: str) -> bool:
        return self.pattern.search(message) is not None


def _rule(pattern: str, type: OutcomeType, error: ErrorKind) -> Rule:
    return Rule(re.compile(pattern), type, error)


FAIL = OutcomeType.FAIL
INFO = OutcomeType.INFO

RULES: Tuple[Rule, ...] = (
    _rule(r"DEADLINE_EXCEEDED:", INFO, ErrorKind.TIMEOUT),
    _rule(r"context deadline exceeded", INFO, ErrorKind.TIMEOUT),
    _rule(r"Conflicts with pending transaction\. Please abort\.", FAIL, ErrorKind.CONFLICT),
    _rule(r"readTs: \d+ less than minTs: \d+ for key:", FAIL, ErrorKind.OLD_TIMESTAMP),
    _rule(r"Predicate is being moved, please retry later", FAIL, ErrorKind.PREDICATE_MOVING),
    _rule(r"Tablet isn't being served by this instance", FAIL, ErrorKind.TABLET_NOT_SERVED),
    _rule(r"Request sent to wrong server", FAIL, ErrorKind.WRONG_SERVER),
    _rule(r"Please retry again, server is not ready to accept requests", FAIL, ErrorKind.NOT_READY),
    # These arrive wrapped in an UNAVAILABLE status, so they precede the
    # generic UNAVAILABLE rule. We can't tell whether the request reached a
    # node, hence INFO.
    _rule(r"Unavailable desc = all SubConns are in TransientFailure", INFO,
          ErrorKind.UNAVAILABLE_ALL_SUBCONNS_DOWN),
    _rule(r"rpc error: code = Unavailable desc = transport is closing", INFO,
          ErrorKind.UNAVAILABLE_TRANSPORT_CLOSING),
    _rule(r"UNAVAILABLE", FAIL, ErrorKind.UNAVAILABLE),
    _rule(r"No connection exists", FAIL, ErrorKind.NO_CONNECTION),
    _rule(r"dispatchTaskOverNetwork: while retrieving connection\. error: Unhealthy connection",
          INFO, ErrorKind.UNHEALTHY_CONNECTION),
    _rule(r"Only leader can decide to commit or abort", FAIL, ErrorKind.ONLY_LEADER_CAN_COMMIT),
    _rule(r"This server doesn't serve group id:", FAIL, ErrorKind.SERVER_DOESNT_SERVE_GROUP),
)

# Error kinds after which the calling context backs off before returning
BACKOFF_KINDS: FrozenSet[ErrorKind] = frozenset({
    ErrorKind.UNAVAILABLE,
    ErrorKind.UNHEALTHY_CONNECTION,
    ErrorKind.UNAVAILABLE_ALL_SUBCONNS_DOWN,
})


def match_rule(message: str) -> Optional[Rule]:
    """Return the first rule matching message, or None."""
    for rule in RULES:
        if rule.matches(message):
            return rule
    return None


def classify_error(op: Operation, exc: BaseException) -> Optional[Operation]:
    """Rewrite op according to a raised error, without backoff.

    Returns None if the error is not recognized; callers must then
    propagate it.
    """
    if isinstance(exc, TxnConflictError):
        return op.fail(ErrorKind.CONFLICT)
    if isinstance(exc, RpcError):
        rule = match_rule(exc.message)
        if rule is not None:
            return op.complete(rule.type, rule.error)
    return None


def with_unavailable_backoff(
    op: Operation,
    rng: np.random.RandomState,
    sleep: Callable[[float], None] = time.sleep,
) -> Operation:
    """Sleep a random [0, 2000) ms after unavailable-style completions.

    Keeps a client from spinning against a node that is down. Only the
    calling thread blocks.
    """
    if op.error in BACKOFF_KINDS:
        delay = int(rng.randint(0, BACKOFF_MAX_MS))
        logger.debug(f"Process {op.process} backing off {delay} ms after {op.error.value}")
        sleep(delay / 1000.0)
    return op


def with_conflict_as_fail(
    op: Operation,
    fn: Callable[[], Operation],
    rng: Optional[np.random.RandomState] = None,
    sleep: Callable[[float], None] = time.sleep,
) -> Operation:
    """Evaluate fn(); convert recognized failures into FAIL/INFO completions.

    Args:
        op: the invocation being executed
        fn: runs the operation and returns its OK completion
        rng: source of backoff jitter (unseeded if None)
        sleep: blocking sleep, in seconds

    Raises:
        Whatever fn raised, unchanged, if no rule recognizes it.
    """
    if rng is None:
        rng = np.random.RandomState()
    try:
        result = fn()
    except (RpcError, TxnConflictError) as e:
        result = classify_error(op, e)
        if result is None:
            raise
        logger.debug(f"Process {op.process}: {e} -> {result.type.value} {result.error.value}")
    return with_unavailable_backoff(result, rng, sleep)
