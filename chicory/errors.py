"""Exception types for the chicory harness."""

from typing import Any, Optional, Sequence


class ChicoryError(Exception):
    """Base class for harness errors."""
    pass


class RpcError(ChicoryError):
    """Failure signal from the RPC layer.

    The message is the full status description (e.g.
    "UNAVAILABLE: rpc error: code = Unavailable desc = transport is closing").
    The error classifier matches on it.
    """

    def __init__(self, message: str, code: Optional[str] = None):
        self.message = message
        self.code = code
        super().__init__(message)


class TxnConflictError(ChicoryError):
    """Native transaction conflict signal raised at commit time."""
    pass


class TxnFinishedError(ChicoryError):
    """Raised when a transaction handle is used after commit or discard."""
    pass


class InvariantViolation(ChicoryError):
    """The data observed in the store breaks an invariant the workload relies on."""
    pass


class DuplicateRecordsError(InvariantViolation):
    """An upsert lookup found more than one record for its key.

    Duplicate inserts slipped past the uniqueness check; this must never be
    resolved by picking one of the matches.
    """

    def __init__(self, predicate: str, value: Any, matches: Sequence[Any]):
        self.predicate = predicate
        self.value = value
        self.matches = list(matches)
        super().__init__(
            f"Uniqueness violation: {len(self.matches)} records have "
            f"{predicate} = {value!r}: {self.matches!r}"
        )


class UnexpectedResultsError(InvariantViolation):
    """A read for a single key returned more than one record."""

    def __init__(self, key: Any, results: Sequence[Any]):
        self.key = key
        self.results = list(results)
        super().__init__(
            f"Unexpected multiple results for key {key!r}: {self.results!r}"
        )


class MissingKeyValueError(ValueError):
    """A record passed to upsert has no value for its key predicate."""
    pass


class UnsupportedValueTypeError(TypeError):
    """A query variable has a type the query language cannot express."""
    pass
