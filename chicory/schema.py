"""Schema setup.

SchemaConfig is fixed for the lifetime of a test and determines the
predicate declarations applied once at setup:

    key_0: int @index(int) @upsert .
    ...
    val_0: int .
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Callable, List

from chicory.client import Client, schema
from chicory.errors import RpcError
from chicory.predicates import all_preds
from chicory.txn import transaction

logger = logging.getLogger(__name__)

KEY_PREFIX = "key"
VALUE_PREFIX = "val"

# alter_schema retries at most this many times
ALTER_MAX_RETRIES = 3

# await_ready polling
READY_ATTEMPTS = 6
READY_INTERVAL_S = 5.0


@dataclass(frozen=True)
class SchemaConfig:
    """Predicate striping for keys and values."""
    key_predicate_count: int = 5
    value_predicate_count: int = 5
    upsert_schema: bool = False    # Declare @upsert on key indexes

    def __post_init__(self):
        if self.key_predicate_count < 1:
            raise ValueError(f"key_predicate_count must be >= 1, got {self.key_predicate_count}")
        if self.value_predicate_count < 1:
            raise ValueError(f"value_predicate_count must be >= 1, got {self.value_predicate_count}")

    def key_predicates(self) -> List[str]:
        return all_preds(KEY_PREFIX, self.key_predicate_count)

    def value_predicates(self) -> List[str]:
        return all_preds(VALUE_PREFIX, self.value_predicate_count)


def schema_text(config: SchemaConfig) -> str:
    """Generate the schema declarations for a SchemaConfig."""
    upsert = " @upsert" if config.upsert_schema else ""
    keys = "".join(
        f"{pred}: int @index(int){upsert} .\n" for pred in config.key_predicates()
    )
    vals = "".join(f"{pred}: int .\n" for pred in config.value_predicates())
    return keys + vals


def alter_schema(client: Client, *schemata: str) -> None:
    """Apply one or more schema strings.

    The store throws DEADLINE_EXCEEDED for unclear reasons early in a test.
    Alteration is idempotent, so that signal (and only that one) is retried,
    at most ALTER_MAX_RETRIES times.
    """
    text = "\n".join(schemata)
    attempt = 0
    while True:
        try:
            client.alter(text)
            return
        except RpcError as e:
            if attempt < ALTER_MAX_RETRIES and "DEADLINE_EXCEEDED" in e.message:
                logger.warning("Alter schema failed due to DEADLINE_EXCEEDED, retrying...")
                attempt += 1
                continue
            raise


def _is_connection_refused(e: RpcError) -> bool:
    cause = e.__cause__
    while cause is not None:
        if isinstance(cause, ConnectionRefusedError):
            return True
        cause = cause.__cause__
    return False


def await_ready(
    client: Client,
    attempts: int = READY_ATTEMPTS,
    interval_s: float = READY_INTERVAL_S,
    sleep: Callable[[float], None] = time.sleep,
) -> Client:
    """Block until the node answers a schema query, or raise.

    Retries only when the connection was refused or the server reports it
    is not ready yet.
    """
    while True:
        try:
            with transaction(client) as t:
                schema(t)
            return client
        except RpcError as e:
            if attempts <= 1:
                raise
            if _is_connection_refused(e):
                logger.info(f"RPC interface unavailable, retrying in {interval_s:g} seconds")
            elif "server is not ready to accept requests" in e.message:
                logger.info(f"Server not ready, retrying in {interval_s:g} seconds")
            else:
                raise
            sleep(interval_s)
            attempts -= 1
