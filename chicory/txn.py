"""Transaction lifecycle.

A transaction opened here is terminated exactly once: committed when the
body returns normally, discarded when the body raises. That discard is
best-effort; the body's error propagates even if it fails. A failed commit
is itself the terminating call and is not followed by a discard. Nothing
in this module retries.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Callable, Iterator, TypeVar

from chicory.client import Client, Sequencing, Txn

logger = logging.getLogger(__name__)

T = TypeVar("T")


@contextmanager
def transaction(
    client: Client,
    sequencing: Sequencing = Sequencing.SERVER,
) -> Iterator[Txn]:
    """Open a transaction, commit on normal exit, discard on error.

    Ex:

        with transaction(client, Sequencing.CLIENT) as t:
            mutate(t, {...})
            mutate(t, {...})
    """
    txn = client.new_transaction(sequencing)
    try:
        yield txn
    except BaseException:
        # A failed discard never replaces the body's error
        try:
            txn.discard()
        except Exception as e:
            logger.warning(f"Discard failed after transaction error: {e}")
        raise
    txn.commit()


def with_transaction(config, client: Client, body: Callable[[Txn], T]) -> T:
    """Run body(txn) inside a transaction and return its result.

    The ordering mode comes from config.sequencing (server-side if the
    config does not set one).
    """
    sequencing = getattr(config, "sequencing", None) or Sequencing.SERVER
    with transaction(client, sequencing) as txn:
        return body(txn)
