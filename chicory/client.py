"""Client-side view of the database under test.

The RPC layer itself (channels, wire encoding, JSON) is external. This
module defines the narrow surface the harness consumes and the helpers
built on it.

Key types:
- Sequencing: transaction read-timestamp ordering mode
- Txn: ABC for a transaction handle (query, mutate, commit, discard)
- Connection: ABC for one channel to one node
- Connector: factory opening a Connection to (node, port)
- Client: owns its connections and hands out transactions

Helpers:
- open_client() / close()
- query(), mutate(), delete(), schema()
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from enum import Enum
from typing import Any, Callable, Dict, List, Mapping, Optional, Union

from chicory.values import encode_variables, query_header

logger = logging.getLogger(__name__)

DEFAULT_PORT = 9080

# Per-call RPC deadline in seconds, enforced by the connection
DEADLINE_S = 5.0


class Sequencing(Enum):
    """Whether read timestamps are assigned server-side or client-side."""
    SERVER = "server"
    CLIENT = "client"


class Txn(ABC):
    """A transaction handle.

    Handles are owned by exactly one client context and are terminated by
    exactly one call to commit() or discard().
    """

    sequencing: Sequencing = Sequencing.SERVER

    @abstractmethod
    def query(self, text: str, variables: Optional[Mapping[str, str]] = None) -> dict:
        """Run a query and return the parsed JSON response."""
        ...

    @abstractmethod
    def mutate(
        self,
        set_obj: Optional[dict] = None,
        delete_obj: Optional[dict] = None,
    ) -> Dict[str, str]:
        """Apply a JSON set or delete mutation; returns blank-node -> uid."""
        ...

    @abstractmethod
    def commit(self) -> None:
        ...

    @abstractmethod
    def discard(self) -> None:
        ...


class Connection(ABC):
    """A channel to a single node."""

    @abstractmethod
    def new_txn(self) -> Txn:
        ...

    @abstractmethod
    def alter(self, schema_text: str) -> None:
        """Apply a schema alteration."""
        ...

    @abstractmethod
    def close(self) -> None:
        """Release the channel. May complete asynchronously."""
        ...


Connector = Callable[[str, int, float], Connection]


class Client:
    """Client for one node, owning its connection(s) directly.

    Transactions are spread round-robin across connections.
    """

    def __init__(self, node: str, port: int, connections: List[Connection]):
        if not connections:
            raise ValueError("Client needs at least one connection")
        self.node = node
        self.port = port
        self.connections = connections
        self._next = 0

    def new_transaction(self, sequencing: Sequencing = Sequencing.SERVER) -> Txn:
        conn = self.connections[self._next % len(self.connections)]
        self._next += 1
        txn = conn.new_txn()
        txn.sequencing = sequencing
        return txn

    def alter(self, schema_text: str) -> None:
        self.connections[0].alter(schema_text)

    def close(self) -> None:
        """Close every connection. Best-effort; failures are logged."""
        for conn in self.connections:
            try:
                conn.close()
            except Exception as e:
                logger.warning(f"Error closing connection to {self.node}:{self.port}: {e}")

    def __repr__(self) -> str:
        return f"Client({self.node}:{self.port}, connections={len(self.connections)})"


def open_client(
    connector: Connector,
    node: str,
    port: int = DEFAULT_PORT,
    deadline_s: float = DEADLINE_S,
) -> Client:
    """Open a client for the given node."""
    conn = connector(node, port, deadline_s)
    logger.debug(f"Opened connection to {node}:{port}")
    return Client(node, port, [conn])


def close(client: Client) -> None:
    client.close()


# ---------------------------------------------------------------------------
# Transaction helpers
# ---------------------------------------------------------------------------

def query(txn: Txn, body: str, variables: Optional[Mapping[str, Any]] = None) -> dict:
    """Run a query, generating the ``query all(...)`` header from variables.

    Variable names are given without the $ prefix and their types are
    inferred from their values:

        query(txn, "{ all(func: eq(name, $a)) { uid } }", {"a": "cat"})
    """
    if not variables:
        return txn.query(body)
    return txn.query(f"{query_header(variables)} {body}", encode_variables(variables))


def mutate(txn: Txn, record: dict) -> Dict[str, str]:
    """Insert a JSON record. Returns a map of blank-node names to uids."""
    return txn.mutate(set_obj=record)


def delete(txn: Txn, target: Union[str, dict]) -> Dict[str, str]:
    """Delete a record.

    A uid string deletes every outbound edge of that entity; a dict is
    applied as a JSON deletion.
    """
    if isinstance(target, str):
        target = {"uid": target}
    return txn.mutate(delete_obj=target)


def schema(txn: Txn) -> dict:
    """Retrieve the current schema as JSON."""
    return query(txn, "schema {}")
