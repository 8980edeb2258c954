"""Configuration parsing and validation for the chicory harness.

This module contains:
- load_harness_config(): the single entry point for configuration
- validate_config(): collects every error and warning in a raw config
- build_connector(): connector for the [cluster] section

Example:

    [cluster]
    connector = "memory"
    nodes = ["n1", "n2", "n3"]

    [schema]
    key_predicate_count = 5
    value_predicate_count = 5
    upsert_schema = true

    [client]
    sequencing = "server"
    blind_insert_on_write = false

    [workload]
    concurrency = 5
    op_count = 1000
    key_count = 10
    seed = 42

    [faults]
    rpc_error_probability = 0.01
"""

from __future__ import annotations

import logging
import tomllib
from dataclasses import dataclass
from typing import Optional

import numpy as np

from chicory.client import DEFAULT_PORT, Connector, Sequencing
from chicory.memstore import FaultConfig, InMemoryCluster
from chicory.runner import RunnerConfig
from chicory.schema import SchemaConfig
from chicory.workload import ClientConfig, Workload, WorkloadConfig

logger = logging.getLogger(__name__)

VALID_CONNECTORS = ["memory"]
VALID_SEQUENCING = [s.value for s in Sequencing]


# ---------------------------------------------------------------------------
# Configuration error
# ---------------------------------------------------------------------------

class ConfigurationError(Exception):
    """Fatal configuration error(s)."""

    def __init__(self, errors: list[str]):
        self.errors = errors
        super().__init__("\n".join(errors))


# ---------------------------------------------------------------------------
# HarnessConfig
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class HarnessConfig:
    """Fully validated harness configuration.

    The connector is built separately (build_connector) since it may hold
    live resources.
    """
    connector: str
    client: ClientConfig
    workload: WorkloadConfig
    runner: RunnerConfig
    faults: FaultConfig
    output_path: Optional[str] = None

    @property
    def seed(self) -> Optional[int]:
        return self.runner.seed


def load_harness_config(
    config_path: str,
    *,
    seed_override: int | None = None,
) -> HarnessConfig:
    """Load harness configuration from a TOML file.

    Args:
        config_path: Path to TOML configuration file.
        seed_override: If provided, overrides [workload].seed.

    Raises:
        ConfigurationError: listing every problem found.
    """
    with open(config_path, "rb") as f:
        raw = tomllib.load(f)
    return parse_config(raw, seed_override=seed_override)


def parse_config(raw: dict, *, seed_override: int | None = None) -> HarnessConfig:
    """Validate a raw config dict and build a HarnessConfig."""
    if seed_override is not None:
        raw.setdefault("workload", {})["seed"] = seed_override

    errors, warnings = validate_config(raw)
    if errors:
        raise ConfigurationError(errors)
    for warning in warnings:
        logger.warning(warning)

    cluster_cfg = raw.get("cluster", {})
    schema_cfg = raw.get("schema", {})
    client_cfg = raw.get("client", {})
    wl_cfg = raw.get("workload", {})
    fault_cfg = raw.get("faults", {})

    schema = SchemaConfig(
        key_predicate_count=schema_cfg.get("key_predicate_count", 5),
        value_predicate_count=schema_cfg.get("value_predicate_count", 5),
        upsert_schema=schema_cfg.get("upsert_schema", False),
    )
    client = ClientConfig(
        schema=schema,
        blind_insert_on_write=client_cfg.get("blind_insert_on_write", False),
        sequencing=Sequencing(client_cfg.get("sequencing", "server")),
    )
    workload = WorkloadConfig(
        key_count=wl_cfg.get("key_count", 10),
        min_txn_length=wl_cfg.get("min_txn_length", 1),
        max_txn_length=wl_cfg.get("max_txn_length", 4),
        read_fraction=wl_cfg.get("read_fraction", 0.5),
        write_once=wl_cfg.get("write_once", False),
    )
    runner = RunnerConfig(
        nodes=tuple(cluster_cfg.get("nodes", ["n1"])),
        port=cluster_cfg.get("port", DEFAULT_PORT),
        concurrency=wl_cfg.get("concurrency", 5),
        op_count=wl_cfg.get("op_count", 100),
        seed=wl_cfg.get("seed"),
        await_ready=cluster_cfg.get("await_ready", True),
    )
    faults = FaultConfig(
        rpc_error_probability=fault_cfg.get("rpc_error_probability", 0.0),
        commit_timeout_probability=fault_cfg.get("commit_timeout_probability", 0.0),
    )
    return HarnessConfig(
        connector=cluster_cfg.get("connector", "memory"),
        client=client,
        workload=workload,
        runner=runner,
        faults=faults,
        output_path=raw.get("output", {}).get("path"),
    )


def build_workload(config: HarnessConfig) -> Workload:
    """Workload generator; its seed is derived from the harness seed."""
    seed = config.seed
    wl_seed = (seed + 100) if seed is not None else None
    return Workload(config.workload, seed=wl_seed)


def build_connector(config: HarnessConfig) -> Connector:
    """Build the connector named in [cluster].connector."""
    if config.connector == "memory":
        seed = config.seed
        rng = np.random.RandomState(seed + 200) if seed is not None else np.random.RandomState()
        cluster = InMemoryCluster(faults=config.faults, rng=rng)
        return cluster.connect
    raise ConfigurationError([f"Unknown connector '{config.connector}'"])


def _check_bool(errors: list[str], section: dict, section_name: str, key: str) -> None:
    value = section.get(key, False)
    if not isinstance(value, bool):
        errors.append(f"{section_name}.{key} must be true or false, got {value!r}")


def validate_config(config: dict) -> tuple[list[str], list[str]]:
    """Validate configuration and return errors/warnings.

    Returns:
        (errors, warnings) where:
        - errors: List of fatal configuration errors
        - warnings: List of non-fatal warnings
    """
    errors = []
    warnings = []

    # Cluster
    cluster = config.get('cluster', {})
    connector = cluster.get('connector', 'memory')
    if connector not in VALID_CONNECTORS:
        errors.append(f"cluster.connector must be one of {VALID_CONNECTORS}, got '{connector}'")
    nodes = cluster.get('nodes', ['n1'])
    if not isinstance(nodes, list) or not nodes:
        errors.append("cluster.nodes must be a non-empty list of node names")
    port = cluster.get('port', DEFAULT_PORT)
    if not isinstance(port, int) or not 0 < port < 65536:
        errors.append(f"cluster.port must be in 1..65535, got {port}")
    _check_bool(errors, cluster, "cluster", "await_ready")

    # Schema
    schema = config.get('schema', {})
    for name in ('key_predicate_count', 'value_predicate_count'):
        n = schema.get(name, 5)
        if not isinstance(n, int) or n < 1:
            errors.append(f"schema.{name} must be an integer >= 1, got {n}")
    _check_bool(errors, schema, "schema", "upsert_schema")

    # Client
    client = config.get('client', {})
    sequencing = client.get('sequencing', 'server')
    if sequencing not in VALID_SEQUENCING:
        errors.append(f"client.sequencing must be one of {VALID_SEQUENCING}, got '{sequencing}'")
    _check_bool(errors, client, "client", "blind_insert_on_write")

    # Workload
    workload = config.get('workload', {})
    concurrency = workload.get('concurrency', 5)
    if not isinstance(concurrency, int) or concurrency < 1:
        errors.append(f"workload.concurrency must be an integer >= 1, got {concurrency}")
    op_count = workload.get('op_count', 100)
    if not isinstance(op_count, int) or op_count < 0:
        errors.append(f"workload.op_count must be an integer >= 0, got {op_count}")
    key_count = workload.get('key_count', 10)
    if not isinstance(key_count, int) or key_count < 1:
        errors.append(f"workload.key_count must be an integer >= 1, got {key_count}")
    min_len = workload.get('min_txn_length', 1)
    max_len = workload.get('max_txn_length', 4)
    if not (isinstance(min_len, int) and isinstance(max_len, int) and 1 <= min_len <= max_len):
        errors.append(
            f"workload.min_txn_length ({min_len}) and max_txn_length ({max_len}) "
            f"must satisfy 1 <= min <= max"
        )
    read_fraction = workload.get('read_fraction', 0.5)
    if not isinstance(read_fraction, (int, float)) or not 0.0 <= read_fraction <= 1.0:
        errors.append(f"workload.read_fraction must be in [0, 1], got {read_fraction}")
    _check_bool(errors, workload, "workload", "write_once")
    seed = workload.get('seed')
    if seed is not None and (isinstance(seed, bool) or not isinstance(seed, int)):
        errors.append(f"workload.seed must be an integer, got {seed!r}")

    # Blind inserts are only sound when no key is written twice
    if client.get('blind_insert_on_write', False) and not workload.get('write_once', False):
        warnings.append(
            "client.blind_insert_on_write without workload.write_once may write a key "
            "twice; reads of such keys will fail with multiple results"
        )
    if isinstance(key_count, int) and isinstance(schema.get('key_predicate_count', 5), int):
        if schema.get('key_predicate_count', 5) > key_count:
            warnings.append(
                f"schema.key_predicate_count ({schema.get('key_predicate_count')}) > "
                f"workload.key_count ({key_count}); some key predicates will never be used"
            )

    # Faults
    faults = config.get('faults', {})
    if faults and connector != 'memory':
        warnings.append(f"[faults] only applies to the memory connector; ignored for '{connector}'")
    for name in ('rpc_error_probability', 'commit_timeout_probability'):
        p = faults.get(name, 0.0)
        if not isinstance(p, (int, float)) or not 0.0 <= p <= 1.0:
            errors.append(f"faults.{name} must be in [0, 1], got {p}")

    return errors, warnings
