"""Tests for config loading.

Tests:
- load_harness_config: valid TOML -> HarnessConfig
- Defaults for every optional section
- Validation: invalid configs raise ConfigurationError listing every problem
- Warnings for risky but legal combinations
- Seed handling: from config, override, None
- Component wiring: connector, workload generator
"""

import os
import tempfile

import pytest

from chicory.client import DEFAULT_PORT, Sequencing
from chicory.config import (
    ConfigurationError,
    build_connector,
    build_workload,
    load_harness_config,
    parse_config,
    validate_config,
)
from chicory.memstore import InMemoryConnection


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def write_toml(content: str) -> str:
    """Write TOML content to a temp file and return its path."""
    fd, path = tempfile.mkstemp(suffix=".toml")
    os.write(fd, content.encode())
    os.close(fd)
    return path


MINIMAL_CONFIG = """\
[cluster]
connector = "memory"
nodes = ["n1", "n2"]

[workload]
concurrency = 2
op_count = 20
seed = 42
"""

FULL_CONFIG = """\
[cluster]
connector = "memory"
nodes = ["n1", "n2", "n3"]
port = 9180
await_ready = false

[schema]
key_predicate_count = 3
value_predicate_count = 2
upsert_schema = true

[client]
sequencing = "client"
blind_insert_on_write = false

[workload]
concurrency = 4
op_count = 50
key_count = 8
min_txn_length = 2
max_txn_length = 6
read_fraction = 0.25
seed = 7

[faults]
rpc_error_probability = 0.01
commit_timeout_probability = 0.02

[output]
path = "out.parquet"
"""


# ---------------------------------------------------------------------------
# Loading
# ---------------------------------------------------------------------------

class TestLoadHarnessConfig:
    def test_minimal(self):
        path = write_toml(MINIMAL_CONFIG)
        try:
            config = load_harness_config(path)
        finally:
            os.unlink(path)
        assert config.connector == "memory"
        assert config.runner.nodes == ("n1", "n2")
        assert config.runner.concurrency == 2
        assert config.runner.op_count == 20
        assert config.seed == 42

    def test_defaults(self):
        config = parse_config({})
        assert config.runner.port == DEFAULT_PORT
        assert config.runner.await_ready is True
        assert config.client.sequencing == Sequencing.SERVER
        assert config.client.blind_insert_on_write is False
        assert config.client.schema.key_predicate_count == 5
        assert config.client.schema.upsert_schema is False
        assert config.workload.key_count == 10
        assert config.faults.rpc_error_probability == 0.0
        assert config.output_path is None
        assert config.seed is None

    def test_full(self):
        path = write_toml(FULL_CONFIG)
        try:
            config = load_harness_config(path)
        finally:
            os.unlink(path)
        assert config.runner.port == 9180
        assert config.runner.await_ready is False
        assert config.client.sequencing == Sequencing.CLIENT
        assert config.client.schema.key_predicates() == ["key_0", "key_1", "key_2"]
        assert config.client.schema.upsert_schema is True
        assert (config.workload.min_txn_length, config.workload.max_txn_length) == (2, 6)
        assert config.workload.read_fraction == 0.25
        assert config.faults.commit_timeout_probability == 0.02
        assert config.output_path == "out.parquet"


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------

class TestValidation:
    def test_valid_has_no_errors(self):
        errors, _ = validate_config({"workload": {"concurrency": 3}})
        assert errors == []

    @pytest.mark.parametrize("raw, fragment", [
        ({"cluster": {"connector": "grpc"}}, "cluster.connector"),
        ({"cluster": {"nodes": []}}, "cluster.nodes"),
        ({"cluster": {"port": 0}}, "cluster.port"),
        ({"schema": {"key_predicate_count": 0}}, "schema.key_predicate_count"),
        ({"client": {"sequencing": "random"}}, "client.sequencing"),
        ({"workload": {"concurrency": 0}}, "workload.concurrency"),
        ({"workload": {"op_count": -1}}, "workload.op_count"),
        ({"workload": {"min_txn_length": 3, "max_txn_length": 2}}, "min_txn_length"),
        ({"workload": {"read_fraction": 2.0}}, "workload.read_fraction"),
        ({"faults": {"rpc_error_probability": -0.1}}, "faults.rpc_error_probability"),
        ({"schema": {"upsert_schema": "false"}}, "schema.upsert_schema"),
        ({"client": {"blind_insert_on_write": 1}}, "client.blind_insert_on_write"),
        ({"workload": {"write_once": "yes"}}, "workload.write_once"),
        ({"cluster": {"await_ready": "no"}}, "cluster.await_ready"),
        ({"workload": {"seed": "42"}}, "workload.seed"),
        ({"workload": {"seed": True}}, "workload.seed"),
    ])
    def test_errors(self, raw, fragment):
        errors, _ = validate_config(raw)
        assert any(fragment in e for e in errors)

    def test_collects_every_error(self):
        with pytest.raises(ConfigurationError) as excinfo:
            parse_config({"workload": {"concurrency": 0, "key_count": 0}})
        assert len(excinfo.value.errors) == 2

    def test_string_flag_rejected(self):
        with pytest.raises(ConfigurationError) as excinfo:
            parse_config({"schema": {"upsert_schema": "false"}})
        assert excinfo.value.errors == ["schema.upsert_schema must be true or false, got 'false'"]

    def test_boolean_flags_accepted(self):
        errors, _ = validate_config({
            "cluster": {"await_ready": False},
            "schema": {"upsert_schema": True},
            "client": {"blind_insert_on_write": True},
            "workload": {"write_once": True, "seed": 0},
        })
        assert errors == []

    def test_blind_insert_warning(self):
        _, warnings = validate_config({"client": {"blind_insert_on_write": True}})
        assert any("write_once" in w for w in warnings)

    def test_blind_insert_with_write_once_no_warning(self):
        _, warnings = validate_config({
            "client": {"blind_insert_on_write": True},
            "workload": {"write_once": True},
        })
        assert not any("write_once" in w for w in warnings)

    def test_more_predicates_than_keys_warning(self):
        _, warnings = validate_config({
            "schema": {"key_predicate_count": 20},
            "workload": {"key_count": 4},
        })
        assert any("key_predicate_count" in w for w in warnings)


# ---------------------------------------------------------------------------
# Seeds and wiring
# ---------------------------------------------------------------------------

class TestSeedsAndWiring:
    def test_seed_override(self):
        path = write_toml(MINIMAL_CONFIG)
        try:
            config = load_harness_config(path, seed_override=99)
        finally:
            os.unlink(path)
        assert config.seed == 99

    def test_override_without_workload_section(self):
        assert parse_config({}, seed_override=5).seed == 5

    def test_build_connector_memory(self):
        connector = build_connector(parse_config({"workload": {"seed": 1}}))
        assert isinstance(connector("n1", DEFAULT_PORT, 5.0), InMemoryConnection)

    def test_connections_share_one_cluster(self):
        connector = build_connector(parse_config({}))
        assert connector("n1", DEFAULT_PORT, 5.0).cluster is connector("n2", DEFAULT_PORT, 5.0).cluster

    def test_unknown_connector_rejected(self):
        with pytest.raises(ConfigurationError):
            parse_config({"cluster": {"connector": "grpc"}})

    def test_workload_seeded_from_config(self):
        config = parse_config({"workload": {"seed": 3}})
        a = build_workload(config)
        b = build_workload(config)
        assert [a.next_txn() for _ in range(20)] == [b.next_txn() for _ in range(20)]
