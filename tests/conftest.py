"""
Shared fixtures: in-memory storage, credentials and object store seeded with
the accounts used throughout the suite.
"""

import pytest

from backup_recovery.config import BackupRecoveryConfig
from backup_recovery.core.manager import BackupManager
from backup_recovery.utils.compression import CompressionHandler
from backup_recovery.utils.records import decode_record
from monitoring.metrics import LoggingMetricsSink
from storage_clients.memory import (
    InMemoryCredentialIssuer,
    InMemoryObjectStore,
    InMemoryStorageService
)


def default_entities():
    return {
        "abc": {
            "def": [{"a": "b\n"}, {"c": "d"}, {"e": "f"}],
            "fed": [{"q": 5}, {"y": 30.2}],
            "qed": [],
        },
        "aaa": {
            "bbb": [{"t": "t"}, {"tt": "tt"}, {"ttt": "ttt"}],
        },
    }


def default_containers():
    return {
        "abc": {
            "contA": {"1": b"aaa1", "2": b"aaa2"},
            "contB": {"1": b"bbb1", "2": b"bbb2"},
        },
    }


def snapshot_records(object_store: InMemoryObjectStore, key: str):
    """Decompress and parse one stored snapshot."""
    body = CompressionHandler().decompress_data(object_store.objects[key])
    return [decode_record(line) for line in body.split(b"\n") if line]


@pytest.fixture
def storage():
    return InMemoryStorageService(tables=default_entities())


@pytest.fixture
def storage_with_containers():
    return InMemoryStorageService(tables=default_entities(), containers=default_containers())


@pytest.fixture
def issuer():
    return InMemoryCredentialIssuer()


@pytest.fixture
def object_store():
    return InMemoryObjectStore(read_chunk_size=16)


@pytest.fixture
def metrics():
    return LoggingMetricsSink()


@pytest.fixture
def config():
    return BackupRecoveryConfig(concurrency=10, page_size=1000, heartbeat_interval=2)


@pytest.fixture
def make_manager(issuer, object_store, metrics, config):
    def _make(storage, **overrides):
        run_config = BackupRecoveryConfig(**{**config.to_dict(), **overrides}) if overrides else config
        return BackupManager(storage, issuer, object_store, metrics, run_config)
    return _make


@pytest.fixture
def entities():
    return default_entities()


@pytest.fixture
def read_snapshot(object_store):
    def _read(key):
        return snapshot_records(object_store, key)
    return _read
