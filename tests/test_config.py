from __future__ import annotations

import pytest

from docstore_sqlite import ConnectionConfig
from docstore_sqlite.exceptions import ConfigurationError


def test_defaults():
    cfg = ConnectionConfig()
    assert cfg.is_memory
    assert cfg.url == "sqlite+aiosqlite:///:memory:"
    assert cfg.busy_timeout_ms == 60_000
    assert cfg.maintenance_interval == 300.0


def test_file_url():
    assert ConnectionConfig(path="/tmp/x.db").url == "sqlite+aiosqlite:////tmp/x.db"


@pytest.mark.parametrize(
    "kwargs",
    [
        {"path": ""},
        {"pool_size": 0},
        {"max_overflow": -1},
        {"pool_timeout": -1},
        {"busy_timeout_ms": -5},
        {"maintenance_interval": 0},
    ],
)
def test_invalid_values(kwargs):
    with pytest.raises(ConfigurationError):
        ConnectionConfig(**kwargs)


def test_from_env():
    cfg = ConnectionConfig.from_env(
        environ={
            "DOCSTORE_PATH": "app.db",
            "DOCSTORE_POOL_SIZE": "3",
            "DOCSTORE_POOL_TIMEOUT": "2.5",
            "DOCSTORE_MAINTENANCE_INTERVAL": "off",
        }
    )
    assert cfg.path == "app.db"
    assert cfg.pool_size == 3
    assert cfg.pool_timeout == 2.5
    assert cfg.maintenance_interval is None


def test_from_env_falls_back_to_sqlite_path():
    assert ConnectionConfig.from_env(environ={"SQLITE_PATH": "x.db"}).path == "x.db"


def test_from_env_invalid_number():
    with pytest.raises(ConfigurationError):
        ConnectionConfig.from_env(environ={"DOCSTORE_POOL_SIZE": "many"})
