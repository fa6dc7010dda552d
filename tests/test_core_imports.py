import sqlite3
from unittest.mock import MagicMock

import pytest

import core.config as config
from core.gitinfo import GitInfo


def test_core_imports():
    import core.context  # noqa: F401
    import core.models  # noqa: F401
    import core.services.memory_service  # noqa: F401
    import core.services.memory_tools  # noqa: F401
    import app.main  # noqa: F401


def test_gateway_refuses_sqlite(monkeypatch):
    monkeypatch.setattr(config, "STORAGE_DRIVER", "sqlite")

    config.validate_and_prepare_config()
    with pytest.raises(RuntimeError, match="not supported for the gateway"):
        config.validate_and_prepare_config(gateway=True)


def test_config_requires_backend_urls(monkeypatch):
    monkeypatch.setattr(config, "STORAGE_DRIVER", "postgres")
    monkeypatch.setattr(config, "DATABASE_URL", None)
    with pytest.raises(RuntimeError, match="DATABASE_URL"):
        config.validate_and_prepare_config(gateway=True)

    monkeypatch.setattr(config, "STORAGE_DRIVER", "mongodb")
    monkeypatch.setattr(config, "MONGODB_URI", None)
    with pytest.raises(RuntimeError, match="MONGODB_URI"):
        config.validate_and_prepare_config(gateway=True)

    monkeypatch.setattr(config, "STORAGE_DRIVER", "cassandra")
    with pytest.raises(RuntimeError, match="STORAGE_DRIVER"):
        config.validate_and_prepare_config()


def test_create_store_unknown_driver():
    from core.storage.factory import create_store

    with pytest.raises(ValueError):
        create_store("cassandra")


def test_create_store_sqlite(monkeypatch, tmp_path):
    pytest.importorskip("sqlite_vec")
    if not hasattr(sqlite3.Connection, "enable_load_extension"):
        pytest.skip("sqlite3 built without extension loading")
    from core.storage.factory import create_store
    from core.storage.base import MemoryStore

    monkeypatch.setattr(config, "SQLITE_PATH", str(tmp_path / "factory.db"))
    store = create_store("sqlite")
    try:
        assert isinstance(store, MemoryStore)
        assert store.dimensions == config.EMBEDDING_DIM
    finally:
        store.close()


def test_shim_requires_api_url(monkeypatch):
    import shim

    monkeypatch.setattr(config, "EC_API_URL", "")
    with pytest.raises(SystemExit) as excinfo:
        shim.main()
    assert excinfo.value.code == 1


def test_shim_serves_stdio(monkeypatch):
    import shim

    server = MagicMock()
    monkeypatch.setattr(config, "EC_API_URL", "http://gateway:8080")
    monkeypatch.setattr(shim, "get_git_info", lambda: GitInfo(repo="acme/api"))
    monkeypatch.setattr(shim, "create_mcp_server", lambda backend: server)

    shim.main()

    server.run.assert_called_once_with(transport="stdio")


def test_local_server_exits_on_startup_failure(monkeypatch):
    import mcp_server

    def fail():
        raise RuntimeError("Configuration invalid: STORAGE_DRIVER")

    monkeypatch.setattr(mcp_server, "build_local_service", fail)
    with pytest.raises(SystemExit) as excinfo:
        mcp_server.main()
    assert excinfo.value.code == 1


def test_local_server_closes_service(monkeypatch):
    import mcp_server

    service = MagicMock()
    server = MagicMock()
    monkeypatch.setattr(mcp_server, "build_local_service", lambda: service)
    monkeypatch.setattr(mcp_server, "create_mcp_server", lambda backend: server)

    mcp_server.main()

    server.run.assert_called_once_with(transport="stdio")
    service.close.assert_called_once_with()


def test_gateway_main_runs_uvicorn(monkeypatch):
    import server

    run = MagicMock()
    monkeypatch.setattr(server.uvicorn, "run", run)
    monkeypatch.setattr(config, "STORAGE_DRIVER", "postgres")
    monkeypatch.setattr(config, "DATABASE_URL", "postgresql://engram@db/engram")

    server.main()

    kwargs = run.call_args.kwargs
    assert kwargs["port"] == config.API_PORT
    assert kwargs["timeout_graceful_shutdown"] == config.SHUTDOWN_GRACE_SECONDS


def test_gateway_main_exits_on_bad_config(monkeypatch):
    import server

    monkeypatch.setattr(config, "STORAGE_DRIVER", "sqlite")
    with pytest.raises(SystemExit):
        server.main()
