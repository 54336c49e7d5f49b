from __future__ import annotations

from collections.abc import Generator

import pytest
from fastapi.testclient import TestClient

from keygen.api.deps import get_keys
from keygen.core.config import settings
from keygen.generator.segment import SegmentStore
from keygen.main import app
from keygen.registry.memory_registry import MemoryRegistryCenter, reset_stores
from keygen.registry.pool import RegistrySessionPool
from keygen.services import properties_service
from keygen.services.key_service import KeyService

SERVER_LIST = "127.0.0.1:2181"


@pytest.fixture(autouse=True)
def memory_registry() -> Generator[None, None, None]:
    # Every test starts with an empty in-process registry.
    reset_stores()
    yield
    reset_stores()


@pytest.fixture(scope="function")
def session_pool() -> Generator[RegistrySessionPool, None, None]:
    # "zookeeper" is served by the in-process registry so the default type works offline.
    pool = RegistrySessionPool(
        timeout=1.0,
        center_types={
            "zookeeper": MemoryRegistryCenter,
            "memory": MemoryRegistryCenter,
        },
    )
    yield pool
    pool.close()


@pytest.fixture(scope="function")
def segment_store() -> SegmentStore:
    return SegmentStore(max_retries=16, retry_wait_ms=0)


@pytest.fixture(scope="function")
def client(session_pool, monkeypatch) -> Generator[TestClient, None, None]:
    monkeypatch.setattr(settings, "LEAF_SERVER_LIST", SERVER_LIST)
    monkeypatch.setattr(settings, "LEAF_REGISTRY_CENTER_TYPE", "memory")
    monkeypatch.setattr(settings, "LEAF_DIGEST", "")
    monkeypatch.setattr(settings, "LEAF_INITIAL_VALUE", 0)
    monkeypatch.setattr(settings, "LEAF_STEP", 3)
    monkeypatch.setattr(settings, "NACOS_ENABLED", False)
    properties_service.refresh_overrides()

    service = KeyService(session_pool)
    app.dependency_overrides[get_keys] = lambda: service
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()
    service.close()
    properties_service.refresh_overrides()
