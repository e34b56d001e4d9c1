"""
Shared test configuration and fixtures.

Provides an in-memory fake remote store whose failures can be scripted per
endpoint, plus fixtures wiring it into the offline sync components.
"""

import logging
import tempfile
from collections.abc import Awaitable, Callable
from pathlib import Path

import pytest

from offline_sync import (
    ConnectivityMonitor,
    HttpMethod,
    LocalCacheStore,
    MemoryMedium,
    OfflineSyncService,
    OperationLog,
    QueuedOperation,
    RemoteRejectedError,
    RemoteResponse,
    RemoteStore,
    StatusTracker,
    SyncConfig,
    SyncEngine,
    TransportError,
)

logger = logging.getLogger(__name__)


class FakeRemoteStore(RemoteStore):
    """
    In-memory remote store for testing without a server.

    Applies mutations last-write-wins and records the order in which they
    were applied. Transient failures and rejections are scripted per endpoint.
    """

    def __init__(self):
        self.entities: dict[str, dict] = {}
        self.applied: list[tuple[str, str, dict | None]] = []
        self.attempted: list[str] = []
        self.closed = False
        self.on_send: Callable[[QueuedOperation], Awaitable[None]] | None = None
        self._transient: dict[str, int] = {}
        self._rejected: dict[str, int] = {}
        self._next_id = 1

    def fail_transiently(self, endpoint: str, times: int = 1) -> None:
        """Make the next `times` calls to endpoint fail with a 503."""
        self._transient[endpoint] = times

    def reject(self, endpoint: str, status: int = 404) -> None:
        """Make every call to endpoint be rejected."""
        self._rejected[endpoint] = status

    async def send(self, operation: QueuedOperation) -> RemoteResponse:
        self.attempted.append(operation.operation_id)
        if self.on_send is not None:
            await self.on_send(operation)

        endpoint = operation.endpoint
        if self._transient.get(endpoint, 0) > 0:
            self._transient[endpoint] -= 1
            raise TransportError(endpoint, status=503)
        if endpoint in self._rejected:
            raise RemoteRejectedError(endpoint, status=self._rejected[endpoint], reason="Not found")

        self.applied.append((operation.method.value, endpoint, operation.payload))

        entity_id = operation.target_id
        if operation.method == HttpMethod.DELETE:
            self.entities.pop(entity_id, None)
            return RemoteResponse(status=200)

        if entity_id is None:
            entity_id = f"remote-{self._next_id}"
            self._next_id += 1

        entity = {**self.entities.get(entity_id, {}), **(operation.payload or {}), "id": entity_id}
        self.entities[entity_id] = entity
        return RemoteResponse(status=200, entity=dict(entity))

    async def close(self) -> None:
        self.closed = True


@pytest.fixture
def temp_dir():
    """Create a temporary directory for tests."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def medium():
    """In-memory storage medium."""
    return MemoryMedium()


@pytest.fixture
def remote():
    """Scriptable fake remote store."""
    return FakeRemoteStore()


@pytest.fixture
def cache(medium):
    return LocalCacheStore(medium)


@pytest.fixture
def oplog(medium):
    return OperationLog(medium)


@pytest.fixture
def monitor():
    """Connectivity monitor that starts online and never probes the network."""

    async def probe() -> bool:
        return True

    return ConnectivityMonitor(online=True, probe=probe)


@pytest.fixture
def config():
    return SyncConfig(storage_backend="memory", initial_backoff_s=0, max_backoff_s=0)


@pytest.fixture
def engine(cache, oplog, remote, monitor, config):
    """Sync engine wired to the in-memory components."""
    engine = SyncEngine(
        cache,
        oplog,
        remote,
        tracker=StatusTracker(cache, oplog),
        is_offline=monitor.is_offline,
        config=config,
    )
    monitor.bind_drain(engine.drain)
    return engine


@pytest.fixture
async def service(medium, remote, monitor, config):
    """Offline sync service over the in-memory medium and fake remote."""
    service = OfflineSyncService(medium, remote, monitor=monitor, config=config)
    yield service
    await service.close()
