"""
Configuration for offline sync.

Settings can be given directly, read from environment variables, or loaded
from the ``offline_sync`` section of a YAML settings file:

```yaml
offline_sync:
  storage_backend: file
  storage_path: ~/.offline_sync
  base_url: https://notes.example.com
  max_attempts: 10
  concurrency: 1
  poll_interval_s: 30
```
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any

import yaml

ENV_PREFIX = "OFFLINE_SYNC_"

STORAGE_BACKENDS = ("memory", "file", "sqlite")

# Second path segment of the endpoint: /notebooks/<id>, /api/notebooks/<id>/...
DEFAULT_ENTITY_PATTERN = r"^(?:/api)?/(?!api/)[^/]+/([^/?#]+)"


@dataclass
class SyncConfig:
    """Configuration for the offline sync service.

    Environment Variables:
        OFFLINE_SYNC_STORAGE_BACKEND: memory, file or sqlite (default: file)
        OFFLINE_SYNC_STORAGE_PATH: Directory or database file for local state
        OFFLINE_SYNC_STORAGE_QUOTA_BYTES: Byte quota for the local medium
        OFFLINE_SYNC_BASE_URL: Base URL of the remote store
        OFFLINE_SYNC_REQUEST_TIMEOUT_S: Per-request timeout in seconds
        OFFLINE_SYNC_MAX_ATTEMPTS: Give up on an operation after N failures
        OFFLINE_SYNC_CONCURRENCY: Entities replayed in parallel during a drain
        OFFLINE_SYNC_POLL_INTERVAL_S: Connectivity polling interval
        OFFLINE_SYNC_PROBE_HOST: Host resolved to detect connectivity
        OFFLINE_SYNC_STRUCTURED_LOGGING: "true" to log JSON lines to stdout
        OFFLINE_SYNC_LOG_LEVEL: Level for the package logger (default: INFO)
    """

    # Local persistence
    storage_backend: str = "file"
    storage_path: Path = field(default_factory=lambda: Path.home() / ".offline_sync")
    storage_quota_bytes: int | None = None
    entities_key: str = "offline-entities"
    operations_key: str = "offline-operations"

    # Remote store
    base_url: str = "http://localhost:3000"
    request_timeout_s: float = 30.0
    headers: dict[str, str] = field(default_factory=dict)

    # Replay policy
    max_attempts: int | None = None
    concurrency: int = 1
    sync_on_enqueue: bool = True
    entity_pattern: str = DEFAULT_ENTITY_PATTERN
    entity_endpoint: str = "/api/notebooks/{id}"

    # Backoff between drain passes
    initial_backoff_s: float = 1.0
    max_backoff_s: float = 60.0
    backoff_multiplier: float = 2.0

    # Connectivity detection
    poll_interval_s: float = 30.0
    probe_host: str = "dns.google"
    probe_timeout_s: float = 5.0

    # Logging
    structured_logging: bool = False
    log_level: str = "INFO"

    def __post_init__(self) -> None:
        self.storage_path = Path(self.storage_path).expanduser()
        if self.storage_backend not in STORAGE_BACKENDS:
            raise ValueError(
                f"storage_backend must be one of {', '.join(STORAGE_BACKENDS)}, "
                f"got {self.storage_backend!r}"
            )
        if self.concurrency < 1:
            raise ValueError("concurrency must be at least 1")
        if self.max_attempts is not None and self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1 when set")

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> SyncConfig:
        """Create config from a mapping, ignoring unknown keys."""
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in data.items() if k in known})

    @classmethod
    def from_env(cls) -> SyncConfig:
        """Create config from OFFLINE_SYNC_* environment variables."""
        values: dict[str, Any] = {}

        backend = os.environ.get(f"{ENV_PREFIX}STORAGE_BACKEND")
        if backend:
            values["storage_backend"] = backend
        path = os.environ.get(f"{ENV_PREFIX}STORAGE_PATH")
        if path:
            values["storage_path"] = Path(path)
        quota = os.environ.get(f"{ENV_PREFIX}STORAGE_QUOTA_BYTES")
        if quota:
            values["storage_quota_bytes"] = int(quota)
        base_url = os.environ.get(f"{ENV_PREFIX}BASE_URL")
        if base_url:
            values["base_url"] = base_url
        timeout = os.environ.get(f"{ENV_PREFIX}REQUEST_TIMEOUT_S")
        if timeout:
            values["request_timeout_s"] = float(timeout)
        max_attempts = os.environ.get(f"{ENV_PREFIX}MAX_ATTEMPTS")
        if max_attempts:
            values["max_attempts"] = int(max_attempts)
        concurrency = os.environ.get(f"{ENV_PREFIX}CONCURRENCY")
        if concurrency:
            values["concurrency"] = int(concurrency)
        poll = os.environ.get(f"{ENV_PREFIX}POLL_INTERVAL_S")
        if poll:
            values["poll_interval_s"] = float(poll)
        probe_host = os.environ.get(f"{ENV_PREFIX}PROBE_HOST")
        if probe_host:
            values["probe_host"] = probe_host
        structured = os.environ.get(f"{ENV_PREFIX}STRUCTURED_LOGGING")
        if structured:
            values["structured_logging"] = structured.lower() in ("1", "true", "yes")
        log_level = os.environ.get(f"{ENV_PREFIX}LOG_LEVEL")
        if log_level:
            values["log_level"] = log_level

        return cls(**values)

    @classmethod
    def from_yaml(cls, path: Path) -> SyncConfig:
        """Load config from the ``offline_sync`` section of a YAML file.

        A missing file or section yields the defaults.
        """
        path = Path(path).expanduser()
        if not path.exists():
            return cls()

        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}

        return cls.from_dict(data.get("offline_sync", {}) or {})
