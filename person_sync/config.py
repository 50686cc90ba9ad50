"""
Configuration for the person sync client.

Defaults match the reference mobile client: gRPC on localhost:50051,
REST under http://localhost:3000/api/person, batches of 50 (100 for REST),
five concurrent batches, and a 30 second auto-sync timer that is off
unless explicitly enabled.

Values can come from the environment (PERSON_SYNC_* variables) or from
a YAML settings file:

```yaml
sync:
  transport: rest
  rest_base_url: "http://sync.example.com/api/person"
  batch_size: 25
  max_concurrency: 3
  auto_sync_enabled: true
```
"""

from __future__ import annotations

import os
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any

import yaml

TRANSPORTS = ("grpc", "rest")


@dataclass
class SyncConfig:
    """Configuration for the sync orchestrator and its collaborators."""

    # Remote endpoints
    transport: str = "grpc"
    grpc_target: str = "localhost:50051"
    rest_base_url: str = "http://localhost:3000/api/person"
    request_timeout: float = 30.0

    # Local store
    db_path: str = "people.db"

    # Batching
    batch_size: int = 50
    rest_batch_size: int = 100
    max_concurrency: int = 5
    page_size: int = 20

    # Scheduling
    auto_sync_enabled: bool = False
    auto_sync_interval: float = 30.0  # seconds

    # Network detection
    connectivity_host: str = "localhost"
    connectivity_timeout: float = 5.0
    connectivity_poll_interval: float = 10.0

    def __post_init__(self) -> None:
        if self.transport not in TRANSPORTS:
            raise ValueError(f"transport must be one of {TRANSPORTS}, got {self.transport!r}")
        if self.batch_size <= 0 or self.rest_batch_size <= 0:
            raise ValueError("batch sizes must be positive")
        if self.max_concurrency <= 0:
            raise ValueError("max_concurrency must be positive")
        if self.page_size <= 0:
            raise ValueError("page_size must be positive")

    @property
    def effective_batch_size(self) -> int:
        """Batch size for the configured transport."""
        return self.rest_batch_size if self.transport == "rest" else self.batch_size

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> SyncConfig:
        """Create config from a mapping, ignoring unknown keys."""
        known = {f.name: f for f in fields(cls)}
        kwargs: dict[str, Any] = {}
        for key, value in data.items():
            if key in known and value is not None:
                kwargs[key] = _coerce(value, type(getattr(cls, key)))
        return cls(**kwargs)

    @classmethod
    def from_env(cls) -> SyncConfig:
        """Create config from PERSON_SYNC_* environment variables."""
        data: dict[str, Any] = {}
        for f in fields(cls):
            value = os.environ.get(f"PERSON_SYNC_{f.name.upper()}")
            if value is not None:
                data[f.name] = value
        return cls.from_dict(data)

    @classmethod
    def from_file(cls, path: Path | str) -> SyncConfig:
        """Create config from the `sync` section of a YAML file.

        A missing file yields the defaults.
        """
        path = Path(path)
        if not path.exists():
            return cls()
        with open(path, encoding="utf-8") as f:
            loaded = yaml.safe_load(f) or {}
        return cls.from_dict(loaded.get("sync", {}) or {})


def _coerce(value: Any, target: type) -> Any:
    """Convert env/YAML values to the field's default type."""
    if target is bool:
        if isinstance(value, bool):
            return value
        return str(value).strip().lower() in ("1", "true", "yes", "on")
    if target is int:
        return int(value)
    if target is float:
        return float(value)
    return str(value)
