"""Backend registry with lazy loading.

Usage:
    from jobstream.backends import get_backend

    backend = get_backend(settings.backend, conn)
    rows = await backend.fetch_active_jobs()
"""

from __future__ import annotations

import importlib
import sqlite3

from jobstream.backends.base import BackendError, JobBackend, Subscription
from jobstream.core.config import BackendConfig

__all__ = ["BackendError", "JobBackend", "Subscription", "available_backends", "get_backend"]

# Lazy registry: maps backend name → (module_path, class_name)
_REGISTRY: dict[str, tuple[str, str]] = {
    "memory": ("jobstream.backends.memory", "MemoryBackend"),
    "rest": ("jobstream.backends.rest", "RestBackend"),
}


def get_backend(config: BackendConfig, conn: sqlite3.Connection | None = None) -> JobBackend:
    """Instantiate the backend named in config.

    ``conn`` lets the memory backend keep its state in the local store
    between runs; other backends ignore it.

    Raises:
        ValueError: If the backend name is unknown or required settings are missing.
        FileNotFoundError: If a memory backend seed file does not exist.
    """
    if config.name not in _REGISTRY:
        valid = ", ".join(sorted(_REGISTRY))
        msg = f"Unknown backend '{config.name}'. Available: {valid}"
        raise ValueError(msg)

    module_path, class_name = _REGISTRY[config.name]
    module = importlib.import_module(module_path)
    cls = getattr(module, class_name)

    if config.name == "memory":
        if config.seed_path:
            return cls.from_seed_file(  # type: ignore[no-any-return]
                config.seed_path, conn=conn, poll_interval_s=config.poll_interval_s,
            )
        return cls(conn=conn, poll_interval_s=config.poll_interval_s)  # type: ignore[no-any-return]

    api_key = config.api_key()
    if api_key is None:
        msg = f"Backend '{config.name}' needs an API key in ${config.api_key_env}"
        raise ValueError(msg)
    return cls(  # type: ignore[no-any-return]
        config.url,
        api_key,
        timeout_s=config.timeout_s,
        poll_interval_s=config.poll_interval_s,
    )


def available_backends() -> list[str]:
    """Return sorted list of registered backend names."""
    return sorted(_REGISTRY)
