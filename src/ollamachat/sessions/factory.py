"""Factory for creating session store backends."""

from .base import SessionStore
from .models import StorageConfig


def create_session_store(config: StorageConfig | None = None) -> SessionStore:
    """Create a session store backend.

    Args:
        config: Storage configuration; defaults to a file store under ./data

    Returns:
        SessionStore instance (call ``connect()`` before use)

    Raises:
        ValueError: If the backend type is not supported
    """
    config = config or StorageConfig()
    backend = config.type.lower()

    if backend == "file":
        from .file_store import FileSessionStore
        return FileSessionStore(base_path=config.base_path)

    elif backend == "memory":
        from .in_memory import InMemorySessionStore
        return InMemorySessionStore()

    raise ValueError(
        f"Unsupported storage type: {config.type}. "
        f"Supported types: file, memory"
    )
