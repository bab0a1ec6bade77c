"""Storage package.

The file-backed adapter lives in ``src.data.disk_storage`` and is imported
from there directly; it depends on the model types it serializes.
"""

from .storage import EngineStorage, InMemoryStorage, StorageError

__all__ = [
    "EngineStorage",
    "InMemoryStorage",
    "StorageError",
]
