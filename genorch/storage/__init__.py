"""Object store access for genorch artifacts and results."""

from .client import ObjectStoreClient, StorageError

__all__ = ["ObjectStoreClient", "StorageError"]
