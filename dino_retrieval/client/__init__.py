"""Client for the remote DINOv3 retrieval Space."""

from .connection import ConnectionManager, ConnectionState
from .operations import (
    RemoteBackend,
    load_resources,
    refresh_examples,
    search_images,
)

__all__ = [
    "ConnectionManager",
    "ConnectionState",
    "RemoteBackend",
    "load_resources",
    "refresh_examples",
    "search_images",
]
