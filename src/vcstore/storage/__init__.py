"""Document store seam: the protocol vcstore consumes and an in-memory backend."""

from vcstore.storage.memory import InMemoryDocumentStore, get_path
from vcstore.storage.protocol import DocumentStore

__all__ = [
    "DocumentStore",
    "InMemoryDocumentStore",
    "get_path",
]
