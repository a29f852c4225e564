"""Document store protocol consumed by the credential store.

The DocumentStore protocol is the seam between vcstore and an encrypted
document store (EDV) client. Implementations handle encryption, transport
and index enforcement; vcstore only relies on the operations below and on
the errors they raise.

Documents are plain dicts::

    {"id": <store handle>, "sequence": <int>, "content": {...}, "meta": {...}}
"""

from __future__ import annotations

from typing import Any, Protocol, runtime_checkable


@runtime_checkable
class DocumentStore(Protocol):
    """Storage backend protocol for the credential store.

    ``sequence`` is the optimistic concurrency version. Writers pass the
    document exactly as last read; the store rejects the write with
    ``InvalidStateError`` if the stored sequence has moved on, and bumps
    the sequence on success.
    """

    def ensure_index(self, attribute: str | list[str], *, unique: bool = False) -> None:
        """Declare that ``find`` may filter on *attribute* (a path or list of paths).

        Idempotent. ``unique`` enforces one document per indexed value.
        """
        ...

    async def find(
        self,
        equals: list[dict[str, Any]],
        *,
        limit: int | None = None,
        count: bool = False,
    ) -> dict[str, Any]:
        """Return ``{"documents": [...]}`` matching any term in *equals*.

        Each term is a conjunction of ``path: value`` equality constraints.
        Array-valued fields match when they contain the value. With
        ``count=True`` return ``{"count": n}`` instead.
        """
        ...

    async def get(self, doc_id: str) -> dict[str, Any]:
        """Get a document by store handle. Raises NotFoundError if absent."""
        ...

    async def insert(self, doc: dict[str, Any]) -> dict[str, Any]:
        """Create a document with ``sequence=0``.

        Raises DuplicateError if the handle or a unique-indexed value
        already exists.
        """
        ...

    async def update(self, doc: dict[str, Any]) -> dict[str, Any]:
        """Replace a document. Raises InvalidStateError if stale or missing."""
        ...

    async def delete(self, doc: dict[str, Any]) -> bool:
        """Delete a document.

        Raises NotFoundError if absent, InvalidStateError if *doc* carries
        a stale sequence.
        """
        ...

    async def generate_id(self) -> str:
        """Return a fresh opaque store handle."""
        ...
