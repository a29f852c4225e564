"""In-memory DocumentStore implementation.

Mirrors the behaviour of a remote EDV closely enough to exercise the
credential store: sequence-checked writes, unique index enforcement,
array-membership equality matching, and rejection of queries on attributes
that were never indexed. Every call yields to the event loop once so that
concurrent tasks interleave the way they would over a network.
"""

from __future__ import annotations

import asyncio
import copy
import secrets
from typing import Any

from vcstore.errors import DuplicateError, InvalidStateError, NotFoundError

_MISSING = object()


def get_path(doc: dict[str, Any], path: str) -> Any:
    """Resolve a dotted *path* (``"meta.bundledBy"``) inside *doc*.

    Returns a private sentinel when any segment is absent so that ``None``
    values remain matchable.
    """
    value: Any = doc
    for segment in path.split("."):
        if not isinstance(value, dict) or segment not in value:
            return _MISSING
        value = value[segment]
    return value


def _matches(doc: dict[str, Any], term: dict[str, Any]) -> bool:
    for path, expected in term.items():
        value = get_path(doc, path)
        if value is _MISSING:
            return False
        if isinstance(value, list):
            if expected not in value:
                return False
        elif value != expected:
            return False
    return True


def _index_values(doc: dict[str, Any], path: str) -> list[Any]:
    value = get_path(doc, path)
    if value is _MISSING or value is None:
        return []
    if isinstance(value, list):
        return value
    return [value]


class InMemoryDocumentStore:
    """Dict-backed document store.

    Documents are deep-copied on the way in and out, so callers never
    share state with the store or with each other.
    """

    def __init__(self) -> None:
        self._docs: dict[str, dict[str, Any]] = {}
        self._indexes: dict[str, bool] = {}

    # -- Indexes ---------------------------------------------------------------

    def ensure_index(self, attribute: str | list[str], *, unique: bool = False) -> None:
        attributes = [attribute] if isinstance(attribute, str) else list(attribute)
        if not attributes or not all(isinstance(a, str) and a for a in attributes):
            raise ValueError(f"Invalid index attribute: {attribute!r}")
        for name in attributes:
            self._indexes[name] = self._indexes.get(name, False) or unique

    def indexed_attributes(self) -> dict[str, bool]:
        """Return indexed attributes mapped to their ``unique`` flag."""
        return dict(self._indexes)

    def _check_unique(self, doc: dict[str, Any]) -> None:
        for path, unique in self._indexes.items():
            if not unique:
                continue
            values = _index_values(doc, path)
            if not values:
                continue
            for other_id, other in self._docs.items():
                if other_id == doc["id"]:
                    continue
                if any(v in _index_values(other, path) for v in values):
                    raise DuplicateError(f"Duplicate value for unique attribute '{path}'")

    # -- Reads -----------------------------------------------------------------

    async def find(
        self,
        equals: list[dict[str, Any]],
        *,
        limit: int | None = None,
        count: bool = False,
    ) -> dict[str, Any]:
        await asyncio.sleep(0)
        if isinstance(equals, dict):
            equals = [equals]
        for term in equals:
            unknown = [path for path in term if path not in self._indexes]
            if unknown:
                raise ValueError(f"Query on unindexed attribute(s): {', '.join(unknown)}")

        matches = [doc for doc in self._docs.values() if any(_matches(doc, t) for t in equals)]
        if limit is not None:
            matches = matches[:limit]
        if count:
            return {"count": len(matches)}
        return {"documents": copy.deepcopy(matches)}

    async def get(self, doc_id: str) -> dict[str, Any]:
        await asyncio.sleep(0)
        doc = self._docs.get(doc_id)
        if doc is None:
            raise NotFoundError(doc_id=doc_id)
        return copy.deepcopy(doc)

    # -- Writes ----------------------------------------------------------------

    async def insert(self, doc: dict[str, Any]) -> dict[str, Any]:
        await asyncio.sleep(0)
        doc_id = doc.get("id")
        if not isinstance(doc_id, str):
            raise ValueError('"doc.id" must be a string.')
        if doc.get("sequence", 0) != 0:
            raise InvalidStateError(f"New document '{doc_id}' must have sequence 0")
        if doc_id in self._docs:
            raise DuplicateError(f"Document '{doc_id}' already exists")
        stored = copy.deepcopy(doc)
        stored["sequence"] = 0
        self._check_unique(stored)
        self._docs[doc_id] = stored
        return copy.deepcopy(stored)

    async def update(self, doc: dict[str, Any]) -> dict[str, Any]:
        await asyncio.sleep(0)
        doc_id = doc.get("id")
        existing = self._docs.get(doc_id) if isinstance(doc_id, str) else None
        if existing is None:
            raise InvalidStateError(f"Document '{doc_id}' does not exist")
        if existing["sequence"] != doc.get("sequence"):
            raise InvalidStateError(
                f"Stale sequence for '{doc_id}': "
                f"got {doc.get('sequence')}, stored {existing['sequence']}"
            )
        stored = copy.deepcopy(doc)
        stored["sequence"] = existing["sequence"] + 1
        self._check_unique(stored)
        self._docs[doc_id] = stored
        return copy.deepcopy(stored)

    async def delete(self, doc: dict[str, Any]) -> bool:
        await asyncio.sleep(0)
        doc_id = doc.get("id")
        existing = self._docs.get(doc_id) if isinstance(doc_id, str) else None
        if existing is None:
            raise NotFoundError(doc_id=str(doc_id))
        if "sequence" in doc and existing["sequence"] != doc["sequence"]:
            raise InvalidStateError(f"Stale sequence for '{doc_id}'")
        del self._docs[doc_id]
        return True

    async def generate_id(self) -> str:
        await asyncio.sleep(0)
        return f"z{secrets.token_hex(16)}"

    # -- Inspection ------------------------------------------------------------

    def document_count(self) -> int:
        """Return total number of stored documents."""
        return len(self._docs)

    def all_documents(self) -> list[dict[str, Any]]:
        """Return deep copies of all stored documents."""
        return copy.deepcopy(list(self._docs.values()))
