"""Create-or-update of single credential documents.

Upserts are "optimistic new-first": the credential is assumed to be new
and inserted with ``sequence=0``. A conflict means another writer got
there first (or moved the document on), so the current document is
re-fetched by application id, passed through a mutator and written back
under the store's sequence check. If the document vanished in between, the
next attempt inserts again. Attempts are bounded by ``max_retries``.
"""

from __future__ import annotations

import copy
from collections.abc import Callable
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any, Literal

from vcstore.config import DEFAULT_MAX_RETRIES
from vcstore.errors import (
    InvalidArgumentError,
    RetryExhaustedError,
    error_details,
    is_conflict_error,
)
from vcstore.observability.logging import get_logger

if TYPE_CHECKING:
    from vcstore.storage.protocol import DocumentStore

log = get_logger(__name__)

Mutator = Callable[[dict[str, Any], dict[str, Any], dict[str, Any]], dict[str, Any]]


def utc_now() -> str:
    return datetime.now(UTC).isoformat()


def get_issuer(credential: dict[str, Any]) -> str:
    """Extract the issuer id from a credential.

    Raises:
        InvalidArgumentError: If ``issuer`` is missing, or is neither a
            string nor an object with a string ``id``.
    """
    issuer = credential.get("issuer")
    if not issuer:
        raise InvalidArgumentError("A verifiable credential MUST have an issuer property.")
    if isinstance(issuer, str):
        return issuer
    if isinstance(issuer, dict) and isinstance(issuer.get("id"), str):
        return issuer["id"]
    raise InvalidArgumentError(
        "The value of the issuer property MUST be either a URI "
        "or an object containing an id property."
    )


def _union(existing: list[str], added: list[str]) -> list[str]:
    merged = list(existing)
    for item in added:
        if item not in merged:
            merged.append(item)
    return merged


def merge_document(
    doc: dict[str, Any], credential: dict[str, Any], meta: dict[str, Any]
) -> dict[str, Any]:
    """Default upsert mutator.

    - ``content`` is kept as stored; a differing credential is logged as a
      conflict, not written.
    - ``meta`` is merged over the stored meta.
    - ``bundledBy`` is the union of both sets.
    - ``bundle`` stays true once set.
    - ``dependent`` stays false once any writer made the document
      independent. A stored document without the key was written on its
      own, so it stays independent when a bundle picks it up.
    """
    if doc.get("content") != credential:
        log.warning(
            "upsert_content_conflict",
            credential_id=credential.get("id"),
            doc_id=doc.get("id"),
        )

    existing: dict[str, Any] = doc.get("meta") or {}
    merged = {**existing, **meta}

    if "bundledBy" in existing or "bundledBy" in meta:
        merged["bundledBy"] = _union(existing.get("bundledBy") or [], meta.get("bundledBy") or [])
    if existing.get("bundle") or meta.get("bundle"):
        merged["bundle"] = True
    if "dependent" in existing or "dependent" in meta:
        merged["dependent"] = (
            existing.get("dependent", False) is not False and meta.get("dependent") is not False
        )
    if "created" in existing:
        merged["created"] = existing["created"]

    return {**doc, "meta": merged}


def overwrite_document(
    doc: dict[str, Any], credential: dict[str, Any], meta: dict[str, Any]
) -> dict[str, Any]:
    """Mutator selected by ``mutator=False``: replace content and meta outright."""
    replaced = dict(meta)
    created = (doc.get("meta") or {}).get("created")
    if created is not None:
        replaced.setdefault("created", created)
    return {**doc, "content": credential, "meta": replaced}


class UpsertEngine:
    """Writes single credential documents against a DocumentStore."""

    def __init__(self, store: DocumentStore, *, max_retries: int = DEFAULT_MAX_RETRIES) -> None:
        self._store = store
        self._max_retries = max_retries

    async def find_by_content_id(self, content_id: str) -> dict[str, Any] | None:
        """Return the document whose ``content.id`` is *content_id*, or None."""
        result = await self._store.find([{"content.id": content_id}], limit=1)
        documents = result.get("documents") or []
        return documents[0] if documents else None

    def prepare_meta(self, credential: dict[str, Any], meta: dict[str, Any] | None) -> dict[str, Any]:
        """Copy *meta* and default ``issuer`` from the credential."""
        prepared = dict(meta or {})
        if "issuer" not in prepared:
            prepared["issuer"] = get_issuer(credential)
        return prepared

    async def _create(self, credential: dict[str, Any], meta: dict[str, Any]) -> dict[str, Any]:
        now = utc_now()
        doc = {
            "id": await self._store.generate_id(),
            "sequence": 0,
            "content": credential,
            "meta": {**meta, "created": meta.get("created", now), "updated": now},
        }
        return await self._store.insert(doc)

    async def insert(
        self, credential: dict[str, Any], meta: dict[str, Any] | None = None
    ) -> dict[str, Any]:
        """Create a new document. A DuplicateError propagates to the caller."""
        return await self._create(credential, self.prepare_meta(credential, meta))

    async def upsert(
        self,
        credential: dict[str, Any],
        meta: dict[str, Any] | None = None,
        mutator: Mutator | Literal[False] | None = None,
    ) -> dict[str, Any]:
        """Create or update the document for ``credential["id"]``.

        Args:
            credential: Credential with a string ``id``.
            meta: Metadata to write; ``issuer`` defaults from the credential.
            mutator: ``None`` for :func:`merge_document`, ``False`` for
                :func:`overwrite_document`, or a callable
                ``(doc, credential, meta) -> doc``.

        Returns:
            The stored document.

        Raises:
            InvalidArgumentError: If ``credential.id`` is not a string, the
                issuer is malformed, or the mutator is not callable.
            RetryExhaustedError: If every attempt hit a conflict.
        """
        content_id = credential.get("id")
        if not isinstance(content_id, str):
            raise InvalidArgumentError('"credential.id" must be a string.')
        prepared = self.prepare_meta(credential, meta)

        if mutator is None:
            mutate: Mutator = merge_document
        elif mutator is False:
            mutate = overwrite_document
        elif callable(mutator):
            mutate = mutator
        else:
            raise InvalidArgumentError('"mutator" must be a function or False.')

        doc: dict[str, Any] | None = None
        last_error: Exception | None = None
        for attempt in range(1, self._max_retries + 1):
            try:
                if doc is None:
                    return await self._create(credential, prepared)
                updated = mutate(copy.deepcopy(doc), credential, prepared)
                updated["meta"] = {**(updated.get("meta") or {}), "updated": utc_now()}
                return await self._store.update(updated)
            except Exception as e:
                if not is_conflict_error(e):
                    raise
                last_error = e
                log.debug(
                    "upsert_conflict_retry",
                    credential_id=content_id,
                    attempt=attempt,
                    **error_details(e),
                )
            # Not found means it was deleted since the conflict: create again
            doc = await self.find_by_content_id(content_id)

        log.warning("upsert_retries_exhausted", credential_id=content_id, attempts=self._max_retries)
        raise RetryExhaustedError(
            operation="upsert", attempts=self._max_retries, last_error=last_error
        )
