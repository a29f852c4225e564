"""Verifiable credential store facade.

Each VerifiableCredentialStore is bound to one document store and makes
sure the indexes it queries on exist. It validates caller input, derives
default metadata, and delegates to the upsert and bundle engines.
"""

from __future__ import annotations

import asyncio
import inspect
from typing import TYPE_CHECKING, Any, Literal

from vcstore.bundles import BundleEngine
from vcstore.config import StoreConfig
from vcstore.errors import (
    ConstraintError,
    InvalidArgumentError,
    NotFoundError,
    RetryExhaustedError,
    error_details,
    is_conflict_error,
    is_not_found_error,
)
from vcstore.models import BundleResult, DeleteResult, parse_bundle_contents
from vcstore.observability.logging import get_logger, store_context
from vcstore.query import build_find_query, convert_vpr_query
from vcstore.upsert import UpsertEngine

if TYPE_CHECKING:
    from collections.abc import Callable

    from vcstore.models import BundleEntry
    from vcstore.storage.protocol import DocumentStore
    from vcstore.upsert import Mutator

log = get_logger(__name__)

FIND_OPTIONS = frozenset({"limit", "count"})


def _require_object(value: Any, name: str) -> dict[str, Any]:
    if not isinstance(value, dict):
        raise InvalidArgumentError(f'"{name}" must be an object.')
    return value


class VerifiableCredentialStore:
    """Stores verifiable credentials, and bundles of them, in a document store.

    Attributes:
        store: The underlying document store.
        config: Concurrency and retry settings.
    """

    def __init__(self, store: DocumentStore, *, config: StoreConfig | None = None) -> None:
        """Bind to *store* and ensure the indexes used for queries exist.

        Args:
            store: Document store to keep credentials in.
            config: Store settings. Defaults to :class:`StoreConfig` defaults.
        """
        self.store = store
        self.config = config or StoreConfig()

        store.ensure_index(["meta.issuer", "content.type", "meta.displayable"])
        store.ensure_index("content.id", unique=True)
        store.ensure_index("meta.bundledBy")

        self._upserts = UpsertEngine(store, max_retries=self.config.max_retries)
        self._bundles = BundleEngine(store, self._upserts, concurrency=self.config.concurrency)

    # -------------------------------------------------------------------------
    # Reading
    # -------------------------------------------------------------------------

    async def get(self, *, id: str) -> dict[str, Any]:  # noqa: A002
        """Get the document for the credential with application id *id*.

        Raises:
            NotFoundError: If no such credential is stored.
        """
        if not isinstance(id, str):
            raise InvalidArgumentError('"id" must be a string.')
        doc = await self._upserts.find_by_content_id(id)
        if doc is None:
            raise NotFoundError(doc_id=id, context="verifiable credential")
        return doc

    async def find(
        self,
        *,
        query: dict[str, Any] | list[dict[str, Any]] | None = None,
        options: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        """Find credential documents matching a local query.

        Args:
            query: An object (all keys must match) or a list of objects
                (any may match) over ``bundledBy``, ``displayable``, ``id``,
                ``issuer`` and ``type``. None matches everything.
            options: ``limit`` and/or ``count``.

        Returns:
            ``{"documents": [...]}``, or ``{"count": n}`` when counting.
        """
        options = dict(options or {})
        unknown = sorted(set(options) - FIND_OPTIONS)
        if unknown:
            raise InvalidArgumentError(f'Unsupported "options": {", ".join(unknown)}')
        equals = build_find_query(query)
        return await self.store.find(
            equals, limit=options.get("limit"), count=bool(options.get("count", False))
        )

    def convert_vpr_query(self, *, vpr_query: dict[str, Any]) -> dict[str, Any]:
        """Convert a presentation request query into local queries for :meth:`find`."""
        return convert_vpr_query(vpr_query)

    async def match(
        self,
        *,
        query: dict[str, Any],
        engine: Callable[[dict[str, Any]], Any] | None = None,
    ) -> list[Any]:
        """Return the stored credentials satisfying a presentation request query.

        Args:
            query: A ``QueryByExample`` query, as accepted by
                :meth:`convert_vpr_query`.
            engine: Applied to each matching credential. Awaitable results
                are awaited. Defaults to returning the credential itself.

        Returns:
            One ``engine`` result per matching credential, in store order.

        Raises:
            NotSupportedError: If the query type or shape is not supported.
        """
        converted = convert_vpr_query(query)
        result = await self.find(query=converted["queries"])
        credentials = [doc["content"] for doc in result["documents"]]
        if engine is None:
            return credentials

        matched = []
        for credential in credentials:
            value = engine(credential)
            if inspect.isawaitable(value):
                value = await value
            matched.append(value)
        return matched

    async def get_bundle(
        self,
        *,
        id: str | None = None,  # noqa: A002
        doc: dict[str, Any] | None = None,
    ) -> BundleResult:
        """Load the bundle closure of a credential.

        Args:
            id: Application id of the bundling credential.
            doc: The bundling credential's document, if already loaded.

        Raises:
            NotFoundError: If *doc* is not given and *id* is not stored.
        """
        with store_context(credential_id=id, doc_id=doc["id"] if doc else None):
            if doc is None:
                doc = await self.get(id=id)  # type: ignore[arg-type]
            return await self._bundles.load(doc)

    # -------------------------------------------------------------------------
    # Writing
    # -------------------------------------------------------------------------

    def _prepare_write(
        self,
        credential: Any,
        meta: Any,
        bundle_contents: Any,
    ) -> tuple[dict[str, Any], dict[str, Any], list[BundleEntry]]:
        credential = _require_object(credential, "credential")
        meta = dict(_require_object({} if meta is None else meta, "meta"))
        entries = parse_bundle_contents(bundle_contents)
        if entries:
            if not isinstance(credential.get("id"), str):
                raise InvalidArgumentError('"credential.id" must be a string to define a bundle.')
            meta["bundle"] = True
        return credential, meta, entries

    async def insert(
        self,
        *,
        credential: dict[str, Any],
        meta: dict[str, Any] | None = None,
        bundle_contents: list[Any] | None = None,
    ) -> dict[str, Any]:
        """Store a new credential, and optionally the credentials it bundles.

        The credential's document is written before its contents.

        Returns:
            The stored document of the credential.

        Raises:
            InvalidArgumentError: On malformed input.
            DuplicateError: If a credential with the same id is stored.
        """
        credential, meta, entries = self._prepare_write(credential, meta, bundle_contents)
        with store_context(credential_id=credential.get("id")):
            doc = await self._upserts.insert(credential, meta)
            if entries:
                await self._bundles.write_contents(credential["id"], entries)
            log.debug("credential_inserted", doc_id=doc["id"], contents=len(entries))
        return doc

    async def upsert(
        self,
        *,
        credential: dict[str, Any],
        meta: dict[str, Any] | None = None,
        mutator: Mutator | Literal[False] | None = None,
        bundle_contents: list[Any] | None = None,
    ) -> dict[str, Any]:
        """Insert or update a credential, and optionally the credentials it bundles.

        Args:
            credential: Credential with a string ``id``.
            meta: Metadata to merge (or write, with ``mutator=False``).
            mutator: How to update an existing document; see
                :meth:`UpsertEngine.upsert`.
            bundle_contents: Credentials to store as contents of this one.

        Returns:
            The stored document of the credential.
        """
        credential, meta, entries = self._prepare_write(credential, meta, bundle_contents)
        with store_context(credential_id=credential.get("id")):
            doc = await self._upserts.upsert(credential, meta, mutator)
            if entries:
                await self._bundles.write_contents(credential["id"], entries)
            log.debug("credential_upserted", doc_id=doc["id"], contents=len(entries))
        return doc

    # -------------------------------------------------------------------------
    # Deleting
    # -------------------------------------------------------------------------

    async def delete(
        self,
        *,
        id: str | None = None,  # noqa: A002
        doc_id: str | None = None,
        delete_bundle: bool = True,
        force: bool = False,
    ) -> DeleteResult:
        """Delete a credential and, by default, what it bundles.

        Contents bundled only by this credential are deleted (unless stored
        as independent); contents that other bundles still hold are only
        unlinked. The whole operation is retried when a concurrent writer
        causes a conflict.

        Args:
            id: Application id of the credential.
            doc_id: Store handle of the document, instead of *id*.
            delete_bundle: Remove the bundle's contents with it.
            force: Skip the bundle graph constraint checks.

        Returns:
            ``DeleteResult(deleted=False)`` if nothing was stored under the id.
            Otherwise ``bundle`` is the closure as loaded before the cascade
            ran; documents it lists may since have been deleted or unlinked.

        Raises:
            ConstraintError: If the credential is bundled by another one,
                or bundles others and ``delete_bundle`` is False (unless
                ``force``).
            RetryExhaustedError: If every attempt hit a conflict.
        """
        if (id is None) == (doc_id is None):
            raise InvalidArgumentError('Exactly one of "id" or "docId" must be given.')
        if not isinstance(id if id is not None else doc_id, str):
            raise InvalidArgumentError('"id" and "docId" must be strings.')

        last_error: Exception | None = None
        with store_context(credential_id=id, doc_id=doc_id):
            for attempt in range(1, self.config.max_retries + 1):
                try:
                    return await self._delete_once(id, doc_id, delete_bundle, force)
                except Exception as e:
                    if not is_conflict_error(e):
                        raise
                    last_error = e
                    log.debug("delete_conflict_retry", attempt=attempt, **error_details(e))

            log.warning("delete_retries_exhausted", attempts=self.config.max_retries)
        raise RetryExhaustedError(
            operation="delete", attempts=self.config.max_retries, last_error=last_error
        )

    async def _resolve(self, id: str | None, doc_id: str | None) -> dict[str, Any] | None:  # noqa: A002
        if id is not None:
            return await self._upserts.find_by_content_id(id)
        try:
            return await self.store.get(doc_id)  # type: ignore[arg-type]
        except Exception as e:
            if not is_not_found_error(e):
                raise
            return None

    async def _delete_once(
        self,
        id: str | None,  # noqa: A002
        doc_id: str | None,
        delete_bundle: bool,
        force: bool,
    ) -> DeleteResult:
        doc = await self._resolve(id, doc_id)
        if doc is None:
            return DeleteResult(deleted=False)

        label = str(id if id is not None else doc_id)
        loading = asyncio.create_task(self._bundles.load(doc))
        closure: BundleResult | None = None
        unlinked = False
        try:
            parents = list((doc.get("meta") or {}).get("bundledBy") or [])
            if parents and not force:
                raise ConstraintError(
                    doc_id=label,
                    reason="it is bundled by other credentials; delete all bundling parents first",
                    related=parents,
                )

            closure = await loading
            if closure.has_contents:
                if delete_bundle:
                    unlinked = await self._bundles.delete_contents(closure)
                elif not force:
                    raise ConstraintError(
                        doc_id=label,
                        reason="other credentials are bundled by it",
                        related=[str(c.doc["id"]) for c in closure.bundle.contents],  # type: ignore[union-attr]
                    )

            await self.store.delete(doc)
        except Exception as e:
            if not is_not_found_error(e):
                raise
            log.info("delete_target_gone", unlinked=unlinked)
            return DeleteResult(deleted=unlinked, bundle=closure.bundle if closure else None)
        finally:
            if not loading.done():
                loading.cancel()
            await asyncio.gather(loading, return_exceptions=True)

        log.info("credential_deleted", doc_id=doc["id"], bundle_unlinked=unlinked)
        return DeleteResult(deleted=True, doc=doc, bundle=closure.bundle)
