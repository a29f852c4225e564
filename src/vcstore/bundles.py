"""Bundle graph maintenance.

A bundle is a credential whose document has ``meta.bundle = True``; each
credential it contains lists the bundle's application id in its own
``meta.bundledBy``. There is no edge store: the graph lives entirely in
these back-references and is traversed with indexed ``find`` calls.

The store offers no multi-document transactions, so every algorithm here
orders its writes to leave a recoverable graph behind if it stops midway:

- Contents are written after their bundle, so a failure leaves a bundle
  root that can still be deleted, never contents nobody points at.
- Contents are unlinked or deleted before their bundle, and nested bundle
  documents before the bundles that contain them.

Re-running the same insert, upsert or delete converges.
"""

from __future__ import annotations

import heapq
from collections import deque
from dataclasses import dataclass, field
from functools import partial
from typing import TYPE_CHECKING, Any

from vcstore.batching import collapse_conflicts, run_ops
from vcstore.config import DEFAULT_CONCURRENCY
from vcstore.errors import BatchError, is_not_found_error
from vcstore.models import BundleContent, BundleNode, BundleResult
from vcstore.observability.logging import get_logger
from vcstore.upsert import utc_now

if TYPE_CHECKING:
    from vcstore.models import BundleEntry
    from vcstore.storage.protocol import DocumentStore
    from vcstore.upsert import UpsertEngine

log = get_logger(__name__)


def _content_id(doc: dict[str, Any]) -> str | None:
    content_id = (doc.get("content") or {}).get("id")
    return content_id if isinstance(content_id, str) else None


def _bundled_by(doc: dict[str, Any]) -> list[str]:
    return list((doc.get("meta") or {}).get("bundledBy") or [])


def is_bundle_root(doc: dict[str, Any]) -> bool:
    """Check if *doc* is a bundle that can be traversed (flag set and an application id)."""
    return bool((doc.get("meta") or {}).get("bundle")) and _content_id(doc) is not None


@dataclass
class PlannedOp:
    """One write scheduled by a cascade, deduplicated per document.

    Attributes:
        doc: The document as loaded with the closure.
        order: Position in traversal order.
        node: The document's own bundle node, if it is a bundle.
        remove: Bundle ids to drop from ``meta.bundledBy``.
        delete: Delete the document instead of unlinking it.
    """

    doc: dict[str, Any]
    order: int
    node: BundleNode | None = None
    remove: list[str] = field(default_factory=list)
    delete: bool = False

    @property
    def handle(self) -> str:
        return str(self.doc["id"])

    @property
    def is_bundle(self) -> bool:
        return self.node is not None

    @property
    def remaining(self) -> list[str]:
        return [p for p in _bundled_by(self.doc) if p not in self.remove]


def plan_cascade(root: BundleNode) -> list[PlannedOp]:
    """Plan the writes that remove *root*'s contents from the graph.

    Breadth-first from *root*. Every content reached loses the id of the
    bundle it was reached through. A content with no parents left is
    deleted and its own contents are visited in turn, unless it was stored
    as independent (``dependent: false``), in which case it is only
    unlinked. A content that still has other parents is only unlinked.

    Returns:
        Planned operations in traversal order, one per document.
    """
    planned: dict[str, PlannedOp] = {}
    queued = {root.id}
    queue: deque[BundleNode] = deque([root])

    while queue:
        node = queue.popleft()
        for content in node.contents:
            handle = str(content.doc["id"])
            op = planned.get(handle)
            if op is None:
                op = PlannedOp(doc=content.doc, order=len(planned), node=content.bundle)
                planned[handle] = op
            if node.id not in op.remove:
                op.remove.append(node.id)

            if op.remaining or (content.doc.get("meta") or {}).get("dependent") is False:
                continue
            op.delete = True
            if content.bundle is not None and content.bundle.id not in queued:
                queued.add(content.bundle.id)
                queue.append(content.bundle)

    return list(planned.values())


def order_bundle_ops(ops: list[PlannedOp]) -> list[PlannedOp]:
    """Order bundle-document operations so nested bundles go first.

    A bundle document is handled only after every bundle document it
    contains, so an interrupted cascade never leaves contents pointing at a
    bundle that is already gone. Kahn's algorithm with traversal order as
    tie-break. Falls back to reverse traversal order if the bundles form a
    cycle.
    """
    by_handle = {op.handle: op for op in ops}
    successors: dict[str, list[str]] = {h: [] for h in by_handle}
    in_degree: dict[str, int] = dict.fromkeys(by_handle, 0)

    for op in ops:
        if op.node is None:
            continue
        for content in op.node.contents:
            before = str(content.doc["id"])
            if before in by_handle and before != op.handle:
                successors[before].append(op.handle)
                in_degree[op.handle] += 1

    queue = [(op.order, op.handle) for op in ops if in_degree[op.handle] == 0]
    heapq.heapify(queue)
    result: list[PlannedOp] = []

    while queue:
        _, handle = heapq.heappop(queue)
        result.append(by_handle[handle])
        for succ in successors[handle]:
            in_degree[succ] -= 1
            if in_degree[succ] == 0:
                heapq.heappush(queue, (by_handle[succ].order, succ))

    if len(result) != len(ops):
        log.warning(
            "bundle_cycle_detected",
            remaining=sorted(h for h, deg in in_degree.items() if deg > 0),
        )
        return sorted(ops, key=lambda op: op.order, reverse=True)

    return result


class BundleEngine:
    """Writes, loads and removes bundle contents.

    Attributes:
        _store: Document store holding the graph.
        _upserts: Engine used to write individual content documents.
        _concurrency: Fan-out bound for concurrent content writes.
    """

    def __init__(
        self,
        store: DocumentStore,
        upserts: UpsertEngine,
        *,
        concurrency: int = DEFAULT_CONCURRENCY,
    ) -> None:
        self._store = store
        self._upserts = upserts
        self._concurrency = concurrency

    # -------------------------------------------------------------------------
    # Writing
    # -------------------------------------------------------------------------

    async def write_contents(
        self, parent_id: str, entries: list[BundleEntry]
    ) -> list[dict[str, Any]]:
        """Store *entries* as contents of the bundle *parent_id*.

        The parent document must already be written. Entries are written
        concurrently and the first failure aborts the rest.

        Returns:
            The stored content documents, in entry order.
        """
        if not entries:
            return []
        ops = [partial(self._write_entry, parent_id, entry) for entry in entries]
        docs: list[dict[str, Any]] = await run_ops(ops, self._concurrency, stop_on_error=True)
        log.debug("bundle_contents_written", bundle_id=parent_id, count=len(docs))
        return docs

    async def _write_entry(self, parent_id: str, entry: BundleEntry) -> dict[str, Any]:
        bundled_by = [p for p in entry.meta.get("bundledBy") or [] if p != parent_id]
        meta = {
            **entry.meta,
            "bundledBy": [*bundled_by, parent_id],
            "dependent": entry.dependent is not False,
        }
        if entry.is_bundle:
            meta["bundle"] = True

        credential = entry.credential
        content_id = _content_id({"content": credential})
        if content_id is None:
            stored = await self._find_unidentified(parent_id, credential)
            if stored is not None:
                log.debug("bundle_content_already_stored", bundle_id=parent_id, doc_id=stored["id"])
                return stored
            doc = await self._upserts.insert(credential, meta)
        else:
            doc = await self._upserts.upsert(credential, meta)

        if entry.is_bundle and content_id is not None:
            await self.write_contents(content_id, entry.bundle_contents or [])
        return doc

    async def _find_unidentified(
        self, parent_id: str, credential: dict[str, Any]
    ) -> dict[str, Any] | None:
        """Return a content of *parent_id* already holding *credential*, or None.

        Credentials without an ``id`` cannot be looked up by application id,
        so rewriting a bundle matches them by value among its contents.
        """
        result = await self._store.find([{"meta.bundledBy": parent_id}])
        for doc in result.get("documents") or []:
            if doc.get("content") == credential:
                return doc
        return None

    # -------------------------------------------------------------------------
    # Loading
    # -------------------------------------------------------------------------

    async def load(self, doc: dict[str, Any]) -> BundleResult:
        """Load the bundle closure rooted at *doc*.

        Breadth-first: each round fetches every document bundled by the
        current frontier in a single ``find``; documents that are bundles
        themselves form the next frontier. The tree is assembled once all
        documents are known, attaching each document under every bundle in
        its ``bundledBy`` that belongs to the closure.

        The result is a snapshot built from several independent queries;
        concurrent writers can make it briefly inconsistent.

        Returns:
            The closure, or an empty result if *doc* is not a bundle.
        """
        root_id = _content_id(doc)
        if root_id is None or not is_bundle_root(doc):
            return BundleResult()

        root = BundleNode(id=root_id, doc=doc)
        nodes: dict[str, BundleNode] = {root_id: root}
        seen: set[str] = {str(doc["id"])}
        documents: list[dict[str, Any]] = []
        frontier = [root_id]

        while frontier:
            result = await self._store.find([{"meta.bundledBy": bid} for bid in frontier])
            next_frontier: list[str] = []
            for sub in result.get("documents") or []:
                handle = str(sub["id"])
                if handle in seen:
                    continue
                seen.add(handle)
                documents.append(sub)
                sub_id = _content_id(sub)
                if sub_id is not None and is_bundle_root(sub) and sub_id not in nodes:
                    nodes[sub_id] = BundleNode(id=sub_id, doc=sub)
                    next_frontier.append(sub_id)
            frontier = next_frontier

        for sub in documents:
            sub_id = _content_id(sub)
            sub_node = nodes.get(sub_id) if sub_id is not None else None
            for parent_id in _bundled_by(sub):
                parent = nodes.get(parent_id)
                if parent is not None:
                    parent.contents.append(BundleContent(doc=sub, bundle=sub_node))

        log.debug("bundle_loaded", bundle_id=root_id, documents=len(documents), bundles=len(nodes))
        return BundleResult(bundle=root, all_sub_documents=documents)

    # -------------------------------------------------------------------------
    # Removing
    # -------------------------------------------------------------------------

    async def delete_contents(self, closure: BundleResult) -> bool:
        """Unlink or delete everything bundled by the closure root.

        Non-bundle documents are handled concurrently first. A batch that
        failed only on stale writes is reported as a single conflict so the
        caller can reload and retry; any other failure aborts the cascade.
        Bundle documents are then handled one at a time in
        :func:`order_bundle_ops` order.

        Returns:
            True if any write was made.
        """
        if closure.bundle is None or not closure.has_contents:
            return False

        ops = plan_cascade(closure.bundle)
        log.info(
            "bundle_cascade_planned",
            bundle_id=closure.bundle.id,
            deletes=sum(1 for op in ops if op.delete),
            unlinks=sum(1 for op in ops if not op.delete),
        )

        plain = [partial(self._apply, op) for op in ops if not op.is_bundle]
        try:
            await run_ops(plain, self._concurrency, stop_on_error=False)
        except BatchError as e:
            collapsed = collapse_conflicts(e)
            if collapsed is e:
                raise
            raise collapsed from e

        for op in order_bundle_ops([op for op in ops if op.is_bundle]):
            await self._apply(op)
        return True

    async def _apply(self, op: PlannedOp) -> None:
        if op.delete:
            try:
                await self._store.delete(op.doc)
            except Exception as e:
                if not is_not_found_error(e):
                    raise
                log.debug("bundle_content_already_deleted", doc_id=op.handle)
            return

        meta = {**(op.doc.get("meta") or {}), "bundledBy": op.remaining, "updated": utc_now()}
        await self._store.update({**op.doc, "meta": meta})
