"""Error types for the credential store and the document stores it drives.

Every error carries a ``name`` discriminator matching the names used by EDV
clients (``NotFoundError``, ``InvalidStateError``, ``DuplicateError``, ...),
so adapters that translate remote failures can raise these types directly.

Conflicts (``DuplicateError``, ``InvalidStateError``) are expected under
concurrent use and are retried by the upsert and delete loops; everything
else propagates to the caller.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, ClassVar

import httpx


class VCStoreError(Exception):
    """Base class for all vcstore errors."""

    name: ClassVar[str] = "VCStoreError"


class InvalidArgumentError(VCStoreError, ValueError):
    """Raised for malformed caller input. Never retried."""

    name: ClassVar[str] = "InvalidArgumentError"


class NotSupportedError(VCStoreError):
    """Raised when a query shape cannot be translated to a local query."""

    name: ClassVar[str] = "NotSupportedError"


@dataclass(eq=False)
class NotFoundError(VCStoreError):
    """Raised when a document does not exist.

    Attributes:
        doc_id: Application id or store handle that was looked up.
        context: Description of where the lookup occurred.
    """

    name: ClassVar[str] = "NotFoundError"

    doc_id: str = ""
    context: str = ""

    def __post_init__(self) -> None:
        msg = f"Document '{self.doc_id}' not found" if self.doc_id else "Document not found"
        if self.context:
            msg += f" ({self.context})"
        super().__init__(msg)


class ConflictError(VCStoreError):
    """Base class for optimistic concurrency conflicts."""

    name: ClassVar[str] = "ConflictError"


class DuplicateError(ConflictError):
    """Raised when an insert collides with an existing handle or unique value."""

    name: ClassVar[str] = "DuplicateError"


class InvalidStateError(ConflictError):
    """Raised when a write carries a stale ``sequence`` or targets a missing record."""

    name: ClassVar[str] = "InvalidStateError"


@dataclass(eq=False)
class ConstraintError(VCStoreError):
    """Raised when a delete would break the bundle graph.

    Bypassable with ``force=True`` on delete.

    Attributes:
        doc_id: Application id (or store handle) of the document.
        reason: Which constraint was violated.
        related: Ids of the documents that hold the constraint.
    """

    name: ClassVar[str] = "ConstraintError"

    doc_id: str
    reason: str
    related: list[str] = field(default_factory=list)

    def __post_init__(self) -> None:
        msg = f"Cannot delete '{self.doc_id}': {self.reason}"
        if self.related:
            shown = ", ".join(self.related[:5])
            if len(self.related) > 5:
                shown += f", ... and {len(self.related) - 5} more"
            msg += f" [{shown}]"
        super().__init__(msg)


@dataclass(eq=False)
class RetryExhaustedError(VCStoreError):
    """Raised when a conflict retry loop runs out of attempts.

    Attributes:
        operation: Operation that was being retried ("upsert", "delete").
        attempts: Number of attempts made.
        last_error: The final conflict seen, if any.
    """

    name: ClassVar[str] = "RetryExhaustedError"

    operation: str
    attempts: int
    last_error: Exception | None = None

    def __post_init__(self) -> None:
        super().__init__(f"{self.operation} gave up after {self.attempts} conflicting attempt(s)")


@dataclass(eq=False)
class BatchError(VCStoreError):
    """Aggregate of failures from a concurrent batch of operations.

    Attributes:
        errors: List of (index, exception) for failed operations.
        total: Number of operations in the batch.
    """

    name: ClassVar[str] = "BatchError"

    errors: list[tuple[int, Exception]]
    total: int = 0

    def __post_init__(self) -> None:
        super().__init__(f"{len(self.errors)} of {self.total} operation(s) failed")

    def __str__(self) -> str:
        lines = [f"{len(self.errors)} of {self.total} operation(s) failed:"]
        for idx, err in self.errors[:5]:
            lines.append(f"  - [{idx}] {type(err).__name__}: {err}")
        if len(self.errors) > 5:
            lines.append(f"  - ... and {len(self.errors) - 5} more")
        return "\n".join(lines)

    @property
    def exceptions(self) -> list[Exception]:
        return [err for _, err in self.errors]


def _status_code(exc: Exception) -> int | None:
    if isinstance(exc, httpx.HTTPStatusError):
        return exc.response.status_code
    return None


def is_not_found_error(exc: Exception) -> bool:
    """Check if an exception means the target document is gone.

    Recognises ``NotFoundError`` and ``httpx.HTTPStatusError`` responses
    with status 404, walking the ``__cause__`` chain so wrapped transport
    errors are also detected.
    """
    if isinstance(exc, NotFoundError) or _status_code(exc) == 404:
        return True
    cause = exc.__cause__
    if cause is not None and isinstance(cause, Exception):
        return is_not_found_error(cause)
    return False


def is_conflict_error(exc: Exception) -> bool:
    """Check if an exception is an optimistic concurrency conflict.

    Recognises ``DuplicateError``, ``InvalidStateError`` and HTTP 409
    responses.
    """
    if isinstance(exc, ConflictError) or _status_code(exc) == 409:
        return True
    cause = exc.__cause__
    if cause is not None and isinstance(cause, Exception):
        return is_conflict_error(cause)
    return False


def error_details(exc: Exception) -> dict[str, Any]:
    """Summarise an exception for structured log fields."""
    return {"error_name": getattr(exc, "name", type(exc).__name__), "error": str(exc)}
