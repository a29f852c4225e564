"""Input and result models for the credential store.

Bundle contents arrive as nested JSON-like structures and are validated
with pydantic. Results (bundle trees, delete outcomes) are plain
dataclasses: documents inside them are the store's dicts, passed through
untouched.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    StrictBool,
    TypeAdapter,
    ValidationError,
    model_validator,
)

from vcstore.errors import InvalidArgumentError


class BundleEntry(BaseModel):
    """One credential to store as content of a bundle.

    Attributes:
        credential: The credential to store.
        meta: Extra metadata for the stored document.
        bundle_contents: Nested contents, making this credential a bundle too.
        dependent: Whether the credential is deleted with its last bundle.
            None means the default (dependent).
    """

    model_config = ConfigDict(populate_by_name=True)

    credential: dict[str, Any]
    meta: dict[str, Any] = Field(default_factory=dict)
    bundle_contents: list[BundleEntry] | None = Field(default=None, alias="bundleContents")
    dependent: StrictBool | None = None

    @model_validator(mode="after")
    def _bundle_requires_id(self) -> BundleEntry:
        if self.bundle_contents and not isinstance(self.credential.get("id"), str):
            raise ValueError('"credential.id" must be a string to define a bundle.')
        return self

    @property
    def is_bundle(self) -> bool:
        return bool(self.bundle_contents)


_BUNDLE_CONTENTS = TypeAdapter(list[BundleEntry])


def parse_bundle_contents(value: Any, name: str = "bundleContents") -> list[BundleEntry]:
    """Validate raw bundle contents into :class:`BundleEntry` models.

    Accepts ``None`` (no contents) or a list of entry dicts. Entries that
    are already ``BundleEntry`` instances pass through.

    Raises:
        InvalidArgumentError: If the value or any nested entry is malformed.
    """
    if value is None:
        return []
    if not isinstance(value, list):
        raise InvalidArgumentError(f'"{name}" must be a list.')
    try:
        return _BUNDLE_CONTENTS.validate_python(value)
    except ValidationError as e:
        raise InvalidArgumentError(f'Invalid "{name}": {e}') from e


@dataclass
class BundleContent:
    """A document referenced by a bundle, with its own sub-bundle if it has one."""

    doc: dict[str, Any]
    bundle: BundleNode | None = None


@dataclass
class BundleNode:
    """A bundling credential and the contents it references.

    A document bundled by several credentials appears as content under
    each of them; nodes are shared, never copied.
    """

    id: str
    doc: dict[str, Any]
    contents: list[BundleContent] = field(default_factory=list)

    def to_dict(self, _path: frozenset[str] = frozenset()) -> dict[str, Any]:
        """Render the tree as nested dicts. Cycles are cut at the repeated node."""
        path = _path | {self.id}
        contents = []
        for content in self.contents:
            sub = content.bundle
            contents.append(
                {
                    "doc": content.doc,
                    "bundle": sub.to_dict(path) if sub and sub.id not in path else None,
                }
            )
        return {"id": self.id, "doc": self.doc, "contents": contents}


@dataclass
class BundleResult:
    """Bundle closure rooted at one credential.

    Attributes:
        bundle: Root node of the closure tree, or None if the credential is
            not a bundle.
        all_sub_documents: Every document in the closure, root excluded,
            each listed once.
    """

    bundle: BundleNode | None = None
    all_sub_documents: list[dict[str, Any]] = field(default_factory=list)

    @property
    def has_contents(self) -> bool:
        return self.bundle is not None and bool(self.bundle.contents)


@dataclass
class DeleteResult:
    """Outcome of a delete.

    Attributes:
        deleted: Whether anything was deleted.
        doc: The deleted document as last read, when it was deleted.
        bundle: The closure that was unlinked or deleted with it.
    """

    deleted: bool
    doc: dict[str, Any] | None = None
    bundle: BundleNode | None = None
