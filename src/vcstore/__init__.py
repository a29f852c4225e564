"""vcstore - verifiable credential storage with bundle graph management.

Credentials are kept as documents in an encrypted document store. A
credential can bundle other credentials; the bundle graph is maintained
through ``meta.bundle`` / ``meta.bundledBy`` back-references and stays
consistent under concurrent, partially failing writers.
"""

from vcstore.config import StoreConfig, load_config
from vcstore.credential_store import VerifiableCredentialStore
from vcstore.errors import (
    BatchError,
    ConflictError,
    ConstraintError,
    DuplicateError,
    InvalidArgumentError,
    InvalidStateError,
    NotFoundError,
    NotSupportedError,
    RetryExhaustedError,
    VCStoreError,
)
from vcstore.models import BundleContent, BundleEntry, BundleNode, BundleResult, DeleteResult
from vcstore.storage import DocumentStore, InMemoryDocumentStore

__version__ = "0.4.0"

__all__ = [
    "BatchError",
    "BundleContent",
    "BundleEntry",
    "BundleNode",
    "BundleResult",
    "ConflictError",
    "ConstraintError",
    "DeleteResult",
    "DocumentStore",
    "DuplicateError",
    "InMemoryDocumentStore",
    "InvalidArgumentError",
    "InvalidStateError",
    "NotFoundError",
    "NotSupportedError",
    "RetryExhaustedError",
    "StoreConfig",
    "VCStoreError",
    "VerifiableCredentialStore",
    "__version__",
    "load_config",
]
