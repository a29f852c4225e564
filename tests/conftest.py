"""Pytest configuration and shared fixtures."""

from __future__ import annotations

import copy
from pathlib import Path
from typing import Any

import pytest

from tests.fixtures.credentials import ALUMNI_CREDENTIAL
from vcstore import InMemoryDocumentStore, VerifiableCredentialStore


@pytest.fixture
def project_root() -> Path:
    """Return the project root directory."""
    return Path(__file__).parent.parent


@pytest.fixture
def alumni_credential() -> dict[str, Any]:
    """Return a fresh copy of the alumni example credential."""
    return copy.deepcopy(ALUMNI_CREDENTIAL)


@pytest.fixture
def doc_store() -> InMemoryDocumentStore:
    """Return an empty in-memory document store."""
    return InMemoryDocumentStore()


@pytest.fixture
def vc_store(doc_store: InMemoryDocumentStore) -> VerifiableCredentialStore:
    """Return a credential store over the in-memory document store."""
    return VerifiableCredentialStore(doc_store)
