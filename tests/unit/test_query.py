"""Tests for local query building and presentation request conversion."""

from __future__ import annotations

import copy
from typing import Any

import pytest

from vcstore.errors import InvalidArgumentError, NotSupportedError
from vcstore.query import build_find_query, convert_vpr_query

QUERY_WITH_TRUSTED_ISSUER: dict[str, Any] = {
    "type": "QueryByExample",
    "credentialQuery": [
        {
            "required": True,
            "example": {
                "@context": ["https://w3id.org/credentials/v1", "urn:poc:schema:1234"],
                "type": "AlumniCredential",
                "credentialSubject": {"id": ""},
            },
            "trustedIssuer": [{"id": "https://example.edu/issuers/565049"}],
        }
    ],
}


class TestBuildFindQuery:
    """Tests for build_find_query."""

    def test_none_matches_everything(self) -> None:
        assert build_find_query(None) == [{}]

    def test_object_maps_keys_to_paths(self) -> None:
        equals = build_find_query({"type": "AlumniCredential", "issuer": "did:ex:1"})
        assert equals == [{"content.type": "AlumniCredential", "meta.issuer": "did:ex:1"}]

    def test_array_is_disjunction(self) -> None:
        equals = build_find_query([{"type": "A"}, {"type": "B"}, {"id": "urn:x"}])
        assert equals == [{"content.type": "A"}, {"content.type": "B"}, {"content.id": "urn:x"}]

    def test_bundle_keys(self) -> None:
        equals = build_find_query({"bundledBy": "urn:bundle", "displayable": True})
        assert equals == [{"meta.bundledBy": "urn:bundle", "meta.displayable": True}]

    def test_unknown_key_rejected(self) -> None:
        with pytest.raises(InvalidArgumentError, match="keys must be one of"):
            build_find_query({"subject": "did:ex:1"})

    @pytest.mark.parametrize("bad", ["type", 42, [{"type": "A"}, "B"]])
    def test_non_object_rejected(self, bad: Any) -> None:
        with pytest.raises(InvalidArgumentError, match="array of objects or an object"):
            build_find_query(bad)


class TestConvertVprQuery:
    """Tests for convert_vpr_query."""

    def test_type_and_trusted_issuer(self) -> None:
        result = convert_vpr_query(QUERY_WITH_TRUSTED_ISSUER)
        assert result == {
            "queries": [
                {"type": "AlumniCredential", "issuer": "https://example.edu/issuers/565049"}
            ]
        }

    def test_without_trusted_issuer(self) -> None:
        query = copy.deepcopy(QUERY_WITH_TRUSTED_ISSUER)
        del query["credentialQuery"][0]["trustedIssuer"]
        assert convert_vpr_query(query) == {"queries": [{"type": "AlumniCredential"}]}

    def test_cross_product_of_types_and_issuers(self) -> None:
        query = copy.deepcopy(QUERY_WITH_TRUSTED_ISSUER)
        cq = query["credentialQuery"][0]
        cq["example"]["type"] = ["AlumniCredential", "DegreeCredential"]
        cq["trustedIssuer"] = [{"id": "did:ex:a"}, {"id": "did:ex:b"}]

        queries = convert_vpr_query(query)["queries"]

        assert len(queries) == 4
        assert {"type": "DegreeCredential", "issuer": "did:ex:a"} in queries
        assert {"type": "AlumniCredential", "issuer": "did:ex:b"} in queries

    def test_presentation_request_with_query_list(self) -> None:
        vpr = {"query": [QUERY_WITH_TRUSTED_ISSUER, QUERY_WITH_TRUSTED_ISSUER]}
        assert len(convert_vpr_query(vpr)["queries"]) == 2

    def test_credential_query_object(self) -> None:
        query = copy.deepcopy(QUERY_WITH_TRUSTED_ISSUER)
        query["credentialQuery"] = query["credentialQuery"][0]
        assert len(convert_vpr_query(query)["queries"]) == 1

    def test_trusted_issuer_without_id(self) -> None:
        query = copy.deepcopy(QUERY_WITH_TRUSTED_ISSUER)
        query["credentialQuery"][0]["trustedIssuer"] = [{}]
        with pytest.raises(NotSupportedError) as exc_info:
            convert_vpr_query(query)
        assert exc_info.value.name == "NotSupportedError"

    def test_unsupported_query_type(self) -> None:
        with pytest.raises(NotSupportedError, match="DIDAuthentication"):
            convert_vpr_query({"type": "DIDAuthentication"})

    def test_missing_credential_query(self) -> None:
        with pytest.raises(NotSupportedError, match="credentialQuery"):
            convert_vpr_query({"type": "QueryByExample"})

    def test_example_without_type(self) -> None:
        query = copy.deepcopy(QUERY_WITH_TRUSTED_ISSUER)
        del query["credentialQuery"][0]["example"]["type"]
        with pytest.raises(NotSupportedError, match="type"):
            convert_vpr_query(query)
