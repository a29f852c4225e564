"""Translation of credential queries into document store equality queries.

Two inputs are supported:

- Local queries (``{"type": ..., "issuer": ...}`` or a list of them), which
  map one-to-one onto indexed document fields.
- Verifiable Presentation Request ``QueryByExample`` queries, which are
  flattened into local queries by :func:`convert_vpr_query`.
"""

from __future__ import annotations

from typing import Any

from vcstore.errors import InvalidArgumentError, NotSupportedError

# Local query key -> indexed document path
QUERY_FIELDS: dict[str, str] = {
    "bundledBy": "meta.bundledBy",
    "displayable": "meta.displayable",
    "id": "content.id",
    "issuer": "meta.issuer",
    "type": "content.type",
}

QUERY_BY_EXAMPLE = "QueryByExample"


def _as_list(value: Any) -> list[Any]:
    return list(value) if isinstance(value, list) else [value]


def build_find_query(query: dict[str, Any] | list[dict[str, Any]] | None) -> list[dict[str, Any]]:
    """Map a local query onto store ``equals`` terms.

    A dict is one conjunction of constraints; a list of dicts is a
    disjunction of them. ``None`` matches every credential.

    Raises:
        InvalidArgumentError: If the query is not an object or array of
            objects, or uses an unknown key.
    """
    if query is None:
        return [{}]
    if isinstance(query, dict):
        terms = [query]
    elif isinstance(query, list) and all(isinstance(q, dict) for q in query):
        terms = query
    else:
        raise InvalidArgumentError('"query" must be an array of objects or an object.')

    equals: list[dict[str, Any]] = []
    for term in terms:
        unknown = sorted(k for k in term if k not in QUERY_FIELDS)
        if unknown:
            raise InvalidArgumentError(
                f'"query" keys must be one of: {", ".join(QUERY_FIELDS)}; got {", ".join(unknown)}'
            )
        equals.append({QUERY_FIELDS[key]: value for key, value in term.items()})
    return equals


def _trusted_issuer_ids(trusted_issuer: Any) -> list[str]:
    if trusted_issuer is None:
        return []
    ids: list[str] = []
    for entry in _as_list(trusted_issuer):
        issuer_id = entry.get("id") if isinstance(entry, dict) else None
        if not isinstance(issuer_id, str):
            raise NotSupportedError('Each "trustedIssuer" entry must have an "id".')
        ids.append(issuer_id)
    return ids


def _convert_credential_query(credential_query: Any) -> list[dict[str, Any]]:
    if not isinstance(credential_query, dict):
        raise NotSupportedError('"credentialQuery" must be an object or an array of objects.')
    example = credential_query.get("example")
    if not isinstance(example, dict):
        raise NotSupportedError('"credentialQuery.example" must be an object.')

    types = example.get("type")
    if not types or not all(isinstance(t, str) for t in _as_list(types)):
        raise NotSupportedError('"credentialQuery.example.type" must be a string or array.')

    issuers = _trusted_issuer_ids(credential_query.get("trustedIssuer"))
    if not issuers:
        return [{"type": t} for t in _as_list(types)]
    return [{"type": t, "issuer": issuer} for issuer in issuers for t in _as_list(types)]


def convert_vpr_query(vpr_query: dict[str, Any]) -> dict[str, list[dict[str, Any]]]:
    """Convert a presentation request query into local credential queries.

    Accepts a single ``QueryByExample`` object or a presentation request
    whose ``query`` holds one or more of them. Each example yields one
    local query per type, crossed with its trusted issuers when any are
    given.

    Args:
        vpr_query: The presentation request or query object.

    Returns:
        ``{"queries": [...]}`` ready for :meth:`VerifiableCredentialStore.find`.

    Raises:
        NotSupportedError: For query types other than ``QueryByExample``
            or example shapes that cannot be expressed locally.
    """
    if not isinstance(vpr_query, dict):
        raise InvalidArgumentError('"vprQuery" must be an object.')

    requests = _as_list(vpr_query["query"]) if "query" in vpr_query else [vpr_query]

    queries: list[dict[str, Any]] = []
    for request in requests:
        request_type = request.get("type") if isinstance(request, dict) else None
        if request_type != QUERY_BY_EXAMPLE:
            raise NotSupportedError(f'Unsupported query type: "{request_type}".')
        credential_query = request.get("credentialQuery")
        if credential_query is None:
            raise NotSupportedError('"credentialQuery" is needed to execute a QueryByExample.')
        for cq in _as_list(credential_query):
            queries.extend(_convert_credential_query(cq))
    return {"queries": queries}
