"""Sample credentials shared by the test suite."""

from __future__ import annotations

import copy
from typing import Any

# https://www.w3.org/TR/vc-data-model/#example-a-simple-example-of-a-verifiable-credential
ALUMNI_CREDENTIAL: dict[str, Any] = {
    "@context": [
        "https://www.w3.org/2018/credentials/v1",
        "https://www.w3.org/2018/credentials/examples/v1",
    ],
    "id": "http://example.edu/credentials/1872",
    "type": ["VerifiableCredential", "AlumniCredential"],
    "issuer": "https://example.edu/issuers/565049",
    "issuanceDate": "2010-01-01T19:23:24Z",
    "credentialSubject": {
        "id": "did:example:ebfeb1f712ebc6f1c276e12ec21",
        "alumniOf": "Example University",
    },
    "proof": {
        "type": "RsaSignature2018",
        "created": "2017-06-18T21:19:10Z",
        "creator": "https://example.edu/issuers/keys/1",
        "jws": "eyJhbGciOiJSUzI1NiIsImI2NCI6ZmFsc2UsImNyaXQiOlsiYjY0Il19..TCYt5X",
    },
}


def make_credential(cid: str | None, **overrides: Any) -> dict[str, Any]:
    """Build a credential based on the alumni example with a new id."""
    credential = copy.deepcopy(ALUMNI_CREDENTIAL)
    if cid is None:
        del credential["id"]
    else:
        credential["id"] = cid
    credential.update(overrides)
    return credential
