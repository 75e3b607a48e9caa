from __future__ import annotations

import pytest

from seekrag.auth import BearerCredential, parse_authorization, require_credential
from seekrag.errors import Unauthorized


def test_parse_valid_bearer_header():
    credential = parse_authorization("Bearer abc123")
    assert credential.token == "abc123"
    assert credential.header == "Bearer abc123"
    assert credential.headers() == {"Authorization": "Bearer abc123"}


@pytest.mark.parametrize("header", [None, "", "abc123", "Token abc123", "bearer abc123", "Bearer ", "Bearer  abc"])
def test_parse_rejects_missing_or_malformed(header):
    with pytest.raises(Unauthorized):
        parse_authorization(header)


def test_from_token_rejects_empty():
    with pytest.raises(Unauthorized):
        BearerCredential.from_token("")
    with pytest.raises(Unauthorized):
        BearerCredential.from_token(None)


def test_require_credential_passes_through_parsed_value():
    credential = BearerCredential("t")
    assert require_credential(credential) is credential
    assert require_credential("Bearer t") == credential


def test_repr_hides_token():
    assert "secret" not in repr(BearerCredential("secret"))
