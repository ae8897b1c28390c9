"""Tests for reading client credentials from the token request."""
import base64
from types import SimpleNamespace

import pytest

from oidc_provider.client_auth import (
    AUTH_METHOD_BASIC,
    AUTH_METHOD_NONE,
    AUTH_METHOD_POST,
    get_client_credentials,
    parse_basic,
)
from oidc_provider.errors import InvalidRequest


def _basic(raw: str) -> str:
    return "Basic " + base64.b64encode(raw.encode("utf-8")).decode("ascii")


def _request(authorization: str | None = None):
    headers = {"Authorization": authorization} if authorization else {}
    return SimpleNamespace(headers=headers)


def test_parse_basic():
    assert parse_basic(_basic("my-client:s3cret")) == ("my-client", "s3cret")


def test_parse_basic_form_decodes_both_parts():
    assert parse_basic(_basic("my+client:a%2Bb+c%3A")) == ("my client", "a+b c:")


@pytest.mark.parametrize("header", [None, "", "Bearer abc", "Basic !!!", _basic("no-colon")])
def test_parse_basic_rejects(header):
    assert parse_basic(header) is None


def test_credentials_from_header():
    assert get_client_credentials(_request(_basic("cid:secret")), None, None) == ("cid", "secret", AUTH_METHOD_BASIC)


def test_credentials_from_form():
    assert get_client_credentials(_request(), "cid", "secret") == ("cid", "secret", AUTH_METHOD_POST)


def test_public_client_id_only():
    assert get_client_credentials(_request(), " cid ", None) == ("cid", None, AUTH_METHOD_NONE)


def test_no_client():
    assert get_client_credentials(_request(), None, None) == (None, None, None)


def test_header_and_form_secret_together_rejected():
    with pytest.raises(InvalidRequest):
        get_client_credentials(_request(_basic("cid:secret")), "cid", "secret")


def test_form_client_id_must_match_header():
    with pytest.raises(InvalidRequest):
        get_client_credentials(_request(_basic("cid:secret")), "other", None)
