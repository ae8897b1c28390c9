"""Tests for the key ring and token signer: signing, verification, rotation and the published JWKS."""
import time

import jwt
import pytest

from oidc_provider.errors import Expired, InvalidSignature
from oidc_provider.keys import KeyRing, load_or_create_private_key
from oidc_provider.tokens import TokenSigner

from conftest import ISSUER


@pytest.fixture
def ring():
    return KeyRing.generate(grace_seconds=3600)


@pytest.fixture
def signer(ring):
    return TokenSigner(ring, ISSUER)


def test_sign_sets_standard_claims(signer, ring):
    token = signer.sign({"sub": "42", "nonce": "n-1"}, audience="client-a", ttl=300)
    header = jwt.get_unverified_header(token)
    assert header["kid"] == ring.active.kid
    assert header["alg"] == "RS256"
    claims = signer.verify(token, audience="client-a")
    assert claims["sub"] == "42"
    assert claims["iss"] == ISSUER
    assert claims["aud"] == "client-a"
    assert claims["nonce"] == "n-1"
    assert claims["exp"] > claims["iat"]
    assert claims["jti"]


def test_sign_ignores_reserved_claims_from_caller(signer):
    token = signer.sign({"sub": "1", "iss": "http://evil", "exp": 1}, audience="a", ttl=60)
    claims = signer.verify(token)
    assert claims["iss"] == ISSUER
    assert claims["exp"] > time.time()


def test_sign_rejects_non_positive_ttl(signer):
    with pytest.raises(ValueError):
        signer.sign({"sub": "1"}, audience="a", ttl=0)


def test_token_verifies_against_published_jwks(signer):
    """A relying party with only the JWKS can verify what the signer issued."""
    token = signer.sign({"sub": "7"}, audience="rp", ttl=300)
    jwks = jwt.PyJWKSet.from_dict(signer.keyring.jwks())
    kid = jwt.get_unverified_header(token)["kid"]
    matching = [k for k in jwks.keys if k.key_id == kid]
    assert len(matching) == 1
    claims = jwt.decode(token, matching[0].key, algorithms=["RS256"], audience="rp", issuer=ISSUER)
    assert claims["sub"] == "7"


def test_verify_wrong_audience(signer):
    token = signer.sign({"sub": "1"}, audience="client-a", ttl=60)
    with pytest.raises(InvalidSignature):
        signer.verify(token, audience="client-b")


def test_verify_expired_token(signer, ring):
    now = int(time.time())
    token = jwt.encode(
        {"sub": "1", "iss": ISSUER, "aud": "a", "iat": now - 120, "exp": now - 60},
        ring.active.private_key,
        algorithm="RS256",
        headers={"kid": ring.active.kid},
    )
    with pytest.raises(Expired):
        signer.verify(token)


def test_verify_tampered_token(signer):
    token = signer.sign({"sub": "1"}, audience="a", ttl=60)
    header, payload, signature = token.split(".")
    forged = jwt.encode({"sub": "2"}, "secret", algorithm="HS256").split(".")[1]
    with pytest.raises(InvalidSignature):
        signer.verify(f"{header}.{forged}.{signature}")


def test_verify_token_from_foreign_key(signer):
    other = TokenSigner(KeyRing.generate(), ISSUER)
    token = other.sign({"sub": "1"}, audience="a", ttl=60)
    with pytest.raises(InvalidSignature):
        signer.verify(token)


def test_verify_garbage(signer):
    with pytest.raises(InvalidSignature):
        signer.verify("not-a-jwt")


def test_rotation_keeps_old_tokens_verifiable(signer, ring):
    old_kid = ring.active.kid
    old_token = signer.sign({"sub": "1"}, audience="a", ttl=300)
    ring.rotate()
    assert ring.active.kid != old_kid
    new_token = signer.sign({"sub": "1"}, audience="a", ttl=300)
    assert jwt.get_unverified_header(new_token)["kid"] == ring.active.kid
    assert signer.verify(old_token)["sub"] == "1"
    assert signer.verify(new_token)["sub"] == "1"
    kids = [k["kid"] for k in ring.jwks()["keys"]]
    assert kids == [ring.active.kid, old_kid]


def test_retired_key_dropped_after_grace():
    ring = KeyRing.generate(grace_seconds=0)
    signer = TokenSigner(ring, ISSUER)
    old_token = signer.sign({"sub": "1"}, audience="a", ttl=300)
    ring.rotate()
    assert len(ring.jwks()["keys"]) == 1
    with pytest.raises(InvalidSignature):
        signer.verify(old_token)


def test_jwks_shape(ring):
    key = ring.jwks()["keys"][0]
    assert key["kty"] == "RSA"
    assert key["alg"] == "RS256"
    assert key["use"] == "sig"
    assert key["kid"] == ring.active.kid
    assert "n" in key and "e" in key
    assert "d" not in key


def test_key_file_is_created_and_reloaded(tmp_path):
    path = tmp_path / "signing.pem"
    first = KeyRing.from_files(str(path))
    assert path.exists()
    second = KeyRing.from_files(str(path))
    assert first.active.kid == second.active.kid


def test_previous_key_file_is_published(tmp_path):
    prev_path = tmp_path / "prev.pem"
    load_or_create_private_key(str(prev_path))
    ring = KeyRing.from_files(str(tmp_path / "current.pem"), str(prev_path))
    keys = ring.jwks()["keys"]
    assert len(keys) == 2
    assert keys[0]["kid"] == ring.active.kid
