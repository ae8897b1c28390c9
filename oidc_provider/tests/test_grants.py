"""Tests for the grant exchanger: code exchange, PKCE, ID token claims and refresh token rotation."""
import threading
from concurrent.futures import ThreadPoolExecutor

import jwt
import pytest
from sqlalchemy import update

from oidc_provider.errors import (
    CodeReplay,
    Expired,
    InvalidClient,
    InvalidGrant,
    InvalidRequest,
    InvalidScope,
    PKCEMismatch,
    RedirectUriMismatch,
    UnauthorizedClient,
    UnknownCode,
)
from oidc_provider.grants import TokenSet, pkce_verify
from oidc_provider.models import AuthorizationSession
from oidc_provider.provider import build_provider
from oidc_provider.schemas import ClientMetadata
from oidc_provider.sessions import PKCEChallenge

from conftest import ISSUER, REDIRECT_URI, make_pkce, make_settings


def _code_for(provider, registration, user, scopes="openid profile email", nonce="n-0S6", pkce=None):
    session_id = provider.sessions.start(
        registration.client.client_id, REDIRECT_URI, scopes, state="xyz", nonce=nonce, pkce=pkce
    )
    provider.sessions.authenticate(session_id, user.id)
    return provider.sessions.issue_code(session_id)


def _exchange(provider, registration, code, **kwargs):
    params = dict(
        code=code,
        client_id=registration.client.client_id,
        client_secret=registration.client_secret,
        redirect_uri=REDIRECT_URI,
    )
    params.update(kwargs)
    return provider.grants.exchange_code(**params)


def test_pkce_verify():
    verifier, challenge = make_pkce()
    assert pkce_verify(verifier, challenge, "S256")
    assert not pkce_verify(verifier + "x", challenge, "S256")
    assert pkce_verify(verifier, verifier, "plain")
    assert not pkce_verify(None, challenge, "S256")
    assert not pkce_verify(verifier, challenge, "S512")


def test_demo_scenario_code_exchanges_once(provider, registration, demo_user):
    code = _code_for(provider, registration, demo_user)
    tokens = _exchange(provider, registration, code)
    assert tokens.access_token
    assert tokens.id_token
    assert tokens.refresh_token
    assert tokens.token_type == "Bearer"
    with pytest.raises(CodeReplay):
        _exchange(provider, registration, code)


def test_id_token_claims(provider, registration, demo_user):
    code = _code_for(provider, registration, demo_user)
    tokens = _exchange(provider, registration, code)
    claims = provider.signer.verify(tokens.id_token, audience=registration.client.client_id)
    assert claims["iss"] == ISSUER
    assert claims["sub"] == str(demo_user.id)
    assert claims["azp"] == registration.client.client_id
    assert claims["nonce"] == "n-0S6"
    assert claims["name"] == "Demo User"
    assert claims["email"] == demo_user.email
    assert claims["email_verified"] is False
    assert isinstance(claims["auth_time"], int)


def test_id_token_claims_follow_scope(provider, registration, demo_user):
    code = _code_for(provider, registration, demo_user, scopes="openid", nonce=None)
    tokens = _exchange(provider, registration, code)
    claims = jwt.decode(tokens.id_token, options={"verify_signature": False})
    assert "nonce" not in claims
    assert "name" not in claims
    assert "email" not in claims


def test_no_id_token_without_openid(provider, registration, demo_user):
    code = _code_for(provider, registration, demo_user, scopes="profile")
    tokens = _exchange(provider, registration, code)
    assert tokens.id_token is None
    assert "id_token" not in tokens.to_response()


def test_access_token_audience_is_client_by_default(provider, registration, demo_user):
    code = _code_for(provider, registration, demo_user)
    tokens = _exchange(provider, registration, code)
    claims = provider.signer.verify(tokens.access_token, audience=registration.client.client_id)
    assert claims["scope"] == "email openid profile"
    assert claims["client_id"] == registration.client.client_id


def test_expired_code_without_prior_use(provider, registration, demo_user, clock):
    code = _code_for(provider, registration, demo_user)
    clock.advance(601)
    with pytest.raises(Expired):
        _exchange(provider, registration, code)


def test_unknown_code(provider, registration):
    with pytest.raises(UnknownCode):
        _exchange(provider, registration, "made-up-code")


def test_wrong_client_secret(provider, registration, demo_user):
    code = _code_for(provider, registration, demo_user)
    with pytest.raises(InvalidClient):
        _exchange(provider, registration, code, client_secret="wrong")
    # A failed client authentication does not burn the code
    assert _exchange(provider, registration, code).access_token


def test_redirect_uri_must_match_authorization_request(provider, registration, demo_user):
    code = _code_for(provider, registration, demo_user)
    with pytest.raises(RedirectUriMismatch):
        _exchange(provider, registration, code, redirect_uri=REDIRECT_URI + "/")


def test_code_bound_to_client(provider, registration, demo_user):
    other = provider.credentials.register_client(ClientMetadata(name="Other", redirect_uris=[REDIRECT_URI]))
    code = _code_for(provider, registration, demo_user)
    with pytest.raises(InvalidGrant):
        provider.grants.exchange_code(code, other.client.client_id, other.client_secret, REDIRECT_URI)


def test_missing_code(provider, registration):
    with pytest.raises(InvalidRequest):
        _exchange(provider, registration, None)


def test_pkce_s256(provider, registration, demo_user):
    verifier, challenge = make_pkce()
    code = _code_for(provider, registration, demo_user, pkce=PKCEChallenge(challenge, "S256"))
    with pytest.raises(PKCEMismatch):
        _exchange(provider, registration, code, code_verifier=None)
    with pytest.raises(PKCEMismatch):
        _exchange(provider, registration, code, code_verifier=make_pkce()[0])
    assert _exchange(provider, registration, code, code_verifier=verifier).access_token


def test_public_client_with_pkce(provider, demo_user):
    public = provider.credentials.register_client(
        ClientMetadata(name="SPA", redirect_uris=[REDIRECT_URI], token_endpoint_auth_method="none")
    )
    verifier, challenge = make_pkce()
    code = _code_for(provider, public, demo_user, pkce=PKCEChallenge(challenge))
    tokens = provider.grants.exchange_code(code, public.client.client_id, None, REDIRECT_URI, verifier)
    assert tokens.access_token
    # authorization_code only: no refresh token
    assert tokens.refresh_token is None


def test_disabled_user_cannot_exchange(provider, registration, demo_user):
    code = _code_for(provider, registration, demo_user)
    provider.credentials.disable_user(demo_user.id)
    with pytest.raises(InvalidGrant):
        _exchange(provider, registration, code)


def test_refresh_token_rotation(provider, registration, demo_user):
    first = _exchange(provider, registration, _code_for(provider, registration, demo_user))
    client_id, secret = registration.client.client_id, registration.client_secret

    second = provider.grants.exchange_refresh_token(first.refresh_token, client_id, secret)
    assert second.access_token
    assert second.refresh_token and second.refresh_token != first.refresh_token
    assert second.scope == first.scope
    # Refreshed ID tokens carry no nonce
    assert "nonce" not in jwt.decode(second.id_token, options={"verify_signature": False})

    with pytest.raises(InvalidGrant):
        provider.grants.exchange_refresh_token(first.refresh_token, client_id, secret)


def test_refresh_token_scope_narrowing(provider, registration, demo_user):
    first = _exchange(provider, registration, _code_for(provider, registration, demo_user))
    client_id, secret = registration.client.client_id, registration.client_secret
    with pytest.raises(InvalidScope):
        provider.grants.exchange_refresh_token(first.refresh_token, client_id, secret, scope="openid offline_access")
    narrowed = provider.grants.exchange_refresh_token(first.refresh_token, client_id, secret, scope="openid")
    assert narrowed.scope == "openid"


def test_refresh_token_bound_to_client(provider, registration, demo_user):
    first = _exchange(provider, registration, _code_for(provider, registration, demo_user))
    other = provider.credentials.register_client(
        ClientMetadata(name="Other", redirect_uris=[REDIRECT_URI], grant_types=["authorization_code", "refresh_token"])
    )
    with pytest.raises(InvalidGrant):
        provider.grants.exchange_refresh_token(first.refresh_token, other.client.client_id, other.client_secret)


def test_refresh_grant_not_allowed(provider, demo_user):
    code_only = provider.credentials.register_client(ClientMetadata(name="Code only", redirect_uris=[REDIRECT_URI]))
    with pytest.raises(UnauthorizedClient):
        provider.grants.exchange_refresh_token("anything", code_only.client.client_id, code_only.client_secret)


def test_public_client_code_without_challenge_is_refused(provider, demo_user):
    public = provider.credentials.register_client(
        ClientMetadata(name="SPA", redirect_uris=[REDIRECT_URI], token_endpoint_auth_method="none")
    )
    _, challenge = make_pkce()
    code = _code_for(provider, public, demo_user, pkce=PKCEChallenge(challenge))
    # A session row that lost its challenge must not be redeemable by a secretless client
    with provider.session_factory() as db:
        db.execute(
            update(AuthorizationSession).where(AuthorizationSession.code == code).values(code_challenge=None)
        )
        db.commit()
    with pytest.raises(PKCEMismatch):
        provider.grants.exchange_code(code, public.client.client_id, None, REDIRECT_URI, None)


def test_auth_method_must_match_registration(provider, registration, demo_user):
    code = _code_for(provider, registration, demo_user)
    with pytest.raises(InvalidClient):
        _exchange(provider, registration, code, auth_method="client_secret_post")
    assert _exchange(provider, registration, code, auth_method="client_secret_basic").access_token


def test_expired_code_still_reports_expiry_after_reaper_run(provider, registration, demo_user, clock):
    code = _code_for(provider, registration, demo_user)
    clock.advance(601)
    provider.sessions.reap_expired()
    with pytest.raises(Expired):
        _exchange(provider, registration, code)


def test_concurrent_exchange_issues_tokens_once(tmp_path, keyring):
    """Parallel token requests with one code: one TokenSet, every other caller gets CodeReplay."""
    p = build_provider(make_settings(database_url=f"sqlite:///{tmp_path / 'exchange.db'}"), keyring=keyring)
    try:
        reg = p.credentials.register_client(ClientMetadata(name="App", redirect_uris=[REDIRECT_URI]))
        user = p.credentials.create_user("race@demo.com", "password1234")
        code = _code_for(p, reg, user)

        workers = 6
        barrier = threading.Barrier(workers)

        def attempt(_):
            barrier.wait()
            try:
                return p.grants.exchange_code(code, reg.client.client_id, reg.client_secret, REDIRECT_URI)
            except CodeReplay:
                return None

        with ThreadPoolExecutor(max_workers=workers) as pool:
            results = list(pool.map(attempt, range(workers)))

        issued = [r for r in results if isinstance(r, TokenSet)]
        assert len(issued) == 1
        assert results.count(None) == workers - 1
    finally:
        p.close()
