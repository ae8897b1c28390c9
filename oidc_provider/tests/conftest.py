"""
Pytest configuration for oidc_provider. Each test gets its own Provider on in-memory SQLite
(StaticPool, so all connections share the same DB); one RSA key ring is shared per session.
"""
import hashlib
import secrets
from base64 import urlsafe_b64encode
from datetime import datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient

from oidc_provider.config import Settings
from oidc_provider.keys import KeyRing
from oidc_provider.main import create_app
from oidc_provider.provider import build_provider
from oidc_provider.schemas import ClientMetadata

ISSUER = "http://localhost:3000"
DEMO_EMAIL = "user@demo.com"
DEMO_PASSWORD = "password1234"
REDIRECT_URI = "http://localhost:4000/callback"


class FakeClock:
    def __init__(self):
        self.now = datetime.now(timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: int) -> None:
        self.now += timedelta(seconds=seconds)


def make_settings(**overrides) -> Settings:
    values = dict(
        issuer=ISSUER,
        database_url="sqlite:///:memory:",
        signing_key_path=None,
        signing_key_previous_path=None,
        session_ttl=600,
        code_ttl=600,
        rate_limit_login_per_minute=0,
        rate_limit_token_per_minute=0,
        reaper_interval=0,
        session_retention=3600,
    )
    values.update(overrides)
    return Settings(**values)


def make_pkce() -> tuple[str, str]:
    verifier = secrets.token_urlsafe(32)
    digest = hashlib.sha256(verifier.encode("ascii")).digest()
    challenge = urlsafe_b64encode(digest).rstrip(b"=").decode("ascii")
    return verifier, challenge


@pytest.fixture(scope="session")
def keyring():
    return KeyRing.generate()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def settings():
    return make_settings()


@pytest.fixture
def provider(settings, keyring, clock):
    p = build_provider(settings, keyring=keyring, clock=clock)
    yield p
    p.close()


@pytest.fixture
def client(provider):
    # Lifespan is not run (no `with`); the provider is already on app.state
    return TestClient(create_app(provider=provider))


@pytest.fixture
def demo_user(provider):
    return provider.credentials.create_user(DEMO_EMAIL, DEMO_PASSWORD, "Demo User")


@pytest.fixture
def registration(provider):
    return provider.credentials.register_client(
        ClientMetadata(
            name="My External App",
            client_uri="http://localhost:4000",
            redirect_uris=[REDIRECT_URI],
            grant_types=["authorization_code", "refresh_token"],
        )
    )
