"""
Process-wide wiring: one Provider per app, built from Settings at startup and stored on app.state.
Components receive the engine, key ring and each other explicitly; nothing is read from module globals.
"""
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable

from fastapi import Request
from sqlalchemy import Engine
from sqlalchemy.orm import Session, sessionmaker

from oidc_provider.config import Settings
from oidc_provider.credentials import CredentialStore
from oidc_provider.database import create_db_engine, create_session_factory, init_db
from oidc_provider.discovery import DiscoveryPublisher
from oidc_provider.grants import GrantExchanger
from oidc_provider.keys import KeyRing
from oidc_provider.policies import PasswordPolicy, Throttle
from oidc_provider.sessions import SessionEngine
from oidc_provider.tokens import TokenSigner

logger = logging.getLogger(__name__)


@dataclass
class Provider:
    settings: Settings
    engine: Engine
    session_factory: sessionmaker[Session]
    keyring: KeyRing
    credentials: CredentialStore
    sessions: SessionEngine
    signer: TokenSigner
    grants: GrantExchanger
    discovery: DiscoveryPublisher
    login_throttle: Throttle
    token_throttle: Throttle

    def close(self) -> None:
        self.engine.dispose()


def build_provider(
    settings: Settings | None = None,
    keyring: KeyRing | None = None,
    clock: Callable[[], datetime] | None = None,
) -> Provider:
    """Create the engine and tables, load signing keys and wire every component."""
    settings = settings or Settings.from_env()
    engine = create_db_engine(settings.database_url)
    init_db(engine)
    session_factory = create_session_factory(engine)
    if keyring is None:
        keyring = KeyRing.from_files(
            settings.signing_key_path,
            settings.signing_key_previous_path,
            grace_seconds=settings.key_grace_seconds,
        )
    credentials = CredentialStore(
        session_factory,
        PasswordPolicy(settings.password_min_length, settings.password_max_length),
    )
    if clock is None:
        sessions = SessionEngine(session_factory, credentials, settings)
    else:
        sessions = SessionEngine(session_factory, credentials, settings, clock=clock)
    signer = TokenSigner(keyring, settings.issuer)
    logger.info("Provider ready: issuer=%s signing kid=%s", settings.issuer, keyring.active.kid)
    return Provider(
        settings=settings,
        engine=engine,
        session_factory=session_factory,
        keyring=keyring,
        credentials=credentials,
        sessions=sessions,
        signer=signer,
        grants=GrantExchanger(session_factory, credentials, sessions, signer, settings),
        discovery=DiscoveryPublisher(settings, keyring),
        login_throttle=Throttle("login", settings.rate_limit_login_per_minute),
        token_throttle=Throttle("token", settings.rate_limit_token_per_minute),
    )


def get_provider(request: Request) -> Provider:
    """Dependency: the Provider of the running app."""
    return request.app.state.provider


def get_db(request: Request):
    """Dependency: yield a DB session from the provider's session factory."""
    db = get_provider(request).session_factory()
    try:
        yield db
    finally:
        db.close()
