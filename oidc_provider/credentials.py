"""
Credential store: users (bcrypt password hashes) and OAuth client registrations.
Passwords and client secrets are never stored or compared in plaintext.
"""
import json
import logging
import secrets
from dataclasses import dataclass
from functools import lru_cache

import bcrypt
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker

from oidc_provider.errors import (
    DuplicateEmail,
    InvalidClient,
    InvalidCredentials,
    InvalidRequest,
    UnknownClient,
)
from oidc_provider.models import Client, User
from oidc_provider.policies import PasswordPolicy
from oidc_provider.schemas import ClientMetadata

logger = logging.getLogger(__name__)


def _encode(secret: str) -> bytes:
    # Bcrypt has a 72-byte limit
    raw = secret.encode("utf-8")
    return raw[:72]


def hash_password(password: str) -> str:
    return bcrypt.hashpw(_encode(password), bcrypt.gensalt()).decode("utf-8")


def verify_password_hash(plain: str, hashed: str) -> bool:
    """bcrypt.checkpw compares in constant time."""
    return bcrypt.checkpw(_encode(plain), hashed.encode("utf-8"))


@lru_cache(maxsize=1)
def _dummy_hash() -> str:
    # Checked for unknown emails so response time does not reveal whether an account exists
    return hash_password(secrets.token_urlsafe(16))


def normalize_email(email: str) -> str:
    return (email or "").strip().lower()


@dataclass
class ClientRegistration:
    """Result of register_client. client_secret is only ever available here."""

    client: Client
    client_secret: str | None


class CredentialStore:
    def __init__(self, session_factory: sessionmaker[Session], password_policy: PasswordPolicy | None = None):
        self._session_factory = session_factory
        self.password_policy = password_policy or PasswordPolicy()

    # --- users ---

    def create_user(self, email: str, password: str, name: str | None = None) -> User:
        email = normalize_email(email)
        if not email or "@" not in email:
            raise InvalidRequest("A valid email is required")
        self.password_policy.check(password)
        with self._session_factory() as db:
            if db.query(User).filter(User.email == email).first() is not None:
                raise DuplicateEmail()
            user = User(email=email, password_hash=hash_password(password), name=name)
            db.add(user)
            try:
                db.commit()
            except IntegrityError:
                # Lost a race with a concurrent sign-up for the same email
                db.rollback()
                raise DuplicateEmail()
            logger.info("Created user id=%s", user.id)
            return user

    def verify_password(self, email: str, password: str) -> User:
        """Return the user if email/password match; disabled users fail like wrong passwords."""
        with self._session_factory() as db:
            user = db.query(User).filter(User.email == normalize_email(email)).first()
        if user is None:
            verify_password_hash(password or "", _dummy_hash())
            raise InvalidCredentials()
        if not verify_password_hash(password or "", user.password_hash) or user.disabled:
            raise InvalidCredentials()
        return user

    def get_user(self, user_id: int) -> User | None:
        with self._session_factory() as db:
            return db.get(User, user_id)

    def change_password(self, user_id: int, old_password: str, new_password: str) -> None:
        self.password_policy.check(new_password)
        with self._session_factory() as db:
            user = db.get(User, user_id)
            if user is None or user.disabled or not verify_password_hash(old_password or "", user.password_hash):
                raise InvalidCredentials()
            user.password_hash = hash_password(new_password)
            db.commit()
        logger.info("Password changed for user id=%s", user_id)

    def disable_user(self, user_id: int) -> None:
        with self._session_factory() as db:
            user = db.get(User, user_id)
            if user is None:
                raise InvalidRequest("Unknown user")
            user.disabled = True
            db.commit()
        logger.info("Disabled user id=%s", user_id)

    # --- clients ---

    def register_client(self, metadata: ClientMetadata) -> ClientRegistration:
        """Register a client. Confidential clients get a generated secret, stored hashed."""
        client_secret = None
        if metadata.token_endpoint_auth_method != "none":
            client_secret = secrets.token_urlsafe(32)
        client = Client(
            client_id=secrets.token_urlsafe(24),
            client_secret_hash=hash_password(client_secret) if client_secret else None,
            name=metadata.name,
            client_uri=metadata.client_uri,
            redirect_uris=json.dumps(metadata.redirect_uris),
            grant_types=json.dumps(metadata.grant_types),
            response_types=json.dumps(metadata.response_types),
            token_endpoint_auth_method=metadata.token_endpoint_auth_method,
        )
        with self._session_factory() as db:
            db.add(client)
            db.commit()
        logger.info("Registered client %s (confidential=%s)", client.client_id, client.is_confidential)
        return ClientRegistration(client=client, client_secret=client_secret)

    def lookup_client(self, client_id: str | None) -> Client:
        if not client_id:
            raise UnknownClient()
        with self._session_factory() as db:
            client = db.query(Client).filter(Client.client_id == client_id).first()
        if client is None:
            raise UnknownClient()
        return client

    def authenticate_client(
        self,
        client_id: str | None,
        client_secret: str | None,
        auth_method: str | None = None,
    ) -> Client:
        """
        Load client by client_id; if confidential, verify client_secret against the stored hash.
        When auth_method is given it must equal the client's registered token_endpoint_auth_method.
        Any failure is InvalidClient so the caller cannot tell unknown ids from bad secrets.
        """
        try:
            client = self.lookup_client(client_id)
        except UnknownClient:
            raise InvalidClient()
        if auth_method is not None and auth_method != client.token_endpoint_auth_method:
            logger.info(
                "Client %s authenticated with %s, registered %s",
                client.client_id,
                auth_method,
                client.token_endpoint_auth_method,
            )
            raise InvalidClient()
        if not client.is_confidential:
            return client
        if not client_secret or not verify_password_hash(client_secret, client.client_secret_hash):
            raise InvalidClient()
        return client

    def rotate_client_secret(self, client_id: str) -> str:
        with self._session_factory() as db:
            client = db.query(Client).filter(Client.client_id == client_id).first()
            if client is None:
                raise UnknownClient()
            if not client.is_confidential:
                raise InvalidRequest("Public clients have no secret")
            client_secret = secrets.token_urlsafe(32)
            client.client_secret_hash = hash_password(client_secret)
            db.commit()
        logger.info("Rotated secret for client %s", client_id)
        return client_secret
