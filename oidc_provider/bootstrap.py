"""
Demo bootstrap. GET /setup creates the demo user (if missing) and registers a demo client, then
returns the credentials a relying party needs. seed_from_env creates a user at startup from
OIDC_SEED_USER_EMAIL + OIDC_SEED_USER_PASSWORD (+ OIDC_SEED_USER_NAME).
"""
import logging
import os

from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from oidc_provider.audit import EVENT_CLIENT_REGISTERED, EVENT_USER_CREATED, get_client_ip, log_audit
from oidc_provider.credentials import CredentialStore
from oidc_provider.errors import DuplicateEmail
from oidc_provider.models import User
from oidc_provider.provider import Provider, get_db, get_provider
from oidc_provider.schemas import ClientMetadata

logger = logging.getLogger(__name__)
router = APIRouter(tags=["setup"])

DEMO_USER_EMAIL = "user@demo.com"
DEMO_USER_PASSWORD = "password1234"
DEMO_USER_NAME = "Demo User"

DEMO_CLIENT = ClientMetadata(
    name="My External App",
    client_uri="http://localhost:4000",
    redirect_uris=["http://localhost:4000/api/auth/callback/my-provider"],
    grant_types=["authorization_code"],
    response_types=["code"],
    token_endpoint_auth_method="client_secret_basic",
)


def ensure_user(credentials: CredentialStore, email: str, password: str, name: str | None = None) -> User | None:
    """Create the user unless the email is taken. Returns the new user, or None if it already existed."""
    try:
        return credentials.create_user(email, password, name)
    except DuplicateEmail:
        logger.debug("User already exists: %s", email)
        return None


def seed_from_env(credentials: CredentialStore) -> None:
    """Create one user from env if set. No default credentials."""
    email = os.environ.get("OIDC_SEED_USER_EMAIL")
    password = os.environ.get("OIDC_SEED_USER_PASSWORD")
    if email and password:
        if ensure_user(credentials, email, password, os.environ.get("OIDC_SEED_USER_NAME")):
            logger.info("Seeded user: %s", email)


@router.get("/setup")
def setup(
    request: Request,
    provider: Provider = Depends(get_provider),
    db: Session = Depends(get_db),
):
    """Create the demo user and register a demo client (run once; each call registers a new client)."""
    ip = get_client_ip(request)
    user = ensure_user(provider.credentials, DEMO_USER_EMAIL, DEMO_USER_PASSWORD, DEMO_USER_NAME)
    if user is not None:
        log_audit(db, EVENT_USER_CREATED, user_id=user.id, ip=ip)
    else:
        logger.info("Demo user likely already exists")

    registration = provider.credentials.register_client(DEMO_CLIENT)
    log_audit(db, EVENT_CLIENT_REGISTERED, client_id=registration.client.client_id, ip=ip)
    return {
        "message": "Setup complete! Save these credentials for your other app.",
        "user": {"email": DEMO_USER_EMAIL, "password": DEMO_USER_PASSWORD},
        "client_config": {
            "clientId": registration.client.client_id,
            "clientSecret": registration.client_secret,
            "discoveryUrl": provider.settings.url("/.well-known/openid-configuration"),
        },
    }
