"""
Identity provider configuration. Values come from the environment; no secrets in this file.
Settings is built once at startup and handed to every component (see provider.build_provider).
"""
import os
from dataclasses import dataclass, field

# Issuer URL (public identifier); all endpoint URLs in discovery derive from it
ISSUER = os.environ.get("OIDC_ISSUER", "http://localhost:4000").rstrip("/")

# SQLite for the demo; any SQLAlchemy URL works
DATABASE_URL = os.environ.get("OIDC_DATABASE_URL", "sqlite:///./oidc_provider.db")

# Authorization session lifetime (seconds), from /authorize until the code is exchanged
SESSION_TTL_SECONDS = int(os.environ.get("OIDC_SESSION_TTL", "600"))

# Authorization code lifetime (seconds); caps the session expiry once the code is issued
CODE_TTL_SECONDS = int(os.environ.get("OIDC_CODE_TTL", "600"))

ACCESS_TOKEN_TTL_SECONDS = int(os.environ.get("OIDC_ACCESS_TOKEN_TTL", "3600"))
ID_TOKEN_TTL_SECONDS = int(os.environ.get("OIDC_ID_TOKEN_TTL", "3600"))
REFRESH_TOKEN_TTL_SECONDS = int(os.environ.get("OIDC_REFRESH_TOKEN_TTL", "604800"))

# Audience for access tokens. Empty = the client_id of the requesting client.
API_AUDIENCE = os.environ.get("OIDC_API_AUDIENCE", "").strip() or None

# Path to RSA private key PEM. Missing file: a key is generated and saved there.
SIGNING_KEY_PATH = os.environ.get("OIDC_SIGNING_KEY_PATH", ".oidc_signing_key.pem")
# Optional previous key for rotation: published in JWKS, never used for new tokens
SIGNING_KEY_PREVIOUS_PATH = os.environ.get("OIDC_SIGNING_KEY_PREVIOUS_PATH", "").strip() or None
# How long a retired key stays published after rotate()
KEY_GRACE_SECONDS = int(os.environ.get("OIDC_KEY_GRACE_SECONDS", "86400"))

# Custom login page the authorization flow sends the browser to
LOGIN_PAGE = os.environ.get("OIDC_LOGIN_PAGE", "/login")

SUPPORTED_SCOPES = ("openid", "profile", "email", "offline_access")

# Policy hooks
PASSWORD_MIN_LENGTH = int(os.environ.get("OIDC_PASSWORD_MIN_LENGTH", "8"))
PASSWORD_MAX_LENGTH = int(os.environ.get("OIDC_PASSWORD_MAX_LENGTH", "128"))
RATE_LIMIT_LOGIN_PER_MINUTE = int(os.environ.get("OIDC_RATE_LIMIT_LOGIN_PER_MINUTE", "20"))
RATE_LIMIT_TOKEN_PER_MINUTE = int(os.environ.get("OIDC_RATE_LIMIT_TOKEN_PER_MINUTE", "60"))
REQUIRE_PKCE = os.environ.get("OIDC_REQUIRE_PKCE", "false").strip().lower() in ("1", "true", "yes")
# Accept the RFC 7636 "plain" method; S256 only by default
ALLOW_PLAIN_PKCE = os.environ.get("OIDC_ALLOW_PLAIN_PKCE", "false").strip().lower() in ("1", "true", "yes")

# Periodic reaper for expired/consumed authorization sessions; 0 disables
REAPER_INTERVAL_SECONDS = int(os.environ.get("OIDC_REAPER_INTERVAL", "300"))
# Expired sessions are kept this long before deletion so late exchanges still report expiry
SESSION_RETENTION_SECONDS = int(os.environ.get("OIDC_SESSION_RETENTION", "3600"))


@dataclass(frozen=True)
class Settings:
    issuer: str = ISSUER
    database_url: str = DATABASE_URL
    session_ttl: int = SESSION_TTL_SECONDS
    code_ttl: int = CODE_TTL_SECONDS
    access_token_ttl: int = ACCESS_TOKEN_TTL_SECONDS
    id_token_ttl: int = ID_TOKEN_TTL_SECONDS
    refresh_token_ttl: int = REFRESH_TOKEN_TTL_SECONDS
    api_audience: str | None = API_AUDIENCE
    signing_key_path: str | None = SIGNING_KEY_PATH
    signing_key_previous_path: str | None = SIGNING_KEY_PREVIOUS_PATH
    key_grace_seconds: int = KEY_GRACE_SECONDS
    login_page: str = LOGIN_PAGE
    supported_scopes: tuple[str, ...] = field(default=SUPPORTED_SCOPES)
    password_min_length: int = PASSWORD_MIN_LENGTH
    password_max_length: int = PASSWORD_MAX_LENGTH
    rate_limit_login_per_minute: int = RATE_LIMIT_LOGIN_PER_MINUTE
    rate_limit_token_per_minute: int = RATE_LIMIT_TOKEN_PER_MINUTE
    require_pkce: bool = REQUIRE_PKCE
    allow_plain_pkce: bool = ALLOW_PLAIN_PKCE
    reaper_interval: int = REAPER_INTERVAL_SECONDS
    session_retention: int = SESSION_RETENTION_SECONDS

    @classmethod
    def from_env(cls) -> "Settings":
        """Snapshot of the module-level values read from the environment at import time."""
        return cls()

    def url(self, path: str) -> str:
        return f"{self.issuer}{path}"
