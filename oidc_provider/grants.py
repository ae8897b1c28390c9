"""
Grant exchanger: authorization_code and refresh_token grants. Validates the client and the grant,
then mints access / ID / refresh tokens through the token signer.
"""
import hashlib
import hmac
import logging
import secrets
from base64 import urlsafe_b64encode
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from sqlalchemy import update
from sqlalchemy.orm import Session, sessionmaker

from oidc_provider.config import Settings
from oidc_provider.credentials import CredentialStore
from oidc_provider.errors import (
    Expired,
    InvalidGrant,
    InvalidRequest,
    InvalidScope,
    PKCEMismatch,
    RedirectUriMismatch,
    UnauthorizedClient,
)
from oidc_provider.models import Client, RefreshToken, User, as_utc
from oidc_provider.sessions import SessionEngine
from oidc_provider.tokens import TokenSigner

logger = logging.getLogger(__name__)

GRANT_AUTHORIZATION_CODE = "authorization_code"
GRANT_REFRESH_TOKEN = "refresh_token"


def pkce_verify(code_verifier: str | None, code_challenge: str, method: str | None) -> bool:
    """S256: base64url(SHA256(verifier)) == challenge. plain: verifier == challenge."""
    if not code_verifier:
        return False
    if method == "S256":
        digest = hashlib.sha256(code_verifier.encode("ascii")).digest()
        computed = urlsafe_b64encode(digest).rstrip(b"=").decode("ascii")
    elif method == "plain":
        computed = code_verifier
    else:
        return False
    return hmac.compare_digest(computed, code_challenge)


def hash_refresh_token(value: str) -> str:
    return hashlib.sha256(value.encode("utf-8")).hexdigest()


@dataclass
class TokenSet:
    access_token: str
    expires_in: int
    scope: str
    id_token: str | None = None
    refresh_token: str | None = None
    token_type: str = "Bearer"

    def to_response(self) -> dict:
        response = {
            "access_token": self.access_token,
            "token_type": self.token_type,
            "expires_in": self.expires_in,
            "scope": self.scope,
        }
        if self.id_token:
            response["id_token"] = self.id_token
        if self.refresh_token:
            response["refresh_token"] = self.refresh_token
        return response


class GrantExchanger:
    def __init__(
        self,
        session_factory: sessionmaker[Session],
        credentials: CredentialStore,
        sessions: SessionEngine,
        signer: TokenSigner,
        settings: Settings,
    ):
        self._session_factory = session_factory
        self.credentials = credentials
        self.sessions = sessions
        self.signer = signer
        self.settings = settings

    def exchange_code(
        self,
        code: str | None,
        client_id: str | None,
        client_secret: str | None,
        redirect_uri: str | None,
        code_verifier: str | None = None,
        auth_method: str | None = None,
    ) -> TokenSet:
        """
        Redeem an authorization code. `auth_method` is how the transport received the client
        credentials; when given it must be the method the client registered.
        """
        client = self.credentials.authenticate_client(client_id, client_secret, auth_method)
        if not client.grant_type_allowed(GRANT_AUTHORIZATION_CODE):
            raise UnauthorizedClient()
        if not code or not redirect_uri:
            raise InvalidRequest("code and redirect_uri are required for authorization_code grant")

        session = self.sessions.find_by_code(code)
        if session.client_id != client.client_id:
            raise InvalidGrant("Authorization code was issued to another client")
        if session.redirect_uri != redirect_uri:
            raise RedirectUriMismatch("redirect_uri does not match the authorization request")
        if not session.code_challenge:
            if not client.is_confidential:
                raise PKCEMismatch("Public clients must use PKCE")
        elif not pkce_verify(code_verifier, session.code_challenge, session.code_challenge_method):
            raise PKCEMismatch()

        # Single winner under concurrent exchange; raises CodeReplay / Expired
        session = self.sessions.consume(code)

        user = self.credentials.get_user(session.user_id)
        if user is None or user.disabled:
            raise InvalidGrant("User is no longer active")
        auth_time = as_utc(session.authenticated_at) if session.authenticated_at else None
        tokens = self._issue(user, client, session.scope, nonce=session.nonce, auth_time=auth_time)
        logger.info("authorization_code grant: tokens issued for client_id=%s sub=%s", client.client_id, user.id)
        return tokens

    def exchange_refresh_token(
        self,
        refresh_token: str | None,
        client_id: str | None,
        client_secret: str | None,
        scope: str | None = None,
        auth_method: str | None = None,
    ) -> TokenSet:
        """Exchange a refresh token for new tokens. The presented refresh token is revoked (rotation)."""
        client = self.credentials.authenticate_client(client_id, client_secret, auth_method)
        if not client.grant_type_allowed(GRANT_REFRESH_TOKEN):
            raise UnauthorizedClient()
        if not refresh_token:
            raise InvalidRequest("refresh_token is required")

        token_hash = hash_refresh_token(refresh_token)
        with self._session_factory() as db:
            rt = db.query(RefreshToken).filter(RefreshToken.token_hash == token_hash).first()
        if rt is None or rt.revoked:
            raise InvalidGrant("Invalid or revoked refresh token")
        if as_utc(rt.expires_at) <= datetime.now(timezone.utc):
            raise Expired("Refresh token expired")
        if rt.client_id != client.client_id:
            raise InvalidGrant("Refresh token was issued to another client")

        granted = set(rt.scope.split())
        if scope and scope.strip():
            requested = set(scope.split())
            if not requested <= granted:
                raise InvalidScope("Requested scope exceeds the original grant")
            new_scope = " ".join(sorted(requested))
        else:
            new_scope = rt.scope

        with self._session_factory() as db:
            result = db.execute(
                update(RefreshToken)
                .where(RefreshToken.id == rt.id, RefreshToken.revoked.is_(False))
                .values(revoked=True)
                .execution_options(synchronize_session=False)
            )
            db.commit()
        if result.rowcount != 1:
            raise InvalidGrant("Invalid or revoked refresh token")

        user = self.credentials.get_user(rt.user_id)
        if user is None or user.disabled:
            raise InvalidGrant("User is no longer active")
        tokens = self._issue(user, client, new_scope, nonce=None, auth_time=None)
        logger.info(
            "refresh_token grant: new tokens issued for client_id=%s sub=%s (refresh token rotated)",
            client.client_id,
            user.id,
        )
        return tokens

    def _issue(
        self,
        user: User,
        client: Client,
        scope: str,
        nonce: str | None,
        auth_time: datetime | None,
    ) -> TokenSet:
        scopes = scope.split()
        sub = str(user.id)
        access_token = self.signer.sign(
            {"sub": sub, "scope": scope, "client_id": client.client_id},
            audience=self.settings.api_audience or client.client_id,
            ttl=self.settings.access_token_ttl,
        )

        id_token = None
        if "openid" in scopes:
            claims = {
                "sub": sub,
                "azp": client.client_id,
                "nonce": nonce,
                "auth_time": int(auth_time.timestamp()) if auth_time else None,
            }
            if "profile" in scopes:
                claims["name"] = user.name
            if "email" in scopes:
                claims["email"] = user.email
                claims["email_verified"] = user.email_verified
            id_token = self.signer.sign(claims, audience=client.client_id, ttl=self.settings.id_token_ttl)

        refresh_value = None
        if client.grant_type_allowed(GRANT_REFRESH_TOKEN):
            refresh_value = secrets.token_urlsafe(48)
            with self._session_factory() as db:
                db.add(
                    RefreshToken(
                        token_hash=hash_refresh_token(refresh_value),
                        user_id=user.id,
                        client_id=client.client_id,
                        scope=scope,
                        expires_at=datetime.now(timezone.utc) + timedelta(seconds=self.settings.refresh_token_ttl),
                    )
                )
                db.commit()

        return TokenSet(
            access_token=access_token,
            expires_in=self.settings.access_token_ttl,
            scope=scope,
            id_token=id_token,
            refresh_token=refresh_value,
        )
