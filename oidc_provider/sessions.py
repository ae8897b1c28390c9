"""
Authorization session engine. Each in-flight authorization request is a row that moves through

    initiated -> authenticated -> code_issued -> consumed
    (any state before consumed) -> expired

Every transition is a conditional UPDATE guarded by the expected current status and the expiry,
so concurrent callers cannot both win: the affected row count decides. Expiry is lazy (checked at
access time); reap_expired() removes rows once they are past a retention window.
"""
import logging
import re
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Iterable

from sqlalchemy import delete, update
from sqlalchemy.orm import Session, sessionmaker

from oidc_provider.config import Settings
from oidc_provider.credentials import CredentialStore
from oidc_provider.errors import (
    CodeReplay,
    Expired,
    InvalidRequest,
    InvalidScope,
    InvalidState,
    RedirectUriMismatch,
    SessionNotFound,
    UnknownCode,
)
from oidc_provider.models import AuthorizationSession, as_utc

logger = logging.getLogger(__name__)

STATUS_INITIATED = "initiated"
STATUS_AUTHENTICATED = "authenticated"
STATUS_CODE_ISSUED = "code_issued"
STATUS_CONSUMED = "consumed"
STATUS_EXPIRED = "expired"

PKCE_METHODS = ("S256", "plain")
# RFC 7636 §4.1/§4.2: 43-128 chars from the unreserved set
_PKCE_VALUE = re.compile(r"^[A-Za-z0-9\-._~]{43,128}$")


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class PKCEChallenge:
    challenge: str
    method: str = "S256"


def normalize_scopes(scopes: str | Iterable[str] | None, supported: Iterable[str]) -> str:
    """Space-separated, de-duplicated, sorted scope string. Raises InvalidScope for unknown scopes."""
    if scopes is None:
        return ""
    if isinstance(scopes, str):
        scopes = scopes.split()
    requested = {s.strip() for s in scopes if s and s.strip()}
    invalid = requested - set(supported)
    if invalid:
        raise InvalidScope(f"Invalid scope(s): {', '.join(sorted(invalid))}")
    return " ".join(sorted(requested))


class SessionEngine:
    def __init__(
        self,
        session_factory: sessionmaker[Session],
        credentials: CredentialStore,
        settings: Settings,
        clock: Callable[[], datetime] = _utc_now,
    ):
        self._session_factory = session_factory
        self.credentials = credentials
        self.settings = settings
        self._clock = clock

    def pkce_methods(self) -> tuple[str, ...]:
        """Accepted code_challenge_method values."""
        if self.settings.allow_plain_pkce:
            return PKCE_METHODS
        return ("S256",)

    def start(
        self,
        client_id: str,
        redirect_uri: str,
        scopes: str | Iterable[str] | None,
        state: str | None = None,
        nonce: str | None = None,
        pkce: PKCEChallenge | None = None,
    ) -> str:
        """Open a session for a client. The redirect URI must exactly match a registered one."""
        client = self.credentials.lookup_client(client_id)
        if not redirect_uri or not client.redirect_uri_allowed(redirect_uri):
            logger.info("Rejected redirect_uri for client %s", client_id)
            raise RedirectUriMismatch()
        scope = normalize_scopes(scopes, self.settings.supported_scopes)
        if pkce is not None:
            if pkce.method not in self.pkce_methods():
                raise InvalidRequest(f"code_challenge_method must be one of: {', '.join(self.pkce_methods())}")
            if not _PKCE_VALUE.match(pkce.challenge or ""):
                raise InvalidRequest("code_challenge is malformed")
        elif self.settings.require_pkce or not client.is_confidential:
            # Public clients have no secret; only the PKCE verifier binds the code to them
            raise InvalidRequest("code_challenge is required")

        now = self._clock()
        session_id = secrets.token_urlsafe(32)
        with self._session_factory() as db:
            db.add(
                AuthorizationSession(
                    session_id=session_id,
                    status=STATUS_INITIATED,
                    client_id=client.client_id,
                    redirect_uri=redirect_uri,
                    scope=scope,
                    state=state or None,
                    nonce=nonce or None,
                    code_challenge=pkce.challenge if pkce else None,
                    code_challenge_method=pkce.method if pkce else None,
                    expires_at=now + timedelta(seconds=self.settings.session_ttl),
                    created_at=now,
                )
            )
            db.commit()
        logger.debug("Started authorization session for client %s", client.client_id)
        return session_id

    def get(self, session_id: str) -> AuthorizationSession:
        with self._session_factory() as db:
            row = db.query(AuthorizationSession).filter(AuthorizationSession.session_id == session_id).first()
        if row is None:
            raise SessionNotFound()
        return row

    def find_by_code(self, code: str) -> AuthorizationSession:
        with self._session_factory() as db:
            row = db.query(AuthorizationSession).filter(AuthorizationSession.code == code).first()
        if row is None:
            raise UnknownCode()
        return row

    def authenticate(self, session_id: str, user_id: int) -> None:
        """initiated -> authenticated, binding the session to the user."""
        now = self._clock()
        with self._session_factory() as db:
            result = db.execute(
                update(AuthorizationSession)
                .where(
                    AuthorizationSession.session_id == session_id,
                    AuthorizationSession.status == STATUS_INITIATED,
                    AuthorizationSession.expires_at > now,
                )
                .values(status=STATUS_AUTHENTICATED, user_id=user_id, authenticated_at=now)
                .execution_options(synchronize_session=False)
            )
            db.commit()
        if result.rowcount != 1:
            self._raise_for(self.get(session_id), now)
        logger.debug("Authorization session authenticated for user id=%s", user_id)

    def issue_code(self, session_id: str) -> str:
        """authenticated -> code_issued. The code is random, unguessable and bound to this session."""
        now = self._clock()
        row = self.get(session_id)
        code_expiry = min(as_utc(row.expires_at), now + timedelta(seconds=self.settings.code_ttl))
        code = secrets.token_urlsafe(32)
        with self._session_factory() as db:
            result = db.execute(
                update(AuthorizationSession)
                .where(
                    AuthorizationSession.session_id == session_id,
                    AuthorizationSession.status == STATUS_AUTHENTICATED,
                    AuthorizationSession.expires_at > now,
                )
                .values(status=STATUS_CODE_ISSUED, code=code, expires_at=code_expiry)
                .execution_options(synchronize_session=False)
            )
            db.commit()
        if result.rowcount != 1:
            self._raise_for(self.get(session_id), now)
        return code

    def consume(self, code: str) -> AuthorizationSession:
        """
        code_issued -> consumed, at most once. Check and transition are one UPDATE, so of two
        concurrent callers with the same code exactly one succeeds; the other gets CodeReplay.
        """
        now = self._clock()
        with self._session_factory() as db:
            result = db.execute(
                update(AuthorizationSession)
                .where(
                    AuthorizationSession.code == code,
                    AuthorizationSession.status == STATUS_CODE_ISSUED,
                    AuthorizationSession.expires_at > now,
                )
                .values(status=STATUS_CONSUMED)
                .execution_options(synchronize_session=False)
            )
            db.commit()
        row = self.find_by_code(code)
        if result.rowcount != 1:
            if row.status == STATUS_CONSUMED:
                logger.warning("Authorization code replay for client %s", row.client_id)
                raise CodeReplay()
            self._raise_for(row, now)
        return row

    def reap_expired(self) -> int:
        """
        Mark lapsed sessions expired, then delete rows that expired more than `session_retention`
        seconds ago (consumed ones included). Returns rows removed.
        """
        now = self._clock()
        cutoff = now - timedelta(seconds=self.settings.session_retention)
        with self._session_factory() as db:
            db.execute(
                update(AuthorizationSession)
                .where(
                    AuthorizationSession.expires_at <= now,
                    AuthorizationSession.status.not_in((STATUS_CONSUMED, STATUS_EXPIRED)),
                )
                .values(status=STATUS_EXPIRED)
                .execution_options(synchronize_session=False)
            )
            result = db.execute(
                delete(AuthorizationSession)
                .where(AuthorizationSession.expires_at <= cutoff)
                .execution_options(synchronize_session=False)
            )
            db.commit()
        if result.rowcount:
            logger.info("Reaped %s expired authorization sessions", result.rowcount)
        return result.rowcount

    def _raise_for(self, row: AuthorizationSession, now: datetime) -> None:
        """A guarded transition matched no row: report why."""
        if row.status == STATUS_EXPIRED:
            raise Expired()
        if row.status != STATUS_CONSUMED and as_utc(row.expires_at) <= now:
            self._mark_expired(row.session_id)
            raise Expired()
        raise InvalidState(f"Authorization session is {row.status}")

    def _mark_expired(self, session_id: str) -> None:
        with self._session_factory() as db:
            db.execute(
                update(AuthorizationSession)
                .where(
                    AuthorizationSession.session_id == session_id,
                    AuthorizationSession.status != STATUS_CONSUMED,
                )
                .values(status=STATUS_EXPIRED)
                .execution_options(synchronize_session=False)
            )
            db.commit()
