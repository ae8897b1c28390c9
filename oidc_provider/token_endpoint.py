"""
Token endpoint (POST /token): authorization_code and refresh_token grants.
Grant failures are all reported as invalid_grant with one description; the audit log keeps the cause.
"""
import logging

from fastapi import APIRouter, Depends, Form, Request
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from oidc_provider.audit import (
    EVENT_CLIENT_AUTH_FAIL,
    EVENT_CODE_EXPIRED,
    EVENT_CODE_REPLAY,
    EVENT_GRANT_REJECTED,
    EVENT_TOKEN_ISSUED,
    EVENT_TOKEN_REFRESHED,
    OUTCOME_FAIL,
    OUTCOME_SUCCESS,
    get_client_ip,
    log_audit,
    throttle_or_audit,
)
from oidc_provider.client_auth import get_client_credentials
from oidc_provider.errors import (
    CodeReplay,
    Expired,
    InvalidClient,
    InvalidGrant,
    InvalidRequest,
    RedirectUriMismatch,
)
from oidc_provider.grants import GRANT_AUTHORIZATION_CODE, GRANT_REFRESH_TOKEN
from oidc_provider.provider import Provider, get_db, get_provider

logger = logging.getLogger(__name__)
router = APIRouter()

# Shared by every invalid_grant response so callers cannot probe session state
INVALID_GRANT_DESCRIPTION = "Invalid or expired authorization grant"

_NO_STORE = {"Cache-Control": "no-store", "Pragma": "no-cache"}


def _audit_event_for(exc: Exception) -> str:
    if isinstance(exc, CodeReplay):
        return EVENT_CODE_REPLAY
    if isinstance(exc, Expired):
        return EVENT_CODE_EXPIRED
    return EVENT_GRANT_REJECTED


@router.post("/token")
def token(
    request: Request,
    grant_type: str = Form(...),
    code: str | None = Form(None),
    redirect_uri: str | None = Form(None),
    client_id: str | None = Form(None),
    client_secret: str | None = Form(None),
    code_verifier: str | None = Form(None),
    refresh_token: str | None = Form(None),
    scope: str | None = Form(None),
    provider: Provider = Depends(get_provider),
    db: Session = Depends(get_db),
):
    """
    authorization_code: exchange code (+ PKCE verifier) for access_token, id_token, refresh_token.
    refresh_token: exchange refresh_token for new tokens; rotates the refresh token.
    """
    ip = get_client_ip(request)
    throttle_or_audit(db, provider.token_throttle, ip)
    cid, csecret, auth_method = get_client_credentials(request, client_id, client_secret)

    try:
        if grant_type == GRANT_AUTHORIZATION_CODE:
            tokens = provider.grants.exchange_code(
                code, cid, csecret, redirect_uri, code_verifier, auth_method=auth_method
            )
            event = EVENT_TOKEN_ISSUED
        elif grant_type == GRANT_REFRESH_TOKEN:
            tokens = provider.grants.exchange_refresh_token(
                refresh_token, cid, csecret, scope, auth_method=auth_method
            )
            event = EVENT_TOKEN_REFRESHED
        else:
            return JSONResponse(
                status_code=400,
                content={
                    "error": "unsupported_grant_type",
                    "error_description": "Only authorization_code and refresh_token are supported",
                },
                headers=_NO_STORE,
            )
    except InvalidClient:
        log_audit(db, EVENT_CLIENT_AUTH_FAIL, client_id=cid, ip=ip, outcome=OUTCOME_FAIL)
        raise
    except (InvalidGrant, RedirectUriMismatch) as exc:
        # CodeReplay, Expired, UnknownCode and PKCEMismatch are InvalidGrant subclasses
        event = _audit_event_for(exc)
        log_audit(db, event, client_id=cid, ip=ip, outcome=OUTCOME_FAIL)
        logger.info("%s grant rejected for client_id=%s: %s (%s)", grant_type, cid, event, exc.error_description)
        raise InvalidGrant(INVALID_GRANT_DESCRIPTION) from exc
    except InvalidRequest:
        log_audit(db, EVENT_GRANT_REJECTED, client_id=cid, ip=ip, outcome=OUTCOME_FAIL)
        raise

    log_audit(db, event, client_id=cid, ip=ip, outcome=OUTCOME_SUCCESS)
    return JSONResponse(content=tokens.to_response(), headers=_NO_STORE)
