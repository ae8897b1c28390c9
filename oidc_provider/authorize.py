"""
Authorization endpoint. GET /authorize opens an authorization session and sends the browser to the
login page; GET /authorize/resume issues the code once the login page has authenticated the session.
"""
import html
import logging
from urllib.parse import urlencode

from fastapi import APIRouter, Depends, Request
from fastapi.responses import HTMLResponse, RedirectResponse
from sqlalchemy.orm import Session

from oidc_provider.audit import EVENT_CODE_ISSUED, OUTCOME_SUCCESS, get_client_ip, log_audit
from oidc_provider.errors import OIDCError, SessionNotFound, UnknownClient
from oidc_provider.provider import Provider, get_db, get_provider
from oidc_provider.sessions import PKCEChallenge

logger = logging.getLogger(__name__)
router = APIRouter()


def _redirect_error(redirect_uri: str, error: str, error_description: str, state: str | None) -> RedirectResponse:
    params = {"error": error, "error_description": error_description}
    if state:
        params["state"] = state
    return RedirectResponse(url=_append_query(redirect_uri, params), status_code=302)


def _append_query(uri: str, params: dict) -> str:
    return f"{uri}{'&' if '?' in uri else '?'}{urlencode(params)}"


def _error_page(message: str, status_code: int = 400) -> HTMLResponse:
    return HTMLResponse(
        f"<h1>Invalid request</h1><p>{html.escape(message)}</p>",
        status_code=status_code,
    )


@router.get("/authorize")
def authorize(
    response_type: str | None = None,
    client_id: str | None = None,
    redirect_uri: str | None = None,
    scope: str | None = None,
    state: str | None = None,
    nonce: str | None = None,
    code_challenge: str | None = None,
    code_challenge_method: str | None = None,
    provider: Provider = Depends(get_provider),
):
    """
    Validate client_id and redirect_uri (exact match) first; until both are known good, errors are
    shown here and never redirected. Later errors go back to the client as error/state params.
    """
    if not client_id or not redirect_uri:
        return _error_page("client_id and redirect_uri are required.")
    try:
        client = provider.credentials.lookup_client(client_id)
    except UnknownClient:
        return _error_page("Unknown client_id.")
    if not client.redirect_uri_allowed(redirect_uri):
        return _error_page("redirect_uri not allowed.")

    if response_type != "code":
        return _redirect_error(redirect_uri, "unsupported_response_type", "response_type must be 'code'", state)

    pkce = None
    if code_challenge:
        pkce = PKCEChallenge(challenge=code_challenge, method=code_challenge_method or "plain")
    elif code_challenge_method:
        return _redirect_error(redirect_uri, "invalid_request", "code_challenge is required", state)

    try:
        session_id = provider.sessions.start(
            client_id=client_id,
            redirect_uri=redirect_uri,
            scopes=scope,
            state=state,
            nonce=nonce,
            pkce=pkce,
        )
    except OIDCError as e:
        return _redirect_error(redirect_uri, e.error, e.error_description, state)

    login_url = _append_query(provider.settings.login_page, {"session_id": session_id})
    return RedirectResponse(url=login_url, status_code=302)


@router.get("/authorize/resume")
def authorize_resume(
    request: Request,
    session_id: str,
    provider: Provider = Depends(get_provider),
    db: Session = Depends(get_db),
):
    """Continue the flow after login: issue the code and redirect to the client with code and state."""
    try:
        session = provider.sessions.get(session_id)
    except SessionNotFound:
        return _error_page("Unknown or expired authorization session.")
    try:
        code = provider.sessions.issue_code(session_id)
    except OIDCError as e:
        logger.info("Cannot issue code for session of client %s: %s", session.client_id, e.error_description)
        return _redirect_error(session.redirect_uri, e.error, e.error_description, session.state)

    log_audit(
        db,
        EVENT_CODE_ISSUED,
        client_id=session.client_id,
        user_id=session.user_id,
        ip=get_client_ip(request),
        outcome=OUTCOME_SUCCESS,
    )
    params = {"code": code}
    if session.state:
        params["state"] = session.state
    return RedirectResponse(url=_append_query(session.redirect_uri, params), status_code=302)
