"""
Custom login page. The authorization flow sends the browser here with ?session_id=...; a successful
sign-in authenticates that session and redirects back into the flow (/authorize/resume).
"""
import html
import logging
from urllib.parse import urlencode

from fastapi import APIRouter, Depends, Form, Request
from fastapi.responses import HTMLResponse, RedirectResponse
from sqlalchemy.orm import Session

from oidc_provider.audit import (
    EVENT_LOGIN_FAIL,
    EVENT_LOGIN_OK,
    OUTCOME_FAIL,
    OUTCOME_SUCCESS,
    get_client_ip,
    log_audit,
    throttle_or_audit,
)
from oidc_provider.errors import InvalidCredentials, OIDCError
from oidc_provider.provider import Provider, get_db, get_provider

logger = logging.getLogger(__name__)
router = APIRouter()


def render_login_page(session_id: str, email: str = "", error: str | None = None, status_code: int = 200) -> HTMLResponse:
    def e(s: str | None) -> str:
        return html.escape(s or "")

    error_html = f'<p id="error" style="color: red;">{e(error)}</p>' if error else ""
    body = f"""<!DOCTYPE html>
<html>
  <head><meta charset="utf-8"><title>OIDC Login</title></head>
  <body style="font-family: sans-serif; padding: 2rem; display: flex; justify-content: center;">
    <div style="border: 1px solid #ccc; padding: 2rem; border-radius: 8px; width: 300px;">
      <h2 style="margin-top:0;">Sign In</h2>
      {error_html}
      <form method="post" action="/login">
        <input type="hidden" name="session_id" value="{e(session_id)}"/>
        <div style="margin-bottom: 1rem;">
          <label>Email</label><br>
          <input type="email" name="email" value="{e(email)}" required style="width: 100%; padding: 8px; box-sizing: border-box;">
        </div>
        <div style="margin-bottom: 1rem;">
          <label>Password</label><br>
          <input type="password" name="password" required style="width: 100%; padding: 8px; box-sizing: border-box;">
        </div>
        <button type="submit" style="width: 100%; padding: 10px; background: #000; color: #fff; border: none; cursor: pointer;">Login</button>
      </form>
    </div>
  </body>
</html>"""
    return HTMLResponse(body, status_code=status_code)


def resume_url(session_id: str) -> str:
    return f"/authorize/resume?{urlencode({'session_id': session_id})}"


@router.get("/login", response_class=HTMLResponse)
def login_page(session_id: str = ""):
    """Login form. Without a session_id there is no flow to return to."""
    if not session_id:
        return HTMLResponse(
            "<h1>Invalid request</h1><p>Start sign-in from your application.</p>",
            status_code=400,
        )
    return render_login_page(session_id)


@router.post("/login")
def login_submit(
    request: Request,
    session_id: str = Form(...),
    email: str = Form(...),
    password: str = Form(...),
    provider: Provider = Depends(get_provider),
    db: Session = Depends(get_db),
):
    """Check credentials, authenticate the authorization session, go back into the flow."""
    ip = get_client_ip(request)
    throttle_or_audit(db, provider.login_throttle, ip)
    try:
        session = provider.sessions.get(session_id)
        user = provider.credentials.verify_password(email, password)
    except InvalidCredentials:
        log_audit(db, EVENT_LOGIN_FAIL, client_id=session.client_id, ip=ip, outcome=OUTCOME_FAIL)
        return render_login_page(session_id, email=email, error="Invalid email or password.", status_code=401)
    except OIDCError as exc:
        return HTMLResponse(
            f"<h1>Invalid request</h1><p>{html.escape(exc.error_description)}</p>",
            status_code=400,
        )

    try:
        provider.sessions.authenticate(session_id, user.id)
    except OIDCError as exc:
        logger.info("Login for session of client %s rejected: %s", session.client_id, exc.error_description)
        return HTMLResponse(
            f"<h1>Sign-in expired</h1><p>{html.escape(exc.error_description)}. Start again from your application.</p>",
            status_code=400,
        )
    log_audit(db, EVENT_LOGIN_OK, client_id=session.client_id, user_id=user.id, ip=ip, outcome=OUTCOME_SUCCESS)
    return RedirectResponse(url=resume_url(session_id), status_code=302)
