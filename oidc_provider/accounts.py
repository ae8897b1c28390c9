"""
JSON account API used by scripted clients and the setup route: email sign-up and sign-in.
Sign-in with a session_id is the same "authenticate this session" step the login page performs.
"""
import logging

from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from oidc_provider.audit import (
    EVENT_LOGIN_FAIL,
    EVENT_LOGIN_OK,
    EVENT_USER_CREATED,
    OUTCOME_FAIL,
    get_client_ip,
    log_audit,
    throttle_or_audit,
)
from oidc_provider.errors import InvalidCredentials
from oidc_provider.login import resume_url
from oidc_provider.models import User
from oidc_provider.provider import Provider, get_db, get_provider
from oidc_provider.schemas import SignInRequest, SignUpRequest

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/auth")


def _user_view(user: User) -> dict:
    return {"id": str(user.id), "email": user.email, "name": user.name, "emailVerified": user.email_verified}


@router.post("/sign-up/email", status_code=201)
def sign_up_email(
    body: SignUpRequest,
    request: Request,
    provider: Provider = Depends(get_provider),
    db: Session = Depends(get_db),
):
    user = provider.credentials.create_user(body.email, body.password, body.name)
    log_audit(db, EVENT_USER_CREATED, user_id=user.id, ip=get_client_ip(request))
    return {"user": _user_view(user)}


@router.post("/sign-in/email")
def sign_in_email(
    body: SignInRequest,
    request: Request,
    provider: Provider = Depends(get_provider),
    db: Session = Depends(get_db),
):
    """Verify credentials; with session_id also authenticate that authorization session."""
    ip = get_client_ip(request)
    throttle_or_audit(db, provider.login_throttle, ip)
    client_id = provider.sessions.get(body.session_id).client_id if body.session_id else None
    try:
        user = provider.credentials.verify_password(body.email, body.password)
    except InvalidCredentials:
        log_audit(db, EVENT_LOGIN_FAIL, client_id=client_id, ip=ip, outcome=OUTCOME_FAIL)
        raise
    response = {"user": _user_view(user)}
    if body.session_id:
        provider.sessions.authenticate(body.session_id, user.id)
        response["redirect"] = resume_url(body.session_id)
    log_audit(db, EVENT_LOGIN_OK, client_id=client_id, user_id=user.id, ip=ip)
    return response
