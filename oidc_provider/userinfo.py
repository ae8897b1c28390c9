"""
OIDC UserInfo endpoint (GET /userinfo). Bearer access token required; returns claims by scope.
"""
import logging

from fastapi import APIRouter, Depends, HTTPException
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from oidc_provider.errors import Expired, InvalidSignature
from oidc_provider.provider import Provider, get_provider

logger = logging.getLogger(__name__)
router = APIRouter()
security = HTTPBearer(auto_error=False)


def _unauthorized(description: str) -> HTTPException:
    return HTTPException(
        status_code=401,
        detail={"error": "invalid_token", "error_description": description},
        headers={"WWW-Authenticate": "Bearer"},
    )


@router.get("/userinfo")
def userinfo(
    credentials: HTTPAuthorizationCredentials | None = Depends(security),
    provider: Provider = Depends(get_provider),
):
    """
    sub always; profile -> name; email -> email, email_verified.
    """
    if credentials is None:
        raise _unauthorized("Authorization header missing")
    try:
        payload = provider.signer.verify(credentials.credentials)
    except Expired:
        raise _unauthorized("Token expired")
    except InvalidSignature as e:
        logger.debug("UserInfo token invalid: %s", e)
        raise _unauthorized("Invalid token")

    sub = payload.get("sub")
    scope = (payload.get("scope") or "").split()
    if "openid" not in scope:
        raise HTTPException(
            status_code=403,
            detail={"error": "insufficient_scope", "error_description": "openid scope required"},
        )
    try:
        user = provider.credentials.get_user(int(sub))
    except (TypeError, ValueError):
        raise _unauthorized("Invalid token subject")
    if user is None or user.disabled:
        raise _unauthorized("User not found")

    claims = {"sub": sub}
    if "profile" in scope and user.name is not None:
        claims["name"] = user.name
    if "email" in scope:
        claims["email"] = user.email
        claims["email_verified"] = user.email_verified
    return claims
