"""
Well-known endpoints: OpenID Connect discovery and the JSON Web Key Set.
"""
from fastapi import APIRouter, Depends

from oidc_provider.provider import Provider, get_provider

router = APIRouter()


@router.get("/.well-known/openid-configuration")
def openid_configuration(provider: Provider = Depends(get_provider)):
    """OpenID Connect discovery document."""
    return provider.discovery.metadata()


@router.get("/jwks")
@router.get("/.well-known/jwks.json")
def jwks(provider: Provider = Depends(get_provider)):
    """JSON Web Key Set for token signature verification (active key plus keys in their grace period)."""
    return provider.discovery.public_keys()
