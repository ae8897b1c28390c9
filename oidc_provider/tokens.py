"""
Token signer: mints RS256 JWTs with the active key and verifies them against every published key.
"""
import logging
import secrets
from datetime import datetime, timedelta, timezone

import jwt

from oidc_provider.errors import Expired, InvalidSignature
from oidc_provider.keys import ALGORITHM, KeyRing

logger = logging.getLogger(__name__)

# Registered claims set by the signer; callers cannot override them through `claims`
_RESERVED = ("iss", "aud", "iat", "exp", "jti")


class TokenSigner:
    def __init__(self, keyring: KeyRing, issuer: str):
        self.keyring = keyring
        self.issuer = issuer

    def sign(self, claims: dict, audience: str, ttl: int) -> str:
        """Sign `claims` for `audience`, valid for `ttl` seconds. `sub` must be in claims."""
        if ttl <= 0:
            raise ValueError("ttl must be positive")
        key = self.keyring.active
        now = datetime.now(timezone.utc)
        payload = {k: v for k, v in claims.items() if k not in _RESERVED and v is not None}
        payload.update(
            {
                "iss": self.issuer,
                "aud": audience,
                "iat": int(now.timestamp()),
                "exp": int((now + timedelta(seconds=ttl)).timestamp()),
                "jti": secrets.token_urlsafe(16),
            }
        )
        return jwt.encode(
            payload,
            key.private_key,
            algorithm=key.algorithm,
            headers={"kid": key.kid, "typ": "JWT"},
        )

    def verify(self, token: str, audience: str | None = None) -> dict:
        """
        Verify signature, issuer, expiry and (when given) audience. Returns the claims.
        Raises Expired for a lapsed token and InvalidSignature for everything else.
        """
        try:
            header = jwt.get_unverified_header(token)
        except jwt.InvalidTokenError:
            raise InvalidSignature("Malformed token")
        kid = header.get("kid")
        if kid:
            key = self.keyring.get(kid)
            if key is None:
                raise InvalidSignature("Unknown signing key")
            candidates = [key]
        else:
            candidates = self.keyring.published()

        options = {"require": ["exp", "iat", "iss", "sub"], "verify_aud": audience is not None}
        for key in candidates:
            try:
                return jwt.decode(
                    token,
                    key.public_key,
                    algorithms=[ALGORITHM],
                    issuer=self.issuer,
                    audience=audience,
                    options=options,
                )
            except jwt.ExpiredSignatureError:
                raise Expired("Token expired")
            except jwt.InvalidSignatureError:
                continue
            except jwt.InvalidTokenError as e:
                logger.debug("Token rejected: %s", e)
                raise InvalidSignature("Token is invalid")
        raise InvalidSignature()
