"""
Discovery & key publisher: OpenID provider metadata and the JWKS relying parties verify tokens with.
"""
from oidc_provider.config import Settings
from oidc_provider.keys import ALGORITHM, KeyRing
from oidc_provider.schemas import SUPPORTED_AUTH_METHODS, SUPPORTED_GRANT_TYPES, SUPPORTED_RESPONSE_TYPES
from oidc_provider.sessions import PKCE_METHODS


class DiscoveryPublisher:
    def __init__(self, settings: Settings, keyring: KeyRing):
        self.settings = settings
        self.keyring = keyring

    def metadata(self) -> dict:
        """OpenID Connect discovery document. Computed from configuration only."""
        s = self.settings
        return {
            "issuer": s.issuer,
            "authorization_endpoint": s.url("/authorize"),
            "token_endpoint": s.url("/token"),
            "userinfo_endpoint": s.url("/userinfo"),
            "jwks_uri": s.url("/jwks"),
            "registration_endpoint": s.url("/register"),
            "response_types_supported": list(SUPPORTED_RESPONSE_TYPES),
            "response_modes_supported": ["query"],
            "grant_types_supported": list(SUPPORTED_GRANT_TYPES),
            "scopes_supported": list(s.supported_scopes),
            "subject_types_supported": ["public"],
            "id_token_signing_alg_values_supported": [ALGORITHM],
            "token_endpoint_auth_methods_supported": list(SUPPORTED_AUTH_METHODS),
            "code_challenge_methods_supported": list(PKCE_METHODS) if s.allow_plain_pkce else ["S256"],
            "claims_supported": [
                "sub", "iss", "aud", "exp", "iat", "auth_time", "nonce", "azp",
                "name", "email", "email_verified",
            ],
        }

    def public_keys(self) -> dict:
        """JWKS of the active key and every retired key still in its grace period."""
        return self.keyring.jwks()
