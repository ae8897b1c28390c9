"""
Request bodies for the JSON endpoints (sign-up, sign-in, client registration).
"""
from urllib.parse import urlsplit

from pydantic import BaseModel, Field, field_validator

SUPPORTED_GRANT_TYPES = ("authorization_code", "refresh_token")
SUPPORTED_RESPONSE_TYPES = ("code",)
SUPPORTED_AUTH_METHODS = ("client_secret_basic", "client_secret_post", "none")


class SignUpRequest(BaseModel):
    email: str
    password: str
    name: str | None = None


class SignInRequest(BaseModel):
    email: str
    password: str
    # Authorization session to authenticate; omitted for a plain credential check
    session_id: str | None = None


class ClientMetadata(BaseModel):
    """Client registration metadata (field names follow the registration API of the demo)."""

    name: str = Field(min_length=1, max_length=255)
    client_uri: str | None = None
    redirect_uris: list[str] = Field(min_length=1)
    grant_types: list[str] = Field(default_factory=lambda: ["authorization_code"])
    response_types: list[str] = Field(default_factory=lambda: ["code"])
    token_endpoint_auth_method: str = "client_secret_basic"

    @field_validator("redirect_uris")
    @classmethod
    def _absolute_uris(cls, value: list[str]) -> list[str]:
        for uri in value:
            parts = urlsplit(uri)
            if parts.scheme not in ("http", "https") or not parts.netloc:
                raise ValueError(f"redirect_uri must be an absolute http(s) URL: {uri}")
            if parts.fragment:
                raise ValueError(f"redirect_uri must not contain a fragment: {uri}")
        # Keep registration order, drop duplicates
        return list(dict.fromkeys(value))

    @field_validator("grant_types")
    @classmethod
    def _known_grant_types(cls, value: list[str]) -> list[str]:
        unknown = set(value) - set(SUPPORTED_GRANT_TYPES)
        if unknown:
            raise ValueError(f"Unsupported grant_types: {', '.join(sorted(unknown))}")
        if "authorization_code" not in value:
            raise ValueError("grant_types must include authorization_code")
        return list(dict.fromkeys(value))

    @field_validator("response_types")
    @classmethod
    def _known_response_types(cls, value: list[str]) -> list[str]:
        unknown = set(value) - set(SUPPORTED_RESPONSE_TYPES)
        if unknown:
            raise ValueError(f"Unsupported response_types: {', '.join(sorted(unknown))}")
        if "code" not in value:
            raise ValueError("response_types must include code")
        return list(dict.fromkeys(value))

    @field_validator("token_endpoint_auth_method")
    @classmethod
    def _known_auth_method(cls, value: str) -> str:
        if value not in SUPPORTED_AUTH_METHODS:
            raise ValueError(f"Unsupported token_endpoint_auth_method: {value}")
        return value
