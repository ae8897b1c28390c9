"""
Error taxonomy for the provider core. Every error maps to an OAuth 2.0 / OIDC error code
and an HTTP status so the transport layer can render it without knowing the cause.
"""


class OIDCError(Exception):
    """Base error. `error` is the OAuth error code, `status_code` the HTTP status."""

    error = "server_error"
    status_code = 400
    description = "Request failed"

    def __init__(self, description: str | None = None):
        self.error_description = description or self.description
        super().__init__(self.error_description)

    def to_response(self) -> dict:
        return {"error": self.error, "error_description": self.error_description}


# --- Credential store ---


class DuplicateEmail(OIDCError):
    error = "user_already_exists"
    status_code = 422
    description = "A user with this email already exists"


class WeakPassword(OIDCError):
    error = "invalid_password"
    status_code = 400
    description = "Password does not satisfy the password policy"


class InvalidCredentials(OIDCError):
    error = "invalid_credentials"
    status_code = 401
    description = "Invalid email or password"


class UnknownClient(OIDCError):
    error = "invalid_client"
    status_code = 400
    description = "Unknown client_id"


class InvalidClient(OIDCError):
    error = "invalid_client"
    status_code = 401
    description = "Client authentication failed"


class UnauthorizedClient(OIDCError):
    error = "unauthorized_client"
    status_code = 400
    description = "Client is not allowed to use this grant type"


# --- Authorization sessions ---


class RedirectUriMismatch(OIDCError):
    error = "invalid_request"
    status_code = 400
    description = "redirect_uri is not registered for this client"


class InvalidScope(OIDCError):
    error = "invalid_scope"
    status_code = 400
    description = "Requested scope is not supported"


class InvalidRequest(OIDCError):
    error = "invalid_request"
    status_code = 400
    description = "Malformed request"


class SessionNotFound(OIDCError):
    error = "invalid_request"
    status_code = 400
    description = "Unknown authorization session"


class InvalidState(OIDCError):
    error = "invalid_request"
    status_code = 400
    description = "Authorization session is not in the expected state"


class InvalidGrant(OIDCError):
    error = "invalid_grant"
    status_code = 400
    description = "Invalid or expired authorization grant"


class UnknownCode(InvalidGrant):
    description = "Unknown authorization code"


class CodeReplay(InvalidGrant):
    description = "Authorization code already used"


class Expired(InvalidGrant):
    description = "Authorization session or token expired"


class PKCEMismatch(InvalidGrant):
    description = "PKCE verification failed"


# --- Tokens ---


class InvalidSignature(OIDCError):
    error = "invalid_token"
    status_code = 401
    description = "Token signature is invalid"


# --- Policy ---


class RateLimited(OIDCError):
    error = "too_many_requests"
    status_code = 429
    description = "Too many requests"

    def __init__(self, retry_after: int, description: str | None = None):
        self.retry_after = retry_after
        super().__init__(description)
