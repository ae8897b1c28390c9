"""
Client credentials from the token request. RFC 6749 §2.3.1:
Authorization: Basic base64(client_id:client_secret), or client_id + client_secret in the form.
The method used is reported so it can be checked against the client's registration.
"""
import base64
import binascii
from urllib.parse import unquote_plus

from fastapi import Request

from oidc_provider.errors import InvalidRequest

AUTH_METHOD_BASIC = "client_secret_basic"
AUTH_METHOD_POST = "client_secret_post"
AUTH_METHOD_NONE = "none"


def parse_basic(header_value: str | None) -> tuple[str, str] | None:
    """Parse 'Basic <base64(client_id:client_secret)>'. Returns (client_id, client_secret) or None."""
    if not header_value or not header_value.strip().lower().startswith("basic "):
        return None
    try:
        decoded = base64.b64decode(header_value.strip()[6:].strip(), validate=True).decode("utf-8")
    except (binascii.Error, UnicodeDecodeError):
        return None
    if ":" not in decoded:
        return None
    client_id, _, client_secret = decoded.partition(":")
    # Both parts are form-urlencoded before base64, so "+" is a space
    return unquote_plus(client_id.strip()), unquote_plus(client_secret)


def get_client_credentials(
    request: Request,
    client_id_form: str | None,
    client_secret_form: str | None,
) -> tuple[str | None, str | None, str | None]:
    """
    (client_id, client_secret, auth_method) from the Authorization header or the form.
    A request may use only one method; auth_method is None when no client was identified.
    """
    basic = parse_basic(request.headers.get("Authorization"))
    if basic:
        if client_secret_form is not None:
            raise InvalidRequest("Client credentials must be sent with one authentication method")
        if client_id_form and client_id_form.strip() != basic[0]:
            raise InvalidRequest("client_id does not match the Authorization header")
        return basic[0], basic[1], AUTH_METHOD_BASIC
    if client_id_form and client_secret_form is not None:
        return client_id_form.strip(), client_secret_form, AUTH_METHOD_POST
    if client_id_form:
        return client_id_form.strip(), None, AUTH_METHOD_NONE
    return None, None, None
