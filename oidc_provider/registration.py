"""
Client registration (POST /register). Returns the generated client_id and, for confidential
clients, the client_secret; the secret is stored hashed and cannot be shown again.
"""
from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from oidc_provider.audit import EVENT_CLIENT_REGISTERED, get_client_ip, log_audit
from oidc_provider.credentials import ClientRegistration
from oidc_provider.provider import Provider, get_db, get_provider
from oidc_provider.schemas import ClientMetadata

router = APIRouter()


def registration_response(registration: ClientRegistration) -> dict:
    client = registration.client
    response = client.metadata_dict()
    response["client_id_issued_at"] = int(client.created_at.timestamp())
    if registration.client_secret:
        response["client_secret"] = registration.client_secret
        response["client_secret_expires_at"] = 0
    return response


@router.post("/register", status_code=201)
def register_client(
    metadata: ClientMetadata,
    request: Request,
    provider: Provider = Depends(get_provider),
    db: Session = Depends(get_db),
):
    registration = provider.credentials.register_client(metadata)
    log_audit(db, EVENT_CLIENT_REGISTERED, client_id=registration.client.client_id, ip=get_client_ip(request))
    return registration_response(registration)
