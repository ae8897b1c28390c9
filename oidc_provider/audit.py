"""
Audit logging. Security-relevant events only; no tokens, codes, passwords or request bodies.
Token-endpoint failures share one public error, so this table is where they stay distinguishable.
"""
from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from oidc_provider.errors import RateLimited
from oidc_provider.models import AuditLog
from oidc_provider.provider import get_db

EVENT_USER_CREATED = "user_created"
EVENT_CLIENT_REGISTERED = "client_registered"
EVENT_LOGIN_OK = "login_ok"
EVENT_LOGIN_FAIL = "login_fail"
EVENT_CODE_ISSUED = "code_issued"
EVENT_TOKEN_ISSUED = "token_issued"
EVENT_TOKEN_REFRESHED = "token_refreshed"
EVENT_CODE_REPLAY = "code_replay"
EVENT_CODE_EXPIRED = "code_expired"
EVENT_GRANT_REJECTED = "grant_rejected"
EVENT_CLIENT_AUTH_FAIL = "client_auth_fail"
EVENT_RATE_LIMITED = "rate_limited"

OUTCOME_SUCCESS = "success"
OUTCOME_FAIL = "fail"


def get_client_ip(request: Request | None) -> str | None:
    """Client IP if available (request.client.host). Forwarding headers are not trusted."""
    if request is None or request.client is None:
        return None
    return getattr(request.client, "host", None)


def log_audit(
    db: Session,
    event_type: str,
    *,
    client_id: str | None = None,
    user_id: int | None = None,
    ip: str | None = None,
    outcome: str = OUTCOME_SUCCESS,
) -> None:
    """Append one audit record. Never log tokens or passwords."""
    db.add(
        AuditLog(
            event_type=event_type,
            client_id=client_id,
            user_id=user_id,
            ip=ip,
            outcome=outcome,
        )
    )
    db.commit()


def throttle_or_audit(db: Session, throttle, ip: str | None) -> None:
    """Count one attempt against the throttle; a rejected attempt is recorded before RateLimited propagates."""
    try:
        throttle.hit(ip)
    except RateLimited:
        log_audit(db, EVENT_RATE_LIMITED, ip=ip, outcome=OUTCOME_FAIL)
        raise


router = APIRouter(tags=["audit"])


def query_audit_logs(
    db: Session,
    *,
    limit: int = 100,
    event_type: str | None = None,
    outcome: str | None = None,
    client_id: str | None = None,
) -> list[dict]:
    """Audit logs with optional filters. Most recent first."""
    q = db.query(AuditLog).order_by(AuditLog.id.desc())
    if event_type:
        q = q.filter(AuditLog.event_type == event_type)
    if outcome:
        q = q.filter(AuditLog.outcome == outcome)
    if client_id:
        q = q.filter(AuditLog.client_id == client_id)
    rows = q.limit(min(max(1, limit), 500)).all()
    return [
        {
            "created_at": r.created_at.isoformat() if r.created_at else None,
            "event_type": r.event_type,
            "client_id": r.client_id,
            "user_id": r.user_id,
            "ip": r.ip,
            "outcome": r.outcome,
        }
        for r in rows
    ]


@router.get("/audit")
def list_audit_logs(
    limit: int = 100,
    event_type: str | None = None,
    outcome: str | None = None,
    client_id: str | None = None,
    db: Session = Depends(get_db),
):
    """List recent audit events (demo use; do not expose in production)."""
    return query_audit_logs(db, limit=limit, event_type=event_type, outcome=outcome, client_id=client_id)
