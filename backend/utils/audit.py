from database import database
from models import AuditLog, AuditAction, AuditActor, AuditStatus
from typing import Optional, Dict, Any, List, Tuple
import base64
import json
import logging

logger = logging.getLogger(__name__)

MAX_AUDIT_PAGE_SIZE = 200


def request_metadata(request: Any) -> Dict[str, Any]:
    """Extract ip / user agent / endpoint from a FastAPI request (None-safe)."""
    if request is None:
        return {}
    headers = getattr(request, "headers", None) or {}
    forwarded = headers.get("x-forwarded-for") or ""
    ip = forwarded.split(",")[0].strip() if forwarded else None
    if not ip and getattr(request, "client", None):
        ip = request.client.host
    url = getattr(request, "url", None)
    return {
        "ip": ip,
        "user_agent": headers.get("user-agent"),
        "endpoint": url.path if url is not None else None,
    }


async def log_audit(
    action: AuditAction,
    resource_type: str,
    resource_id: Optional[str] = None,
    details: Optional[Dict[str, Any]] = None,
    request: Any = None,
    status: AuditStatus = AuditStatus.SUCCESS,
    actor: Optional[AuditActor] = None,
) -> str:
    """Append an audit log entry.

    Args:
        action: CREATE / UPDATE / DELETE
        resource_type: e.g. 'Contact', 'Opportunity', 'Proposal'
        resource_id: GHL id of the affected resource
        details: free-form payload for the entry
        request: inbound request, for ip / user agent / endpoint
        status: SUCCESS, FAILURE or WARNING
        actor: who triggered it; defaults to the system actor

    Returns the audit_id, or "" when the write failed.
    """
    try:
        db = database.get_db()

        audit_log = AuditLog(
            action=action,
            resource_type=resource_type,
            resource_id=resource_id,
            status=status,
            actor=actor or AuditActor(),
            details=details or {},
            metadata=request_metadata(request),
        )

        doc = audit_log.model_dump(mode="json")
        await db.audit_logs.insert_one(doc)
        logger.info(f"Audit log created: {action.value} {resource_type} {resource_id or ''} ({status.value})")
        return audit_log.audit_id
    except Exception as e:
        logger.error(f"Failed to create audit log: {e}")
        # Never fail the main operation due to audit log failure
        return ""


def encode_cursor(entry: Dict[str, Any]) -> str:
    raw = json.dumps({"ts": entry.get("timestamp"), "id": entry.get("audit_id")})
    return base64.urlsafe_b64encode(raw.encode("utf-8")).decode("ascii")


def decode_cursor(cursor: str) -> Tuple[str, str]:
    """Inverse of encode_cursor. Raises ValueError for anything we did not issue."""
    try:
        data = json.loads(base64.urlsafe_b64decode(cursor.encode("ascii")).decode("utf-8"))
        ts, audit_id = data["ts"], data["id"]
    except Exception as e:
        raise ValueError(f"Invalid cursor: {e}") from e
    if not isinstance(ts, str) or not isinstance(audit_id, str):
        raise ValueError("Invalid cursor")
    return ts, audit_id


async def query_audit_logs(
    limit: int = 50,
    start_after: Optional[str] = None,
    action: Optional[str] = None,
    status: Optional[str] = None,
    resource_id: Optional[str] = None,
) -> Dict[str, Any]:
    """Newest-first page of audit logs.

    Ordering is (timestamp, audit_id) descending so entries sharing a timestamp
    are neither skipped nor repeated across pages. Returns {logs, next_cursor};
    next_cursor is None on the last page.
    """
    limit = max(1, min(int(limit), MAX_AUDIT_PAGE_SIZE))
    query: Dict[str, Any] = {}
    if action:
        query["action"] = action
    if status:
        query["status"] = status
    if resource_id:
        query["resource_id"] = resource_id
    if start_after:
        ts, audit_id = decode_cursor(start_after)
        query["$or"] = [
            {"timestamp": {"$lt": ts}},
            {"timestamp": ts, "audit_id": {"$lt": audit_id}},
        ]

    db = database.get_db()
    cursor = db.audit_logs.find(query, {"_id": 0}).sort([("timestamp", -1), ("audit_id", -1)]).limit(limit + 1)
    logs: List[Dict[str, Any]] = await cursor.to_list(length=limit + 1)

    next_cursor = None
    if len(logs) > limit:
        logs = logs[:limit]
        next_cursor = encode_cursor(logs[-1])
    return {"logs": logs, "next_cursor": next_cursor}
