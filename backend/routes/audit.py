"""Audit log listing.

GET /api/audit-logs?limit=&startAfter=&action=&status=&resourceId=
Newest first; pass the returned next_cursor as startAfter for the next page.
"""
from fastapi import APIRouter, HTTPException, Query, status
from typing import Optional
import logging

from utils.audit import query_audit_logs

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api", tags=["audit"])


@router.get("/audit-logs")
async def list_audit_logs(
    limit: int = 50,
    startAfter: Optional[str] = None,
    action: Optional[str] = None,
    status_filter: Optional[str] = Query(None, alias="status"),
    resourceId: Optional[str] = None,
):
    try:
        return await query_audit_logs(
            limit=limit,
            start_after=startAfter,
            action=action,
            status=status_filter,
            resource_id=resourceId,
        )
    except ValueError as e:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"error": str(e)}
        )
    except Exception as e:
        logger.error(f"Error fetching audit logs: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={"error": "Failed to fetch audit logs"}
        )
