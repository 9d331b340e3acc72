"""Approval link endpoints - hit from the reviewer's browser, answer with an HTML page.

Endpoints:
- GET /api/approve-opportunity?id=
- GET /api/reject-opportunity?id=
"""
from fastapi import APIRouter, Depends, Request, status
from fastapi.responses import HTMLResponse
from typing import Optional
import logging

from middleware import get_approval_workflow
from models import ApprovalOutcome
from services.approval_workflow import ApprovalResult, ApprovalWorkflow
from services.crm_email_templates import (
    build_already_decided_page, build_approved_page, build_rejected_page
)

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api", tags=["approvals"])

MISSING_ID_MESSAGE = "Opportunity ID is required"


def _render(result: ApprovalResult, decided_page: str) -> HTMLResponse:
    if result.outcome == ApprovalOutcome.ALREADY_DECIDED:
        return HTMLResponse(build_already_decided_page(result.current_status or "decided"))
    return HTMLResponse(decided_page)


@router.get("/approve-opportunity", response_class=HTMLResponse)
async def approve_opportunity(
    request: Request,
    id: Optional[str] = None,
    workflow: ApprovalWorkflow = Depends(get_approval_workflow),
):
    if not id:
        return HTMLResponse(MISSING_ID_MESSAGE, status_code=status.HTTP_400_BAD_REQUEST)
    try:
        result = await workflow.approve(id, request=request)
    except Exception as e:
        logger.error(f"Approval error for {id}: {e}", exc_info=True)
        return HTMLResponse("Error processing approval", status_code=status.HTTP_500_INTERNAL_SERVER_ERROR)
    logger.info(f"Approve {id}: {result.outcome.value}")
    return _render(result, build_approved_page())


@router.get("/reject-opportunity", response_class=HTMLResponse)
async def reject_opportunity(
    request: Request,
    id: Optional[str] = None,
    workflow: ApprovalWorkflow = Depends(get_approval_workflow),
):
    if not id:
        return HTMLResponse(MISSING_ID_MESSAGE, status_code=status.HTTP_400_BAD_REQUEST)
    try:
        result = await workflow.reject(id, request=request)
    except Exception as e:
        logger.error(f"Rejection error for {id}: {e}", exc_info=True)
        return HTMLResponse("Error processing rejection", status_code=status.HTTP_500_INTERNAL_SERVER_ERROR)
    logger.info(f"Reject {id}: {result.outcome.value}")
    return _render(result, build_rejected_page())
