"""Sales Intake Routes - GHL proxy endpoints used by the intake form.

Endpoints:
- GET /api/config - Product catalogue + pricing tiers
- GET /api/users - GHL users for the location (sales-person picker)
- GET /api/contacts?query= - GHL contact search (broker picker)
- POST /api/create-opportunity - Create contact + opportunity, start proposal automation
- GET /api/opportunities?limit= - Newest mirror records
- POST /api/generate-pdf - Render a proposal PDF (and email it when contactId is given)
"""
from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Request, status
from fastapi.responses import JSONResponse, Response
from datetime import datetime, timezone
from typing import Optional
import logging

from middleware import get_ghl_service, get_intake_orchestrator, get_optional_ghl_service
from services import opportunity_store
from services.ghl_errors import CRMError
from services.ghl_service import GHLService, user_list
from services.intake_orchestrator import (
    IntakeOrchestrator, sanitize_opportunity_data, validate_opportunity_input
)
from services.product_catalog import get_public_config
from services.proposal_delivery import safe_filename
from services.proposal_pdf import ProposalData, render_proposal_pdf_bytes

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api", tags=["intake"])


async def _json_body(request: Request) -> dict:
    try:
        body = await request.json()
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"error": "Request body must be valid JSON"}
        )
    if not isinstance(body, dict):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"error": "Request body must be a JSON object"}
        )
    return body


@router.get("/config")
async def get_config():
    return get_public_config()


@router.get("/users")
async def list_users(ghl: GHLService = Depends(get_ghl_service)):
    try:
        users = user_list(await ghl.get_users())
        logger.info(f"Fetched {len(users)} GHL users for location {ghl.location_id}")
        return users
    except Exception as e:
        logger.error(f"Error fetching users: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={"error": "Failed to fetch users"}
        )


@router.get("/contacts")
async def search_contacts(query: str = "", ghl: GHLService = Depends(get_ghl_service)):
    try:
        response = await ghl.search_contacts(query, limit=50)
        if isinstance(response, dict):
            return response.get("contacts") or []
        return response or []
    except Exception as e:
        logger.error(f"Error searching contacts: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={"error": "Failed to fetch contacts"}
        )


@router.post("/create-opportunity")
async def create_opportunity(
    request: Request,
    background_tasks: BackgroundTasks,
    orchestrator: IntakeOrchestrator = Depends(get_intake_orchestrator),
):
    body = await _json_body(request)
    errors = validate_opportunity_input(body)
    if errors:
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={"error": "Validation failed", "details": errors},
        )

    data = sanitize_opportunity_data(body)
    try:
        opportunity, job = await orchestrator.create_opportunity(data, request=request)
    except CRMError as e:
        logger.error(f"Create opportunity failed: {e!r}")
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"error": e.message, "details": e.to_dict()},
        )
    except Exception as e:
        logger.error(f"Create opportunity failed: {e}")
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"error": str(e), "details": None},
        )

    # Runs after the response is sent
    background_tasks.add_task(orchestrator.run_post_creation_automation, job)
    return opportunity


@router.get("/opportunities")
async def list_opportunities(limit: int = 20):
    try:
        return await opportunity_store.list_recent(limit)
    except Exception as e:
        logger.error(f"Error listing opportunities: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={"error": "Failed to fetch opportunities"}
        )


@router.post("/generate-pdf")
async def generate_pdf(
    request: Request,
    ghl: Optional[GHLService] = Depends(get_optional_ghl_service),
):
    body = await _json_body(request)
    data = sanitize_opportunity_data(body)
    employer = data.get("businessName") or data.get("employerName") or "Group"
    stamp = datetime.now(timezone.utc).strftime("%Y%m%d%H%M%S")
    filename = f"Proposal_{safe_filename(employer)}_{stamp}.pdf"

    try:
        pdf_bytes = render_proposal_pdf_bytes(ProposalData.from_submission(data))
    except Exception as e:
        logger.error(f"PDF generation error: {e}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={"error": "Failed to generate PDF"}
        )

    if data.get("contactId"):
        if ghl is None:
            logger.warning("generate-pdf: contactId given but GHL_API_KEY is not configured; skipping email")
        else:
            await IntakeOrchestrator(ghl).deliver_on_demand(data, filename, pdf_bytes, request=request)

    return Response(
        content=pdf_bytes,
        media_type="application/pdf",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )
