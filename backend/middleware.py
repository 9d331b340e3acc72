from fastapi import Depends, HTTPException, status
from typing import Optional
import logging
from services.ghl_config import get_ghl_api_key
from services.ghl_service import GHLService, ghl_service_provider
from services.intake_orchestrator import IntakeOrchestrator
from services.approval_workflow import ApprovalWorkflow

logger = logging.getLogger(__name__)

async def get_ghl_service() -> GHLService:
    """Shared GHL facade for the configured credential."""
    api_key = get_ghl_api_key()
    if not api_key:
        logger.error("GHL_API_KEY is not configured")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={"error": "GHL_API_KEY is not configured"}
        )
    return await ghl_service_provider.get_service(api_key)

async def get_intake_orchestrator(ghl: GHLService = Depends(get_ghl_service)) -> IntakeOrchestrator:
    return IntakeOrchestrator(ghl)

async def get_approval_workflow(ghl: GHLService = Depends(get_ghl_service)) -> ApprovalWorkflow:
    return ApprovalWorkflow(ghl)

async def get_optional_ghl_service() -> Optional[GHLService]:
    """Like get_ghl_service, but None when no credential is configured."""
    api_key = get_ghl_api_key()
    if not api_key:
        return None
    return await ghl_service_provider.get_service(api_key)
