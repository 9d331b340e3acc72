"""
Shared job runner for scheduled background jobs.
Used by server (scheduler). Each run_* returns a dict with "message" and "count".
"""
import logging
import os

logger = logging.getLogger(__name__)

PROPOSAL_RESEND_MAX_ATTEMPTS = int(os.getenv("PROPOSAL_RESEND_MAX_ATTEMPTS", "3"))
PROPOSAL_RESEND_BATCH_SIZE = int(os.getenv("PROPOSAL_RESEND_BATCH_SIZE", "25"))


async def run_proposal_resend_sweep():
    """Retry proposal emails that failed, up to PROPOSAL_RESEND_MAX_ATTEMPTS attempts per record."""
    try:
        from services import opportunity_store
        from services.ghl_config import get_ghl_api_key
        from services.ghl_service import ghl_service_provider
        from services.proposal_delivery import OpportunityContext, ProposalDelivery

        api_key = get_ghl_api_key()
        if not api_key:
            logger.warning("Proposal resend sweep skipped: GHL_API_KEY is not configured")
            return {"message": "Proposal resend skipped (no GHL credential)", "count": 0}

        ghl = await ghl_service_provider.get_service(api_key)
        delivery = ProposalDelivery(ghl)
        candidates = await opportunity_store.find_resend_candidates(
            PROPOSAL_RESEND_MAX_ATTEMPTS, limit=PROPOSAL_RESEND_BATCH_SIZE
        )

        sent = 0
        for record in candidates:
            context = OpportunityContext.from_record(record)
            result = await delivery.send_proposal(context, (record.get("proposal") or {}).get("pdf_url"))
            if result.ok:
                sent += 1

        logger.info(f"Proposal resend sweep completed: {sent}/{len(candidates)} sent")
        return {"message": f"Proposal emails resent: {sent} of {len(candidates)}", "count": sent}
    except Exception as e:
        logger.error(f"Proposal resend sweep failed: {e}")
        raise
