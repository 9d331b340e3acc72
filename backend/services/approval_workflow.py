"""
Approval workflow for price overrides, driven by the approve/reject links in the
reviewer's email.

State machine on approval.status: pending -> approved | rejected. The transition
is a conditional update, so a replayed or concurrent click on a decided record
gets ALREADY_DECIDED and repeats none of the side effects (stage move, notes,
proposal email, rejection notice).
"""
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional, Tuple

from models import ApprovalOutcome, ApprovalStatus, AuditAction, AuditActor, AuditStatus, ProposalEmailStatus
from services import opportunity_store
from services.crm_email_templates import build_rejection_email
from services.ghl_config import (
    GHL_LOCATION_ID,
    PROPOSAL_SENT_STAGE_ID,
    REVIEWER_CONTACT_ID,
    REVIEWER_NAME,
    SALES_EMAIL_FROM,
)
from services.ghl_service import GHLService
from services.proposal_delivery import OpportunityContext, ProposalDelivery, ProposalSendResult
from utils.audit import log_audit

logger = logging.getLogger(__name__)

MISSING_PDF_OR_CONTACT = "missing_pdf_or_contact"


@dataclass
class ApprovalResult:
    outcome: ApprovalOutcome
    opportunity_id: str
    record: Optional[Dict[str, Any]] = None
    proposal: Optional[ProposalSendResult] = None

    @property
    def current_status(self) -> Optional[str]:
        if not self.record:
            return None
        return (self.record.get("approval") or {}).get("status")


class ApprovalWorkflow:
    def __init__(
        self,
        ghl: GHLService,
        delivery: Optional[ProposalDelivery] = None,
        stage_id: str = PROPOSAL_SENT_STAGE_ID,
        reviewer_contact_id: str = REVIEWER_CONTACT_ID,
        reviewer_name: str = REVIEWER_NAME,
    ):
        self.ghl = ghl
        self.delivery = delivery or ProposalDelivery(ghl)
        self.stage_id = stage_id
        self.reviewer_contact_id = reviewer_contact_id
        self.reviewer_name = reviewer_name

    @property
    def actor(self) -> AuditActor:
        return AuditActor(name=self.reviewer_name, role="Approver")

    async def _decide(
        self, opportunity_id: str, to_status: ApprovalStatus
    ) -> Tuple[ApprovalOutcome, Optional[Dict[str, Any]]]:
        record = await opportunity_store.transition_approval(opportunity_id, to_status)
        if record is not None:
            outcome = ApprovalOutcome.APPROVED if to_status == ApprovalStatus.APPROVED else ApprovalOutcome.REJECTED
            return outcome, record

        existing = await opportunity_store.find_by_crm_id(opportunity_id)
        if existing is None:
            return ApprovalOutcome.NOT_FOUND, None
        return ApprovalOutcome.ALREADY_DECIDED, existing

    async def _upstream_warning(self, opportunity_id: str, step: str, error: Exception, request: Any) -> None:
        logger.error(f"{step} failed for opportunity {opportunity_id}: {error}")
        await log_audit(
            AuditAction.UPDATE,
            "Opportunity",
            opportunity_id,
            {"step": step, "error": str(error)},
            request=request,
            status=AuditStatus.WARNING,
            actor=self.actor,
        )

    async def approve(self, opportunity_id: str, request: Any = None) -> ApprovalResult:
        outcome, record = await self._decide(opportunity_id, ApprovalStatus.APPROVED)
        if outcome == ApprovalOutcome.ALREADY_DECIDED:
            logger.info(f"Approve ignored for {opportunity_id}: already {record['approval']['status']}")
            return ApprovalResult(outcome, opportunity_id, record)
        if outcome == ApprovalOutcome.NOT_FOUND:
            logger.warning(f"Approve for {opportunity_id}: no mirror record, updating GHL only")

        try:
            await self.ghl.update_opportunity(opportunity_id, {"pipelineStageId": self.stage_id})
        except Exception as e:
            await self._upstream_warning(opportunity_id, "move_to_proposal_sent", e, request)

        try:
            await self.ghl.add_opportunity_note(
                opportunity_id, f"**Price override approved by {self.reviewer_name} via email.**"
            )
        except Exception as e:
            await self._upstream_warning(opportunity_id, "approval_note", e, request)

        proposal_result = None
        if record is not None:
            proposal = record.get("proposal") or {}
            crm = record.get("crm") or {}
            if proposal.get("pdf_url") and crm.get("contact_id"):
                proposal_result = await self.delivery.send_proposal(
                    OpportunityContext.from_record(record), proposal["pdf_url"]
                )
            else:
                await opportunity_store.mark_email_status(
                    opportunity_id, ProposalEmailStatus.FAILED, last_error=MISSING_PDF_OR_CONTACT
                )
                logger.warning(f"Approved {opportunity_id} but proposal cannot be sent: {MISSING_PDF_OR_CONTACT}")

        await log_audit(
            AuditAction.UPDATE,
            "Opportunity",
            opportunity_id,
            {
                "approval": ApprovalStatus.APPROVED.value,
                "outcome": outcome.value,
                "proposal": proposal_result.to_dict() if proposal_result else None,
            },
            request=request,
            actor=self.actor,
        )
        return ApprovalResult(outcome, opportunity_id, record, proposal_result)

    async def reject(self, opportunity_id: str, request: Any = None) -> ApprovalResult:
        outcome, record = await self._decide(opportunity_id, ApprovalStatus.REJECTED)
        if outcome == ApprovalOutcome.ALREADY_DECIDED:
            logger.info(f"Reject ignored for {opportunity_id}: already {record['approval']['status']}")
            return ApprovalResult(outcome, opportunity_id, record)
        if outcome == ApprovalOutcome.NOT_FOUND:
            logger.warning(f"Reject for {opportunity_id}: no mirror record, updating GHL only")

        try:
            await self.ghl.add_opportunity_note(
                opportunity_id, f"**Price override rejected by {self.reviewer_name} via email.**"
            )
        except Exception as e:
            await self._upstream_warning(opportunity_id, "rejection_note", e, request)

        assigned_to = ((record or {}).get("assignment") or {}).get("assigned_to_user")
        owner_email = await self.delivery.resolve_owner_email(assigned_to)
        notice_sent = False
        if owner_email:
            employer = (record or {}).get("employer_name") or "Group"
            email = build_rejection_email(employer, opportunity_id, GHL_LOCATION_ID)
            try:
                await self.ghl.send_message({
                    "type": "Email",
                    "contactId": self.reviewer_contact_id,
                    "emailFrom": SALES_EMAIL_FROM,
                    "subject": email["subject"],
                    "html": email["html"],
                    "message": email["text"],
                    "cc": [owner_email],
                })
                notice_sent = True
            except Exception as e:
                await self._upstream_warning(opportunity_id, "rejection_notice", e, request)

        await log_audit(
            AuditAction.UPDATE,
            "Opportunity",
            opportunity_id,
            {
                "approval": ApprovalStatus.REJECTED.value,
                "outcome": outcome.value,
                "owner_email": owner_email,
                "notice_sent": notice_sent,
            },
            request=request,
            actor=self.actor,
        )
        return ApprovalResult(outcome, opportunity_id, record)
