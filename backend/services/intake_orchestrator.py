"""
Intake orchestrator - turns a broker's form submission into a GHL contact +
opportunity, stores the local mirror record, and kicks off proposal automation.

The GHL opportunity is the source of truth: once it exists the request succeeds,
and mirror/PDF/email failures afterwards are logged and audited, never rolled back.
"""
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from models import AuditAction, AuditActor, AuditStatus, ProposalEmailStatus
from services import opportunity_store
from services.crm_email_templates import build_approval_request_email
from services.ghl_errors import CRMError
from services.ghl_config import GHL_LOCATION_ID, REVIEWER_CONTACT_ID, SALES_EMAIL_FROM
from services.ghl_service import GHLService
from services.proposal_delivery import OpportunityContext, ProposalDelivery
from services.proposal_pdf import ProposalData
from utils.audit import log_audit
from utils.public_app_url import build_approval_links
from utils.sanitize import sanitize_bool, sanitize_email, sanitize_number, sanitize_string

logger = logging.getLogger(__name__)

MAX_PRODUCTS = 50
MAX_CUSTOM_FIELDS = 100


# ============================================================================
# Input validation / sanitisation
# ============================================================================

def validate_opportunity_input(data: Any) -> List[str]:
    """Return a list of human-readable problems; empty means valid."""
    if not isinstance(data, dict):
        return ["Request body must be a JSON object"]

    errors = []
    for key in ("locationId", "pipelineId", "stageId"):
        if not data.get(key) or not isinstance(data.get(key), str):
            errors.append(f"{key} is required")

    contact = data.get("contact")
    if contact:
        if not isinstance(contact, dict):
            errors.append("contact must be an object")
        else:
            if not contact.get("email") or not sanitize_email(contact.get("email")):
                errors.append("Valid contact email is required")
            if not contact.get("name") and not contact.get("firstName"):
                errors.append("Contact name is required")
    elif not data.get("contactId"):
        errors.append("Either contact or contactId is required")

    if data.get("products") is not None and not isinstance(data.get("products"), list):
        errors.append("products must be an array")
    if data.get("customFields") is not None and not isinstance(data.get("customFields"), list):
        errors.append("customFields must be an array")
    return errors


def _sanitize_product(product: Dict[str, Any]) -> Dict[str, Any]:
    rate = product.get("rate")
    return {
        "product": sanitize_string(product.get("product"), 100),
        "rate": sanitize_string("" if rate is None else str(rate), 50),
        "effectiveDate": sanitize_string(product.get("effectiveDate"), 20),
        "isOverride": sanitize_bool(product.get("isOverride")),
        "justification": sanitize_string(product.get("justification"), 500),
        "waiveMin": sanitize_bool(product.get("waiveMin")),
        "employees": sanitize_number(product.get("employees")),
    }


def _sanitize_custom_field(custom_field: Dict[str, Any]) -> Dict[str, Any]:
    value = custom_field.get("field_value")
    return {
        "id": sanitize_string(custom_field.get("id"), 50),
        "key": sanitize_string(custom_field.get("key"), 100),
        "field_value": sanitize_string("" if value is None else str(value), 500),
    }


def sanitize_opportunity_data(data: Dict[str, Any]) -> Dict[str, Any]:
    """Escape / truncate / normalise a submission. Applying it twice changes nothing."""
    sanitized = dict(data)
    sanitized["name"] = sanitize_string(data.get("name"), 200)
    sanitized["source"] = sanitize_string(data.get("source"), 100)
    sanitized["employerName"] = sanitize_string(data.get("employerName"), 200)
    sanitized["businessName"] = sanitize_string(data.get("businessName"), 200)
    sanitized["effectiveDate"] = sanitize_string(data.get("effectiveDate"), 20)
    sanitized["assignedToName"] = sanitize_string(data.get("assignedToName"), 100)
    sanitized["brokerAgency"] = sanitize_string(data.get("brokerAgency"), 200)
    sanitized["proposalMessage"] = sanitize_string(data.get("proposalMessage"), 500)
    sanitized["monetaryValue"] = sanitize_number(data.get("monetaryValue"))

    contact = data.get("contact")
    if isinstance(contact, dict):
        sanitized["contact"] = {
            "name": sanitize_string(contact.get("name"), 100),
            "firstName": sanitize_string(contact.get("firstName"), 50),
            "lastName": sanitize_string(contact.get("lastName"), 50),
            "email": sanitize_email(contact.get("email")),
            "companyName": sanitize_string(contact.get("companyName"), 200),
        }
    if isinstance(data.get("products"), list):
        sanitized["products"] = [
            _sanitize_product(p) for p in data["products"][:MAX_PRODUCTS] if isinstance(p, dict)
        ]
    if isinstance(data.get("customFields"), list):
        sanitized["customFields"] = [
            _sanitize_custom_field(f) for f in data["customFields"][:MAX_CUSTOM_FIELDS] if isinstance(f, dict)
        ]
    return sanitized


def _split_name(name: str) -> Tuple[str, str]:
    parts = (name or "").split(" ")
    return parts[0], " ".join(parts[1:])


def _contact_id_from(response: Any) -> Optional[str]:
    if not isinstance(response, dict):
        return None
    contact = response.get("contact") or response
    return contact.get("id") if isinstance(contact, dict) else None


# ============================================================================
# Orchestrator
# ============================================================================

@dataclass
class AutomationJob:
    """Everything the background automation needs after the response is sent."""
    data: Dict[str, Any]
    opportunity_id: str
    contact_id: str
    requires_approval: bool = False
    override_products: List[Dict[str, Any]] = field(default_factory=list)


class IntakeOrchestrator:
    def __init__(self, ghl: GHLService, delivery: Optional[ProposalDelivery] = None):
        self.ghl = ghl
        self.delivery = delivery or ProposalDelivery(ghl)

    @staticmethod
    def actor_for(data: Dict[str, Any]) -> AuditActor:
        contact = data.get("contact") or {}
        return AuditActor(
            name=contact.get("name") or "Unknown Broker",
            email=contact.get("email") or None,
            role="Broker",
        )

    async def _ensure_contact(self, data: Dict[str, Any], actor: AuditActor, request: Any) -> str:
        contact_id = data.get("contactId")
        contact = data.get("contact")
        if not contact_id and contact:
            first_name, last_name = _split_name(contact.get("name") or "")
            response = await self.ghl.upsert_contact({
                "firstName": contact.get("firstName") or first_name,
                "lastName": contact.get("lastName") or last_name,
                "email": contact.get("email"),
                "companyName": contact.get("companyName"),
            })
            contact_id = _contact_id_from(response)
            if contact_id and isinstance(response, dict) and response.get("new"):
                await log_audit(
                    AuditAction.CREATE, "Contact", contact_id,
                    {"name": contact.get("name")}, request=request, actor=actor,
                )
        if not contact_id:
            raise ValueError("contactId is required")
        return contact_id

    async def create_opportunity(
        self, data: Dict[str, Any], request: Any = None
    ) -> Tuple[Dict[str, Any], AutomationJob]:
        """
        Create the GHL contact/opportunity and mirror record for sanitised input.

        Raises CRMError / ValueError when GHL creation fails; everything after
        that point is best-effort.
        """
        actor = self.actor_for(data)
        contact_id = await self._ensure_contact(data, actor, request)

        payload = {
            "name": data.get("name"),
            "pipelineId": data.get("pipelineId"),
            "pipelineStageId": data.get("stageId"),
            "status": data.get("status") or "open",
            "contactId": contact_id,
            "assignedTo": data.get("assignedTo"),
            "monetaryValue": data.get("monetaryValue"),
            "source": data.get("source"),
            "customFields": data.get("customFields") or [],
        }
        payload = {k: v for k, v in payload.items() if v is not None}
        try:
            response = await self.ghl.create_opportunity(payload)
        except Exception as e:
            await log_audit(
                AuditAction.CREATE, "Opportunity", "FAILED",
                {"error": e.to_dict() if isinstance(e, CRMError) else str(e), "payload": payload},
                request=request, status=AuditStatus.FAILURE, actor=actor,
            )
            raise
        opportunity = response.get("opportunity", response) if isinstance(response, dict) else {}
        opportunity_id = opportunity.get("id")
        if not opportunity_id:
            raise ValueError("GHL did not return an opportunity id")

        logger.info(f"Opportunity created in GHL: {opportunity_id}")
        await log_audit(
            AuditAction.CREATE, "Opportunity", opportunity_id,
            {"name": data.get("name")}, request=request, actor=actor,
        )

        record = opportunity_store.build_mirror_record(data, contact_id, opportunity_id, GHL_LOCATION_ID)
        try:
            await opportunity_store.insert_record(record)
        except Exception as e:
            logger.error(f"Failed to store mirror record for {opportunity_id}: {e}")
            await log_audit(
                AuditAction.CREATE, "Opportunity", opportunity_id,
                {"step": "mirror_record", "error": str(e)},
                request=request, status=AuditStatus.WARNING, actor=actor,
            )

        overrides = [p for p in data.get("products") or [] if p.get("isOverride")]
        job = AutomationJob(
            data={**data, "contactId": contact_id},
            opportunity_id=opportunity_id,
            contact_id=contact_id,
            requires_approval=bool(overrides),
            override_products=overrides,
        )
        return opportunity, job

    async def run_post_creation_automation(self, job: AutomationJob) -> None:
        """Background step: PDF, then approval request or proposal email. Never raises."""
        try:
            effective_date = opportunity_store.custom_field_value(
                job.data.get("customFields") or [], "opportunity.rfp_effective_date", "opportunity.effective_date"
            )
            proposal = ProposalData.from_submission(job.data, effective_date=effective_date)
            pdf_url = await self.delivery.generate_and_upload(
                proposal, job.contact_id, justifications=job.override_products
            )
            await opportunity_store.set_proposal_generated(job.opportunity_id, pdf_url)
        except Exception as e:
            logger.error(f"Proposal generation failed for {job.opportunity_id}: {e}")
            await log_audit(
                AuditAction.CREATE, "Proposal", job.opportunity_id,
                {"step": "generate_pdf", "error": str(e)}, status=AuditStatus.FAILURE,
            )
            if not job.requires_approval:
                await self._mark_failed(job.opportunity_id, "pdf_generation_failed")
                return
            pdf_url = None

        if job.requires_approval:
            try:
                await self.send_approval_email(job.data, job.opportunity_id, job.override_products)
            except Exception as e:
                logger.error(f"Approval email failed for {job.opportunity_id}: {e}")
                await log_audit(
                    AuditAction.CREATE, "Approval", job.opportunity_id,
                    {"step": "approval_email", "error": str(e)}, status=AuditStatus.WARNING,
                )
            return

        try:
            context = OpportunityContext.from_submission(job.data, opportunity_id=job.opportunity_id)
            result = await self.delivery.send_proposal(context, pdf_url)
            await log_audit(
                AuditAction.CREATE, "Proposal", job.opportunity_id,
                {"pdf_url": pdf_url, **result.to_dict()},
                status=AuditStatus.SUCCESS if result.ok else AuditStatus.FAILURE,
            )
        except Exception as e:
            logger.error(f"Proposal delivery failed for {job.opportunity_id}: {e}")

    async def _mark_failed(self, opportunity_id: str, reason: str) -> None:
        try:
            await opportunity_store.mark_email_status(opportunity_id, ProposalEmailStatus.FAILED, last_error=reason)
        except Exception as e:
            logger.error(f"Failed to update proposal status for {opportunity_id}: {e}")

    async def send_approval_email(
        self,
        data: Dict[str, Any],
        opportunity_id: str,
        override_products: Optional[List[Dict[str, Any]]] = None,
    ) -> Any:
        overrides = override_products
        if overrides is None:
            overrides = [p for p in data.get("products") or [] if p.get("isOverride")]
        if not overrides:
            return None

        fields = data.get("customFields") or []
        contact = data.get("contact") or {}
        employer = contact.get("companyName") or data.get("employerName") or data.get("name") or "Group"
        links = build_approval_links(opportunity_id)
        email = build_approval_request_email(
            employer_name=employer,
            broker_name=contact.get("name"),
            sales_person=data.get("assignedToName"),
            total_employees=opportunity_store.custom_field_value(fields, "opportunity.total_employees"),
            effective_date=opportunity_store.custom_field_value(
                fields, "opportunity.rfp_effective_date", "opportunity.effective_date"
            ),
            yearly_value=data.get("monetaryValue"),
            override_products=overrides,
            approve_link=links["approve"],
            reject_link=links["reject"],
            location_id=GHL_LOCATION_ID,
        )
        response = await self.ghl.send_message({
            "type": "Email",
            "contactId": REVIEWER_CONTACT_ID,
            "emailFrom": SALES_EMAIL_FROM,
            "subject": email["subject"],
            "html": email["html"],
            "message": email["text"],
        })
        logger.info(f"Approval request sent for opportunity {opportunity_id}")
        return response

    async def deliver_on_demand(
        self, data: Dict[str, Any], filename: str, pdf_bytes: bytes, request: Any = None
    ) -> Optional[Dict[str, Any]]:
        """
        /api/generate-pdf follow-up when the caller supplied a contactId: upload the
        already-rendered PDF, email it, note the contact, audit. Failures are logged only.
        """
        contact_id = data.get("contactId")
        if not contact_id:
            return None
        try:
            upload = await self.ghl.upload_file(filename, pdf_bytes, "application/pdf")
            pdf_url = upload.get("url") if isinstance(upload, dict) else None
            logger.info(f"On-demand proposal uploaded to GHL: {pdf_url}")

            context = OpportunityContext.from_submission(data)
            result = await self.delivery.send_proposal(context, pdf_url)

            await self.ghl.add_contact_note(
                contact_id, f"Pricing Proposal sent to Broker via email. [Link to Proposal]({pdf_url})"
            )
            await log_audit(
                AuditAction.CREATE, "Proposal", contact_id,
                {"employer": context.business_name, "pdf_url": pdf_url, **result.to_dict()},
                request=request,
                status=AuditStatus.SUCCESS if result.ok else AuditStatus.FAILURE,
            )
            return result.to_dict()
        except Exception as e:
            logger.error(f"On-demand proposal upload/email failed for contact {contact_id}: {e}")
            return None
