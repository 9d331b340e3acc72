"""
Proposal delivery - uploads the generated PDF and emails it to the broker.

send_proposal() never raises for delivery problems: the outcome comes back as a
ProposalSendResult and is written to the mirror record on every attempt.
"""
import html
import logging
import os
import re
import tempfile
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from services import opportunity_store
from services.crm_email_templates import build_proposal_email
from services.ghl_config import SALES_EMAIL_FROM
from services.ghl_service import GHLService, user_list
from services.proposal_pdf import ProposalData, render_proposal_pdf
from utils.sanitize import sanitize_email

logger = logging.getLogger(__name__)

MISSING_CONTACT_ID = "missing_contact_id"
MISSING_PDF_URL = "missing_pdf_url"
MISSING_BROKER_EMAIL = "missing_broker_email"


@dataclass
class OpportunityContext:
    """What the send path needs to know about one opportunity."""
    opportunity_id: Optional[str]
    contact_id: Optional[str]
    business_name: str = "Group"
    effective_date: Optional[str] = None
    assigned_to: Optional[str] = None
    broker_email: Optional[str] = None

    @classmethod
    def from_record(cls, record: Dict[str, Any]) -> "OpportunityContext":
        crm = record.get("crm") or {}
        return cls(
            opportunity_id=crm.get("opportunity_id"),
            contact_id=crm.get("contact_id"),
            business_name=record.get("employer_name") or "Group",
            effective_date=(record.get("details") or {}).get("effective_date"),
            assigned_to=(record.get("assignment") or {}).get("assigned_to_user"),
            broker_email=(record.get("broker") or {}).get("email"),
        )

    @classmethod
    def from_submission(cls, data: Dict[str, Any], opportunity_id: Optional[str] = None) -> "OpportunityContext":
        contact = data.get("contact") or {}
        return cls(
            opportunity_id=opportunity_id or data.get("opportunityId"),
            contact_id=data.get("contactId"),
            business_name=data.get("employerName") or data.get("businessName") or contact.get("companyName") or "Group",
            effective_date=data.get("effectiveDate"),
            assigned_to=data.get("assignedTo"),
            broker_email=data.get("contactEmail") or contact.get("email") or data.get("brokerEmail"),
        )


@dataclass
class ProposalSendResult:
    ok: bool
    broker_email: Optional[str] = None
    owner_email: Optional[str] = None
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "ok": self.ok,
            "broker_email": self.broker_email,
            "owner_email": self.owner_email,
            "error": self.error,
        }


def safe_filename(name: str) -> str:
    """Filename-safe form of an employer name; sanitised input is unescaped first."""
    cleaned = re.sub(r"[^A-Za-z0-9_-]+", "_", html.unescape(name or "Group")).strip("_")
    return cleaned[:80] or "Group"


class ProposalDelivery:
    def __init__(self, ghl: GHLService, sender: str = SALES_EMAIL_FROM):
        self.ghl = ghl
        self.sender = sender

    async def resolve_owner_email(self, assigned_to: Optional[str]) -> Optional[str]:
        """Email of the assigned GHL user. Lookup failures degrade to None."""
        if not assigned_to:
            return None
        try:
            users = user_list(await self.ghl.get_users())
        except Exception as e:
            logger.error(f"Failed to fetch owner email for user {assigned_to}: {e}")
            return None
        for user in users:
            if user.get("id") == assigned_to:
                return sanitize_email(user.get("email")) or None
        return None

    async def resolve_broker_email(self, context: OpportunityContext) -> Optional[str]:
        explicit = sanitize_email(context.broker_email or "")
        if explicit:
            return explicit
        try:
            response = await self.ghl.get_contact(context.contact_id)
        except Exception as e:
            logger.error(f"Contact lookup failed for {context.contact_id}: {e}")
            return None
        contact = response.get("contact", response) if isinstance(response, dict) else {}
        return sanitize_email((contact or {}).get("email") or "") or None

    async def send_proposal(self, context: OpportunityContext, pdf_url: Optional[str]) -> ProposalSendResult:
        result = await self._send(context, pdf_url)

        if context.opportunity_id:
            try:
                await opportunity_store.record_send_attempt(
                    context.opportunity_id,
                    ok=result.ok,
                    broker_email=result.broker_email,
                    owner_email=result.owner_email,
                    error=result.error,
                )
            except Exception as e:
                logger.error(f"Failed to record proposal send attempt for {context.opportunity_id}: {e}")

        if result.ok:
            logger.info(f"Proposal email sent for {context.business_name} to {result.broker_email}")
        else:
            logger.warning(f"Proposal email not sent for {context.business_name}: {result.error}")
        return result

    async def _send(self, context: OpportunityContext, pdf_url: Optional[str]) -> ProposalSendResult:
        if not context.contact_id:
            return ProposalSendResult(ok=False, error=MISSING_CONTACT_ID)
        if not pdf_url:
            return ProposalSendResult(ok=False, error=MISSING_PDF_URL)

        broker_email = await self.resolve_broker_email(context)
        if not broker_email:
            return ProposalSendResult(ok=False, error=MISSING_BROKER_EMAIL)

        owner_email = await self.resolve_owner_email(context.assigned_to)

        email = build_proposal_email(context.business_name, pdf_url, context.effective_date)
        payload: Dict[str, Any] = {
            "type": "Email",
            "contactId": context.contact_id,
            "emailFrom": self.sender,
            "subject": email["subject"],
            "html": email["html"],
            "message": email["text"],
        }
        if owner_email and owner_email != broker_email:
            payload["cc"] = [owner_email]

        try:
            await self.ghl.send_message(payload)
        except Exception as e:
            return ProposalSendResult(ok=False, broker_email=broker_email, owner_email=owner_email, error=str(e))
        return ProposalSendResult(ok=True, broker_email=broker_email, owner_email=owner_email)

    async def generate_and_upload(
        self,
        proposal: ProposalData,
        contact_id: Optional[str] = None,
        justifications: Optional[List[Dict[str, Any]]] = None,
    ) -> str:
        """
        Render the PDF, upload it to the GHL media library and return its public URL.

        When a contact id is given a note with the link (and any override
        justifications) is added to the contact. Note failures are logged only.
        """
        stamp = datetime.now(timezone.utc).strftime("%Y%m%d%H%M%S")
        filename = f"Proposal_{safe_filename(proposal.employer_name)}_{stamp}.pdf"

        with tempfile.TemporaryDirectory(prefix="proposal_") as tmp_dir:
            path = render_proposal_pdf(proposal, os.path.join(tmp_dir, filename))
            with open(path, "rb") as f:
                content = f.read()

        upload = await self.ghl.upload_file(filename, content, "application/pdf")
        pdf_url = (upload or {}).get("url") if isinstance(upload, dict) else None
        if not pdf_url:
            raise ValueError("Upload response did not include a file URL")
        logger.info(f"Proposal PDF uploaded: {pdf_url}")

        if contact_id:
            note = f"Pricing proposal generated. [Link to Proposal]({pdf_url})"
            lines = [
                f"- {j.get('product')}: ${j.get('rate')} ({j.get('justification') or 'no justification'})"
                for j in justifications or []
            ]
            if lines:
                note += "\n\nOverride justifications:\n" + "\n".join(lines)
            try:
                await self.ghl.add_contact_note(contact_id, note)
            except Exception as e:
                logger.error(f"Failed to add proposal note to contact {contact_id}: {e}")

        return pdf_url
