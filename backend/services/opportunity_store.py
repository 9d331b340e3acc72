"""
Opportunity mirror store - local copy of each GHL opportunity plus workflow state.

Keyed for callbacks by crm.opportunity_id (unique index). Approval transitions are
conditional updates so that only one caller can move a record out of "pending".
"""
from database import database
from models import (
    ApprovalStatus, BrokerInfo, CRMLink, Financials, OpportunityDetails,
    OpportunityRecord, ProposalEmailStatus, ApprovalState, ProposalState,
)
from services.ghl_config import REVIEWER_NAME
from utils.sanitize import sanitize_email, sanitize_number
from pymongo import ReturnDocument
from datetime import datetime, timezone
from typing import Optional, Dict, Any, List
import logging

logger = logging.getLogger(__name__)

MAX_LIST_LIMIT = 200


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def custom_field_value(custom_fields: List[Dict[str, Any]], *keys: str) -> Optional[str]:
    """First non-empty field_value among custom fields matching any of keys."""
    for key in keys:
        for field in custom_fields or []:
            if field.get("key") == key and field.get("field_value") not in (None, ""):
                return field["field_value"]
    return None


def requires_approval(products: List[Dict[str, Any]]) -> bool:
    return any(p.get("isOverride") for p in products or [])


def build_mirror_record(
    data: Dict[str, Any],
    contact_id: Optional[str],
    opportunity_id: str,
    location_id: str,
) -> Dict[str, Any]:
    """Build the mirror document for a freshly created GHL opportunity from sanitised input."""
    contact = data.get("contact") or {}
    fields = data.get("customFields") or []
    products = data.get("products") or []
    needs_approval = requires_approval(products)

    broker_name = contact.get("name") or f"{contact.get('firstName') or ''} {contact.get('lastName') or ''}".strip()
    broker_email = sanitize_email(contact.get("email") or data.get("contactEmail") or "")

    record = OpportunityRecord(
        employer_name=data.get("employerName") or contact.get("companyName") or data.get("name"),
        broker=BrokerInfo(
            name=broker_name or None,
            email=broker_email or None,
            agency=data.get("brokerAgency") or "",
        ),
        details=OpportunityDetails(
            effective_date=custom_field_value(fields, "opportunity.rfp_effective_date", "opportunity.effective_date"),
            proposal_date=custom_field_value(fields, "opportunity.proposal_date"),
            total_employees=sanitize_number(custom_field_value(fields, "opportunity.total_employees")),
            source=custom_field_value(fields, "opportunity.opportunity_source", "opportunity.source") or data.get("source"),
            current_administrator=custom_field_value(fields, "opportunity.current_administrator"),
            ben_admin_system=custom_field_value(fields, "opportunity.ben_admin_system"),
            postal_code=custom_field_value(fields, "opportunity.postal_code"),
            proposal_message=data.get("proposalMessage") or "",
        ),
        assignment={"assigned_to_user": data.get("assignedTo")},
        products=products,
        financials=Financials(
            monthly_total=sanitize_number(custom_field_value(fields, "opportunity.monthly_total")),
            yearly_total=sanitize_number(custom_field_value(fields, "opportunity.yearly_total")),
        ),
        approval=ApprovalState(
            requires_approval=needs_approval,
            approver_name=custom_field_value(fields, "opportunity.approver_name") or (REVIEWER_NAME if needs_approval else None),
            status=ApprovalStatus.PENDING if needs_approval else ApprovalStatus.NOT_REQUIRED,
        ),
        proposal=ProposalState(
            email_status=ProposalEmailStatus.AWAITING_APPROVAL if needs_approval else ProposalEmailStatus.PENDING,
        ),
        crm=CRMLink(
            location_id=location_id,
            contact_id=contact_id,
            opportunity_id=opportunity_id,
            pipeline_id=data.get("pipelineId"),
        ),
    )
    return record.model_dump(mode="json")


async def insert_record(record: Dict[str, Any]) -> str:
    db = database.get_db()
    await db.opportunities.insert_one(dict(record))
    logger.info(f"Mirror record stored for opportunity {record['crm']['opportunity_id']}")
    return record["record_id"]


async def find_by_crm_id(opportunity_id: str) -> Optional[Dict[str, Any]]:
    db = database.get_db()
    return await db.opportunities.find_one({"crm.opportunity_id": opportunity_id}, {"_id": 0})


async def transition_approval(opportunity_id: str, to_status: ApprovalStatus) -> Optional[Dict[str, Any]]:
    """
    Move approval.status from pending to to_status.

    Returns the updated record, or None when no pending record matched (unknown id
    or already decided).
    """
    db = database.get_db()
    update: Dict[str, Any] = {
        "approval.status": to_status.value,
        "approval.updated_at": _now_iso(),
    }
    if to_status == ApprovalStatus.APPROVED:
        update["proposal.email_status"] = ProposalEmailStatus.PENDING.value
    return await db.opportunities.find_one_and_update(
        {"crm.opportunity_id": opportunity_id, "approval.status": ApprovalStatus.PENDING.value},
        {"$set": update},
        projection={"_id": 0},
        return_document=ReturnDocument.AFTER,
    )


async def set_proposal_generated(opportunity_id: str, pdf_url: str) -> None:
    db = database.get_db()
    await db.opportunities.update_one(
        {"crm.opportunity_id": opportunity_id},
        {"$set": {"proposal.pdf_url": pdf_url, "proposal.generated_at": _now_iso()}},
    )


async def record_send_attempt(
    opportunity_id: str,
    ok: bool,
    broker_email: Optional[str],
    owner_email: Optional[str],
    error: Optional[str] = None,
) -> None:
    """One atomic update per send attempt: attempt_count +1 plus outcome fields."""
    db = database.get_db()
    now = _now_iso()
    fields: Dict[str, Any] = {
        "proposal.last_attempt_at": now,
        "proposal.broker_email": broker_email,
        "proposal.owner_email": owner_email,
    }
    if ok:
        fields["proposal.email_status"] = ProposalEmailStatus.SENT.value
        fields["proposal.sent_at"] = now
        fields["proposal.last_error"] = None
    else:
        fields["proposal.email_status"] = ProposalEmailStatus.FAILED.value
        fields["proposal.last_error"] = error

    await db.opportunities.update_one(
        {"crm.opportunity_id": opportunity_id},
        {"$set": fields, "$inc": {"proposal.attempt_count": 1}},
    )


async def mark_email_status(
    opportunity_id: str,
    status: ProposalEmailStatus,
    last_error: Optional[str] = None,
) -> None:
    db = database.get_db()
    fields: Dict[str, Any] = {"proposal.email_status": status.value}
    if last_error is not None:
        fields["proposal.last_error"] = last_error
    await db.opportunities.update_one({"crm.opportunity_id": opportunity_id}, {"$set": fields})


async def list_recent(limit: int = 20) -> List[Dict[str, Any]]:
    limit = max(1, min(int(limit), MAX_LIST_LIMIT))
    db = database.get_db()
    cursor = db.opportunities.find({}, {"_id": 0}).sort("created_at", -1).limit(limit)
    return await cursor.to_list(length=limit)


async def find_resend_candidates(max_attempts: int, limit: int = 50) -> List[Dict[str, Any]]:
    """Failed sends that still have a PDF and contact and are not blocked on approval."""
    db = database.get_db()
    query = {
        "proposal.email_status": ProposalEmailStatus.FAILED.value,
        "proposal.attempt_count": {"$lt": max_attempts},
        "proposal.pdf_url": {"$ne": None},
        "crm.contact_id": {"$ne": None},
        "approval.status": {"$in": [ApprovalStatus.NOT_REQUIRED.value, ApprovalStatus.APPROVED.value]},
    }
    cursor = db.opportunities.find(query, {"_id": 0}).sort("proposal.last_attempt_at", 1).limit(limit)
    return await cursor.to_list(length=limit)
