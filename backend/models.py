from pydantic import BaseModel, Field, ConfigDict
from typing import Optional, Dict, Any, List
from datetime import datetime, timezone
from enum import Enum
import uuid

# ============================================================================
# ENUMS (System Constants)
# ============================================================================

class ApprovalStatus(str, Enum):
    NOT_REQUIRED = "not_required"
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"

class ProposalEmailStatus(str, Enum):
    PENDING = "pending"
    AWAITING_APPROVAL = "awaiting_approval"
    SENT = "sent"
    FAILED = "failed"

class OpportunityStatus(str, Enum):
    NEW = "new"

class AuditAction(str, Enum):
    CREATE = "CREATE"
    UPDATE = "UPDATE"
    DELETE = "DELETE"

class AuditStatus(str, Enum):
    SUCCESS = "SUCCESS"
    FAILURE = "FAILURE"
    WARNING = "WARNING"

class ApprovalOutcome(str, Enum):
    APPROVED = "approved"
    REJECTED = "rejected"
    NOT_FOUND = "not_found"
    ALREADY_DECIDED = "already_decided"

# ============================================================================
# MODELS
# ============================================================================

class AuditActor(BaseModel):
    model_config = ConfigDict(extra="ignore")

    name: str = "System"
    email: Optional[str] = None
    role: Optional[str] = None

class AuditLog(BaseModel):
    model_config = ConfigDict(extra="ignore")

    audit_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    action: AuditAction
    resource_type: str
    resource_id: Optional[str] = None
    status: AuditStatus = AuditStatus.SUCCESS
    actor: AuditActor = Field(default_factory=AuditActor)
    details: Dict[str, Any] = Field(default_factory=dict)
    metadata: Dict[str, Any] = Field(default_factory=dict)

class BrokerInfo(BaseModel):
    name: Optional[str] = None
    email: Optional[str] = None
    agency: Optional[str] = None

class OpportunityDetails(BaseModel):
    effective_date: Optional[str] = None
    proposal_date: Optional[str] = None
    total_employees: Optional[float] = None
    source: Optional[str] = None
    current_administrator: Optional[str] = None
    ben_admin_system: Optional[str] = None
    postal_code: Optional[str] = None
    proposal_message: Optional[str] = None

class Financials(BaseModel):
    monthly_total: float = 0
    yearly_total: float = 0

class ApprovalState(BaseModel):
    requires_approval: bool = False
    approver_name: Optional[str] = None
    status: ApprovalStatus = ApprovalStatus.NOT_REQUIRED
    updated_at: Optional[datetime] = None

class ProposalState(BaseModel):
    pdf_url: Optional[str] = None
    generated_at: Optional[datetime] = None
    email_status: ProposalEmailStatus = ProposalEmailStatus.PENDING
    sent_at: Optional[datetime] = None
    last_attempt_at: Optional[datetime] = None
    last_error: Optional[str] = None
    attempt_count: int = 0
    broker_email: Optional[str] = None
    owner_email: Optional[str] = None

class CRMLink(BaseModel):
    location_id: Optional[str] = None
    contact_id: Optional[str] = None
    opportunity_id: str
    pipeline_id: Optional[str] = None
    synced_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

class OpportunityRecord(BaseModel):
    """Local mirror of a GHL opportunity plus workflow state."""
    model_config = ConfigDict(extra="ignore", use_enum_values=True)

    record_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    employer_name: Optional[str] = None
    status: OpportunityStatus = OpportunityStatus.NEW
    broker: BrokerInfo = Field(default_factory=BrokerInfo)
    details: OpportunityDetails = Field(default_factory=OpportunityDetails)
    assignment: Dict[str, Optional[str]] = Field(default_factory=lambda: {"assigned_to_user": None})
    products: List[Dict[str, Any]] = Field(default_factory=list)
    financials: Financials = Field(default_factory=Financials)
    approval: ApprovalState = Field(default_factory=ApprovalState)
    proposal: ProposalState = Field(default_factory=ProposalState)
    crm: CRMLink
