# models.py
# Pydantic models for stored records, inbound mail and API payloads

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, EmailStr, Field, field_validator


def new_id() -> str:
    return str(uuid.uuid4())


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Record(BaseModel):
    id: str = Field(default_factory=new_id)
    created_at: datetime = Field(default_factory=utcnow)


# --- stored records ---

class User(Record):
    email: str
    username: str
    name: Optional[str] = None
    password: str = "not-applicable"


class RequirementItem(BaseModel):
    name: str
    qty: Optional[float] = None
    specs: Dict[str, Any] = Field(default_factory=dict)
    unit_budget_usd: Optional[float] = None

    @field_validator("specs", mode="before")
    @classmethod
    def _specs_dict(cls, v):
        return v if isinstance(v, dict) else {}


class RequirementsMetadata(BaseModel):
    parsed_at: Optional[datetime] = None
    item_count: int = 0


class Requirements(BaseModel):
    items: List[RequirementItem] = []
    metadata: RequirementsMetadata = Field(default_factory=RequirementsMetadata)


class RFP(Record):
    title: str
    description_raw: Optional[str] = None
    requirements: Requirements = Field(default_factory=Requirements)
    budget_usd: Optional[float] = None
    delivery_days: Optional[int] = None
    payment_terms: Optional[str] = None
    warranty_months: Optional[int] = None
    reference_token: str
    created_by_id: str


class Vendor(Record):
    name: str
    contact_email: str
    phone: Optional[str] = None
    notes: Optional[str] = None
    meta: Dict[str, Any] = Field(default_factory=dict)
    password: str = "unknown-vendor-placeholder"


class DispatchStatus(str, Enum):
    DRAFT = "DRAFT"
    SENT = "SENT"
    FAILED = "FAILED"
    DELIVERED = "DELIVERED"


class SentDispatch(Record):
    rfp_id: str
    vendor_id: str
    reference_id: str
    message_id: str
    status: DispatchStatus = DispatchStatus.DRAFT
    sent_at: Optional[datetime] = None
    reply_to: Optional[str] = None


class AttachmentMeta(BaseModel):
    filename: str
    key: str
    url: str
    size: int
    content_type: Optional[str] = None


class LineItem(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    name: Optional[str] = None
    qty: Optional[float] = None
    unit_price_usd: Optional[float] = Field(
        default=None, validation_alias=AliasChoices("unit_price_usd", "unitPriceUsd"))
    total_usd: Optional[float] = Field(
        default=None, validation_alias=AliasChoices("total_usd", "totalUsd"))
    specs: Dict[str, Any] = Field(default_factory=dict)

    @field_validator("specs", mode="before")
    @classmethod
    def _specs_dict(cls, v):
        return v if isinstance(v, dict) else {}


class Proposal(Record):
    rfp_id: str
    vendor_id: str
    sent_rfp_reference: Optional[str] = None
    raw_email_body: str = ""
    attachments_meta: List[AttachmentMeta] = []
    parsed_at: Optional[datetime] = None
    price_usd: Optional[float] = None
    line_items: List[LineItem] = []
    delivery_days: Optional[int] = None
    warranty_months: Optional[int] = None
    payment_terms: Optional[str] = None
    completeness_score: Optional[float] = None


# --- LLM outputs ---

class ParsedRFP(BaseModel):
    title: Optional[str] = None
    items: List[RequirementItem] = []
    total_budget_usd: Optional[float] = None
    delivery_days: Optional[int] = None
    payment_terms: Optional[str] = None
    warranty_months: Optional[int] = None

    @field_validator("items", mode="before")
    @classmethod
    def _items_list(cls, v):
        return v if isinstance(v, list) else []


class ParsedProposal(BaseModel):
    """Structured proposal fields as returned by the extraction prompt."""
    model_config = ConfigDict(populate_by_name=True)

    price_usd: Optional[float] = Field(default=None, alias="priceUsd")
    line_items: Optional[List[LineItem]] = Field(default=None, alias="lineItems")
    delivery_days: Optional[int] = Field(default=None, alias="deliveryDays")
    warranty_months: Optional[int] = Field(default=None, alias="warrantyMonths")
    payment_terms: Optional[str] = Field(default=None, alias="paymentTerms")
    completeness_score: Optional[float] = Field(default=None, alias="completenessScore")

    @field_validator("line_items", mode="before")
    @classmethod
    def _line_items_list(cls, v):
        if v is None or isinstance(v, list):
            return v
        return None

    @field_validator("completeness_score")
    @classmethod
    def _clamp_score(cls, v):
        if v is None:
            return v
        return max(0.0, min(100.0, v))


# --- inbound mail ---

class InboundAttachment(BaseModel):
    filename: str
    content: bytes
    content_type: Optional[str] = None


class InboundEmail(BaseModel):
    """One inbound message, whatever shape the webhook delivered it in."""
    from_address: Optional[str] = None
    from_name: Optional[str] = None
    to_list: List[str] = []
    subject: str = ""
    body_text: str = ""
    body_html: str = ""
    message_id: Optional[str] = None
    headers: Dict[str, str] = Field(default_factory=dict)
    attachments: List[InboundAttachment] = []

    def header(self, name: str) -> Optional[str]:
        value = self.headers.get(name.lower())
        return value.strip() if value and value.strip() else None

    @property
    def body(self) -> str:
        return self.body_text or self.body_html or ""


# --- API payloads ---

class RFPCreateRequest(BaseModel):
    text: str
    user_id: Optional[str] = None


class VendorCreate(BaseModel):
    name: str
    email: EmailStr
    phone: Optional[str] = None
    notes: Optional[str] = None
    meta: Dict[str, Any] = Field(default_factory=dict)


class VendorOut(BaseModel):
    id: str
    created_at: datetime
    name: str
    contact_email: str
    phone: Optional[str] = None
    notes: Optional[str] = None
    meta: Dict[str, Any] = Field(default_factory=dict)


class SendRFPRequest(BaseModel):
    vendor_ids: List[str]
    subject: Optional[str] = None
    text: Optional[str] = None
    html: Optional[str] = None
    sender_name: Optional[str] = None
    sender_email: Optional[str] = None


class DispatchOutcome(BaseModel):
    vendor_id: str
    vendor_name: str
    email: str
    status: str
    reference_id: Optional[str] = None
    message_id: Optional[str] = None
    error: Optional[str] = None


class DispatchSummary(BaseModel):
    sent: List[DispatchOutcome] = []
    failed: List[DispatchOutcome] = []
    total: int = 0


# --- ranking ---

class Recommendation(str, Enum):
    BEST_CHOICE = "BEST_CHOICE"
    CONSIDER = "CONSIDER"
    LEAST_SUITABLE = "LEAST_SUITABLE"


class RankedProposal(BaseModel):
    proposal: Proposal
    vendor_name: str
    vendor_email: Optional[str] = None
    ranking_score: int
    ranking_reasons: List[str] = []
    rank: int
    recommendation: Recommendation


class RankingSummary(BaseModel):
    total_proposals: int
    best_vendor: str
    best_score: int
    average_price: float
    recommendation: str


class RFPBrief(BaseModel):
    id: str
    title: str
    budget_usd: Optional[float] = None


class ComparisonResult(BaseModel):
    rfp: RFPBrief
    ranked_proposals: List[RankedProposal]
    summary: RankingSummary
