from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field, model_validator


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class RecordKind(str, Enum):
    lead = "lead"
    contact = "contact"
    account = "account"


class DocumentKind(str, Enum):
    quote = "quote"
    work_order = "work_order"
    invoice = "invoice"


class DocumentStatus(str, Enum):
    draft = "draft"
    presented = "presented"
    accepted = "accepted"
    declined = "declined"
    pending = "pending"
    scheduled = "scheduled"
    in_progress = "in_progress"
    completed = "completed"
    sent = "sent"
    paid = "paid"
    cancelled = "cancelled"


class MatchType(str, Enum):
    email = "email"
    phone = "phone"
    place_id = "place_id"
    name = "name"
    address = "address"


class MatchCandidate(BaseModel):
    """Field values of a record about to be created or just edited."""

    name: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    place_id: Optional[str] = None
    address: Optional[str] = None
    exclude_id: Optional[str] = None


class ExistingRecord(BaseModel):
    """Read-only snapshot of a persisted lead, contact or account."""

    id: str
    name: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    place_id: Optional[str] = None
    address: Optional[str] = None


class DuplicateMatch(BaseModel):
    record: ExistingRecord
    match_type: MatchType
    score: float = Field(ge=0, le=1)


class LeadRecord(BaseModel):
    id: str
    name: str
    email: Optional[str]
    phone: Optional[str]
    place_id: Optional[str]
    address: Optional[str]
    source: Optional[str]
    notes: Optional[str]
    created_at_utc: datetime
    updated_at_utc: datetime

    def as_existing(self) -> ExistingRecord:
        return ExistingRecord(
            id=self.id,
            name=self.name,
            email=self.email,
            phone=self.phone,
            place_id=self.place_id,
            address=self.address,
        )


class ContactRecord(BaseModel):
    id: str
    first_name: str
    last_name: str
    email: Optional[str]
    phone: Optional[str]
    place_id: Optional[str]
    address: Optional[str]
    account_id: Optional[str]
    created_at_utc: datetime
    updated_at_utc: datetime

    def as_existing(self) -> ExistingRecord:
        return ExistingRecord(
            id=self.id,
            first_name=self.first_name,
            last_name=self.last_name,
            email=self.email,
            phone=self.phone,
            place_id=self.place_id,
            address=self.address,
        )


class AccountRecord(BaseModel):
    id: str
    name: str
    place_id: Optional[str]
    address: Optional[str]
    phone: Optional[str]
    email: Optional[str]
    created_at_utc: datetime
    updated_at_utc: datetime

    def as_existing(self) -> ExistingRecord:
        # Accounts are matched on identity and location only.
        return ExistingRecord(
            id=self.id,
            name=self.name,
            place_id=self.place_id,
            address=self.address,
        )


class DocumentRecord(BaseModel):
    id: str
    kind: DocumentKind
    number: str
    title: str
    total: float
    status: DocumentStatus
    account_id: Optional[str]
    source_document_id: Optional[str]
    created_at_utc: datetime
    updated_at_utc: datetime


class LeadCreateRequest(BaseModel):
    name: str = Field(min_length=1, max_length=120)
    email: Optional[str] = Field(default=None, max_length=254)
    phone: Optional[str] = Field(default=None, max_length=30)
    place_id: Optional[str] = Field(default=None, max_length=255)
    address: Optional[str] = Field(default=None, max_length=300)
    source: Optional[str] = Field(default=None, max_length=80)
    notes: Optional[str] = Field(default=None, max_length=1000)
    ignore_duplicates: bool = False


class LeadUpdateRequest(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=120)
    email: Optional[str] = Field(default=None, max_length=254)
    phone: Optional[str] = Field(default=None, max_length=30)
    place_id: Optional[str] = Field(default=None, max_length=255)
    address: Optional[str] = Field(default=None, max_length=300)
    source: Optional[str] = Field(default=None, max_length=80)
    notes: Optional[str] = Field(default=None, max_length=1000)


class ContactCreateRequest(BaseModel):
    first_name: str = Field(min_length=1, max_length=80)
    last_name: str = Field(min_length=1, max_length=80)
    email: Optional[str] = Field(default=None, max_length=254)
    phone: Optional[str] = Field(default=None, max_length=30)
    place_id: Optional[str] = Field(default=None, max_length=255)
    address: Optional[str] = Field(default=None, max_length=300)
    account_id: Optional[str] = None
    ignore_duplicates: bool = False


class ContactUpdateRequest(BaseModel):
    first_name: Optional[str] = Field(default=None, min_length=1, max_length=80)
    last_name: Optional[str] = Field(default=None, min_length=1, max_length=80)
    email: Optional[str] = Field(default=None, max_length=254)
    phone: Optional[str] = Field(default=None, max_length=30)
    place_id: Optional[str] = Field(default=None, max_length=255)
    address: Optional[str] = Field(default=None, max_length=300)
    account_id: Optional[str] = None


class AccountCreateRequest(BaseModel):
    name: str = Field(min_length=1, max_length=160)
    place_id: Optional[str] = Field(default=None, max_length=255)
    address: Optional[str] = Field(default=None, max_length=300)
    phone: Optional[str] = Field(default=None, max_length=30)
    email: Optional[str] = Field(default=None, max_length=254)
    ignore_duplicates: bool = False


class AccountUpdateRequest(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=160)
    place_id: Optional[str] = Field(default=None, max_length=255)
    address: Optional[str] = Field(default=None, max_length=300)
    phone: Optional[str] = Field(default=None, max_length=30)
    email: Optional[str] = Field(default=None, max_length=254)


class DuplicateCheckRequest(BaseModel):
    name: Optional[str] = Field(default=None, max_length=160)
    first_name: Optional[str] = Field(default=None, max_length=80)
    last_name: Optional[str] = Field(default=None, max_length=80)
    email: Optional[str] = Field(default=None, max_length=254)
    phone: Optional[str] = Field(default=None, max_length=30)
    place_id: Optional[str] = Field(default=None, max_length=255)
    address: Optional[str] = Field(default=None, max_length=300)
    exclude_id: Optional[str] = None


class DuplicateMatchItem(BaseModel):
    id: str
    match_type: MatchType
    score: float
    name: Optional[str]
    email: Optional[str]
    phone: Optional[str]
    place_id: Optional[str]
    address: Optional[str]


class DuplicateCheckResponse(BaseModel):
    kind: RecordKind
    is_duplicate: bool
    matches: list[DuplicateMatchItem]


class RecordWriteResponse(BaseModel):
    id: str
    kind: RecordKind
    duplicates_overridden: int = 0


class LeadItem(BaseModel):
    lead_id: str
    name: str
    email: Optional[str]
    phone: Optional[str]
    place_id: Optional[str]
    address: Optional[str]
    source: Optional[str]
    notes: Optional[str]
    created_at_utc: datetime
    updated_at_utc: datetime


class ContactItem(BaseModel):
    contact_id: str
    first_name: str
    last_name: str
    email: Optional[str]
    phone: Optional[str]
    place_id: Optional[str]
    address: Optional[str]
    account_id: Optional[str]
    created_at_utc: datetime
    updated_at_utc: datetime


class AccountItem(BaseModel):
    account_id: str
    name: str
    place_id: Optional[str]
    address: Optional[str]
    phone: Optional[str]
    email: Optional[str]
    created_at_utc: datetime
    updated_at_utc: datetime


class DocumentCreateRequest(BaseModel):
    title: str = Field(min_length=1, max_length=200)
    total: float = Field(default=0, ge=0)
    account_id: Optional[str] = None
    source_document_id: Optional[str] = None

    @model_validator(mode="after")
    def strip_title(self) -> "DocumentCreateRequest":
        self.title = self.title.strip()
        if not self.title:
            raise ValueError("title cannot be blank")
        return self


class DocumentCreateResponse(BaseModel):
    document_id: str
    kind: DocumentKind
    number: str
    status: DocumentStatus


class DocumentStatusRequest(BaseModel):
    status: DocumentStatus


class DocumentItem(BaseModel):
    document_id: str
    kind: DocumentKind
    number: str
    title: str
    total: float
    status: DocumentStatus
    account_id: Optional[str]
    source_document_id: Optional[str]
    created_at_utc: datetime
    updated_at_utc: datetime
