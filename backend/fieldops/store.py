from __future__ import annotations

import logging
from datetime import date, datetime
from threading import Lock, RLock
from typing import TYPE_CHECKING, Callable, Optional, TypeVar
from uuid import uuid4

from pydantic import BaseModel

from backend.fieldops.models import (
    AccountCreateRequest,
    AccountRecord,
    AccountUpdateRequest,
    ContactCreateRequest,
    ContactRecord,
    ContactUpdateRequest,
    DocumentCreateRequest,
    DocumentKind,
    DocumentRecord,
    DocumentStatus,
    DuplicateMatch,
    ExistingRecord,
    LeadCreateRequest,
    LeadRecord,
    LeadUpdateRequest,
    MatchCandidate,
    RecordKind,
    utc_now,
)
from backend.fieldops.services.dedupe import DuplicateThresholds, find_duplicates
from backend.fieldops.services.numbering import (
    DEFAULT_RECENT_WINDOW,
    bump_number,
    next_number,
)
from backend.fieldops.services.workflow import (
    INITIAL_STATUS,
    SOURCE_READY_STATUS,
    can_transition,
    statuses_for,
)

if TYPE_CHECKING:
    from backend.fieldops.persistence import SqlitePersistence

logger = logging.getLogger("fieldops.store")

RecordT = TypeVar("RecordT", LeadRecord, ContactRecord, AccountRecord)

ID_PREFIXES = {
    RecordKind.lead: "lead",
    RecordKind.contact: "con",
    RecordKind.account: "acc",
    DocumentKind.quote: "quo",
    DocumentKind.work_order: "wo",
    DocumentKind.invoice: "inv",
}

SOURCE_DOCUMENT_KINDS: dict[DocumentKind, frozenset[DocumentKind]] = {
    DocumentKind.quote: frozenset(),
    DocumentKind.work_order: frozenset({DocumentKind.quote}),
    DocumentKind.invoice: frozenset({DocumentKind.quote, DocumentKind.work_order}),
}


REQUIRED_FIELDS = {"name", "first_name", "last_name"}


def new_id(prefix: str) -> str:
    return f"{prefix}_{uuid4().hex[:10]}"


def _clean(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    stripped = value.strip()
    return stripped or None


def clean_candidate(candidate: MatchCandidate) -> MatchCandidate:
    fields = candidate.model_dump()
    return MatchCandidate(
        **{key: _clean(value) if isinstance(value, str) else value for key, value in fields.items()}
    )


class StoreConflictError(Exception):
    pass


class StoreNotFoundError(Exception):
    pass


class DuplicateRecordsError(StoreConflictError):
    def __init__(self, kind: RecordKind, matches: list[DuplicateMatch]) -> None:
        super().__init__(f"{len(matches)} possible duplicate {kind.value} record(s) found")
        self.kind = kind
        self.matches = matches


class DocumentNumberConflictError(StoreConflictError):
    pass


class InMemoryStore:
    def __init__(
        self,
        persistence: Optional["SqlitePersistence"] = None,
        *,
        thresholds: Optional[DuplicateThresholds] = None,
        recent_window: int = DEFAULT_RECENT_WINDOW,
        max_number_retries: int = 5,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._lock = RLock()
        self._number_locks = {kind: Lock() for kind in DocumentKind}
        self.persistence = persistence
        self.thresholds = thresholds or DuplicateThresholds()
        self.recent_window = max(1, recent_window)
        self.max_number_retries = max(1, max_number_retries)
        self._clock = clock
        self.leads: dict[str, LeadRecord] = {}
        self.contacts: dict[str, ContactRecord] = {}
        self.accounts: dict[str, AccountRecord] = {}
        self.documents: dict[str, DocumentRecord] = {}
        self._place_index: dict[RecordKind, dict[str, list[str]]] = {
            kind: {} for kind in RecordKind
        }
        self._issued_numbers: dict[DocumentKind, set[str]] = {kind: set() for kind in DocumentKind}

        if self.persistence:
            snapshot = self.persistence.load_snapshot()
            if snapshot:
                self._hydrate_from_snapshot(snapshot)

    # Duplicate detection

    def check_duplicates(self, kind: RecordKind, candidate: MatchCandidate) -> list[DuplicateMatch]:
        candidate = clean_candidate(candidate)
        with self._lock:
            existing = [record.as_existing() for record in self._records(kind).values()]
            indexed = self._place_id_lookup(kind, candidate.place_id)
        return find_duplicates(
            kind,
            candidate,
            existing,
            thresholds=self.thresholds,
            place_id_index=indexed,
        )

    def _guard_duplicates(
        self, kind: RecordKind, candidate: MatchCandidate, ignore_duplicates: bool
    ) -> list[DuplicateMatch]:
        matches = self.check_duplicates(kind, candidate)
        if matches and not ignore_duplicates:
            raise DuplicateRecordsError(kind, matches)
        if matches:
            logger.info(
                "duplicates_overridden kind=%s count=%s ids=%s",
                kind.value,
                len(matches),
                ",".join(match.record.id for match in matches),
            )
        return matches

    def _records(self, kind: RecordKind) -> dict:
        if kind == RecordKind.lead:
            return self.leads
        if kind == RecordKind.contact:
            return self.contacts
        return self.accounts

    def _place_id_lookup(
        self, kind: RecordKind, place_id: Optional[str]
    ) -> Optional[list[ExistingRecord]]:
        if not place_id:
            return None
        records = self._records(kind)
        return [
            records[record_id].as_existing()
            for record_id in self._place_index[kind].get(place_id, [])
            if record_id in records
        ]

    def _index_place_id(
        self, kind: RecordKind, record_id: str, old: Optional[str], new: Optional[str]
    ) -> None:
        index = self._place_index[kind]
        if old and old != new and record_id in index.get(old, []):
            index[old].remove(record_id)
            if not index[old]:
                del index[old]
        if new and record_id not in index.setdefault(new, []):
            index[new].append(record_id)

    # Leads

    def create_lead(self, request: LeadCreateRequest) -> tuple[LeadRecord, list[DuplicateMatch]]:
        candidate = MatchCandidate(
            name=request.name.strip(),
            email=_clean(request.email),
            phone=_clean(request.phone),
            place_id=_clean(request.place_id),
            address=_clean(request.address),
        )
        with self._lock:
            overridden = self._guard_duplicates(
                RecordKind.lead, candidate, request.ignore_duplicates
            )
            now = self._clock()
            lead = LeadRecord(
                id=new_id(ID_PREFIXES[RecordKind.lead]),
                name=candidate.name,
                email=candidate.email,
                phone=candidate.phone,
                place_id=candidate.place_id,
                address=candidate.address,
                source=_clean(request.source),
                notes=_clean(request.notes),
                created_at_utc=now,
                updated_at_utc=now,
            )
            self.leads[lead.id] = lead
            self._index_place_id(RecordKind.lead, lead.id, None, lead.place_id)
            self._persist_state()
            return lead, overridden

    def update_lead(
        self, lead_id: str, request: LeadUpdateRequest
    ) -> tuple[LeadRecord, list[DuplicateMatch]]:
        with self._lock:
            lead = self.get_lead(lead_id)
            updated = self._apply_update(lead, request)
            matches = self.check_duplicates(
                RecordKind.lead,
                MatchCandidate(
                    name=updated.name,
                    email=updated.email,
                    phone=updated.phone,
                    place_id=updated.place_id,
                    address=updated.address,
                    exclude_id=lead_id,
                ),
            )
            self.leads[lead_id] = updated
            self._index_place_id(RecordKind.lead, lead_id, lead.place_id, updated.place_id)
            self._persist_state()
            return updated, matches

    def get_lead(self, lead_id: str) -> LeadRecord:
        lead = self.leads.get(lead_id)
        if not lead:
            raise StoreNotFoundError(f"lead not found: {lead_id}")
        return lead

    def list_leads(self, *, limit: int = 50, search: Optional[str] = None) -> list[LeadRecord]:
        with self._lock:
            records = list(self.leads.values())
        if search:
            term = search.strip().lower()
            records = [
                item
                for item in records
                if (
                    term in item.name.lower()
                    or (item.email and term in item.email.lower())
                    or (item.phone and term in item.phone.lower())
                    or (item.address and term in item.address.lower())
                )
            ]
        return self._newest_first(records, limit)

    # Contacts

    def create_contact(
        self, request: ContactCreateRequest
    ) -> tuple[ContactRecord, list[DuplicateMatch]]:
        candidate = MatchCandidate(
            first_name=request.first_name.strip(),
            last_name=request.last_name.strip(),
            email=_clean(request.email),
            phone=_clean(request.phone),
            place_id=_clean(request.place_id),
            address=_clean(request.address),
        )
        with self._lock:
            if request.account_id:
                self.get_account(request.account_id)
            overridden = self._guard_duplicates(
                RecordKind.contact, candidate, request.ignore_duplicates
            )
            now = self._clock()
            contact = ContactRecord(
                id=new_id(ID_PREFIXES[RecordKind.contact]),
                first_name=candidate.first_name,
                last_name=candidate.last_name,
                email=candidate.email,
                phone=candidate.phone,
                place_id=candidate.place_id,
                address=candidate.address,
                account_id=request.account_id,
                created_at_utc=now,
                updated_at_utc=now,
            )
            self.contacts[contact.id] = contact
            self._index_place_id(RecordKind.contact, contact.id, None, contact.place_id)
            self._persist_state()
            return contact, overridden

    def update_contact(
        self, contact_id: str, request: ContactUpdateRequest
    ) -> tuple[ContactRecord, list[DuplicateMatch]]:
        with self._lock:
            contact = self.get_contact(contact_id)
            if request.account_id:
                self.get_account(request.account_id)
            updated = self._apply_update(contact, request)
            matches = self.check_duplicates(
                RecordKind.contact,
                MatchCandidate(
                    first_name=updated.first_name,
                    last_name=updated.last_name,
                    email=updated.email,
                    phone=updated.phone,
                    place_id=updated.place_id,
                    address=updated.address,
                    exclude_id=contact_id,
                ),
            )
            self.contacts[contact_id] = updated
            self._index_place_id(
                RecordKind.contact, contact_id, contact.place_id, updated.place_id
            )
            self._persist_state()
            return updated, matches

    def get_contact(self, contact_id: str) -> ContactRecord:
        contact = self.contacts.get(contact_id)
        if not contact:
            raise StoreNotFoundError(f"contact not found: {contact_id}")
        return contact

    def list_contacts(
        self,
        *,
        limit: int = 50,
        account_id: Optional[str] = None,
        search: Optional[str] = None,
    ) -> list[ContactRecord]:
        with self._lock:
            records = list(self.contacts.values())
        if account_id:
            records = [item for item in records if item.account_id == account_id]
        if search:
            term = search.strip().lower()
            records = [
                item
                for item in records
                if (
                    term in f"{item.first_name} {item.last_name}".lower()
                    or (item.email and term in item.email.lower())
                    or (item.phone and term in item.phone.lower())
                )
            ]
        return self._newest_first(records, limit)

    # Accounts

    def create_account(
        self, request: AccountCreateRequest
    ) -> tuple[AccountRecord, list[DuplicateMatch]]:
        candidate = MatchCandidate(
            name=request.name.strip(),
            place_id=_clean(request.place_id),
            address=_clean(request.address),
        )
        with self._lock:
            overridden = self._guard_duplicates(
                RecordKind.account, candidate, request.ignore_duplicates
            )
            now = self._clock()
            account = AccountRecord(
                id=new_id(ID_PREFIXES[RecordKind.account]),
                name=candidate.name,
                place_id=candidate.place_id,
                address=candidate.address,
                phone=_clean(request.phone),
                email=_clean(request.email),
                created_at_utc=now,
                updated_at_utc=now,
            )
            self.accounts[account.id] = account
            self._index_place_id(RecordKind.account, account.id, None, account.place_id)
            self._persist_state()
            return account, overridden

    def update_account(
        self, account_id: str, request: AccountUpdateRequest
    ) -> tuple[AccountRecord, list[DuplicateMatch]]:
        with self._lock:
            account = self.get_account(account_id)
            updated = self._apply_update(account, request)
            matches = self.check_duplicates(
                RecordKind.account,
                MatchCandidate(
                    name=updated.name,
                    place_id=updated.place_id,
                    address=updated.address,
                    exclude_id=account_id,
                ),
            )
            self.accounts[account_id] = updated
            self._index_place_id(
                RecordKind.account, account_id, account.place_id, updated.place_id
            )
            self._persist_state()
            return updated, matches

    def get_account(self, account_id: str) -> AccountRecord:
        account = self.accounts.get(account_id)
        if not account:
            raise StoreNotFoundError(f"account not found: {account_id}")
        return account

    def list_accounts(
        self, *, limit: int = 50, search: Optional[str] = None
    ) -> list[AccountRecord]:
        with self._lock:
            records = list(self.accounts.values())
        if search:
            term = search.strip().lower()
            records = [
                item
                for item in records
                if term in item.name.lower() or (item.address and term in item.address.lower())
            ]
        return self._newest_first(records, limit)

    # Documents

    def create_document(
        self, kind: DocumentKind, request: DocumentCreateRequest
    ) -> DocumentRecord:
        with self._lock:
            if request.account_id:
                self.get_account(request.account_id)
            self._check_source_document(kind, request.source_document_id)

        document_id = new_id(ID_PREFIXES[kind])
        with self._number_locks[kind]:
            now = self._clock()
            number = self._allocate_number(kind, document_id, now.date())
            document = DocumentRecord(
                id=document_id,
                kind=kind,
                number=number,
                title=request.title,
                total=request.total,
                status=INITIAL_STATUS[kind],
                account_id=request.account_id,
                source_document_id=request.source_document_id,
                created_at_utc=now,
                updated_at_utc=now,
            )
            with self._lock:
                self.documents[document.id] = document
                self._persist_state()
        logger.info(
            "document_created kind=%s id=%s number=%s", kind.value, document.id, document.number
        )
        return document

    def change_document_status(
        self, kind: DocumentKind, document_id: str, status: DocumentStatus
    ) -> DocumentRecord:
        with self._lock:
            document = self.get_document(kind, document_id)
            if document.status == status:
                return document
            if status not in statuses_for(kind):
                raise StoreConflictError(f"{status.value} is not a valid {kind.value} status")
            if not can_transition(kind, document.status, status):
                raise StoreConflictError(
                    f"invalid {kind.value} transition {document.status.value} -> {status.value}"
                )
            updated = document.model_copy(
                update={"status": status, "updated_at_utc": self._clock()}
            )
            self.documents[document_id] = updated
            self._persist_state()
        logger.info(
            "document_status_changed kind=%s id=%s from=%s to=%s",
            kind.value,
            document_id,
            document.status.value,
            status.value,
        )
        return updated

    def get_document(self, kind: DocumentKind, document_id: str) -> DocumentRecord:
        document = self.documents.get(document_id)
        if not document or document.kind != kind:
            raise StoreNotFoundError(f"{kind.value} not found: {document_id}")
        return document

    def list_documents(self, kind: DocumentKind, *, limit: int = 50) -> list[DocumentRecord]:
        with self._lock:
            records = [item for item in self.documents.values() if item.kind == kind]
        records.reverse()
        safe_limit = max(1, min(limit, 500))
        return records[:safe_limit]

    def recent_document_numbers(self, kind: DocumentKind) -> list[str]:
        """Newest-first numbers of ``kind``, bounded by the recent window."""
        if self.persistence:
            return self.persistence.list_recent_document_numbers(kind, limit=self.recent_window)
        with self._lock:
            numbers = [item.number for item in self.documents.values() if item.kind == kind]
        numbers.reverse()
        return numbers[: self.recent_window]

    def _check_source_document(self, kind: DocumentKind, source_id: Optional[str]) -> None:
        if not source_id:
            return
        allowed = SOURCE_DOCUMENT_KINDS[kind]
        if not allowed:
            raise StoreConflictError(f"a {kind.value} cannot reference a source document")
        source = self.documents.get(source_id)
        if not source:
            raise StoreNotFoundError(f"source document not found: {source_id}")
        if source.kind not in allowed:
            raise StoreConflictError(
                f"a {kind.value} cannot be raised from a {source.kind.value}"
            )
        ready = SOURCE_READY_STATUS[source.kind]
        if source.status != ready:
            raise StoreConflictError(
                f"{source.kind.value} {source.number} must be {ready.value}, "
                f"not {source.status.value}"
            )

    def _allocate_number(self, kind: DocumentKind, document_id: str, today: date) -> str:
        number = next_number(kind, self.recent_document_numbers(kind), today)
        for attempt in range(1, self.max_number_retries + 1):
            if self._claim_number(kind, number, document_id):
                logger.info(
                    "document_number_allocated kind=%s number=%s attempt=%s",
                    kind.value,
                    number,
                    attempt,
                )
                return number
            logger.warning(
                "document_number_conflict kind=%s number=%s attempt=%s",
                kind.value,
                number,
                attempt,
            )
            number = bump_number(kind, number)
        raise DocumentNumberConflictError(
            f"could not allocate a unique {kind.value} number after "
            f"{self.max_number_retries} attempts"
        )

    def _claim_number(self, kind: DocumentKind, number: str, document_id: str) -> bool:
        with self._lock:
            if number in self._issued_numbers[kind]:
                return False
            if self.persistence and not self.persistence.reserve_document_number(
                kind=kind, number=number, document_id=document_id
            ):
                return False
            self._issued_numbers[kind].add(number)
            return True

    # Helpers

    def _apply_update(self, record: RecordT, request: BaseModel) -> RecordT:
        # A blank string clears an optional field; required names are kept.
        changes: dict = {}
        for key, value in request.model_dump(exclude_none=True).items():
            if isinstance(value, str):
                value = _clean(value)
            if value is None and key in REQUIRED_FIELDS:
                continue
            changes[key] = value
        changes["updated_at_utc"] = self._clock()
        return record.model_copy(update=changes)

    @staticmethod
    def _newest_first(records: list, limit: int) -> list:
        # Insertion order breaks timestamp ties.
        records.reverse()
        records.sort(key=lambda item: item.created_at_utc, reverse=True)
        safe_limit = max(1, min(limit, 500))
        return records[:safe_limit]

    def _persist_state(self) -> None:
        if not self.persistence:
            return
        with self._lock:
            self.persistence.save_snapshot(self._snapshot_data())

    def _snapshot_data(self) -> dict:
        return {
            "leads": [record.model_dump(mode="json") for record in self.leads.values()],
            "contacts": [record.model_dump(mode="json") for record in self.contacts.values()],
            "accounts": [record.model_dump(mode="json") for record in self.accounts.values()],
            "documents": [record.model_dump(mode="json") for record in self.documents.values()],
        }

    def _hydrate_from_snapshot(self, snapshot: dict) -> None:
        self.leads = {
            record["id"]: LeadRecord.model_validate(record)
            for record in snapshot.get("leads", [])
        }
        self.contacts = {
            record["id"]: ContactRecord.model_validate(record)
            for record in snapshot.get("contacts", [])
        }
        self.accounts = {
            record["id"]: AccountRecord.model_validate(record)
            for record in snapshot.get("accounts", [])
        }
        self.documents = {
            record["id"]: DocumentRecord.model_validate(record)
            for record in snapshot.get("documents", [])
        }
        for kind in RecordKind:
            for record in self._records(kind).values():
                self._index_place_id(kind, record.id, None, record.place_id)
        for document in self.documents.values():
            self._issued_numbers[document.kind].add(document.number)
