from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, FastAPI, HTTPException, Request, Response, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import PlainTextResponse

from backend.fieldops.auth import AuthContext, require_read, require_write
from backend.fieldops.models import (
    AccountCreateRequest,
    AccountItem,
    AccountRecord,
    AccountUpdateRequest,
    ContactCreateRequest,
    ContactItem,
    ContactRecord,
    ContactUpdateRequest,
    DocumentCreateRequest,
    DocumentCreateResponse,
    DocumentItem,
    DocumentKind,
    DocumentRecord,
    DocumentStatusRequest,
    DuplicateCheckRequest,
    DuplicateCheckResponse,
    DuplicateMatch,
    DuplicateMatchItem,
    LeadCreateRequest,
    LeadItem,
    LeadRecord,
    LeadUpdateRequest,
    MatchCandidate,
    RecordKind,
    RecordWriteResponse,
)
from backend.fieldops.observability import MetricsRegistry, configure_logging, observe_request
from backend.fieldops.persistence import SqlitePersistence
from backend.fieldops.settings import Settings, load_settings
from backend.fieldops.store import (
    DuplicateRecordsError,
    InMemoryStore,
    StoreConflictError,
    StoreNotFoundError,
)

DOCUMENT_PATHS = {
    DocumentKind.quote: "/quotes",
    DocumentKind.work_order: "/work-orders",
    DocumentKind.invoice: "/invoices",
}


def create_app() -> FastAPI:
    app = FastAPI(title="Field Service Records API", version="0.1.0")
    configure_logging()
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=False,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    settings = load_settings()
    persistence = SqlitePersistence(settings.database_url) if settings.persistence_enabled else None
    app.state.store = InMemoryStore(
        persistence=persistence,
        thresholds=settings.duplicate_thresholds,
        recent_window=settings.sequence_recent_window,
        max_number_retries=settings.number_allocation_max_retries,
    )
    app.state.settings = settings
    app.state.metrics = MetricsRegistry()

    @app.middleware("http")
    async def observability_middleware(request: Request, call_next):
        return await observe_request(request, call_next, metrics=app.state.metrics)

    app.include_router(build_router())
    return app


def get_store(request: Request) -> InMemoryStore:
    return request.app.state.store


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_metrics(request: Request) -> MetricsRegistry:
    return request.app.state.metrics


def match_item(match: DuplicateMatch) -> DuplicateMatchItem:
    record = match.record
    name = record.name
    if name is None and (record.first_name or record.last_name):
        name = " ".join(part for part in (record.first_name, record.last_name) if part)
    return DuplicateMatchItem(
        id=record.id,
        match_type=match.match_type,
        score=round(match.score, 4),
        name=name,
        email=record.email,
        phone=record.phone,
        place_id=record.place_id,
        address=record.address,
    )


def not_found(exc: StoreNotFoundError) -> HTTPException:
    return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))


def conflict(exc: StoreConflictError, metrics: MetricsRegistry) -> HTTPException:
    if isinstance(exc, DuplicateRecordsError):
        metrics.increment("duplicates_blocked", kind=exc.kind.value)
        return HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail={
                "message": str(exc),
                "kind": exc.kind.value,
                "matches": [match_item(match).model_dump(mode="json") for match in exc.matches],
            },
        )
    return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc))


def write_response(
    kind: RecordKind,
    record_id: str,
    overridden: list[DuplicateMatch],
    metrics: MetricsRegistry,
) -> RecordWriteResponse:
    if overridden:
        metrics.increment("duplicates_overridden", kind=kind.value)
    return RecordWriteResponse(id=record_id, kind=kind, duplicates_overridden=len(overridden))


def check_response(kind: RecordKind, matches: list[DuplicateMatch]) -> DuplicateCheckResponse:
    return DuplicateCheckResponse(
        kind=kind,
        is_duplicate=bool(matches),
        matches=[match_item(match) for match in matches],
    )


def lead_item(lead: LeadRecord) -> LeadItem:
    return LeadItem(
        lead_id=lead.id,
        name=lead.name,
        email=lead.email,
        phone=lead.phone,
        place_id=lead.place_id,
        address=lead.address,
        source=lead.source,
        notes=lead.notes,
        created_at_utc=lead.created_at_utc,
        updated_at_utc=lead.updated_at_utc,
    )


def contact_item(contact: ContactRecord) -> ContactItem:
    return ContactItem(
        contact_id=contact.id,
        first_name=contact.first_name,
        last_name=contact.last_name,
        email=contact.email,
        phone=contact.phone,
        place_id=contact.place_id,
        address=contact.address,
        account_id=contact.account_id,
        created_at_utc=contact.created_at_utc,
        updated_at_utc=contact.updated_at_utc,
    )


def account_item(account: AccountRecord) -> AccountItem:
    return AccountItem(
        account_id=account.id,
        name=account.name,
        place_id=account.place_id,
        address=account.address,
        phone=account.phone,
        email=account.email,
        created_at_utc=account.created_at_utc,
        updated_at_utc=account.updated_at_utc,
    )


def document_item(document: DocumentRecord) -> DocumentItem:
    return DocumentItem(
        document_id=document.id,
        kind=document.kind,
        number=document.number,
        title=document.title,
        total=document.total,
        status=document.status,
        account_id=document.account_id,
        source_document_id=document.source_document_id,
        created_at_utc=document.created_at_utc,
        updated_at_utc=document.updated_at_utc,
    )


def build_router() -> APIRouter:
    router = APIRouter()

    @router.get("/health")
    def health() -> dict[str, str]:
        return {"status": "ok"}

    @router.get("/health/ready")
    def readiness(request: Request) -> dict[str, str]:
        settings = get_settings(request)
        persistence = getattr(request.app.state.store, "persistence", None)
        if settings.persistence_enabled and persistence and not persistence.ping():
            raise HTTPException(
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                detail="database unavailable",
            )
        return {"status": "ready"}

    @router.get("/metrics", response_class=PlainTextResponse)
    def metrics(request: Request) -> Response:
        registry = get_metrics(request)
        return PlainTextResponse(registry.to_prometheus())

    @router.post("/leads", response_model=RecordWriteResponse)
    def create_lead(
        payload: LeadCreateRequest,
        request: Request,
        _: AuthContext = Depends(require_write),
    ) -> RecordWriteResponse:
        store = get_store(request)
        try:
            lead, overridden = store.create_lead(payload)
        except StoreConflictError as exc:
            raise conflict(exc, get_metrics(request)) from exc
        return write_response(RecordKind.lead, lead.id, overridden, get_metrics(request))

    @router.get("/leads", response_model=list[LeadItem])
    def list_leads(
        request: Request,
        limit: int = 50,
        search: Optional[str] = None,
        _: AuthContext = Depends(require_read),
    ) -> list[LeadItem]:
        store = get_store(request)
        return [lead_item(lead) for lead in store.list_leads(limit=limit, search=search)]

    @router.get("/leads/{lead_id}", response_model=LeadItem)
    def get_lead(
        lead_id: str,
        request: Request,
        _: AuthContext = Depends(require_read),
    ) -> LeadItem:
        try:
            return lead_item(get_store(request).get_lead(lead_id))
        except StoreNotFoundError as exc:
            raise not_found(exc) from exc

    @router.patch("/leads/{lead_id}", response_model=DuplicateCheckResponse)
    def update_lead(
        lead_id: str,
        payload: LeadUpdateRequest,
        request: Request,
        _: AuthContext = Depends(require_write),
    ) -> DuplicateCheckResponse:
        try:
            _, matches = get_store(request).update_lead(lead_id, payload)
        except StoreNotFoundError as exc:
            raise not_found(exc) from exc
        return check_response(RecordKind.lead, matches)

    @router.post("/leads/duplicates/check", response_model=DuplicateCheckResponse)
    def check_lead_duplicates(
        payload: DuplicateCheckRequest,
        request: Request,
        _: AuthContext = Depends(require_read),
    ) -> DuplicateCheckResponse:
        candidate = MatchCandidate.model_validate(payload.model_dump())
        matches = get_store(request).check_duplicates(RecordKind.lead, candidate)
        return check_response(RecordKind.lead, matches)

    @router.post("/contacts", response_model=RecordWriteResponse)
    def create_contact(
        payload: ContactCreateRequest,
        request: Request,
        _: AuthContext = Depends(require_write),
    ) -> RecordWriteResponse:
        store = get_store(request)
        try:
            contact, overridden = store.create_contact(payload)
        except StoreNotFoundError as exc:
            raise not_found(exc) from exc
        except StoreConflictError as exc:
            raise conflict(exc, get_metrics(request)) from exc
        return write_response(RecordKind.contact, contact.id, overridden, get_metrics(request))

    @router.get("/contacts", response_model=list[ContactItem])
    def list_contacts(
        request: Request,
        limit: int = 50,
        account_id: Optional[str] = None,
        search: Optional[str] = None,
        _: AuthContext = Depends(require_read),
    ) -> list[ContactItem]:
        store = get_store(request)
        contacts = store.list_contacts(limit=limit, account_id=account_id, search=search)
        return [contact_item(contact) for contact in contacts]

    @router.get("/contacts/{contact_id}", response_model=ContactItem)
    def get_contact(
        contact_id: str,
        request: Request,
        _: AuthContext = Depends(require_read),
    ) -> ContactItem:
        try:
            return contact_item(get_store(request).get_contact(contact_id))
        except StoreNotFoundError as exc:
            raise not_found(exc) from exc

    @router.patch("/contacts/{contact_id}", response_model=DuplicateCheckResponse)
    def update_contact(
        contact_id: str,
        payload: ContactUpdateRequest,
        request: Request,
        _: AuthContext = Depends(require_write),
    ) -> DuplicateCheckResponse:
        try:
            _, matches = get_store(request).update_contact(contact_id, payload)
        except StoreNotFoundError as exc:
            raise not_found(exc) from exc
        return check_response(RecordKind.contact, matches)

    @router.post("/contacts/duplicates/check", response_model=DuplicateCheckResponse)
    def check_contact_duplicates(
        payload: DuplicateCheckRequest,
        request: Request,
        _: AuthContext = Depends(require_read),
    ) -> DuplicateCheckResponse:
        candidate = MatchCandidate.model_validate(payload.model_dump())
        matches = get_store(request).check_duplicates(RecordKind.contact, candidate)
        return check_response(RecordKind.contact, matches)

    @router.post("/accounts", response_model=RecordWriteResponse)
    def create_account(
        payload: AccountCreateRequest,
        request: Request,
        _: AuthContext = Depends(require_write),
    ) -> RecordWriteResponse:
        store = get_store(request)
        try:
            account, overridden = store.create_account(payload)
        except StoreConflictError as exc:
            raise conflict(exc, get_metrics(request)) from exc
        return write_response(RecordKind.account, account.id, overridden, get_metrics(request))

    @router.get("/accounts", response_model=list[AccountItem])
    def list_accounts(
        request: Request,
        limit: int = 50,
        search: Optional[str] = None,
        _: AuthContext = Depends(require_read),
    ) -> list[AccountItem]:
        store = get_store(request)
        return [account_item(account) for account in store.list_accounts(limit=limit, search=search)]

    @router.get("/accounts/{account_id}", response_model=AccountItem)
    def get_account(
        account_id: str,
        request: Request,
        _: AuthContext = Depends(require_read),
    ) -> AccountItem:
        try:
            return account_item(get_store(request).get_account(account_id))
        except StoreNotFoundError as exc:
            raise not_found(exc) from exc

    @router.patch("/accounts/{account_id}", response_model=DuplicateCheckResponse)
    def update_account(
        account_id: str,
        payload: AccountUpdateRequest,
        request: Request,
        _: AuthContext = Depends(require_write),
    ) -> DuplicateCheckResponse:
        try:
            _, matches = get_store(request).update_account(account_id, payload)
        except StoreNotFoundError as exc:
            raise not_found(exc) from exc
        return check_response(RecordKind.account, matches)

    @router.post("/accounts/duplicates/check", response_model=DuplicateCheckResponse)
    def check_account_duplicates(
        payload: DuplicateCheckRequest,
        request: Request,
        _: AuthContext = Depends(require_read),
    ) -> DuplicateCheckResponse:
        candidate = MatchCandidate.model_validate(payload.model_dump())
        matches = get_store(request).check_duplicates(RecordKind.account, candidate)
        return check_response(RecordKind.account, matches)

    for kind, path in DOCUMENT_PATHS.items():
        add_document_routes(router, kind, path)

    return router


def add_document_routes(router: APIRouter, kind: DocumentKind, path: str) -> None:
    def create_document(
        payload: DocumentCreateRequest,
        request: Request,
        _: AuthContext = Depends(require_write),
    ) -> DocumentCreateResponse:
        store = get_store(request)
        try:
            document = store.create_document(kind, payload)
        except StoreNotFoundError as exc:
            raise not_found(exc) from exc
        except StoreConflictError as exc:
            raise conflict(exc, get_metrics(request)) from exc
        get_metrics(request).increment("documents_numbered", kind=kind.value)
        return DocumentCreateResponse(
            document_id=document.id, kind=kind, number=document.number, status=document.status
        )

    def list_documents(
        request: Request,
        limit: int = 50,
        _: AuthContext = Depends(require_read),
    ) -> list[DocumentItem]:
        documents = get_store(request).list_documents(kind, limit=limit)
        return [document_item(document) for document in documents]

    def get_document(
        document_id: str,
        request: Request,
        _: AuthContext = Depends(require_read),
    ) -> DocumentItem:
        try:
            return document_item(get_store(request).get_document(kind, document_id))
        except StoreNotFoundError as exc:
            raise not_found(exc) from exc

    def change_status(
        document_id: str,
        payload: DocumentStatusRequest,
        request: Request,
        _: AuthContext = Depends(require_write),
    ) -> DocumentItem:
        store = get_store(request)
        try:
            document = store.change_document_status(kind, document_id, payload.status)
        except StoreNotFoundError as exc:
            raise not_found(exc) from exc
        except StoreConflictError as exc:
            raise conflict(exc, get_metrics(request)) from exc
        return document_item(document)

    router.add_api_route(
        path,
        create_document,
        methods=["POST"],
        response_model=DocumentCreateResponse,
        name=f"create_{kind.value}",
    )
    router.add_api_route(
        path,
        list_documents,
        methods=["GET"],
        response_model=list[DocumentItem],
        name=f"list_{kind.value}s",
    )
    router.add_api_route(
        f"{path}/{{document_id}}",
        get_document,
        methods=["GET"],
        response_model=DocumentItem,
        name=f"get_{kind.value}",
    )
    router.add_api_route(
        f"{path}/{{document_id}}/status",
        change_status,
        methods=["POST"],
        response_model=DocumentItem,
        name=f"change_{kind.value}_status",
    )
