from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timezone

from backend.fieldops.models import DocumentCreateRequest, DocumentKind, LeadCreateRequest
from backend.fieldops.store import InMemoryStore


def test_concurrent_document_creation_mints_unique_numbers() -> None:
    store = InMemoryStore(clock=lambda: datetime(2024, 3, 15, 23, 59, tzinfo=timezone.utc))

    def writer(index: int) -> str:
        kind = list(DocumentKind)[index % 3]
        document = store.create_document(kind, DocumentCreateRequest(title=f"Job {index}"))
        return document.number

    with ThreadPoolExecutor(max_workers=12) as executor:
        numbers = list(executor.map(writer, range(300)))

    assert len(numbers) == len(set(numbers))
    for kind in DocumentKind:
        counters = sorted(
            int(item.number.rsplit("-", 1)[1]) for item in store.list_documents(kind, limit=500)
        )
        assert counters == list(range(1, 101))


def test_lead_write_and_read_concurrent() -> None:
    store = InMemoryStore()
    read_errors: list[Exception] = []

    def writer(index: int) -> None:
        request = LeadCreateRequest(
            name=f"Lead {index}",
            email=f"lead{index}@example.com",
            ignore_duplicates=True,
        )
        store.create_lead(request)

    def reader() -> None:
        for _ in range(200):
            try:
                store.list_leads(limit=100)
            except Exception as exc:  # pragma: no cover - regression trap
                read_errors.append(exc)

    with ThreadPoolExecutor(max_workers=10) as executor:
        futures = [executor.submit(writer, i) for i in range(200)]
        futures.extend(executor.submit(reader) for _ in range(4))
        for future in futures:
            future.result()

    assert not read_errors
    assert len(store.leads) == 200
