from __future__ import annotations

from backend.fieldops.models import DocumentKind, DocumentStatus

INITIAL_STATUS = {
    DocumentKind.quote: DocumentStatus.draft,
    DocumentKind.work_order: DocumentStatus.pending,
    DocumentKind.invoice: DocumentStatus.draft,
}

ALLOWED_TRANSITIONS = {
    DocumentKind.quote: {
        DocumentStatus.draft: {
            DocumentStatus.presented,
            DocumentStatus.accepted,
            DocumentStatus.declined,
        },
        DocumentStatus.presented: {
            DocumentStatus.draft,
            DocumentStatus.accepted,
            DocumentStatus.declined,
        },
        DocumentStatus.accepted: set(),
        DocumentStatus.declined: {DocumentStatus.draft},
    },
    DocumentKind.work_order: {
        DocumentStatus.pending: {
            DocumentStatus.scheduled,
            DocumentStatus.in_progress,
            DocumentStatus.cancelled,
        },
        DocumentStatus.scheduled: {
            DocumentStatus.pending,
            DocumentStatus.in_progress,
            DocumentStatus.cancelled,
        },
        DocumentStatus.in_progress: {DocumentStatus.completed, DocumentStatus.cancelled},
        DocumentStatus.completed: set(),
        DocumentStatus.cancelled: set(),
    },
    DocumentKind.invoice: {
        DocumentStatus.draft: {DocumentStatus.sent, DocumentStatus.cancelled},
        DocumentStatus.sent: {DocumentStatus.paid, DocumentStatus.cancelled},
        DocumentStatus.paid: set(),
        DocumentStatus.cancelled: set(),
    },
}

# Status a source document must have before another document is raised from it.
SOURCE_READY_STATUS = {
    DocumentKind.quote: DocumentStatus.accepted,
    DocumentKind.work_order: DocumentStatus.completed,
}


def statuses_for(kind: DocumentKind) -> set[DocumentStatus]:
    return set(ALLOWED_TRANSITIONS[kind])


def can_transition(kind: DocumentKind, current: DocumentStatus, target: DocumentStatus) -> bool:
    return target in ALLOWED_TRANSITIONS[kind].get(current, set())
