"""
DocumentService -- persisted lifecycle transitions for business documents.

Responsibility:
    Creates draft documents and moves them through the workflow defined in
    ``domain.document_state``.  Loads rows under a row lock so concurrent
    transitions of the same document serialize.

Architecture position:
    Spine > Services.  Used directly by collaborators for the editable part
    of the lifecycle (draft/submitted/approved/voided) and by
    PostingSpineTransaction and ReversalService for posted/reversed.

Invariants enforced:
    - A transition succeeds only for pairs in the transition table.
    - ``posted`` and ``reversed`` are reachable only through the posting and
      reversal engines, so a posted document always has a balanced event.
    - No cascading effects: a transition writes state, updated_at,
      updated_by and version only.

Failure modes:
    - DocumentNotFoundError: unknown document id.
    - TenantMismatchError: document belongs to another tenant.
    - InvalidTransitionError: pair absent from the table.
    - EngineOnlyTransitionError: posted or reversed requested through the
      generic path.
    - AlreadyReversedError / CannotReverseReversalError: invalid
      reversed_from_id when creating a reversal document.
"""

from __future__ import annotations

from datetime import date
from typing import Any, Mapping
from uuid import UUID

from sqlalchemy import select

from posting_spine.domain.document_state import (
    DocumentState,
    get_allowed_transitions,
    validate_transition,
)
from posting_spine.domain.dtos import DocumentType
from posting_spine.exceptions import (
    AlreadyReversedError,
    CannotReverseReversalError,
    DocumentNotFoundError,
    EngineOnlyTransitionError,
    InvalidTransitionError,
    TenantMismatchError,
)
from posting_spine.logging_config import LogContext, get_logger, log_rejection
from posting_spine.models.document import Document
from posting_spine.services.base import BaseService

logger = get_logger("services.document")

# Targets only the posting/reversal engines may set
ENGINE_ONLY_STATES = frozenset({DocumentState.POSTED, DocumentState.REVERSED})


class DocumentService(BaseService):
    """
    Create documents and apply workflow transitions.

    Guarantees:
        - Every successful transition bumps ``version`` and stamps
          ``updated_at`` from the injected clock.
        - Rows are loaded ``FOR UPDATE`` before any transition.
    """

    def create_document(
        self,
        tenant_id: UUID,
        document_type: DocumentType | str,
        created_by: UUID,
        document_number: str | None = None,
        document_date: date | None = None,
        data: Mapping[str, Any] | None = None,
        entity_id: UUID | None = None,
        reversed_from_id: UUID | None = None,
    ) -> Document:
        """Insert a new document in ``draft``.

        When ``reversed_from_id`` is given the new document is recorded as
        the reversal of that original (e.g. a credit note for an invoice).

        Raises:
            DocumentNotFoundError: reversed_from_id names no document.
            TenantMismatchError: original belongs to another tenant.
            CannotReverseReversalError: original is itself a reversal.
            AlreadyReversedError: original already has a reversal document.
        """
        if reversed_from_id is not None:
            self._check_reversal_source(tenant_id, reversed_from_id)

        document = Document(
            tenant_id=tenant_id,
            document_type=DocumentType(document_type).value,
            state=DocumentState.DRAFT.value,
            document_number=document_number,
            document_date=document_date,
            data=dict(data or {}),
            entity_id=entity_id,
            reversed_from_id=reversed_from_id,
            created_by=created_by,
            created_at=self.clock.now(),
            version=1,
        )
        self.session.add(document)
        self.session.flush()

        logger.info(
            "document_created",
            extra={
                "document_id": str(document.id),
                "tenant_id": str(tenant_id),
                "document_type": document.document_type,
                "reversed_from_id": str(reversed_from_id) if reversed_from_id else None,
            },
        )
        return document

    def get_document(self, document_id: UUID, tenant_id: UUID | None = None) -> Document:
        """Load a document (no lock).

        Raises:
            DocumentNotFoundError, TenantMismatchError.
        """
        document = self.session.get(Document, document_id)
        return self._checked(document, document_id, tenant_id)

    def load_for_update(self, document_id: UUID, tenant_id: UUID | None = None) -> Document:
        """Load a document under a row lock (SELECT ... FOR UPDATE).

        Raises:
            DocumentNotFoundError, TenantMismatchError.
        """
        document = self.session.execute(
            select(Document).where(Document.id == document_id).with_for_update()
        ).scalar_one_or_none()
        return self._checked(document, document_id, tenant_id)

    def get_allowed_transitions(self, state: DocumentState | str) -> tuple[DocumentState, ...]:
        return get_allowed_transitions(state)

    def transition_document_state(
        self,
        document_id: UUID,
        target_state: DocumentState | str,
        actor_id: UUID | None = None,
        tenant_id: UUID | None = None,
    ) -> Document:
        """Move a document to ``target_state``.

        Preconditions:
            - ``current -> target_state`` is in the transition table.
            - target_state is not posted/reversed (engine-only states).

        Postconditions:
            - document.state == target_state, version bumped, updated_at set.

        Raises:
            DocumentNotFoundError, TenantMismatchError, InvalidTransitionError,
            EngineOnlyTransitionError (posted/reversed requested).
        """
        document = self.load_for_update(document_id, tenant_id)
        target = _as_state(target_state)

        if target in ENGINE_ONLY_STATES:
            error = EngineOnlyTransitionError(
                current_state=str(document.state),
                target_state=str(getattr(target, "value", target_state)),
                allowed=tuple(
                    s.value
                    for s in get_allowed_transitions(document.state)
                    if s not in ENGINE_ONLY_STATES
                ),
                document_id=str(document_id),
            )
            with LogContext.bind_document(document, actor_id):
                log_rejection(logger, "transition_rejected", error, reason="engine_only_state")
            raise error

        with LogContext.bind_document(document, actor_id):
            return self.apply_transition(document, target_state, actor_id)

    def apply_transition(
        self,
        document: Document,
        target_state: DocumentState | str,
        actor_id: UUID | None = None,
    ) -> Document:
        """Validate and apply a transition to an already locked document.

        Used by the posting and reversal engines, which own the lock.

        Raises:
            InvalidTransitionError: pair absent from the transition table.
        """
        from_state = str(document.state)
        try:
            validate_transition(from_state, target_state, document_id=str(document.id))
        except InvalidTransitionError as exc:
            log_rejection(logger, "transition_rejected", exc, document_id=str(document.id))
            raise

        document.state = DocumentState(target_state).value
        document.updated_at = self.clock.now()
        document.updated_by = actor_id
        document.version = (document.version or 0) + 1
        self.session.flush()

        logger.info(
            "document_transitioned",
            extra={
                "document_id": str(document.id),
                "from_state": from_state,
                "to_state": document.state,
                "version": document.version,
            },
        )
        return document

    # =========================================================================
    # Internal
    # =========================================================================

    def _checked(
        self,
        document: Document | None,
        document_id: UUID,
        tenant_id: UUID | None,
    ) -> Document:
        if document is None:
            raise DocumentNotFoundError(str(document_id))
        if tenant_id is not None and document.tenant_id != tenant_id:
            raise TenantMismatchError("Document", str(document_id), str(tenant_id))
        return document

    def _check_reversal_source(self, tenant_id: UUID, original_id: UUID) -> None:
        original = self.get_document(original_id, tenant_id)
        if original.reversed_from_id is not None:
            raise CannotReverseReversalError(str(original_id), kind="document")
        existing = self.session.execute(
            select(Document.id).where(Document.reversed_from_id == original_id)
        ).scalar_one_or_none()
        if existing is not None:
            raise AlreadyReversedError(str(original_id), str(existing), kind="document")


def _as_state(state: DocumentState | str) -> DocumentState | str:
    try:
        return DocumentState(state)
    except ValueError:
        return state
