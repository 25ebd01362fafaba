"""
Document workflow state machine (``posting_spine.domain.document_state``).

Responsibility
--------------
Pure lookup of legal lifecycle transitions for a business document::

    draft     -> submitted, voided
    submitted -> approved, draft, voided
    approved  -> posted, submitted, voided
    posted    -> reversed
    reversed  -> (terminal)
    voided    -> (terminal)

Architecture position
---------------------
**Domain layer** -- ZERO I/O.  The persisted transition lives in
``services.document_service``.

Invariants enforced
-------------------
* A posted document never returns to an editable state.
* ``reversed`` and ``voided`` are terminal.
"""

from __future__ import annotations

from enum import Enum
from types import MappingProxyType

from posting_spine.exceptions import InvalidTransitionError


class DocumentState(str, Enum):
    """Lifecycle state of a business document."""

    DRAFT = "draft"
    SUBMITTED = "submitted"
    APPROVED = "approved"
    POSTED = "posted"
    REVERSED = "reversed"
    VOIDED = "voided"


STATE_TRANSITIONS: MappingProxyType[DocumentState, tuple[DocumentState, ...]] = MappingProxyType(
    {
        DocumentState.DRAFT: (DocumentState.SUBMITTED, DocumentState.VOIDED),
        DocumentState.SUBMITTED: (
            DocumentState.APPROVED,
            DocumentState.DRAFT,
            DocumentState.VOIDED,
        ),
        DocumentState.APPROVED: (
            DocumentState.POSTED,
            DocumentState.SUBMITTED,
            DocumentState.VOIDED,
        ),
        DocumentState.POSTED: (DocumentState.REVERSED,),
        DocumentState.REVERSED: (),
        DocumentState.VOIDED: (),
    }
)


def _coerce(state: DocumentState | str) -> DocumentState | None:
    try:
        return DocumentState(state)
    except ValueError:
        return None


def can_transition_to(current: DocumentState | str, target: DocumentState | str) -> bool:
    """True iff ``current -> target`` is in the transition table.

    Unknown state names are never legal.
    """
    current_state, target_state = _coerce(current), _coerce(target)
    if current_state is None or target_state is None:
        return False
    return target_state in STATE_TRANSITIONS[current_state]


def get_allowed_transitions(state: DocumentState | str) -> tuple[DocumentState, ...]:
    """Targets reachable from ``state`` in one step (empty for unknown states)."""
    current = _coerce(state)
    if current is None:
        return ()
    return STATE_TRANSITIONS[current]


def validate_transition(
    current: DocumentState | str,
    target: DocumentState | str,
    document_id: str | None = None,
) -> None:
    """Raise InvalidTransitionError unless ``current -> target`` is legal."""
    if not can_transition_to(current, target):
        raise InvalidTransitionError(
            current_state=str(getattr(current, "value", current)),
            target_state=str(getattr(target, "value", target)),
            allowed=tuple(s.value for s in get_allowed_transitions(current)),
            document_id=document_id,
        )


def can_post_document(state: DocumentState | str) -> bool:
    return _coerce(state) is DocumentState.APPROVED


def is_document_posted(state: DocumentState | str) -> bool:
    return _coerce(state) is DocumentState.POSTED


def is_document_editable(state: DocumentState | str) -> bool:
    return _coerce(state) is DocumentState.DRAFT


def is_terminal(state: DocumentState | str) -> bool:
    current = _coerce(state)
    return current is not None and not STATE_TRANSITIONS[current]
