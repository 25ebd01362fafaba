"""Services for the posting spine (write side)."""

from posting_spine.services.document_service import DocumentService
from posting_spine.services.event_service import EventService
from posting_spine.services.posting_service import (
    BatchBalance,
    PostingBatchResult,
    PostingService,
)
from posting_spine.services.posting_transaction import (
    PostDocumentResult,
    PostingSpineTransaction,
    SpineWriteResult,
)
from posting_spine.services.reversal_service import (
    ReversalEligibility,
    ReversalResult,
    ReversalService,
)
from posting_spine.services.spine_service import SpineService

__all__ = [
    "BatchBalance",
    "DocumentService",
    "EventService",
    "PostDocumentResult",
    "PostingBatchResult",
    "PostingService",
    "PostingSpineTransaction",
    "ReversalEligibility",
    "ReversalResult",
    "ReversalService",
    "SpineService",
    "SpineWriteResult",
]
