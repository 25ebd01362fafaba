"""
Typed exception hierarchy for the posting spine.

Every error is a typed class with a machine-readable ``code`` class attribute
and the structured data needed to act on it.  Callers catch by type, never by
message text.

    PostingSpineError (base)
    |
    +-- NotFoundError
    |   +-- DocumentNotFoundError
    |   +-- EventNotFoundError
    |   +-- PostingNotFoundError
    |   +-- AccountNotFoundError
    |   +-- BatchNotFoundError
    |
    +-- DocumentStateError
    |   +-- InvalidTransitionError
    |   |   +-- EngineOnlyTransitionError
    |   +-- InvalidDocumentStateError
    |       +-- AlreadyPostedError
    |
    +-- PostingError
    |   +-- UnbalancedPostingsError
    |   +-- EmptyPostingSetError
    |   +-- InvalidAmountError
    |   +-- InvalidCurrencyError
    |   +-- InactiveAccountError
    |
    +-- EventError
    |   +-- EventCreationFailedError
    |
    +-- ReversalError
    |   +-- AlreadyReversedError
    |   +-- CannotReverseReversalError
    |   +-- NoPostingsFoundError
    |
    +-- TenantMismatchError
    |
    +-- ImmutabilityError
        +-- ImmutabilityViolationError

Category        | Code                        | When Raised
----------------|-----------------------------|-----------------------------------------
Not found       | DOCUMENT_NOT_FOUND          | Document ID doesn't exist (for tenant)
                | EVENT_NOT_FOUND             | Economic event ID doesn't exist
                | POSTING_NOT_FOUND           | Ledger posting ID doesn't exist
                | ACCOUNT_NOT_FOUND           | Posting line references unknown account
                | BATCH_NOT_FOUND             | No postings carry the batch ID
----------------|-----------------------------|-----------------------------------------
State           | INVALID_TRANSITION          | Pair absent from the transition table
                | ENGINE_ONLY_TRANSITION      | posted/reversed requested outside the engines
                | INVALID_DOCUMENT_STATE      | Document not in the required state
                | ALREADY_POSTED              | Document was already posted
----------------|-----------------------------|-----------------------------------------
Posting         | UNBALANCED_POSTINGS         | Debits != credits at 4 decimals
                | EMPTY_POSTING_SET           | No lines supplied
                | INVALID_AMOUNT              | Negative / malformed / > 4 decimals
                | INVALID_CURRENCY            | Not a 3-letter currency code
                | INACTIVE_ACCOUNT            | Account is deactivated
----------------|-----------------------------|-----------------------------------------
Event           | EVENT_CREATION_FAILED       | Insert produced no persisted row
----------------|-----------------------------|-----------------------------------------
Reversal        | ALREADY_REVERSED            | Original already carries a reversal
                | CANNOT_REVERSE_REVERSAL     | Target is itself a reversal
                | NO_POSTINGS_FOUND           | Event to reverse has no postings
----------------|-----------------------------|-----------------------------------------
Tenant          | TENANT_MISMATCH             | Row belongs to another tenant
----------------|-----------------------------|-----------------------------------------
Immutability    | IMMUTABILITY_VIOLATION      | Update/delete of an append-only row
"""


class PostingSpineError(Exception):
    """
    Base exception for all posting spine errors.

    All subclasses carry a ``code`` class attribute for machine-readable
    error identification.
    """

    code: str = "POSTING_SPINE_ERROR"


# Not-found errors


class NotFoundError(PostingSpineError):
    """Base exception for missing rows."""

    code: str = "NOT_FOUND"


class DocumentNotFoundError(NotFoundError):
    """Document with given ID was not found."""

    code: str = "DOCUMENT_NOT_FOUND"

    def __init__(self, document_id: str):
        self.document_id = document_id
        super().__init__(f"Document not found: {document_id}")


class EventNotFoundError(NotFoundError):
    """Economic event with given ID was not found."""

    code: str = "EVENT_NOT_FOUND"

    def __init__(self, event_id: str):
        self.event_id = event_id
        super().__init__(f"Economic event not found: {event_id}")


class PostingNotFoundError(NotFoundError):
    """Ledger posting with given ID was not found."""

    code: str = "POSTING_NOT_FOUND"

    def __init__(self, posting_id: str):
        self.posting_id = posting_id
        super().__init__(f"Ledger posting not found: {posting_id}")


class AccountNotFoundError(NotFoundError):
    """Account with given ID was not found for the tenant."""

    code: str = "ACCOUNT_NOT_FOUND"

    def __init__(self, account_id: str):
        self.account_id = account_id
        super().__init__(f"Account not found: {account_id}")


class BatchNotFoundError(NotFoundError):
    """No ledger postings carry the given batch ID."""

    code: str = "BATCH_NOT_FOUND"

    def __init__(self, batch_id: str):
        self.batch_id = batch_id
        super().__init__(f"No postings found for batch: {batch_id}")


# Document state errors


class DocumentStateError(PostingSpineError):
    """Base exception for document workflow errors."""

    code: str = "DOCUMENT_STATE_ERROR"


class InvalidTransitionError(DocumentStateError):
    """Requested transition is absent from the transition table."""

    code: str = "INVALID_TRANSITION"

    def __init__(
        self,
        current_state: str,
        target_state: str,
        allowed: tuple[str, ...] = (),
        document_id: str | None = None,
    ):
        self.current_state = current_state
        self.target_state = target_state
        self.allowed = tuple(allowed)
        self.document_id = document_id
        allowed_text = ", ".join(self.allowed) or "none"
        super().__init__(
            f"Invalid state transition from '{current_state}' to "
            f"'{target_state}'. Allowed transitions: {allowed_text}"
        )


class EngineOnlyTransitionError(InvalidTransitionError):
    """Target state is reserved for the posting and reversal engines."""

    code: str = "ENGINE_ONLY_TRANSITION"

    ENGINE_OPERATIONS = {
        "posted": "post_document",
        "reversed": "create_document_reversal or create_reversal_entry",
    }

    def __init__(
        self,
        current_state: str,
        target_state: str,
        allowed: tuple[str, ...] = (),
        document_id: str | None = None,
    ):
        self.current_state = current_state
        self.target_state = target_state
        self.allowed = tuple(allowed)
        self.document_id = document_id
        self.operation = self.ENGINE_OPERATIONS.get(target_state, "the posting engine")
        DocumentStateError.__init__(
            self,
            f"Documents enter '{target_state}' only through {self.operation}; "
            f"transition_document_state cannot move '{current_state}' there",
        )


class InvalidDocumentStateError(DocumentStateError):
    """Document is not in the state the operation requires."""

    code: str = "INVALID_DOCUMENT_STATE"

    def __init__(self, document_id: str, current_state: str, required_state: str):
        self.document_id = document_id
        self.current_state = current_state
        self.required_state = required_state
        super().__init__(
            f"Document {document_id} is in state '{current_state}', "
            f"operation requires '{required_state}'"
        )


class AlreadyPostedError(InvalidDocumentStateError):
    """Document has already been posted."""

    code: str = "ALREADY_POSTED"

    def __init__(self, document_id: str, current_state: str = "posted"):
        super().__init__(document_id, current_state, "approved")
        self.args = (f"Document {document_id} has already been posted",)


# Posting errors


class PostingError(PostingSpineError):
    """Base exception for ledger posting errors."""

    code: str = "POSTING_ERROR"


class UnbalancedPostingsError(PostingError):
    """Debit and credit totals differ at 4-decimal precision."""

    code: str = "UNBALANCED_POSTINGS"

    def __init__(self, total_debit: str, total_credit: str, difference: str):
        self.total_debit = total_debit
        self.total_credit = total_credit
        self.difference = difference
        super().__init__(
            f"Postings are not balanced. Debits: {total_debit}, "
            f"Credits: {total_credit}, Difference: {difference}"
        )


class EmptyPostingSetError(PostingError):
    """No posting lines were supplied."""

    code: str = "EMPTY_POSTING_SET"

    def __init__(self, economic_event_id: str | None = None):
        self.economic_event_id = economic_event_id
        super().__init__("At least one posting line is required")


class InvalidAmountError(PostingError):
    """Amount is not a non-negative decimal with at most 4 fraction digits."""

    code: str = "INVALID_AMOUNT"

    def __init__(self, amount: str, reason: str):
        self.amount = amount
        self.reason = reason
        super().__init__(f"Invalid amount '{amount}': {reason}")


class InvalidCurrencyError(PostingError):
    """Currency is not a 3-letter uppercase code."""

    code: str = "INVALID_CURRENCY"

    def __init__(self, currency: str):
        self.currency = currency
        super().__init__(f"Invalid currency code: '{currency}'")


class InactiveAccountError(PostingError):
    """Account exists but is deactivated."""

    code: str = "INACTIVE_ACCOUNT"

    def __init__(self, account_id: str, account_code: str | None = None):
        self.account_id = account_id
        self.account_code = account_code
        super().__init__(f"Account {account_code or account_id} is inactive")


# Event errors


class EventError(PostingSpineError):
    """Base exception for economic event errors."""

    code: str = "EVENT_ERROR"


class EventCreationFailedError(EventError):
    """Event insert did not produce a persisted row."""

    code: str = "EVENT_CREATION_FAILED"

    def __init__(self, document_id: str, event_type: str):
        self.document_id = document_id
        self.event_type = event_type
        super().__init__(
            f"Failed to create {event_type} event for document {document_id}"
        )


# Reversal errors


class ReversalError(PostingSpineError):
    """Base exception for reversal errors."""

    code: str = "REVERSAL_ERROR"


class AlreadyReversedError(ReversalError):
    """Original already has a reversal."""

    code: str = "ALREADY_REVERSED"

    def __init__(self, target_id: str, reversal_id: str | None = None, kind: str = "event"):
        self.target_id = target_id
        self.reversal_id = reversal_id
        self.kind = kind
        super().__init__(
            f"{kind.capitalize()} {target_id} is already reversed"
            + (f" by {reversal_id}" if reversal_id else "")
        )


class CannotReverseReversalError(ReversalError):
    """Target of the reversal is itself a reversal."""

    code: str = "CANNOT_REVERSE_REVERSAL"

    def __init__(self, target_id: str, kind: str = "event"):
        self.target_id = target_id
        self.kind = kind
        super().__init__(f"Cannot reverse a reversal entry: {kind} {target_id}")


class NoPostingsFoundError(ReversalError):
    """Event selected for reversal has no ledger postings."""

    code: str = "NO_POSTINGS_FOUND"

    def __init__(self, event_id: str):
        self.event_id = event_id
        super().__init__(f"No postings found for event: {event_id}")


# Tenancy


class TenantMismatchError(PostingSpineError):
    """Row belongs to a different tenant than the caller."""

    code: str = "TENANT_MISMATCH"

    def __init__(self, entity: str, entity_id: str, tenant_id: str):
        self.entity = entity
        self.entity_id = entity_id
        self.tenant_id = tenant_id
        super().__init__(f"{entity} {entity_id} does not belong to tenant {tenant_id}")


# Immutability


class ImmutabilityError(PostingSpineError):
    """Base exception for append-only violations."""

    code: str = "IMMUTABILITY_ERROR"


class ImmutabilityViolationError(ImmutabilityError):
    """Attempt to modify or delete an append-only ledger record."""

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(
            f"Cannot modify immutable {entity_type} {entity_id}: {reason}"
        )
