"""
BaseService -- common constructor for every write-side service.

Responsibility:
    Holds the caller's SQLAlchemy ``Session`` and the injected ``Clock``.
    Services persist with ``session.flush()`` and group multi-step writes in
    ``session.begin_nested()`` savepoints -- never ``session.commit()``.

Architecture position:
    Spine > Services -- imperative shell infrastructure.

Invariants enforced:
    Transaction boundaries belong to the caller (``Database.session_scope()``
    or a test harness).  A failed operation rolls back its own savepoint and
    re-raises; the outer transaction stays usable.
"""

from abc import ABC

from sqlalchemy.orm import Session

from posting_spine.config import SpineSettings
from posting_spine.domain.clock import Clock, SystemClock


class BaseService(ABC):
    """
    Abstract base class for posting spine services.

    Contract:
        Accepts a ``Session`` from the caller and flushes within the active
        transaction.

    Non-goals:
        - Does NOT manage commit/rollback of the outer transaction.
        - Does NOT host reporting queries -- those belong in ``selectors/``.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        settings: SpineSettings | None = None,
    ):
        self.session = session
        self.clock = clock or SystemClock()
        self.settings = settings or SpineSettings()
