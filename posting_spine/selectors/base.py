"""
Module: posting_spine.selectors.base
Responsibility: Abstract base class for the read-only query selectors.
    Selectors are the query side of the spine: balances, histories and
    reversal chains, derived from stored rows at query time.
Architecture position: Spine > Selectors.  May import from db/, domain/ and
    models/.  MUST NOT import from services/.

Invariants enforced:
    - Read-only access: selectors never call session.add(), flush(),
      delete() or commit().
    - DTO return convention: selectors return frozen dataclasses, not raw
      ORM instances, except where a chain explicitly hands back rows.
    - No stored balances: every total is recomputed from ledger_postings.
"""

from abc import ABC
from typing import Generic, TypeVar

from sqlalchemy.orm import Session

from posting_spine.db.base import Base

ModelType = TypeVar("ModelType", bound=Base)


class BaseSelector(ABC, Generic[ModelType]):
    """
    Abstract base class for all selectors.

    Contract:
        Accepts a Session from the caller, performs read-only queries and
        returns DTOs.  Never mutates data.
    """

    def __init__(self, session: Session):
        self.session = session
