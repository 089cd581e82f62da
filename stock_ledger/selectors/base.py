"""
Module: stock_ledger.selectors.base
Responsibility: Abstract base class for all read-only query selectors.
Architecture position: Ledger > Selectors.  May import from db/, models/
    and domain DTOs.  MUST NOT import from services/.

Invariants enforced:
    - Read-only access: selectors accept a Session from the caller but MUST
      NOT call session.add(), session.delete(), session.commit() or
      session.flush().
    - DTO return convention: selectors return frozen dataclasses, not ORM
      instances.
    - Reads never take the product lock.  Results may be slightly stale and
      are never used as the baseline of a write.
"""

from abc import ABC

from sqlalchemy.orm import Session


class BaseSelector(ABC):
    """Read-only query helper bound to a caller-owned session."""

    def __init__(self, session: Session):
        self.session = session
