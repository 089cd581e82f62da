"""
BaseService -- abstract base for flush-only ledger services.

Responsibility:
    Provides the common constructor and session-handling contract for the
    services that write inside somebody else's transaction (MovementLog,
    ProductService, DivergenceReporter).  They use ``session.flush()`` and
    never ``session.commit()``.

Architecture position:
    Ledger > Services -- imperative shell infrastructure.

Invariants enforced:
    - Transaction boundaries: flush-only services never commit or roll
      back.  The AdjustmentEngine, ReservationService and
      ReconciliationService own commit/rollback, so a movement and its
      product update always land in one transaction.
"""

from abc import ABC
from typing import Generic, TypeVar

from sqlalchemy.orm import Session

from stock_ledger.db.base import Base

ModelType = TypeVar("ModelType", bound=Base)


class BaseService(ABC, Generic[ModelType]):
    """
    Abstract base class for flush-only services.

    Non-goals:
        - Does NOT manage transaction lifecycle (commit/rollback).
        - Does NOT provide read-only query methods; those belong in
          ``stock_ledger/selectors/``.
    """

    def __init__(self, session: Session):
        self.session = session
