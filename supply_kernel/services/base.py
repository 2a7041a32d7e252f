"""
BaseService -- abstract base for kernel and orchestration services.

Responsibility:
    Common constructor and session contract.  Every service receives a
    SQLAlchemy ``Session`` and the acting user's id, and persists through
    ``session.flush()`` -- never ``session.commit()``.

Architecture position:
    Kernel > Services.  Extended by BatchLedger, SequenceService and the
    orchestration services in ``supply_services``.

Invariants enforced:
    - Transaction boundaries belong to the caller (SupplyEngine or a test
      harness).  A service never commits or rolls back the outer
      transaction; it may use savepoints for its own all-or-nothing steps.
"""

from abc import ABC
from typing import Generic, TypeVar

from sqlalchemy.orm import Session

from supply_kernel.db.base import Base

ModelType = TypeVar("ModelType", bound=Base)

SYSTEM_ACTOR = "system"


class BaseService(ABC, Generic[ModelType]):
    """
    Abstract base class for services.

    Contract:
        Accepts a ``Session`` from the caller and flushes within the
        active transaction.

    Non-goals:
        - Does NOT manage transaction lifecycle (commit/rollback).
        - Does NOT provide query-only methods; those live in selectors.
    """

    def __init__(self, session: Session, actor_id: str = SYSTEM_ACTOR):
        """
        Args:
            session: SQLAlchemy session for database operations.
            actor_id: Opaque id of the user the writes are attributed to.
        """
        self.session = session
        self.actor_id = actor_id
