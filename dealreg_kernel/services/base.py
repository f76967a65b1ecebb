"""
BaseService -- abstract base for all kernel services.

Responsibility:
    Provides the common constructor and session-handling contract for
    every service in the kernel layer.  All concrete services inherit
    from BaseService, receiving a SQLAlchemy ``Session`` that they use
    via ``session.flush()`` -- never ``session.commit()``.

Architecture position:
    Kernel > Services -- imperative shell infrastructure.

Invariants enforced:
    Transaction boundaries: services flush within the caller's transaction
    and never commit or rollback it.  Per-deal isolation inside that
    transaction uses ``session.begin_nested()`` (SAVEPOINT), which the
    service opens and closes itself.
"""

from abc import ABC
from typing import Generic, TypeVar

from sqlalchemy.orm import Session

from dealreg_kernel.db.base import Base

ModelType = TypeVar("ModelType", bound=Base)


class BaseService(ABC, Generic[ModelType]):
    """
    Abstract base class for all kernel services.

    Contract:
        Accepts a SQLAlchemy ``Session`` from the caller and uses
        ``session.flush()`` to persist changes within the active
        transaction.

    Non-goals:
        - Does NOT manage transaction lifecycle (commit/rollback).
        - Does NOT provide query-only (read) methods -- those belong
          in ``dealreg_kernel/selectors/``.
    """

    def __init__(self, session: Session):
        self.session = session

    def _expire_cached(self, model_cls: type[ModelType], ident) -> None:
        """Expire an identity-map instance after a Core UPDATE changed its row."""
        key = self.session.identity_key(model_cls, ident)
        obj = self.session.identity_map.get(key)
        if obj is not None:
            self.session.expire(obj)
