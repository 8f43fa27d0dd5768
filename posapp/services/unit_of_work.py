"""Transaction boundary for the order and catalog services.

    with UnitOfWork() as uow:
        decrement(uow.session, product_id, 2)
        ...

No exception -> commit. Any exception -> rollback, and the exception keeps
propagating. Only sessions the unit of work created itself are closed.
"""

from __future__ import annotations

from contextlib import AbstractContextManager
from typing import Callable, Optional, Union

from sqlalchemy.orm import Session, scoped_session

from posapp.extensions import db

SessionFactory = Callable[[], Session]


class UnitOfWork(AbstractContextManager):
    def __init__(self, session_or_factory: Union[Session, SessionFactory, None] = None) -> None:
        self._session_or_factory = session_or_factory
        self.session: Optional[Session] = None
        self._owns_session = False

    def __enter__(self) -> "UnitOfWork":
        source = self._session_or_factory
        if source is None:
            # Flask-SQLAlchemy's scoped session for the active app context
            self.session = db.session
        elif isinstance(source, (Session, scoped_session)):
            self.session = source
        elif callable(source):
            self.session = source()
            self._owns_session = True
        else:
            raise TypeError("UnitOfWork expects a Session or a Session factory.")
        return self

    def __exit__(self, exc_type, exc, tb) -> bool:
        if self.session is None:
            return False

        try:
            if exc_type:
                self.session.rollback()
            else:
                try:
                    self.session.commit()
                except Exception:
                    # A failed commit leaves the transaction unusable.
                    self.session.rollback()
                    raise
        finally:
            if self._owns_session:
                try:
                    self.session.close()
                finally:
                    self.session = None
        return False

    def flush(self) -> None:
        if self.session is not None:
            self.session.flush()
