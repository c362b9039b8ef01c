from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager

from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from gestoria.core.errors import BackendError, ConflictError
from gestoria.core.extensions import db

logger = logging.getLogger(__name__)


@contextmanager
def atomic() -> Iterator[None]:
    """Run the block as one unit of work.

    Commits when the block finishes; any error rolls back every change made
    inside it. Integrity failures surface as ``ConflictError`` and other
    database failures as ``BackendError``.
    """
    try:
        yield
        db.session.commit()
    except IntegrityError as exc:
        db.session.rollback()
        logger.warning("Integrity error, transaction rolled back: %s", exc.orig)
        raise ConflictError("La operación entra en conflicto con datos existentes") from exc
    except SQLAlchemyError as exc:
        db.session.rollback()
        logger.exception("Database error, transaction rolled back")
        raise BackendError("No se ha podido completar la operación en la base de datos") from exc
    except Exception:
        db.session.rollback()
        raise
