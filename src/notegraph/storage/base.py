"""Shared plumbing for the SQLAlchemy-backed repositories."""
import logging
from contextlib import contextmanager
from typing import Iterator

from sqlalchemy.exc import DBAPIError, IntegrityError, OperationalError
from sqlalchemy.orm import Session

from notegraph.exceptions import ErrorCode, TransportError, ValidationError

logger = logging.getLogger(__name__)


@contextmanager
def store_session(session_factory, operation: str) -> Iterator[Session]:
    """Open a session and map driver failures onto engine errors.

    Integrity violations become ValidationError; every other DBAPI failure
    (locked or unreachable database, I/O errors) becomes TransportError.
    The session is always rolled back on error and closed on exit.
    """
    session = session_factory()
    try:
        yield session
    except IntegrityError as e:
        session.rollback()
        logger.warning(f"Integrity violation during {operation}: {e.orig}")
        raise ValidationError(
            f"Rejected by store constraints during {operation}",
            code=ErrorCode.VALIDATION_FAILED,
        ) from e
    except DBAPIError as e:
        session.rollback()
        logger.error(f"Database failure during {operation}: {e}")
        timed_out = isinstance(e, OperationalError) and "locked" in str(e.orig)
        raise TransportError(
            f"Store timed out during {operation}" if timed_out
            else f"Store unavailable during {operation}",
            operation=operation,
            code=ErrorCode.TRANSPORT_TIMEOUT if timed_out else ErrorCode.TRANSPORT_UNAVAILABLE,
            original_error=e,
        ) from e
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()
