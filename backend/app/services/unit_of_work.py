"""
Unit of Work

Commit-or-rollback boundary shared by every mutating service method.
A failure anywhere inside the block leaves the database untouched.
"""
from contextlib import contextmanager
from typing import Optional
import logging

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from .errors import ServiceError, DependencyFailure

logger = logging.getLogger(__name__)


@contextmanager
def unit_of_work(db: Session, operation: str, conflict: Optional[ServiceError] = None):
    """
    Run the block as one transaction.

    Args:
        db: Session the block writes through
        operation: Human-readable name used in logs and error messages
        conflict: Raised instead of DependencyFailure when a uniqueness
            guard rejects the write (IntegrityError)
    """
    try:
        yield
        db.commit()
    except ServiceError:
        db.rollback()
        raise
    except IntegrityError as e:
        db.rollback()
        if conflict is not None:
            logger.warning(f"{operation} lost a race: {conflict.message}")
            raise conflict from e
        logger.exception(f"{operation} violated a database constraint")
        raise DependencyFailure(f"{operation} failed; no changes were applied") from e
    except SQLAlchemyError as e:
        db.rollback()
        logger.exception(f"{operation} failed in the persistence layer")
        raise DependencyFailure(f"{operation} failed; no changes were applied") from e
