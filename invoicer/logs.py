"""Structured logging setup and the per-user error log."""
import logging

from pythonjsonlogger import jsonlogger
from sqlalchemy import delete, select
from sqlalchemy.exc import SQLAlchemyError

from .errors import InvoicerError
from .models import ErrorLogEntry, SEVERITIES

logger = logging.getLogger(__name__)

_LEVELS = {"info": logging.INFO, "warning": logging.WARNING, "error": logging.ERROR}


def configure_logging(level="info"):
    """Send every record through a single JSON handler on the root logger."""
    root = logging.getLogger()
    handler = logging.StreamHandler()
    handler.setFormatter(jsonlogger.JsonFormatter("%(asctime)s %(levelname)s %(name)s %(message)s"))
    root.handlers = [handler]
    root.setLevel(level.upper())


def _message_for(error):
    if isinstance(error, BaseException):
        return str(error) or type(error).__name__
    return str(error)


class ErrorLog:
    """Bounded, append-only audit log kept per user.

    Only the ``limit`` most recent entries of a user survive a write. Writes
    never raise: a database failure is rolled back and reported through the
    module logger instead, so the caller's flow carries on.
    """

    def __init__(self, session, limit=50):
        self.session = session
        self.limit = limit

    def record(self, user_id, error, context="", severity="error"):
        if severity not in SEVERITIES:
            severity = "error"
        message = _message_for(error)[:500]
        if isinstance(error, InvoicerError):
            error.logged = True

        logger.log(
            _LEVELS[severity],
            message,
            exc_info=error if severity == "error" and isinstance(error, BaseException) else None,
            extra={"user_id": user_id, "context": context, "severity": severity},
        )

        try:
            entry = ErrorLogEntry(user_id=user_id, message=message, context=context[:120], severity=severity)
            self.session.add(entry)
            self.session.flush()
            stale = (
                select(ErrorLogEntry.id)
                .where(ErrorLogEntry.user_id == user_id)
                .order_by(ErrorLogEntry.id.desc())
                .offset(self.limit)
            )
            stale_ids = self.session.execute(stale).scalars().all()
            if stale_ids:
                self.session.execute(delete(ErrorLogEntry).where(ErrorLogEntry.id.in_(stale_ids)))
            self.session.commit()
            return entry
        except SQLAlchemyError:
            self.session.rollback()
            logger.exception("Could not persist error log entry for %s", user_id)
            return None

    def recent(self, user_id, limit=None):
        stmt = (
            select(ErrorLogEntry)
            .where(ErrorLogEntry.user_id == user_id)
            .order_by(ErrorLogEntry.id.desc())
            .limit(limit or self.limit)
        )
        return self.session.execute(stmt).scalars().all()


def entry_to_dict(e: ErrorLogEntry):
    return {
        "id": e.id,
        "timestamp": e.timestamp.isoformat() if e.timestamp else None,
        "user_id": e.user_id,
        "message": e.message,
        "context": e.context,
        "severity": e.severity,
    }
