"""
Session handling shared by the credential, usage, tenant and analytics services.

A service either borrows the caller's session or opens its own from the
global DatabaseManager, and reports unexpected failures as ServiceError.
"""

from typing import NoReturn, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..db.db_config import get_db_manager
from ..exceptions import BaseError, ErrorCode, ServiceError
from ..utils.logger import ContextAwareLogger, get_logger


class SessionManagedService:
    """
    Service bound to one SQLAlchemy session.

    A borrowed session is left to its owner: commit(), rollback() and close()
    only act on a session this service opened itself.
    """

    def __init__(
        self,
        session: Optional[Session] = None,
        logger: Optional[ContextAwareLogger] = None,
    ):
        self._owns_session = session is None
        self.session = get_db_manager().new_session() if session is None else session
        self.logger = logger or get_logger()

    def _handle_service_exception(
        self, operation: str, exception: Exception, entity_id: Optional[str] = None
    ) -> NoReturn:
        """
        Re-raise a failure from one of the service's operations.

        BaseError subclasses propagate as they are. Store failures become
        DATABASE_ERROR and everything else INTERNAL_ERROR.
        """
        if isinstance(exception, BaseError):
            raise exception

        code = (
            ErrorCode.DATABASE_ERROR
            if isinstance(exception, SQLAlchemyError)
            else ErrorCode.INTERNAL_ERROR
        )
        message = f"{operation} failed: {exception}"
        self.logger.error(
            message,
            extra={
                "operation": operation,
                "entity_id": entity_id,
                "error_type": type(exception).__name__,
            },
            exc_info=True,
        )
        raise ServiceError(
            message, error_code=code, operation=operation, entity_id=entity_id, cause=exception
        ) from exception

    def commit(self):
        if self._owns_session:
            self.session.commit()

    def rollback(self):
        if self._owns_session:
            self.session.rollback()

    def close(self):
        if self._owns_session:
            self.session.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        if exc_type is None:
            self.commit()
        else:
            self.rollback()
        self.close()
