"""
Store helpers shared by the credential, usage and tenant services.

Every helper applies the tenant filter ahead of any other filter.
"""

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Type, TypeVar

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Query, Session

from ..exceptions import ErrorCode, RepositoryError
from .logger import get_logger

T = TypeVar("T")


def _tenant_query(
    session: Session,
    model_class: Type[T],
    tenant_id: Optional[str],
    filters: Optional[Dict[str, Any]] = None,
) -> Query:
    query = session.query(model_class)
    if tenant_id:
        query = query.filter(model_class.tenant_id == tenant_id)  # type: ignore[attr-defined]
    for column, value in (filters or {}).items():
        if value is not None:
            query = query.filter(getattr(model_class, column) == value)
    return query


def _store_failure(action: str, model_class: type, error: Exception, **context) -> RepositoryError:
    get_logger().error(
        f"Failed to {action} {model_class.__name__}: {error}",
        extra={"model": model_class.__name__, "error_type": type(error).__name__, **context},
    )
    return RepositoryError(
        f"Failed to {action} {model_class.__name__}: {error}",
        error_code=ErrorCode.DATABASE_ERROR,
        cause=error,
        model=model_class.__name__,
        **context,
    )


def create_record(session: Session, model_class: Type[T], data: Dict[str, Any]) -> T:
    """
    Insert and commit one row.

    created_at and updated_at are stamped when the model has them and the
    data does not set them.

    Raises:
        RepositoryError: DUPLICATE (409) on a unique constraint, DATABASE_ERROR otherwise
    """
    now = datetime.now(timezone.utc)
    for stamp in ("created_at", "updated_at"):
        if hasattr(model_class, stamp):
            data.setdefault(stamp, now)

    try:
        record = model_class(**data)
        session.add(record)
        session.commit()
    except IntegrityError as e:
        session.rollback()
        raise RepositoryError(
            f"Duplicate {model_class.__name__}",
            error_code=ErrorCode.DUPLICATE,
            status_code=409,
            cause=e,
            model=model_class.__name__,
            tenant_id=data.get("tenant_id"),
        )
    except Exception as e:
        session.rollback()
        raise _store_failure("create", model_class, e, tenant_id=data.get("tenant_id"))

    get_logger().debug(
        f"Created {model_class.__name__}",
        extra={"record_id": getattr(record, "id", None), "tenant_id": data.get("tenant_id")},
    )
    return record


def delete_record(session: Session, model_class: Type[T], record_id: str, tenant_id: str) -> bool:
    """Delete one row of a tenant by id. Returns False when the tenant has no such row."""
    try:
        record = _tenant_query(session, model_class, tenant_id, {"id": record_id}).first()
        if record is None:
            return False
        session.delete(record)
        session.commit()
    except Exception as e:
        session.rollback()
        raise _store_failure("delete", model_class, e, record_id=record_id, tenant_id=tenant_id)

    get_logger().info(
        f"Deleted {model_class.__name__}",
        extra={"record_id": record_id, "tenant_id": tenant_id},
    )
    return True


def delete_records(
    session: Session,
    model_class: Type[T],
    filters: Dict[str, Any],
    tenant_id: Optional[str],
) -> int:
    """
    Bulk delete every row of a tenant that matches the filters.

    Returns:
        Number of rows deleted

    Raises:
        RepositoryError: PRECONDITION_FAILED without a tenant, DATABASE_ERROR if the delete fails
    """
    if not tenant_id:
        raise RepositoryError(
            f"Bulk delete of {model_class.__name__} requires a tenant_id",
            error_code=ErrorCode.PRECONDITION_FAILED,
            status_code=400,
            model=model_class.__name__,
        )

    try:
        count = _tenant_query(session, model_class, tenant_id, filters).delete(
            synchronize_session=False
        )
        session.commit()
    except Exception as e:
        session.rollback()
        raise _store_failure("bulk delete", model_class, e, tenant_id=tenant_id)

    get_logger().info(
        f"Deleted {count} {model_class.__name__} rows",
        extra={"count": count, "tenant_id": tenant_id},
    )
    return count


def list_records(
    session: Session,
    model_class: Type[T],
    tenant_id: Optional[str] = None,
    filters: Optional[Dict[str, Any]] = None,
    order_by: Optional[str] = None,
    limit: Optional[int] = None,
    offset: int = 0,
) -> List[T]:
    """
    List rows, optionally of one tenant.

    Args:
        order_by: Column name, a leading "-" sorts descending; unordered when None
        limit: Maximum rows to return; all when None
        offset: Rows to skip
    """
    query = _tenant_query(session, model_class, tenant_id, filters)
    if order_by:
        column = getattr(model_class, order_by.lstrip("-"))
        query = query.order_by(column.desc() if order_by.startswith("-") else column.asc())
    if offset:
        query = query.offset(offset)
    if limit:
        query = query.limit(limit)
    return query.all()
