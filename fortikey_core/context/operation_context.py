"""
Operation tracking for service methods.

The @operation() decorator logs ENTER, EXIT and ERROR lines for each call,
carrying an operation id, the correlation id shared by nested calls, the
current tenant and the call duration. Credential material passed as keyword
arguments is masked before it reaches the log.
"""

import time
import uuid
from contextlib import contextmanager
from functools import wraps
from typing import Any, Callable, Dict, Optional, TypeVar, Union, cast

from ..exceptions import BaseError, get_correlation_id, set_correlation_id
from ..utils.logger import ContextAwareLogger, get_logger
from .tenant_context import TenantContext

# Parameter names whose values must never reach the logs
SENSITIVE_PARAMS = frozenset({"token", "code", "secret", "backup_codes", "key", "iv", "plaintext"})


class OperationContext:
    """Identity and timing of one running operation."""

    def __init__(self, operation_name: str, correlation_id: Optional[str] = None):
        self.operation_name = operation_name
        self.operation_id = str(uuid.uuid4())
        self.correlation_id = correlation_id or get_correlation_id() or str(uuid.uuid4())
        # Nested operations pick this up through get_correlation_id()
        set_correlation_id(self.correlation_id)
        self.start_time = time.time()

    @property
    def duration_ms(self) -> float:
        return round((time.time() - self.start_time) * 1000, 2)

    def log_fields(self) -> Dict[str, Any]:
        return {"operation_id": self.operation_id, "correlation_id": self.correlation_id}


class OperationHandler:
    """Writes the ENTER/EXIT/ERROR lines around an operation."""

    def __init__(self, logger: Optional[ContextAwareLogger] = None):
        self.logger = logger if logger is not None else get_logger()

    @contextmanager
    def operation(self, name: str, **context):
        tenant_id = TenantContext.get_current_tenant_id()
        if tenant_id and "tenant_id" not in context:
            context["tenant_id"] = tenant_id

        op_ctx = OperationContext(name)
        fields = {**context, **op_ctx.log_fields()}
        self.logger.info(f"ENTER: {name}", extra=fields)

        try:
            yield op_ctx
        except BaseError as e:
            # Already logged by BaseError itself; attach where it happened
            e.add_context(
                operation_name=name,
                operation_id=op_ctx.operation_id,
                operation_duration_ms=op_ctx.duration_ms,
            )
            self.logger.warning(
                f"ERROR: {name} -> {e.error_code}: {e.message}",
                extra={
                    **fields,
                    "duration_ms": op_ctx.duration_ms,
                    "error_id": e.error_id,
                    "error_code": e.error_code.value,
                    "status": "error",
                },
            )
            raise
        except Exception as e:
            self.logger.exception(
                f"ERROR: {name} -> {type(e).__name__}: {e}",
                extra={
                    **fields,
                    "duration_ms": op_ctx.duration_ms,
                    "error_type": type(e).__name__,
                    "status": "error",
                },
            )
            raise

        self.logger.info(
            f"EXIT: {name}",
            extra={**fields, "duration_ms": op_ctx.duration_ms, "status": "success"},
        )


F = TypeVar("F", bound=Callable[..., Any])


def _sanitize_param(param, name: Optional[str] = None):
    """Reduce a keyword argument to something safe and small enough to log."""
    if param is None:
        return None
    if name in SENSITIVE_PARAMS:
        return "***"
    if isinstance(param, (str, int, float, bool)):
        return param
    if isinstance(param, dict) and len(param) < 10:
        return {k: _sanitize_param(v, k) for k, v in param.items()}
    return type(param).__name__


def _operation_name(func: Callable, args: tuple) -> str:
    qualified = func.__name__
    if args and hasattr(args[0], "__class__"):
        qualified = f"{args[0].__class__.__name__}.{qualified}"
    return f"{func.__module__.split('.')[-1]}.{qualified}"


def operation(name: Union[Optional[str], Callable] = None):
    """
    Decorator that wraps a call in OperationHandler.operation().

    Usable bare (@operation) or with an explicit name (@operation("credential.create")).
    Without a name, "<module>.<Class>.<method>" is used.
    """

    def decorator(func: F) -> F:
        @wraps(func)
        def wrapper(*args, **kwargs) -> Any:
            context: Dict[str, Any] = {"source_module": func.__module__}
            # Positional values are not logged; they may carry secrets
            params = {k: _sanitize_param(v, k) for k, v in kwargs.items()}
            if params:
                context["params"] = params

            with OperationHandler().operation(name or _operation_name(func, args), **context):
                return func(*args, **kwargs)

        return cast(F, wrapper)

    if callable(name):
        func, name = name, None
        return decorator(func)

    return decorator
