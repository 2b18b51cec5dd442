"""
Console logging for the credential services.

Extras passed to a log call stay on the LogRecord and are also appended to
the message as "key=value" pairs, so they survive a host that replaces the
formatter. Records are stamped with the tenant of the current TenantContext.
"""

import logging
import sys
from typing import Optional, Union

from ..config import get_config

ROOT_LOGGER_NAME = "fortikey"

_service_logger: Optional["ContextAwareLogger"] = None


class ContextAwareLogger:
    """Thin wrapper around a logging.Logger that renders extras into the message."""

    def __init__(self, logger):
        self.logger = logger

    def _emit(self, method: str, msg: str, **kwargs) -> None:
        extra = kwargs.pop("extra", None) or {}
        if extra:
            msg = " | ".join([msg] + [f"{k}={v}" for k, v in extra.items()])
        getattr(self.logger, method)(msg, extra=extra, **kwargs)

    def debug(self, msg, **kwargs):
        self._emit("debug", msg, **kwargs)

    def info(self, msg, **kwargs):
        self._emit("info", msg, **kwargs)

    def warning(self, msg, **kwargs):
        self._emit("warning", msg, **kwargs)

    def error(self, msg, **kwargs):
        self._emit("error", msg, **kwargs)

    def exception(self, msg, **kwargs):
        """Log at ERROR with the active exception's traceback."""
        self._emit("exception", msg, **kwargs)


class TenantContextFilter(logging.Filter):
    """Stamps tenant_id from the current TenantContext unless the record already has one."""

    def filter(self, record):
        # Imported here: tenant_context imports this module
        from ..context.tenant_context import TenantContext

        tenant_id = TenantContext.get_current_tenant_id()
        if tenant_id and not hasattr(record, "tenant_id"):
            record.tenant_id = tenant_id
        return True


def _resolve_level(log_level: Optional[Union[int, str]]) -> int:
    if log_level is None:
        log_level = get_config().logging.level
    if isinstance(log_level, str):
        return getattr(logging, log_level.upper(), logging.INFO)
    return log_level


def configure_logging(
    service_name: str,
    log_level: Optional[Union[int, str]] = None,
    log_format: Optional[str] = None,
) -> ContextAwareLogger:
    """
    Install a stdout handler on "fortikey.<service_name>" and make it the default logger.

    Calling this again for the same service replaces the handler rather than adding one.

    Args:
        service_name: Suffix of the logger name
        log_level: Level name or number; defaults to the configured logging level
        log_format: Formatter string; defaults to the bare message
    """
    global _service_logger

    level = _resolve_level(log_level)
    logger = logging.getLogger(f"{ROOT_LOGGER_NAME}.{service_name}")
    logger.setLevel(level)
    for handler in list(logger.handlers):
        logger.removeHandler(handler)

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(log_format or "%(message)s"))
    handler.addFilter(TenantContextFilter())
    logger.addHandler(handler)

    _service_logger = ContextAwareLogger(logger)
    _service_logger.info("Service logger configured", extra={"service_name": service_name})
    return _service_logger


def reset_logging() -> None:
    """Forget the configured service logger; get_logger() falls back to "fortikey"."""
    global _service_logger
    _service_logger = None


def get_logger(log_level: Optional[Union[int, str]] = None) -> ContextAwareLogger:
    """Return the configured service logger, or a wrapper around the "fortikey" logger."""
    if _service_logger is not None:
        return _service_logger

    logger = logging.getLogger(ROOT_LOGGER_NAME)
    logger.setLevel(_resolve_level(log_level))
    return ContextAwareLogger(logger)
