"""
Request context for the originating client of an operation.

The HTTP layer populates this once per request; the usage recorder reads it
to stamp ip_address and user_agent on events that do not carry them.
"""

import threading
from contextlib import contextmanager
from typing import Generator, Optional

from pydantic import BaseModel, ConfigDict


class RequestInfo(BaseModel):
    """Client details captured from the inbound request."""

    ip_address: Optional[str] = None
    user_agent: Optional[str] = None

    model_config = ConfigDict(frozen=True)


class RequestContext:
    """Thread-local holder for the current RequestInfo."""

    _thread_local = threading.local()

    @classmethod
    def set_current_request(cls, info: RequestInfo) -> None:
        cls._thread_local.request = info

    @classmethod
    def get_current_request(cls) -> Optional[RequestInfo]:
        return getattr(cls._thread_local, "request", None)

    @classmethod
    def clear_current_request(cls) -> None:
        if hasattr(cls._thread_local, "request"):
            delattr(cls._thread_local, "request")


@contextmanager
def request_context(
    ip_address: Optional[str] = None, user_agent: Optional[str] = None
) -> Generator[RequestInfo, None, None]:
    """
    Context manager binding client details for the duration of a request.

    Args:
        ip_address: Client IP address as seen by the HTTP layer
        user_agent: Raw User-Agent header

    Yields:
        The bound RequestInfo
    """
    previous = RequestContext.get_current_request()
    info = RequestInfo(ip_address=ip_address, user_agent=user_agent)
    RequestContext.set_current_request(info)
    try:
        yield info
    finally:
        if previous is not None:
            RequestContext.set_current_request(previous)
        else:
            RequestContext.clear_current_request()
