"""Internal machinery: HTTP transport and request retry."""

from .http import (
    Auth,
    BearerAuth,
    HttpClient,
    HttpError,
)
from .retry import (
    on_status_code,
    retry,
)

__all__ = [
    "Auth",
    "BearerAuth",
    "HttpClient",
    "HttpError",
    "on_status_code",
    "retry",
]
