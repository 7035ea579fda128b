"""Exception hierarchy for the LKE driver.

Every error raised by a lifecycle operation derives from LKEDriverError so
the host adapter can map them with a single except clause. Errors that
happen after the remote side was already mutated carry the ClusterInfo as it
was last successfully observed, so the host can persist it before retrying.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from lke_driver.types import ClusterInfo


class LKEDriverError(Exception):
    """Base class for driver errors."""

    def __init__(self, message: str, *, info: ClusterInfo | None = None) -> None:
        super().__init__(message)
        self.info = info


class ValidationError(LKEDriverError):
    """Malformed or incomplete options, metadata or arguments.

    Always raised before any remote call is attempted.
    """


class LinodeAPIError(LKEDriverError):
    """Error response (or transport failure) from the Linode API.

    ``status`` is 0 when the request never produced an HTTP response.
    """

    def __init__(
        self,
        status: int,
        message: str,
        *,
        context: str = "",
        info: ClusterInfo | None = None,
    ) -> None:
        self.status = status
        self.message = message
        self.context = context
        text = f"API error {status}: {message}"
        super().__init__(f"{context}: {text}" if context else text, info=info)

    @property
    def not_found(self) -> bool:
        return self.status == 404

    @property
    def transient(self) -> bool:
        return self.status == 0 or self.status == 429 or self.status >= 500

    def with_context(self, context: str, *, info: ClusterInfo | None = None) -> LinodeAPIError:
        """Return a copy of this error describing the failing operation."""
        return LinodeAPIError(self.status, self.message, context=context, info=info)


class NodePoolReconcileError(LinodeAPIError):
    """A node pool mutation failed part way through a reconciliation.

    Mutations issued before the failure are not rolled back.
    """

    def __init__(
        self,
        status: int,
        message: str,
        *,
        context: str = "",
        applied: dict[str, int] | None = None,
        info: ClusterInfo | None = None,
    ) -> None:
        super().__init__(status, message, context=context, info=info)
        self.applied = dict(applied or {})


class ConvergenceTimeoutError(LKEDriverError, TimeoutError):
    """A bounded poll did not observe the expected remote state in time."""


class PollCancelledError(LKEDriverError):
    """The caller abandoned a readiness wait."""


class BootstrapError(LKEDriverError):
    """The in-cluster service account token could not be obtained."""


class NotSupportedError(LKEDriverError):
    """The requested operation is not implemented by this driver."""
