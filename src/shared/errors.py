"""
Error taxonomy for a sync run.

Every failure the syncer knows how to name is a ``SyncError`` carrying an
``ErrorKind``.  Each kind maps to an ``ErrorScope`` that tells the caller
how far the failure must travel:

- ``RUN``: abort the current run, report it to the error channel, keep the
  daemon alive.  The next scheduled run re-derives everything safely.
- ``PROCESS``: propagate past the reporting wrapper.  Either the operator
  has to act before any run can succeed (missing config, expired Flickr
  authorisation) or the lease could not be released and every future run
  would be wedged.
"""

from __future__ import annotations

import enum
from typing import Any, Dict, Optional


class ErrorScope(enum.Enum):
    RUN = "run"
    PROCESS = "process"


class ErrorKind(enum.Enum):
    CONFIGURATION = "configuration"
    AUTHORIZATION = "authorization"
    UPSTREAM_API = "upstream_api"
    PUBLISH_API = "publish_api"
    LEASE_RELEASE = "lease_release"
    UNCLASSIFIED = "unclassified"

    @property
    def scope(self) -> ErrorScope:
        if self in _PROCESS_KINDS:
            return ErrorScope.PROCESS
        return ErrorScope.RUN


_PROCESS_KINDS = frozenset(
    {ErrorKind.CONFIGURATION, ErrorKind.AUTHORIZATION, ErrorKind.LEASE_RELEASE}
)


class SyncError(Exception):
    """Base class for classified sync failures."""

    kind: ErrorKind = ErrorKind.UNCLASSIFIED

    @property
    def scope(self) -> ErrorScope:
        return self.kind.scope


class ConfigurationError(SyncError):
    """A required credential, channel id or setting is missing."""

    kind = ErrorKind.CONFIGURATION


class AuthorizationError(SyncError):
    """Flickr rejected the stored OAuth credentials.

    Args:
        message: Human-readable reason from the upstream response.
        reauthorize_url: Where the operator redoes the OAuth flow, if known.
    """

    kind = ErrorKind.AUTHORIZATION

    def __init__(self, message: str, reauthorize_url: Optional[str] = None) -> None:
        super().__init__(message)
        self.reauthorize_url = reauthorize_url

    def __str__(self) -> str:
        base = super().__str__()
        if self.reauthorize_url:
            return f"{base}\nNeed login: {self.reauthorize_url}"
        return base


class UpstreamAPIError(SyncError):
    """Flickr returned a non-success envelope, a bad status, or the
    transport failed.

    Carries the failing method and (non-secret) parameters so the report
    in the error channel is enough to reproduce the call.
    """

    kind = ErrorKind.UPSTREAM_API

    def __init__(
        self,
        message: str,
        method: str,
        params: Optional[Dict[str, Any]] = None,
        code: Optional[int] = None,
        status_code: Optional[int] = None,
    ) -> None:
        super().__init__(message)
        self.method = method
        self.params = dict(params or {})
        self.code = code
        self.status_code = status_code

    def __str__(self) -> str:
        return f"Flickr API error: {super().__str__()}\n{self.method}\n{self.params}"


class PublishAPIError(SyncError):
    """The Telegram Bot API answered with ``ok: false`` or was unreachable."""

    kind = ErrorKind.PUBLISH_API

    def __init__(self, message: str, method: str) -> None:
        super().__init__(message)
        self.method = method

    def __str__(self) -> str:
        return f"Telegram API error ({self.method}): {super().__str__()}"


class LeaseReleaseError(SyncError):
    """The run lease could not be released after every retry."""

    kind = ErrorKind.LEASE_RELEASE

    def __init__(self, message: str, attempts: int) -> None:
        super().__init__(message)
        self.attempts = attempts


def classify(exc: BaseException) -> ErrorKind:
    """Return the ``ErrorKind`` for any exception (unknown ones are
    ``UNCLASSIFIED``)."""
    if isinstance(exc, SyncError):
        return exc.kind
    return ErrorKind.UNCLASSIFIED
