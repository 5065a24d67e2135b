"""
=============================================================================
ERROR TAXONOMY
=============================================================================

A network service must keep one client's failure from becoming everyone's
failure. Errors are therefore sorted by how far they are allowed to reach:

    ┌─────────────────────────────────────────────────────────────────────┐
    │                         FAILURE DOMAINS                             │
    ├──────────────────────┬──────────────────────────────────────────────┤
    │  FATAL               │ BindError, AcceptError                       │
    │  (service stops)     │ Reported to whoever called serve().          │
    ├──────────────────────┼──────────────────────────────────────────────┤
    │  LOOP LEVEL          │ Transient accept() errors (EMFILE, ...)      │
    │  (log, keep going)   │ Back off briefly, accept again.              │
    ├──────────────────────┼──────────────────────────────────────────────┤
    │  CONNECTION LEVEL    │ RequestTooLarge, RequestTimeout,             │
    │  (close this one)    │ MalformedRequest, HandlerTimeout, PeerClosed │
    │                      │ The other connections never notice.          │
    └──────────────────────┴──────────────────────────────────────────────┘

Connection-level errors carry the HTTP status to answer with, so the code
that catches them does not need a lookup table.

=============================================================================
"""

import errno
from typing import Optional

from .http.status_codes import HTTPStatus


class AcceptorError(Exception):
    """Base class for everything the acceptor raises."""


# =============================================================================
# FATAL
# =============================================================================

class BindError(AcceptorError):
    """
    The listening socket could not be bound.

    Typical causes: the port is already in use, or it is a privileged port
    and the process is not allowed to bind it.
    """

    def __init__(self, host: str, port: int, cause: OSError):
        super().__init__(f"Failed to bind {host}:{port}: {cause}")
        self.host = host
        self.port = port
        self.cause = cause


class AcceptError(AcceptorError):
    """accept() failed in a way that retrying will not fix."""

    def __init__(self, cause: OSError):
        super().__init__(f"Unrecoverable accept error: {cause}")
        self.cause = cause


# =============================================================================
# CONNECTION LEVEL
# =============================================================================

class ConnectionFailure(AcceptorError):
    """
    Something went wrong with ONE connection.

    Attributes:
        status: Status to answer with before closing, or None to close
                without writing anything.
    """

    status: Optional[HTTPStatus] = None

    def __init__(self, message: str, status: Optional[HTTPStatus] = None):
        super().__init__(message)
        if status is not None:
            self.status = status


class RequestTooLarge(ConnectionFailure):
    status = HTTPStatus.PAYLOAD_TOO_LARGE


class RequestTimeout(ConnectionFailure):
    status = HTTPStatus.REQUEST_TIMEOUT


class MalformedRequest(ConnectionFailure):
    status = HTTPStatus.BAD_REQUEST


class HandlerTimeout(ConnectionFailure):
    status = HTTPStatus.SERVICE_UNAVAILABLE


class PeerClosed(ConnectionFailure):
    """The client went away before sending a complete request."""


# =============================================================================
# ACCEPT ERROR CLASSIFICATION
# =============================================================================

# accept() failures that say "not right now" rather than "never":
# descriptor exhaustion, memory pressure, or a client that gave up
# between SYN and accept.
TRANSIENT_ACCEPT_ERRNOS = frozenset({
    errno.EMFILE,
    errno.ENFILE,
    errno.ENOBUFS,
    errno.ENOMEM,
    errno.ECONNABORTED,
    errno.EPROTO,
    errno.EPERM,
    errno.EAGAIN,
    errno.EINTR,
})


def is_transient_accept_error(exc: OSError) -> bool:
    """Return True if accept() should simply be retried after ``exc``."""
    if isinstance(exc, (ConnectionAbortedError, BlockingIOError, InterruptedError)):
        return True
    return exc.errno in TRANSIENT_ACCEPT_ERRNOS
