"""
=============================================================================
REQUEST HANDLERS
=============================================================================

A handler turns one framed request into one response:

    handler(request: RawRequest, deadline: Deadline) -> HTTPResponse

It runs on a worker thread and owns nothing but its arguments. Blocking
work should go through the deadline (deadline.sleep, deadline.clamp) so
that handler_timeout and shutdown can stop it. Work that blocks outside
the deadline can outlive handler_timeout: a thread cannot be killed.

=============================================================================
"""

from typing import Callable

from ..core.deadline import Deadline
from ..http.request import RawRequest
from ..http.response import HTTPResponse
from .canned import CannedResponseHandler


Handler = Callable[[RawRequest, Deadline], HTTPResponse]

__all__ = [
    "Handler",
    "CannedResponseHandler",
]
