"""
Canned response handler.

Answers every request with the same 200 response, whatever the request
says. Optionally performs "slow work" first; the delay goes through the
handler's Deadline, so it is bounded by handler_timeout and cut short by
a shutdown, unlike a bare time.sleep().

    handler = CannedResponseHandler(body="Hey Client!", delay=8.0)
    response = handler(request, deadline)
"""

import logging

from ..core.deadline import Deadline
from ..http.request import RawRequest
from ..http.response import HTTPResponse, text_response


logger = logging.getLogger(__name__)


class CannedResponseHandler:
    """
    Fixed-response handler.

    Any callable with the signature ``(RawRequest, Deadline) -> HTTPResponse``
    can take its place in AcceptorServer.
    """

    def __init__(self, body: str = "Hey Client!", delay: float = 0.0):
        if delay < 0:
            raise ValueError("delay must be >= 0")
        self.body = body
        self.delay = delay

    def __call__(self, request: RawRequest, deadline: Deadline) -> HTTPResponse:
        if self.delay:
            logger.debug(f"Simulating {self.delay}s of work for {request.size} byte request")
            deadline.sleep(self.delay)

        return text_response(self.body)

    def __repr__(self) -> str:
        return f"CannedResponseHandler(body={self.body!r}, delay={self.delay})"
