"""
=============================================================================
HTTP WIRE FORMAT
=============================================================================

Just enough HTTP to frame a request and write a valid response:

    request.py       RawRequest, header terminator / Content-Length framing
    response.py      HTTPResponse and the canned responses
    status_codes.py  The handful of status codes the acceptor emits

=============================================================================
"""

from .status_codes import HTTPStatus
from .request import RawRequest, find_header_end, parse_content_length
from .response import (
    HTTPResponse,
    format_http_date,
    text_response,
    error_response,
    service_unavailable,
)

__all__ = [
    # Framing
    "RawRequest",
    "find_header_end",
    "parse_content_length",

    # Responses
    "HTTPResponse",
    "format_http_date",
    "text_response",
    "error_response",
    "service_unavailable",

    # Status codes
    "HTTPStatus",
]
