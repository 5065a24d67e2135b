"""
=============================================================================
HTTP STATUS CODES
=============================================================================

The status codes the acceptor actually answers with.

    ┌────────┬───────────────────────────────────────────────────────────┐
    │  200   │ OK                  - request handled                     │
    ├────────┼───────────────────────────────────────────────────────────┤
    │  400   │ Bad Request         - framing broken (bad Content-Length) │
    │  408   │ Request Timeout     - client too slow to send a request   │
    │  413   │ Payload Too Large   - request exceeds max_request_size    │
    ├────────┼───────────────────────────────────────────────────────────┤
    │  500   │ Internal Error      - the handler raised                  │
    │  503   │ Service Unavailable - pool saturated, or handler timed out│
    └────────┴───────────────────────────────────────────────────────────┘

=============================================================================
"""

from enum import IntEnum


class HTTPStatus(IntEnum):
    """
    HTTP status codes and reason phrases.

    This enum extends IntEnum, so status codes can be used as integers:

        >>> HTTPStatus.OK == 200
        True
        >>> HTTPStatus.OK.phrase
        'OK'
    """

    OK = 200

    BAD_REQUEST = 400
    REQUEST_TIMEOUT = 408
    PAYLOAD_TOO_LARGE = 413

    INTERNAL_SERVER_ERROR = 500
    SERVICE_UNAVAILABLE = 503

    @property
    def phrase(self) -> str:
        """Reason phrase used in the status line."""
        return _STATUS_PHRASES.get(self, "Unknown")

    @property
    def is_success(self) -> bool:
        return 200 <= self < 300

    @property
    def is_client_error(self) -> bool:
        return 400 <= self < 500

    @property
    def is_server_error(self) -> bool:
        return 500 <= self < 600

    @property
    def is_error(self) -> bool:
        """Check if this is an error status code (4xx or 5xx)."""
        return self >= 400


_STATUS_PHRASES = {
    HTTPStatus.OK: "OK",
    HTTPStatus.BAD_REQUEST: "Bad Request",
    HTTPStatus.REQUEST_TIMEOUT: "Request Timeout",
    HTTPStatus.PAYLOAD_TOO_LARGE: "Payload Too Large",
    HTTPStatus.INTERNAL_SERVER_ERROR: "Internal Server Error",
    HTTPStatus.SERVICE_UNAVAILABLE: "Service Unavailable",
}
