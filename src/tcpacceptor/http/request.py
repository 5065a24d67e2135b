"""
=============================================================================
REQUEST FRAMING
=============================================================================

TCP is a byte stream. A single recv() may return half a request, or a
request and a half, so "read 1024 bytes once" is not a protocol. The
acceptor needs a rule that says where one request ENDS:

    ┌─────────────────────────────────────────────────────────────────────┐
    │                       FRAMING RULES                                  │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                      │
    │  1. HEADER BLOCK                                                    │
    │     Bytes up to and including the first \r\n\r\n.                   │
    │     If the header block declares Content-Length: N, the request     │
    │     ends exactly N bytes later.                                     │
    │                                                                      │
    │  2. END OF STREAM                                                   │
    │     The client half-closes (shutdown(SHUT_WR)) after sending at     │
    │     least one byte. Everything received so far is the request.      │
    │                                                                      │
    │  Whichever comes first wins. Size and time limits apply to both.    │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

The request content itself is never interpreted: method, path and headers
other than Content-Length are ignored.

=============================================================================
"""

from dataclasses import dataclass
from typing import Optional, Tuple


HEADER_TERMINATOR = b"\r\n\r\n"


@dataclass
class RawRequest:
    """
    One framed request, as received.

    Attributes:
        data: The request bytes (header block and body).
        client_address: Peer (ip, port).
        header_end: Index just past the header terminator, or None when the
                    request was delimited by end of stream instead.
        content_length: Declared body length (0 when not declared).
        eof_terminated: True if the client half-closed to end the request.
    """

    data: bytes
    client_address: Tuple[str, int]
    header_end: Optional[int] = None
    content_length: int = 0
    eof_terminated: bool = False

    @property
    def size(self) -> int:
        return len(self.data)

    @property
    def header_complete(self) -> bool:
        return self.header_end is not None

    @property
    def header_bytes(self) -> bytes:
        if self.header_end is None:
            return b""
        return self.data[:self.header_end - len(HEADER_TERMINATOR)]

    @property
    def body(self) -> bytes:
        if self.header_end is None:
            return self.data
        return self.data[self.header_end:]

    @property
    def request_line(self) -> str:
        """First line of the request, for logs. Empty if there is none."""
        first, _, _ = self.data.partition(b"\r\n")
        return first[:200].decode("latin-1")


def find_header_end(buffer: bytes) -> Optional[int]:
    """Index just past the first header terminator, or None."""
    index = buffer.find(HEADER_TERMINATOR)
    if index == -1:
        return None
    return index + len(HEADER_TERMINATOR)


def parse_content_length(header_block: bytes) -> int:
    """
    Extract Content-Length from a raw header block.

    A simple line scan is enough here: nothing else in the headers
    matters for framing.

    Returns:
        Declared length, or 0 if the header is absent.

    Raises:
        ValueError: The value is not a non-negative integer, or the
                    header appears twice with different values.
    """
    text = header_block.decode("latin-1")
    found: Optional[int] = None

    # Skip the request line; it cannot carry headers.
    for line in text.split("\r\n")[1:]:
        name, sep, value = line.partition(":")
        if not sep or name.strip().lower() != "content-length":
            continue

        value = value.strip()
        if not value.isdigit():
            raise ValueError(f"Invalid Content-Length: {value!r}")

        length = int(value)
        if found is not None and found != length:
            raise ValueError("Conflicting Content-Length headers")
        found = length

    return found or 0
