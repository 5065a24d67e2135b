"""
=============================================================================
CONNECTION MANAGEMENT
=============================================================================

This module wraps one accepted client socket with everything a handler
needs to serve it safely: framed reading, deadlines, a guarded write and a
close that runs on every exit path.

=============================================================================
TCP IS A BYTE STREAM, NOT A MESSAGE PROTOCOL!
=============================================================================

    Client sends:
        send("GET / HTTP/1.1\r\nHost: x\r\n\r\n")

    Server might receive ANY of these:
        recv() → "GET / HTTP/1.1\r\nHost: x\r\n\r\n"   (all at once)
        recv() → "GET / HT"                            (partial)
        recv() → "TP/1.1\r\nHost: x\r\n\r\n"           (the rest)

Reading into a 1 KiB buffer exactly once silently truncates anything
bigger, and misreads anything that arrives in pieces. read_request() loops
until a FRAMING BOUNDARY is reached (see http/request.py) or a limit is hit.

=============================================================================
LIMITS
=============================================================================

    ┌─────────────────────────────────────────────────────────────────────┐
    │                                                                      │
    │  read_timeout      ONE deadline across every recv() of a request.   │
    │                    A client sending a byte a second still times out.│
    │                    → RequestTimeout (408)                            │
    │                                                                      │
    │  max_request_size  Buffered or declared size beyond the limit.      │
    │                    → RequestTooLarge (413), never truncation         │
    │                                                                      │
    │  handler Deadline  Every socket timeout is clamped to the handler's │
    │                    remaining lifetime.                              │
    │                    → HandlerTimeout (503)                            │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

=============================================================================
CONNECTION STATE MACHINE
=============================================================================

    NEW ──────► READING ──────► PROCESSING ──────► WRITING
     │             │                                    │
     │             ▼                                    ▼
     │ (full)   CLOSING ◄───────────────────────────────┘
     ▼             │
    REJECTED ──────┤
                   ▼
                 CLOSED

A write is attempted at most once after a failed write: a connection whose
send failed is marked ``failed`` and every later write is skipped.

=============================================================================
"""

import logging
import socket
import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Tuple

from ..errors import (
    HandlerTimeout,
    MalformedRequest,
    PeerClosed,
    RequestTimeout,
    RequestTooLarge,
)
from ..http.request import RawRequest, find_header_end, parse_content_length, HEADER_TERMINATOR
from ..http.response import error_response
from ..http.status_codes import HTTPStatus
from .deadline import Deadline


logger = logging.getLogger(__name__)


# The acceptor thread writes rejections itself; it must never wait long
# on a client that is not reading.
REJECT_WRITE_TIMEOUT = 0.1

# recv() calls a close without linger spends on data already buffered.
NONBLOCKING_DRAIN_READS = 4


class ConnectionState(Enum):
    """Connection lifecycle states."""
    NEW = "new"                # Just accepted
    READING = "reading"        # Framing a request
    PROCESSING = "processing"  # Handler is running
    WRITING = "writing"        # Sending the response
    REJECTED = "rejected"      # Turned away by admission control
    CLOSING = "closing"        # Shutdown sequence in progress
    CLOSED = "closed"          # Socket released


@dataclass
class Connection:
    """
    One accepted client connection.

    Owned by exactly one task at a time: the acceptor until the connection
    is queued, then the single worker that picks it up.

    Attributes:
        socket: The client socket.
        address: Client's (ip, port) tuple.
        id: Short identifier used as a log prefix.
        state: Current ConnectionState.
        created_at: Monotonic time of accept().
        bytes_received / bytes_sent: Traffic counters for the access log.
        failed: A write failed; no further writes will be attempted.
    """

    socket: socket.socket
    address: Tuple[str, int]

    id: str = field(default_factory=lambda: str(uuid.uuid4())[:8])
    state: ConnectionState = ConnectionState.NEW
    created_at: float = field(default_factory=time.monotonic)
    bytes_received: int = 0
    bytes_sent: int = 0
    failed: bool = False

    # Configuration (passed from AcceptorConfig)
    buffer_size: int = 1024
    read_timeout: float = 10.0
    write_timeout: float = 10.0
    linger_timeout: float = 0.5
    max_request_size: int = 64 * 1024

    def __post_init__(self):
        self.socket.settimeout(self.read_timeout)

    @property
    def client_ip(self) -> str:
        return self.address[0]

    @property
    def age(self) -> float:
        """Seconds since accept()."""
        return time.monotonic() - self.created_at

    @property
    def is_closed(self) -> bool:
        return self.state == ConnectionState.CLOSED

    # =========================================================================
    # READING
    # =========================================================================

    def read_request(self, deadline: Optional[Deadline] = None) -> RawRequest:
        """
        Read one complete request.

        ┌─────────────────────────────────────────────────────────────────┐
        │                    read_request() Flow                           │
        ├─────────────────────────────────────────────────────────────────┤
        │                                                                  │
        │   loop:                                                          │
        │     header terminator seen?                                      │
        │       └── parse Content-Length once, check declared size         │
        │     header + declared body complete?  → return                   │
        │     buffered > max_request_size?      → RequestTooLarge          │
        │     recv() with time left on both deadlines                      │
        │       └── b"" (client half-closed)                               │
        │             nothing buffered   → PeerClosed                      │
        │             inside a body      → MalformedRequest                │
        │             otherwise          → return (end-of-stream framing)  │
        │                                                                  │
        └─────────────────────────────────────────────────────────────────┘

        Raises:
            RequestTimeout, RequestTooLarge, MalformedRequest, PeerClosed,
            HandlerTimeout.
        """
        self.state = ConnectionState.READING
        deadline = deadline or Deadline.never()
        read_deadline = time.monotonic() + self.read_timeout

        buffer = bytearray()
        header_end: Optional[int] = None
        content_length = 0

        while True:
            if header_end is None:
                header_end = find_header_end(buffer)
                if header_end is not None:
                    header_block = bytes(buffer[:header_end - len(HEADER_TERMINATOR)])
                    try:
                        content_length = parse_content_length(header_block)
                    except ValueError as e:
                        raise MalformedRequest(str(e))

                    # Refuse up front; no point reading a body we will reject.
                    if header_end + content_length > self.max_request_size:
                        raise RequestTooLarge(
                            f"Declared request size {header_end + content_length} bytes "
                            f"exceeds {self.max_request_size}"
                        )

            if header_end is not None and len(buffer) >= header_end + content_length:
                request_end = header_end + content_length
                if len(buffer) > request_end:
                    logger.debug(
                        f"[{self.id}] Ignoring {len(buffer) - request_end} bytes after request"
                    )
                return RawRequest(
                    data=bytes(buffer[:request_end]),
                    client_address=self.address,
                    header_end=header_end,
                    content_length=content_length,
                )

            if header_end is None and len(buffer) > self.max_request_size:
                raise RequestTooLarge(
                    f"Request exceeds {self.max_request_size} bytes without a header terminator"
                )

            chunk = self._recv(read_deadline, deadline)

            if not chunk:
                if not buffer:
                    raise PeerClosed("Client closed the connection without sending data")
                if header_end is not None:
                    raise MalformedRequest(
                        f"Client closed after {len(buffer) - header_end} of "
                        f"{content_length} body bytes"
                    )
                return RawRequest(
                    data=bytes(buffer),
                    client_address=self.address,
                    eof_terminated=True,
                )

            buffer += chunk

    def _recv(self, read_deadline: float, deadline: Deadline) -> bytes:
        """
        One recv() bounded by the request read deadline and the handler
        deadline, whichever is closer.

        Returns:
            Received bytes, or b"" when the client half-closed.
        """
        remaining = read_deadline - time.monotonic()
        if remaining <= 0:
            raise RequestTimeout(f"No complete request within {self.read_timeout}s")

        timeout = deadline.clamp(remaining)
        self.socket.settimeout(timeout)

        try:
            data = self.socket.recv(self.buffer_size)
        except socket.timeout:
            deadline.check()
            if timeout < remaining:
                # The handler deadline was the tighter bound.
                raise HandlerTimeout(f"Handler exceeded {deadline.timeout}s")
            raise RequestTimeout(f"No complete request within {self.read_timeout}s")
        except OSError as e:
            # Reset, broken pipe: the client is gone.
            raise PeerClosed(f"Read failed: {e}")

        self.bytes_received += len(data)
        return data

    # =========================================================================
    # WRITING
    # =========================================================================

    def send_response(self, data: bytes, deadline: Optional[Deadline] = None) -> bool:
        """
        Send a complete response with sendall().

        Returns:
            True if every byte was handed to the kernel, False if the write
            failed (the connection is then marked failed).

        Raises:
            HandlerTimeout: The handler deadline left no time to write.
        """
        if self.failed or self.is_closed:
            return False

        timeout = self.write_timeout
        if deadline is not None:
            timeout = deadline.clamp(timeout)

        self.state = ConnectionState.WRITING
        self.socket.settimeout(timeout)

        try:
            self.socket.sendall(data)
        except OSError as e:
            # Includes socket.timeout: a client that does not read.
            logger.warning(f"[{self.id}] Send failed: {e}")
            self.failed = True
            return False

        self.bytes_sent += len(data)
        return True

    def send_error(self, status: HTTPStatus, message: str, server_name: str) -> bool:
        """Best-effort error response; skipped after a failed write."""
        response = error_response(status, message)
        return self.send_response(response.to_bytes(server_name))

    def reject(self, data: bytes):
        """
        Turn the connection away: write ``data``, then close immediately.

        Runs on the acceptor thread, so nothing here may block for long:
        the write has a tiny timeout and close() does not linger.
        """
        self.state = ConnectionState.REJECTED
        self.socket.settimeout(REJECT_WRITE_TIMEOUT)

        try:
            self.socket.sendall(data)
            self.bytes_sent += len(data)
        except OSError as e:
            logger.debug(f"[{self.id}] Rejection not delivered: {e}")
            self.failed = True

        self.close(linger=0)

    # =========================================================================
    # CLOSING
    # =========================================================================

    def close(self, linger: Optional[float] = None):
        """
        Close the connection. Safe to call more than once.

        1. shutdown(SHUT_WR)  sends FIN: "no more data from us"
        2. drain              reads what the client already sent, so the
                              kernel does not answer our close with RST
                              (which can destroy the response in flight)
        3. close()            releases the file descriptor

        Args:
            linger: Seconds to spend draining. Defaults to linger_timeout;
                    0 drains only what is already buffered.
        """
        if self.state == ConnectionState.CLOSED:
            return

        self.state = ConnectionState.CLOSING

        try:
            self.socket.shutdown(socket.SHUT_WR)
        except OSError:
            pass  # Already disconnected

        self._drain(self.linger_timeout if linger is None else linger)

        try:
            self.socket.close()
        except OSError:
            pass

        self.state = ConnectionState.CLOSED
        logger.debug(f"[{self.id}] Connection closed after {self.age:.3f}s")

    def _drain(self, linger: float):
        """
        Discard unread client data for at most ``linger`` seconds.

        With no linger the socket is read without blocking, and only
        NONBLOCKING_DRAIN_READS times: a client that keeps sending must not
        hold the acceptor thread.
        """
        give_up_at = time.monotonic() + linger
        reads = 0
        try:
            if linger <= 0:
                self.socket.setblocking(False)
            while True:
                if linger <= 0:
                    if reads >= NONBLOCKING_DRAIN_READS:
                        return
                    reads += 1
                else:
                    remaining = give_up_at - time.monotonic()
                    if remaining <= 0:
                        return
                    self.socket.settimeout(remaining)
                if not self.socket.recv(self.buffer_size):
                    return  # Client closed its side too
        except OSError:
            pass  # Nothing more to read (timeout, would block, reset)

    # =========================================================================
    # CONTEXT MANAGER
    # =========================================================================

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Close on every exit path, success or error."""
        self.close()
        return False
