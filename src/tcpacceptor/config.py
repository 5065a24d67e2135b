"""
=============================================================================
ACCEPTOR CONFIGURATION
=============================================================================

Centralized configuration for the connection acceptor.

Every limit that keeps the acceptor from exhausting the machine lives here:
how many handlers may run at once, how many connections may wait for a
handler, how big a request may grow and how long a client may take.

=============================================================================
CONFIGURATION SOURCES
=============================================================================

    ┌─────────────────────────────────────────────────────────────────────┐
    │                    CONFIGURATION HIERARCHY                          │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                      │
    │   Priority (highest to lowest):                                     │
    │                                                                      │
    │   1. Command-line arguments                                         │
    │      └── python -m tcpacceptor --port 4221                         │
    │                                                                      │
    │   2. Environment variables                                          │
    │      └── ACCEPTOR_PORT=4221 python -m tcpacceptor                  │
    │                                                                      │
    │   3. Default values (in this dataclass)                            │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

=============================================================================
THE LIMITS, AT A GLANCE
=============================================================================

    accept ──► queue (queue_size) ──► workers (max_workers) ──► close
                  │                        │
                  │ full?                  ├── read_timeout      (whole request)
                  ▼                        ├── max_request_size  (413 beyond it)
              503 + close                  ├── handler_timeout   (max lifetime)
                                           └── write_timeout

=============================================================================
"""

import os
from dataclasses import dataclass


LOG_FORMATS = ("text", "json")


@dataclass
class AcceptorConfig:
    """
    Configuration for the connection acceptor.

    =========================================================================
    CONFIGURATION GROUPS
    =========================================================================

    NETWORK SETTINGS
    - host, port, backlog, buffer_size, poll_interval

    FRAMING
    - max_request_size

    TIMEOUTS
    - read_timeout, write_timeout, handler_timeout, linger_timeout,
      drain_timeout

    WORKER POOL
    - min_workers, max_workers, queue_size

    WORK
    - response_body, work_delay

    LOGGING
    - log_level, log_format, access_log

    =========================================================================
    """

    # ─────────────────────────────────────────────────────────────────────
    # NETWORK SETTINGS
    # ─────────────────────────────────────────────────────────────────────

    host: str = "127.0.0.1"
    """
    The IP address to bind to.
    - "127.0.0.1" - Localhost only
    - "0.0.0.0" - All network interfaces
    """

    port: int = 4221
    """
    The port number to listen on. 0 asks the OS for a free port
    (the bound port is then available from the server's address).
    """

    backlog: int = 128
    """
    Kernel accept queue length passed to listen().
    """

    buffer_size: int = 1024
    """
    Bytes requested per recv() call. This is a chunk size, not a limit:
    a request larger than one chunk is read in several calls.
    """

    poll_interval: float = 0.5
    """
    How often a blocked accept() wakes up to notice a shutdown request.
    """

    # ─────────────────────────────────────────────────────────────────────
    # FRAMING
    # ─────────────────────────────────────────────────────────────────────

    max_request_size: int = 64 * 1024
    """
    Largest request accepted, in bytes. Bigger requests are answered with
    413 instead of being truncated.
    """

    # ─────────────────────────────────────────────────────────────────────
    # TIMEOUTS
    # ─────────────────────────────────────────────────────────────────────

    read_timeout: float = 10.0
    """
    Deadline for receiving one complete request. It covers ALL recv()
    calls together, so a client trickling one byte per second cannot
    keep a worker forever.
    """

    write_timeout: float = 10.0
    """
    Socket timeout while sending the response.
    """

    handler_timeout: float = 30.0
    """
    Maximum lifetime of one handler, from the moment a worker picks the
    connection up until it is closed.
    """

    linger_timeout: float = 0.5
    """
    How long close() drains unread client data after the response.
    """

    drain_timeout: float = 30.0
    """
    How long a graceful shutdown waits for in-flight connections before
    cancelling them.
    """

    # ─────────────────────────────────────────────────────────────────────
    # WORKER POOL SETTINGS
    # ─────────────────────────────────────────────────────────────────────

    min_workers: int = 4
    """
    Worker threads created at startup.
    """

    max_workers: int = 100
    """
    Hard bound on concurrently running handlers.
    """

    queue_size: int = 100
    """
    Accepted connections allowed to wait for a free worker. When the
    queue is full new connections are answered with 503 and closed.
    """

    # ─────────────────────────────────────────────────────────────────────
    # WORK
    # ─────────────────────────────────────────────────────────────────────

    response_body: str = "Hey Client!"
    """
    Body of the canned 200 response.
    """

    work_delay: float = 0.0
    """
    Simulated slow work per request, in seconds. Bounded by
    handler_timeout and cancelled on shutdown. 0 disables it.
    """

    # ─────────────────────────────────────────────────────────────────────
    # LOGGING
    # ─────────────────────────────────────────────────────────────────────

    log_level: str = "INFO"
    """
    Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL).
    """

    log_format: str = "text"
    """
    Access log format: 'json' or 'text'.
    """

    access_log: bool = True
    """
    Emit one access log record per connection.
    """

    # ─────────────────────────────────────────────────────────────────────
    # SERVER IDENTITY
    # ─────────────────────────────────────────────────────────────────────

    server_name: str = "tcpacceptor/1.0"
    """
    Value of the Server header.
    """

    @classmethod
    def from_env(cls) -> "AcceptorConfig":
        """
        Create configuration from environment variables.

        =====================================================================
        ENVIRONMENT VARIABLES
        =====================================================================

        ACCEPTOR_HOST              Bind host (default: 127.0.0.1)
        ACCEPTOR_PORT              Bind port (default: 4221)
        ACCEPTOR_WORKERS           Max worker threads (default: 100)
        ACCEPTOR_QUEUE_SIZE        Pending connection queue (default: 100)
        ACCEPTOR_MAX_REQUEST_SIZE  Max request bytes (default: 65536)
        ACCEPTOR_READ_TIMEOUT      Request read deadline (default: 10)
        ACCEPTOR_HANDLER_TIMEOUT   Max handler lifetime (default: 30)
        ACCEPTOR_WORK_DELAY        Simulated work seconds (default: 0)
        ACCEPTOR_LOG_LEVEL         Logging level (default: INFO)
        ACCEPTOR_LOG_FORMAT        text or json (default: text)

        =====================================================================
        """
        defaults = cls()
        max_workers = int(os.getenv("ACCEPTOR_WORKERS", str(defaults.max_workers)))
        return cls(
            host=os.getenv("ACCEPTOR_HOST", defaults.host),
            port=int(os.getenv("ACCEPTOR_PORT", str(defaults.port))),
            min_workers=min(defaults.min_workers, max_workers),
            max_workers=max_workers,
            queue_size=int(os.getenv("ACCEPTOR_QUEUE_SIZE", str(defaults.queue_size))),
            max_request_size=int(
                os.getenv("ACCEPTOR_MAX_REQUEST_SIZE", str(defaults.max_request_size))
            ),
            read_timeout=float(os.getenv("ACCEPTOR_READ_TIMEOUT", str(defaults.read_timeout))),
            handler_timeout=float(
                os.getenv("ACCEPTOR_HANDLER_TIMEOUT", str(defaults.handler_timeout))
            ),
            work_delay=float(os.getenv("ACCEPTOR_WORK_DELAY", str(defaults.work_delay))),
            log_level=os.getenv("ACCEPTOR_LOG_LEVEL", defaults.log_level),
            log_format=os.getenv("ACCEPTOR_LOG_FORMAT", defaults.log_format),
        )

    def validate(self) -> None:
        """
        Validate configuration values.

        Called from the server constructor so a bad value fails at
        startup, not on the first connection.
        """
        if not 0 <= self.port < 65536:
            raise ValueError(f"Invalid port: {self.port}. Must be 0-65535.")

        if self.backlog < 1:
            raise ValueError("backlog must be >= 1")

        if self.min_workers < 1:
            raise ValueError("min_workers must be >= 1")

        if self.max_workers < self.min_workers:
            raise ValueError("max_workers must be >= min_workers")

        if self.queue_size < 1:
            raise ValueError("queue_size must be >= 1")

        if self.buffer_size < 1:
            raise ValueError("buffer_size must be >= 1")

        if self.max_request_size < self.buffer_size:
            raise ValueError("max_request_size must be >= buffer_size")

        for name in (
            "poll_interval", "read_timeout", "write_timeout",
            "handler_timeout", "linger_timeout", "drain_timeout",
        ):
            if getattr(self, name) <= 0:
                raise ValueError(f"{name} must be > 0")

        if self.work_delay < 0:
            raise ValueError("work_delay must be >= 0")

        if self.work_delay >= self.handler_timeout:
            raise ValueError("work_delay must be < handler_timeout")

        if self.log_format not in LOG_FORMATS:
            raise ValueError(f"log_format must be one of {', '.join(LOG_FORMATS)}")

    @property
    def concurrency_bound(self) -> int:
        """Most handlers that can ever run at the same time."""
        return self.max_workers

    def describe(self) -> str:
        """One-line summary for the startup log."""
        return (
            f"{self.host}:{self.port} workers={self.min_workers}-{self.max_workers} "
            f"queue={self.queue_size} max_request={self.max_request_size}B "
            f"read_timeout={self.read_timeout}s handler_timeout={self.handler_timeout}s"
        )
