"""
=============================================================================
TCPACCEPTOR - A Hardened TCP Connection Acceptor
=============================================================================

A small HTTP/1.1 responder built on raw sockets whose real subject is the
accept loop: how to take connections off a listening socket without ever
letting clients exhaust threads, memory or descriptors.

=============================================================================
PROJECT OVERVIEW
=============================================================================

    ┌─────────────────────────────────────────────────────────────────────┐
    │                      WHAT IS BOUNDED, AND BY WHAT                   │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                      │
    │   concurrent handlers     max_workers                               │
    │   waiting connections     queue_size  (beyond it: 503 + close)      │
    │   request size            max_request_size  (beyond it: 413)        │
    │   time to send a request  read_timeout  (then: 408)                 │
    │   time to take a response write_timeout                             │
    │   handler lifetime        handler_timeout  (then: 503)              │
    │   shutdown                drain_timeout                             │
    │                                                                      │
    │   Every accepted socket is closed exactly once, on every path.     │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

=============================================================================
PACKAGE STRUCTURE
=============================================================================

    tcpacceptor/
    ├── __init__.py          # This file - package exports
    ├── __main__.py          # CLI entry point (python -m tcpacceptor)
    ├── server.py            # AcceptorServer: lifecycle and dispatch
    ├── config.py            # AcceptorConfig dataclass
    ├── errors.py            # Fatal and per-connection error types
    ├── access_log.py        # One log record per connection
    ├── core/
    │   ├── socket_server.py # Listening socket and accept loop
    │   ├── connection.py    # Framing, deadlines, close
    │   ├── thread_pool.py   # Bounded workers and queue
    │   └── deadline.py      # Handler lifetime budget
    ├── http/
    │   ├── request.py       # RawRequest and framing helpers
    │   ├── response.py      # HTTPResponse and canned responses
    │   └── status_codes.py  # Status codes the acceptor emits
    └── handlers/
        └── canned.py        # "Hey Client!" with optional slow work

=============================================================================
QUICK START
=============================================================================

    from tcpacceptor import AcceptorServer, AcceptorConfig

    AcceptorServer(AcceptorConfig(port=4221, work_delay=8)).serve_forever()

    # or simply
    from tcpacceptor import serve
    serve(4221)

=============================================================================
"""

__version__ = "1.0.0"

from .config import AcceptorConfig
from .errors import AcceptorError, AcceptError, BindError
from .server import AcceptorServer, ServerState, serve

__all__ = [
    "AcceptorServer",
    "AcceptorConfig",
    "ServerState",
    "serve",
    "AcceptorError",
    "AcceptError",
    "BindError",
    "__version__",
]
