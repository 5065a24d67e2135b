"""
=============================================================================
CORE ACCEPTOR COMPONENTS
=============================================================================

The networking machinery. None of it knows what a response says; it only
knows how to get connections in, bounded, timed, and closed.

    ┌─────────────────────────────────────────────────────────────────────┐
    │                         SOCKET SERVER                                │
    │  ─────────────────────────────────────────────────────────────────  │
    │  • Owns the listening socket (bind failure → BindError)             │
    │  • Accept loop; transient errors back off, others → AcceptError     │
    │  • Hands every connection off without doing any I/O on it           │
    └─────────────────────────────────────────────────────────────────────┘
                                    │
                                    ▼
    ┌─────────────────────────────────────────────────────────────────────┐
    │                          THREAD POOL                                 │
    │  ─────────────────────────────────────────────────────────────────  │
    │  • At most max_workers handlers at once                             │
    │  • At most queue_size connections waiting; submit() never blocks   │
    │  • Tracks current and peak concurrency                              │
    └─────────────────────────────────────────────────────────────────────┘
                                    │
                                    ▼
    ┌─────────────────────────────────────────────────────────────────────┐
    │                          CONNECTION                                  │
    │  ─────────────────────────────────────────────────────────────────  │
    │  • Frames one request under a read deadline and a size cap          │
    │  • Writes under a write deadline                                    │
    │  • close() is idempotent and runs on every exit path                │
    └─────────────────────────────────────────────────────────────────────┘

    DEADLINE: the handler's lifetime budget, shared by read, work, write.

=============================================================================
"""

from .socket_server import SocketServer
from .connection import Connection, ConnectionState
from .deadline import Deadline
from .thread_pool import ThreadPool, Task, ConcurrencyGauge

__all__ = [
    "SocketServer",       # Listening socket and accept loop
    "Connection",         # One accepted client socket
    "ConnectionState",    # Connection lifecycle states
    "Deadline",           # Handler lifetime budget
    "ThreadPool",         # Bounded workers and bounded queue
    "Task",               # One queued unit of work
    "ConcurrencyGauge",   # Current/peak running handlers
]
