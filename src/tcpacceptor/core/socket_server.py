"""
=============================================================================
THE ACCEPTOR
=============================================================================

This module owns the listening socket. It does one thing: accept
connections as fast as they arrive and hand each one off, so that no
client, however slow, can keep the next client from connecting.

SOCKET LIFECYCLE (Server Side):
────────────────────────────────

    1. socket()    Create the listening socket
    2. bind()      Reserve IP:PORT           ── fails → BindError (fatal)
    3. listen()    Kernel starts queueing connections (backlog)
    4. accept()    Take the next connection  ── loops until shutdown()
    5. close()     Release the port

                    ┌───────────────────────┐
                    │   Listening Socket    │ ◄── owned by the acceptor only
                    └───────────┬───────────┘
                                │ accept()
        ┌───────────────────────┼───────────────────────┐
        ▼                       ▼                       ▼
    Connection 1            Connection 2            Connection 3
        │                       │                       │
        └──────── connection_handler(conn) ─────────────┘
                  (queues it for a worker and returns at once)

=============================================================================
ACCEPT ERRORS
=============================================================================

    socket.timeout          Normal. accept() wakes up every poll_interval
                            so the loop can notice shutdown().

    EMFILE, ENFILE,         Transient. Out of descriptors or memory, or the
    ENOBUFS, ENOMEM,        client gave up before we accepted. Log, back off
    ECONNABORTED, ...       (5ms, doubling, max 1s), try again.

    anything else           Fatal. Stop the loop and raise AcceptError to
                            whoever called start().

    any OSError after       Expected: shutdown closed the socket under us.
    shutdown()

=============================================================================
SIGNAL HANDLING
=============================================================================

SIGINT (Ctrl+C) and SIGTERM (docker stop, systemd) trigger shutdown()
instead of killing the process mid-response. Python only allows signal
handlers on the main thread, so a server started from another thread
(tests, embedding) leaves signals alone.

=============================================================================
"""

import logging
import signal
import socket
import threading
from typing import Callable, Optional, Tuple

from ..config import AcceptorConfig
from ..errors import AcceptError, BindError, is_transient_accept_error
from .connection import Connection


logger = logging.getLogger(__name__)


MIN_ACCEPT_BACKOFF = 0.005
MAX_ACCEPT_BACKOFF = 1.0


class SocketServer:
    """
    Low-level TCP acceptor.

    ┌─────────────────────────────────────────────────────────────────────┐
    │    bind()            Create socket, bind, listen                     │
    │    start(handler)    bind() if needed, then accept loop (blocks)    │
    │    shutdown()        Ask the loop to stop (any thread, idempotent)  │
    │    _cleanup()        Restore signals, close listening socket        │
    └─────────────────────────────────────────────────────────────────────┘

    Usage:
        def dispatch(conn: Connection):
            pool.submit(handle, args=(conn,))

        server = SocketServer(config)
        server.start(dispatch)  # Blocks until shutdown
    """

    def __init__(self, config: AcceptorConfig):
        self.config = config

        self._socket: Optional[socket.socket] = None
        self._running = False

        # Set once the socket is listening; tests wait on it.
        self._ready_event = threading.Event()
        self._stop_requested = threading.Event()
        self._stopped_event = threading.Event()

        self._original_handlers: dict = {}
        self._backoff = 0.0

        self.accepted = 0
        self.transient_errors = 0

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def address(self) -> Tuple[str, int]:
        """
        The bound (host, port). With port 0 this is the port the OS
        actually picked, which is only known after bind().
        """
        if self._socket is not None:
            host, port = self._socket.getsockname()[:2]
            return (host, port)
        return (self.config.host, self.config.port)

    def _create_socket(self) -> socket.socket:
        sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)

        # Restarting must not fail with "Address already in use" while old
        # connections sit in TIME_WAIT.
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)

        # Accepted sockets inherit this: small responses go out immediately.
        sock.setsockopt(socket.IPPROTO_TCP, socket.TCP_NODELAY, 1)

        # accept() wakes up periodically to check self._running.
        sock.settimeout(self.config.poll_interval)

        return sock

    def bind(self):
        """
        Create, bind and listen.

        Raises:
            BindError: The port could not be bound. The caller decides
                       what that means; nothing here exits the process.
        """
        if self._socket is not None:
            return

        sock = self._create_socket()
        try:
            sock.bind((self.config.host, self.config.port))
            sock.listen(self.config.backlog)
        except OSError as e:
            sock.close()
            logger.error(f"Failed to bind to {self.config.host}:{self.config.port}: {e}")
            raise BindError(self.config.host, self.config.port, e) from e

        self._socket = sock
        host, port = self.address
        logger.info(f"Listening on {host}:{port}")

    def _setup_signals(self):
        """Route SIGINT/SIGTERM to shutdown(). Main thread only."""
        if threading.current_thread() is not threading.main_thread():
            return

        def shutdown_handler(signum, frame):
            signal_name = signal.Signals(signum).name
            logger.info(f"Received {signal_name}, initiating shutdown...")
            self.shutdown()

        self._original_handlers[signal.SIGTERM] = signal.signal(signal.SIGTERM, shutdown_handler)
        self._original_handlers[signal.SIGINT] = signal.signal(signal.SIGINT, shutdown_handler)

    def _restore_signals(self):
        for sig, handler in self._original_handlers.items():
            signal.signal(sig, handler)
        self._original_handlers.clear()

    def start(self, connection_handler: Callable[[Connection], None]):
        """
        Accept connections until shutdown() is called.

        Args:
            connection_handler: Called on the acceptor thread with every
                                new Connection. It must return quickly:
                                queue the connection or reject it, never
                                serve it here.

        Raises:
            BindError: The listening socket could not be bound.
            AcceptError: accept() failed unrecoverably.
        """
        self._stopped_event.clear()

        try:
            self.bind()

            # A shutdown() that arrived before start() still counts.
            self._running = not self._stop_requested.is_set()
            self._setup_signals()
            self._ready_event.set()

            self._accept_loop(connection_handler)
        finally:
            self._cleanup()

    def _accept_loop(self, connection_handler: Callable[[Connection], None]):
        while self._running:
            try:
                client_socket, client_address = self._socket.accept()
            except socket.timeout:
                continue
            except OSError as e:
                if not self._running:
                    break  # Socket closed by shutdown
                if is_transient_accept_error(e):
                    self._back_off(e)
                    continue
                logger.error(f"Accept error: {e}")
                raise AcceptError(e) from e

            self._backoff = 0.0
            self.accepted += 1

            conn = Connection(
                socket=client_socket,
                address=client_address,
                buffer_size=self.config.buffer_size,
                read_timeout=self.config.read_timeout,
                write_timeout=self.config.write_timeout,
                linger_timeout=self.config.linger_timeout,
                max_request_size=self.config.max_request_size,
            )
            logger.debug(f"[{conn.id}] Accepted connection from {client_address[0]}:{client_address[1]}")

            connection_handler(conn)

    def _back_off(self, error: OSError):
        """Sleep a little after a transient accept error, longer each time."""
        self.transient_errors += 1
        if self._backoff:
            self._backoff = min(self._backoff * 2, MAX_ACCEPT_BACKOFF)
        else:
            self._backoff = MIN_ACCEPT_BACKOFF

        logger.warning(f"Accept error: {error}; retrying in {self._backoff * 1000:.0f}ms")
        # Wakes early on shutdown.
        self._stop_requested.wait(self._backoff)

    def shutdown(self):
        """Stop accepting. Safe to call from any thread, more than once."""
        if self._running:
            logger.info("Stopping acceptor...")
        self._running = False
        self._stop_requested.set()

    def _cleanup(self):
        self._running = False
        self._restore_signals()

        if self._socket:
            try:
                self._socket.close()
            except OSError:
                pass
            self._socket = None

        self._ready_event.clear()
        self._stopped_event.set()
        logger.info("Acceptor stopped")

    def wait_until_ready(self, timeout: Optional[float] = None) -> bool:
        """Wait until the socket is listening. False on timeout."""
        return self._ready_event.wait(timeout)

    def wait_for_shutdown(self, timeout: Optional[float] = None) -> bool:
        """Wait until the accept loop has stopped. False on timeout."""
        return self._stopped_event.wait(timeout)
