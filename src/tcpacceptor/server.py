"""
=============================================================================
ACCEPTOR SERVER
=============================================================================

The orchestrator: ties the acceptor, the worker pool and the handler into
a service with a lifecycle.

=============================================================================
ARCHITECTURE
=============================================================================

    ┌─────────────────────────────────────────────────────────────────────┐
    │                                                                      │
    │   SocketServer (acceptor thread)                                    │
    │       │ accept()                                                     │
    │       ▼                                                              │
    │   _dispatch(conn) ──► ThreadPool.submit() ──┐                       │
    │       │                                      │ queued                │
    │       │ queue full                           ▼                       │
    │       ▼                               _process_connection(conn)     │
    │   503 "Server busy", close            (worker thread)               │
    │                                          read_request()              │
    │                                          handler(request, deadline)  │
    │                                          send_response()             │
    │                                          close()  ← on every path    │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

=============================================================================
LIFECYCLE
=============================================================================

    NEW ──► LISTENING ──► DRAINING ──► STOPPED
     │                                    ▲
     └──────── BindError ─────────────────┘

    DRAINING: no new connections are accepted; connections already
    accepted (running or queued) get up to drain_timeout to finish. After
    that every handler deadline is cancelled, so sleeping handlers wake
    up, answer 503 and close.

=============================================================================
FAILURE ISOLATION
=============================================================================

    BindError / AcceptError   raised out of serve_forever() (fatal)
    transient accept errors   handled inside SocketServer (loop level)
    everything else           caught in _process_connection: that one
                              connection is answered (if possible) and
                              closed, the service keeps running

=============================================================================
"""

import logging
import threading
import time
from collections import Counter
from enum import Enum
from typing import Optional, Tuple

from .access_log import AccessLogger, ConnectionLog
from .config import AcceptorConfig
from .core import Connection, ConnectionState, Deadline, SocketServer, Task, ThreadPool
from .errors import (
    AcceptorError,
    BindError,
    ConnectionFailure,
    HandlerTimeout,
    MalformedRequest,
    PeerClosed,
    RequestTimeout,
    RequestTooLarge,
)
from .handlers import CannedResponseHandler, Handler
from .http import HTTPStatus, RawRequest, service_unavailable


logger = logging.getLogger(__name__)


class ServerState(Enum):
    NEW = "new"
    LISTENING = "listening"
    DRAINING = "draining"
    STOPPED = "stopped"


# Most specific first: the first isinstance match wins.
_FAILURE_OUTCOMES = (
    (RequestTooLarge, "too_large"),
    (RequestTimeout, "timeout"),
    (HandlerTimeout, "timeout"),
    (MalformedRequest, "malformed"),
    (PeerClosed, "peer_closed"),
)


def failure_outcome(error: ConnectionFailure) -> str:
    """Access-log outcome name for a connection-level failure."""
    for error_type, outcome in _FAILURE_OUTCOMES:
        if isinstance(error, error_type):
            return outcome
    return "error"


class AcceptorServer:
    """
    Bounded, timeout-aware connection acceptor.

    =========================================================================
    USAGE
    =========================================================================

        # Blocking, until Ctrl+C / SIGTERM
        AcceptorServer(AcceptorConfig(port=4221)).serve_forever()

        # In the background (tests, embedding)
        server = AcceptorServer(AcceptorConfig(port=0))
        server.start_background()
        host, port = server.address
        ...
        server.shutdown()
        server.wait_for_stop(timeout=10)

        # Custom work
        def handler(request, deadline):
            deadline.sleep(0.1)
            return text_response(f"{request.size} bytes")

        AcceptorServer(config, handler=handler)

    =========================================================================
    """

    def __init__(self, config: Optional[AcceptorConfig] = None, handler: Optional[Handler] = None):
        self.config = config or AcceptorConfig()
        self.config.validate()

        self.handler: Handler = handler or CannedResponseHandler(
            body=self.config.response_body,
            delay=self.config.work_delay,
        )

        self._socket_server = SocketServer(self.config)
        self._thread_pool = ThreadPool(
            min_workers=self.config.min_workers,
            max_workers=self.config.max_workers,
            queue_size=self.config.queue_size,
            on_expired=self._expire_task,
        )
        self._access_log = AccessLogger(
            log_format=self.config.log_format,
            enabled=self.config.access_log,
        )

        # Shared by every handler Deadline; set when draining runs out of time.
        self._cancel_event = threading.Event()

        self._state = ServerState.NEW
        self._started = False
        self._state_lock = threading.Lock()
        self._ready_event = threading.Event()
        self._stopped_event = threading.Event()

        # Service start time, for "client connected at" and uptime.
        self.started_at: Optional[float] = None

        self._counters: Counter = Counter()
        self._counter_lock = threading.Lock()

        self._thread: Optional[threading.Thread] = None
        self.error: Optional[AcceptorError] = None

    # =========================================================================
    # STATE
    # =========================================================================

    @property
    def state(self) -> ServerState:
        return self._state

    def _set_state(self, state: ServerState):
        with self._state_lock:
            logger.debug(f"Server state {self._state.value} -> {state.value}")
            self._state = state

    @property
    def address(self) -> Tuple[str, int]:
        """Bound (host, port); the real port even when configured with 0."""
        return self._socket_server.address

    @property
    def uptime(self) -> float:
        if self.started_at is None:
            return 0.0
        return time.monotonic() - self.started_at

    @property
    def peak_concurrency(self) -> int:
        """Most handlers that were ever running at the same time."""
        return self._thread_pool.gauge.peak

    @property
    def stats(self) -> dict:
        with self._counter_lock:
            connections = dict(self._counters)
        return {
            "state": self._state.value,
            "uptime": round(self.uptime, 3),
            "connections": connections,
            "acceptor": {
                "accepted": self._socket_server.accepted,
                "transient_errors": self._socket_server.transient_errors,
            },
            "pool": self._thread_pool.stats,
        }

    def _count(self, name: str):
        with self._counter_lock:
            self._counters[name] += 1

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    def serve_forever(self):
        """
        Bind, accept until shutdown, drain, stop. Blocks.

        Raises:
            BindError: The port could not be bound.
            AcceptError: accept() failed unrecoverably.
            RuntimeError: The server was already started once.
        """
        with self._state_lock:
            if self._started:
                raise RuntimeError("Server can only be started once")
            self._started = True
            if self._state == ServerState.STOPPED:
                return  # shutdown() before start

        self._setup_logging()

        try:
            self._socket_server.bind()
        except BindError as e:
            self.error = e
            self._set_state(ServerState.STOPPED)
            self._ready_event.set()
            self._stopped_event.set()
            raise

        self.started_at = time.monotonic()
        self._thread_pool.start()
        self._set_state(ServerState.LISTENING)
        self._ready_event.set()

        logger.info(f"Starting acceptor: {self.config.describe()}")
        host, port = self.address
        logger.info(f"Serving on {host}:{port} (Ctrl+C to stop)")

        try:
            self._socket_server.start(self._dispatch)
        except KeyboardInterrupt:
            logger.info("Received keyboard interrupt")
        except AcceptorError as e:
            self.error = e
            raise
        finally:
            self._drain()

    def start_background(self, timeout: float = 5.0) -> threading.Thread:
        """
        Run serve_forever() on a daemon thread and wait until listening.

        Raises:
            BindError: Binding failed (re-raised from the server thread).
            RuntimeError: The server did not come up within ``timeout``.
        """
        self._thread = threading.Thread(
            target=self._serve_in_thread,
            name="acceptor",
            daemon=True,
        )
        self._thread.start()

        if not self.wait_until_ready(timeout):
            raise RuntimeError("Server failed to start")
        if self.error is not None:
            raise self.error
        return self._thread

    def _serve_in_thread(self):
        try:
            self.serve_forever()
        except AcceptorError as e:
            logger.error(f"Acceptor stopped: {e}")

    def wait_until_ready(self, timeout: Optional[float] = None) -> bool:
        """Wait until listening (or failed to). False on timeout."""
        return self._ready_event.wait(timeout)

    def shutdown(self):
        """
        Begin a graceful shutdown. Returns immediately; use wait_for_stop()
        to block until the server has drained.
        """
        with self._state_lock:
            if not self._started:
                self._state = ServerState.STOPPED
                self._ready_event.set()
                self._stopped_event.set()
                return
        self._socket_server.shutdown()

    def wait_for_stop(self, timeout: Optional[float] = None) -> bool:
        """Wait until STOPPED. False on timeout."""
        return self._stopped_event.wait(timeout)

    def _drain(self):
        """
        DRAINING → STOPPED.

        1. Let running and queued connections finish (drain_timeout)
        2. Out of time: cancel every handler deadline
        3. Stop the pool; anything still queued is answered with 503
        """
        self._set_state(ServerState.DRAINING)
        logger.info("Draining in-flight connections...")

        if not self._thread_pool.wait_idle(self.config.drain_timeout):
            logger.warning(
                f"Connections still active after {self.config.drain_timeout}s, cancelling"
            )
            self._cancel_event.set()

        self._thread_pool.shutdown(
            wait=True,
            timeout=self.config.write_timeout + self.config.linger_timeout,
            on_discard=self._discard_task,
        )

        self._set_state(ServerState.STOPPED)
        self._stopped_event.set()
        logger.info(f"Server stopped after {self.uptime:.1f}s: {self.stats['connections']}")

    def _setup_logging(self):
        """Configure logging based on config."""
        level = getattr(logging, self.config.log_level.upper(), logging.INFO)

        logging.basicConfig(
            level=level,
            format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )
        logging.getLogger("tcpacceptor").setLevel(level)

    # =========================================================================
    # ADMISSION CONTROL (acceptor thread)
    # =========================================================================

    def _dispatch(self, conn: Connection):
        """
        Hand a new connection to the pool, or refuse it. Never blocks on
        the client: the acceptor must get straight back to accept().
        """
        self._count("accepted")
        logger.debug(f"[{conn.id}] Client connected at {self.uptime:.3f}s")

        try:
            submitted = self._thread_pool.submit(
                self._process_connection,
                args=(conn,),
                timeout=self.config.handler_timeout,
            )
        except RuntimeError:
            submitted = False  # Pool already stopping

        if not submitted:
            logger.warning(f"[{conn.id}] Worker pool saturated, rejecting connection")
            self._reject(conn, "Server busy")

    def _reject(self, conn: Connection, message: str):
        conn.reject(service_unavailable(message).to_bytes(self.config.server_name))
        self._record(conn, "rejected", HTTPStatus.SERVICE_UNAVAILABLE)

    def _expire_task(self, task: Task):
        """A connection waited in the queue longer than handler_timeout."""
        conn = task.args[0]
        self._reject(conn, "Server busy")

    def _discard_task(self, task: Task):
        """A connection was still queued when the pool stopped."""
        conn = task.args[0]
        self._reject(conn, "Server shutting down")

    # =========================================================================
    # CONNECTION HANDLING (worker thread)
    # =========================================================================

    def _process_connection(self, conn: Connection):
        """
        Serve one connection: read → handle → write → close.

        Every failure stays inside this connection. The ``with`` block
        closes the socket on every path, and a write is only attempted
        while no earlier write has failed.
        """
        deadline = Deadline(self.config.handler_timeout, self._cancel_event)
        request: Optional[RawRequest] = None
        outcome = "ok"
        status: Optional[HTTPStatus] = None

        with conn:
            try:
                request = conn.read_request(deadline)

                conn.state = ConnectionState.PROCESSING
                response = self.handler(request, deadline)
                status = response.status

                data = response.to_bytes(self.config.server_name)
                if not conn.send_response(data, deadline):
                    outcome = "write_failed"

            except ConnectionFailure as e:
                outcome = failure_outcome(e)
                status = e.status
                if isinstance(e, PeerClosed):
                    logger.debug(f"[{conn.id}] {e}")
                else:
                    logger.info(f"[{conn.id}] {e}")
                if status is not None:
                    conn.send_error(status, str(e), self.config.server_name)

            except Exception as e:
                logger.exception(f"[{conn.id}] Handler error: {e}")
                outcome = "error"
                status = HTTPStatus.INTERNAL_SERVER_ERROR
                conn.send_error(status, status.phrase, self.config.server_name)

        self._record(conn, outcome, status, request)

    def _record(
        self,
        conn: Connection,
        outcome: str,
        status: Optional[HTTPStatus],
        request: Optional[RawRequest] = None,
    ):
        self._access_log.log(ConnectionLog(
            connection_id=conn.id,
            client_ip=conn.address[0],
            client_port=conn.address[1],
            outcome=outcome,
            status_code=int(status) if status is not None else None,
            bytes_in=conn.bytes_received,
            bytes_out=conn.bytes_sent,
            duration_ms=conn.age * 1000,
            uptime_s=self.uptime,
            request_line=request.request_line if request is not None else "",
        ))
        self._count(outcome)


def serve(port: int = 4221, **overrides) -> None:
    """
    Serve on ``port`` until interrupted.

    Args:
        port: TCP port to listen on.
        **overrides: Any other AcceptorConfig field.

    Raises:
        BindError: The port could not be bound.
        AcceptError: accept() failed unrecoverably.
    """
    config = AcceptorConfig(port=port, **overrides)
    AcceptorServer(config).serve_forever()
