"""
=============================================================================
BOUNDED WORKER POOL
=============================================================================

Spawning a thread per accepted connection has no upper bound: when the
number of clients shoots up, so does the number of threads, until the
machine runs out of memory or descriptors. A pool puts a ceiling on it.

    UNBOUNDED (thread per connection):
    ──────────────────────────────────

    for conn in accept_connections():
        threading.Thread(target=handle, args=(conn,)).start()

    1000 clients = 1000 threads, 100000 clients = crash.

    BOUNDED (this module):
    ──────────────────────

    pool = ThreadPool(min_workers=4, max_workers=100, queue_size=100)
    pool.start()

    for conn in accept_connections():
        if not pool.submit(handle, args=(conn,)):
            reject(conn)            # explicit, immediate, cheap

=============================================================================
ARCHITECTURE
=============================================================================

    ┌─────────────────────────────────────────────────────────────────────┐
    │                          ThreadPool                                  │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                      │
    │   submit() ──► ┌───────────────────────────────┐   full? → False    │
    │                │  queue.Queue(maxsize=N)       │                     │
    │                └──────────────┬────────────────┘                     │
    │                               │ get()                                │
    │                               ▼                                      │
    │   ┌──────────┐ ┌──────────┐ ┌──────────┐       ┌──────────┐         │
    │   │ Worker 0 │ │ Worker 1 │ │ Worker 2 │  ...  │ Worker M │         │
    │   └──────────┘ └──────────┘ └──────────┘       └──────────┘         │
    │        min_workers at start, then one per outstanding task,         │
    │        never more than max_workers                                  │
    │                                                                      │
    │   ConcurrencyGauge: current / peak number of tasks executing        │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

Because only workers execute tasks and there are at most max_workers of
them, ``gauge.peak <= max_workers`` holds no matter how many connections
arrive.

=============================================================================
"""

import logging
import queue
import threading
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, List, Optional


logger = logging.getLogger(__name__)


class WorkerState(Enum):
    IDLE = "idle"        # Waiting for task
    BUSY = "busy"        # Executing task
    STOPPED = "stopped"  # Thread exited


@dataclass
class Task:
    """
    A deferred function call.

    Attributes:
        func: The function to execute.
        args: Positional arguments for the function.
        kwargs: Keyword arguments for the function.
        timeout: Longest the task may wait in the queue before it is
                 considered expired and handed to ``on_expired`` instead.
        submitted_at: Monotonic submission time.
    """
    func: Callable[..., Any]
    args: tuple = ()
    kwargs: dict = field(default_factory=dict)
    timeout: Optional[float] = None
    submitted_at: float = field(default_factory=time.monotonic)

    @property
    def waited(self) -> float:
        return time.monotonic() - self.submitted_at


class ConcurrencyGauge:
    """Thread-safe count of tasks executing right now, and the maximum seen."""

    def __init__(self):
        self._lock = threading.Lock()
        self._current = 0
        self._peak = 0

    def enter(self):
        with self._lock:
            self._current += 1
            if self._current > self._peak:
                self._peak = self._current

    def exit(self):
        with self._lock:
            self._current -= 1

    @property
    def current(self) -> int:
        return self._current

    @property
    def peak(self) -> int:
        return self._peak


class Worker(threading.Thread):
    """
    Worker thread that processes tasks from the queue.

    ┌─────────────────────────────────────────────────────────────────────┐
    │   1. Wait for task from queue (blocking, idle_timeout)              │
    │   2. None is the poison pill → exit                                 │
    │   3. Expired while queued → on_expired(task), skip                  │
    │   4. Execute inside the gauge; exceptions are logged, never fatal   │
    │   5. task_done(), back to 1                                         │
    └─────────────────────────────────────────────────────────────────────┘
    """

    def __init__(
        self,
        task_queue: queue.Queue,
        worker_id: int,
        gauge: ConcurrencyGauge,
        idle_timeout: float = 1.0,
        on_expired: Optional[Callable[[Task], None]] = None,
    ):
        super().__init__(name=f"Worker-{worker_id}", daemon=True)

        self.task_queue = task_queue
        self.worker_id = worker_id
        self.gauge = gauge
        self.idle_timeout = idle_timeout
        self.on_expired = on_expired

        self.state = WorkerState.IDLE
        self._shutdown = threading.Event()

        self.tasks_completed = 0
        self.tasks_failed = 0
        self.tasks_expired = 0

    def run(self):
        logger.debug(f"Worker {self.worker_id} started")

        while not self._shutdown.is_set():
            try:
                task = self.task_queue.get(timeout=self.idle_timeout)
            except queue.Empty:
                continue

            try:
                if task is None:
                    break
                self._execute_task(task)
            finally:
                self.task_queue.task_done()

        self.state = WorkerState.STOPPED
        logger.debug(f"Worker {self.worker_id} stopped")

    def _execute_task(self, task: Task):
        if task.timeout is not None and task.waited > task.timeout:
            logger.warning(
                f"Task expired in queue (waited {task.waited:.2f}s, "
                f"timeout was {task.timeout}s)"
            )
            self.tasks_expired += 1
            self._expire(task)
            return

        self.state = WorkerState.BUSY
        self.gauge.enter()
        start_time = time.monotonic()

        try:
            task.func(*task.args, **task.kwargs)
            self.tasks_completed += 1
            logger.debug(
                f"Worker {self.worker_id} completed task in "
                f"{time.monotonic() - start_time:.3f}s"
            )
        except Exception as e:
            # One bad task must not take the worker down with it.
            logger.exception(
                f"Worker {self.worker_id} task failed after "
                f"{time.monotonic() - start_time:.3f}s: {e}"
            )
            self.tasks_failed += 1
        finally:
            self.gauge.exit()
            self.state = WorkerState.IDLE

    def _expire(self, task: Task):
        if self.on_expired is None:
            return
        try:
            self.on_expired(task)
        except Exception as e:
            logger.exception(f"Worker {self.worker_id} expiry callback failed: {e}")

    def shutdown(self):
        """Signal the worker to stop."""
        self._shutdown.set()


class ThreadPool:
    """
    Bounded pool of worker threads fed by a bounded queue.

    ┌─────────────────────────────────────────────────────────────────────┐
    │   pool = ThreadPool(min_workers=4, max_workers=100, queue_size=100) │
    │   pool.start()                                                       │
    │                                                                      │
    │   accepted = pool.submit(handle, args=(conn,))   # False when full  │
    │                                                                      │
    │   pool.stats        # workers / tasks / concurrency                  │
    │   pool.shutdown(wait=True, timeout=30, on_discard=refuse)            │
    └─────────────────────────────────────────────────────────────────────┘
    """

    def __init__(
        self,
        min_workers: int = 4,
        max_workers: int = 100,
        queue_size: int = 100,
        idle_timeout: float = 1.0,
        on_expired: Optional[Callable[[Task], None]] = None,
        handoff_timeout: float = 0.1,
    ):
        """
        Args:
            min_workers: Threads created by start().
            max_workers: Hard ceiling on threads, and so on concurrency.
            queue_size: Tasks allowed to wait for a worker. Must be >= 1;
                        queue.Queue treats 0 as "unbounded".
            idle_timeout: How often an idle worker checks for shutdown.
            on_expired: Called with a task that outlived its queue timeout.
            handoff_timeout: How long a non-blocking submit waits for a
                             full queue when some worker is free to empty it.
        """
        if queue_size < 1:
            raise ValueError("queue_size must be >= 1")

        self.min_workers = min_workers
        self.max_workers = max_workers
        self.max_queue_size = queue_size
        self.idle_timeout = idle_timeout
        self.on_expired = on_expired
        self.handoff_timeout = handoff_timeout

        self._task_queue: "queue.Queue[Optional[Task]]" = queue.Queue(maxsize=queue_size)
        self.gauge = ConcurrencyGauge()

        self._workers: List[Worker] = []
        self._lock = threading.Lock()  # Protects _workers
        self._started = False
        self._shutdown = False
        self._next_worker_id = 0
        self._rejected = 0

    def start(self):
        """Create the minimum number of workers."""
        if self._started:
            return

        logger.info(
            f"Starting worker pool: {self.min_workers}-{self.max_workers} workers, "
            f"queue of {self.max_queue_size}"
        )
        self._shutdown = False
        with self._lock:
            for _ in range(self.min_workers):
                self._add_worker()

        self._started = True

    def _add_worker(self) -> Worker:
        """Start one more worker. Caller holds self._lock."""
        if len(self._workers) >= self.max_workers:
            raise RuntimeError("Maximum workers reached")

        worker = Worker(
            task_queue=self._task_queue,
            worker_id=self._next_worker_id,
            gauge=self.gauge,
            idle_timeout=self.idle_timeout,
            on_expired=self.on_expired,
        )
        self._next_worker_id += 1
        self._workers.append(worker)
        worker.start()
        return worker

    def submit(
        self,
        func: Callable[..., Any],
        args: tuple = (),
        kwargs: Optional[dict] = None,
        timeout: Optional[float] = None,
        block: bool = False,
        queue_timeout: Optional[float] = None,
    ) -> bool:
        """
        Queue a task.

        Non-blocking by default: the caller is an accept loop that must
        not stall on a saturated pool, and a full queue with every worker
        busy is exactly the signal it needs to apply its rejection policy.
        The only wait is the short handoff to workers that are free but
        have not dequeued yet.

        Args:
            func: The function to execute.
            args / kwargs: Its arguments.
            timeout: Max seconds the task may wait in the queue.
            block: Wait for queue space instead of failing at once.
            queue_timeout: How long to wait when block=True.

        Returns:
            True if queued, False if the queue was full and no
            worker was free to take from it.

        Raises:
            RuntimeError: Pool not started, or shutting down.
        """
        if not self._started:
            raise RuntimeError("Thread pool not started")

        if self._shutdown:
            raise RuntimeError("Thread pool is shutting down")

        task = Task(func=func, args=args, kwargs=kwargs or {}, timeout=timeout)

        # One worker per outstanding task, the new one included.
        self._ensure_workers(self._task_queue.unfinished_tasks + 1)

        try:
            self._task_queue.put(task, block=block, timeout=queue_timeout)
        except queue.Full:
            if block or not self._has_free_worker():
                self._rejected += 1
                return False
            # Workers started a moment ago have not dequeued yet.
            try:
                self._task_queue.put(task, timeout=self.handoff_timeout)
            except queue.Full:
                self._rejected += 1
                return False

        return True

    def _ensure_workers(self, demand: int):
        """Grow the pool toward ``demand`` workers, capped at max_workers."""
        with self._lock:
            if self._shutdown:
                return
            wanted = min(demand, self.max_workers)
            if len(self._workers) < wanted:
                logger.debug(f"Scaling up: {len(self._workers)} -> {wanted} workers")
            while len(self._workers) < wanted:
                self._add_worker()

    def _has_free_worker(self) -> bool:
        """True if some worker is not executing a task."""
        with self._lock:
            return len(self._workers) > self.gauge.current

    def shutdown(
        self,
        wait: bool = True,
        timeout: Optional[float] = None,
        on_discard: Optional[Callable[[Task], None]] = None,
    ) -> bool:
        """
        Stop the pool.

        ┌─────────────────────────────────────────────────────────────────┐
        │   1. Refuse new tasks                                            │
        │   2. wait=True: let queued and running tasks finish (bounded)    │
        │   3. Hand tasks still queued to on_discard                       │
        │   4. Poison pills, join workers                                  │
        └─────────────────────────────────────────────────────────────────┘

        Returns:
            True if all work finished before the timeout.
        """
        if not self._started:
            return True

        logger.info("Shutting down worker pool...")
        self._shutdown = True
        finished = True

        if wait:
            finished = self.wait_idle(timeout)
            if not finished:
                logger.warning("Worker pool drain timed out")

        for task in self._take_queued():
            if on_discard is not None:
                try:
                    on_discard(task)
                except Exception as e:
                    logger.exception(f"Discard callback failed: {e}")

        for worker in self._workers:
            worker.shutdown()
        for _ in self._workers:
            try:
                self._task_queue.put(None, block=False)
            except queue.Full:
                break  # Workers also exit on their shutdown flag

        for worker in self._workers:
            worker.join(timeout=2.0)

        with self._lock:
            self._workers.clear()
        self._started = False

        logger.info("Worker pool shutdown complete")
        return finished

    def wait_idle(self, timeout: Optional[float] = None) -> bool:
        """
        Wait until no task is queued or running.

        Returns:
            False if the timeout expired first.
        """
        give_up_at = None if timeout is None else time.monotonic() + timeout
        while self._task_queue.unfinished_tasks > 0:
            if give_up_at is not None and time.monotonic() >= give_up_at:
                return False
            time.sleep(0.05)
        return True

    def _take_queued(self) -> List[Task]:
        """Remove and return every task still waiting in the queue."""
        taken = []
        while True:
            try:
                task = self._task_queue.get_nowait()
            except queue.Empty:
                return taken
            self._task_queue.task_done()
            if task is not None:
                taken.append(task)

    # =========================================================================
    # MONITORING
    # =========================================================================

    @property
    def busy_workers(self) -> int:
        return sum(1 for w in self._workers if w.state == WorkerState.BUSY)

    @property
    def idle_workers(self) -> int:
        return sum(1 for w in self._workers if w.state == WorkerState.IDLE)

    @property
    def queue_size(self) -> int:
        """Tasks currently waiting."""
        return self._task_queue.qsize()

    @property
    def stats(self) -> dict:
        """Worker, task and concurrency counters for logs and tests."""
        return {
            "workers": {
                "total": len(self._workers),
                "busy": self.busy_workers,
                "idle": self.idle_workers,
            },
            "tasks": {
                "queued": self._task_queue.qsize(),
                "completed": sum(w.tasks_completed for w in self._workers),
                "failed": sum(w.tasks_failed for w in self._workers),
                "expired": sum(w.tasks_expired for w in self._workers),
                "rejected": self._rejected,
            },
            "concurrency": {
                "current": self.gauge.current,
                "peak": self.gauge.peak,
                "limit": self.max_workers,
            },
        }
