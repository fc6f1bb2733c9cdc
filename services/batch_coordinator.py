# services/batch_coordinator.py

"""
Runs one operation per (student, variant) pair on a bounded worker pool.

Key Classes:
    - TaskStatus: Terminal state of a single task.
    - TaskResult: Outcome and timing of a single task.
    - BatchProgress: Live counters for the batch in flight.
    - BatchReport: Aggregated outcome of a finished (or timed-out) batch.
    - ScheduledTask: An entry in the priority task queue.
    - BatchCoordinator: Builds tasks, runs them, and reports. Also owns a heap-ordered priority
      queue of one-off tasks and any recurring tasks (such as periodic GPA recalculation).

A task fails when its callable raises or returns a failed `Response`; the failure is recorded
on the task, never re-raised. Results are keyed by task ID inside a per-batch run object, so
completion order cannot double count or drop a result, and a straggler from a timed-out batch
can only write into its own (closed) run.

On a global timeout the pool is shut down without waiting: queued tasks are cancelled, started
tasks may run to completion but their results are discarded, and results recorded before the
deadline are kept in the report. Sequential runs apply the same rule: a task that finishes at or
after the deadline is not counted, and the batch reports a timeout.
"""

from __future__ import annotations

import heapq
import itertools
import logging
import statistics
import threading
import time
from collections.abc import Mapping
from concurrent.futures import Future, ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Iterable

import core.formatters as formatters
from core.config import BatchConfig
from core.events import EventSink, emit
from core.response import ErrorCode, Response
from core.utils import IdGenerator
from models.grade_ledger import GradeLedger
from models.student import Student, StudentCategory
from models.student_directory import StudentDirectory

logger = logging.getLogger(__name__)

DEFAULT_VARIANT = "default"

Operation = Callable[[Student], Any]
ProgressCallback = Callable[["BatchProgress"], None]


class TaskStatus(str, Enum):
    SUCCEEDED = "SUCCEEDED"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"


@dataclass(frozen=True)
class TaskResult:
    task_id: str
    # None for priority tasks not bound to a student
    student_id: str | None
    variant: str
    status: TaskStatus
    started_at: float | None = None
    finished_at: float | None = None
    error: str | None = None
    error_code: ErrorCode | None = None

    @property
    def duration(self) -> float | None:
        if self.started_at is None or self.finished_at is None:
            return None

        return self.finished_at - self.started_at

    def to_dict(self) -> dict:
        return {
            "task_id": self.task_id,
            "student_id": self.student_id,
            "variant": self.variant,
            "status": self.status.value,
            "duration": self.duration,
            "error": self.error,
            "error_code": self.error_code.value if self.error_code else None,
        }


@dataclass(frozen=True)
class BatchProgress:
    submitted: int
    completed: int
    succeeded: int
    failed: int

    @property
    def percent_complete(self) -> float:
        return (self.completed * 100.0 / self.submitted) if self.submitted else 100.0


@dataclass
class BatchReport:
    batch_id: str
    submitted: int
    results: dict[str, TaskResult] = field(default_factory=dict)
    timed_out: bool = False
    elapsed: float = 0.0

    # === counts ===

    def _count(self, status: TaskStatus) -> int:
        return sum(1 for result in self.results.values() if result.status is status)

    @property
    def succeeded(self) -> int:
        return self._count(TaskStatus.SUCCEEDED)

    @property
    def failed(self) -> int:
        return self._count(TaskStatus.FAILED)

    @property
    def completed(self) -> int:
        return self.succeeded + self.failed

    @property
    def cancelled(self) -> int:
        # explicitly cancelled tasks plus any whose result never arrived
        return self.submitted - self.completed

    @property
    def success_rate(self) -> float:
        return (self.succeeded * 100.0 / self.submitted) if self.submitted else 0.0

    @property
    def failures(self) -> list[TaskResult]:
        return [r for r in self.results.values() if r.status is TaskStatus.FAILED]

    # === durations ===

    @property
    def durations(self) -> list[float]:
        return [r.duration for r in self.results.values() if r.duration is not None]

    @property
    def mean_duration(self) -> float | None:
        durations = self.durations
        return statistics.mean(durations) if durations else None

    @property
    def median_duration(self) -> float | None:
        durations = self.durations
        return statistics.median(durations) if durations else None

    @property
    def min_duration(self) -> float | None:
        durations = self.durations
        return min(durations) if durations else None

    @property
    def max_duration(self) -> float | None:
        durations = self.durations
        return max(durations) if durations else None

    @property
    def sequential_estimate(self) -> float | None:
        """
        Estimated wall time had every submitted task run back to back at the mean duration.
        """
        mean_duration = self.mean_duration
        return mean_duration * self.submitted if mean_duration is not None else None

    @property
    def speedup(self) -> float | None:
        estimate = self.sequential_estimate
        if estimate is None or self.elapsed <= 0:
            return None

        return estimate / self.elapsed

    # === output ===

    def summary(self) -> str:
        rows: list[tuple[str, object]] = [
            ("Batch", self.batch_id),
            ("Submitted", self.submitted),
            ("Completed", self.completed),
            ("Succeeded", self.succeeded),
            ("Failed", self.failed),
            ("Cancelled", self.cancelled),
            ("Timed Out", "yes" if self.timed_out else "no"),
            ("Success Rate", formatters.format_percentage(self.success_rate)),
            ("Elapsed", formatters.format_duration_ms(self.elapsed)),
            ("Mean Task", formatters.format_duration_ms(self.mean_duration)),
            ("Median Task", formatters.format_duration_ms(self.median_duration)),
            ("Fastest Task", formatters.format_duration_ms(self.min_duration)),
            ("Slowest Task", formatters.format_duration_ms(self.max_duration)),
            ("Sequential Est.", formatters.format_duration_ms(self.sequential_estimate)),
            ("Speedup", f"{self.speedup:.2f}x" if self.speedup is not None else "[N/A]"),
        ]

        return (
            f"{formatters.format_banner_text('BATCH REPORT')}\n"
            f"{formatters.format_key_value_lines(rows)}"
        )

    def to_dict(self) -> dict:
        return {
            "batch_id": self.batch_id,
            "submitted": self.submitted,
            "completed": self.completed,
            "succeeded": self.succeeded,
            "failed": self.failed,
            "cancelled": self.cancelled,
            "timed_out": self.timed_out,
            "success_rate": self.success_rate,
            "elapsed": self.elapsed,
            "mean_duration": self.mean_duration,
            "median_duration": self.median_duration,
            "min_duration": self.min_duration,
            "max_duration": self.max_duration,
            "sequential_estimate": self.sequential_estimate,
            "speedup": self.speedup,
            "results": [result.to_dict() for result in self.results.values()],
        }


@dataclass(frozen=True)
class _Task:
    task_id: str
    student: Student
    variant: str
    operation: Operation


@dataclass(frozen=True)
class ScheduledTask:
    """
    A queued priority task. Lower `priority` runs first (1 is highest); ties run in the order
    they were scheduled.
    """

    task_id: str
    description: str
    priority: int
    operation: Callable[[], Any]
    scheduled_at: float

    def to_dict(self) -> dict:
        return {
            "task_id": self.task_id,
            "description": self.description,
            "priority": self.priority,
            "scheduled_at": self.scheduled_at,
        }


class _RecurringTask:
    """
    Runs `operation` every `interval` seconds on a daemon thread until stopped.
    """

    def __init__(
        self, task_id: str, description: str, interval: float, operation: Callable[[], Any]
    ):
        self.task_id = task_id
        self.description = description
        self.interval = interval
        self.operation = operation
        self.runs = 0
        self.failures = 0
        self._stop_event = threading.Event()
        self._thread = threading.Thread(target=self._loop, name=f"recurring-{task_id}", daemon=True)

    @property
    def is_running(self) -> bool:
        return self._thread.is_alive()

    def start(self) -> None:
        self._thread.start()

    def stop(self, timeout: float | None = None) -> None:
        self._stop_event.set()

        if self._thread.is_alive() and self._thread is not threading.current_thread():
            self._thread.join(timeout)

    def _loop(self) -> None:
        while not self._stop_event.wait(self.interval):
            try:
                outcome = self.operation()

            except Exception:
                self.failures += 1
                logger.exception("Recurring task %s (%s) failed", self.task_id, self.description)

            else:
                if isinstance(outcome, Response) and not outcome.success:
                    self.failures += 1
                    logger.warning(
                        "Recurring task %s (%s) failed: %s", self.task_id, self.description, outcome
                    )

            self.runs += 1

    def to_dict(self) -> dict:
        return {
            "task_id": self.task_id,
            "description": self.description,
            "interval": self.interval,
            "runs": self.runs,
            "failures": self.failures,
            "running": self.is_running,
        }


class _BatchRun:
    """
    Mutable state of one batch. Workers write here; once closed, late results are dropped.
    """

    def __init__(self, batch_id: str, submitted: int):
        self.batch_id = batch_id
        self.submitted = submitted
        self.results: dict[str, TaskResult] = {}
        self.lock = threading.Lock()
        self.closed = False
        # set when a task finished at or after the batch deadline
        self.overran = False
        self.cancel_event = threading.Event()

    def record(self, result: TaskResult) -> BatchProgress | None:
        with self.lock:
            if self.closed:
                return None

            self.results[result.task_id] = result
            return self._progress()

    def close(self) -> dict[str, TaskResult]:
        with self.lock:
            self.closed = True
            return dict(self.results)

    def progress(self) -> BatchProgress:
        with self.lock:
            return self._progress()

    def _progress(self) -> BatchProgress:
        succeeded = failed = 0

        for result in self.results.values():
            if result.status is TaskStatus.SUCCEEDED:
                succeeded += 1
            elif result.status is TaskStatus.FAILED:
                failed += 1

        return BatchProgress(
            submitted=self.submitted,
            completed=succeeded + failed,
            succeeded=succeeded,
            failed=failed,
        )


class BatchCoordinator:
    """
    Usage:
        coordinator = BatchCoordinator(directory, ledger, BatchConfig(concurrency=3))
        response = coordinator.submit(directory.all_students(), operation, timeout=30)
        report = response.data["report"]
    """

    def __init__(
        self,
        directory: StudentDirectory,
        ledger: GradeLedger,
        config: BatchConfig | None = None,
        observer: EventSink | None = None,
        on_progress: ProgressCallback | None = None,
        clock: Callable[[], float] = time.perf_counter,
    ):
        self._directory = directory
        self._ledger = ledger
        self._config = config or BatchConfig()
        self._observer = observer
        self._on_progress = on_progress
        self._clock = clock

        self._batch_ids = IdGenerator("BATCH")
        self._batch_lock = threading.Lock()
        self._current: _BatchRun | None = None

        self._task_ids = IdGenerator("TASK")
        self._queue_lock = threading.Lock()
        # heap of (priority, sequence, task)
        self._queue: list[tuple[int, int, ScheduledTask]] = []
        self._sequence = itertools.count()
        self._priority_completed = 0
        self._priority_failed = 0

        self._recurring: dict[str, _RecurringTask] = {}

    # === properties ===

    @property
    def config(self) -> BatchConfig:
        return self._config

    # === data accessors ===

    def progress(self) -> BatchProgress:
        """
        Returns a snapshot of the batch in flight, or of the last batch run.
        """
        run = self._current

        if run is None:
            return BatchProgress(submitted=0, completed=0, succeeded=0, failed=0)

        return run.progress()

    def students_for_target(self, target: str) -> list[Student]:
        """
        Resolves a named target group ("all", "honors", "regular") to directory students.

        Raises:
            ValueError: If the target is not recognized.
        """
        normalized = target.strip().lower()

        if normalized == "all":
            return self._directory.all_students()

        if normalized == "honors":
            return self._directory.students_by_category(StudentCategory.HONORS)

        if normalized == "regular":
            return self._directory.students_by_category(StudentCategory.REGULAR)

        raise ValueError(f"Unknown batch target: {target!r}")

    # === batch execution ===

    def submit(
        self,
        students: Iterable[Student],
        operation: Operation | Mapping[str, Operation],
        concurrency: int | None = None,
        timeout: float | None = None,
    ) -> Response:
        """
        Runs `operation` once for every student (and every variant, when given a mapping).

        Args:
            students (Iterable[Student]): The students to process.
            operation (Callable | Mapping[str, Callable]): A single callable, or one callable per variant.
            concurrency (int | None): Worker count. Defaults to `BatchConfig.concurrency`.
            timeout (float | None): Global timeout in seconds. Defaults to `BatchConfig.timeout_seconds`.

        Returns:
            Response: A structured response with the following contract:
                - success (bool):
                    - True if every task reached a terminal state before the deadline.
                      Individual task failures do not fail the batch.
                    - False on timeout, cancellation, or invalid arguments.
                - error (ErrorCode | str | None):
                    - `ErrorCode.TIMEOUT` if the global timeout expired.
                    - `ErrorCode.CANCELLED` if `cancel()` was called during the batch.
                    - `ErrorCode.VALIDATION_FAILED` for a non-positive concurrency or an empty variant mapping.
                - status_code (int | None):
                    - 200 on success
                    - 408 on timeout
                    - 400 otherwise
                - data (dict | None): Payload with the following keys:
                    - "report" (BatchReport): Present on success, timeout, and cancellation.

        Notes:
            - Batches with `concurrency == 1`, or with at most `BatchConfig.simple_threshold`
              tasks, run sequentially in the calling thread.
            - Only one batch runs at a time per coordinator; concurrent calls queue up.
        """
        concurrency = self._config.concurrency if concurrency is None else concurrency
        timeout = self._config.timeout_seconds if timeout is None else timeout

        if concurrency < 1:
            return Response.fail(
                detail="Concurrency must be at least 1.",
                error=ErrorCode.VALIDATION_FAILED,
            )

        if isinstance(operation, Mapping) and not operation:
            return Response.fail(
                detail="At least one operation variant is required.",
                error=ErrorCode.VALIDATION_FAILED,
            )

        with self._batch_lock:
            batch_id = self._batch_ids()
            tasks = self._build_tasks(batch_id, students, operation)
            run = _BatchRun(batch_id, len(tasks))
            self._current = run

            logger.info(
                "Batch %s started: %d tasks, concurrency %d", batch_id, len(tasks), concurrency
            )
            started = self._clock()
            deadline = None if timeout is None else started + timeout

            if concurrency == 1 or len(tasks) <= self._config.simple_threshold:
                timed_out = self._execute_sequential(run, tasks, deadline)
            else:
                timed_out = self._execute_pool(run, tasks, concurrency, timeout, deadline)

            report = BatchReport(
                batch_id=batch_id,
                submitted=len(tasks),
                results=run.close(),
                timed_out=timed_out,
                elapsed=self._clock() - started,
            )

        return self._finish(run, report)

    def run_sequential(
        self,
        students: Iterable[Student],
        operation: Operation | Mapping[str, Operation],
        timeout: float | None = None,
    ) -> Response:
        """
        Same as `submit()`, but always in the calling thread.
        """
        return self.submit(students, operation, concurrency=1, timeout=timeout)

    def recalculate_gpas(
        self,
        students: Iterable[Student] | None = None,
        concurrency: int | None = None,
        timeout: float | None = None,
    ) -> Response:
        """
        Recomputes average and GPA for each student from the ledger's canonical grades.
        """
        if students is None:
            students = self._directory.all_students()

        return self.submit(
            students,
            {"recalculate-gpa": lambda student: self._ledger.recalculate_student(student.id)},
            concurrency=concurrency,
            timeout=timeout,
        )

    def cancel(self) -> None:
        """
        Requests cancellation of the batch in flight. Tasks that have not started yet are
        recorded as cancelled; running tasks finish normally.
        """
        run = self._current

        if run is not None:
            run.cancel_event.set()
            logger.info("Batch %s cancellation requested", run.batch_id)

    # === priority queue ===

    def schedule_priority_task(
        self, description: str, operation: Callable[[], Any], priority: int = 5
    ) -> Response:
        """
        Queues a one-off task. Tasks run one at a time through `execute_next_priority_task()`.

        Args:
            description (str): Human-readable label.
            operation (Callable[[], Any]): The work to run. A failed `Response` counts as a failure.
            priority (int): 1 is the highest priority. Ties run in scheduling order.

        Returns:
            Response: A structured response with the following contract:
                - success (bool): True if the task was queued.
                - error (ErrorCode | str | None):
                    - `ErrorCode.VALIDATION_FAILED` if `priority` is below 1.
                - status_code (int | None):
                    - 200 on success
                    - 400 on validation failure
                - data (dict | None): Payload with the following keys:
                    - "task_id" (str): The queued task's ID.
                    - "record" (ScheduledTask): The queued task.
        """
        if priority < 1:
            return Response.fail(
                detail=f"Priority must be at least 1, got {priority}.",
                error=ErrorCode.VALIDATION_FAILED,
            )

        task = ScheduledTask(
            task_id=self._task_ids(),
            description=description,
            priority=priority,
            operation=operation,
            scheduled_at=self._clock(),
        )

        with self._queue_lock:
            heapq.heappush(self._queue, (priority, next(self._sequence), task))

        logger.debug("Scheduled %s (%s) at priority %d", task.task_id, description, priority)

        return Response.succeed(
            detail=f"Task {task.task_id} scheduled.",
            data={"task_id": task.task_id, "record": task},
        )

    def execute_next_priority_task(self) -> Response:
        """
        Pops the highest-priority task and runs it in the calling thread.

        Returns:
            Response: A structured response with the following contract:
                - success (bool): True if a task ran and succeeded.
                - error (ErrorCode | str | None):
                    - `ErrorCode.NOT_FOUND` if the queue is empty.
                    - `ErrorCode.OPERATION_FAILED` if the task raised or returned a failed `Response`.
                - status_code (int | None):
                    - 200 on success
                    - 404 if nothing is queued
                    - 400 on task failure
                - data (dict | None): Payload with the following keys:
                    - "result" (TaskResult): Present whenever a task ran.
        """
        with self._queue_lock:
            if not self._queue:
                return Response.fail(detail="No pending tasks.", error=ErrorCode.NOT_FOUND)

            _, _, task = heapq.heappop(self._queue)

        result = self._invoke(task.task_id, None, "priority", task.operation)

        with self._queue_lock:
            if result.status is TaskStatus.SUCCEEDED:
                self._priority_completed += 1
            else:
                self._priority_failed += 1

        emit(
            self._observer,
            "priority_task_finished",
            task_id=task.task_id,
            description=task.description,
            status=result.status.value,
        )

        if result.status is not TaskStatus.SUCCEEDED:
            logger.warning(
                "Priority task %s (%s) failed: %s", task.task_id, task.description, result.error
            )
            return Response.fail(
                detail=f"Task {task.task_id} failed: {result.error}",
                error=ErrorCode.OPERATION_FAILED,
                data={"result": result},
            )

        return Response.succeed(
            detail=f"Task {task.task_id} completed.",
            data={"result": result},
        )

    def peek_next_task(self) -> ScheduledTask | None:
        with self._queue_lock:
            return self._queue[0][2] if self._queue else None

    def pending_tasks(self) -> list[ScheduledTask]:
        """
        Returns queued tasks in the order they would run.
        """
        with self._queue_lock:
            return [task for _, _, task in sorted(self._queue)]

    def cancel_task(self, task_id: str) -> Response:
        """
        Removes a queued task before it runs.

        Returns:
            Response: `ErrorCode.NOT_FOUND` if no queued task has that ID; otherwise success
            with the removed task under "record".
        """
        with self._queue_lock:
            for index, (_, _, task) in enumerate(self._queue):
                if task.task_id == task_id:
                    self._queue.pop(index)
                    heapq.heapify(self._queue)
                    break
            else:
                return Response.fail(
                    detail=f"No pending task with ID {task_id}.",
                    error=ErrorCode.NOT_FOUND,
                )

        logger.debug("Cancelled priority task %s", task_id)

        return Response.succeed(detail=f"Task {task_id} cancelled.", data={"record": task})

    def priority_queue_stats(self) -> dict[str, Any]:
        with self._queue_lock:
            head = self._queue[0][2] if self._queue else None

            return {
                "queue_size": len(self._queue),
                "is_empty": not self._queue,
                "next_task": head.description if head else None,
                "next_priority": head.priority if head else None,
                "completed": self._priority_completed,
                "failed": self._priority_failed,
            }

    # === recurring tasks ===

    def schedule_recurring(
        self, description: str, operation: Callable[[], Any], interval: float
    ) -> Response:
        """
        Runs `operation` every `interval` seconds on a background thread, first after one interval.
        Failures are logged and counted; they never stop the schedule.

        Returns:
            Response: `ErrorCode.VALIDATION_FAILED` for a non-positive interval; otherwise success
            with "task_id".
        """
        if interval <= 0:
            return Response.fail(
                detail=f"Interval must be positive, got {interval}.",
                error=ErrorCode.VALIDATION_FAILED,
            )

        recurring = _RecurringTask(self._task_ids(), description, interval, operation)
        self._recurring[recurring.task_id] = recurring
        recurring.start()

        logger.info(
            "Recurring task %s (%s) scheduled every %.2fs", recurring.task_id, description, interval
        )

        return Response.succeed(
            detail=f"Recurring task {recurring.task_id} scheduled.",
            data={"task_id": recurring.task_id},
        )

    def schedule_recalculation(self, interval: float) -> Response:
        """
        Schedules `recalculate_gpas()` for every directory student every `interval` seconds.
        """
        return self.schedule_recurring("GPA recalculation", self.recalculate_gpas, interval)

    def recurring_tasks(self) -> list[dict]:
        return [task.to_dict() for task in list(self._recurring.values())]

    def stop_recurring(self, task_id: str, timeout: float | None = None) -> Response:
        recurring = self._recurring.pop(task_id, None)

        if recurring is None:
            return Response.fail(
                detail=f"No recurring task with ID {task_id}.",
                error=ErrorCode.NOT_FOUND,
            )

        recurring.stop(timeout)
        logger.info("Recurring task %s stopped after %d runs", task_id, recurring.runs)

        return Response.succeed(detail=f"Recurring task {task_id} stopped.")

    def shutdown(self, timeout: float | None = None) -> None:
        """
        Stops every recurring task and cancels the batch in flight. Queued priority tasks are kept.
        """
        for task_id in list(self._recurring):
            self.stop_recurring(task_id, timeout)

        self.cancel()

    def __enter__(self) -> BatchCoordinator:
        return self

    def __exit__(self, *exc_info) -> None:
        self.shutdown()

    # === helper methods ===

    def _build_tasks(
        self,
        batch_id: str,
        students: Iterable[Student],
        operation: Operation | Mapping[str, Operation],
    ) -> list[_Task]:
        if isinstance(operation, Mapping):
            variants = list(operation.items())
        else:
            variants = [(DEFAULT_VARIANT, operation)]

        tasks = []

        for student in students:
            for variant, func in variants:
                task_id = f"{batch_id}-{len(tasks) + 1:04d}"
                tasks.append(_Task(task_id, student, variant, func))

        return tasks

    def _execute_sequential(
        self, run: _BatchRun, tasks: list[_Task], deadline: float | None
    ) -> bool:
        for task in tasks:
            if deadline is not None and self._clock() >= deadline:
                return True

            if not self._run_task(run, task, deadline):
                run.close()
                return True

        return False

    def _execute_pool(
        self,
        run: _BatchRun,
        tasks: list[_Task],
        concurrency: int,
        timeout: float | None,
        deadline: float | None,
    ) -> bool:
        executor = ThreadPoolExecutor(
            max_workers=concurrency, thread_name_prefix=f"batch-{run.batch_id}"
        )
        futures: list[Future] = [
            executor.submit(self._run_task, run, task, deadline) for task in tasks
        ]

        _, not_done = wait(futures, timeout=timeout)

        if not_done or run.overran:
            for future in not_done:
                future.cancel()

            run.close()
            executor.shutdown(wait=False, cancel_futures=True)

            return True

        executor.shutdown(wait=True)

        for future in futures:
            if future.exception() is not None:
                logger.error(
                    "Batch %s worker crashed: %s", run.batch_id, future.exception()
                )

        return False

    def _run_task(self, run: _BatchRun, task: _Task, deadline: float | None = None) -> bool:
        """
        Runs one batch task and records its result. Returns False, without recording, if the
        task finished at or after `deadline`.
        """
        if run.cancel_event.is_set():
            self._record(
                run,
                TaskResult(
                    task_id=task.task_id,
                    student_id=task.student.id,
                    variant=task.variant,
                    status=TaskStatus.CANCELLED,
                    error="Cancelled before start.",
                    error_code=ErrorCode.CANCELLED,
                ),
            )
            return True

        result = self._invoke(
            task.task_id, task.student.id, task.variant, lambda: task.operation(task.student)
        )

        if deadline is not None and result.finished_at >= deadline:
            run.overran = True
            logger.debug("Task %s finished past the batch deadline", task.task_id)
            return False

        self._record(run, result)
        return True

    def _invoke(
        self, task_id: str, student_id: str | None, variant: str, call: Callable[[], Any]
    ) -> TaskResult:
        started = self._clock()
        status = TaskStatus.SUCCEEDED
        error = None
        error_code = None

        try:
            outcome = call()

        except Exception as e:
            status = TaskStatus.FAILED
            error = str(e) or type(e).__name__
            error_code = ErrorCode.OPERATION_FAILED
            logger.debug("Task %s failed: %s", task_id, error)

        else:
            if isinstance(outcome, Response) and not outcome.success:
                status = TaskStatus.FAILED
                error = outcome.detail or str(outcome.error)
                error_code = ErrorCode.OPERATION_FAILED

        return TaskResult(
            task_id=task_id,
            student_id=student_id,
            variant=variant,
            status=status,
            started_at=started,
            finished_at=self._clock(),
            error=error,
            error_code=error_code,
        )

    def _record(self, run: _BatchRun, result: TaskResult) -> None:
        progress = run.record(result)

        if progress is None:
            logger.debug("Discarded late result for %s", result.task_id)
            return

        if self._on_progress is not None:
            try:
                self._on_progress(progress)

            except Exception:
                logger.exception("Progress callback failed for batch %s", run.batch_id)

    def _finish(self, run: _BatchRun, report: BatchReport) -> Response:
        emit(
            self._observer,
            "batch_finished",
            batch_id=report.batch_id,
            submitted=report.submitted,
            succeeded=report.succeeded,
            failed=report.failed,
            cancelled=report.cancelled,
            timed_out=report.timed_out,
        )

        if report.timed_out:
            logger.warning(
                "Batch %s timed out: %d of %d tasks completed",
                report.batch_id,
                report.completed,
                report.submitted,
            )
            return Response.fail(
                detail=f"Batch {report.batch_id} timed out after {report.completed} of {report.submitted} tasks.",
                error=ErrorCode.TIMEOUT,
                data={"report": report},
            )

        logger.info(
            "Batch %s finished: %d succeeded, %d failed, %d cancelled",
            report.batch_id,
            report.succeeded,
            report.failed,
            report.cancelled,
        )

        if run.cancel_event.is_set():
            return Response.fail(
                detail=f"Batch {report.batch_id} was cancelled.",
                error=ErrorCode.CANCELLED,
                data={"report": report},
            )

        return Response.succeed(
            detail=f"Batch {report.batch_id} finished: {report.succeeded} succeeded, {report.failed} failed.",
            data={"report": report},
        )
