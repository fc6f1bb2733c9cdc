# tests/test_batch_coordinator.py

import threading
import time

import pytest

from core.config import BatchConfig
from core.response import ErrorCode, Response
from services.batch_coordinator import BatchCoordinator, BatchReport, TaskResult, TaskStatus


@pytest.fixture
def students(sample_directory, make_student):
    for i in range(1, 11):
        sample_directory.add_student(make_student(f"STU{i:03d}"))

    return sample_directory.all_students()


@pytest.fixture
def coordinator(sample_ledger, recorder):
    return BatchCoordinator(
        sample_ledger.directory, sample_ledger, BatchConfig(concurrency=3), observer=recorder
    )


def fail_fifth(student):
    if student.id == "STU005":
        raise RuntimeError("report generation failed")

    return student.id


# === submit ===


def test_submit_counts_failures(coordinator, students, recorder):
    response = coordinator.submit(students, fail_fifth, concurrency=3, timeout=10)
    report = response.data["report"]

    assert response.success
    assert report.submitted == 10
    assert report.completed == 10
    assert report.succeeded == 9
    assert report.failed == 1
    assert report.cancelled == 0
    assert report.success_rate == 90.0
    assert not report.timed_out

    failure = report.failures[0]
    assert failure.student_id == "STU005"
    assert failure.error == "report generation failed"
    assert failure.error_code is ErrorCode.OPERATION_FAILED
    assert failure.to_dict()["error_code"] == "OPERATION_FAILED"
    assert all(r.error_code is None for r in report.results.values() if r is not failure)
    assert "batch_finished" in recorder.names()


def test_failed_response_counts_as_failure(coordinator, students):
    def operation(student):
        if student.id in ("STU001", "STU002"):
            return Response.fail(detail="no grades", error=ErrorCode.OPERATION_FAILED)
        return Response.succeed()

    report = coordinator.submit(students, operation).data["report"]

    assert report.failed == 2
    assert report.succeeded == 8
    assert {r.error_code for r in report.failures} == {ErrorCode.OPERATION_FAILED}


def test_sequential_matches_concurrent(coordinator, students):
    concurrent = coordinator.submit(students, fail_fifth, concurrency=4).data["report"]
    sequential = coordinator.run_sequential(students, fail_fifth).data["report"]

    assert (sequential.succeeded, sequential.failed, sequential.completed) == (
        concurrent.succeeded,
        concurrent.failed,
        concurrent.completed,
    )


def test_variants_fan_out(coordinator, students):
    response = coordinator.submit(
        students[:3],
        {"summary": lambda s: s.id, "detail": lambda s: s.name},
    )
    report = response.data["report"]

    assert report.submitted == 6
    assert {r.variant for r in report.results.values()} == {"summary", "detail"}
    assert len(set(report.results)) == 6


def test_empty_batch(coordinator):
    response = coordinator.submit([], fail_fifth)

    assert response.success
    assert response.data["report"].submitted == 0
    assert response.data["report"].mean_duration is None


def test_invalid_arguments(coordinator, students):
    assert coordinator.submit(students, fail_fifth, concurrency=0).error is ErrorCode.VALIDATION_FAILED
    assert coordinator.submit(students, {}).error is ErrorCode.VALIDATION_FAILED


# === timeout and cancellation ===


def test_timeout_keeps_partial_results(coordinator, students):
    release = threading.Event()

    def operation(student):
        if student.id != "STU001":
            release.wait(5)
        return student.id

    try:
        response = coordinator.submit(students[:4], operation, concurrency=2, timeout=0.3)
    finally:
        release.set()

    report = response.data["report"]

    assert response.error is ErrorCode.TIMEOUT
    assert response.status_code == 408
    assert report.timed_out
    assert report.succeeded == 1
    assert report.cancelled == 3
    assert coordinator.progress().completed == 1


def test_sequential_task_past_deadline_is_not_counted(coordinator, students):
    def slow(student):
        time.sleep(0.5)
        return student.id

    response = coordinator.run_sequential(students[:1], slow, timeout=0.1)
    report = response.data["report"]

    assert response.error is ErrorCode.TIMEOUT
    assert report.timed_out
    assert report.succeeded == 0
    assert report.cancelled == 1
    assert report.elapsed >= 0.5


def test_slow_tasks_time_out_in_both_modes(coordinator, students):
    def slow(student):
        time.sleep(0.3)
        return student.id

    sequential = coordinator.submit(students[:2], slow, concurrency=1, timeout=0.1)
    pooled = coordinator.submit(students[:2], slow, concurrency=2, timeout=0.1)

    for response in (sequential, pooled):
        assert response.error is ErrorCode.TIMEOUT
        assert response.data["report"].timed_out
        assert response.data["report"].succeeded == 0


def test_cancel_skips_unstarted_tasks(coordinator, students):
    def operation(student):
        coordinator.cancel()
        return student.id

    response = coordinator.run_sequential(students[:3], operation)
    report = response.data["report"]

    assert response.error is ErrorCode.CANCELLED
    assert report.succeeded == 1
    assert report.cancelled == 2
    assert sum(1 for r in report.results.values() if r.status is TaskStatus.CANCELLED) == 2
    assert {
        r.error_code for r in report.results.values() if r.status is TaskStatus.CANCELLED
    } == {ErrorCode.CANCELLED}


# === progress and reporting ===


def test_progress_callback(sample_ledger, students):
    snapshots = []
    coordinator = BatchCoordinator(
        sample_ledger.directory, sample_ledger, on_progress=snapshots.append
    )

    coordinator.submit(students, fail_fifth, concurrency=2)

    assert len(snapshots) == 10
    assert max(s.completed for s in snapshots) == 10
    assert coordinator.progress().percent_complete == 100.0


def test_report_output(coordinator, students):
    report = coordinator.submit(students, fail_fifth).data["report"]

    summary = report.summary()
    assert "BATCH REPORT" in summary
    assert "90.0%" in summary

    data = report.to_dict()
    assert data["failed"] == 1
    assert len(data["results"]) == 10
    assert data["min_duration"] <= data["median_duration"] <= data["max_duration"]
    assert "Speedup" in summary
    assert data["sequential_estimate"] == pytest.approx(report.mean_duration * 10)


def test_report_speedup():
    results = {
        f"T{i}": TaskResult(f"T{i}", f"STU00{i}", "default", TaskStatus.SUCCEEDED, 0.0, 0.2)
        for i in range(1, 5)
    }
    report = BatchReport("BATCH001", submitted=4, results=results, elapsed=0.4)

    assert report.sequential_estimate == pytest.approx(0.8)
    assert report.speedup == pytest.approx(2.0)
    assert "2.00x" in report.summary()

    empty = BatchReport("BATCH002", submitted=0)
    assert empty.sequential_estimate is None
    assert empty.speedup is None


# === grade recalculation ===


def test_recalculate_gpas(populated_ledger, sample_honors_student):
    coordinator = BatchCoordinator(populated_ledger.directory, populated_ledger)
    populated_ledger.directory.update_gpa_and_average("STU002", 0.0, 0.0)

    response = coordinator.recalculate_gpas()
    report = response.data["report"]

    assert response.success
    assert report.succeeded == 2
    assert sample_honors_student.gpa == 3.0


def test_students_for_target(populated_ledger):
    coordinator = BatchCoordinator(populated_ledger.directory, populated_ledger)

    assert len(coordinator.students_for_target("all")) == 2
    assert [s.id for s in coordinator.students_for_target("Honors")] == ["STU002"]
    assert [s.id for s in coordinator.students_for_target("regular")] == ["STU001"]

    with pytest.raises(ValueError):
        coordinator.students_for_target("graduate")


# === priority queue ===


def test_priority_tasks_run_highest_first(coordinator, recorder):
    ran = []

    coordinator.schedule_priority_task("weekly report", lambda: ran.append("report"), priority=5)
    coordinator.schedule_priority_task("gpa refresh", lambda: ran.append("gpa"), priority=1)
    coordinator.schedule_priority_task("email digest", lambda: ran.append("email"), priority=5)

    assert coordinator.peek_next_task().description == "gpa refresh"
    assert [t.description for t in coordinator.pending_tasks()] == [
        "gpa refresh",
        "weekly report",
        "email digest",
    ]

    while coordinator.execute_next_priority_task().success:
        pass

    assert ran == ["gpa", "report", "email"]
    assert coordinator.peek_next_task() is None
    assert recorder.names().count("priority_task_finished") == 3


def test_execute_next_priority_task_reports_failure(coordinator):
    def broken():
        raise RuntimeError("mail server down")

    coordinator.schedule_priority_task("email digest", broken, priority=2)
    coordinator.schedule_priority_task("no grades", lambda: Response.fail(error=ErrorCode.NOT_FOUND))

    response = coordinator.execute_next_priority_task()
    result = response.data["result"]

    assert response.error is ErrorCode.OPERATION_FAILED
    assert result.status is TaskStatus.FAILED
    assert result.error == "mail server down"
    assert result.student_id is None
    assert not coordinator.execute_next_priority_task().success

    empty = coordinator.execute_next_priority_task()
    assert empty.error is ErrorCode.NOT_FOUND
    assert empty.status_code == 404

    stats = coordinator.priority_queue_stats()
    assert stats["failed"] == 2
    assert stats["completed"] == 0


def test_cancel_priority_task(coordinator):
    first = coordinator.schedule_priority_task("first", lambda: None, priority=3).data["task_id"]
    coordinator.schedule_priority_task("second", lambda: None, priority=4)

    assert coordinator.cancel_task(first).success
    assert coordinator.cancel_task(first).error is ErrorCode.NOT_FOUND

    stats = coordinator.priority_queue_stats()
    assert stats["queue_size"] == 1
    assert stats["next_task"] == "second"
    assert stats["next_priority"] == 4
    assert not stats["is_empty"]


def test_schedule_priority_task_rejects_bad_priority(coordinator):
    response = coordinator.schedule_priority_task("bad", lambda: None, priority=0)

    assert response.error is ErrorCode.VALIDATION_FAILED
    assert coordinator.priority_queue_stats()["is_empty"]


# === recurring tasks ===


def test_recurring_task_runs_until_stopped(coordinator):
    ticked = threading.Event()

    task_id = coordinator.schedule_recurring("tick", ticked.set, interval=0.01).data["task_id"]

    assert ticked.wait(2)
    assert coordinator.recurring_tasks()[0]["task_id"] == task_id
    assert coordinator.stop_recurring(task_id).success
    assert coordinator.recurring_tasks() == []
    assert coordinator.stop_recurring(task_id).error is ErrorCode.NOT_FOUND
    assert coordinator.schedule_recurring("tick", ticked.set, interval=0).error is (
        ErrorCode.VALIDATION_FAILED
    )


def test_scheduled_recalculation(populated_ledger, sample_honors_student):
    populated_ledger.directory.update_gpa_and_average("STU002", 0.0, 0.0)

    with BatchCoordinator(populated_ledger.directory, populated_ledger) as coordinator:
        assert coordinator.schedule_recalculation(interval=0.02).success

        deadline = time.monotonic() + 2
        while sample_honors_student.gpa != 3.0 and time.monotonic() < deadline:
            time.sleep(0.01)

    assert sample_honors_student.gpa == 3.0
    assert coordinator.recurring_tasks() == []
