# models/grade_ledger.py

"""
The GradeLedger is the "source of truth" for grade records.

Canonical `Grade` objects live in an ID-keyed dictionary. Every grade is also reachable from
four derived indices, all updated together under the ledger lock:

- `_by_student`: student ID -> grades in insertion order
- `_by_subject`: subject name -> grades in insertion order
- `_by_date`: calendar date -> grades, with `_date_keys` kept sorted for range queries
- `_history`: every grade, most recently recorded first

Adding a grade invalidates the owner's cached statistics and every aggregate statistic, then
pushes the recomputed overall average and its GPA conversion into the `StudentDirectory`. If
that push fails, the grade is removed from every index again and the failure is returned.

Averages are read through the `CacheLayer`. Values are computed and cached while holding the
ledger lock, and invalidation also happens under that lock, so a value computed from
pre-write state can never land in the cache after the write invalidated it.

When no cache is passed in, the ledger creates one and starts its background sweep; `close()`
(or leaving a `with` block) stops it. A cache passed in is started and stopped by its owner.
"""

from __future__ import annotations

import bisect
import datetime
import logging
import threading
from collections import Counter, deque
from typing import Any, Callable, Iterable

from core.events import EventSink, emit
from core.response import ErrorCode, Response
from core.utils import IdGenerator
from models.grade import Grade
from models.grading import ScoreStatistics, convert_to_gpa, mean, score_band
from models.student_directory import StudentDirectory
from models.subject import Subject, SubjectCategory
from services.cache_layer import (
    AGGREGATE_KINDS,
    CLASS_AVERAGE,
    CLASS_STATISTICS,
    CORE_AVERAGE,
    ELECTIVE_AVERAGE,
    STUDENT_AVERAGE,
    SUBJECT_AVERAGES,
    CacheLayer,
)

logger = logging.getLogger(__name__)

ALL_STUDENTS_KEY = "__all__"


class GradeLedger:

    def __init__(
        self,
        directory: StudentDirectory,
        cache: CacheLayer | None = None,
        gpa_scale: Callable[[float], float] = convert_to_gpa,
        id_generator: IdGenerator | None = None,
        observer: EventSink | None = None,
    ):
        self._directory = directory
        # a ledger-created cache is swept in the background until close(); an injected one
        # is the caller's to start and stop
        self._owns_cache = cache is None
        self._cache: CacheLayer = cache if cache is not None else CacheLayer()
        self._gpa_scale = gpa_scale
        self._id_generator = id_generator or IdGenerator("GRD")
        self._observer = observer
        self._lock = threading.RLock()

        self._grades: dict[str, Grade] = {}
        self._by_student: dict[str, list[Grade]] = {}
        self._by_subject: dict[str, list[Grade]] = {}
        self._by_date: dict[datetime.date, list[Grade]] = {}
        # ascending
        self._date_keys: list[datetime.date] = []
        self._history: deque[Grade] = deque()

        if self._owns_cache:
            self._cache.start()

    # === properties ===

    @property
    def directory(self) -> StudentDirectory:
        return self._directory

    @property
    def cache(self) -> CacheLayer:
        return self._cache

    @property
    def total_grade_count(self) -> int:
        return len(self._grades)

    def generate_id(self) -> str:
        return self._id_generator()

    # === data accessors ===

    def find_grade(self, grade_id: str) -> Response:
        """
        Finds a `Grade` by ID.

        Returns:
            Response: A structured response with the following contract:
                - success (bool): False if no match is found.
                - error (ErrorCode | str | None):
                    - `ErrorCode.NOT_FOUND` if no match is found.
                - data (dict): Payload with the following keys:
                    - On success:
                        - "record" (Grade): The matched `Grade` object.
        """
        with self._lock:
            grade = self._grades.get(grade_id)

        if grade is None:
            return Response.fail(
                detail=f"No matching grade found for {grade_id}.",
                error=ErrorCode.NOT_FOUND,
            )

        return Response.succeed(data={"record": grade})

    def grades_for_student(self, student_id: str) -> list[Grade]:
        with self._lock:
            return list(self._by_student.get(student_id, []))

    def grades_for_subject(self, subject_name: str) -> list[Grade]:
        with self._lock:
            return list(self._by_subject.get(subject_name, []))

    def grade_count_for_student(self, student_id: str) -> int:
        with self._lock:
            return len(self._by_student.get(student_id, []))

    def grades_in_date_range(
        self, start: datetime.date, end: datetime.date
    ) -> list[Grade]:
        """
        Returns every grade dated within [start, end], most recent date first.

        Grades sharing a date keep their insertion order. A reversed range (start after end)
        matches nothing.
        """
        if start > end:
            return []

        with self._lock:
            low = bisect.bisect_left(self._date_keys, start)
            high = bisect.bisect_right(self._date_keys, end)

            return [
                grade
                for date in reversed(self._date_keys[low:high])
                for grade in self._by_date[date]
            ]

    def grade_history(
        self, limit: int | None = None, student_id: str | None = None
    ) -> list[Grade]:
        """
        Returns grades in reverse order of recording, optionally for one student only.
        """
        history: list[Grade] = []

        with self._lock:
            for grade in self._history:
                if limit is not None and len(history) >= limit:
                    break

                if student_id is None or grade.student_id == student_id:
                    history.append(grade)

        return history

    def unique_subjects(self) -> set[str]:
        with self._lock:
            return set(self._by_subject)

    def grade_distribution(self, student_id: str) -> dict[str, int]:
        with self._lock:
            return dict(
                Counter(score_band(g.score) for g in self._by_student.get(student_id, []))
            )

    # --- cached statistics ---

    def overall_average(self, student_id: str) -> float:
        return self._read_through(
            STUDENT_AVERAGE, student_id, lambda: self._compute_overall(student_id)
        )

    def core_average(self, student_id: str) -> float:
        return self._read_through(
            CORE_AVERAGE,
            student_id,
            lambda: self._compute_for_category(student_id, SubjectCategory.CORE),
        )

    def elective_average(self, student_id: str) -> float:
        return self._read_through(
            ELECTIVE_AVERAGE,
            student_id,
            lambda: self._compute_for_category(student_id, SubjectCategory.ELECTIVE),
        )

    def subject_averages(self, student_id: str) -> dict[str, float]:
        averages = self._read_through(
            SUBJECT_AVERAGES, student_id, lambda: self._compute_subject_averages(student_id)
        )

        return dict(averages)

    def class_average(self) -> float:
        """
        Mean overall average across students that have a positive average.
        """
        return self._read_through(CLASS_AVERAGE, ALL_STUDENTS_KEY, self._compute_class_average)

    def class_statistics(self) -> ScoreStatistics:
        """
        Mean, median, mode, population standard deviation, range and band distribution over
        every recorded score. Invalidated by any grade write.
        """
        return self._read_through(
            CLASS_STATISTICS,
            ALL_STUDENTS_KEY,
            lambda: ScoreStatistics.from_scores([g.score for g in self._grades.values()]),
        )

    def warm_cache(self, student_ids: Iterable[str] | None = None) -> int:
        """
        Populates the per-student statistics for the given students (default: every student
        with grades) and the class aggregate.

        Returns:
            The number of students warmed.
        """
        if student_ids is None:
            with self._lock:
                student_ids = list(self._by_student)

        warmed = 0

        for student_id in student_ids:
            self.overall_average(student_id)
            self.core_average(student_id)
            self.elective_average(student_id)
            self.subject_averages(student_id)
            warmed += 1

        self.class_average()
        logger.info("Ledger cache warmed for %d students", warmed)

        return warmed

    # === data manipulators ===

    def add_grade(self, grade: Grade) -> Response:
        """
        Adds a `Grade` to the ledger and every derived index, then recomputes the owner's GPA.

        Args:
            grade (Grade): The `Grade` object to be added.

        Returns:
            Response: A structured response with the following contract:
                - success (bool):
                    - True if the grade was committed and the owner's GPA updated.
                    - False if a constraint is violated or the GPA update failed.
                - detail (str | None):
                    - On failure, a human-readable description of the error.
                    - On success, a simple confirmation message.
                - error (ErrorCode | str | None):
                    - `ErrorCode.UNKNOWN_STUDENT` if the owning student does not exist.
                    - `ErrorCode.INVALID_SCORE` if the score is outside of [0, 100].
                    - `ErrorCode.DUPLICATE_ID` if the grade ID was already recorded.
                    - Any error returned by `StudentDirectory.update_gpa_and_average()`.
                    - `ErrorCode.INTERNAL_ERROR` for unexpected errors.
                - status_code (int | None):
                    - 200 on success
                    - 404 if the student is unknown
                    - 409 for a duplicate ID
                    - 400 for other failures
                - data (dict | None): Payload with the following keys:
                    - On success:
                        - "record" (Grade): The added `Grade` object.
                        - "average" (float): The owner's recomputed overall average.
                        - "gpa" (float): The GPA conversion of that average.

        Notes:
            - The owner's cache entries and all aggregate entries are invalidated before the
              call returns; the recomputed average is not written back into the cache.
            - On any failure after indexing, the grade is removed from every index again.
        """
        student_id = grade.student_id

        if student_id not in self._directory:
            logger.warning("Rejected grade %s: unknown student %s", grade.id, student_id)
            return Response.fail(
                detail=f"No student found for grade {grade.id}: {student_id}.",
                error=ErrorCode.UNKNOWN_STUDENT,
            )

        try:
            Grade.validate_score_input(grade.score)

        except (TypeError, ValueError) as e:
            logger.warning("Rejected grade %s: %s", grade.id, e)
            return Response.fail(
                detail=f"Invalid score: {e}",
                error=ErrorCode.INVALID_SCORE,
            )

        with self._lock:
            if grade.id in self._grades:
                return Response.fail(
                    detail=f"A grade with the ID '{grade.id}' already exists.",
                    error=ErrorCode.DUPLICATE_ID,
                )

            try:
                self._index(grade)
                self._invalidate_for(student_id)

                average = self._compute_overall(student_id)
                gpa = self._gpa_scale(average)
                update_response = self._directory.update_gpa_and_average(
                    student_id, average, gpa
                )

            except Exception as e:
                logger.exception("Grade %s could not be committed", grade.id)
                self._rollback(grade)

                return Response.fail(
                    detail=f"Unexpected error: {e}",
                    error=ErrorCode.INTERNAL_ERROR,
                )

            if not update_response.success:
                logger.error(
                    "Grade %s rolled back, GPA update failed: %s",
                    grade.id,
                    update_response.detail,
                )
                self._rollback(grade)

                return Response.fail(
                    detail=f"Failed to update GPA: {update_response.detail}",
                    error=update_response.error,
                    status_code=update_response.status_code,
                )

        logger.debug(
            "Grade %s added for %s (average %.2f, gpa %.1f)", grade.id, student_id, average, gpa
        )
        emit(
            self._observer,
            "grade_added",
            grade_id=grade.id,
            student_id=student_id,
            average=average,
            gpa=gpa,
        )

        return Response.succeed(
            detail="Grade successfully added to the ledger.",
            data={
                "record": grade,
                "average": average,
                "gpa": gpa,
            },
        )

    def record_grade(
        self,
        student_id: str,
        subject: Subject,
        score: Any,
        date: datetime.date | None = None,
    ) -> Response:
        """
        Builds a `Grade` with a generated ID and adds it via `add_grade()`.

        Notes:
            - A score that fails construction-time validation is reported as
              `ErrorCode.INVALID_SCORE`; no grade is created.
        """
        try:
            grade = Grade(self.generate_id(), student_id, subject, score, date=date)

        except (TypeError, ValueError) as e:
            logger.warning("Rejected score %r for %s: %s", score, student_id, e)
            return Response.fail(
                detail=f"Invalid score: {e}",
                error=ErrorCode.INVALID_SCORE,
            )

        return self.add_grade(grade)

    def batch_add_grades(self, grades: list[Grade]) -> Response:
        """
        Adds multiple grades, one `add_grade()` call each.

        This method is not transactional; some grades may be added even if others fail.

        Returns:
            Response: A structured response with the following contract:
                - success (bool): True only if every grade was added.
                - error (ErrorCode | str | None):
                    - `ErrorCode.VALIDATION_FAILED` if one or more grades were rejected.
                - data (dict):
                    - "added" (list[Grade]): Grades that were committed.
                    - "rejected" (list[tuple[Grade, Response]]): Grades that were not, with the reason.
        """
        added: list[Grade] = []
        rejected: list[tuple[Grade, Response]] = []

        for grade in grades:
            add_response = self.add_grade(grade)

            if add_response.success:
                added.append(grade)
            else:
                rejected.append((grade, add_response))

        data = {
            "added": added,
            "rejected": rejected,
        }

        if rejected:
            return Response.fail(
                detail=f"{len(rejected)} of {len(grades)} grades could not be added.",
                error=ErrorCode.VALIDATION_FAILED,
                data=data,
            )

        return Response.succeed(
            detail="All grades successfully added to the ledger.",
            data=data,
        )

    def recalculate_student(self, student_id: str) -> Response:
        """
        Recomputes a student's average and GPA from the canonical grades and pushes them to the directory.

        Returns:
            Response: The directory's update response, or `ErrorCode.UNKNOWN_STUDENT`.
        """
        if student_id not in self._directory:
            return Response.fail(
                detail=f"No student found for {student_id}.",
                error=ErrorCode.UNKNOWN_STUDENT,
            )

        with self._lock:
            self._invalidate_for(student_id)
            average = self._compute_overall(student_id)
            gpa = self._gpa_scale(average)

            return self._directory.update_gpa_and_average(student_id, average, gpa)

    def invalidate_cache(self) -> int:
        """
        Drops every cached statistic, e.g. after a bulk import.
        """
        with self._lock:
            return self._cache.invalidate_all()

    # === helper methods ===

    def _read_through(self, kind: str, key: str, compute: Callable[[], Any]) -> Any:
        cached = self._cache.get(kind, key)

        if cached.success:
            return cached.data["value"]

        with self._lock:
            value = compute()
            self._cache.put(kind, key, value)

        return value

    def _invalidate_for(self, student_id: str) -> None:
        self._cache.invalidate(student_id)

        for kind in AGGREGATE_KINDS:
            self._cache.invalidate_kind(kind)

    def _index(self, grade: Grade) -> None:
        self._grades[grade.id] = grade
        self._by_student.setdefault(grade.student_id, []).append(grade)
        self._by_subject.setdefault(grade.subject_name, []).append(grade)

        if grade.date not in self._by_date:
            self._by_date[grade.date] = []
            bisect.insort(self._date_keys, grade.date)

        self._by_date[grade.date].append(grade)
        self._history.appendleft(grade)

    def _rollback(self, grade: Grade) -> None:
        """
        Removes a grade from every index it may have reached, tolerating partial inserts.
        """
        self._grades.pop(grade.id, None)

        for index, key in (
            (self._by_student, grade.student_id),
            (self._by_subject, grade.subject_name),
            (self._by_date, grade.date),
        ):
            bucket = index.get(key)

            if bucket is not None and grade in bucket:
                bucket.remove(grade)

                if not bucket:
                    del index[key]

        if grade.date not in self._by_date and grade.date in self._date_keys:
            self._date_keys.remove(grade.date)

        if grade in self._history:
            self._history.remove(grade)

        self._invalidate_for(grade.student_id)

    def _compute_overall(self, student_id: str) -> float:
        return mean([g.score for g in self._by_student.get(student_id, [])])

    def _compute_for_category(
        self, student_id: str, category: SubjectCategory
    ) -> float:
        return mean(
            [
                g.score
                for g in self._by_student.get(student_id, [])
                if g.subject.category is category
            ]
        )

    def _compute_subject_averages(self, student_id: str) -> dict[str, float]:
        scores: dict[str, list[float]] = {}

        for grade in self._by_student.get(student_id, []):
            scores.setdefault(grade.subject_name, []).append(grade.score)

        return {subject: mean(values) for subject, values in scores.items()}

    def _compute_class_average(self) -> float:
        averages = [self._compute_overall(student_id) for student_id in self._by_student]

        return mean([average for average in averages if average > 0])

    # === lifecycle ===

    def close(self) -> None:
        """
        Stops the background sweep of a cache this ledger created. An injected cache is left alone.
        """
        if self._owns_cache:
            self._cache.stop()

    # === dunder methods ===

    def __enter__(self) -> GradeLedger:
        return self

    def __exit__(self, *args) -> None:
        self.close()

    def __len__(self) -> int:
        return len(self._grades)

    def __repr__(self) -> str:
        return f"GradeLedger({len(self._grades)} grades, {len(self._by_student)} students)"
