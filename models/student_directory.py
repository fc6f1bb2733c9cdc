# models/student_directory.py

"""
The StudentDirectory is the "source of truth" for student records.

Canonical `Student` objects live in an ID-keyed dictionary. Alongside it the directory keeps a
set of derived indices that are rebuilt on every mutation, inside a single lock:

- `_emails`: normalized email -> student ID, for O(1) uniqueness checks and email lookup
- `_by_category`: category -> student IDs in enrollment order
- `_gpa_buckets`: GPA -> student IDs in arrival order, with `_gpa_keys` kept sorted

GPA values collide across many students, so the ranking is a map of buckets rather than a
sorted list of students. `update_gpa_and_average()` is the only path that moves a student
between buckets, and it recomputes honors eligibility in the same locked step.

Accessors return new lists of `Student` snapshots; callers can never reach an index, or a
canonical record whose derived fields are mid-update, through a returned reference.
"""

from __future__ import annotations

import bisect
import logging
import threading
from collections import Counter

from core.config import StoreConfig
from core.events import EventSink, emit
from core.response import ErrorCode, Response
from core.utils import IdGenerator
from models.grading import gpa_band
from models.student import Student, StudentCategory

logger = logging.getLogger(__name__)

MIN_GPA = 0.0
MAX_GPA = 4.0


class StudentDirectory:

    def __init__(
        self,
        config: StoreConfig | None = None,
        id_generator: IdGenerator | None = None,
        observer: EventSink | None = None,
    ):
        self._config = config or StoreConfig()
        self._id_generator = id_generator or IdGenerator("STU")
        self._observer = observer
        self._lock = threading.RLock()

        self._students: dict[str, Student] = {}
        self._emails: dict[str, str] = {}
        self._by_category: dict[StudentCategory, list[str]] = {
            category: [] for category in StudentCategory
        }
        self._gpa_buckets: dict[float, list[str]] = {}
        # ascending; iterate reversed for rankings
        self._gpa_keys: list[float] = []

        self._total_lookups = 0
        self._successful_lookups = 0

    # === properties ===

    @property
    def config(self) -> StoreConfig:
        return self._config

    @property
    def count(self) -> int:
        return len(self._students)

    @property
    def is_full(self) -> bool:
        limit = self._config.max_students
        return limit is not None and len(self._students) >= limit

    def generate_id(self) -> str:
        return self._id_generator()

    # === data accessors ===

    def all_students(self) -> list[Student]:
        with self._lock:
            return [student.snapshot() for student in self._students.values()]

    def students_by_category(self, category: StudentCategory | str) -> list[Student]:
        try:
            category = StudentCategory(category)

        except ValueError:
            return []

        with self._lock:
            return [
                self._students[sid].snapshot()
                for sid in self._by_category.get(category, [])
            ]

    def top_performers(self, count: int) -> list[Student]:
        """
        Returns up to `count` students in descending GPA order.

        Students sharing a GPA keep the order in which they arrived in that GPA bucket.
        """
        if count <= 0:
            return []

        top: list[Student] = []

        with self._lock:
            for gpa in reversed(self._gpa_keys):
                for student_id in self._gpa_buckets[gpa]:
                    top.append(self._students[student_id].snapshot())

                    if len(top) >= count:
                        return top

        return top

    def ranked_students(self) -> list[Student]:
        with self._lock:
            return self.top_performers(len(self._students))

    def category_distribution(self) -> dict[str, int]:
        with self._lock:
            return {
                category.value: len(ids) for category, ids in self._by_category.items()
            }

    def gpa_distribution(self) -> dict[str, int]:
        with self._lock:
            distribution = Counter(
                gpa_band(gpa)
                for gpa in self._gpa_keys
                for _ in self._gpa_buckets[gpa]
            )

        return dict(distribution)

    def lookup_stats(self) -> dict[str, float]:
        with self._lock:
            total, successful = self._total_lookups, self._successful_lookups

        return {
            "total": total,
            "successful": successful,
            "hit_rate": (successful * 100.0 / total) if total else 0.0,
        }

    # --- find student ---

    def find_student(self, student_id: str) -> Response:
        """
        Finds a `Student` by ID.

        Args:
            student_id (str): The unique ID of the student.

        Returns:
            Response: A structured response with the following contract:
                - success (bool):
                    - True if the student was found.
                    - False if no match is found.
                - detail (str | None):
                    - On failure, a human-readable explanation of the problem.
                - error (ErrorCode | str | None):
                    - `ErrorCode.NOT_FOUND` if no match is found.
                - status_code (int | None):
                    - 200 on success
                    - 404 if no match is found
                - data (dict): Payload with the following keys:
                    - On success:
                        - "record" (Student): A snapshot of the matched `Student`.

        Notes:
            - This method is read-only and does not raise.
            - Every call is counted in `lookup_stats()`.
        """
        with self._lock:
            student = self._students.get(student_id)
            self._total_lookups += 1

            if student is not None:
                self._successful_lookups += 1
                student = student.snapshot()

        if student is None:
            return Response.fail(
                detail=f"No matching student found for {student_id}.",
                error=ErrorCode.NOT_FOUND,
            )

        return Response.succeed(data={"record": student})

    def find_student_by_email(self, email: str) -> Response:
        """
        Finds a `Student` by email, compared after normalization.

        Returns:
            Response: Same contract as `find_student()`.
        """
        with self._lock:
            student_id = self._emails.get(self._normalize(email))

        if student_id is None:
            return Response.fail(
                detail=f"No matching student found for {email}.",
                error=ErrorCode.NOT_FOUND,
            )

        return self.find_student(student_id)

    def class_rank(self, student_id: str) -> Response:
        """
        Computes a student's rank: one more than the number of students with a strictly higher GPA.

        Returns:
            Response: A structured response with the following contract:
                - success (bool): False if the student is not found.
                - error (ErrorCode | str | None):
                    - `ErrorCode.NOT_FOUND` if the student is not found.
                - data (dict): Payload with the following keys:
                    - On success:
                        - "rank" (int): The 1-based rank.
                        - "of" (int): The number of students ranked.
        """
        with self._lock:
            student = self._students.get(student_id)

            if student is None:
                return Response.fail(
                    detail=f"No matching student found for {student_id}.",
                    error=ErrorCode.NOT_FOUND,
                )

            position = bisect.bisect_right(self._gpa_keys, student.gpa)
            better = sum(len(self._gpa_buckets[gpa]) for gpa in self._gpa_keys[position:])

            return Response.succeed(
                data={
                    "rank": better + 1,
                    "of": len(self._students),
                }
            )

    # === data manipulators ===

    def add_student(self, student: Student) -> Response:
        """
        Adds a `Student` to the directory and every derived index.

        Args:
            student (Student): The `Student` object to be added.

        Returns:
            Response: A structured response with the following contract:
                - success (bool):
                    - True if the student was added.
                    - False if a constraint is violated.
                - detail (str | None):
                    - On failure, a human-readable description of the error.
                    - On success, a simple confirmation message.
                - error (ErrorCode | str | None):
                    - `ErrorCode.DUPLICATE_EMAIL` if the email is already enrolled.
                    - `ErrorCode.DUPLICATE_ID` if the ID is already enrolled.
                    - `ErrorCode.CAPACITY_EXCEEDED` if the configured maximum is reached.
                - status_code (int | None):
                    - 200 on success
                    - 409 for duplicates
                    - 507 if the directory is full
                - data (dict | None): Payload with the following keys:
                    - On success:
                        - "record" (Student): The added `Student` object.
                        - "student_id" (str): The student's ID.

        Notes:
            - The student enters the GPA ranking at GPA 0.0.
            - All indices are updated under one lock; readers never see a partial insert.
        """
        email = self._normalize(student.email)

        with self._lock:
            if email in self._emails:
                logger.warning("Rejected student %s: duplicate email %s", student.id, email)
                return Response.fail(
                    detail=f"A student with the email '{student.email}' already exists.",
                    error=ErrorCode.DUPLICATE_EMAIL,
                )

            if student.id in self._students:
                logger.warning("Rejected student %s: duplicate ID", student.id)
                return Response.fail(
                    detail=f"A student with the ID '{student.id}' already exists.",
                    error=ErrorCode.DUPLICATE_ID,
                )

            if self.is_full:
                logger.warning(
                    "Rejected student %s: capacity of %d reached",
                    student.id,
                    self._config.max_students,
                )
                return Response.fail(
                    detail=f"The directory is full ({self._config.max_students} students).",
                    error=ErrorCode.CAPACITY_EXCEEDED,
                )

            student._record_performance(0.0, 0.0)

            self._students[student.id] = student
            self._emails[email] = student.id
            self._by_category.setdefault(student.category, []).append(student.id)
            self._insert_ranking(student.id, 0.0)

            total = len(self._students)

        logger.debug("Student %s added (%d total)", student.id, total)
        emit(self._observer, "student_added", student_id=student.id, total=total)

        return Response.succeed(
            detail="Student successfully added to the directory.",
            data={
                "record": student,
                "student_id": student.id,
            },
        )

    def update_gpa_and_average(
        self, student_id: str, new_average: float, new_gpa: float
    ) -> Response:
        """
        Records a recomputed average and GPA for a student and re-sorts the GPA ranking.

        Args:
            student_id (str): The unique ID of the student.
            new_average (float): The recomputed overall average, in [0, 100].
            new_gpa (float): The GPA-scale conversion of `new_average`, in [0, 4].

        Returns:
            Response: A structured response with the following contract:
                - success (bool):
                    - True if the derived fields were updated.
                    - False if the student is not found or a value is out of range.
                - error (ErrorCode | str | None):
                    - `ErrorCode.NOT_FOUND` if the student is not found.
                    - `ErrorCode.INVALID_FIELD_VALUE` if a value is out of range.
                - data (dict | None): Payload with the following keys:
                    - On success:
                        - "record" (Student): A snapshot of the updated student.
                        - "previous_gpa" (float): The GPA before the update.

        Notes:
            - This is the only path that mutates GPA, average, and honors eligibility.
            - Bucket move and field writes happen under one lock, so eligibility and GPA
              are never observably out of sync.
        """
        if not 0.0 <= new_average <= 100.0:
            return Response.fail(
                detail=f"Average must be between 0 and 100, got {new_average}.",
                error=ErrorCode.INVALID_FIELD_VALUE,
            )

        if not MIN_GPA <= new_gpa <= MAX_GPA:
            return Response.fail(
                detail=f"GPA must be between {MIN_GPA} and {MAX_GPA}, got {new_gpa}.",
                error=ErrorCode.INVALID_FIELD_VALUE,
            )

        with self._lock:
            student = self._students.get(student_id)

            if student is None:
                return Response.fail(
                    detail=f"No matching student found for {student_id}.",
                    error=ErrorCode.NOT_FOUND,
                )

            previous_gpa = student.gpa

            if previous_gpa != new_gpa:
                try:
                    self._remove_ranking(student_id, previous_gpa)

                except LookupError as e:
                    logger.error("Ranking update for %s aborted: %s", student_id, e)
                    return Response.fail(
                        detail=f"Unexpected error: {e}",
                        error=ErrorCode.INTERNAL_ERROR,
                    )

                self._insert_ranking(student_id, new_gpa)

            student._record_performance(new_average, new_gpa)
            honors_eligible = student.honors_eligible
            snapshot = student.snapshot()

        if honors_eligible is not None:
            logger.debug(
                "Honors eligibility for %s: %s", student_id, honors_eligible
            )

        emit(
            self._observer,
            "performance_updated",
            student_id=student_id,
            average=new_average,
            gpa=new_gpa,
            previous_gpa=previous_gpa,
        )

        return Response.succeed(
            detail=f"Performance updated for {student_id}.",
            data={
                "record": snapshot,
                "previous_gpa": previous_gpa,
            },
        )

    # === helper methods ===

    def _insert_ranking(self, student_id: str, gpa: float) -> None:
        bucket = self._gpa_buckets.get(gpa)

        if bucket is None:
            bucket = self._gpa_buckets[gpa] = []
            bisect.insort(self._gpa_keys, gpa)

        bucket.append(student_id)

    def _remove_ranking(self, student_id: str, gpa: float) -> None:
        bucket = self._gpa_buckets.get(gpa)

        if bucket is None or student_id not in bucket:
            raise LookupError(
                f"GPA ranking is out of sync: {student_id} missing from bucket {gpa}."
            )

        bucket.remove(student_id)

        if not bucket:
            del self._gpa_buckets[gpa]
            self._gpa_keys.pop(bisect.bisect_left(self._gpa_keys, gpa))

    def _normalize(self, input: str) -> str:
        return input.strip().lower()

    # === dunder methods ===

    def __len__(self) -> int:
        return len(self._students)

    def __contains__(self, student_id: object) -> bool:
        return student_id in self._students

    def __repr__(self) -> str:
        return f"StudentDirectory({len(self._students)} students)"
