# tests/conftest.py

import datetime
from typing import Any

import pytest

from core.config import CacheConfig
from models.grade_ledger import GradeLedger
from models.student import Student, StudentCategory
from models.student_directory import StudentDirectory
from models.subject import Subject, SubjectCategory
from services.cache_layer import CacheLayer

ENROLLED = datetime.date(2025, 9, 1)


class FakeClock:
    """
    Manually advanced monotonic clock for TTL tests.
    """

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class EventRecorder:
    """
    An observer that keeps every event in memory, in arrival order.
    """

    def __init__(self) -> None:
        self._events: list[tuple[str, dict[str, Any]]] = []

    def __call__(self, event: str, payload: dict[str, Any]) -> None:
        self._events.append((event, dict(payload)))

    @property
    def events(self) -> list[tuple[str, dict[str, Any]]]:
        return list(self._events)

    def names(self) -> list[str]:
        return [name for name, _ in self._events]


@pytest.fixture
def fake_clock():
    return FakeClock()


@pytest.fixture
def make_student():
    def _make(id="STU001", name="Alice Johnson", category=StudentCategory.REGULAR, email=None):
        return Student(
            id=id,
            name=name,
            age=20,
            email=email or f"{id.lower()}@school.edu",
            enrollment_date=ENROLLED,
            category=category,
            phone="555-0100",
        )

    return _make


@pytest.fixture
def sample_student(make_student):
    return make_student()


@pytest.fixture
def sample_honors_student(make_student):
    return make_student("STU002", "Bob Smith", StudentCategory.HONORS)


@pytest.fixture
def math():
    return Subject("Mathematics", "math", SubjectCategory.CORE)


@pytest.fixture
def english():
    return Subject("English", "ENG", SubjectCategory.CORE)


@pytest.fixture
def art():
    return Subject("Art", "ART", SubjectCategory.ELECTIVE)


@pytest.fixture
def recorder():
    return EventRecorder()


@pytest.fixture
def sample_directory(recorder):
    return StudentDirectory(observer=recorder)


@pytest.fixture
def sample_cache(fake_clock):
    return CacheLayer(CacheConfig(ttl_seconds=60.0, max_entries=10), clock=fake_clock)


@pytest.fixture
def sample_ledger(sample_directory, sample_cache, recorder):
    return GradeLedger(sample_directory, cache=sample_cache, observer=recorder)


@pytest.fixture
def populated_ledger(sample_ledger, sample_student, sample_honors_student, math, english, art):
    directory = sample_ledger.directory
    directory.add_student(sample_student)
    directory.add_student(sample_honors_student)

    for subject, score in ((math, 95), (english, 85), (art, 75)):
        sample_ledger.record_grade("STU002", subject, score, datetime.date(2025, 10, 1))

    for subject, score in ((math, 70), (art, 60)):
        sample_ledger.record_grade("STU001", subject, score, datetime.date(2025, 10, 2))

    return sample_ledger
