# models/grade.py

"""
Represents a single score a student earned in a subject.

Each `Grade` records the owning student's ID, the `Subject`, the numeric score, the calendar
date it applies to, and a creation timestamp. The calendar date drives the ledger's date
grouping and range queries; the timestamp drives recency ordering, since many grades can share
one date.

Notes:
- The score is validated at construction via `validate_score_input()`; an invalid score raises
  and the grade never exists.
- Grades are immutable once created.
"""

from __future__ import annotations

import datetime
import math
from typing import Any

import core.formatters as formatters
from models.grading import letter_grade
from models.subject import Subject

MIN_SCORE = 0.0
MAX_SCORE = 100.0


class Grade:

    def __init__(
        self,
        id: str,
        student_id: str,
        subject: Subject,
        score: float,
        date: datetime.date | None = None,
        timestamp: datetime.datetime | None = None,
    ):
        self._id = id
        self._student_id = student_id
        self._subject = subject
        self._score = Grade.validate_score_input(score)
        self._timestamp = timestamp or datetime.datetime.now()
        self._date = date or self._timestamp.date()

    # === properties ===

    @property
    def id(self) -> str:
        return self._id

    @property
    def student_id(self) -> str:
        return self._student_id

    @property
    def subject(self) -> Subject:
        return self._subject

    @property
    def subject_name(self) -> str:
        return self._subject.name

    @property
    def score(self) -> float:
        return self._score

    @property
    def date(self) -> datetime.date:
        return self._date

    @property
    def timestamp(self) -> datetime.datetime:
        return self._timestamp

    @property
    def letter_grade(self) -> str:
        return letter_grade(self._score)

    # === persistence and import ===

    def to_dict(self) -> dict:
        return {
            "id": self._id,
            "student_id": self._student_id,
            "subject": self._subject.to_dict(),
            "score": self._score,
            "date": self._date.isoformat(),
            "timestamp": self._timestamp.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict) -> Grade:
        return cls(
            id=data["id"],
            student_id=data["student_id"],
            subject=Subject.from_dict(data["subject"]),
            score=data["score"],
            date=datetime.date.fromisoformat(data["date"]),
            timestamp=datetime.datetime.fromisoformat(data["timestamp"]),
        )

    # === dunder methods ===

    def __repr__(self) -> str:
        return f"Grade({self._id}, {self._student_id}, {self._subject.name}, {self._score})"

    def __str__(self) -> str:
        return (
            f"GRADE: id: {self._id}, student id: {self._student_id}, "
            f"subject: {self._subject.name}, score: {formatters.format_percentage(self._score)}, "
            f"date: {formatters.format_date_iso(self._date)}"
        )

    # === data validators ===

    @staticmethod
    def validate_score_input(score: Any) -> float:
        """
        Validates and normalizes input for a `Grade` score.

        Accepts any input, and then:
            - Casts to float.
            - Ensures the number is finite.
            - Ensures it lies within [0, 100].

        Args:
            score (Any): The input value to validate.

        Returns:
            The normalized score (float).

        Raises:
            TypeError: If the input cannot be cast to float.
            ValueError: If the input is non-finite or outside of [0, 100].
        """
        if isinstance(score, bool):
            raise TypeError("Invalid input. Score must be a number.")

        try:
            score = float(score)

        except (TypeError, ValueError):
            raise TypeError("Invalid input. Score must be a number.") from None

        if not math.isfinite(score):
            raise ValueError("Invalid input. Score must be a finite number.")

        if not MIN_SCORE <= score <= MAX_SCORE:
            raise ValueError(
                f"Invalid input. Score must be between {MIN_SCORE:g} and {MAX_SCORE:g}."
            )

        return score
