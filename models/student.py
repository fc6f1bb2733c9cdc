# models/student.py

"""
Represents a student tracked by the StudentDirectory.

Stores identifying and contact information (ID, name, age, email, phone), the enrollment date,
and a category tag. Category-specific behavior (passing threshold, honors eligibility) is looked
up in `CATEGORY_RULES` rather than implemented through subclasses, so adding a category means
adding one table row.

GPA, average, and honors eligibility are derived values held together in one frozen
`Performance`. They are exposed read-only and are only ever replaced, as a whole, by
`StudentDirectory.update_gpa_and_average()` through `_record_performance()`.

Includes functionality for:
- Validating and normalizing email, age, and name input
- Deriving a passing/failing status from the category rules
- Serializing to and from JSON-compatible dictionaries (snapshots for external renderers)
"""

from __future__ import annotations

import copy
import datetime
import re
from dataclasses import dataclass
from enum import Enum
from typing import Any

import core.formatters as formatters
from models.grading import HONORS_THRESHOLD


class StudentCategory(str, Enum):
    REGULAR = "Regular"
    HONORS = "Honors"


@dataclass(frozen=True)
class Performance:
    """
    Derived values written together by the directory. Replaced as a whole, never mutated.
    """

    average: float = 0.0
    gpa: float = 0.0
    honors_eligible: bool = False


@dataclass(frozen=True)
class CategoryRules:
    passing_grade: float
    honors_threshold: float | None = None

    @property
    def tracks_honors(self) -> bool:
        return self.honors_threshold is not None


CATEGORY_RULES: dict[StudentCategory, CategoryRules] = {
    StudentCategory.REGULAR: CategoryRules(passing_grade=50.0),
    StudentCategory.HONORS: CategoryRules(
        passing_grade=60.0, honors_threshold=HONORS_THRESHOLD
    ),
}


class Student:

    def __init__(
        self,
        id: str,
        name: str,
        age: int,
        email: str,
        enrollment_date: datetime.date,
        category: StudentCategory = StudentCategory.REGULAR,
        phone: str | None = None,
    ):
        self._id: str = id
        self._name: str = Student.validate_name_input(name)
        self._age: int = Student.validate_age_input(age)
        self._email: str = Student.validate_email_input(email)
        self._phone: str | None = phone
        self._enrollment_date: datetime.date = enrollment_date
        self._category: StudentCategory = StudentCategory(category)
        self._performance: Performance = Performance()

    # === properties ===

    @property
    def id(self) -> str:
        return self._id

    @property
    def name(self) -> str:
        return self._name

    @property
    def age(self) -> int:
        return self._age

    @property
    def email(self) -> str:
        return self._email

    @property
    def phone(self) -> str | None:
        return self._phone

    @property
    def enrollment_date(self) -> datetime.date:
        return self._enrollment_date

    @property
    def category(self) -> StudentCategory:
        return self._category

    @property
    def rules(self) -> CategoryRules:
        return CATEGORY_RULES[self._category]

    @property
    def passing_grade(self) -> float:
        return self.rules.passing_grade

    # --- derived fields ---

    @property
    def performance(self) -> Performance:
        """
        The current derived values as one consistent snapshot.

        Callers that need more than one derived field should read them from a single
        `performance` value; consecutive `gpa`/`average` reads may straddle an update.
        """
        return self._performance

    @property
    def gpa(self) -> float:
        return self._performance.gpa

    @property
    def average(self) -> float:
        return self._performance.average

    @property
    def honors_eligible(self) -> bool | None:
        """
        True/False for categories with an honors threshold; None where honors does not apply.
        """
        if not self.rules.tracks_honors:
            return None

        return self._performance.honors_eligible

    @property
    def is_passing(self) -> bool:
        return self._performance.average >= self.passing_grade

    @property
    def status(self) -> str:
        return self._status_for(self._performance)

    # === derived field updates ===

    def _record_performance(self, average: float, gpa: float) -> None:
        """
        Replaces the derived GPA, average, and honors eligibility in a single assignment.

        Notes:
            - Only `StudentDirectory` calls this, while holding its index lock.
        """
        threshold = self.rules.honors_threshold

        self._performance = Performance(
            average=average,
            gpa=gpa,
            honors_eligible=threshold is not None and average >= threshold,
        )

    def snapshot(self) -> Student:
        """
        A detached copy carrying the current derived values; later updates do not reach it.
        """
        return copy.copy(self)

    def _status_for(self, performance: Performance) -> str:
        passing = performance.average >= self.passing_grade

        if not self.rules.tracks_honors:
            return "PASSING" if passing else "FAILING"

        if not passing:
            return "FAILING"

        if performance.honors_eligible:
            return "PASSING WITH HONORS ELIGIBILITY"

        return "PASSING (NOT HONORS ELIGIBLE)"

    # === persistence and import ===

    def to_dict(self) -> dict:
        performance = self._performance

        return {
            "id": self._id,
            "name": self._name,
            "age": self._age,
            "email": self._email,
            "phone": self._phone,
            "enrollment_date": self._enrollment_date.isoformat(),
            "category": self._category.value,
            "gpa": performance.gpa,
            "average": performance.average,
            "honors_eligible": (
                performance.honors_eligible if self.rules.tracks_honors else None
            ),
            "status": self._status_for(performance),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Student:
        """
        Rebuilds a `Student` from `to_dict()` output.

        Notes:
            - Derived fields (gpa, average, honors_eligible, status) are ignored; they are
              recomputed by the ledger once grades are added.
        """
        return cls(
            id=data["id"],
            name=data["name"],
            age=data["age"],
            email=data["email"],
            phone=data.get("phone"),
            enrollment_date=datetime.date.fromisoformat(data["enrollment_date"]),
            category=StudentCategory(data.get("category", StudentCategory.REGULAR)),
        )

    # === dunder methods ===

    def __repr__(self) -> str:
        return f"Student({self._id}, {self._name}, {self._email}, {self._category.value})"

    def __str__(self) -> str:
        performance = self._performance

        return (
            f"STUDENT: {self._name} - (ID: {self._id}, {self._category.value}, "
            f"GPA: {formatters.format_gpa(performance.gpa)}, "
            f"AVG: {formatters.format_percentage(performance.average)})"
        )

    # === data validators ===

    @staticmethod
    def validate_email_input(email: str) -> str:
        """
        Validates and normalizes a Student email address.

        Normalizes the input by stripping whitespace and converting to lowercase.
        Ensures the email:
            - Contains exactly one '@' symbol
            - Has non-whitespace characters on both sides of the '@'
            - Contains at least one '.' after the '@' to separate the domain and TLD

        Args:
            email: The input email string to validate.

        Returns:
            A normalized, lowercase version of the email if valid.

        Raises:
            ValueError: If the email does not conform to the expected format.
        """
        email = email.strip().lower()
        if not re.fullmatch(r"^[^@\s]+@[^@\s]+\.[^@\s]+$", email):
            raise ValueError(
                "Invalid input. Email must be a valid address with one @ and a domain."
            )
        return email

    @staticmethod
    def validate_age_input(age: Any) -> int:
        try:
            age = int(age)

        except (TypeError, ValueError):
            raise TypeError("Invalid input. Age must be a whole number.") from None

        if age <= 0:
            raise ValueError("Invalid input. Age must be greater than zero.")

        return age

    @staticmethod
    def validate_name_input(name: str) -> str:
        name = name.strip()
        if not name:
            raise ValueError("Invalid input. Name cannot be blank.")
        return name
