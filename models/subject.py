# models/subject.py

"""
Represents a subject a grade is recorded against.

A subject is identified by name; its category (Core or Elective) decides which of the
ledger's partial averages a grade contributes to.
"""

from __future__ import annotations

from enum import Enum


class SubjectCategory(str, Enum):
    CORE = "Core"
    ELECTIVE = "Elective"


class Subject:

    def __init__(
        self,
        name: str,
        code: str,
        category: SubjectCategory = SubjectCategory.CORE,
    ):
        name = name.strip()
        if not name:
            raise ValueError("Invalid input. Subject name cannot be blank.")

        self._name = name
        self._code = code.strip().upper()
        self._category = SubjectCategory(category)

    # === properties ===

    @property
    def name(self) -> str:
        return self._name

    @property
    def code(self) -> str:
        return self._code

    @property
    def category(self) -> SubjectCategory:
        return self._category

    @property
    def is_core(self) -> bool:
        return self._category is SubjectCategory.CORE

    # === persistence and import ===

    def to_dict(self) -> dict:
        return {
            "name": self._name,
            "code": self._code,
            "category": self._category.value,
        }

    @classmethod
    def from_dict(cls, data: dict) -> Subject:
        return cls(
            name=data["name"],
            code=data["code"],
            category=SubjectCategory(data["category"]),
        )

    # === dunder methods ===

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Subject):
            return NotImplemented

        return (self._name, self._code, self._category) == (
            other._name,
            other._code,
            other._category,
        )

    def __hash__(self) -> int:
        return hash((self._name, self._code, self._category))

    def __repr__(self) -> str:
        return f"Subject({self._name}, {self._code}, {self._category.value})"
