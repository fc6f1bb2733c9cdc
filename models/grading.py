# models/grading.py

"""
The fixed grading scale.

All functions here are pure step functions of a percentage in [0, 100]. The GPA scale is the
11-band "plus/minus" table:

    >= 93 -> 4.0 (A)    >= 80 -> 2.7 (B-)   >= 70 -> 1.7 (C-)
    >= 90 -> 3.7 (A-)   >= 77 -> 2.3 (C+)   >= 67 -> 1.3 (D+)
    >= 87 -> 3.3 (B+)   >= 73 -> 2.0 (C)    >= 60 -> 1.0 (D)
    >= 83 -> 3.0 (B)                         <  60 -> 0.0 (F)

`GradeLedger` takes the conversion as an injectable callable and defaults to `convert_to_gpa`.
`ScoreStatistics` summarizes a set of scores for class-wide reports.
"""

from __future__ import annotations

import statistics
from collections import Counter
from collections.abc import Mapping
from dataclasses import dataclass, field
from types import MappingProxyType

# (lower bound, gpa points, letter), highest band first
GPA_SCALE: tuple[tuple[float, float, str], ...] = (
    (93.0, 4.0, "A"),
    (90.0, 3.7, "A-"),
    (87.0, 3.3, "B+"),
    (83.0, 3.0, "B"),
    (80.0, 2.7, "B-"),
    (77.0, 2.3, "C+"),
    (73.0, 2.0, "C"),
    (70.0, 1.7, "C-"),
    (67.0, 1.3, "D+"),
    (60.0, 1.0, "D"),
)

SCORE_BANDS: tuple[tuple[float, str], ...] = (
    (90.0, "90-100 (A)"),
    (80.0, "80-89 (B)"),
    (70.0, "70-79 (C)"),
    (60.0, "60-69 (D)"),
)

FAILING_BAND = "0-59 (F)"

HONORS_THRESHOLD = 85.0


def convert_to_gpa(percentage: float) -> float:
    for lower_bound, points, _ in GPA_SCALE:
        if percentage >= lower_bound:
            return points

    return 0.0


def letter_grade(percentage: float) -> str:
    for lower_bound, _, letter in GPA_SCALE:
        if percentage >= lower_bound:
            return letter

    return "F"


def score_band(score: float) -> str:
    """
    Buckets a single score into the coarse A-F distribution bands used by reports.
    """
    for lower_bound, label in SCORE_BANDS:
        if score >= lower_bound:
            return label

    return FAILING_BAND


def gpa_band(gpa: float) -> str:
    if gpa >= 4.0:
        return "4.0 (A)"
    if gpa >= 3.0:
        return "3.0-3.9 (B)"
    if gpa >= 2.0:
        return "2.0-2.9 (C)"
    if gpa >= 1.0:
        return "1.0-1.9 (D)"
    return "0.0 (F)"


def mean(values: list[float]) -> float:
    """
    Arithmetic mean that returns 0.0 for an empty list instead of dividing by zero.
    """
    if not values:
        return 0.0

    return sum(values) / len(values)


@dataclass(frozen=True)
class ScoreStatistics:
    """
    Descriptive statistics over a set of scores. Every field is 0 (and the distribution empty)
    when there are no scores. `std_dev` is the population standard deviation, and `mode` is the
    most frequent score, the first one seen winning ties.
    """

    count: int = 0
    mean: float = 0.0
    median: float = 0.0
    mode: float = 0.0
    std_dev: float = 0.0
    lowest: float = 0.0
    highest: float = 0.0
    distribution: Mapping[str, int] = field(default_factory=lambda: MappingProxyType({}))

    @property
    def range(self) -> float:
        return self.highest - self.lowest

    @classmethod
    def from_scores(cls, scores: list[float]) -> ScoreStatistics:
        if not scores:
            return cls()

        return cls(
            count=len(scores),
            mean=statistics.fmean(scores),
            median=statistics.median(scores),
            mode=statistics.mode(scores),
            std_dev=statistics.pstdev(scores),
            lowest=min(scores),
            highest=max(scores),
            distribution=MappingProxyType(dict(Counter(score_band(s) for s in scores))),
        )

    def to_dict(self) -> dict:
        return {
            "count": self.count,
            "mean": self.mean,
            "median": self.median,
            "mode": self.mode,
            "std_dev": self.std_dev,
            "lowest": self.lowest,
            "highest": self.highest,
            "range": self.range,
            "distribution": dict(self.distribution),
        }
