# core/config.py

"""
Configuration dataclasses for the student/grade core.

Key Classes:
    - StoreConfig: Optional capacity bound for the StudentDirectory.
    - CacheConfig: TTL, capacity, and sweep settings for the CacheLayer.
    - BatchConfig: Default worker count, timeout, and sequential threshold for the BatchCoordinator.

All settings are immutable; components receive a config object at construction.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class StoreConfig:
    """
    Attributes:
        max_students: Optional upper bound on enrolled students. None means unbounded.
    """

    max_students: int | None = None

    def __post_init__(self) -> None:
        if self.max_students is not None and self.max_students < 0:
            raise ValueError("max_students cannot be negative.")


@dataclass(frozen=True)
class CacheConfig:
    """
    Attributes:
        ttl_seconds: Lifetime of an entry measured from its creation (default 5 minutes).
        max_entries: Tracked entry count across all kinds before LRU eviction kicks in.
        high_water_ratio: Fraction of `max_entries` at which `put()` sweeps expired entries first.
        sweep_interval_seconds: Background sweep period. None means half the TTL.
    """

    ttl_seconds: float = 300.0
    max_entries: int = 150
    high_water_ratio: float = 0.8
    sweep_interval_seconds: float | None = None

    def __post_init__(self) -> None:
        if self.ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be positive.")

        if self.max_entries < 1:
            raise ValueError("max_entries must be at least 1.")

        if not 0 < self.high_water_ratio <= 1:
            raise ValueError("high_water_ratio must be in (0, 1].")

        if self.sweep_interval_seconds is not None and self.sweep_interval_seconds <= 0:
            raise ValueError("sweep_interval_seconds must be positive.")

    @property
    def sweep_interval(self) -> float:
        if self.sweep_interval_seconds is not None:
            return self.sweep_interval_seconds

        return self.ttl_seconds / 2

    @property
    def high_water_mark(self) -> int:
        return int(self.max_entries * self.high_water_ratio)


@dataclass(frozen=True)
class BatchConfig:
    """
    Attributes:
        concurrency: Default worker count when `submit()` is not given one.
        timeout_seconds: Default global batch timeout. None waits indefinitely.
        simple_threshold: Batches with at most this many tasks run sequentially.
    """

    concurrency: int = 4
    timeout_seconds: float | None = 300.0
    simple_threshold: int = 1

    def __post_init__(self) -> None:
        if self.concurrency < 1:
            raise ValueError("concurrency must be at least 1.")

        if self.timeout_seconds is not None and self.timeout_seconds <= 0:
            raise ValueError("timeout_seconds must be positive.")

        if self.simple_threshold < 0:
            raise ValueError("simple_threshold cannot be negative.")
