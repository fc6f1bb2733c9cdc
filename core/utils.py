# core/utils.py

"""
Repository for program-wide utilities.
"""

import itertools
import threading


class IdGenerator:
    """
    Thread-safe sequential identifier source, e.g. STU001, STU002, ...

    Each directory or ledger owns its own generator, so independent stores (and tests)
    never share a counter.
    """

    def __init__(self, prefix: str, width: int = 3, start: int = 1):
        if width < 1:
            raise ValueError("Identifier width must be at least 1.")

        self._prefix = prefix
        self._width = width
        self._counter = itertools.count(start)
        self._lock = threading.Lock()

    @property
    def prefix(self) -> str:
        return self._prefix

    def __call__(self) -> str:
        with self._lock:
            number = next(self._counter)

        return f"{self._prefix}{number:0{self._width}d}"

    def __repr__(self) -> str:
        return f"IdGenerator({self._prefix!r}, {self._width})"
