# tests/test_utils.py

import datetime
import threading

import pytest

import core.formatters as formatters
from core.config import BatchConfig, StoreConfig
from core.events import emit
from core.utils import IdGenerator


# === id generator ===


def test_id_generator_sequence():
    generate = IdGenerator("GRD")

    assert generate() == "GRD001"
    assert generate() == "GRD002"
    assert IdGenerator("STU", width=5, start=42)() == "STU00042"


def test_id_generator_is_unique_across_threads():
    generate = IdGenerator("STU")
    ids = []

    def worker():
        for _ in range(100):
            ids.append(generate())

    threads = [threading.Thread(target=worker) for _ in range(4)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert len(set(ids)) == 400


# === events ===


def test_emit_records_events(recorder):
    emit(recorder, "grade_added", grade_id="GRD001")
    emit(None, "ignored")

    assert recorder.events == [("grade_added", {"grade_id": "GRD001"})]


def test_emit_swallows_observer_errors(caplog):
    def broken(event, payload):
        raise RuntimeError("dashboard offline")

    emit(broken, "student_added", student_id="STU001")

    assert "student_added" in caplog.text


# === config ===


def test_store_and_batch_config_validation():
    assert StoreConfig().max_students is None

    with pytest.raises(ValueError):
        StoreConfig(max_students=-1)

    with pytest.raises(ValueError):
        BatchConfig(concurrency=0)

    with pytest.raises(ValueError):
        BatchConfig(timeout_seconds=0)


# === formatters ===


def test_formatters():
    assert formatters.format_percentage(85) == "85.0%"
    assert formatters.format_gpa(3) == "3.00"
    assert formatters.format_duration_ms(0.0125) == "12.5ms"
    assert formatters.format_duration_ms(None) == "[N/A]"
    assert formatters.format_date_iso(datetime.date(2025, 10, 1)) == "2025-10-01"
    assert formatters.format_key_value_lines([("Hits", 3)], pad=6) == "Hits:  3"
    assert formatters.format_banner_text("X", width=3) == "===\n X \n==="
