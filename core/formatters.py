# core/formatters.py

# all pure utilities & date/number helpers
# must never import from models or services!

import datetime

# === generic text formatters ===


def format_banner_text(title: str, width: int = 40) -> str:
    line = "=" * width
    centered_title = f"{title:^{width}}"

    return f"{line}\n{centered_title}\n{line}"


def format_key_value_lines(rows: list[tuple[str, object]], pad: int = 18) -> str:
    return "\n".join(f"{label + ':':<{pad}} {value}" for label, value in rows)


# === number formatters ===


def format_percentage(value: float) -> str:
    return f"{value:.1f}%"


def format_gpa(gpa: float) -> str:
    return f"{gpa:.2f}"


def format_duration_ms(seconds: float | None) -> str:
    if seconds is None:
        return "[N/A]"

    return f"{seconds * 1000:.1f}ms"


# === date formatters ===


def format_date_iso(value: datetime.date) -> str:
    return value.isoformat()
