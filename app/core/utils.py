from __future__ import annotations

import calendar
from datetime import date

from app.core.errors import ValidationError


def add_months(base: date, months: int) -> date:
    month_index = base.month - 1 + months
    year = base.year + month_index // 12
    month = month_index % 12 + 1
    # Day overflow (e.g. Jan 31 + 1): clamp to the last day of the target month.
    day = min(base.day, calendar.monthrange(year, month)[1])
    return date(year, month, day)


def clean_text(value) -> str:
    if value is None:
        return ""
    return str(value).strip()


def _invalid_date(field_name: str) -> ValidationError:
    return ValidationError(f"Formato de fecha invalido para {field_name}", field=field_name, rule="date_format")


def parse_iso_date(value: str | date | None, field_name: str) -> date:
    if isinstance(value, date):
        return value
    if value is not None and not isinstance(value, str):
        raise _invalid_date(field_name)
    raw = (value or "").strip()
    if not raw:
        raise ValidationError(f"Falta {field_name}", field=field_name, rule="required")
    try:
        return date.fromisoformat(raw)
    except ValueError as exc:
        raise _invalid_date(field_name) from exc


def parse_optional_iso_date(value: str | date | None, field_name: str) -> date | None:
    if isinstance(value, date):
        return value
    if value is not None and not isinstance(value, str):
        raise _invalid_date(field_name)
    raw = (value or "").strip()
    if not raw:
        return None
    return parse_iso_date(raw, field_name)
