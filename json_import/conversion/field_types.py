from __future__ import annotations

import csv
import io
import re
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Any, Callable

import pandas as pd

from ..models.column import Column, ColumnType, LinkRef

"""Type conversion registry: raw cell value -> typed column value.

Every importable ColumnType has exactly one FieldConfig entry owning a parser
(raw string -> typed value or None) and a formatter (typed value -> display
string). ``convert`` is the single entry point used by row projection and by
the link resolver for linked primary columns.

Contract:
    * an empty raw value (None, "", whitespace only) -> None, never a failure
    * a non-empty raw value the parser rejects -> None; the caller decides
      whether to record it as a failed conversion
    * link cells that cannot be split into exactly one delimited row raise
      LinkValueError so the caller can report them
"""

__all__ = [
    "FIELD_CONFIG_BY_TYPE",
    "FieldConfig",
    "LinkValueError",
    "UnsupportedColumnTypeError",
    "convert",
    "format_value",
    "help_message",
    "is_empty_raw",
    "split_delimited_row",
]


class LinkValueError(ValueError):
    """Raised when a link cell does not parse as exactly one delimited row."""


class UnsupportedColumnTypeError(KeyError):
    """Raised when converting into a column type with no registry entry."""


@dataclass(frozen=True)
class FieldConfig:
    key: ColumnType
    parse: Callable[[str, Column], Any]
    format: Callable[[Any, Column], str]
    help_message: str | None = None


# ---------------------------------------------------------------------------
# raw value helpers
# ---------------------------------------------------------------------------

def _stringify(raw: Any) -> str:
    if raw is None:
        return ""
    if isinstance(raw, bool):
        return "true" if raw else "false"
    if isinstance(raw, float):
        if raw != raw:  # NaN
            return ""
        if raw.is_integer():
            return str(int(raw))
        return repr(raw)
    return str(raw)


def is_empty_raw(raw: Any) -> bool:
    return _stringify(raw).strip() == ""


def split_delimited_row(text: str) -> list[str]:
    """Split one logical CSV row. Raises csv.Error / ValueError on bad grammar."""
    reader = csv.reader(io.StringIO(text), strict=True, skipinitialspace=True)
    rows = [r for r in reader]
    if len(rows) != 1:
        raise ValueError(f"expected exactly 1 row, got {len(rows)}")
    return rows[0]


def _join_delimited(values: list[str]) -> str:
    buf = io.StringIO()
    csv.writer(buf, lineterminator="").writerow(values)
    return buf.getvalue()


def _split_names(text: str) -> list[str] | None:
    try:
        parts = split_delimited_row(text)
    except (csv.Error, ValueError):
        return None
    return _unique([p.strip() for p in parts if p.strip()])


def _unique(values: list[Any]) -> list[Any]:
    seen: set = set()
    out = []
    for v in values:
        if v in seen:
            continue
        seen.add(v)
        out.append(v)
    return out


def _decimal_text(value: Decimal) -> str:
    # 指数表記を避けつつ末尾ゼロを除去
    text = format(value.normalize(), "f")
    if "." in text:
        text = text.rstrip("0").rstrip(".")
    return text or "0"


def _number_text(value: Any) -> str:
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if isinstance(value, float):
        return _decimal_text(Decimal(repr(value)))
    return str(value)


def _to_float(text: str) -> float | None:
    try:
        d = Decimal(text)
    except InvalidOperation:
        return None
    if not d.is_finite():
        return None
    return float(d)


# ---------------------------------------------------------------------------
# parsers
# ---------------------------------------------------------------------------

_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
_URL_RE = re.compile(r"^(?:[a-zA-Z][a-zA-Z0-9+.-]*://)?[^\s/.]+(?:\.[^\s/.]+)+(?:[/?#]\S*)?$")
_PHONE_RE = re.compile(r"^\+?[\d\s().\-]*\d[\d\s().\-]*(?:\s*(?:x|ext\.?)\s*\d+)?$", re.IGNORECASE)
_PLAIN_NUMBER_RE = re.compile(r"^[-+]?(?:\d+\.?\d*|\.\d+)(?:[eE][-+]?\d+)?$")
_GROUPED_NUMBER_RE = re.compile(r"^[-+]?\d{1,3}(?:,\d{3})+(?:\.\d+)?$")
_CURRENCY_RE = re.compile(
    r"^(?P<sign>[-+])?\s*(?P<symbol>[^\d\s.,+-]{1,3})?\s*(?P<sign2>-)?\s*"
    r"(?P<num>\d{1,3}(?:,\d{3})+(?:\.\d+)?|\d+\.?\d*|\.\d+)\s*(?P<suffix>[^\d\s.,+-]{1,3})?$"
)
_PERCENT_RE = re.compile(r"^(?P<num>[-+]?(?:\d+\.?\d*|\.\d+))\s*%?$")
_DURATION_RE = re.compile(r"^(?P<h>\d+):(?P<m>[0-5]?\d)(?::(?P<s>[0-5]?\d(?:\.\d+)?))?$")
_HAS_DIGIT_RE = re.compile(r"\d")

_TRUTHY = frozenset({"true", "yes", "y", "1", "checked", "x", "on", "✓", "✔"})
_FALSY = frozenset({"false", "no", "n", "0", "unchecked", "off"})


def _parse_text(text: str, column: Column) -> str | None:
    return text


def _parse_email(text: str, column: Column) -> str | None:
    value = text.strip()
    return value if _EMAIL_RE.match(value) else None


def _parse_url(text: str, column: Column) -> str | None:
    value = text.strip()
    return value if _URL_RE.match(value) else None


def _parse_phone(text: str, column: Column) -> str | None:
    value = text.strip()
    return value if _PHONE_RE.match(value) else None


def _parse_number(text: str, column: Column) -> float | None:
    value = text.strip()
    if _GROUPED_NUMBER_RE.match(value):
        value = value.replace(",", "")
    elif not _PLAIN_NUMBER_RE.match(value):
        return None
    return _to_float(value)


def _parse_currency(text: str, column: Column) -> float | None:
    m = _CURRENCY_RE.match(text.strip())
    if not m:
        return None
    if m.group("symbol") and m.group("suffix"):
        return None
    number = _to_float(m.group("num").replace(",", ""))
    if number is None:
        return None
    if m.group("sign") == "-" or m.group("sign2"):
        number = -number
    return number


def _parse_percent(text: str, column: Column) -> float | None:
    m = _PERCENT_RE.match(text.strip())
    if not m:
        return None
    return float(Decimal(m.group("num")) / 100)


def _parse_rating(text: str, column: Column) -> int | None:
    try:
        d = Decimal(text.strip())
    except InvalidOperation:
        return None
    if not d.is_finite() or d != d.to_integral_value():
        return None
    value = int(d)
    # "0" は未評価として 0 を返す (None にしない)
    if value == 0:
        return 0
    if 1 <= value <= column.max_rating:
        return value
    return None


def _parse_duration(text: str, column: Column) -> int | float | None:
    value = text.strip()
    m = _DURATION_RE.match(value)
    if m:
        total = Decimal(m.group("h")) * 3600 + Decimal(m.group("m")) * 60 + Decimal(m.group("s") or 0)
    elif _PLAIN_NUMBER_RE.match(value):
        try:
            total = Decimal(value)
        except InvalidOperation:
            return None
        if not total.is_finite() or total < 0:
            return None
    else:
        return None
    if total == total.to_integral_value():
        return int(total)
    return float(total)


def _parse_checkbox(text: str, column: Column) -> bool | None:
    value = text.strip().lower()
    if value in _TRUTHY:
        return True
    if value in _FALSY:
        return False
    return None


def _to_timestamp(text: str, utc: bool) -> pd.Timestamp | None:
    text = text.strip()
    if not _HAS_DIGIT_RE.search(text):
        # pandas は "now" / "today" を実行時刻として解釈する: 相対表現は変換失敗
        return None
    try:
        ts = pd.to_datetime(text, utc=utc)
    except (ValueError, TypeError, OverflowError):
        return None
    if pd.isna(ts):
        return None
    return ts


def _parse_date(text: str, column: Column) -> str | None:
    ts = _to_timestamp(text, utc=False)
    if ts is None:
        return None
    return ts.strftime("%Y-%m-%d")


def _parse_date_time(text: str, column: Column) -> str | None:
    ts = _to_timestamp(text, utc=True)
    if ts is None:
        return None
    return f"{ts.strftime('%Y-%m-%dT%H:%M:%S')}.{ts.microsecond // 1000:03d}Z"


def _match_choice(name: str, column: Column) -> str | None:
    needle = name.strip().lower()
    for choice in column.choices:
        if choice.lower() == needle:
            return choice
    return None


def _parse_single_select(text: str, column: Column) -> str | None:
    return _match_choice(text, column)


def _parse_multiple_selects(text: str, column: Column) -> list[str] | None:
    names = _split_names(text)
    if not names:
        return None
    matched = [_match_choice(n, column) for n in names]
    # 1 つでも未知の選択肢があればセル全体を失敗扱い
    if any(m is None for m in matched):
        return None
    return _unique(matched)


def _match_collaborator(text: str, column: Column) -> str | None:
    needle = text.strip().lower()
    for person in column.collaborators:
        if person.email.lower() == needle:
            return person.email
    for person in column.collaborators:
        if person.name and person.name.lower() == needle:
            return person.email
    return None


def _parse_single_collaborator(text: str, column: Column) -> str | None:
    return _match_collaborator(text, column)


def _parse_multiple_collaborators(text: str, column: Column) -> list[str] | None:
    names = _split_names(text)
    if not names:
        return None
    matched = [_match_collaborator(n, column) for n in names]
    if any(m is None for m in matched):
        return None
    return _unique(matched)


def _parse_record_links(text: str, column: Column) -> list[LinkRef] | None:
    flattened = re.sub(r"\r\n|\r|\n", " ", text)
    try:
        parts = split_delimited_row(flattened)
    except (csv.Error, ValueError) as e:
        raise LinkValueError(f"could not parse linked record names from {text!r}: {e}") from e
    names = _unique([p.strip() for p in parts if p.strip()])
    if not names:
        return None
    return [LinkRef(name=n) for n in names]


# ---------------------------------------------------------------------------
# formatters
# ---------------------------------------------------------------------------

def _format_str(value: Any, column: Column) -> str:
    return str(value)


def _format_number(value: Any, column: Column) -> str:
    return _number_text(value)


def _format_percent(value: Any, column: Column) -> str:
    return _decimal_text(Decimal(repr(float(value))) * 100) + "%"


def _format_duration(value: Any, column: Column) -> str:
    total = Decimal(repr(value)) if isinstance(value, float) else Decimal(value)
    hours, rest = divmod(total, 3600)
    minutes, seconds = divmod(rest, 60)
    if seconds == 0:
        return f"{int(hours)}:{int(minutes):02d}"
    if seconds == seconds.to_integral_value():
        return f"{int(hours)}:{int(minutes):02d}:{int(seconds):02d}"
    whole = int(seconds)
    frac = _decimal_text(seconds - whole)[1:]  # "0.5" -> ".5"
    return f"{int(hours)}:{int(minutes):02d}:{whole:02d}{frac}"


def _format_checkbox(value: Any, column: Column) -> str:
    return "true" if value else "false"


def _format_list(value: Any, column: Column) -> str:
    return _join_delimited([str(v) for v in value])


def _format_links(value: Any, column: Column) -> str:
    return _join_delimited([ref.name if ref.name is not None else str(ref.id) for ref in value])


_SELECT_HELP = "Create the missing options in the field settings before importing."
_COLLABORATOR_HELP = "Invite the missing collaborators to the base before importing."

FIELD_CONFIG_BY_TYPE: dict[ColumnType, FieldConfig] = {
    cfg.key: cfg
    for cfg in (
        FieldConfig(ColumnType.SINGLE_LINE_TEXT, _parse_text, _format_str),
        FieldConfig(ColumnType.EMAIL, _parse_email, _format_str),
        FieldConfig(ColumnType.URL, _parse_url, _format_str),
        FieldConfig(ColumnType.MULTILINE_TEXT, _parse_text, _format_str),
        FieldConfig(ColumnType.NUMBER, _parse_number, _format_number),
        FieldConfig(ColumnType.CURRENCY, _parse_currency, _format_number),
        FieldConfig(ColumnType.PERCENT, _parse_percent, _format_percent),
        FieldConfig(ColumnType.SINGLE_SELECT, _parse_single_select, _format_str, _SELECT_HELP),
        FieldConfig(ColumnType.MULTIPLE_SELECTS, _parse_multiple_selects, _format_list, _SELECT_HELP),
        FieldConfig(ColumnType.SINGLE_COLLABORATOR, _parse_single_collaborator, _format_str, _COLLABORATOR_HELP),
        FieldConfig(ColumnType.MULTIPLE_COLLABORATORS, _parse_multiple_collaborators, _format_list, _COLLABORATOR_HELP),
        FieldConfig(ColumnType.MULTIPLE_RECORD_LINKS, _parse_record_links, _format_links),
        FieldConfig(ColumnType.DATE, _parse_date, _format_str),
        FieldConfig(ColumnType.DATE_TIME, _parse_date_time, _format_str),
        FieldConfig(ColumnType.PHONE_NUMBER, _parse_phone, _format_str),
        FieldConfig(ColumnType.CHECKBOX, _parse_checkbox, _format_checkbox),
        FieldConfig(ColumnType.RATING, _parse_rating, _format_number),
        FieldConfig(ColumnType.DURATION, _parse_duration, _format_duration),
    )
}


def _config_for(column_type: ColumnType) -> FieldConfig:
    try:
        return FIELD_CONFIG_BY_TYPE[column_type]
    except KeyError:
        raise UnsupportedColumnTypeError(column_type.value) from None


def convert(raw_value: Any, column: Column) -> Any:
    """Convert a raw cell value into the typed value for ``column``.

    Returns None both for empty input and for values that fail to parse.
    Raises LinkValueError for malformed link cells and
    UnsupportedColumnTypeError for column types outside the registry.
    """
    cfg = _config_for(column.type)
    text = _stringify(raw_value)
    if text.strip() == "":
        return None
    return cfg.parse(text, column)


def format_value(value: Any, column: Column) -> str:
    """Render a typed value in the display form accepted back by ``convert``."""
    if value is None:
        return ""
    return _config_for(column.type).format(value, column)


def help_message(column_type: ColumnType) -> str | None:
    cfg = FIELD_CONFIG_BY_TYPE.get(column_type)
    return cfg.help_message if cfg else None
