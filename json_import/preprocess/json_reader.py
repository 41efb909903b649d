from __future__ import annotations

import copy
import json
import logging
from pathlib import Path
from typing import Any

import pandas as pd

from ..models.row_data import ParsedData

"""JSON document -> header + value lines.

Pipeline (each step usable on its own):
    read_json_file      parse the file (invalid JSON -> JsonInputError)
    extract_records     optional dotted path to the record array
    filter_arrays       drop nested objects / arrays of objects per record
    to_headers_values   flatten through a pandas DataFrame into string cells
    split_headers       first line as headers, or synthesized "Column N" labels

Structural problems (empty document, no record array, too many rows) raise
JsonInputError with an operator facing message.
"""

logger = logging.getLogger(__name__)

__all__ = [
    "JsonInputError",
    "extract_records",
    "filter_arrays",
    "load_parsed_data",
    "read_json_file",
    "split_headers",
    "to_headers_values",
]


class JsonInputError(Exception):
    pass


def read_json_file(path: Path) -> Any:
    try:
        text = path.read_text(encoding="utf-8-sig")
    except OSError as e:
        raise JsonInputError(f"could not read {path}: {e}") from e
    if not text.strip():
        raise JsonInputError("The JSON file you uploaded was empty.")
    try:
        return json.loads(text)
    except json.JSONDecodeError as e:
        raise JsonInputError("There was an error parsing the JSON file, please try again.") from e


def extract_records(data: Any, record_path: str | None = None) -> Any:
    """Follow a dotted key path (``a.b.0.c``) into ``data``.

    Not JSONPath: each segment is a dict key, or an integer index into a list.
    When the path walks across a list of containers the result is flattened one
    level, e.g. ``groups.items`` over ``{"groups": [{"items": [..]}, ..]}``.
    """
    if not record_path:
        return data
    current: list[Any] = [data]
    fanned_out = False
    for segment in record_path.split("."):
        nxt: list[Any] = []
        for node in current:
            if isinstance(node, dict):
                if segment in node:
                    nxt.append(node[segment])
            elif isinstance(node, list):
                if segment.isdigit():
                    index = int(segment)
                    if index < len(node):
                        nxt.append(node[index])
                else:
                    fanned_out = True
                    nxt.extend(item[segment] for item in node if isinstance(item, dict) and segment in item)
        current = nxt
        if not current:
            raise JsonInputError(f"The path '{record_path}' did not match anything in the JSON file.")
    if not fanned_out and len(current) == 1:
        return current[0]
    flattened: list[Any] = []
    for value in current:
        if isinstance(value, list):
            flattened.extend(value)
        else:
            flattened.append(value)
    return flattened


def filter_arrays(data: Any) -> Any:
    """Remove object values and arrays containing objects from every record.

    Works on a copy; non-list input is returned unchanged.
    """
    if not isinstance(data, list):
        return data
    result = []
    for item in data:
        if not isinstance(item, dict):
            result.append(copy.deepcopy(item))
            continue
        kept = {}
        for key, value in item.items():
            if isinstance(value, dict):
                continue
            if isinstance(value, list) and any(isinstance(v, dict) for v in value):
                continue
            kept[key] = copy.deepcopy(value)
        result.append(kept)
    return result


def _cell_text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float):
        if pd.isna(value):
            return ""
        if value.is_integer():
            return str(int(value))
        return repr(value)
    if isinstance(value, list):
        return ",".join(_cell_text(v) for v in value)
    return str(value)


def to_headers_values(data: list[Any]) -> list[list[str]]:
    """Flatten records into string lines.

    A list of objects yields a header line (union of keys in first-seen order)
    followed by one line per object. A list of lists yields the lines as is.
    """
    if not data:
        return []
    if all(isinstance(item, dict) for item in data):
        frame = pd.DataFrame(data, dtype=object)
        # 欠損キーは NaN になるので _cell_text で空文字へ
        headers = [str(c) for c in frame.columns]
        lines = [headers]
        for record in frame.itertuples(index=False, name=None):
            lines.append([_cell_text(v) for v in record])
        return lines
    if any(isinstance(item, dict) for item in data):
        raise JsonInputError("The JSON file mixes objects and non-object rows; use a consistent record shape.")
    return [[_cell_text(v) for v in (item if isinstance(item, list) else [item])] for item in data]


def split_headers(parsed: ParsedData, first_line_headers: bool) -> tuple[list[str], list[list[str]]]:
    """Return (headers, value lines)."""
    lines = parsed.lines
    if not lines:
        return [], []
    if first_line_headers:
        return list(lines[0]), [list(line) for line in lines[1:]]
    width = max(len(line) for line in lines)
    return [f"Column {i + 1}" for i in range(width)], [list(line) for line in lines]


def load_parsed_data(path: Path, record_path: str | None = None, max_rows: int = 15000) -> ParsedData:
    data = read_json_file(path)
    data = extract_records(data, record_path)
    if not isinstance(data, list):
        raise JsonInputError("The JSON file must contain an array of records at the top level.")
    if not data:
        raise JsonInputError("The JSON file you uploaded was empty.")
    lines = to_headers_values(filter_arrays(data))
    if len(lines) > max_rows:
        raise JsonInputError(f"The JSON file cannot contain more than {max_rows:,} rows.")
    logger.debug("parsed %s: lines=%s width=%s", path.name, len(lines), len(lines[0]) if lines else 0)
    return ParsedData(lines=lines, source_name=path.name)
