"""
JSON payloads for cached row lists.

A payload is a JSON object naming the record type and holding one plain
record per row. Suppressed values are written as null and listed by field
name under "suppressed" ("grades.K" for a grade count), so SUPPRESSED
survives a round trip distinct from zero and from missing. Enum fields are
stored by value. Decoding only ever builds the known record types.
"""

import dataclasses
import json
from enum import Enum
from typing import Any, Dict, List, Sequence

from caschooldata.exceptions import CachePayloadError
from caschooldata.processing.assessment import AssessmentRecord
from caschooldata.processing.directory import DirectoryRecord
from caschooldata.processing.graduation import GraduationRecord
from caschooldata.processing.records import LongEnrollmentRow, WideEnrollmentRow
from caschooldata.processing.suppression import SUPPRESSED, Completeness
from caschooldata.utilities.cds_codes import AggregationLevel

RECORD_TYPES = {
    cls.__name__: cls
    for cls in (WideEnrollmentRow, LongEnrollmentRow, GraduationRecord, AssessmentRecord, DirectoryRecord)
}

LEVEL_FIELDS = frozenset({"agg_level", "level"})
GRADE_PREFIX = "grades."


def _plain(value):
    if value is SUPPRESSED:
        return None
    if isinstance(value, Enum):
        return value.value
    return value


def encode_record(row) -> Dict[str, Any]:
    """One dataclass row as a JSON-safe dict with a 'suppressed' field list."""
    record: Dict[str, Any] = {}
    suppressed: List[str] = []
    for field in dataclasses.fields(row):
        value = getattr(row, field.name)
        if value is SUPPRESSED:
            suppressed.append(field.name)
        if field.name == "grades":
            suppressed.extend(f"{GRADE_PREFIX}{label}" for label, count in value if count is SUPPRESSED)
            record[field.name] = [[label, _plain(count)] for label, count in value]
        elif field.name == "completeness" and isinstance(value, tuple):
            record[field.name] = [[name, state.value] for name, state in value]
        else:
            record[field.name] = _plain(value)
    record["suppressed"] = suppressed
    return record


def decode_record(cls, record: Dict[str, Any]):
    """Rebuild a row of type cls from encode_record() output."""
    suppressed = set(record.get("suppressed", ()))
    kwargs = {}
    for field in dataclasses.fields(cls):
        if field.name not in record:
            continue
        value = record[field.name]
        if field.name in suppressed:
            value = SUPPRESSED
        elif field.name in LEVEL_FIELDS and value is not None:
            value = AggregationLevel(value)
        elif field.name == "grades":
            value = tuple(
                (label, SUPPRESSED if f"{GRADE_PREFIX}{label}" in suppressed else count)
                for label, count in value
            )
        elif field.name == "completeness":
            if isinstance(value, list):
                value = tuple((name, Completeness(state)) for name, state in value)
            else:
                value = Completeness(value)
        kwargs[field.name] = value
    return cls(**kwargs)


def dumps_rows(rows: Sequence[Any]) -> bytes:
    """
    Encode a homogeneous row list as UTF-8 JSON.

    Raises:
        TypeError: If rows mix record types or hold an unknown type
    """
    names = {type(row).__name__ for row in rows}
    if len(names) > 1:
        raise TypeError(f"Cannot cache mixed record types: {sorted(names)}")
    record_type = names.pop() if names else None
    if record_type is not None and record_type not in RECORD_TYPES:
        raise TypeError(f"Cannot cache records of type {record_type}")

    document = {
        "record_type": record_type,
        "rows": [encode_record(row) for row in rows],
    }
    return json.dumps(document, separators=(",", ":")).encode("utf-8")


def loads_rows(payload: bytes) -> List[Any]:
    """
    Decode dumps_rows() output.

    Raises:
        CachePayloadError: If the payload is not valid JSON or names an unknown type
    """
    try:
        document = json.loads(payload.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise CachePayloadError(f"Cached payload is not valid JSON: {e}")

    if not isinstance(document, dict) or not isinstance(document.get("rows"), list):
        raise CachePayloadError("Cached payload has no row list")

    record_type = document.get("record_type")
    if record_type is None:
        if document["rows"]:
            raise CachePayloadError("Cached payload has rows but no record type")
        return []
    cls = RECORD_TYPES.get(record_type)
    if cls is None:
        raise CachePayloadError(f"Unknown cached record type: {record_type!r}")

    try:
        return [decode_record(cls, record) for record in document["rows"]]
    except (TypeError, ValueError, AttributeError) as e:
        raise CachePayloadError(f"Cached {record_type} rows do not decode: {e}")
