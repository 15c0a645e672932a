# /backend/wardround/services/schema_coercer.py

"""
Schema coercion: sanitized model output -> typed records.

Array kinds keep every element that validates and drop the rest (logged and
reported through ``errors``); partial extraction is an expected outcome of
OCR noise. Object kinds are returned even when sparse. A CoercionError is
raised only when the JSON itself is unusable or has the wrong top-level
shape, and callers turn that into "nothing extracted".
"""

import re
import json
import logging
from typing import Any, List, Optional, Type, Union

from pydantic import BaseModel, ValidationError

from wardround.models.extraction import (
    ARRAY_KINDS,
    ENVELOPE_KEYS,
    RECORD_MODELS,
    ExtractionKind,
)
from wardround.models.records import ChronicDisease, LabResultRecord, ProblemEntry
from wardround.services.date_normalizer import normalize_lab_value

logger = logging.getLogger(__name__)

_CLOSERS = {"{": "}", "[": "]"}

# Lists nested inside object kinds, coerced element-wise
_NESTED_LISTS = {
    ExtractionKind.ADMISSION_NOTE: {
        "problemList": ProblemEntry,
        "extractedLabs": LabResultRecord,
        "chronicDiseases": ChronicDisease,
    },
}


class CoercionError(ValueError):
    """The payload cannot be read as the shape the kind requires."""


def _repair_truncated(text: str) -> str:
    """
    Close whatever a truncated response left open: an unterminated string,
    then brackets and braces in reverse order of opening.
    """
    s = re.sub(r",\s*$", "", text.rstrip())

    stack = []
    in_string = False
    escaped = False
    for char in s:
        if in_string:
            if escaped:
                escaped = False
            elif char == "\\":
                escaped = True
            elif char == '"':
                in_string = False
            continue
        if char == '"':
            in_string = True
        elif char in _CLOSERS:
            stack.append(char)
        elif char in "}]" and stack:
            stack.pop()

    if in_string:
        s += '"'
    s = re.sub(r",\s*$", "", s)
    return s + "".join(_CLOSERS[opener] for opener in reversed(stack))


def parse_json(payload: Any) -> Any:
    """
    Parse sanitized text; already-parsed values pass through.

    Two passes: direct parse, then truncation repair.
    """
    if not isinstance(payload, (str, bytes)):
        return payload

    text = payload.decode("utf-8", errors="replace") if isinstance(payload, bytes) else payload
    text = text.strip()
    if not text:
        raise CoercionError("Empty response")

    try:
        return json.loads(text)
    except json.JSONDecodeError:
        pass

    try:
        return json.loads(_repair_truncated(text))
    except json.JSONDecodeError as e:
        logger.warning(f"All JSON parse passes failed. Raw preview: {text[:300]}")
        raise CoercionError(f"Invalid JSON: {e.msg}") from e


def _describe(error: ValidationError) -> str:
    parts = []
    for item in error.errors():
        location = ".".join(str(part) for part in item.get("loc", ())) or "record"
        parts.append(f"{location}: {item.get('msg')}")
    return "; ".join(parts)


def _validate_items(
    label: str,
    model: Type[BaseModel],
    items: list,
    errors: Optional[List[str]],
    keep_placeholders: bool = False,
) -> list:
    records = []
    for index, item in enumerate(items):
        problem = None
        if not isinstance(item, dict):
            problem = f"expected an object, got {type(item).__name__}"
        else:
            if model is LabResultRecord:
                item = {**item, "value": normalize_lab_value(item.get("value"))}
            try:
                record = model.model_validate(item)
            except ValidationError as e:
                problem = _describe(e)
            else:
                if isinstance(record, LabResultRecord) and record.value is None and not keep_placeholders:
                    problem = "value: Field required"
                else:
                    records.append(record)

        if problem:
            message = f"{label}[{index}] dropped: {problem}"
            logger.warning(message)
            if errors is not None:
                errors.append(message)
    return records


def unwrap(kind: ExtractionKind, data: Any) -> Any:
    """Pull an array kind out of its {"results": [...]} style wrapper."""
    key = ENVELOPE_KEYS.get(kind)
    if isinstance(data, dict) and key and key in data:
        return data[key]
    return data


def coerce_records(kind, payload: Any, errors: Optional[List[str]] = None,
                   keep_placeholders: bool = False) -> list:
    """
    Typed records of an array kind; invalid elements are dropped.

    With ``keep_placeholders`` lab cells with a null value are kept, as a
    reviewed grid-filled batch sends them back.
    """
    kind = ExtractionKind(kind)
    if kind not in ARRAY_KINDS:
        raise CoercionError(f"{kind.value} is not an array kind")

    data = unwrap(kind, parse_json(payload))
    if not isinstance(data, list):
        raise CoercionError(f"Expected a JSON array for {kind.value}, got {type(data).__name__}")

    return _validate_items(kind.value, RECORD_MODELS[kind], data, errors, keep_placeholders)


def coerce_object(kind, payload: Any, errors: Optional[List[str]] = None) -> BaseModel:
    kind = ExtractionKind(kind)
    if kind in ARRAY_KINDS:
        raise CoercionError(f"{kind.value} is not an object kind")

    data = parse_json(payload)
    if not isinstance(data, dict):
        raise CoercionError(f"Expected a JSON object for {kind.value}, got {type(data).__name__}")

    data = dict(data)
    for field, model in _NESTED_LISTS.get(kind, {}).items():
        nested = data.get(field)
        data[field] = _validate_items(
            f"{kind.value}.{field}", model, nested if isinstance(nested, list) else [], errors
        )

    model = RECORD_MODELS[kind]
    try:
        return model.model_validate(data)
    except ValidationError as e:
        # Drop the offending top-level fields and keep the rest
        message = f"{kind.value} fields reset: {_describe(e)}"
        logger.warning(message)
        if errors is not None:
            errors.append(message)
        for item in e.errors():
            if item.get("loc"):
                data.pop(item["loc"][0], None)

    try:
        return model.model_validate(data)
    except ValidationError as e:
        raise CoercionError(f"{kind.value}: {_describe(e)}") from e


def coerce(kind, payload: Any, errors: Optional[List[str]] = None) -> Union[list, BaseModel]:
    """
    Coerce ``payload`` (sanitized JSON text or a parsed value) to the
    record shape of ``kind``.

    Returns a list of records for array kinds and a single record for
    object kinds. Dropped elements are described in ``errors`` when given.
    """
    kind = ExtractionKind(kind)
    if kind in ARRAY_KINDS:
        return coerce_records(kind, payload, errors)
    return coerce_object(kind, payload, errors)
