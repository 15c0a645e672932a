# /backend/wardround/utils/privacy.py

import hashlib
from typing import Any, Dict, Iterable

_DROPPED_FIELDS = ("_id", "id", "createdBy", "lastModifiedBy", "createdAt", "updatedAt")

# Identifiers removed wherever they appear in the document
_IDENTIFIER_FIELDS = frozenset({"hn"})

# Objects whose "name" is the patient's own name
_DEMOGRAPHIC_FIELDS = frozenset({"patientDemographics"})


def pseudonym(name: str) -> str:
    """Stable placeholder for a patient name: Patient-<first 8 hex of sha256>."""
    digest = hashlib.sha256((name or "").encode("utf-8")).hexdigest()
    return f"Patient-{digest[:8]}"


def _replace_names(text: str, names: Iterable[str]) -> str:
    for name in names:
        text = text.replace(name, pseudonym(name))
    return text


def _scrub(value: Any, names: Iterable[str]) -> Any:
    if isinstance(value, dict):
        scrubbed = {}
        for key, item in value.items():
            if key in _IDENTIFIER_FIELDS:
                continue
            if key in _DEMOGRAPHIC_FIELDS and isinstance(item, dict):
                item = {**item, "name": pseudonym(item["name"])} if item.get("name") else item
            scrubbed[key] = _scrub(item, names)
        return scrubbed
    if isinstance(value, list):
        return [_scrub(item, names) for item in value]
    if isinstance(value, str):
        return _replace_names(value, names)
    return value


def anonymize_patient(data: Dict[str, Any]) -> Dict[str, Any]:
    """
    Copy of a camelCase patient document that is safe to put in a prompt.

    HNs are dropped at any depth. The patient's name, and the name on any
    scanned demographics, become pseudonyms wherever they occur, free
    text included.
    """
    demographics = (data.get("admissionNote") or {}).get("patientDemographics") or {}
    names = [name.strip() for name in (data.get("name"), demographics.get("name"))
             if isinstance(name, str) and name.strip()]
    # Longest first so a full name is replaced before a part of it
    names = sorted(set(names), key=len, reverse=True)

    anonymized = {key: value for key, value in data.items() if key not in _DROPPED_FIELDS}
    anonymized = _scrub(anonymized, names)
    if data.get("name"):
        anonymized["name"] = pseudonym(data["name"])
    return anonymized
