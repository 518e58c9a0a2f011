"""
Validate serialised timelines against the clinical timeline JSON schema.
"""
from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import jsonschema

_SCHEMA_PATH = Path(__file__).resolve().parent / "schemas" / "timeline.schema.json"
_schema_cache: dict | None = None


def _load_schema() -> dict:
    global _schema_cache
    if _schema_cache is None:
        with open(_SCHEMA_PATH, "r", encoding="utf-8") as f:
            _schema_cache = json.load(f)
    return _schema_cache


def _location(path: list, data: dict[str, Any]) -> str:
    """'entry 3 (craniotomy) → confidence' for entry errors, the dotted path otherwise."""
    if len(path) >= 2 and path[0] == "entries" and isinstance(path[1], int):
        entries = data.get("entries") or []
        entry = entries[path[1]] if path[1] < len(entries) else None
        name = entry.get("name") if isinstance(entry, dict) else None
        label = f"entry {path[1]} ({name})" if name else f"entry {path[1]}"
        return "→".join([label] + [str(p) for p in path[2:]])
    return "→".join(str(p) for p in path) or "timeline"


def validate_timeline(data: dict[str, Any]) -> tuple[bool, list[str]]:
    """
    Validate *data* (``Timeline.model_dump(mode="json")``) against the schema.
    Returns (is_valid, list_of_error_messages); entry errors name the entry.
    """
    schema = _load_schema()
    validator = jsonschema.Draft202012Validator(schema)
    errors = sorted(validator.iter_errors(data), key=lambda e: [str(p) for p in e.absolute_path])
    messages = [f"{_location(list(e.absolute_path), data)}: {e.message}" for e in errors]
    return (len(messages) == 0, messages)
