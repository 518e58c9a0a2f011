"""
Unit tests for schema validator.
"""
from __future__ import annotations

from datetime import date

from packages.shared.models import (
    EntityType,
    ReferenceDateSet,
    ResolvedEvent,
    Timeline,
)
from packages.shared.schema_validator import validate_timeline
from apps.engine.steps.step04_timeline import build_timeline


def test_validate_empty_timeline():
    is_valid, errors = validate_timeline(Timeline().model_dump(mode="json"))
    assert is_valid, errors


def test_validate_built_timeline():
    events = [
        ResolvedEvent(
            entity_type=EntityType.PROCEDURE,
            canonical_name="craniotomy",
            date=date(2024, 10, 2),
            confidence=0.8,
            member_mention_ids=frozenset({"m1", "m2"}),
        ),
        ResolvedEvent(entity_type=EntityType.MEDICATION, canonical_name="keppra", confidence=0.6),
    ]
    ref = ReferenceDateSet(admission=date(2024, 10, 1), discharge=date(2024, 10, 5))
    timeline, _ = build_timeline(events, ref)
    is_valid, errors = validate_timeline(timeline.model_dump(mode="json"))
    assert is_valid, errors


def test_validate_timeline_invalid():
    data = Timeline().model_dump(mode="json")
    data["entries"] = [{"event_type": "surgery", "name": "x", "date": "10/01/2024",
                        "date_source": "explicit", "confidence": 2, "priority": 9}]
    is_valid, errors = validate_timeline(data)
    assert not is_valid
    assert len(errors) >= 4
    assert all(e.startswith("entry 0 (x)") for e in errors)
    assert any(e.startswith("entry 0 (x)→confidence") for e in errors)


def test_validate_missing_metadata():
    is_valid, errors = validate_timeline({"entries": [], "reference_dates": {}})
    assert not is_valid
    assert any(e.startswith("timeline: ") and "metadata" in e for e in errors)
