"""
Step 4 — Chronological timeline assembly.

Places clustered events (plus reference-date anchors and imaging findings)
on one ordered timeline: infers missing dates, sorts, drops exact
duplicates, annotates neighbour relationships and scores completeness.
"""
from __future__ import annotations

import logging
from datetime import date, timedelta

from packages.shared.models import (
    TIMELINE_PRIORITY,
    Completeness,
    DateRange,
    DateSource,
    EngineConfig,
    EventContext,
    ImagingFinding,
    ReferenceDateSet,
    ResolvedEvent,
    Timeline,
    TimelineEntry,
    TimelineEventType,
    TimelineMetadata,
    Warning,
)

logger = logging.getLogger(__name__)

_DEFAULT_CONFIG = EngineConfig()


def _entry(
    event_type: TimelineEventType,
    name: str,
    when: date | None,
    date_source: DateSource,
    confidence: float = 1.0,
    reference_count: int = 0,
    member_mention_ids: frozenset[str] = frozenset(),
) -> TimelineEntry:
    return TimelineEntry(
        event_type=event_type,
        name=name,
        date=when,
        date_source=date_source,
        confidence=confidence,
        priority=TIMELINE_PRIORITY[event_type],
        reference_count=reference_count,
        member_mention_ids=member_mention_ids,
    )


def _collect_entries(
    events: list[ResolvedEvent],
    ref: ReferenceDateSet,
    imaging: list[ImagingFinding],
    config: EngineConfig,
) -> list[TimelineEntry]:
    entries: list[TimelineEntry] = []
    if config.include_reference_events and ref.ictus:
        entries.append(_entry(TimelineEventType.ONSET, "Symptom onset", ref.ictus, DateSource.EXPLICIT))
    if config.include_reference_events and ref.admission:
        entries.append(
            _entry(TimelineEventType.ADMISSION, "Hospital admission", ref.admission, DateSource.EXPLICIT)
        )

    for event in events:
        entries.append(_entry(
            TimelineEventType(event.entity_type.value),
            event.canonical_name,
            event.date,
            event.date_source if event.date else DateSource.UNRESOLVED,
            confidence=event.confidence,
            reference_count=event.reference_count,
            member_mention_ids=event.member_mention_ids,
        ))

    for finding in imaging:
        entries.append(_entry(
            TimelineEventType.IMAGING,
            finding.description,
            finding.date,
            DateSource.EXPLICIT if finding.date else DateSource.UNRESOLVED,
        ))

    if config.include_reference_events and ref.discharge:
        entries.append(
            _entry(TimelineEventType.DISCHARGE, "Hospital discharge", ref.discharge, DateSource.EXPLICIT)
        )
    return entries


def _infer_dates(
    entries: list[TimelineEntry],
    ref: ReferenceDateSet,
    config: EngineConfig,
) -> list[TimelineEntry]:
    """Fill undated procedures and complications. Other types stay undated."""
    known_procedures = [
        e.date for e in entries
        if e.event_type == TimelineEventType.PROCEDURE and e.date is not None
    ]
    known_procedures.extend(ref.all_procedure_dates)
    if ref.first_procedure_date:
        known_procedures.append(ref.first_procedure_date)
    latest_procedure = max(known_procedures) if known_procedures else None

    if ref.admission and ref.discharge and ref.discharge >= ref.admission:
        procedure_guess = ref.admission + timedelta(days=(ref.discharge - ref.admission).days // 2)
    elif ref.admission:
        procedure_guess = ref.admission + timedelta(days=config.procedure_default_offset_days)
    else:
        procedure_guess = None

    complication_guess = (
        latest_procedure + timedelta(days=config.complication_offset_days)
        if latest_procedure else None
    )

    inferred: list[TimelineEntry] = []
    for entry in entries:
        guess = None
        if entry.date is None and entry.event_type == TimelineEventType.PROCEDURE:
            guess = procedure_guess
        elif entry.date is None and entry.event_type == TimelineEventType.COMPLICATION:
            guess = complication_guess
        if guess is not None:
            entry = entry.model_copy(update={"date": guess, "date_source": DateSource.INFERRED})
        inferred.append(entry)
    return inferred


def _sort_entries(entries: list[TimelineEntry]) -> list[TimelineEntry]:
    indexed = list(enumerate(entries))
    indexed.sort(key=lambda pair: (
        pair[1].date is None,
        pair[1].date or date.min,
        pair[1].priority,
        pair[0],
    ))
    return [entry for _, entry in indexed]


def _dedup_entries(entries: list[TimelineEntry]) -> list[TimelineEntry]:
    seen: set[tuple[str, str, str]] = set()
    unique: list[TimelineEntry] = []
    for entry in entries:
        key = (
            entry.event_type.value,
            entry.name,
            entry.date.isoformat() if entry.date else "nodate",
        )
        if key not in seen:
            seen.add(key)
            unique.append(entry)
    return unique


def temporal_relation(days: int) -> str:
    if days == 0:
        return "same day"
    if days == 1:
        return "next day"
    if days <= 3:
        return "shortly after"
    if days <= 7:
        return "days later"
    return "weeks later"


def _annotate(entries: list[TimelineEntry]) -> list[TimelineEntry]:
    annotated: list[TimelineEntry] = []
    last = len(entries) - 1
    for i, entry in enumerate(entries):
        prev = entries[i - 1] if i > 0 else None
        nxt = entries[i + 1] if i < last else None
        context = EventContext(
            is_first=i == 0,
            is_last=i == last,
            previous_event_type=prev.event_type if prev else None,
            next_event_type=nxt.event_type if nxt else None,
        )
        if prev is not None and prev.date and entry.date:
            days = (entry.date - prev.date).days
            context.days_since_previous = days
            context.temporal_relation = temporal_relation(days)
        annotated.append(entry.model_copy(update={"context": context}))
    return annotated


def _metadata(entries: list[TimelineEntry]) -> TimelineMetadata:
    dated = [e.date for e in entries if e.date is not None]
    date_range = DateRange()
    if dated:
        start, end = min(dated), max(dated)
        date_range = DateRange(start=start, end=end, duration_days=(end - start).days)
    total = len(entries)
    completeness = Completeness(
        score=round(len(dated) / total * 100, 1) if total else 0.0,
        with_dates=len(dated),
        total=total,
        inferred=sum(1 for e in entries if e.date_source == DateSource.INFERRED),
    )
    return TimelineMetadata(total_events=total, date_range=date_range, completeness=completeness)


def build_timeline(
    events: list[ResolvedEvent],
    reference_dates: ReferenceDateSet | None = None,
    config: EngineConfig | None = None,
    imaging: list[ImagingFinding] | None = None,
) -> tuple[Timeline, list[Warning]]:
    """
    Assemble the ordered timeline for one document.
    Returns (Timeline, warnings); entries that still lack a date are kept
    at the end and reported.
    """
    cfg = config or _DEFAULT_CONFIG
    ref = reference_dates or ReferenceDateSet()
    warnings: list[Warning] = []

    entries = _collect_entries(events, ref, imaging or [], cfg)
    entries = _infer_dates(entries, ref, cfg)
    entries = _dedup_entries(_sort_entries(entries))
    entries = _annotate(entries)

    for entry in entries:
        if entry.date is None:
            warnings.append(Warning(
                code="EVENT_UNDATED",
                message=f"{entry.event_type.value} '{entry.name}' could not be dated",
            ))

    timeline = Timeline(entries=entries, reference_dates=ref, metadata=_metadata(entries))
    logger.info(
        f"Timeline built: {timeline.metadata.total_events} entries, "
        f"completeness {timeline.metadata.completeness.score}% "
        f"({timeline.metadata.completeness.inferred} inferred)"
    )
    return timeline, warnings
