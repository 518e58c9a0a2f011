import os
from datetime import date as date_type
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field

from .common import DateRange, ReferenceDateSet, TemporalContext, TemporalMarker
from .enums import (
    DateSource,
    EntityType,
    MergeSource,
    OriginSource,
    TimelineEventType,
)


def _parse_float_env(name: str, default: float) -> float:
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def _parse_int_env(name: str, default: int) -> int:
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _parse_bool_env(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


class Warning(BaseModel):
    code: str
    message: str
    document_id: Optional[str] = None
    mention_id: Optional[str] = None


class EngineConfig(BaseModel):
    """Thresholds and heuristics for one pipeline run."""
    cluster_merge_threshold: float = 0.75
    same_date_merge_threshold: float = 0.6
    reference_link_threshold: float = 0.6
    reference_date_match_score: float = 0.95
    strong_name_match: float = 0.8
    strong_name_discount: float = 0.9
    llm_confidence_threshold: float = 0.75
    unlinked_reference_confidence_cap: float = 0.3
    context_window_chars: int = 100
    procedure_default_offset_days: int = 2
    complication_offset_days: int = 5
    jaccard_weight: float = 0.4
    edit_weight: float = 0.2
    concept_weight: float = 0.4
    combine_arrays: bool = True
    include_reference_events: bool = True
    validate_output: bool = True

    @classmethod
    def from_env(cls) -> "EngineConfig":
        """Build a config from TIMELINE_* environment variables, falling back to defaults."""
        d = cls()
        return cls(
            cluster_merge_threshold=_parse_float_env("TIMELINE_CLUSTER_THRESHOLD", d.cluster_merge_threshold),
            same_date_merge_threshold=_parse_float_env("TIMELINE_SAME_DATE_THRESHOLD", d.same_date_merge_threshold),
            reference_link_threshold=_parse_float_env("TIMELINE_REFERENCE_THRESHOLD", d.reference_link_threshold),
            reference_date_match_score=_parse_float_env("TIMELINE_REFERENCE_DATE_SCORE", d.reference_date_match_score),
            llm_confidence_threshold=_parse_float_env("TIMELINE_LLM_THRESHOLD", d.llm_confidence_threshold),
            unlinked_reference_confidence_cap=_parse_float_env(
                "TIMELINE_UNLINKED_CONFIDENCE_CAP", d.unlinked_reference_confidence_cap
            ),
            context_window_chars=_parse_int_env("TIMELINE_CONTEXT_WINDOW", d.context_window_chars),
            procedure_default_offset_days=_parse_int_env(
                "TIMELINE_PROCEDURE_OFFSET_DAYS", d.procedure_default_offset_days
            ),
            complication_offset_days=_parse_int_env("TIMELINE_COMPLICATION_OFFSET_DAYS", d.complication_offset_days),
            combine_arrays=_parse_bool_env("TIMELINE_COMBINE_ARRAYS", d.combine_arrays),
            include_reference_events=_parse_bool_env("TIMELINE_REFERENCE_EVENTS", d.include_reference_events),
            validate_output=_parse_bool_env("TIMELINE_VALIDATE_OUTPUT", d.validate_output),
        )


# ── Mentions ─────────────────────────────────────────────────────────────


class CandidateMention(BaseModel):
    """One raw hit from an upstream extractor (pattern matcher or LLM)."""
    model_config = ConfigDict(frozen=True)

    mention_id: str = Field(min_length=1)
    entity_type: EntityType
    raw_name: str
    source_offset: int = Field(ge=0)
    explicit_date_text: Optional[str] = None
    temporal_marker: Optional[TemporalMarker] = None
    raw_confidence: float = Field(ge=0.0, le=1.0)
    origin_source: OriginSource = OriginSource.PATTERN


class AnnotatedMention(BaseModel):
    model_config = ConfigDict(frozen=True)

    mention: CandidateMention
    context: TemporalContext


# ── Clustering ───────────────────────────────────────────────────────────


class ResolvedEvent(BaseModel):
    model_config = ConfigDict(frozen=True)

    entity_type: EntityType
    canonical_name: str
    date: Optional[date_type] = None
    date_source: DateSource = DateSource.UNRESOLVED
    confidence: float = Field(ge=0.0, le=1.0)
    member_mention_ids: frozenset[str] = frozenset()
    reference_count: int = Field(default=0, ge=0)
    unlinked_mention_id: Optional[str] = None

    @property
    def is_unlinked_reference(self) -> bool:
        return self.unlinked_mention_id is not None


class DedupStats(BaseModel):
    original: int = 0
    deduplicated: int = 0
    new_events: int = 0
    references: int = 0
    linked_references: int = 0
    unlinked_references: int = 0
    merged_clusters: int = 0
    reduction_percent: float = 0.0


class ClusterResult(BaseModel):
    events: list[ResolvedEvent] = Field(default_factory=list)
    unlinked_mention_ids: list[str] = Field(default_factory=list)
    stats: DedupStats = Field(default_factory=DedupStats)


# ── Cross-source merge ───────────────────────────────────────────────────


class FieldValue(BaseModel):
    value: Any = None
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)


class ExtractionResult(BaseModel):
    """Field name -> (value, confidence) as produced by one extraction path."""
    source: OriginSource
    fields: dict[str, FieldValue] = Field(default_factory=dict)

    @classmethod
    def from_payload(cls, payload: dict | None, source: OriginSource) -> "ExtractionResult":
        """
        Accept the extractor payload shape ``{field: value, ..., "confidence": {field: c}}``.
        Missing or out-of-range confidences are clamped into [0, 1].
        """
        payload = payload or {}
        confidences = payload.get("confidence") or {}
        if not isinstance(confidences, dict):
            confidences = {}
        fields: dict[str, FieldValue] = {}
        for name, value in payload.items():
            if name in ("confidence", "metadata"):
                continue
            try:
                conf = float(confidences.get(name, 0.0) or 0.0)
            except (TypeError, ValueError):
                conf = 0.0
            fields[name] = FieldValue(value=value, confidence=min(max(conf, 0.0), 1.0))
        return cls(source=source, fields=fields)


class FieldMergeRecord(BaseModel):
    model_config = ConfigDict(frozen=True)

    field_name: str
    chosen_source: MergeSource
    chosen_value: Any = None
    alternative_value: Any = None
    confidence: float = 0.0
    reason: str


class MergeSummary(BaseModel):
    overall: float = 0.0
    by_source: dict[str, float] = Field(default_factory=dict)
    field_count: dict[str, int] = Field(default_factory=dict)


class MergeResult(BaseModel):
    merged: dict[str, Any] = Field(default_factory=dict)
    records: list[FieldMergeRecord] = Field(default_factory=list)
    summary: MergeSummary = Field(default_factory=MergeSummary)

    def record_for(self, field_name: str) -> Optional[FieldMergeRecord]:
        for rec in self.records:
            if rec.field_name == field_name:
                return rec
        return None


# ── Timeline ─────────────────────────────────────────────────────────────


class ImagingFinding(BaseModel):
    description: str = Field(min_length=1)
    date: Optional[date_type] = None


class EventContext(BaseModel):
    is_first: bool = False
    is_last: bool = False
    previous_event_type: Optional[TimelineEventType] = None
    next_event_type: Optional[TimelineEventType] = None
    days_since_previous: Optional[int] = None
    temporal_relation: Optional[str] = None


class TimelineEntry(BaseModel):
    model_config = ConfigDict(frozen=True)

    event_type: TimelineEventType
    name: str
    date: Optional[date_type] = None
    date_source: DateSource = DateSource.UNRESOLVED
    confidence: float = 1.0
    priority: int
    reference_count: int = 0
    member_mention_ids: frozenset[str] = frozenset()
    context: Optional[EventContext] = None


class Completeness(BaseModel):
    score: float = 0.0
    with_dates: int = 0
    total: int = 0
    inferred: int = 0


class TimelineMetadata(BaseModel):
    total_events: int = 0
    date_range: DateRange = Field(default_factory=DateRange)
    completeness: Completeness = Field(default_factory=Completeness)


class Timeline(BaseModel):
    entries: list[TimelineEntry] = Field(default_factory=list)
    reference_dates: ReferenceDateSet = Field(default_factory=ReferenceDateSet)
    metadata: TimelineMetadata = Field(default_factory=TimelineMetadata)


# ── Pipeline envelope ────────────────────────────────────────────────────


class DocumentInput(BaseModel):
    document_id: str = Field(min_length=1)
    text: str = ""
    reference_dates: ReferenceDateSet = Field(default_factory=ReferenceDateSet)
    mentions: list[CandidateMention] = Field(default_factory=list)
    pattern_fields: dict[str, Any] = Field(default_factory=dict)
    llm_fields: dict[str, Any] = Field(default_factory=dict)
    pattern_confidence: dict[str, float] = Field(default_factory=dict)
    llm_confidence: dict[str, float] = Field(default_factory=dict)
    imaging: list[ImagingFinding] = Field(default_factory=list)


class DocumentOutput(BaseModel):
    document_id: str
    timeline: Timeline = Field(default_factory=Timeline)
    merged: dict[str, Any] = Field(default_factory=dict)
    merge_records: list[FieldMergeRecord] = Field(default_factory=list)
    merge_summary: MergeSummary = Field(default_factory=MergeSummary)
    cluster_stats: dict[str, DedupStats] = Field(default_factory=dict)
    warnings: list[Warning] = Field(default_factory=list)
