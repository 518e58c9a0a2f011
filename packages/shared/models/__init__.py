from .enums import (
    TIMELINE_PRIORITY,
    DateSource,
    EntityType,
    MarkerKind,
    MergeSource,
    OriginSource,
    TimelineEventType,
)
from .common import DateRange, ReferenceDateSet, TemporalContext, TemporalMarker
from .domain import (
    AnnotatedMention,
    CandidateMention,
    ClusterResult,
    Completeness,
    DedupStats,
    DocumentInput,
    DocumentOutput,
    EngineConfig,
    EventContext,
    ExtractionResult,
    FieldMergeRecord,
    FieldValue,
    ImagingFinding,
    MergeResult,
    MergeSummary,
    ResolvedEvent,
    Timeline,
    TimelineEntry,
    TimelineMetadata,
    Warning,
)

__all__ = [
    "TIMELINE_PRIORITY",
    "AnnotatedMention",
    "CandidateMention",
    "ClusterResult",
    "Completeness",
    "DateRange",
    "DateSource",
    "DedupStats",
    "DocumentInput",
    "DocumentOutput",
    "EngineConfig",
    "EntityType",
    "EventContext",
    "ExtractionResult",
    "FieldMergeRecord",
    "FieldValue",
    "ImagingFinding",
    "MarkerKind",
    "MergeResult",
    "MergeSource",
    "MergeSummary",
    "OriginSource",
    "ReferenceDateSet",
    "ResolvedEvent",
    "TemporalContext",
    "TemporalMarker",
    "Timeline",
    "TimelineEntry",
    "TimelineEventType",
    "TimelineMetadata",
    "Warning",
]
