from enum import Enum


class EntityType(str, Enum):
    PROCEDURE = "procedure"
    COMPLICATION = "complication"
    MEDICATION = "medication"


class OriginSource(str, Enum):
    PATTERN = "pattern"
    LLM = "llm"


class MarkerKind(str, Enum):
    POD = "POD"  # Post-operative day
    HD = "HD"  # Hospital day


class DateSource(str, Enum):
    EXPLICIT = "explicit"  # Calendar date written next to the mention
    POD_RESOLVED = "pod_resolved"  # Anchor + POD offset
    HD_RESOLVED = "hd_resolved"  # Admission + HD offset
    INFERRED = "inferred"  # Placed by the timeline heuristics
    UNRESOLVED = "unresolved"


class MergeSource(str, Enum):
    PATTERN = "pattern"
    LLM = "llm"
    COMBINED = "combined"
    MIXED = "mixed"
    NONE = "none"


class TimelineEventType(str, Enum):
    ONSET = "onset"
    ADMISSION = "admission"
    PROCEDURE = "procedure"
    COMPLICATION = "complication"
    MEDICATION = "medication"
    IMAGING = "imaging"
    DISCHARGE = "discharge"


# Tie-break rank for events sharing a date (lower sorts first).
TIMELINE_PRIORITY: dict[TimelineEventType, int] = {
    TimelineEventType.ONSET: 1,
    TimelineEventType.ADMISSION: 2,
    TimelineEventType.PROCEDURE: 3,
    TimelineEventType.COMPLICATION: 4,
    TimelineEventType.MEDICATION: 5,
    TimelineEventType.IMAGING: 6,
    TimelineEventType.DISCHARGE: 7,
}
