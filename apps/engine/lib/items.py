"""
Conversions between clustered events and the plain-dict items carried in
extraction payloads (``{"procedures": [{"name": ..., "date": ...}, ...]}``).
"""
from __future__ import annotations

from typing import Any

from packages.shared.models import (
    AnnotatedMention,
    CandidateMention,
    DateSource,
    EntityType,
    OriginSource,
    ResolvedEvent,
    TemporalContext,
)
from apps.engine.lib.dates import coerce_date

ENTITY_FIELDS: dict[str, EntityType] = {
    "procedures": EntityType.PROCEDURE,
    "complications": EntityType.COMPLICATION,
    "medications": EntityType.MEDICATION,
}


def event_to_item(event: ResolvedEvent) -> dict[str, Any]:
    item: dict[str, Any] = {
        "name": event.canonical_name,
        "date": event.date.isoformat() if event.date else None,
        "date_source": event.date_source.value,
        "confidence": round(event.confidence, 4),
        "reference_count": event.reference_count,
        "member_mention_ids": sorted(event.member_mention_ids),
    }
    if event.unlinked_mention_id:
        item["unlinked_mention_id"] = event.unlinked_mention_id
    return item


def _item_name(item: Any) -> str:
    if isinstance(item, dict):
        return str(item.get("name") or item.get("description") or "")
    return str(item or "")


def _item_date_source(item: dict, has_date: bool) -> DateSource:
    raw = item.get("date_source")
    try:
        return DateSource(raw) if raw else (DateSource.EXPLICIT if has_date else DateSource.UNRESOLVED)
    except (TypeError, ValueError):
        return DateSource.EXPLICIT if has_date else DateSource.UNRESOLVED


def item_member_ids(item: Any) -> list[str]:
    """Member ids of an item; anything but a list, tuple or set counts as none."""
    value = item.get("member_mention_ids") if isinstance(item, dict) else None
    if isinstance(value, (list, tuple, set, frozenset)):
        return [str(m) for m in value]
    return []


def item_unlinked_id(item: Any) -> str | None:
    value = item.get("unlinked_mention_id") if isinstance(item, dict) else None
    if value is None:
        return None
    return str(value).strip() or None


def item_reference_count(item: Any) -> int:
    if not isinstance(item, dict):
        return 0
    try:
        return max(int(item.get("reference_count") or 0), 0)
    except (TypeError, ValueError):
        return 0


def _item_confidence(item: Any, default: float) -> float:
    if isinstance(item, dict) and item.get("confidence") is not None:
        try:
            return min(max(float(item["confidence"]), 0.0), 1.0)
        except (TypeError, ValueError):
            return default
    return default


def item_to_event(item: Any, entity_type: EntityType, default_confidence: float = 0.0) -> ResolvedEvent:
    """Accepts either a bare name string or an item dict."""
    data = item if isinstance(item, dict) else {}
    when = coerce_date(data.get("date"))
    return ResolvedEvent(
        entity_type=entity_type,
        canonical_name=_item_name(item).strip(),
        date=when,
        date_source=_item_date_source(data, when is not None),
        confidence=_item_confidence(item, default_confidence),
        member_mention_ids=frozenset(item_member_ids(data)),
        reference_count=item_reference_count(data),
        unlinked_mention_id=item_unlinked_id(data),
    )


def item_to_mention(
    item: Any,
    entity_type: EntityType,
    mention_id: str,
    offset: int,
    origin: OriginSource,
    default_confidence: float = 0.0,
) -> AnnotatedMention:
    """Wrap a payload item as an already-resolved mention for re-clustering."""
    event = item_to_event(item, entity_type, default_confidence)
    mention = CandidateMention(
        mention_id=mention_id,
        entity_type=entity_type,
        raw_name=event.canonical_name,
        source_offset=offset,
        raw_confidence=event.confidence,
        origin_source=origin,
    )
    context = TemporalContext(
        is_reference=event.is_unlinked_reference,
        resolved_date=event.date,
        date_source=event.date_source,
    )
    return AnnotatedMention(mention=mention, context=context)
