"""
Step 3 — Cross-source confidence merge.

Reconciles the deterministic pattern path and the LLM path field by field.
Every top-level field gets exactly one FieldMergeRecord explaining the
decision; the rejected value is kept as ``alternative_value``.
"""
from __future__ import annotations

import json
import logging
from typing import Any

from packages.shared.models import (
    EngineConfig,
    ExtractionResult,
    FieldMergeRecord,
    FieldValue,
    MergeResult,
    MergeSource,
    MergeSummary,
    OriginSource,
)
from apps.engine.lib.items import (
    ENTITY_FIELDS,
    event_to_item,
    item_member_ids,
    item_reference_count,
    item_to_mention,
    item_unlinked_id,
)
from apps.engine.steps.step02_cluster import cluster_mentions

logger = logging.getLogger(__name__)

_DEFAULT_CONFIG = EngineConfig()

_SUMMARY_SOURCES = (MergeSource.LLM, MergeSource.PATTERN, MergeSource.COMBINED, MergeSource.MIXED)


def is_empty_value(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    if isinstance(value, (list, tuple, dict, set)):
        return len(value) == 0
    return False


def _dedup_exact(items: list) -> list:
    seen: set[str] = set()
    unique = []
    for item in items:
        key = json.dumps(item, sort_keys=True, default=str)
        if key not in seen:
            seen.add(key)
            unique.append(item)
    return unique


def _recluster_union(
    field_name: str,
    llm_items: list,
    pattern_items: list,
    llm_conf: float,
    pattern_conf: float,
    config: EngineConfig,
) -> list[dict]:
    """Union of both sources' entity items, folded with the mention clusterer."""
    entity_type = ENTITY_FIELDS[field_name]
    annotated = []
    carried: dict[str, tuple[set[str], int, str | None]] = {}
    offset = 0
    for origin, items, default_conf in (
        (OriginSource.LLM, llm_items, llm_conf),
        (OriginSource.PATTERN, pattern_items, pattern_conf),
    ):
        for i, item in enumerate(items):
            mention_id = f"{origin.value}:{field_name}:{i}"
            am = item_to_mention(item, entity_type, mention_id, offset, origin, default_conf)
            offset += 1
            annotated.append(am)
            carried[mention_id] = (
                set(item_member_ids(item)),
                item_reference_count(item),
                item_unlinked_id(item),
            )

    result, _ = cluster_mentions(annotated, config)

    merged_items: list[dict] = []
    for event in result.events:
        members: set[str] = set()
        ref_count = event.reference_count
        for synthetic_id in sorted(event.member_mention_ids):
            item_members, item_refs, unlinked_id = carried[synthetic_id]
            members.update(item_members)
            if unlinked_id:
                members.add(unlinked_id)
            ref_count += item_refs
        update: dict[str, Any] = {
            "member_mention_ids": frozenset(members),
            "reference_count": ref_count,
        }
        if event.is_unlinked_reference:
            update["unlinked_mention_id"] = (
                carried[event.unlinked_mention_id][2] or event.unlinked_mention_id
            )
        merged_items.append(event_to_item(event.model_copy(update=update)))
    return merged_items


def _merge_arrays(
    field_name: str,
    pattern_value: Any,
    llm_value: Any,
    pattern_conf: float,
    llm_conf: float,
    config: EngineConfig,
) -> tuple[Any, FieldMergeRecord]:
    pattern_arr = list(pattern_value) if isinstance(pattern_value, (list, tuple)) else []
    llm_arr = list(llm_value) if isinstance(llm_value, (list, tuple)) else []

    if llm_conf >= config.llm_confidence_threshold and llm_arr:
        return llm_arr, FieldMergeRecord(
            field_name=field_name,
            chosen_source=MergeSource.LLM,
            chosen_value=llm_arr,
            alternative_value=pattern_arr,
            confidence=llm_conf,
            reason="llm confidence above threshold",
        )

    if config.combine_arrays and pattern_arr and llm_arr:
        if field_name in ENTITY_FIELDS:
            combined = _recluster_union(field_name, llm_arr, pattern_arr, llm_conf, pattern_conf, config)
        else:
            combined = _dedup_exact(llm_arr + pattern_arr)
        return combined, FieldMergeRecord(
            field_name=field_name,
            chosen_source=MergeSource.COMBINED,
            chosen_value=combined,
            confidence=max(pattern_conf, llm_conf),
            reason="combined and deduplicated",
        )

    if len(llm_arr) >= len(pattern_arr):
        chosen, alternative, source, conf = llm_arr, pattern_arr, MergeSource.LLM, llm_conf
    else:
        chosen, alternative, source, conf = pattern_arr, llm_arr, MergeSource.PATTERN, pattern_conf
    return chosen, FieldMergeRecord(
        field_name=field_name,
        chosen_source=source,
        chosen_value=chosen,
        alternative_value=alternative,
        confidence=conf,
        reason="longer array",
    )


def _merge_objects(
    field_name: str,
    pattern_obj: dict,
    llm_obj: dict,
    pattern_conf: float,
    llm_conf: float,
    config: EngineConfig,
) -> tuple[dict, FieldMergeRecord]:
    llm_trusted = llm_conf >= config.llm_confidence_threshold
    merged: dict[str, Any] = {}
    keys = list(pattern_obj) + [k for k in llm_obj if k not in pattern_obj]
    for key in keys:
        p_val, l_val = pattern_obj.get(key), llm_obj.get(key)
        if not is_empty_value(l_val) and llm_trusted:
            merged[key] = l_val
        elif not is_empty_value(p_val):
            merged[key] = p_val
        elif not is_empty_value(l_val):
            merged[key] = l_val
        else:
            merged[key] = None
    return merged, FieldMergeRecord(
        field_name=field_name,
        chosen_source=MergeSource.MIXED,
        chosen_value=merged,
        alternative_value=pattern_obj if llm_trusted else llm_obj,
        confidence=max(pattern_conf, llm_conf),
        reason="merged key by key",
    )


def merge_field(
    field_name: str,
    pattern: FieldValue | None,
    llm: FieldValue | None,
    config: EngineConfig | None = None,
) -> tuple[Any, FieldMergeRecord]:
    """
    Choose or combine one field's value from the two extraction paths.
    Returns (merged value, FieldMergeRecord). Never raises on odd shapes.
    """
    cfg = config or _DEFAULT_CONFIG
    p_val = pattern.value if pattern else None
    p_conf = pattern.confidence if pattern else 0.0
    l_val = llm.value if llm else None
    l_conf = llm.confidence if llm else 0.0

    p_empty, l_empty = is_empty_value(p_val), is_empty_value(l_val)
    if p_empty and l_empty:
        return None, FieldMergeRecord(
            field_name=field_name,
            chosen_source=MergeSource.NONE,
            confidence=0.0,
            reason="both sources empty",
        )
    if l_empty:
        return p_val, FieldMergeRecord(
            field_name=field_name,
            chosen_source=MergeSource.PATTERN,
            chosen_value=p_val,
            alternative_value=l_val,
            confidence=p_conf,
            reason="other source empty",
        )
    if p_empty:
        return l_val, FieldMergeRecord(
            field_name=field_name,
            chosen_source=MergeSource.LLM,
            chosen_value=l_val,
            alternative_value=p_val,
            confidence=l_conf,
            reason="other source empty",
        )

    if isinstance(p_val, (list, tuple)) or isinstance(l_val, (list, tuple)):
        return _merge_arrays(field_name, p_val, l_val, p_conf, l_conf, cfg)

    if isinstance(p_val, dict) and isinstance(l_val, dict):
        return _merge_objects(field_name, p_val, l_val, p_conf, l_conf, cfg)

    if l_conf >= cfg.llm_confidence_threshold:
        source, chosen, alternative, conf, reason = (
            MergeSource.LLM, l_val, p_val, l_conf, "llm confidence above threshold"
        )
    elif p_conf > l_conf:
        source, chosen, alternative, conf, reason = (
            MergeSource.PATTERN, p_val, l_val, p_conf, "higher confidence"
        )
    else:
        source, chosen, alternative, conf, reason = (
            MergeSource.LLM, l_val, p_val, l_conf, "higher confidence"
        )
    return chosen, FieldMergeRecord(
        field_name=field_name,
        chosen_source=source,
        chosen_value=chosen,
        alternative_value=alternative,
        confidence=conf,
        reason=reason,
    )


def summarize_merge(records: list[FieldMergeRecord]) -> MergeSummary:
    """Mean decision confidence overall and per winning source."""
    if not records:
        return MergeSummary()

    def _mean(values: list[float]) -> float:
        return round(sum(values) / len(values), 4) if values else 0.0

    by_source: dict[str, float] = {}
    field_count: dict[str, int] = {"total": len(records)}
    for source in _SUMMARY_SOURCES:
        confs = [r.confidence for r in records if r.chosen_source == source and r.confidence > 0]
        by_source[source.value] = _mean(confs)
        field_count[source.value] = len(confs)
    return MergeSummary(
        overall=_mean([r.confidence for r in records]),
        by_source=by_source,
        field_count=field_count,
    )


def merge_extraction_results(
    pattern: ExtractionResult | None,
    llm: ExtractionResult | None,
    config: EngineConfig | None = None,
) -> MergeResult:
    """Merge every field present in either source; pattern field order first."""
    cfg = config or _DEFAULT_CONFIG
    pattern_fields = pattern.fields if pattern else {}
    llm_fields = llm.fields if llm else {}

    names = list(pattern_fields) + [n for n in llm_fields if n not in pattern_fields]
    result = MergeResult()
    for name in names:
        value, record = merge_field(name, pattern_fields.get(name), llm_fields.get(name), cfg)
        result.merged[name] = value
        result.records.append(record)
        logger.debug(f"Merged field '{name}' from {record.chosen_source.value}: {record.reason}")

    result.summary = summarize_merge(result.records)
    logger.info(
        f"Merged {len(result.records)} fields "
        f"(overall confidence {result.summary.overall:.2f})"
    )
    return result
