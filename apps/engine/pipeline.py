"""
Pipeline orchestrator — resolves, clusters, merges and assembles one
document's timeline; ``run_documents`` fans a batch out over a thread pool.
"""
from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import Any

from packages.shared.models import (
    CandidateMention,
    DocumentInput,
    DocumentOutput,
    EngineConfig,
    EntityType,
    ExtractionResult,
    FieldValue,
    OriginSource,
    ResolvedEvent,
    Warning,
)
from packages.shared.schema_validator import validate_timeline

from apps.engine.lib.items import ENTITY_FIELDS, event_to_item, item_to_event
from apps.engine.steps.step00_validate import validate_mentions, validate_reference_dates
from apps.engine.steps.step01_temporal import annotate_mentions
from apps.engine.steps.step02_cluster import cluster_mentions
from apps.engine.steps.step03_merge import merge_extraction_results
from apps.engine.steps.step04_timeline import build_timeline

logger = logging.getLogger(__name__)

_FIELD_FOR_TYPE = {entity_type: name for name, entity_type in ENTITY_FIELDS.items()}


def _source_result(
    doc: DocumentInput,
    origin: OriginSource,
    mentions: list[CandidateMention],
    config: EngineConfig,
    output: DocumentOutput,
) -> tuple[ExtractionResult, list[Warning]]:
    """Cluster one source's mentions and package them with its scalar fields."""
    if origin == OriginSource.PATTERN:
        payload, confidences = doc.pattern_fields, doc.pattern_confidence
    else:
        payload, confidences = doc.llm_fields, doc.llm_confidence

    annotated = annotate_mentions(mentions, doc.text, doc.reference_dates, config)
    clustered, warnings = cluster_mentions(annotated, config)
    output.cluster_stats[origin.value] = clustered.stats

    by_type: dict[EntityType, list[ResolvedEvent]] = {t: [] for t in EntityType}
    for event in clustered.events:
        by_type[event.entity_type].append(event)

    fields: dict[str, FieldValue] = {}
    for name, value in payload.items():
        fields[name] = FieldValue(value=value, confidence=_clamp(confidences.get(name, 0.0)))

    for entity_type, events in by_type.items():
        name = _FIELD_FOR_TYPE[entity_type]
        if not events and name in fields:
            continue
        if name in confidences:
            conf = _clamp(confidences[name])
        else:
            conf = sum(e.confidence for e in events) / len(events) if events else 0.0
        fields[name] = FieldValue(value=[event_to_item(e) for e in events], confidence=conf)

    return ExtractionResult(source=origin, fields=fields), warnings


def _clamp(value: Any) -> float:
    try:
        return min(max(float(value), 0.0), 1.0)
    except (TypeError, ValueError):
        return 0.0


def _merged_events(merged: dict[str, Any], confidence_by_field: dict[str, float]) -> list[ResolvedEvent]:
    events: list[ResolvedEvent] = []
    for name, entity_type in ENTITY_FIELDS.items():
        items = merged.get(name)
        if not isinstance(items, list):
            continue
        for item in items:
            event = item_to_event(item, entity_type, confidence_by_field.get(name, 0.0))
            if event.canonical_name:
                events.append(event)
    return events


def run_document(doc: DocumentInput, config: EngineConfig | None = None) -> DocumentOutput:
    """
    Execute the full resolution pipeline for one document.
    Malformed input yields warnings, never an exception.
    """
    cfg = config or EngineConfig()
    doc_id = doc.document_id
    output = DocumentOutput(document_id=doc_id)
    all_warnings: list[Warning] = []

    # ── Step 0: Input validation ──────────────────────────────────────
    logger.info(f"[{doc_id}] Step 0: Input validation")
    all_warnings.extend(validate_reference_dates(doc.reference_dates, doc_id))
    mentions, step_warnings = validate_mentions(doc.mentions, doc.text, doc_id)
    all_warnings.extend(step_warnings)

    # ── Steps 1-2: Temporal resolution + clustering, per source ──────
    logger.info(f"[{doc_id}] Steps 1-2: Temporal resolution and clustering")
    results: dict[OriginSource, ExtractionResult] = {}
    for origin in OriginSource:
        source_mentions = [m for m in mentions if m.origin_source == origin]
        results[origin], step_warnings = _source_result(doc, origin, source_mentions, cfg, output)
        all_warnings.extend(step_warnings)

    # ── Step 3: Cross-source merge ────────────────────────────────────
    logger.info(f"[{doc_id}] Step 3: Cross-source merge")
    merge = merge_extraction_results(results[OriginSource.PATTERN], results[OriginSource.LLM], cfg)
    output.merged = merge.merged
    output.merge_records = merge.records
    output.merge_summary = merge.summary

    # ── Step 4: Timeline assembly ─────────────────────────────────────
    logger.info(f"[{doc_id}] Step 4: Timeline assembly")
    confidence_by_field = {r.field_name: r.confidence for r in merge.records}
    events = _merged_events(merge.merged, confidence_by_field)
    timeline, step_warnings = build_timeline(events, doc.reference_dates, cfg, doc.imaging)
    all_warnings.extend(step_warnings)
    output.timeline = timeline

    if cfg.validate_output:
        is_valid, errors = validate_timeline(timeline.model_dump(mode="json"))
        if not is_valid:
            for err in errors[:10]:
                all_warnings.append(Warning(code="SCHEMA_VALIDATION_ERROR", message=err[:500]))
            logger.warning(f"[{doc_id}] Schema validation failed with {len(errors)} errors")

    output.warnings = [
        w if w.document_id else w.model_copy(update={"document_id": doc_id})
        for w in all_warnings
    ]
    logger.info(
        f"[{doc_id}] Pipeline completed: entries={len(timeline.entries)}, "
        f"warnings={len(output.warnings)}"
    )
    return output


def run_documents(
    documents: list[DocumentInput],
    config: EngineConfig | None = None,
    max_workers: int = 4,
) -> list[DocumentOutput]:
    """
    Process a batch of independent documents in parallel, preserving input
    order. A failing document yields an empty output with a DOCUMENT_FAILED
    warning; the rest of the batch is unaffected.
    """
    cfg = config or EngineConfig()
    outputs: list[DocumentOutput | None] = [None] * len(documents)
    if not documents:
        return []

    with ThreadPoolExecutor(max_workers=max(1, max_workers)) as executor:
        future_map = {executor.submit(run_document, doc, cfg): i for i, doc in enumerate(documents)}
        for future in as_completed(future_map):
            i = future_map[future]
            doc_id = documents[i].document_id
            try:
                outputs[i] = future.result()
            except Exception as exc:
                logger.exception(f"[{doc_id}] Pipeline failed: {exc}")
                outputs[i] = DocumentOutput(
                    document_id=doc_id,
                    warnings=[Warning(
                        code="DOCUMENT_FAILED",
                        message=str(exc)[:500],
                        document_id=doc_id,
                    )],
                )

    return [o for o in outputs if o is not None]
