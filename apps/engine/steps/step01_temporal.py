"""
Step 1 — Temporal context resolution.

For every candidate mention decide whether it reports a NEW event or REFERS
back to one that already happened, and resolve its date:

  explicit   : a full calendar date next to the mention
  POD n      : anchor + n days, anchor = entity's own first explicit date
               (procedures only) → first procedure → admission → ictus
  HD n       : admission + n days
  otherwise  : unresolved, no date is guessed

Referential cues win ties against assertive cues.
"""
from __future__ import annotations

import logging
import re
from datetime import date, timedelta

from packages.shared.models import (
    AnnotatedMention,
    CandidateMention,
    DateSource,
    EngineConfig,
    EntityType,
    MarkerKind,
    ReferenceDateSet,
    TemporalContext,
    TemporalMarker,
)
from apps.engine.lib.dates import closest_date, parse_date_text
from apps.engine.lib.similarity import safe_similarity

logger = logging.getLogger(__name__)

_DEFAULT_CONFIG = EngineConfig()

# ── Cue patterns ─────────────────────────────────────────────────────────

_REFERENCE_CUES = [
    r"\bs/p\b",
    r"\bstatus\s+post\b",
    r"\bcontinu(?:es|ed|ing)\b",
    r"\bongoing\b",
    r"\bpersistent\b",
    r"\bpost-?\s*[a-z]+\s+day\s*#?\s*\d+",
    r"\bpod\s*#?\s*\d+",
    r"\bfollow-?\s*up\b",
    r"\bprior\b",
    r"\bprevious(?:ly)?\b",
    r"\bhistory\s+of\b",
    r"\bh/o\b",
]

_NEW_EVENT_CUES = [
    r"\bunderwent\b",
    r"\bdeveloped\b",
    r"\bstarted\b",
    r"\binitiated\b",
    r"\bperformed\b",
    r"\bnoted\s+on\b",
    r"\btaken\s+to\b",
    r"\bplaced\b",
]

# Referential words sitting directly in front of the mention ("s/p coiling", "post-coiling").
_ADJACENT_REFERENCE = re.compile(
    r"(?:\bs/p|\bstatus\s+post|\bafter|\bfollowing|\bpost-?|\bprior|\bprevious|\bh/o|\bhistory\s+of)"
    r"\s*(?:the\s+|an?\s+|recent\s+)?$",
    re.IGNORECASE,
)

_COMPILED_REFERENCE = [re.compile(p, re.IGNORECASE) for p in _REFERENCE_CUES]
_COMPILED_NEW = [re.compile(p, re.IGNORECASE) for p in _NEW_EVENT_CUES]

# ── Relative marker patterns ─────────────────────────────────────────────

_MARKER_PATTERNS = [
    # More specific patterns first
    (re.compile(r"\bhospital\s+day\s*#?\s*(\d{1,3})\b", re.IGNORECASE), MarkerKind.HD),
    (re.compile(r"\bHD\s*#?\s*(\d{1,3})\b", re.IGNORECASE), MarkerKind.HD),
    (re.compile(r"\bpost-?\s*op(?:erative)?\s+day\s*#?\s*(\d{1,3})\b", re.IGNORECASE), MarkerKind.POD),
    (re.compile(r"\bPOD\s*#?\s*(\d{1,3})\b", re.IGNORECASE), MarkerKind.POD),
    # "post-coiling day 2", "post-procedure day 1"
    (re.compile(r"\bpost-?\s*[a-z]+\s+day\s*#?\s*(\d{1,3})\b", re.IGNORECASE), MarkerKind.POD),
]

_SENTENCE_BREAK = re.compile(r"[.!?;](?=\s)|\n")


# ── Window helpers ───────────────────────────────────────────────────────


def _local_window(text: str, mention: CandidateMention, radius: int) -> tuple[str, str, str]:
    """
    Return (left, name, right) around the mention, each side limited to ``radius``
    characters and clipped at the nearest sentence or line break.
    """
    name = mention.raw_name or ""
    if not text or mention.source_offset >= len(text):
        return "", name, ""

    start = mention.source_offset
    end = min(len(text), start + len(name))
    left = text[max(0, start - radius):start]
    right = text[end:end + radius]

    breaks = list(_SENTENCE_BREAK.finditer(left))
    if breaks:
        left = left[breaks[-1].end():]
    first_break = _SENTENCE_BREAK.search(right)
    if first_break:
        right = right[:first_break.start()]
    return left, text[start:end], right


def _first_cue(patterns: list[re.Pattern], text: str) -> str | None:
    for pattern in patterns:
        m = pattern.search(text)
        if m:
            return m.group(0)
    return None


def classify_reference(left: str, name: str, right: str) -> tuple[bool, str | None]:
    """
    Decide reference vs new event from cue words in the local window.
    Returns (is_reference, cue_text).
    """
    adjacent = _ADJACENT_REFERENCE.search(left)
    if adjacent:
        return True, adjacent.group(0).strip()

    clause = f"{left}{name}{right}"
    ref_cue = _first_cue(_COMPILED_REFERENCE, clause)
    new_cue = _first_cue(_COMPILED_NEW, clause)

    # Referential cues win ties
    if ref_cue:
        return True, ref_cue
    if new_cue:
        return False, new_cue
    return False, None


def find_markers(window: str) -> dict[MarkerKind, TemporalMarker]:
    """Earliest POD and earliest HD marker in the window, keyed by kind."""
    found: dict[MarkerKind, tuple[int, TemporalMarker]] = {}
    for pattern, kind in _MARKER_PATTERNS:
        m = pattern.search(window)
        if m and (kind not in found or m.start() < found[kind][0]):
            found[kind] = (m.start(), TemporalMarker(kind=kind, n=int(m.group(1))))
    return {kind: marker for kind, (_, marker) in found.items()}


def _pod_anchor(
    mention: CandidateMention,
    reference_dates: ReferenceDateSet,
    entity_anchor: date | None,
) -> date | None:
    if entity_anchor is not None and mention.entity_type == EntityType.PROCEDURE:
        return entity_anchor
    return (
        reference_dates.first_procedure_date
        or reference_dates.admission
        or reference_dates.ictus
    )


# ── Core resolver ────────────────────────────────────────────────────────


def resolve_temporal_context(
    mention: CandidateMention,
    text: str,
    reference_dates: ReferenceDateSet,
    config: EngineConfig | None = None,
    entity_anchor: date | None = None,
) -> TemporalContext:
    """
    Classify one mention and resolve its date. Pure: identical inputs always give
    an identical TemporalContext.
    """
    cfg = config or _DEFAULT_CONFIG
    left, name, right = _local_window(text, mention, cfg.context_window_chars)
    window = f"{left}{name}{right}"

    markers = find_markers(window)
    if mention.temporal_marker is not None:
        markers[mention.temporal_marker.kind] = mention.temporal_marker
    pod_marker = markers.get(MarkerKind.POD)
    hd_marker = markers.get(MarkerKind.HD)
    pod = pod_marker.n if pod_marker is not None else None
    hd = hd_marker.n if hd_marker is not None else None

    is_reference, cue = classify_reference(left, name, right)
    if not is_reference and pod is not None:
        # A post-operative day marker always points back at an earlier procedure.
        is_reference, cue = True, f"POD#{pod}"

    # 1) Explicit calendar date
    explicit = parse_date_text(mention.explicit_date_text)
    if explicit is None:
        explicit = closest_date(window, len(left))
    if explicit is not None:
        return TemporalContext(
            is_reference=is_reference,
            pod=pod,
            hd=hd,
            resolved_date=explicit,
            date_source=DateSource.EXPLICIT,
            cue=cue,
        )

    # 2) Relative markers, POD before HD ("HD#5/POD#2")
    if pod is not None:
        anchor = _pod_anchor(mention, reference_dates, entity_anchor)
        if anchor is not None:
            return TemporalContext(
                is_reference=is_reference,
                pod=pod,
                hd=hd,
                resolved_date=anchor + timedelta(days=pod),
                date_source=DateSource.POD_RESOLVED,
                cue=cue,
            )
    if hd is not None and reference_dates.admission is not None:
        return TemporalContext(
            is_reference=is_reference,
            pod=pod,
            hd=hd,
            resolved_date=reference_dates.admission + timedelta(days=hd),
            date_source=DateSource.HD_RESOLVED,
            cue=cue,
        )

    return TemporalContext(
        is_reference=is_reference,
        pod=pod,
        hd=hd,
        resolved_date=None,
        date_source=DateSource.UNRESOLVED,
        cue=cue,
    )


def _entity_anchor(
    mention: CandidateMention,
    explicit_procedures: list[tuple[CandidateMention, date]],
    config: EngineConfig,
) -> date | None:
    """First explicitly dated new-event occurrence of the same procedure, by offset."""
    if mention.entity_type != EntityType.PROCEDURE:
        return None
    for other, other_date in explicit_procedures:
        score = safe_similarity(mention.raw_name, other.raw_name, EntityType.PROCEDURE, config)
        if score >= config.cluster_merge_threshold:
            return other_date
    return None


def annotate_mentions(
    mentions: list[CandidateMention],
    text: str,
    reference_dates: ReferenceDateSet,
    config: EngineConfig | None = None,
) -> list[AnnotatedMention]:
    """
    Resolve every mention of a document. Procedure POD markers anchor on the
    procedure's own first explicit occurrence when the document has one.
    Output is ordered by source offset.
    """
    cfg = config or _DEFAULT_CONFIG
    ordered = sorted(mentions, key=lambda m: (m.source_offset, m.mention_id))

    # Pass 1: context without entity anchors
    first_pass = [
        (m, resolve_temporal_context(m, text, reference_dates, cfg)) for m in ordered
    ]

    explicit_procedures = [
        (m, ctx.resolved_date)
        for m, ctx in first_pass
        if m.entity_type == EntityType.PROCEDURE
        and not ctx.is_reference
        and ctx.date_source == DateSource.EXPLICIT
        and ctx.resolved_date is not None
    ]

    # Pass 2: re-anchor procedure POD markers
    annotated: list[AnnotatedMention] = []
    for m, ctx in first_pass:
        if ctx.pod is not None and ctx.date_source != DateSource.EXPLICIT:
            anchor = _entity_anchor(m, explicit_procedures, cfg)
            if anchor is not None:
                ctx = resolve_temporal_context(m, text, reference_dates, cfg, entity_anchor=anchor)
        annotated.append(AnnotatedMention(mention=m, context=ctx))

    refs = sum(1 for a in annotated if a.context.is_reference)
    resolved = sum(1 for a in annotated if a.context.resolved_date is not None)
    logger.info(
        f"Temporal context: {len(annotated)} mentions, {refs} references, {resolved} dated"
    )
    return annotated
