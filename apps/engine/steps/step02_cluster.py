"""
Step 2 — Mention clustering (semantic de-duplication).

New-event mentions are folded into canonical events by name similarity;
reference mentions are then linked to those events. References that match
no event are folded together into low-confidence standalone events and also
listed in ``unlinked_mention_ids``. Every input mention ends up in exactly
one event's ``member_mention_ids``.
"""
from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from datetime import date

from packages.shared.models import (
    AnnotatedMention,
    CandidateMention,
    ClusterResult,
    DateSource,
    DedupStats,
    EngineConfig,
    EntityType,
    OriginSource,
    ResolvedEvent,
    TemporalContext,
    Warning,
)
from apps.engine.lib.similarity import normalize_name, safe_similarity

logger = logging.getLogger(__name__)

_DEFAULT_CONFIG = EngineConfig()

_TRAILING_PUNCT = re.compile(r"[\s:;,.\-]+$")


def clean_name(name: str) -> str:
    """Trim, drop trailing punctuation, collapse internal whitespace."""
    collapsed = " ".join((name or "").split())
    return _TRAILING_PUNCT.sub("", collapsed).strip()


@dataclass
class _Cluster:
    entity_type: EntityType
    members: list[AnnotatedMention] = field(default_factory=list)
    linked: list[AnnotatedMention] = field(default_factory=list)

    @property
    def representative(self) -> str:
        """Most specific member name: most tokens, then longest, then earliest."""
        best = max(
            self.members,
            key=lambda a: (
                len(normalize_name(a.mention.raw_name).split()),
                len(a.mention.raw_name.strip()),
                -a.mention.source_offset,
            ),
        )
        return best.mention.raw_name

    def _dated(self, explicit_only: bool) -> list[AnnotatedMention]:
        return [
            a for a in self.members
            if a.context.resolved_date is not None
            and (not explicit_only or a.context.date_source == DateSource.EXPLICIT)
        ]

    @property
    def date(self) -> date | None:
        return self._date_member.context.resolved_date if self._date_member else None

    @property
    def date_source(self) -> DateSource:
        return self._date_member.context.date_source if self._date_member else DateSource.UNRESOLVED

    @property
    def _date_member(self) -> AnnotatedMention | None:
        # Earliest explicit date wins, then earliest resolved date
        candidates = self._dated(explicit_only=True) or self._dated(explicit_only=False)
        if not candidates:
            return None
        return min(candidates, key=lambda a: (a.context.resolved_date, a.mention.source_offset))

    @property
    def confidence(self) -> float:
        return max(a.mention.raw_confidence for a in self.members)

    def to_event(self) -> ResolvedEvent:
        member_ids = {a.mention.mention_id for a in self.members}
        member_ids.update(a.mention.mention_id for a in self.linked)
        return ResolvedEvent(
            entity_type=self.entity_type,
            canonical_name=clean_name(self.representative),
            date=self.date,
            date_source=self.date_source,
            confidence=self.confidence,
            member_mention_ids=frozenset(member_ids),
            reference_count=len(self.linked),
        )

    def to_standalone_event(self, confidence_cap: float) -> ResolvedEvent:
        """Event for references that matched no new-event cluster."""
        return ResolvedEvent(
            entity_type=self.entity_type,
            canonical_name=clean_name(self.representative),
            date=self.date,
            date_source=self.date_source,
            confidence=min(self.confidence, confidence_cap),
            member_mention_ids=frozenset(a.mention.mention_id for a in self.members),
            reference_count=len(self.members) - 1,
            unlinked_mention_id=self.members[0].mention.mention_id,
        )


# ── Similarity decisions ─────────────────────────────────────────────────


def _merge_score(
    name: str,
    mention_date: date | None,
    cluster: _Cluster,
    config: EngineConfig,
) -> tuple[bool, float]:
    score = safe_similarity(name, cluster.representative, cluster.entity_type, config)
    if score >= config.cluster_merge_threshold:
        return True, score
    same_day = mention_date is not None and mention_date == cluster.date
    return same_day and score >= config.same_date_merge_threshold, score


def _link_score(
    name: str,
    ref_date: date | None,
    cluster: _Cluster,
    config: EngineConfig,
) -> float:
    similarity = safe_similarity(name, cluster.representative, cluster.entity_type, config)
    if (
        ref_date is not None
        and ref_date == cluster.date
        and similarity >= config.reference_link_threshold
    ):
        return config.reference_date_match_score
    if similarity > config.strong_name_match:
        # Same name on a different day may be a repeat procedure rather than a reference
        return similarity * config.strong_name_discount
    return similarity


def _best_link(
    name: str,
    ref_date: date | None,
    clusters: list[_Cluster],
    config: EngineConfig,
) -> tuple[_Cluster | None, float]:
    """Highest-scoring cluster at or above the link threshold (first on ties)."""
    best: _Cluster | None = None
    best_score = 0.0
    for cluster in clusters:
        score = _link_score(name, ref_date, cluster, config)
        if score > best_score:
            best, best_score = cluster, score
    if best_score < config.reference_link_threshold:
        return None, best_score
    return best, best_score


def _greedy_clusters(
    entity_type: EntityType,
    items: list[AnnotatedMention],
    config: EngineConfig,
) -> list[_Cluster]:
    clusters: list[_Cluster] = []
    for item in items:
        target = None
        for cluster in clusters:
            ok, _ = _merge_score(item.mention.raw_name, item.context.resolved_date, cluster, config)
            if ok:
                target = cluster
                break
        if target is None:
            clusters.append(_Cluster(entity_type=entity_type, members=[item]))
        else:
            target.members.append(item)
    return _consolidate(clusters, config)


def _consolidate(clusters: list[_Cluster], config: EngineConfig) -> list[_Cluster]:
    """Merge clusters whose representatives now meet the merge criterion, until none do."""
    changed = True
    while changed:
        changed = False
        for i in range(len(clusters)):
            for j in range(i + 1, len(clusters)):
                later = clusters[j]
                ok, score = _merge_score(later.representative, later.date, clusters[i], config)
                if ok:
                    logger.debug(
                        f"Consolidating '{later.representative}' into "
                        f"'{clusters[i].representative}' (score {score:.2f})"
                    )
                    clusters[i].members.extend(later.members)
                    del clusters[j]
                    changed = True
                    break
            if changed:
                break
    return clusters


# ── Per-type clustering ──────────────────────────────────────────────────


def _cluster_one_type(
    entity_type: EntityType,
    annotated: list[AnnotatedMention],
    config: EngineConfig,
) -> tuple[list[ResolvedEvent], list[str], DedupStats]:
    ordered = sorted(annotated, key=lambda a: (a.mention.source_offset, a.mention.mention_id))
    new_events = [a for a in ordered if not a.context.is_reference]
    references = [a for a in ordered if a.context.is_reference]

    # 1) New events → clusters
    clusters = _greedy_clusters(entity_type, new_events, config)

    # 2) References → best cluster above the link threshold
    unlinked: list[AnnotatedMention] = []
    for ref in references:
        best, score = _best_link(ref.mention.raw_name, ref.context.resolved_date, clusters, config)
        if best is not None:
            best.linked.append(ref)
            logger.debug(
                f"Linked reference '{ref.mention.raw_name}' to '{best.representative}' "
                f"(score {score:.2f})"
            )
        else:
            unlinked.append(ref)

    # 3) Leftover references to one prior event fold into a single standalone event
    standalone: list[_Cluster] = []
    for group in _greedy_clusters(entity_type, unlinked, config):
        best, score = _best_link(group.representative, group.date, clusters, config)
        if best is not None:
            best.linked.extend(group.members)
            logger.debug(
                f"Linked reference group '{group.representative}' to '{best.representative}' "
                f"(score {score:.2f})"
            )
        else:
            standalone.append(group)

    events = [c.to_event() for c in clusters]
    events.extend(g.to_standalone_event(config.unlinked_reference_confidence_cap) for g in standalone)
    unlinked_ids = [a.mention.mention_id for g in standalone for a in g.members]

    original = len(ordered)
    stats = DedupStats(
        original=original,
        deduplicated=len(events),
        new_events=len(new_events),
        references=len(references),
        linked_references=len(references) - len(unlinked_ids),
        unlinked_references=len(unlinked_ids),
        merged_clusters=sum(1 for c in clusters if len(c.members) > 1),
        reduction_percent=round((original - len(events)) / original * 100, 1) if original else 0.0,
    )
    return events, unlinked_ids, stats


def cluster_mentions(
    annotated: list[AnnotatedMention],
    config: EngineConfig | None = None,
) -> tuple[ClusterResult, list[Warning]]:
    """
    Collapse annotated mentions into canonical events, one entity type at a time.
    Returns (ClusterResult, warnings).
    """
    cfg = config or _DEFAULT_CONFIG
    warnings: list[Warning] = []
    if not annotated:
        return ClusterResult(), warnings

    seen_ids: set[str] = set()
    for a in annotated:
        mid = a.mention.mention_id
        if mid in seen_ids:
            warnings.append(Warning(
                code="DUPLICATE_MENTION_ID",
                message=f"Mention id '{mid}' appears more than once",
                mention_id=mid,
            ))
        seen_ids.add(mid)
        if not a.mention.raw_name.strip():
            warnings.append(Warning(
                code="EMPTY_MENTION_NAME",
                message=f"Mention '{mid}' has an empty name",
                mention_id=mid,
            ))

    result = ClusterResult()
    totals = DedupStats()
    for entity_type in EntityType:
        subset = [a for a in annotated if a.mention.entity_type == entity_type]
        if not subset:
            continue
        events, unlinked_ids, stats = _cluster_one_type(entity_type, subset, cfg)
        result.events.extend(events)
        result.unlinked_mention_ids.extend(unlinked_ids)
        logger.info(
            f"Clustered {stats.original} {entity_type.value} mentions → {stats.deduplicated} events "
            f"({stats.linked_references} references linked, {stats.unlinked_references} unlinked)"
        )
        for name in DedupStats.model_fields:
            if name != "reduction_percent":
                setattr(totals, name, getattr(totals, name) + getattr(stats, name))

    if totals.original:
        totals.reduction_percent = round(
            (totals.original - totals.deduplicated) / totals.original * 100, 1
        )
    result.stats = totals
    return result, warnings


def events_to_mentions(events: list[ResolvedEvent]) -> list[AnnotatedMention]:
    """
    Re-express clustered output as annotated mentions, one per event, so the
    clusterer can be run over its own output. Every event, standalone
    ones included, re-enters as a new event.
    """
    annotated: list[AnnotatedMention] = []
    for i, event in enumerate(events):
        mention = CandidateMention(
            mention_id=f"event-{i}",
            entity_type=event.entity_type,
            raw_name=event.canonical_name,
            source_offset=i,
            raw_confidence=event.confidence,
            origin_source=OriginSource.PATTERN,
        )
        context = TemporalContext(
            is_reference=False,
            resolved_date=event.date,
            date_source=event.date_source,
        )
        annotated.append(AnnotatedMention(mention=mention, context=context))
    return annotated
