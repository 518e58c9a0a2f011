"""
Name similarity for mention clustering and reference linking.

combined = 0.4 * token jaccard + 0.2 * edit ratio + 0.4 * medical-concept overlap,
short-circuited to 1.0 for identical normalised names or names sharing a
synonym concept, unless an action word such as "removal" or "revision"
sets one of them apart. Scores are always in [0, 1].
"""
from __future__ import annotations

import logging
import re
from difflib import SequenceMatcher

from packages.shared.models import EngineConfig, EntityType
from apps.engine.lib.synonyms import action_qualifiers, find_concept

logger = logging.getLogger(__name__)

_DEFAULT_CONFIG = EngineConfig()

_TRAILING_PUNCT = re.compile(r"[\s:;,.\-]+$")
_NON_WORD = re.compile(r"[^\w\s/]")

_CONCEPT_PATTERNS = [
    # Procedures
    r"\b(craniotomy|craniectomy|resection|biopsy|coiling|clipping|shunt|evd|drain|embolization|angiography)\b",
    # Pathologies
    r"\b(aneurysm|hemorrhage|tumor|glioblastoma|metastasis|hydrocephalus|sdh|edh|vasospasm)\b",
    # Imaging
    r"\b(ct|mri|cta|dsa|angiogram|scan)\b",
    # Medications
    r"\b(aspirin|clopidogrel|warfarin|apixaban|keppra|levetiracetam|dexamethasone|nimodipine)\b",
    # Anatomical locations
    r"\b(frontal|parietal|temporal|occipital|cerebellum|cerebellar|brainstem|ventricle|ventricular|pcom|acom|mca|aca|pica|basilar|lumbar)\b",
    # Clinical findings
    r"\b(deficit|weakness|numbness|headache|seizure|confusion|coma)\b",
]
_COMPILED_CONCEPTS = [re.compile(p) for p in _CONCEPT_PATTERNS]


def normalize_name(name: str | None) -> str:
    """Lower-case, drop punctuation other than '/', collapse whitespace."""
    if not name:
        return ""
    text = _NON_WORD.sub(" ", name.lower())
    text = " ".join(text.split())
    return _TRAILING_PUNCT.sub("", text)


def _tokens(text: str) -> set[str]:
    return {w for w in re.split(r"[\s/]+", text) if len(w) > 2}


def jaccard_similarity(a: str, b: str) -> float:
    t1, t2 = _tokens(a), _tokens(b)
    union = t1 | t2
    if not union:
        return 0.0
    return len(t1 & t2) / len(union)


def edit_similarity(a: str, b: str) -> float:
    if not a and not b:
        return 0.0
    return SequenceMatcher(None, a, b).ratio()


def _medical_concepts(text: str) -> set[str]:
    found: set[str] = set()
    for pattern in _COMPILED_CONCEPTS:
        found.update(m.group(1) for m in pattern.finditer(text))
    return found


def concept_similarity(a: str, b: str) -> float:
    c1, c2 = _medical_concepts(a), _medical_concepts(b)
    if not c1 and not c2:
        return jaccard_similarity(a, b)
    union = c1 | c2
    return len(c1 & c2) / len(union) if union else 0.0


def combined_similarity(
    name1: str,
    name2: str,
    entity_type: EntityType | None = None,
    config: EngineConfig | None = None,
) -> float:
    """Blend of lexical and concept similarity between two entity names."""
    cfg = config or _DEFAULT_CONFIG
    a, b = normalize_name(name1), normalize_name(name2)
    if not a or not b:
        return 0.0
    if a == b:
        return 1.0

    concept_a = find_concept(a, entity_type)
    if (
        concept_a is not None
        and concept_a == find_concept(b, entity_type)
        and action_qualifiers(a, concept_a) == action_qualifiers(b, concept_a)
    ):
        return 1.0

    score = (
        cfg.jaccard_weight * jaccard_similarity(a, b)
        + cfg.edit_weight * edit_similarity(a, b)
        + cfg.concept_weight * concept_similarity(a, b)
    )
    return min(max(score, 0.0), 1.0)


def safe_similarity(
    name1: str,
    name2: str,
    entity_type: EntityType | None = None,
    config: EngineConfig | None = None,
) -> float:
    """combined_similarity that scores 0.0 instead of raising."""
    try:
        return combined_similarity(name1, name2, entity_type, config)
    except Exception as exc:
        logger.warning(f"Similarity scoring failed for {name1!r} vs {name2!r}: {exc}")
        return 0.0
