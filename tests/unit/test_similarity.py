"""
Unit tests for the name similarity scorer.
"""
import pytest

from packages.shared.models import EngineConfig, EntityType
from apps.engine.lib import similarity
from apps.engine.lib.similarity import (
    combined_similarity,
    edit_similarity,
    jaccard_similarity,
    normalize_name,
    safe_similarity,
)
from apps.engine.lib.synonyms import action_qualifiers, find_concept


class TestNormalize:
    def test_trailing_punctuation_and_case(self):
        assert normalize_name("  Coiling:  ") == "coiling"

    def test_collapses_whitespace(self):
        assert normalize_name("EVD   placement ,") == "evd placement"

    def test_keeps_slash(self):
        assert normalize_name("s/p Coiling") == "s/p coiling"

    def test_empty(self):
        assert normalize_name(None) == ""


class TestSynonyms:
    def test_longest_form_wins(self):
        assert find_concept("coil embolization", EntityType.PROCEDURE) == "aneurysm coiling"

    def test_whole_phrase_only(self):
        assert find_concept("recoiled", EntityType.PROCEDURE) is None

    def test_brand_name(self):
        assert find_concept("Keppra 500mg", EntityType.MEDICATION) == "levetiracetam"

    def test_action_qualifiers(self):
        assert action_qualifiers("EVD removal") == frozenset({"removal"})
        assert action_qualifiers("bone flap replacement", "cranioplasty") == frozenset()

    def test_untyped_lookup_searches_all_tables(self):
        assert find_concept("vasospasm") == "vasospasm"


class TestCombinedSimilarity:
    def test_identical(self):
        assert combined_similarity("Craniotomy", "craniotomy.") == 1.0

    def test_synonyms_score_one(self):
        assert combined_similarity("EVD", "external ventricular drain", EntityType.PROCEDURE) == 1.0
        assert combined_similarity("coiling", "coiling of PCOM aneurysm", EntityType.PROCEDURE) == 1.0

    def test_action_words_break_synonym_match(self):
        assert combined_similarity("EVD placement", "EVD removal", EntityType.PROCEDURE) < 0.75
        assert combined_similarity("VP shunt", "VP shunt revision", EntityType.PROCEDURE) < 0.75
        assert combined_similarity("EVD", "EVD placement", EntityType.PROCEDURE) == 1.0

    def test_action_word_inside_synonym_form(self):
        assert combined_similarity("cranioplasty", "bone flap replacement", EntityType.PROCEDURE) == 1.0

    def test_unrelated_names_score_low(self):
        assert combined_similarity("craniotomy", "aspirin") < 0.3

    def test_empty_names(self):
        assert combined_similarity("", "coiling") == 0.0

    @pytest.mark.parametrize("a,b", [
        ("left frontal craniotomy", "tumor resection"),
        ("lumbar drain", "lumbar puncture"),
        ("nimodipine 60mg", "nicardipine drip"),
    ])
    def test_bounded(self, a, b):
        assert 0.0 <= combined_similarity(a, b) <= 1.0

    def test_weights_from_config(self):
        cfg = EngineConfig(jaccard_weight=1.0, edit_weight=0.0, concept_weight=0.0)
        score = combined_similarity("frontal tumor biopsy", "frontal lesion excision", config=cfg)
        assert score == pytest.approx(jaccard_similarity("frontal tumor biopsy", "frontal lesion excision"))

    def test_edit_similarity(self):
        assert edit_similarity("abc", "abc") == 1.0
        assert edit_similarity("", "") == 0.0


class TestSafeSimilarity:
    def test_scorer_failure_scores_zero(self, monkeypatch, caplog):
        def _boom(*args, **kwargs):
            raise RuntimeError("scorer down")

        monkeypatch.setattr(similarity, "combined_similarity", _boom)
        with caplog.at_level("WARNING"):
            assert safe_similarity("coiling", "coiling") == 0.0
        assert "Similarity scoring failed" in caplog.text

    def test_passthrough(self):
        assert safe_similarity("clipping", "aneurysm clipping", EntityType.PROCEDURE) == 1.0
