"""
Unit tests for the cross-source confidence merge (Step 3).
"""
import pytest

from packages.shared.models import (
    EngineConfig,
    ExtractionResult,
    FieldValue,
    MergeSource,
    OriginSource,
)
from apps.engine.steps.step03_merge import (
    is_empty_value,
    merge_extraction_results,
    merge_field,
    summarize_merge,
)


def _fv(value, confidence: float = 0.5) -> FieldValue:
    return FieldValue(value=value, confidence=confidence)


class TestEmptyValues:
    @pytest.mark.parametrize("value", [None, "", "   ", [], {}])
    def test_empty(self, value):
        assert is_empty_value(value)

    @pytest.mark.parametrize("value", [0, False, "x", [None], {"a": None}])
    def test_not_empty(self, value):
        assert not is_empty_value(value)


class TestMergeFieldPresence:
    def test_both_empty(self):
        value, record = merge_field("complications", _fv([]), _fv(None))
        assert value is None
        assert record.chosen_source == MergeSource.NONE
        assert record.reason == "both sources empty"
        assert record.confidence == 0.0

    def test_missing_fields_treated_as_empty(self):
        value, record = merge_field("grade", None, None)
        assert value is None
        assert record.chosen_source == MergeSource.NONE

    def test_pattern_empty_uses_llm_verbatim(self):
        llm_items = [{"name": "vasospasm", "date": "2024-10-06"}, {"name": "hydrocephalus", "date": None}]
        value, record = merge_field("complications", _fv([], 0.9), _fv(llm_items, 0.6))
        assert value == llm_items
        assert record.chosen_source == MergeSource.LLM
        assert record.reason == "other source empty"
        assert record.confidence == 0.6

    def test_llm_empty_uses_pattern(self):
        value, record = merge_field("grade", _fv("Hunt-Hess 3", 0.7), _fv(""))
        assert value == "Hunt-Hess 3"
        assert record.chosen_source == MergeSource.PATTERN
        assert record.reason == "other source empty"


class TestMergeScalars:
    def test_confident_llm_wins(self):
        value, record = merge_field("grade", _fv("HH 2", 0.95), _fv("HH 3", 0.8))
        assert value == "HH 3"
        assert record.chosen_source == MergeSource.LLM
        assert record.reason == "llm confidence above threshold"
        assert record.alternative_value == "HH 2"

    def test_higher_confidence_pattern(self):
        value, record = merge_field("grade", _fv("HH 2", 0.7), _fv("HH 3", 0.5))
        assert value == "HH 2"
        assert record.chosen_source == MergeSource.PATTERN
        assert record.reason == "higher confidence"
        assert record.alternative_value == "HH 3"

    def test_tie_goes_to_llm(self):
        value, record = merge_field("grade", _fv("HH 2", 0.5), _fv("HH 3", 0.5))
        assert value == "HH 3"
        assert record.chosen_source == MergeSource.LLM
        assert record.reason == "higher confidence"

    def test_threshold_is_configurable(self):
        cfg = EngineConfig(llm_confidence_threshold=0.9)
        _, record = merge_field("grade", _fv("HH 2", 0.85), _fv("HH 3", 0.8), cfg)
        assert record.chosen_source == MergeSource.PATTERN


class TestMergeObjects:
    def test_key_by_key(self):
        pattern = {"age": 54, "sex": "F", "mrn": None}
        llm = {"age": 55, "sex": "", "mrn": "A12", "race": "unknown"}
        value, record = merge_field("demographics", _fv(pattern, 0.7), _fv(llm, 0.5))
        assert value == {"age": 54, "sex": "F", "mrn": "A12", "race": "unknown"}
        assert list(value) == ["age", "sex", "mrn", "race"]
        assert record.chosen_source == MergeSource.MIXED
        assert record.reason == "merged key by key"
        assert record.confidence == 0.7

    def test_confident_llm_keys_preferred(self):
        value, _ = merge_field("demographics", _fv({"age": 54}, 0.7), _fv({"age": 55}, 0.9))
        assert value == {"age": 55}


class TestMergeArrays:
    def test_confident_llm_array(self):
        value, record = merge_field("procedures", _fv([{"name": "EVD"}], 0.8), _fv([{"name": "coiling"}], 0.8))
        assert value == [{"name": "coiling"}]
        assert record.reason == "llm confidence above threshold"
        assert record.alternative_value == [{"name": "EVD"}]

    def test_plain_arrays_combined_with_exact_dedup(self):
        value, record = merge_field("symptoms", _fv(["headache", "nausea"], 0.6), _fv(["nausea", "neck pain"], 0.5))
        assert value == ["nausea", "neck pain", "headache"]
        assert record.chosen_source == MergeSource.COMBINED
        assert record.reason == "combined and deduplicated"
        assert record.confidence == 0.6

    def test_longer_array_without_combining(self):
        cfg = EngineConfig(combine_arrays=False)
        value, record = merge_field("symptoms", _fv(["a", "b", "c"], 0.6), _fv(["d"], 0.5), cfg)
        assert value == ["a", "b", "c"]
        assert record.chosen_source == MergeSource.PATTERN
        assert record.reason == "longer array"
        assert record.alternative_value == ["d"]

    def test_longer_array_tie_goes_to_llm(self):
        cfg = EngineConfig(combine_arrays=False)
        value, record = merge_field("symptoms", _fv(["a"], 0.6), _fv(["b"], 0.5), cfg)
        assert value == ["b"]
        assert record.chosen_source == MergeSource.LLM

    def test_entity_arrays_are_reclustered(self):
        llm_items = [{"name": "coiling", "date": "2024-10-01", "member_mention_ids": ["l1"]}]
        pattern_items = [
            {
                "name": "Coil embolization",
                "date": "2024-10-01",
                "member_mention_ids": ["p1", "p2"],
                "reference_count": 1,
                "confidence": 0.9,
            },
            {"name": "EVD placement", "date": "2024-09-30"},
        ]
        value, record = merge_field("procedures", _fv(pattern_items, 0.7), _fv(llm_items, 0.6))
        assert record.chosen_source == MergeSource.COMBINED
        assert len(value) == 2
        coiling = next(item for item in value if item["name"] == "Coil embolization")
        assert coiling["date"] == "2024-10-01"
        assert coiling["member_mention_ids"] == ["l1", "p1", "p2"]
        assert coiling["reference_count"] == 1
        assert coiling["confidence"] == 0.9

    def test_malformed_item_fields_are_tolerated(self):
        pattern_items = [{"name": "vasospasm"}]
        llm_items = [{
            "name": "vasospasm",
            "unlinked_mention_id": 5,
            "member_mention_ids": 5,
            "date_source": [1],
            "confidence": "high",
            "reference_count": "x",
        }]
        value, record = merge_field("complications", _fv(pattern_items, 0.5), _fv(llm_items, 0.5))
        assert record.chosen_source == MergeSource.COMBINED
        assert len(value) == 1
        assert value[0]["name"] == "vasospasm"
        assert value[0]["member_mention_ids"] == ["5"]
        assert value[0]["reference_count"] == 1

    def test_standalone_items_from_both_sources_fold(self):
        pattern_items = [{"name": "craniotomy", "date": "2024-10-03", "unlinked_mention_id": "r1"}]
        llm_items = [{
            "name": "craniotomy",
            "date": "2024-10-04",
            "unlinked_mention_id": "r2",
            "member_mention_ids": ["r2"],
        }]
        value, _ = merge_field("procedures", _fv(pattern_items, 0.5), _fv(llm_items, 0.5))
        assert len(value) == 1
        assert value[0]["date"] == "2024-10-03"
        assert value[0]["member_mention_ids"] == ["r1", "r2"]
        assert value[0]["unlinked_mention_id"] == "r2"
        assert value[0]["reference_count"] == 1


class TestMergeExtractionResults:
    def _results(self):
        pattern = ExtractionResult.from_payload(
            {
                "procedures": [{"name": "craniotomy", "date": "2024-10-02"}],
                "grade": "HH 2",
                "complications": [],
                "confidence": {"procedures": 0.8, "grade": 0.7, "complications": 0.9},
            },
            OriginSource.PATTERN,
        )
        llm = ExtractionResult.from_payload(
            {
                "grade": "HH 3",
                "complications": [{"name": "vasospasm"}],
                "destination": "rehab",
                "confidence": {"grade": 0.6, "complications": 0.7, "destination": 1.4},
            },
            OriginSource.LLM,
        )
        return pattern, llm

    def test_one_record_per_field_in_order(self):
        result = merge_extraction_results(*self._results())
        assert [r.field_name for r in result.records] == ["procedures", "grade", "complications", "destination"]
        assert result.merged["grade"] == "HH 2"
        assert result.merged["complications"] == [{"name": "vasospasm"}]
        assert result.record_for("destination").confidence == 1.0

    def test_deterministic(self):
        pattern, llm = self._results()
        first = merge_extraction_results(pattern, llm)
        second = merge_extraction_results(pattern, llm)
        assert first.model_dump() == second.model_dump()

    def test_missing_source(self):
        pattern, _ = self._results()
        result = merge_extraction_results(pattern, None)
        assert result.record_for("grade").chosen_source == MergeSource.PATTERN

    def test_summary(self):
        result = merge_extraction_results(*self._results())
        assert result.summary.field_count["total"] == 4
        assert result.summary.overall == pytest.approx((0.8 + 0.7 + 0.7 + 1.0) / 4, abs=1e-4)


class TestFromPayload:
    def test_skips_metadata_and_clamps(self):
        result = ExtractionResult.from_payload(
            {"grade": "HH 2", "metadata": {"x": 1}, "confidence": {"grade": -3}},
            OriginSource.PATTERN,
        )
        assert list(result.fields) == ["grade"]
        assert result.fields["grade"].confidence == 0.0

    def test_none_payload(self):
        assert ExtractionResult.from_payload(None, OriginSource.LLM).fields == {}


class TestSummarize:
    def test_empty(self):
        summary = summarize_merge([])
        assert summary.overall == 0.0
        assert summary.by_source == {}
