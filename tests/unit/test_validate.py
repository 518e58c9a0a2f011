"""
Unit tests for input validation (Step 0).
"""
from datetime import date

from packages.shared.models import CandidateMention, EntityType, ReferenceDateSet
from apps.engine.steps.step00_validate import validate_mentions, validate_reference_dates


def _make_mention(mention_id: str, name: str = "craniotomy", offset: int = 0) -> CandidateMention:
    return CandidateMention(
        mention_id=mention_id,
        entity_type=EntityType.PROCEDURE,
        raw_name=name,
        source_offset=offset,
        raw_confidence=0.8,
    )


class TestReferenceDates:
    def test_consistent_dates(self):
        ref = ReferenceDateSet(
            ictus=date(2024, 9, 30),
            admission=date(2024, 10, 1),
            discharge=date(2024, 10, 15),
            first_procedure_date=date(2024, 10, 2),
            all_procedure_dates=(date(2024, 10, 2), date(2024, 10, 5)),
        )
        assert validate_reference_dates(ref, "doc1") == []

    def test_discharge_before_admission(self):
        ref = ReferenceDateSet(admission=date(2024, 10, 10), discharge=date(2024, 10, 1))
        warnings = validate_reference_dates(ref, "doc1")
        assert [w.code for w in warnings] == ["DISCHARGE_BEFORE_ADMISSION"]
        assert warnings[0].document_id == "doc1"

    def test_ictus_after_admission(self):
        ref = ReferenceDateSet(ictus=date(2024, 10, 3), admission=date(2024, 10, 1))
        assert [w.code for w in validate_reference_dates(ref)] == ["ICTUS_AFTER_ADMISSION"]

    def test_procedure_outside_stay(self):
        ref = ReferenceDateSet(
            admission=date(2024, 10, 1),
            discharge=date(2024, 10, 15),
            all_procedure_dates=(date(2024, 9, 20), date(2024, 10, 20)),
        )
        codes = [w.code for w in validate_reference_dates(ref)]
        assert codes == ["PROCEDURE_OUTSIDE_STAY", "PROCEDURE_OUTSIDE_STAY"]

    def test_first_procedure_mismatch(self):
        ref = ReferenceDateSet(
            first_procedure_date=date(2024, 10, 5),
            all_procedure_dates=(date(2024, 10, 2), date(2024, 10, 5)),
        )
        assert [w.code for w in validate_reference_dates(ref)] == ["FIRST_PROCEDURE_MISMATCH"]

    def test_dates_are_not_corrected(self):
        ref = ReferenceDateSet(admission=date(2024, 10, 10), discharge=date(2024, 10, 1))
        validate_reference_dates(ref)
        assert ref.discharge == date(2024, 10, 1)


class TestMentions:
    def test_valid(self):
        mentions = [_make_mention("a", offset=0), _make_mention("b", offset=5)]
        valid, warnings = validate_mentions(mentions, "craniotomy and more", "doc1")
        assert valid == mentions
        assert warnings == []

    def test_duplicate_ids_dropped(self):
        mentions = [_make_mention("a"), _make_mention("a", offset=3)]
        valid, warnings = validate_mentions(mentions, "craniotomy craniotomy")
        assert [m.source_offset for m in valid] == [0]
        assert [w.code for w in warnings] == ["DUPLICATE_MENTION_ID"]

    def test_offset_beyond_text_kept_with_warning(self):
        valid, warnings = validate_mentions([_make_mention("a", offset=500)], "short text")
        assert len(valid) == 1
        assert warnings[0].code == "MENTION_OFFSET_OUT_OF_RANGE"
        assert warnings[0].mention_id == "a"

    def test_empty_name(self):
        _, warnings = validate_mentions([_make_mention("a", name="  ")], "")
        assert [w.code for w in warnings] == ["EMPTY_MENTION_NAME"]
