"""
Unit tests for engine configuration.
"""
from packages.shared.models import EngineConfig


class TestEngineConfigDefaults:
    def test_defaults(self):
        cfg = EngineConfig()
        assert cfg.cluster_merge_threshold == 0.75
        assert cfg.same_date_merge_threshold == 0.6
        assert cfg.reference_link_threshold == 0.6
        assert cfg.reference_date_match_score == 0.95
        assert cfg.llm_confidence_threshold == 0.75
        assert cfg.procedure_default_offset_days == 2
        assert cfg.complication_offset_days == 5
        assert cfg.context_window_chars == 100
        assert cfg.unlinked_reference_confidence_cap == 0.3
        assert cfg.combine_arrays is True


class TestEngineConfigFromEnv:
    def test_env_overrides(self, monkeypatch):
        monkeypatch.setenv("TIMELINE_CLUSTER_THRESHOLD", "0.8")
        monkeypatch.setenv("TIMELINE_CONTEXT_WINDOW", "60")
        monkeypatch.setenv("TIMELINE_COMBINE_ARRAYS", "no")
        cfg = EngineConfig.from_env()
        assert cfg.cluster_merge_threshold == 0.8
        assert cfg.context_window_chars == 60
        assert cfg.combine_arrays is False

    def test_invalid_values_fall_back(self, monkeypatch):
        monkeypatch.setenv("TIMELINE_LLM_THRESHOLD", "high")
        monkeypatch.setenv("TIMELINE_COMPLICATION_OFFSET_DAYS", "")
        cfg = EngineConfig.from_env()
        assert cfg.llm_confidence_threshold == 0.75
        assert cfg.complication_offset_days == 5

    def test_unset_env_matches_defaults(self, monkeypatch):
        for name in ("TIMELINE_CLUSTER_THRESHOLD", "TIMELINE_VALIDATE_OUTPUT", "TIMELINE_REFERENCE_EVENTS"):
            monkeypatch.delenv(name, raising=False)
        assert EngineConfig.from_env().model_dump() == EngineConfig().model_dump()
