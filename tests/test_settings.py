"""Tests for engine settings validation."""

from config.settings import Settings, get_settings


class TestSettingsValidate:
    """validate() reports inconsistent tunables without raising."""

    def test_defaults_are_consistent(self):
        assert Settings().validate() == []

    def test_inverted_confidence_cutoffs(self):
        settings = Settings(medium_confidence_min_games=9, high_confidence_min_games=4)
        errors = settings.validate()
        assert len(errors) == 1
        assert "Confidence cutoffs" in errors[0]

    def test_blend_weights_must_sum_to_one(self):
        settings = Settings(current_season_blend_weight=0.8, prior_season_blend_weight=0.3)
        assert any("sum to 1.0" in e for e in settings.validate())

    def test_weight_target_outside_band(self):
        settings = Settings(weight_sum_target=4.0)
        assert any("weight_sum_band" in e for e in settings.validate())

    def test_singleton(self):
        assert get_settings() is get_settings()

    def test_data_dir_env_override(self, monkeypatch, tmp_path):
        monkeypatch.setenv("ENGINE_DATA_DIR", str(tmp_path))
        assert Settings().data_dir == tmp_path
