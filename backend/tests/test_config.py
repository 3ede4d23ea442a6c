from pathlib import Path

from budgetplan.config import Settings


def test_settings_read_environment(monkeypatch, tmp_path):
    monkeypatch.setenv("BUDGETPLAN_STORAGE_DIR", str(tmp_path))
    monkeypatch.setenv("BUDGETPLAN_MATCH_THRESHOLD", "0.7")
    monkeypatch.setenv("BUDGETPLAN_RH_SHEET", "RH")
    monkeypatch.setenv("BUDGETPLAN_CORS_ORIGINS", "http://localhost:5173, http://example.org")

    settings = Settings()
    assert settings.storage_dir == Path(tmp_path)
    assert settings.projects_dir == Path(tmp_path) / "projects"
    assert settings.cors_origins == ["http://localhost:5173", "http://example.org"]

    config = settings.import_config()
    assert config.match_threshold == 0.7
    assert config.rh_sheet == "RH"
    assert config.hiring_match_threshold == 0.85


def test_explicit_arguments_win(monkeypatch, tmp_path):
    monkeypatch.setenv("BUDGETPLAN_LOG_LEVEL", "debug")
    settings = Settings(storage_dir=tmp_path / "store", match_threshold=0.5)
    assert settings.storage_dir == tmp_path / "store"
    assert settings.match_threshold == 0.5
    assert settings.log_level == "DEBUG"


def test_zero_threshold_is_not_unset(monkeypatch, tmp_path):
    monkeypatch.setenv("BUDGETPLAN_MATCH_THRESHOLD", "0.7")
    settings = Settings(storage_dir=tmp_path, match_threshold=0.0, hiring_match_threshold=0.0)
    assert settings.match_threshold == 0.0
    assert settings.hiring_match_threshold == 0.0
