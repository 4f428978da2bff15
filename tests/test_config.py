from pathlib import Path

import pytest

from arxiv_explorer.core import config
from arxiv_explorer.core.config import DEFAULT_MODEL, get_config, load_settings, set_test_mode
from arxiv_explorer.core.errors import ConfigError


@pytest.fixture
def fresh_config(monkeypatch: pytest.MonkeyPatch) -> None:
    # monkeypatch puts the previous global back after the test
    monkeypatch.setattr(config, "_config", None)


def test_production_paths_by_default(fresh_config: None) -> None:
    cfg = get_config()

    assert cfg.mode == "production"
    assert cfg.db_path == Path("data/arxiv_explorer.sqlite")


def test_test_mode_switches_every_path(fresh_config: None) -> None:
    production = get_config().get_summary()
    set_test_mode()
    test = get_config().get_summary()

    assert get_config().mode == "test"
    for key in ("db_path", "summary_dir", "export_path"):
        assert test[key].startswith("test_data")
        assert test[key] != production[key]


def test_test_mode_before_first_use(fresh_config: None) -> None:
    set_test_mode()

    assert get_config().db_path == Path("test_data/arxiv_explorer.sqlite")


def test_load_settings_defaults() -> None:
    settings = load_settings({"OPENAI_API_KEY": "sk-test"})

    assert settings.openai_model == DEFAULT_MODEL
    assert settings.max_concurrent == 8
    assert settings.enrich_timeout == 60.0
    assert settings.max_results is None
    assert "sk-test" not in repr(settings)


def test_load_settings_reads_overrides() -> None:
    settings = load_settings(
        {
            "OPENAI_API_KEY": "sk-test",
            "OPENAI_MODEL": "gpt-4o",
            "ARXIV_EXPLORER_MAX_CONCURRENT": "3",
            "ARXIV_EXPLORER_ENRICH_TIMEOUT": "12.5",
            "ARXIV_EXPLORER_MAX_RESULTS": "40",
            "ARXIV_EXPLORER_TAG_FOCUS": "speech enhancement",
        }
    )

    assert settings.openai_model == "gpt-4o"
    assert settings.max_concurrent == 3
    assert settings.enrich_timeout == 12.5
    assert settings.max_results == 40
    assert settings.tag_focus == "speech enhancement"


def test_load_settings_requires_api_key() -> None:
    with pytest.raises(ConfigError, match="OPENAI_API_KEY"):
        load_settings({})


@pytest.mark.parametrize(
    "name, value",
    [("ARXIV_EXPLORER_MAX_CONCURRENT", "0"), ("ARXIV_EXPLORER_ENRICH_TIMEOUT", "soon")],
)
def test_load_settings_rejects_invalid_values(name: str, value: str) -> None:
    with pytest.raises(ConfigError):
        load_settings({"OPENAI_API_KEY": "sk-test", name: value})
