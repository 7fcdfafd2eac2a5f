import pytest
from pydantic import ValidationError

from bevpro.config import DEFAULT_SEED_PATH, Settings, get_settings

ENV_NAMES = (
    "BEVPRO_TAX_RATE",
    "BEVPRO_SAMPLE_RATE",
    "BEVPRO_DECREMENT_ATTEMPTS",
    "BEVPRO_SEED_PATH",
    "VENUE_NAME",
    "OPENAI_API_KEY",
    "LOG_LEVEL",
    "LOG_JSON",
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch, tmp_path):
    for name in ENV_NAMES:
        monkeypatch.delenv(name, raising=False)
    # keep a stray .env in the working directory out of the picture
    monkeypatch.chdir(tmp_path)
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


def test_defaults():
    settings = Settings()
    assert settings.tax_rate == 0.08
    assert settings.target_sample_rate == 24000
    assert settings.decrement_max_attempts == 3
    assert settings.seed_path == str(DEFAULT_SEED_PATH)
    assert settings.log_level == "INFO"


def test_reads_prefixed_and_named_variables(monkeypatch):
    monkeypatch.setenv("BEVPRO_TAX_RATE", "0.1")
    monkeypatch.setenv("BEVPRO_SAMPLE_RATE", "16000")
    monkeypatch.setenv("VENUE_NAME", "The Anchor")
    monkeypatch.setenv("OPENAI_API_KEY", "sk-test")
    monkeypatch.setenv("LOG_LEVEL", "debug")
    monkeypatch.setenv("LOG_JSON", "true")

    settings = Settings.from_env()

    assert settings.tax_rate == 0.1
    assert settings.target_sample_rate == 16000
    assert settings.venue_name == "The Anchor"
    assert settings.openai_api_key == "sk-test"
    assert settings.log_level == "DEBUG"
    assert settings.log_json is True


@pytest.mark.parametrize(
    "name, value",
    [
        ("BEVPRO_TAX_RATE", "8%"),
        ("BEVPRO_TAX_RATE", "-0.1"),
        ("BEVPRO_DECREMENT_ATTEMPTS", "0"),
        ("BEVPRO_SAMPLE_RATE", "fast"),
    ],
)
def test_invalid_values_raise(monkeypatch, name, value):
    monkeypatch.setenv(name, value)
    with pytest.raises(ValidationError):
        Settings.from_env()


def test_blank_seed_path_disables_seeding(monkeypatch):
    monkeypatch.setenv("BEVPRO_SEED_PATH", "  ")
    assert Settings().seed_path is None


def test_overrides_copy_and_settings_are_frozen():
    base = Settings()
    changed = base.with_overrides(tax_rate=0.1, openai_api_key="sk-x")
    assert changed.tax_rate == 0.1
    assert changed.openai_api_key == "sk-x"
    assert base.tax_rate == 0.08
    with pytest.raises(ValidationError):
        base.tax_rate = 0.2


def test_get_settings_is_cached(monkeypatch):
    first = get_settings()
    monkeypatch.setenv("BEVPRO_TAX_RATE", "0.2")
    assert get_settings() is first
    get_settings.cache_clear()
    assert get_settings().tax_rate == 0.2
