import pytest

from env_validation import ConfigurationError, get_env_int, validate_environment


@pytest.fixture
def clean_env(monkeypatch, tmp_path):
    for var in ("DB_PATH", "DB_MAX_CONNECTIONS", "LOG_LEVEL"):
        # empty counts as unset
        monkeypatch.setenv(var, "")
    monkeypatch.chdir(tmp_path)
    return monkeypatch


def test_defaults_are_applied(clean_env):
    settings = validate_environment()

    assert settings == {"DB_PATH": "data.db", "DB_MAX_CONNECTIONS": "10", "LOG_LEVEL": "INFO"}


def test_log_level_is_normalised(clean_env):
    clean_env.setenv("LOG_LEVEL", "debug")
    assert validate_environment()["LOG_LEVEL"] == "DEBUG"


@pytest.mark.parametrize(
    "var, value",
    [
        ("LOG_LEVEL", "chatty"),
        ("DB_MAX_CONNECTIONS", "0"),
        ("DB_MAX_CONNECTIONS", "lots"),
        ("DB_PATH", "/definitely/not/here/impact.db"),
    ],
)
def test_invalid_settings_raise(clean_env, var, value):
    clean_env.setenv(var, value)
    with pytest.raises(ConfigurationError):
        validate_environment()


def test_get_env_int(monkeypatch):
    monkeypatch.setenv("IMPACT_TEST_INT", " 7 ")
    assert get_env_int("IMPACT_TEST_INT", 3) == 7
    monkeypatch.setenv("IMPACT_TEST_INT", "")
    assert get_env_int("IMPACT_TEST_INT", 3) == 3
    monkeypatch.delenv("IMPACT_TEST_INT")
    assert get_env_int("IMPACT_TEST_INT", 3) == 3
