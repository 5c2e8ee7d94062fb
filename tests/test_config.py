from __future__ import annotations

import os

import pytest

from chat_relay.config.app_config import load_env_file
from chat_relay.config.llm_config import get_llm_config, load_llm_config
from chat_relay.utils.error_handler import ConfigurationError

ENV_KEYS = ("RELAY_TEST_FOO", "RELAY_TEST_EMPTY", "RELAY_TEST_BAZ", "RELAY_TEST_NO_EQUALS")


@pytest.fixture
def provider_env(monkeypatch, tmp_path):
    # Keep a developer's .env out of the way.
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("GROQ_API_KEY", "test-key")
    get_llm_config.cache_clear()
    yield monkeypatch
    get_llm_config.cache_clear()


@pytest.fixture
def clean_env():
    yield
    for key in ENV_KEYS:
        os.environ.pop(key, None)


def test_token_budget_is_read_from_environment(provider_env) -> None:
    provider_env.setenv("MAX_TOKENS", "500")

    config = load_llm_config()

    assert config.max_tokens == 500
    assert config.model == "llama3-8b-8192"
    assert config.completions_url == "https://api.groq.com/openai/v1/chat/completions"


@pytest.mark.parametrize("value", [None, "lots", "0", "-5"])
def test_missing_or_malformed_token_budget_is_a_configuration_error(provider_env, value) -> None:
    if value is None:
        provider_env.delenv("MAX_TOKENS", raising=False)
    else:
        provider_env.setenv("MAX_TOKENS", value)

    with pytest.raises(ConfigurationError) as excinfo:
        load_llm_config()

    assert "MAX_TOKENS" in str(excinfo.value)
    assert excinfo.value.status_code == 500


def test_failed_load_is_retried_once_fixed(provider_env) -> None:
    provider_env.delenv("MAX_TOKENS", raising=False)
    with pytest.raises(ConfigurationError):
        load_llm_config()

    provider_env.setenv("MAX_TOKENS", "64")

    assert load_llm_config().max_tokens == 64


def test_env_file_named_by_password_file_is_loaded(monkeypatch, tmp_path, clean_env) -> None:
    env_file = tmp_path / "secrets.env"
    env_file.write_text(
        "\n"
        "# This is a comment\n"
        "RELAY_TEST_FOO=bar\n"
        "RELAY_TEST_EMPTY=\n"
        "RELAY_TEST_NO_EQUALS\n"
        "# Another comment\n"
        "RELAY_TEST_BAZ=qux\n"
    )
    monkeypatch.setenv("PASSWORD_FILE", str(env_file))

    assert load_env_file() == str(env_file)

    assert os.environ["RELAY_TEST_FOO"] == "bar"
    assert os.environ["RELAY_TEST_EMPTY"] == ""
    assert os.environ["RELAY_TEST_BAZ"] == "qux"
    assert "RELAY_TEST_NO_EQUALS" not in os.environ


def test_env_file_defaults_to_dotenv_and_may_be_missing(monkeypatch, tmp_path, clean_env) -> None:
    monkeypatch.chdir(tmp_path)
    monkeypatch.delenv("PASSWORD_FILE", raising=False)

    assert load_env_file() == ".env"
    assert "RELAY_TEST_FOO" not in os.environ

    (tmp_path / ".env").write_text("RELAY_TEST_FOO=from-dotenv\n")

    load_env_file()

    assert os.environ["RELAY_TEST_FOO"] == "from-dotenv"
