import os
from pathlib import Path

import pytest

from linkdash.config import DEFAULT_API_URL, LinkDashConfig, PluggyConfig
from linkdash.exceptions import ConfigurationError

ENV_VARS = (
    "PLUGGY_CLIENT_ID",
    "PLUGGY_CLIENT_SECRET",
    "PLUGGY_API_URL",
    "PLUGGY_TIMEOUT",
    "PLUGGY_INCLUDE_SANDBOX",
    "DATABASE_PATH",
    "TRANSACTIONS_PAGE_SIZE",
    "INVESTMENT_TRANSACTIONS_PAGE_SIZE",
    "DATA_SOURCE",
    "LOG_LEVEL",
    "LOG_FORMAT",
)


@pytest.fixture
def env(monkeypatch):
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    return monkeypatch


def test_defaults(env):
    config = LinkDashConfig.from_env(load_dotenv=False)

    assert config.pluggy.api_url == DEFAULT_API_URL
    assert config.pluggy.timeout == 30.0
    assert not config.pluggy.has_credentials
    assert config.store.database_path == Path("linkdash.sqlite")
    assert config.pagination.transactions_page_size == 100
    assert config.pagination.investment_transactions_page_size == 20
    assert config.data_source == "mirror"
    assert config.log_level == "INFO"


def test_reads_environment(env):
    env.setenv("PLUGGY_CLIENT_ID", "client")
    env.setenv("PLUGGY_CLIENT_SECRET", "secret")
    env.setenv("PLUGGY_API_URL", "https://sandbox.example.com/")
    env.setenv("PLUGGY_TIMEOUT", "5.5")
    env.setenv("PLUGGY_INCLUDE_SANDBOX", "TRUE")
    env.setenv("TRANSACTIONS_PAGE_SIZE", "25")
    env.setenv("DATA_SOURCE", "LIVE")

    config = LinkDashConfig.from_env(load_dotenv=False)

    assert config.pluggy.require_credentials() == ("client", "secret")
    assert config.pluggy.api_url == "https://sandbox.example.com"
    assert config.pluggy.timeout == 5.5
    assert config.pluggy.include_sandbox is True
    assert config.pagination.transactions_page_size == 25
    assert config.data_source == "live"


def test_dotenv_file_is_loaded(env, tmp_path):
    (tmp_path / ".env").write_text("PLUGGY_CLIENT_ID=from-file\nDATABASE_PATH=mirror.db\n")
    env.chdir(tmp_path)
    # load_dotenv writes straight into the environment
    env.setattr(os, "environ", dict(os.environ))

    config = LinkDashConfig.from_env()

    assert config.pluggy.client_id == "from-file"
    assert config.store.database_path == Path("mirror.db")


@pytest.mark.parametrize(
    "name,value",
    [
        ("PLUGGY_TIMEOUT", "soon"),
        ("TRANSACTIONS_PAGE_SIZE", "0"),
        ("INVESTMENT_TRANSACTIONS_PAGE_SIZE", "-1"),
        ("DATA_SOURCE", "cache"),
    ],
)
def test_invalid_values(env, name, value):
    env.setenv(name, value)

    with pytest.raises(ConfigurationError):
        LinkDashConfig.from_env(load_dotenv=False)


def test_missing_credentials():
    with pytest.raises(ConfigurationError):
        PluggyConfig(client_id="client").require_credentials()
