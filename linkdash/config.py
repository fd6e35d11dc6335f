"""Configuration management for linkdash."""

import os
from dataclasses import dataclass, field
from pathlib import Path

import dotenv

from linkdash.exceptions import ConfigurationError

DEFAULT_API_URL = "https://api.pluggy.ai"


@dataclass
class PluggyConfig:
    """Aggregator API credentials and transport settings."""

    client_id: str | None = None
    client_secret: str | None = None
    api_url: str = DEFAULT_API_URL
    timeout: float = 30.0
    include_sandbox: bool = False

    @property
    def has_credentials(self) -> bool:
        return bool(self.client_id and self.client_secret)

    def require_credentials(self) -> tuple[str, str]:
        if not self.has_credentials:
            raise ConfigurationError(
                "PLUGGY_CLIENT_ID and PLUGGY_CLIENT_SECRET must be set"
            )
        return self.client_id, self.client_secret


@dataclass
class StoreConfig:
    """Mirror store location."""

    database_path: Path = field(default_factory=lambda: Path("linkdash.sqlite"))


@dataclass
class PaginationConfig:
    """Page sizes for the leaf views."""

    transactions_page_size: int = 100
    investment_transactions_page_size: int = 20


@dataclass
class LinkDashConfig:
    """Main configuration for linkdash."""

    pluggy: PluggyConfig = field(default_factory=PluggyConfig)
    store: StoreConfig = field(default_factory=StoreConfig)
    pagination: PaginationConfig = field(default_factory=PaginationConfig)
    data_source: str = "mirror"
    log_level: str = "INFO"
    log_format: str = "standard"

    @classmethod
    def from_env(cls, load_dotenv: bool = True) -> "LinkDashConfig":
        """Create config from environment variables (and a .env file)."""
        if load_dotenv:
            dotenv.load_dotenv(dotenv.find_dotenv(usecwd=True))

        pluggy = PluggyConfig(
            client_id=os.getenv("PLUGGY_CLIENT_ID") or None,
            client_secret=os.getenv("PLUGGY_CLIENT_SECRET") or None,
            api_url=os.getenv("PLUGGY_API_URL", DEFAULT_API_URL).rstrip("/"),
            timeout=_number("PLUGGY_TIMEOUT", "30", float),
            include_sandbox=os.getenv("PLUGGY_INCLUDE_SANDBOX", "false").lower()
            == "true",
        )

        store = StoreConfig(
            database_path=Path(os.getenv("DATABASE_PATH", "linkdash.sqlite")),
        )

        pagination = PaginationConfig(
            transactions_page_size=_number("TRANSACTIONS_PAGE_SIZE", "100", int),
            investment_transactions_page_size=_number(
                "INVESTMENT_TRANSACTIONS_PAGE_SIZE", "20", int
            ),
        )

        data_source = os.getenv("DATA_SOURCE", "mirror").lower()
        if data_source not in ("mirror", "live"):
            raise ConfigurationError(
                f"DATA_SOURCE must be 'mirror' or 'live', got {data_source!r}"
            )

        return cls(
            pluggy=pluggy,
            store=store,
            pagination=pagination,
            data_source=data_source,
            log_level=os.getenv("LOG_LEVEL", "INFO"),
            log_format=os.getenv("LOG_FORMAT", "standard"),
        )


def _number(name: str, default: str, cast):
    raw = os.getenv(name, default)
    try:
        value = cast(raw)
    except ValueError as e:
        raise ConfigurationError(f"{name} must be a number, got {raw!r}") from e
    if value <= 0:
        raise ConfigurationError(f"{name} must be positive, got {raw!r}")
    return value
