"""Settings module with unified configuration precedence: CLI > ENV > CONFIG FILE."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Annotated, Any
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

try:
    import tomllib  # py311+
except ModuleNotFoundError:  # pragma: no cover
    import tomli as tomllib  # type: ignore

from dotenv import load_dotenv
from pydantic import Field, field_validator
from pydantic_settings import (
    BaseSettings,
    NoDecode,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
)

from .constants import DEFAULT_RPC_URL
from .normalize.config import Protocol

load_dotenv()

CONFIG_ENV_VAR = "LENDING_AGG_CONFIG"
CONFIG_TABLE = "lending_aggregator"
SECRET_QUERY_KEYS = {"api-key", "api_key", "apikey", "token", "key"}


def redact_url(url: str) -> str:
    """Hide credentials carried in an RPC URL (user-info and API-key query params)."""
    parts = urlsplit(url)
    netloc = parts.netloc
    if "@" in netloc:
        netloc = "***redacted***@" + netloc.rsplit("@", 1)[1]
    query = urlencode(
        [
            (key, "***redacted***" if key.lower() in SECRET_QUERY_KEYS else value)
            for key, value in parse_qsl(parts.query, keep_blank_values=True)
        ],
        safe="*",
    )
    return urlunsplit((parts.scheme, netloc, parts.path, query, parts.fragment))


class AggregatorSettings(BaseSettings):
    """Single source of truth for configuration. Values may come from:
    - CLI (init kwargs)
    - ENV / .env (prefixed with LENDING_AGG_)
    - Config file (TOML), lowest precedence

    Do not read os.environ or files elsewhere in the codebase.
    """

    # --- endpoint ---
    rpc_url: str = DEFAULT_RPC_URL

    # --- RPC access layer ---
    rpc_timeout: float = Field(default=30.0, gt=0)
    rpc_max_clients_per_endpoint: int = Field(default=5, ge=1)
    rpc_batch_size: int = Field(default=100, ge=1, le=100)
    rpc_max_tries: int = Field(default=3, ge=1)

    # --- adapters ---
    enabled_protocols: Annotated[list[Protocol], NoDecode] = Field(
        default_factory=lambda: list(Protocol)
    )
    unknown_mint_decimals: int = Field(default=6, ge=0, le=18)

    # --- logging ---
    log_level: str = "INFO"

    model_config = SettingsConfigDict(
        env_prefix="LENDING_AGG_",
        env_file=".env",
        extra="ignore",  # ignore unknown keys in env/config file
    )

    @field_validator("enabled_protocols", mode="before")
    @classmethod
    def parse_protocols(cls, v: Any) -> Any:
        """Accept a comma-separated string and case-insensitive protocol names."""
        if isinstance(v, str):
            v = [item.strip() for item in v.split(",") if item.strip()]
        if isinstance(v, list):
            by_name = {p.value.lower(): p for p in Protocol}
            resolved = []
            for item in v:
                if isinstance(item, Protocol):
                    resolved.append(item)
                    continue
                key = str(item).lower()
                if key not in by_name:
                    raise ValueError(
                        f"Unknown protocol '{item}'. "
                        f"Available: {', '.join(p.value for p in Protocol)}"
                    )
                resolved.append(by_name[key])
            return resolved
        return v

    @field_validator("log_level")
    @classmethod
    def upper_log_level(cls, v: str) -> str:
        return v.upper()

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        """Custom config-file source with explicit precedence: CLI > ENV > FILE."""
        env_cfg = os.environ.get(CONFIG_ENV_VAR)
        cfg_path = Path(env_cfg) if env_cfg else None

        class TomlConfigSource(PydanticBaseSettingsSource):
            def __init__(self, settings_cls: type[BaseSettings], path: Path | None):
                super().__init__(settings_cls)
                self._path = path

            def get_field_value(
                self, field: Any, field_name: str
            ) -> tuple[Any, str, bool]:
                return None, "", False

            def __call__(self) -> dict[str, Any]:
                if not self._path:
                    local_config = Path("lending-aggregator.toml")
                    user_config = (
                        Path.home() / ".config" / "lending-aggregator" / "config.toml"
                    )
                    if local_config.exists():
                        self._path = local_config
                    elif user_config.exists():
                        self._path = user_config
                    else:
                        return {}

                if not self._path.exists():
                    return {}

                with self._path.open("rb") as f:
                    data = tomllib.load(f)  # supports top-level or [lending_aggregator]
                body = data.get(CONFIG_TABLE, data)
                if not isinstance(body, dict):
                    return {}
                return body

        return (
            init_settings,  # CLI (highest)
            env_settings,  # ENV
            dotenv_settings,  # .env
            TomlConfigSource(settings_cls, cfg_path),  # CONFIG (lowest)
            file_secret_settings,
        )

    def as_safe_dict(self) -> dict[str, Any]:
        """Return the config as a JSON-friendly dict with RPC credentials redacted."""
        data = self.model_dump(mode="json")
        data["rpc_url"] = redact_url(self.rpc_url)
        return data
