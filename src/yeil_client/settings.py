"""Settings module with unified configuration precedence: CLI > ENV > CONFIG FILE."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any

try:
    import tomllib  # py311+
except ModuleNotFoundError:  # pragma: no cover
    import tomli as tomllib  # type: ignore

from dotenv import load_dotenv
from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    SecretStr,
    field_validator,
)
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
)

from .constants import ANVIL_CHAIN_ID, DEFAULT_RPC_URLS

load_dotenv()

SECRET_FIELDS = frozenset({"private_key"})


class NetworkAddressSettings(BaseModel):
    """Deployed contract addresses for one network."""

    token_contract: str
    oracle_contract: str

    model_config = ConfigDict(extra="forbid")


class ClientSettings(BaseSettings):
    """Single source of truth for configuration. Values may come from:
    - CLI (init kwargs)
    - ENV / .env (prefixed with YEIL_)
    - Config file (TOML), lowest precedence

    Do not read os.environ or files elsewhere in the codebase.
    """

    # --- session ---
    network_id: int = ANVIL_CHAIN_ID
    account: str | None = None

    # --- endpoints / deployments ---
    rpc_urls: dict[int, str] = Field(default_factory=lambda: dict(DEFAULT_RPC_URLS))
    networks: dict[int, NetworkAddressSettings] = Field(default_factory=dict)

    # --- signing ---
    private_key: SecretStr | None = None

    # --- RPC settings ---
    rpc_max_concurrent_calls: int = Field(default=5, ge=1)
    rpc_max_tries: int = Field(default=4, ge=1)
    rpc_max_time: float = Field(default=30.0, gt=0)
    request_timeout: float = Field(default=15.0, gt=0)
    receipt_poll_interval: float = Field(default=1.0, gt=0)

    # --- display ---
    display_precision: int | None = Field(default=None, ge=0)

    # --- logging ---
    log_level: str = "INFO"

    model_config = SettingsConfigDict(
        env_prefix="YEIL_",
        env_file=".env",
        extra="ignore",  # ignore unknown keys in env/config file
    )

    @field_validator("private_key", mode="before")
    @classmethod
    def wrap_secrets(cls, v: Any) -> SecretStr | None:
        """Wrap string secrets in SecretStr."""
        if v is None or isinstance(v, SecretStr):
            return v
        return SecretStr(v)

    @field_validator("rpc_urls", mode="after")
    @classmethod
    def merge_default_rpc_urls(cls, v: dict[int, str]) -> dict[int, str]:
        """Configured endpoints override the defaults rather than replacing them."""
        return {**DEFAULT_RPC_URLS, **v}

    @field_validator("log_level", mode="after")
    @classmethod
    def normalise_log_level(cls, v: str) -> str:
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
        env_cfg = os.environ.get("YEIL_CONFIG")
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
                    # Try default locations
                    local_config = Path("yeil-client.toml")
                    user_config = Path.home() / ".config" / "yeil-client" / "config.toml"
                    if local_config.exists():
                        self._path = local_config
                    elif user_config.exists():
                        self._path = user_config
                    else:
                        return {}

                if not self._path.exists():
                    return {}

                with self._path.open("rb") as f:
                    data = tomllib.load(f)  # supports top-level or [yeil_client]
                body = data.get("yeil_client", data)
                if not isinstance(body, dict):
                    return {}

                for key in SECRET_FIELDS:
                    if key in body:
                        raise ValueError(
                            f"Security violation: '{key}' found in TOML config file. "
                            f"Secrets must only be provided via environment variables or CLI flags."
                        )

                return body

        return (
            init_settings,  # CLI (highest)
            env_settings,  # ENV
            dotenv_settings,  # .env
            TomlConfigSource(settings_cls, cfg_path),  # CONFIG (lowest)
            file_secret_settings,  # optional secrets dir
        )

    def as_safe_dict(self) -> dict[str, Any]:
        """Return the config as a dict with secrets redacted."""
        data = self.model_dump()
        if self.private_key:
            data["private_key"] = "***redacted***"
        return data

    @property
    def address_overrides(self) -> dict[int, dict[str, str]]:
        """Configured deployments as plain dicts, keyed by network id."""
        return {
            network_id: entry.model_dump()
            for network_id, entry in self.networks.items()
        }
