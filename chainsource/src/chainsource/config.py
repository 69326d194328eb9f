"""
Configuration management using pydantic-settings.

Settings are read from CHAINSOURCE_* environment variables (or a .env
file) and may be overridden by the options the Lightning node passes to
the plugin at init time.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from chaincore.constants import DEFAULT_RETRY_ATTEMPTS, DEFAULT_RETRY_TIMEOUT, RPC_PORTS
from chaincore.errors import ConfigurationError
from chaincore.models import BackendKind

# Names accepted for each backend kind
BACKEND_ALIASES: dict[str, BackendKind] = {
    "bitcoind": BackendKind.RPC_NODE,
    "bitcoin_core": BackendKind.RPC_NODE,
    "full_node": BackendKind.RPC_NODE,
    "esplora": BackendKind.HTTP_EXPLORER,
    "mempool": BackendKind.HTTP_EXPLORER,
    "neutrino": BackendKind.P2P_LIGHT,
    "nakamoto": BackendKind.P2P_LIGHT,
}


def parse_backend_kind(value: str | BackendKind) -> BackendKind:
    if isinstance(value, BackendKind):
        return value
    try:
        return BACKEND_ALIASES[value.strip().lower()]
    except KeyError:
        raise ConfigurationError(f"client {value} not supported") from None


class RetryConfig(BaseModel):
    strategy: str = Field(default="timeout", pattern="^(timeout|fixed|none)$")
    initial_timeout: float = Field(default=DEFAULT_RETRY_TIMEOUT, ge=0)
    max_attempts: int = Field(default=DEFAULT_RETRY_ATTEMPTS, ge=0, le=255)


class BitcoinCoreConfig(BaseModel):
    rpc_host: str = "127.0.0.1"
    rpc_port: int | None = Field(default=None, ge=1, le=65535)
    rpc_user: str | None = None
    rpc_password: str | None = None
    timeout: float = Field(default=30.0, gt=0)

    def rpc_url(self, network: str) -> str:
        port = self.rpc_port or RPC_PORTS.get(network)
        if port is None:
            raise ConfigurationError(f"no default bitcoind RPC port for network {network!r}")
        host = self.rpc_host
        if not host.startswith(("http://", "https://")):
            host = f"http://{host}"
        return f"{host}:{port}"


class EsploraConfig(BaseModel):
    url: str | None = None
    timeout: float = Field(default=30.0, gt=0)


class NeutrinoSettings(BaseModel):
    url: str = "http://127.0.0.1:8334"
    launch_daemon: bool = False
    binary: str = "neutrinod"
    data_dir: str = "/data/neutrino"
    listen_port: int = Field(default=8334, ge=1, le=65535)
    peers: list[str] = Field(default_factory=list)
    tor_socks: str | None = None
    sync_timeout: float = Field(default=300.0, ge=0)
    poll_interval: float = Field(default=2.0, gt=0)


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="CHAINSOURCE_",
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        case_sensitive=False,
    )

    network: str = "bitcoin"
    client: str = "esplora"
    fallback_client: str | None = None

    bitcoind: BitcoinCoreConfig = Field(default_factory=BitcoinCoreConfig)
    esplora: EsploraConfig = Field(default_factory=EsploraConfig)
    neutrino: NeutrinoSettings = Field(default_factory=NeutrinoSettings)
    retry: RetryConfig = Field(default_factory=RetryConfig)

    log_level: str = "INFO"

    @field_validator("client", mode="before")
    @classmethod
    def default_empty_client(cls, v: str | None) -> str:
        # An unset primary means the default explorer
        if v is None or (isinstance(v, str) and not v.strip()):
            return "esplora"
        return v

    @field_validator("client", "fallback_client")
    @classmethod
    def validate_client(cls, v: str | None) -> str | None:
        if v is None or not v.strip():
            return None
        if v.strip().lower() not in BACKEND_ALIASES:
            raise ValueError(f"client {v} not supported")
        return v.strip().lower()

    @property
    def backend_kinds(self) -> list[BackendKind]:
        """Configured backends in dispatch order, without duplicates."""
        kinds = [parse_backend_kind(self.client)]
        if self.fallback_client:
            fallback = parse_backend_kind(self.fallback_client)
            if fallback not in kinds:
                kinds.append(fallback)
        return kinds


# Plugin option name -> settings path
PLUGIN_OPTIONS: dict[str, tuple[str, ...]] = {
    "bitcoin-client": ("client",),
    "bitcoin-fallback-client": ("fallback_client",),
    "bitcoin-esplora-url": ("esplora", "url"),
    "bitcoin-rpcconnect": ("bitcoind", "rpc_host"),
    "bitcoin-rpcport": ("bitcoind", "rpc_port"),
    "bitcoin-rpcuser": ("bitcoind", "rpc_user"),
    "bitcoin-rpcpassword": ("bitcoind", "rpc_password"),
    "bitcoin-neutrino-url": ("neutrino", "url"),
    "bitcoin-retry-timeout": ("retry", "initial_timeout"),
    "bitcoin-retry-attempts": ("retry", "max_attempts"),
}


def settings_from_options(
    options: dict[str, Any], network: str | None = None, base: Settings | None = None
) -> Settings:
    """
    Overlay plugin options on top of environment settings.

    Empty or None option values leave the underlying setting untouched.

    Raises:
        ConfigurationError: if the merged configuration is invalid
    """
    try:
        base = base or Settings()
    except ValidationError as e:
        raise ConfigurationError(f"invalid environment configuration: {e}") from e
    data = base.model_dump()
    if network:
        data["network"] = network

    for option, path in PLUGIN_OPTIONS.items():
        value = options.get(option)
        if value is None or (isinstance(value, str) and not value.strip()):
            continue
        target = data
        for key in path[:-1]:
            target = target[key]
        target[path[-1]] = value

    try:
        return Settings.model_validate(data)
    except ValidationError as e:
        raise ConfigurationError(f"invalid plugin configuration: {e}") from e
