"""Runtime configuration for the oracle relay."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Mapping, Optional

from .errors import ConfigError

CONFIDENTIAL_NETWORKS = frozenset({"sapphire", "sapphire-testnet", "sapphire-localnet"})
LOCALNET_NETWORKS = frozenset({"sapphire-localnet"})

_RPC_ENV = {
    "sapphire": "SAPPHIRE_MAINNET_RPC",
    "sapphire-testnet": "SAPPHIRE_TESTNET_RPC",
    "sapphire-localnet": "SAPPHIRE_LOCALNET_RPC",
    "base-mainnet": "BASE_MAINNET_RPC",
    "base-sepolia-testnet": "BASE_SEPOLIA_TESTNET_RPC",
}

STORAGE_BACKENDS = frozenset({"arweave", "memory"})


@dataclass(slots=True)
class AlertingConfig:
    """Credentials for the optional Slack and SendGrid alert channels."""

    slack_token: Optional[str] = None
    slack_channel: Optional[str] = None
    sendgrid_api_key: Optional[str] = None
    sendgrid_template_id: Optional[str] = None
    from_email: Optional[str] = None
    from_name: Optional[str] = None
    to_email: Optional[str] = None
    log_path: Path = Path("monitoring/oracle-alerts.log")

    @property
    def slack_enabled(self) -> bool:
        return bool(self.slack_token and self.slack_channel)

    @property
    def email_enabled(self) -> bool:
        return bool(self.sendgrid_api_key and self.sendgrid_template_id and self.from_email and self.to_email)


@dataclass(slots=True)
class OracleConfig:
    """Loaded relay configuration."""

    network: str
    rpc_url: str
    private_key: str
    contract_address: str
    contract_abi_path: Optional[Path] = None
    context_messages_limit: int = 20
    retry_interval_seconds: float = 60.0
    max_retries: int = 10
    base_retry_delay_seconds: float = 30.0
    lag_alert_threshold_seconds: float = 300.0
    recent_lookback_blocks: int = 1800
    event_batch_size: int = 2000
    poll_interval_seconds: float = 4.0
    state_path: Path = Path("oracle-state.json")
    failed_jobs_path: Path = Path("failed-jobs.json")
    ai_provider: str = "deepseek"
    ollama_url: str = "http://localhost:11434"
    ollama_model: str = "deepseek-r1:1.5b"
    chaingpt_api_key: Optional[str] = None
    storage_backend: str = "arweave"
    storage_upload_url: str = "https://uploader.irys.xyz/upload"
    storage_gateway_url: str = "https://gateway.irys.xyz"
    storage_graphql_url: str = "https://arweave.net/graphql"
    storage_api_token: Optional[str] = None
    rofl_socket_path: str = "/run/rofl-appd.sock"
    alerting: AlertingConfig = field(default_factory=AlertingConfig)

    def __post_init__(self) -> None:
        if self.network not in _RPC_ENV:
            raise ConfigError(f"Unsupported NETWORK_NAME '{self.network}'")
        if not self.rpc_url:
            raise ConfigError(f"{_RPC_ENV[self.network]} must be set for network '{self.network}'")
        key = self.private_key[2:] if self.private_key.startswith("0x") else self.private_key
        if len(key) != 64:
            raise ConfigError("PRIVATE_KEY must be a 32-byte hex string")
        try:
            bytes.fromhex(key)
        except ValueError as exc:
            raise ConfigError("PRIVATE_KEY must be a 32-byte hex string") from exc
        if not self.contract_address.startswith("0x") or len(self.contract_address) != 42:
            raise ConfigError("AI_AGENT_CONTRACT_ADDRESS must be a 0x-prefixed 20-byte address")
        if self.context_messages_limit < 0:
            raise ConfigError("AI_CONTEXT_MESSAGES_LIMIT must be non-negative")
        if self.max_retries < 1:
            raise ConfigError("MAX_RETRIES must be at least 1")
        if self.event_batch_size < 1:
            raise ConfigError("EVENT_BATCH_SIZE must be positive")
        if self.recent_lookback_blocks < 0:
            raise ConfigError("RECENT_LOOKBACK_BLOCKS must be non-negative")
        for name in ("retry_interval_seconds", "base_retry_delay_seconds", "poll_interval_seconds"):
            if getattr(self, name) <= 0:
                raise ConfigError(f"{name} must be positive")
        if self.storage_backend not in STORAGE_BACKENDS:
            raise ConfigError(f"STORAGE_BACKEND must be one of {sorted(STORAGE_BACKENDS)}")

    @property
    def is_confidential(self) -> bool:
        return self.network in CONFIDENTIAL_NETWORKS

    @property
    def is_localnet(self) -> bool:
        return self.network in LOCALNET_NETWORKS


def _coerce_float(value: object, default: float) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


def _coerce_int(value: object, default: int) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def _optional(env: Mapping[str, str], key: str) -> Optional[str]:
    raw = env.get(key)
    if raw is None:
        return None
    raw = raw.strip()
    return raw or None


def load_config(env: Optional[Mapping[str, str]] = None) -> OracleConfig:
    """Build :class:`OracleConfig` from environment variables."""

    env = os.environ if env is None else env
    network = (env.get("NETWORK_NAME") or "sapphire-testnet").strip()
    rpc_env = _RPC_ENV.get(network)
    abi_path = _optional(env, "CONTRACT_ABI_PATH")
    alerting = AlertingConfig(
        slack_token=_optional(env, "SLACK_ACCESS_TOKEN"),
        slack_channel=_optional(env, "SLACK_ALERT_CHANNEL"),
        sendgrid_api_key=_optional(env, "SEND_GRID_API_KEY"),
        sendgrid_template_id=_optional(env, "SEND_GRID_ALERT_TEMPLATE_ID"),
        from_email=_optional(env, "ALERT_FROM_EMAIL"),
        from_name=_optional(env, "ALERT_FROM_NAME"),
        to_email=_optional(env, "ALERT_TO_EMAIL"),
        log_path=Path(env.get("ALERT_LOG_PATH") or "monitoring/oracle-alerts.log"),
    )
    return OracleConfig(
        network=network,
        rpc_url=(env.get(rpc_env) or "").strip() if rpc_env else "",
        private_key=(env.get("PRIVATE_KEY") or "").strip(),
        contract_address=(env.get("AI_AGENT_CONTRACT_ADDRESS") or "").strip(),
        contract_abi_path=Path(abi_path) if abi_path else None,
        context_messages_limit=_coerce_int(env.get("AI_CONTEXT_MESSAGES_LIMIT"), 20),
        retry_interval_seconds=_coerce_float(env.get("RETRY_INTERVAL_SECONDS"), 60.0),
        max_retries=_coerce_int(env.get("MAX_RETRIES"), 10),
        base_retry_delay_seconds=_coerce_float(env.get("BASE_RETRY_DELAY_SECONDS"), 30.0),
        lag_alert_threshold_seconds=_coerce_float(env.get("LAG_ALERT_THRESHOLD_SECONDS"), 300.0),
        recent_lookback_blocks=_coerce_int(env.get("RECENT_LOOKBACK_BLOCKS"), 1800),
        event_batch_size=_coerce_int(env.get("EVENT_BATCH_SIZE"), 2000),
        poll_interval_seconds=_coerce_float(env.get("POLL_INTERVAL_SECONDS"), 4.0),
        state_path=Path(env.get("ORACLE_STATE_PATH") or "oracle-state.json"),
        failed_jobs_path=Path(env.get("FAILED_JOBS_PATH") or "failed-jobs.json"),
        ai_provider=(env.get("AI_PROVIDER") or "deepseek").strip().lower(),
        ollama_url=(env.get("OLLAMA_URL") or "http://localhost:11434").rstrip("/"),
        ollama_model=env.get("OLLAMA_MODEL") or "deepseek-r1:1.5b",
        chaingpt_api_key=_optional(env, "CHAIN_GPT_API_KEY"),
        storage_backend=(env.get("STORAGE_BACKEND") or "arweave").strip().lower(),
        storage_upload_url=env.get("STORAGE_UPLOAD_URL") or "https://uploader.irys.xyz/upload",
        storage_gateway_url=(env.get("STORAGE_GATEWAY_URL") or "https://gateway.irys.xyz").rstrip("/"),
        storage_graphql_url=env.get("STORAGE_GRAPHQL_URL") or "https://arweave.net/graphql",
        storage_api_token=_optional(env, "STORAGE_API_TOKEN"),
        rofl_socket_path=env.get("ROFL_APPD_SOCKET") or "/run/rofl-appd.sock",
        alerting=alerting,
    )


__all__ = [
    "AlertingConfig",
    "CONFIDENTIAL_NETWORKS",
    "OracleConfig",
    "load_config",
]
