"""Configuration management — dataclass with config.json > env > defaults."""

import json
import logging
import os
import tempfile
from dataclasses import dataclass, fields
from pathlib import Path

from .constants import NETWORKS

logger = logging.getLogger(__name__)

_ENV_MAP = {
    "network": "PREDICT_NETWORK",
    "private_key": "PREDICT_PRIVATE_KEY",
    "api_key": "PREDICT_API_KEY",
    "api_base_url": "PREDICT_API_URL",
    "rpc_url": "PREDICT_RPC_URL",
    "neg_risk_adapters": "PREDICT_NEG_RISK_ADAPTERS",
    "log_level": "PREDICT_LOG_LEVEL",
}

# Never written by save()
_SECRETS = ("private_key", "api_key")

MIN_LOOKBACK_DAYS = 30
MAX_LOOKBACK_DAYS = 90


@dataclass
class Config:
    # Network: "mainnet" or "testnet"
    network: str = "testnet"

    # Auth
    private_key: str = ""
    api_key: str = ""

    # Endpoint overrides (empty = network default)
    api_base_url: str = ""
    rpc_url: str = ""

    # Orders
    order_ttl_seconds: int = 3600
    slippage_bps: int = 200

    # Approvals
    approval_settle_seconds: float = 3.0

    # Reconciliation
    lookup_batch_size: int = 10

    # Redemption scan
    lookback_days: int = 30
    blocks_per_day: int = 28_800
    max_block_range: int = 9_999
    neg_risk_adapters: str = ""  # comma-separated

    # Local caches
    order_cache_file: str = "predict_cache.json"
    redemption_cache_file: str = "predict_cache.json"

    # HTTP retry
    max_retries: int = 3
    retry_base_delay: float = 1.0

    # Logging
    log_level: str = "INFO"

    def __post_init__(self):
        self.network = self.network.strip().lower()
        if self.network not in NETWORKS:
            raise ValueError(f"Unknown network {self.network!r} (expected one of {sorted(NETWORKS)})")
        clamped = min(max(self.lookback_days, MIN_LOOKBACK_DAYS), MAX_LOOKBACK_DAYS)
        if clamped != self.lookback_days:
            logger.warning("lookback_days=%d outside %d-%d, using %d",
                           self.lookback_days, MIN_LOOKBACK_DAYS, MAX_LOOKBACK_DAYS, clamped)
            self.lookback_days = clamped

    @property
    def chain_id(self) -> int:
        return NETWORKS[self.network]["chain_id"]

    @property
    def api_url(self) -> str:
        return self.api_base_url or NETWORKS[self.network]["api_url"]

    @property
    def node_url(self) -> str:
        return self.rpc_url or NETWORKS[self.network]["rpc_url"]

    @property
    def requires_api_key(self) -> bool:
        return NETWORKS[self.network]["requires_api_key"]

    @property
    def adapter_addresses(self) -> list[str]:
        return [a.strip() for a in self.neg_risk_adapters.split(",") if a.strip()]

    @classmethod
    def load(cls, config_dir: str) -> "Config":
        """Load config with priority: config.json > env vars > defaults."""
        config_path = Path(config_dir) / "config.json"
        file_cfg: dict = {}
        if config_path.exists():
            try:
                with open(config_path) as f:
                    file_cfg = json.load(f)
            except (json.JSONDecodeError, IOError) as exc:
                logger.warning("Failed to load %s: %s", config_path, exc)

        kwargs: dict = {}
        field_types = {f.name: f.type for f in fields(cls)}

        for f in fields(cls):
            name = f.name
            if name in file_cfg:
                kwargs[name] = _coerce(file_cfg[name], field_types[name])
            elif name in _ENV_MAP:
                env_val = os.environ.get(_ENV_MAP[name])
                if env_val is not None:
                    kwargs[name] = _coerce(env_val, field_types[name])

        return cls(**kwargs)

    def save(self, config_dir: str) -> None:
        """Persist current config to config.json (atomic write, secrets omitted)."""
        config_path = Path(config_dir) / "config.json"
        data = {f.name: getattr(self, f.name) for f in fields(self) if f.name not in _SECRETS}
        fd, tmp = tempfile.mkstemp(dir=config_dir, suffix=".tmp")
        try:
            with os.fdopen(fd, "w") as f:
                json.dump(data, f, indent=2)
            os.replace(tmp, str(config_path))
        except BaseException:
            try:
                os.unlink(tmp)
            except OSError:
                pass
            raise
        logger.info("Config saved to %s", config_path)

    def update(self, overrides: dict) -> None:
        """Apply key=value overrides, coercing each to its field type."""
        field_types = {f.name: f.type for f in fields(self)}
        for key, value in overrides.items():
            if key not in field_types:
                logger.warning("Unknown config key: %s", key)
                continue
            setattr(self, key, _coerce(value, field_types[key]))


def _coerce(value, type_hint):
    """Coerce a value to the declared field type."""
    if type_hint == "bool" or type_hint is bool:
        if isinstance(value, bool):
            return value
        return str(value).lower() in ("true", "1", "yes")
    if type_hint == "int" or type_hint is int:
        return int(value)
    if type_hint == "float" or type_hint is float:
        return float(value)
    return str(value)
