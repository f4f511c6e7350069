from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any, Dict, Optional
import json
import os

import base58
import yaml
from dotenv import load_dotenv
from solders.keypair import Keypair
from solders.pubkey import Pubkey

from copy_trader.core.errors import ConfigError


@dataclass
class NetworkConfig:
    rpc_url: str = ""
    ws_url: str = ""
    commitment: str = "confirmed"
    request_timeout_seconds: float = 10.0
    confirm_timeout_seconds: float = 30.0


@dataclass
class CopyConfig:
    """Who to follow and how much to mirror"""
    target_wallet: str = ""
    min_trade_size_sol: float = 0.0       # Ignore target buys smaller than this
    trade_amount_sol: float = 0.0         # SOL spent per mirrored buy
    signature_window_size: int = 100      # Recently handled signatures kept for dedup
    watch_mode: str = "websocket"         # websocket | poll
    poll_interval_seconds: float = 5.0
    poll_signature_limit: int = 10
    skip_pre_start_transactions: bool = True


@dataclass
class ExitConfig:
    profit_multiplier: float = 1.25       # Exit once proceeds beat entry * multiplier
    slippage_pct: float = 5.0
    check_interval_seconds: float = 1.0
    price_source: str = "reserves"        # reserves | quote


@dataclass
class ExecutionConfig:
    dry_run: bool = True
    priority_fee_lamports: int = 100_000
    jupiter_api_url: str = "https://quote-api.jup.ag/v6"
    max_retries: int = 3
    keypair_path: str = ""


@dataclass
class LoggingConfig:
    log_dir: str = "data/logs"
    console_output: bool = True
    level: str = "INFO"


@dataclass
class StorageConfig:
    trade_log_path: str = "data/trade_log.csv"
    db_url: str = ""


# env var -> (section, field)
ENV_OVERRIDES = {
    "RPC_URL": ("network", "rpc_url"),
    "WS_URL": ("network", "ws_url"),
    "TARGET_WALLET_ADDRESS": ("copy", "target_wallet"),
    "TARGET_WALLET_MIN_TRADE": ("copy", "min_trade_size_sol"),
    "TRADE_AMOUNT": ("copy", "trade_amount_sol"),
    "DB_URL": ("storage", "db_url"),
    "DRY_RUN": ("execution", "dry_run"),
}

PRIVATE_KEY_VARS = ("PRIVATE_KEY", "WALLET_PRIVATE_KEY")

VALID_WATCH_MODES = ("websocket", "poll")
VALID_PRICE_SOURCES = ("reserves", "quote")

# Larger SOL amounts are almost certainly lamport values from an older .env
MAX_PLAUSIBLE_SOL = 1_000_000


class Config:
    def __init__(self, config_path: Optional[str] = "config.yaml", load_env: bool = True):
        self.network = NetworkConfig()
        self.copy = CopyConfig()
        self.exit = ExitConfig()
        self.execution = ExecutionConfig()
        self.logging = LoggingConfig()
        self.storage = StorageConfig()
        self.private_key: Optional[str] = None

        if config_path and os.path.exists(config_path):
            self.load_config(config_path)
        if load_env:
            load_dotenv()
            self.apply_env(os.environ)

    def load_config(self, config_path: str):
        """Load configuration from YAML file"""
        with open(config_path, 'r') as f:
            config_data = yaml.safe_load(f) or {}

        for section in ("network", "copy", "exit", "execution", "logging", "storage"):
            if section in config_data:
                setattr(self, section, _build_section(getattr(self, section), config_data[section], section))

    def apply_env(self, env: Dict[str, str]):
        for var, (section, name) in ENV_OVERRIDES.items():
            value = env.get(var)
            if value is None or value == "":
                continue
            target = getattr(self, section)
            setattr(target, name, _coerce(value, type(getattr(target, name)), var))

        for var in PRIVATE_KEY_VARS:
            if env.get(var):
                self.private_key = env[var]
                break

        # Default the websocket endpoint from the HTTP one
        if self.network.rpc_url and not self.network.ws_url:
            self.network.ws_url = self.network.rpc_url.replace("https://", "wss://").replace("http://", "ws://")

    def validate(self) -> "Config":
        if not self.network.rpc_url:
            raise ConfigError("RPC_URL is required")
        if not self.copy.target_wallet:
            raise ConfigError("TARGET_WALLET_ADDRESS is required")
        _require_pubkey(self.copy.target_wallet, "target wallet")

        if self.copy.trade_amount_sol <= 0:
            raise ConfigError(f"TRADE_AMOUNT must be positive, got {self.copy.trade_amount_sol}")
        if self.copy.min_trade_size_sol < 0:
            raise ConfigError("TARGET_WALLET_MIN_TRADE cannot be negative")
        for name, value in (("TRADE_AMOUNT", self.copy.trade_amount_sol),
                            ("TARGET_WALLET_MIN_TRADE", self.copy.min_trade_size_sol)):
            if value >= MAX_PLAUSIBLE_SOL:
                raise ConfigError(f"{name} is in SOL, not lamports; got {value}")
        if self.copy.signature_window_size <= 0:
            raise ConfigError("signature_window_size must be positive")
        if self.copy.watch_mode not in VALID_WATCH_MODES:
            raise ConfigError(f"watch_mode must be one of {VALID_WATCH_MODES}")

        if self.exit.profit_multiplier <= 0:
            raise ConfigError(f"profit_multiplier must be positive, got {self.exit.profit_multiplier}")
        if not 0 <= self.exit.slippage_pct < 100:
            raise ConfigError(f"slippage_pct must be in [0, 100), got {self.exit.slippage_pct}")
        if self.exit.price_source not in VALID_PRICE_SOURCES:
            raise ConfigError(f"price_source must be one of {VALID_PRICE_SOURCES}")

        if not self.execution.dry_run:
            self.load_keypair()
        return self

    def load_keypair(self) -> Keypair:
        """Signing keypair from PRIVATE_KEY (base58 or JSON byte array) or a keypair file"""
        secret = self.private_key
        if not secret and self.execution.keypair_path:
            path = Path(os.path.expanduser(self.execution.keypair_path))
            if not path.exists():
                raise ConfigError(f"Keypair file not found: {path}")
            secret = path.read_text()
        if not secret:
            raise ConfigError("PRIVATE_KEY is required when dry_run is disabled")

        secret = secret.strip()
        try:
            if secret.startswith("["):
                return Keypair.from_bytes(bytes(json.loads(secret)))
            return Keypair.from_bytes(base58.b58decode(secret))
        except ValueError as e:
            raise ConfigError(f"Invalid private key: {str(e)}") from e

    def as_dict(self) -> Dict[str, Any]:
        """Non-secret settings, for the startup log line"""
        return {
            section: {f.name: getattr(getattr(self, section), f.name) for f in fields(getattr(self, section))}
            for section in ("network", "copy", "exit", "execution", "logging", "storage")
        }


def _build_section(current, data: Dict[str, Any], section: str):
    data = data or {}
    if not isinstance(data, dict):
        raise ConfigError(f"Section '{section}' must be a mapping")
    known = {f.name for f in fields(current)}
    unknown = set(data) - known
    if unknown:
        raise ConfigError(f"Unknown keys in '{section}' section: {sorted(unknown)}")
    values = {f.name: getattr(current, f.name) for f in fields(current)}
    values.update(data)
    return type(current)(**values)


def _coerce(value: str, kind: type, name: str):
    try:
        if kind is bool:
            return value.strip().lower() in ("1", "true", "yes", "on")
        if kind is int:
            return int(value)
        if kind is float:
            return float(value)
    except ValueError as e:
        raise ConfigError(f"Invalid value for {name}: {value!r}") from e
    return value


def _require_pubkey(address: str, label: str):
    try:
        Pubkey.from_string(address)
    except ValueError as e:
        raise ConfigError(f"Invalid {label} address: {address}") from e
