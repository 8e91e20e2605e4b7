from __future__ import annotations

import os
from dataclasses import dataclass, field, fields

from dotenv import load_dotenv

from lpbook.domain.entities.policy import LifecyclePolicy, RangePolicy, RiskThresholds
from lpbook.domain.entities.portfolio import CapitalPolicy


load_dotenv()


def _env(name: str, default: str | None = None) -> str | None:
    return os.getenv(name, default)


def _optional_int(name: str) -> int | None:
    value = _env(name)
    if value is None or value.strip() == "":
        return None
    return int(value)


def _coerce(raw: str, default):
    if isinstance(default, bool):
        return raw.strip().lower() in {"1", "true", "yes", "on"}
    if isinstance(default, int):
        return int(raw)
    return float(raw)


def _overrides(prefix: str, defaults) -> dict:
    """Read one env var per dataclass field, e.g. POLICY_STOP_LOSS_PCT."""
    values = {}
    for item in fields(defaults):
        current = getattr(defaults, item.name)
        if not isinstance(current, (int, float)) and current is not None:
            continue
        raw = _env(f"{prefix}{item.name.upper()}")
        if raw is None:
            continue
        if raw.strip().lower() in {"", "none", "off"}:
            values[item.name] = None
        elif current is None:
            values[item.name] = float(raw)
        else:
            values[item.name] = _coerce(raw, current)
    return values


def build_lifecycle_policy() -> LifecyclePolicy:
    range_policy = RangePolicy(**_overrides("POLICY_RANGE_", RangePolicy()))
    risk = RiskThresholds(**_overrides("POLICY_RISK_", RiskThresholds()))
    return LifecyclePolicy(
        range=range_policy,
        risk=risk,
        **_overrides("POLICY_", LifecyclePolicy()),
    )


@dataclass(frozen=True)
class Settings:
    rpc_url: str
    pool_address: str
    chain_id: int
    token0_decimals: int | None
    token1_decimals: int | None
    rpc_timeout_seconds: float
    rpc_max_retries: int
    rpc_min_interval_ms: int
    twap_short_seconds: int
    twap_long_seconds: int
    search_words: int
    interval_seconds: float
    swap_poll_seconds: float
    max_log_blocks: int
    watched_lower: int | None
    watched_upper: int | None
    ledger_path: str
    records_dsn: str
    log_level: str
    capital: CapitalPolicy
    policy: LifecyclePolicy = field(default_factory=LifecyclePolicy)

    @property
    def watched_range(self) -> tuple[int, int] | None:
        if self.watched_lower is None or self.watched_upper is None:
            return None
        return self.watched_lower, self.watched_upper


def get_settings() -> Settings:
    return Settings(
        rpc_url=_env("RPC_URL", ""),
        pool_address=_env("POOL_ADDRESS", ""),
        chain_id=int(_env("CHAIN_ID", "1")),
        token0_decimals=_optional_int("TOKEN0_DECIMALS"),
        token1_decimals=_optional_int("TOKEN1_DECIMALS"),
        rpc_timeout_seconds=float(_env("RPC_TIMEOUT_SECONDS", "10")),
        rpc_max_retries=int(_env("RPC_MAX_RETRIES", "3")),
        rpc_min_interval_ms=int(_env("RPC_MIN_INTERVAL_MS", "120")),
        twap_short_seconds=int(_env("TWAP_SHORT_SECONDS", "300")),
        twap_long_seconds=int(_env("TWAP_LONG_SECONDS", "3600")),
        search_words=int(_env("SEARCH_WORDS", "8")),
        interval_seconds=float(_env("INTERVAL_SECONDS", "60")),
        swap_poll_seconds=float(_env("SWAP_POLL_SECONDS", "15")),
        max_log_blocks=int(_env("RPC_MAX_LOG_BLOCKS", "2000")),
        watched_lower=_optional_int("POSITION_LOWER"),
        watched_upper=_optional_int("POSITION_UPPER"),
        ledger_path=_env("LEDGER_PATH", "./data/state.json"),
        records_dsn=_env("RECORDS_DSN", "sqlite:///./data/lifecycle.db"),
        log_level=_env("LOG_LEVEL", "INFO"),
        capital=CapitalPolicy(
            max_positions=int(_env("MAX_POSITIONS", "5")),
            max_usd_per_position=float(_env("MAX_USD_PER_POSITION", "10000")),
            total_usd_limit=float(_env("TOTAL_USD_LIMIT", "50000")),
        ),
        policy=build_lifecycle_policy(),
    )
