"""
agent_config.py — Environment-driven configuration for the rebalance agent.

All tunables are read once at startup from the process environment (a local
``.env`` file is loaded first via python-dotenv). Malformed numeric values fall
back to their defaults instead of aborting startup.

Usage:
    config = AgentConfig.from_env()
    agent = RebalanceAgent(config, executor=..., wallets=..., tokens=...)
"""

from __future__ import annotations

import math
import os
from dataclasses import dataclass, field
from typing import Mapping, Optional

from dotenv import load_dotenv


# ─── Env Parsing Helpers ──────────────────────────────────────────────────────


def _to_number(value: Optional[str], fallback: float) -> float:
    if not value:
        return fallback
    try:
        parsed = float(value)
    except ValueError:
        return fallback
    return parsed if math.isfinite(parsed) else fallback


def _to_integer(value: Optional[str], fallback: int) -> int:
    parsed = _to_number(value, float(fallback))
    return int(parsed) if parsed.is_integer() else fallback


def _to_bool(value: Optional[str], fallback: bool) -> bool:
    if value is None or value.strip() == "":
        return fallback
    return value.strip().lower() == "true"


def _to_list(value: Optional[str], fallback: list[str]) -> list[str]:
    if not value:
        return list(fallback)
    items = [item.strip() for item in value.split(",") if item.strip()]
    return items or list(fallback)


# ─── Configuration ────────────────────────────────────────────────────────────


@dataclass
class AgentConfig:
    """Every knob the agent reads from the environment."""

    # Scheduler
    loop_interval_ms: int = 30_000
    execution_timeout_s: float = 60.0           # bound on one execute_swap round-trip
    enable_swap: bool = True

    # Assets (symbols understood by the execution / wallet services)
    base_asset: str = "SOL"
    quote_asset: str = "USDC"
    aux_one_asset: str = "TEST1"
    aux_two_asset: str = "TEST2"
    fallback_base_price: float = 100.0          # used when no quote is available

    # Allocation strategy
    target_base_ratio: float = 0.55
    drift_threshold: float = 0.08
    cooldown_ms: int = 5 * 60 * 1000
    max_swap_pct: float = 0.25
    max_daily_swaps: int = 20
    min_base_reserve: float = 0.05
    risk_score_threshold: float = 70.0

    # Global risk ledger defaults
    max_trade_size_base: float = 0.5
    max_slippage_bps: int = 100
    min_interval_ms: int = 10_000
    max_consecutive_failures: int = 3

    # Reward economy
    activity_mint_threshold: int = 5
    reward_mint_amount: float = 5_000.0
    redistribution_threshold: float = 50_000.0

    # Wallet topology
    treasury_wallet: str = "treasury-agent"
    trader_wallet: str = "trader-agent"
    operational_wallets: list[str] = field(
        default_factory=lambda: ["trader-agent", "liquidity-agent", "arbitrage-agent"]
    )

    # Remote gateway (None → in-memory paper services)
    executor_url: Optional[str] = None
    http_timeout_s: float = 10.0

    log_level: str = "INFO"

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "AgentConfig":
        """Build a config from ``environ`` (defaults to ``os.environ`` after loading .env)."""
        if environ is None:
            load_dotenv()
            environ = os.environ
        d = cls()
        get = environ.get
        return cls(
            loop_interval_ms=_to_integer(get("AGENT_LOOP_MS"), d.loop_interval_ms),
            execution_timeout_s=_to_number(get("EXECUTION_TIMEOUT_S"), d.execution_timeout_s),
            enable_swap=_to_bool(get("ENABLE_SWAP"), d.enable_swap),
            base_asset=get("BASE_ASSET") or d.base_asset,
            quote_asset=get("QUOTE_ASSET") or d.quote_asset,
            aux_one_asset=get("AUX_ONE_ASSET") or d.aux_one_asset,
            aux_two_asset=get("AUX_TWO_ASSET") or d.aux_two_asset,
            fallback_base_price=_to_number(get("FALLBACK_BASE_PRICE"), d.fallback_base_price),
            target_base_ratio=_to_number(get("TARGET_BASE_ALLOCATION_RATIO"), d.target_base_ratio),
            drift_threshold=_to_number(get("ALLOCATION_DRIFT_THRESHOLD"), d.drift_threshold),
            cooldown_ms=_to_integer(get("SWAP_COOLDOWN_MS"), d.cooldown_ms),
            max_swap_pct=_to_number(get("MAX_SWAP_PCT"), d.max_swap_pct),
            max_daily_swaps=_to_integer(get("MAX_DAILY_SWAPS"), d.max_daily_swaps),
            min_base_reserve=_to_number(get("MIN_BASE_RESERVE"), d.min_base_reserve),
            risk_score_threshold=_to_number(get("RISK_SCORE_THRESHOLD"), d.risk_score_threshold),
            max_trade_size_base=_to_number(get("MAX_TRADE_SIZE_BASE"), d.max_trade_size_base),
            max_slippage_bps=_to_integer(get("MAX_SLIPPAGE_BPS"), d.max_slippage_bps),
            min_interval_ms=_to_integer(get("MIN_INTERVAL_MS"), d.min_interval_ms),
            max_consecutive_failures=_to_integer(
                get("MAX_CONSECUTIVE_FAILURES"), d.max_consecutive_failures
            ),
            activity_mint_threshold=_to_integer(
                get("AGENT_ACTIVITY_MINT_THRESHOLD"), d.activity_mint_threshold
            ),
            reward_mint_amount=_to_number(get("AGENT_REWARD_MINT_AMOUNT"), d.reward_mint_amount),
            redistribution_threshold=_to_number(
                get("AGENT_REDISTRIBUTION_THRESHOLD"), d.redistribution_threshold
            ),
            treasury_wallet=get("TREASURY_WALLET") or d.treasury_wallet,
            trader_wallet=get("TRADER_WALLET") or d.trader_wallet,
            operational_wallets=_to_list(get("OPERATIONAL_WALLETS"), d.operational_wallets),
            executor_url=get("EXECUTOR_URL") or None,
            http_timeout_s=_to_number(get("HTTP_TIMEOUT_S"), d.http_timeout_s),
            log_level=get("LOG_LEVEL") or d.log_level,
        )

    def to_dict(self) -> dict:
        return {
            "loop_interval_ms": self.loop_interval_ms,
            "execution_timeout_s": self.execution_timeout_s,
            "enable_swap": self.enable_swap,
            "base_asset": self.base_asset,
            "quote_asset": self.quote_asset,
            "target_base_ratio": self.target_base_ratio,
            "drift_threshold": self.drift_threshold,
            "cooldown_ms": self.cooldown_ms,
            "max_swap_pct": self.max_swap_pct,
            "max_daily_swaps": self.max_daily_swaps,
            "min_base_reserve": self.min_base_reserve,
            "risk_score_threshold": self.risk_score_threshold,
            "executor_url": self.executor_url,
        }
