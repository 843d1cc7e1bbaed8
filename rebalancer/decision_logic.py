"""
decision_logic.py — Deterministic allocation-drift strategy.

Maps a portfolio snapshot to a single trade intent per cycle. The function is
pure: no I/O, no clock reads (``now`` is passed in), and identical inputs
always yield identical intents.

Rules, first match wins:
  1. No portfolio value            → HOLD (confidence 5)
  2. Cooldown since last trade     → HOLD (confidence 15)
  3. Daily swap cap reached        → HOLD (confidence 12)
  4. Base allocation within drift  → auxiliary pair rebalance, else HOLD (35)
  5. Drift exceeded                → SWAP toward the target ratio

Usage:
    intent = decide_intent(snapshot, StrategyParams(), now=datetime.now(timezone.utc))
    if intent.action is SwapAction.SWAP:
        ...
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional


class SwapAction(str, Enum):
    SWAP = "SWAP"
    HOLD = "HOLD"


class SwapDirection(str, Enum):
    BASE_TO_QUOTE = "BASE_TO_QUOTE"
    QUOTE_TO_BASE = "QUOTE_TO_BASE"
    AUX_PAIR = "AUX_PAIR"


# Auxiliary pair thresholds
AUX_IMBALANCE_THRESHOLD = 0.25
AUX_MIN_SOURCE_BALANCE = 1.0


# ─── Data Classes ─────────────────────────────────────────────────────────────


@dataclass
class StrategyParams:
    """Strategy knobs (see AgentConfig for the env variables behind them)."""
    target_ratio: float = 0.55
    drift_threshold: float = 0.08
    cooldown_ms: int = 5 * 60 * 1000
    max_swap_pct: float = 0.25
    max_daily_trades: int = 20


@dataclass
class PortfolioSnapshot:
    """Inputs to one decision, rebuilt every cycle."""
    base_balance: float
    quote_balance: float
    base_price_in_quote: float
    last_trade_at: Optional[datetime] = None
    trade_success_rate: float = 1.0
    daily_trade_count: int = 0
    consecutive_failures: int = 0
    estimated_slippage_bps: float = 100
    min_base_reserve: float = 0.05
    aux_one_balance: float = 0.0
    aux_two_balance: float = 0.0

    @property
    def base_value(self) -> float:
        return self.base_balance * max(self.base_price_in_quote, 0.0)

    @property
    def total_value(self) -> float:
        return self.quote_balance + self.base_value

    def to_dict(self) -> dict:
        return {
            "base_balance": self.base_balance,
            "quote_balance": self.quote_balance,
            "base_price_in_quote": self.base_price_in_quote,
            "last_trade_at": self.last_trade_at.isoformat() if self.last_trade_at else None,
            "trade_success_rate": self.trade_success_rate,
            "daily_trade_count": self.daily_trade_count,
            "consecutive_failures": self.consecutive_failures,
            "estimated_slippage_bps": self.estimated_slippage_bps,
            "min_base_reserve": self.min_base_reserve,
            "aux_one_balance": self.aux_one_balance,
            "aux_two_balance": self.aux_two_balance,
        }


@dataclass(frozen=True)
class TradeIntent:
    action: SwapAction
    amount_pct: float
    confidence: float           # 1-99
    reason: str
    direction: Optional[SwapDirection] = None

    @property
    def is_swap(self) -> bool:
        return self.action is SwapAction.SWAP and self.direction is not None

    def to_dict(self) -> dict:
        return {
            "action": self.action.value,
            "direction": self.direction.value if self.direction else None,
            "amount_pct": self.amount_pct,
            "confidence": self.confidence,
            "reason": self.reason,
        }


# ─── Helpers ──────────────────────────────────────────────────────────────────


def clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


def _hold(confidence: float, reason: str) -> TradeIntent:
    return TradeIntent(action=SwapAction.HOLD, amount_pct=0.0, confidence=confidence, reason=reason)


def _aux_pair_intent(
    snapshot: PortfolioSnapshot, params: StrategyParams
) -> Optional[TradeIntent]:
    """Secondary rebalance between the two auxiliary tokens, if they are lopsided."""
    one = max(snapshot.aux_one_balance, 0.0)
    two = max(snapshot.aux_two_balance, 0.0)
    total = one + two
    if total <= 0:
        return None

    aux_drift = (one - two) / total
    if abs(aux_drift) <= AUX_IMBALANCE_THRESHOLD or max(one, two) <= AUX_MIN_SOURCE_BALANCE:
        return None

    pct = clamp(abs(aux_drift) * 0.75, 0.05, params.max_swap_pct)
    confidence = clamp(48 + abs(aux_drift) * 30 - snapshot.consecutive_failures * 6, 1, 95)
    return TradeIntent(
        action=SwapAction.SWAP,
        direction=SwapDirection.AUX_PAIR,
        amount_pct=round(pct, 4),
        confidence=round(confidence, 2),
        reason=f"Auxiliary pair imbalance {abs(aux_drift):.3f} exceeded {AUX_IMBALANCE_THRESHOLD}.",
    )


# ─── Decision Function ────────────────────────────────────────────────────────


def decide_intent(
    snapshot: PortfolioSnapshot,
    params: StrategyParams,
    now: datetime,
) -> TradeIntent:
    """Return the trade intent for ``snapshot`` evaluated at ``now``."""
    total_value = snapshot.total_value
    if total_value <= 0:
        return _hold(5, "No portfolio value available for allocation analysis.")

    if snapshot.last_trade_at is not None:
        since_last_ms = (now - snapshot.last_trade_at).total_seconds() * 1000
        if since_last_ms < params.cooldown_ms:
            return _hold(15, "Cooldown window active.")

    if snapshot.daily_trade_count >= params.max_daily_trades:
        return _hold(12, "Daily swap count limit reached.")

    allocation_ratio = snapshot.base_value / total_value
    drift = allocation_ratio - params.target_ratio
    abs_drift = abs(drift)

    if abs_drift < params.drift_threshold:
        aux_intent = _aux_pair_intent(snapshot, params)
        if aux_intent is not None:
            return aux_intent
        return _hold(35, "Portfolio allocation is within target drift threshold.")

    direction = SwapDirection.BASE_TO_QUOTE if drift > 0 else SwapDirection.QUOTE_TO_BASE
    pct = clamp(abs_drift * 1.4, 0.05, params.max_swap_pct)

    confidence = 50.0
    confidence += clamp(abs_drift * 120, 0, 25)
    confidence += clamp(snapshot.trade_success_rate * 25, 0, 20)
    confidence += 8 if snapshot.estimated_slippage_bps <= 50 else 0
    confidence -= 12 if snapshot.estimated_slippage_bps >= 150 else 0
    confidence -= clamp(snapshot.consecutive_failures * 8, 0, 24)
    confidence -= 10 if snapshot.base_balance < snapshot.min_base_reserve * 2 else 0
    confidence = clamp(confidence, 1, 99)

    return TradeIntent(
        action=SwapAction.SWAP,
        direction=direction,
        amount_pct=round(pct, 4),
        confidence=round(confidence, 2),
        reason=f"Allocation drift {abs_drift:.3f} exceeded threshold {params.drift_threshold}.",
    )
