"""
trade_advisor.py — Read-only trade advisory for operators.

An advisory answers "what would the agent do right now, and how risky is it"
without touching any counter. It reuses decide_intent() but replaces the
configured slippage assumption with the average slippage of the last few
executed swaps, read back from the recent notification tail.

Risk levels:
  LOW      score < 35
  MEDIUM   35 <= score < 65
  HIGH     score >= 65

Usage:
    advisory = await agent.get_trade_advisory()
    print(advisory.recommendation, advisory.risk_level, advisory.reason)
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Iterable, Optional

from decision_logic import SwapAction, SwapDirection


ADVISORY_TRADE_COUNT = 5
NO_WALLET_RISK_SCORE = 50.0
NO_WALLET_REASON = "No active trader wallet available."


class RiskLevel(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"


def risk_level(score: float) -> RiskLevel:
    if score >= 65:
        return RiskLevel.HIGH
    if score >= 35:
        return RiskLevel.MEDIUM
    return RiskLevel.LOW


# ─── Data Classes ─────────────────────────────────────────────────────────────


@dataclass
class PastTrade:
    timestamp: str
    message: str
    signature: Optional[str] = None
    slippage_bps: Optional[float] = None

    def to_dict(self) -> dict:
        return {
            "timestamp": self.timestamp,
            "signature": self.signature,
            "slippage_bps": self.slippage_bps,
            "message": self.message,
        }


@dataclass
class AdvisoryInputs:
    trader_wallet: Optional[str]
    base_balance: float
    quote_balance: float
    portfolio_allocation: float
    estimated_slippage_bps: float
    daily_trade_count: int
    success_rate: float
    risk_score: float
    past_trades: list[PastTrade] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "trader_wallet": self.trader_wallet,
            "base_balance": self.base_balance,
            "quote_balance": self.quote_balance,
            "portfolio_allocation": self.portfolio_allocation,
            "estimated_slippage_bps": self.estimated_slippage_bps,
            "daily_trade_count": self.daily_trade_count,
            "success_rate": self.success_rate,
            "risk_score": self.risk_score,
            "past_trades": [t.to_dict() for t in self.past_trades],
        }


@dataclass
class TradeAdvisory:
    recommendation: SwapAction
    suggested_pct: float
    confidence: float           # 0.0–1.0
    risk_level: RiskLevel
    reason: str
    inputs: AdvisoryInputs
    direction: Optional[SwapDirection] = None

    def to_dict(self) -> dict:
        return {
            "recommendation": self.recommendation.value,
            "direction": self.direction.value if self.direction else None,
            "suggested_pct": self.suggested_pct,
            "confidence": self.confidence,
            "risk_level": self.risk_level.value,
            "reason": self.reason,
            "inputs": self.inputs.to_dict(),
        }


# ─── Helpers ──────────────────────────────────────────────────────────────────


def _slippage(value: Any) -> Optional[float]:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    if not math.isfinite(value):
        return None
    return float(value)


def recent_trades(events: Iterable[dict], limit: int = ADVISORY_TRADE_COUNT) -> list[PastTrade]:
    """Executed swaps from a notification tail, newest first."""
    trades = []
    for event in events:
        fields = event.get("fields") or {}
        if not (fields.get("tx_signature") or fields.get("explorer_url")):
            continue
        trades.append(PastTrade(
            timestamp=event.get("timestamp", ""),
            message=event.get("message", ""),
            signature=fields.get("tx_signature"),
            slippage_bps=_slippage(fields.get("slippage_bps")),
        ))
    if limit <= 0:
        return []
    return list(reversed(trades[-limit:]))


def estimate_slippage(trades: Iterable[PastTrade], fallback: float) -> float:
    """Mean slippage of the trades that reported one, else the fallback."""
    samples = [t.slippage_bps for t in trades if t.slippage_bps is not None]
    if not samples:
        return float(fallback)
    return sum(samples) / len(samples)


def no_wallet_advisory(max_slippage_bps: float) -> TradeAdvisory:
    return TradeAdvisory(
        recommendation=SwapAction.HOLD,
        suggested_pct=0.0,
        confidence=0.1,
        risk_level=RiskLevel.MEDIUM,
        reason=NO_WALLET_REASON,
        inputs=AdvisoryInputs(
            trader_wallet=None,
            base_balance=0.0,
            quote_balance=0.0,
            portfolio_allocation=0.0,
            estimated_slippage_bps=float(max_slippage_bps),
            daily_trade_count=0,
            success_rate=0.0,
            risk_score=NO_WALLET_RISK_SCORE,
        ),
    )
