"""
trade_governor.py — Per-trade pre-flight approval for proposed swaps.

The governor is the first of two admission gates. It scores one concrete
swap request against a computed risk score and a set of hard caps. It holds
no state beyond its limits; the global, stateful gate (circuit breaker and
rate limiting) lives in risk_ledger.py.

Checks run in priority order and the first violation wins:
  1. risk score above threshold
  2. requested slippage above the allowed maximum
  3. requested swap percentage above the cap
  4. daily swap count at or above the cap
  5. min base reserve violated

Usage:
    governor = TradeGovernor(GovernorLimits(max_swap_pct=0.25))
    verdict = governor.evaluate(request, risk_score=compute_risk_score(...))
    if not verdict.allowed:
        logger.warning(f"Swap blocked: {verdict.reason}")
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from loguru import logger


# ─── Data Classes ─────────────────────────────────────────────────────────────


@dataclass
class GovernorLimits:
    risk_score_threshold: float = 70.0
    max_swap_pct: float = 0.25
    max_daily_swaps: int = 20
    min_base_reserve: float = 0.05


@dataclass
class GovernorRequest:
    """One proposed swap, expressed in base units."""
    base_balance: float
    requested_base: float
    requested_pct: float
    slippage_bps: float
    max_allowed_slippage_bps: float
    daily_swap_count: int


@dataclass(frozen=True)
class GovernorVerdict:
    allowed: bool
    reason: str

    def to_dict(self) -> dict:
        return {"allowed": self.allowed, "reason": self.reason}


# ─── Risk Score ───────────────────────────────────────────────────────────────


def compute_risk_score(
    confidence: float,
    consecutive_failures: int,
    max_slippage_bps: float,
    base_balance: float,
    min_base_reserve: float,
    success_rate: float,
) -> float:
    """
    Heuristic 0-100ish score; higher is riskier.

    Anything the strategy has no confidence in is scored as maximally risky.
    """
    if confidence < 1:
        return 100.0
    score = (
        consecutive_failures * 18
        + max_slippage_bps / 5
        + (25 if base_balance < min_base_reserve else 0)
        + (1 - success_rate) * 20
    )
    return round(score, 2)


# ─── Governor ─────────────────────────────────────────────────────────────────


class TradeGovernor:
    """Stateless swap approval against configured limits."""

    def __init__(self, limits: Optional[GovernorLimits] = None) -> None:
        self.limits = limits or GovernorLimits()

    def evaluate(self, request: GovernorRequest, risk_score: float) -> GovernorVerdict:
        limits = self.limits

        if risk_score > limits.risk_score_threshold:
            return self._reject(
                f"Risk score {risk_score:.2f} exceeds threshold {limits.risk_score_threshold}."
            )

        if request.slippage_bps > request.max_allowed_slippage_bps:
            return self._reject(
                f"Slippage {request.slippage_bps} bps exceeds allowed threshold "
                f"{request.max_allowed_slippage_bps} bps."
            )

        if request.requested_pct > limits.max_swap_pct:
            return self._reject(
                f"Requested swap percentage {request.requested_pct:.4f} exceeds cap "
                f"{limits.max_swap_pct}."
            )

        if request.daily_swap_count >= limits.max_daily_swaps:
            return self._reject(
                f"Daily swap count {request.daily_swap_count} reached cap "
                f"{limits.max_daily_swaps}."
            )

        if request.base_balance - request.requested_base < limits.min_base_reserve:
            return self._reject(
                f"Swap would violate min base reserve ({limits.min_base_reserve}): "
                f"balance {request.base_balance} - requested {request.requested_base}."
            )

        logger.debug(
            f"TradeGovernor: approved pct={request.requested_pct:.4f} "
            f"base={request.requested_base} risk={risk_score:.2f}"
        )
        return GovernorVerdict(allowed=True, reason="Governor approved swap.")

    @staticmethod
    def _reject(reason: str) -> GovernorVerdict:
        logger.info(f"TradeGovernor: rejected — {reason}")
        return GovernorVerdict(allowed=False, reason=reason)
