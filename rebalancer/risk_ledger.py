"""
risk_ledger.py — Global admission gate and circuit breaker.

Every trade passes through check_trade_allowed() immediately before it is
sent to the execution service. The ledger enforces hard caps (protocol
allow-list, trade size, slippage), a minimum interval between executions,
and a consecutive-failure circuit breaker.

Circuit breaker:
  - record_execution_failure() increments the failure streak; once the streak
    reaches max_consecutive_failures the breaker opens.
  - An open breaker never closes on its own. Only a successful execution
    (impossible while open) or reset_circuit_breaker() closes it, so an
    operator has to look at the failures before trading resumes.

Settings are replaced atomically: update_risk() merges a partial update,
validates the complete result and only then commits it.

Usage:
    ledger = RiskLedger()
    ok, reason = ledger.check_trade_allowed(
        AdmissionRequest(protocol=TradeProtocol.SWAP, amount_base=0.2, slippage_bps=50)
    )
    if not ok:
        logger.warning(f"Trade rejected: {reason}")
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Iterable, Mapping, Optional, Union

from loguru import logger


CIRCUIT_OPEN_MESSAGE = "Circuit breaker is open. Reset risk runtime to continue."


class TradeProtocol(str, Enum):
    """
    Closed set of execution paths a trade can take.

    The agent only submits SWAP and AUX_SWAP. HOLD never reaches execution and
    TRANSFER belongs to the wallet operations surface, which this agent does not
    drive; both stay in the set so risk settings can name every protocol.
    """
    HOLD = "hold"
    SWAP = "swap"
    AUX_SWAP = "aux_swap"
    TRANSFER = "transfer"


ALL_PROTOCOLS = frozenset(TradeProtocol)


class RiskConfigError(ValueError):
    """Raised when a risk settings update is invalid. Settings are left unchanged."""

    def __init__(self, field_name: str, message: str) -> None:
        super().__init__(message)
        self.field = field_name


class TradeRejected(Exception):
    """Raised by assert_trade_allowed() when the admission gate denies a trade."""


# ─── Data Classes ─────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class RiskSettings:
    max_trade_size_base: float = 0.5
    max_slippage_bps: int = 100
    min_interval_ms: int = 10_000
    max_consecutive_failures: int = 3
    allowed_protocols: frozenset = field(default_factory=lambda: ALL_PROTOCOLS)

    def to_dict(self) -> dict:
        return {
            "max_trade_size_base": self.max_trade_size_base,
            "max_slippage_bps": self.max_slippage_bps,
            "min_interval_ms": self.min_interval_ms,
            "max_consecutive_failures": self.max_consecutive_failures,
            "allowed_protocols": sorted(p.value for p in self.allowed_protocols),
        }


@dataclass
class RiskRuntime:
    consecutive_failures: int = 0
    circuit_breaker_open: bool = False
    last_execution_at: Optional[datetime] = None
    last_error: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "consecutive_failures": self.consecutive_failures,
            "circuit_breaker_open": self.circuit_breaker_open,
            "last_execution_at": (
                self.last_execution_at.isoformat() if self.last_execution_at else None
            ),
            "last_error": self.last_error,
        }


@dataclass
class AdmissionRequest:
    protocol: TradeProtocol
    amount_base: float
    slippage_bps: Optional[float] = None


# ─── Validation ───────────────────────────────────────────────────────────────


def _is_strict_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def _coerce_protocols(value: Iterable[Any]) -> frozenset:
    if isinstance(value, (str, bytes)) or not isinstance(value, Iterable):
        raise RiskConfigError("allowed_protocols", "allowed_protocols must be a collection of protocols")
    protocols = set()
    for item in value:
        try:
            protocols.add(TradeProtocol(item))
        except ValueError:
            raise RiskConfigError(
                "allowed_protocols", f"allowed_protocols contains unknown protocol {item!r}"
            ) from None
    return frozenset(protocols)


def validate_settings(settings: RiskSettings) -> None:
    """Check every field of ``settings``; raise RiskConfigError on the first bad one."""
    size = settings.max_trade_size_base
    if isinstance(size, bool) or not isinstance(size, (int, float)) or not math.isfinite(size) or size <= 0:
        raise RiskConfigError("max_trade_size_base", "max_trade_size_base must be a positive number")

    if not _is_strict_int(settings.max_slippage_bps) or settings.max_slippage_bps <= 0:
        raise RiskConfigError("max_slippage_bps", "max_slippage_bps must be a positive integer")

    if not _is_strict_int(settings.min_interval_ms) or settings.min_interval_ms <= 0:
        raise RiskConfigError("min_interval_ms", "min_interval_ms must be a positive integer")

    if not _is_strict_int(settings.max_consecutive_failures) or settings.max_consecutive_failures <= 0:
        raise RiskConfigError(
            "max_consecutive_failures", "max_consecutive_failures must be a positive integer"
        )

    if not settings.allowed_protocols:
        raise RiskConfigError(
            "allowed_protocols", "allowed_protocols must include at least one protocol"
        )


# ─── Risk Ledger ──────────────────────────────────────────────────────────────


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class RiskLedger:
    """
    Stateful global risk gate.

    Only the recorders and the explicit admin calls (update_risk,
    reset_circuit_breaker) mutate state; check_trade_allowed() is read-only.
    """

    def __init__(
        self,
        settings: Optional[RiskSettings] = None,
        clock: Callable[[], datetime] = _utc_now,
    ) -> None:
        self._settings = settings or RiskSettings()
        validate_settings(self._settings)
        self._runtime = RiskRuntime()
        self._clock = clock

        logger.info(
            f"RiskLedger initialized: max_size={self._settings.max_trade_size_base} "
            f"max_slip={self._settings.max_slippage_bps}bps "
            f"min_interval={self._settings.min_interval_ms}ms "
            f"max_failures={self._settings.max_consecutive_failures}"
        )

    # ─── Accessors ────────────────────────────────────────────────────────────

    @property
    def settings(self) -> RiskSettings:
        return self._settings

    @property
    def runtime(self) -> RiskRuntime:
        return replace(self._runtime)

    @property
    def circuit_breaker_open(self) -> bool:
        return self._runtime.circuit_breaker_open

    def get_risk_status(self) -> dict:
        return {
            "settings": self._settings.to_dict(),
            "runtime": self._runtime.to_dict(),
        }

    # ─── Admission ────────────────────────────────────────────────────────────

    def check_trade_allowed(self, request: AdmissionRequest) -> tuple[bool, str]:
        """
        Evaluate ``request`` against the current settings and runtime.

        Returns:
            (allowed, reason) — reason explains the first failed check.
        """
        settings = self._settings

        if self._runtime.circuit_breaker_open:
            return False, CIRCUIT_OPEN_MESSAGE

        if request.protocol not in settings.allowed_protocols:
            return False, f"Protocol {request.protocol.value} is not allowed"

        if request.amount_base > settings.max_trade_size_base:
            return False, (
                f"Trade size {request.amount_base} exceeds max_trade_size_base "
                f"{settings.max_trade_size_base}"
            )

        if request.slippage_bps and request.slippage_bps > settings.max_slippage_bps:
            return False, (
                f"slippage_bps {request.slippage_bps} exceeds max_slippage_bps "
                f"{settings.max_slippage_bps}"
            )

        last = self._runtime.last_execution_at
        if last is not None:
            elapsed_ms = (self._clock() - last).total_seconds() * 1000
            if elapsed_ms < settings.min_interval_ms:
                wait_s = math.ceil((settings.min_interval_ms - elapsed_ms) / 1000)
                return False, f"Rate limit active: wait {wait_s}s"

        return True, "OK"

    def assert_trade_allowed(self, request: AdmissionRequest) -> None:
        """Guard-style variant of check_trade_allowed(); raises TradeRejected."""
        allowed, reason = self.check_trade_allowed(request)
        if not allowed:
            raise TradeRejected(reason)

    # ─── Outcome Recording ────────────────────────────────────────────────────

    def record_execution_success(self) -> None:
        self._runtime.consecutive_failures = 0
        self._runtime.circuit_breaker_open = False
        self._runtime.last_error = None
        self._runtime.last_execution_at = self._clock()

    def record_execution_failure(self, error: Union[BaseException, str]) -> None:
        self._runtime.consecutive_failures += 1
        self._runtime.last_error = str(error)
        self._runtime.last_execution_at = self._clock()

        if (
            not self._runtime.circuit_breaker_open
            and self._runtime.consecutive_failures >= self._settings.max_consecutive_failures
        ):
            self._runtime.circuit_breaker_open = True
            logger.warning(
                f"RiskLedger: circuit breaker OPEN after "
                f"{self._runtime.consecutive_failures} consecutive failures "
                f"(last error: {self._runtime.last_error})"
            )

    # ─── Admin ────────────────────────────────────────────────────────────────

    def update_risk(self, partial: Mapping[str, Any]) -> dict:
        """
        Merge ``partial`` into the current settings and commit if the result is valid.

        Raises:
            RiskConfigError: unknown field or invalid merged value. Nothing changes.
        """
        known = set(RiskSettings.__dataclass_fields__)
        unknown = sorted(set(partial) - known)
        if unknown:
            raise RiskConfigError(unknown[0], f"Unknown risk setting {unknown[0]!r}")

        changes = dict(partial)
        if "allowed_protocols" in changes:
            changes["allowed_protocols"] = _coerce_protocols(changes["allowed_protocols"])

        merged = replace(self._settings, **changes)
        validate_settings(merged)
        self._settings = merged

        logger.info(f"RiskLedger: settings updated {sorted(changes)}")
        return self.get_risk_status()

    def reset_circuit_breaker(self) -> dict:
        self._runtime.consecutive_failures = 0
        self._runtime.circuit_breaker_open = False
        self._runtime.last_error = None
        logger.info("RiskLedger: circuit breaker reset by operator")
        return self.get_risk_status()
