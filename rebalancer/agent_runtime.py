"""
agent_runtime.py — Single-flight rebalance scheduler for the trading agent.

Orchestrates one cycle:
  wallet + price → decide_intent() → TradeGovernor.evaluate()
  → RiskLedger.check_trade_allowed() → ExecutionService.execute_swap()
  → swap stats / economy hooks / risk ledger bookkeeping

States: STOPPED → RUNNING ⇄ CYCLE_IN_PROGRESS.

Guarantees:
- At most one cycle body runs at a time. The busy flag is checked and set
  with no await in between, so a timer tick racing a manual run_cycle() call
  cannot both get in; the loser receives the current status unchanged.
- Admission rejections are returned outcomes (REJECTED). Execution failures
  are recorded and raised as ExecutionFailed to manual callers; the ticker
  logs them and keeps going.
- The execution round-trip is bounded by config.execution_timeout_s; a
  timeout counts as an execution failure.
- pause() stops the ticker only. A cycle already running finishes.

Usage:
    agent = RebalanceAgent(config, executor=executor, wallets=wallets, tokens=tokens)
    await agent.start()
    ...
    await agent.stop()
"""

from __future__ import annotations

import asyncio
import math
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Mapping, Optional

from loguru import logger

from agent_config import AgentConfig
from decision_logic import (
    PortfolioSnapshot,
    StrategyParams,
    SwapAction,
    SwapDirection,
    TradeIntent,
    decide_intent,
)
from economy_ledger import EconomyLedger, EconomyPolicy
from execution_service import (
    AgentTopology,
    ExecutionError,
    ExecutionService,
    TokenService,
    WalletPortfolio,
    WalletQueryService,
)
from notifications import NotificationSink, RecentEventSink
from risk_ledger import (
    ALL_PROTOCOLS,
    AdmissionRequest,
    RiskLedger,
    RiskSettings,
    TradeProtocol,
)
from trade_advisor import (
    AdvisoryInputs,
    TradeAdvisory,
    estimate_slippage,
    no_wallet_advisory,
    recent_trades,
    risk_level,
)
from trade_governor import (
    GovernorLimits,
    GovernorRequest,
    GovernorVerdict,
    TradeGovernor,
    compute_risk_score,
)


PROFITABLE_SLIPPAGE_FRACTION = 0.6
MIN_PRICE = 0.0001
BUSY_MESSAGE = "Agent cycle already in progress."
SWAPS_DISABLED_MESSAGE = "Swaps are disabled by configuration."


class ExecutionFailed(Exception):
    """The execution service failed (or timed out) for an admitted swap."""

    def __init__(self, message: str, outcome: "CycleOutcome") -> None:
        super().__init__(message)
        self.outcome = outcome


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


# ─── Decisions & Outcomes ─────────────────────────────────────────────────────


class TradeAction(str, Enum):
    BUY = "BUY"
    SELL = "SELL"
    HOLD = "HOLD"


class OutcomeKind(str, Enum):
    HOLD = "hold"
    REJECTED = "rejected"
    EXECUTED = "executed"
    FAILED = "failed"


@dataclass(frozen=True)
class TradeDecision:
    """Operator-facing view of an intent: what would be bought or sold, and how."""
    action: TradeAction
    protocol: TradeProtocol
    amount_base: float
    slippage_bps: int
    confidence: float
    reason: str
    input_asset: Optional[str] = None
    output_asset: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "action": self.action.value,
            "protocol": self.protocol.value,
            "input_asset": self.input_asset,
            "output_asset": self.output_asset,
            "amount_base": self.amount_base,
            "slippage_bps": self.slippage_bps,
            "confidence": self.confidence,
            "reason": self.reason,
        }


@dataclass(frozen=True)
class CycleOutcome:
    kind: OutcomeKind
    message: str
    reason: str
    tx_signature: Optional[str] = None
    error: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "kind": self.kind.value,
            "message": self.message,
            "reason": self.reason,
            "tx_signature": self.tx_signature,
            "error": self.error,
        }


@dataclass(frozen=True)
class SwapPlan:
    """Concrete swap derived from an intent and the current balances."""
    protocol: TradeProtocol
    direction: SwapDirection
    input_asset: str
    output_asset: str
    amount: float           # in input asset units
    amount_base: float      # base-equivalent size for the admission gate
    requested_base: float   # base moved by the swap (counts against the reserve)
    notional_value: float   # in quote units


# ─── Runtime State ────────────────────────────────────────────────────────────


@dataclass
class SwapStats:
    last_swap_at: Optional[datetime] = None
    successful_swaps: int = 0
    failed_swaps: int = 0
    daily_swap_count: int = 0
    daily_key: str = ""
    consecutive_swap_failures: int = 0

    @property
    def success_rate(self) -> float:
        total = self.successful_swaps + self.failed_swaps
        return 1.0 if total == 0 else self.successful_swaps / total

    def roll_day(self, key: str) -> bool:
        """Reset the daily counter when ``key`` (UTC date) differs. Returns True on rollover."""
        if self.daily_key == key:
            return False
        self.daily_key = key
        self.daily_swap_count = 0
        return True

    def record_success(self, at: datetime) -> None:
        self.last_swap_at = at
        self.daily_swap_count += 1
        self.successful_swaps += 1
        self.consecutive_swap_failures = 0

    def record_failure(self, at: datetime) -> None:
        self.last_swap_at = at
        self.failed_swaps += 1
        self.consecutive_swap_failures += 1

    def to_dict(self) -> dict:
        return {
            "last_swap_at": _iso(self.last_swap_at),
            "successful_swaps": self.successful_swaps,
            "failed_swaps": self.failed_swaps,
            "daily_swap_count": self.daily_swap_count,
            "daily_key": self.daily_key,
            "consecutive_swap_failures": self.consecutive_swap_failures,
        }


@dataclass
class AgentRuntime:
    topology: AgentTopology
    running: bool = False
    cycle_in_progress: bool = False
    interval_ms: int = 0
    cycles: int = 0
    failures: int = 0
    rejections: int = 0
    last_run_at: Optional[datetime] = None
    last_action: Optional[str] = None
    last_decision: Optional[TradeDecision] = None
    last_intent: Optional[TradeIntent] = None
    last_outcome: Optional[CycleOutcome] = None
    last_tx_signature: Optional[str] = None
    swap_stats: SwapStats = field(default_factory=SwapStats)

    def to_dict(self) -> dict:
        return {
            "running": self.running,
            "cycle_in_progress": self.cycle_in_progress,
            "interval_ms": self.interval_ms,
            "cycles": self.cycles,
            "failures": self.failures,
            "rejections": self.rejections,
            "last_run_at": _iso(self.last_run_at),
            "last_action": self.last_action,
            "last_decision": self.last_decision.to_dict() if self.last_decision else None,
            "last_intent": self.last_intent.to_dict() if self.last_intent else None,
            "last_outcome": self.last_outcome.to_dict() if self.last_outcome else None,
            "last_tx_signature": self.last_tx_signature,
            "topology": self.topology.to_dict(),
            "swap_stats": self.swap_stats.to_dict(),
        }


@dataclass
class CycleContext:
    portfolio: WalletPortfolio
    snapshot: PortfolioSnapshot
    intent: TradeIntent
    price: float


# ─── Mapping Helpers ──────────────────────────────────────────────────────────


_PROTOCOL_BY_DIRECTION = {
    SwapDirection.BASE_TO_QUOTE: TradeProtocol.SWAP,
    SwapDirection.QUOTE_TO_BASE: TradeProtocol.SWAP,
    SwapDirection.AUX_PAIR: TradeProtocol.AUX_SWAP,
}


def plan_swap(
    intent: TradeIntent,
    portfolio: WalletPortfolio,
    price: float,
    config: AgentConfig,
) -> SwapPlan:
    """Turn a SWAP intent into concrete amounts. Amounts are rounded to 6 places."""
    direction = intent.direction
    pct = intent.amount_pct
    price = max(price, MIN_PRICE)

    if direction is SwapDirection.BASE_TO_QUOTE:
        amount_base = round(portfolio.base_balance * pct, 6)
        return SwapPlan(
            protocol=_PROTOCOL_BY_DIRECTION[direction],
            direction=direction,
            input_asset=config.base_asset,
            output_asset=config.quote_asset,
            amount=amount_base,
            amount_base=amount_base,
            requested_base=amount_base,
            notional_value=amount_base * price,
        )

    if direction is SwapDirection.QUOTE_TO_BASE:
        notional = round(portfolio.quote_balance * pct, 6)
        amount_base = round(notional / price, 6)
        return SwapPlan(
            protocol=_PROTOCOL_BY_DIRECTION[direction],
            direction=direction,
            input_asset=config.quote_asset,
            output_asset=config.base_asset,
            amount=notional,
            amount_base=amount_base,
            requested_base=amount_base,
            notional_value=notional,
        )

    if direction is SwapDirection.AUX_PAIR:
        one = portfolio.aux(config.aux_one_asset)
        two = portfolio.aux(config.aux_two_asset)
        if one >= two:
            source, target, balance = config.aux_one_asset, config.aux_two_asset, one
        else:
            source, target, balance = config.aux_two_asset, config.aux_one_asset, two
        return SwapPlan(
            protocol=_PROTOCOL_BY_DIRECTION[direction],
            direction=direction,
            input_asset=source,
            output_asset=target,
            amount=round(balance * pct, 6),
            amount_base=0.0,
            requested_base=0.0,
            notional_value=0.0,
        )

    raise ValueError(f"Unsupported swap direction: {direction!r}")


def map_intent_to_decision(
    intent: TradeIntent,
    plan: Optional[SwapPlan],
    slippage_bps: int,
) -> TradeDecision:
    if intent.action is SwapAction.HOLD or plan is None:
        return TradeDecision(
            action=TradeAction.HOLD,
            protocol=TradeProtocol.HOLD,
            amount_base=0.0,
            slippage_bps=slippage_bps,
            confidence=intent.confidence,
            reason=intent.reason,
        )

    action = TradeAction.BUY if plan.direction is SwapDirection.QUOTE_TO_BASE else TradeAction.SELL
    return TradeDecision(
        action=action,
        protocol=plan.protocol,
        amount_base=plan.amount_base,
        slippage_bps=slippage_bps,
        confidence=intent.confidence,
        reason=intent.reason,
        input_asset=plan.input_asset,
        output_asset=plan.output_asset,
    )


def is_profitable(execution_slippage_bps: float, max_slippage_bps: float) -> bool:
    """A swap counts as profitable when it filled well inside the allowed slippage."""
    return execution_slippage_bps <= max_slippage_bps * PROFITABLE_SLIPPAGE_FRACTION


# ─── Rebalance Agent ──────────────────────────────────────────────────────────


class RebalanceAgent:
    """
    Owns all runtime state for one agent instance.

    Collaborators are injected; nothing here touches keys, RPC endpoints or
    module-level state, so several agents can run side by side in one process.
    """

    def __init__(
        self,
        config: Optional[AgentConfig] = None,
        executor: Optional[ExecutionService] = None,
        wallets: Optional[WalletQueryService] = None,
        tokens: Optional[TokenService] = None,
        notifier: Optional[NotificationSink] = None,
        clock: Callable[[], datetime] = _utc_now,
    ) -> None:
        if executor is None or wallets is None:
            raise ValueError("RebalanceAgent needs an execution service and a wallet service")

        self.config = config or AgentConfig()
        self.executor = executor
        self.wallets = wallets
        self.notifier = notifier or NotificationSink()
        self._clock = clock

        cfg = self.config
        self.topology = AgentTopology(
            treasury_wallet=cfg.treasury_wallet,
            trader_wallet=cfg.trader_wallet,
            operational_wallets=list(cfg.operational_wallets),
        )
        self.strategy = StrategyParams(
            target_ratio=cfg.target_base_ratio,
            drift_threshold=cfg.drift_threshold,
            cooldown_ms=cfg.cooldown_ms,
            max_swap_pct=cfg.max_swap_pct,
            max_daily_trades=cfg.max_daily_swaps,
        )
        self.governor = TradeGovernor(GovernorLimits(
            risk_score_threshold=cfg.risk_score_threshold,
            max_swap_pct=cfg.max_swap_pct,
            max_daily_swaps=cfg.max_daily_swaps,
            min_base_reserve=cfg.min_base_reserve,
        ))
        protocols = ALL_PROTOCOLS if cfg.enable_swap else ALL_PROTOCOLS - {TradeProtocol.SWAP}
        self.risk_ledger = RiskLedger(
            RiskSettings(
                max_trade_size_base=cfg.max_trade_size_base,
                max_slippage_bps=cfg.max_slippage_bps,
                min_interval_ms=cfg.min_interval_ms,
                max_consecutive_failures=cfg.max_consecutive_failures,
                allowed_protocols=frozenset(protocols),
            ),
            clock=clock,
        )
        self.economy: Optional[EconomyLedger] = None
        if tokens is not None:
            self.economy = EconomyLedger(
                tokens,
                self.topology,
                EconomyPolicy(
                    activity_mint_threshold=cfg.activity_mint_threshold,
                    reward_mint_amount=cfg.reward_mint_amount,
                    redistribution_threshold=cfg.redistribution_threshold,
                ),
                notifier=self.notifier,
                clock=clock,
            )

        self._runtime = AgentRuntime(topology=self.topology, interval_ms=cfg.loop_interval_ms)
        self._runtime.swap_stats.daily_key = self._today_key()
        self._ticker: Optional[asyncio.Task] = None
        self._cycle_tasks: set[asyncio.Task] = set()

    # ─── Lifecycle ────────────────────────────────────────────────────────────

    async def start(self, interval_ms: Optional[int] = None) -> dict:
        """STOPPED → RUNNING. Fires a cycle immediately, then one every interval."""
        if self._runtime.running:
            return self.get_status()

        interval = interval_ms if interval_ms is not None else self.config.loop_interval_ms
        if interval <= 0:
            raise ValueError("interval_ms must be positive")

        self._runtime.running = True
        self._runtime.interval_ms = interval
        self._ticker = asyncio.create_task(self._tick_loop(interval))

        logger.info(f"RebalanceAgent: autonomous loop started ({interval}ms interval)")
        self.notifier.emit("info", f"Autonomous loop started ({interval}ms interval)")
        return self.get_status()

    async def pause(self) -> dict:
        """RUNNING → STOPPED. A cycle that is already running is left to finish."""
        self._runtime.running = False
        ticker, self._ticker = self._ticker, None
        if ticker is not None and not ticker.done():
            ticker.cancel()
            try:
                await ticker
            except asyncio.CancelledError:
                pass

        logger.info("RebalanceAgent: autonomous loop paused")
        self.notifier.emit("warn", "Autonomous loop paused")
        return self.get_status()

    async def stop(self) -> dict:
        """pause() and then wait for any in-flight scheduled cycle."""
        await self.pause()
        if self._cycle_tasks:
            await asyncio.gather(*self._cycle_tasks, return_exceptions=True)
        return self.get_status()

    @property
    def is_running(self) -> bool:
        return self._runtime.running

    async def _tick_loop(self, interval_ms: int) -> None:
        while self._runtime.running:
            task = asyncio.create_task(self._scheduled_cycle())
            self._cycle_tasks.add(task)
            task.add_done_callback(self._cycle_tasks.discard)
            await asyncio.sleep(interval_ms / 1000)

    async def _scheduled_cycle(self) -> None:
        try:
            await self.run_cycle()
        except ExecutionFailed as exc:
            logger.warning(f"RebalanceAgent: scheduled cycle failed: {exc}")
        except Exception as exc:
            logger.exception(f"RebalanceAgent: unhandled error in scheduled cycle: {exc}")

    # ─── Cycle ────────────────────────────────────────────────────────────────

    async def run_cycle(self) -> dict:
        """
        Run one decision → admission → execution → accounting pass.

        Returns the agent status after the cycle, or the current status
        untouched if another cycle is already in progress.

        Raises:
            ExecutionFailed: the execution service failed for an admitted swap.
        """
        if self._runtime.cycle_in_progress:
            logger.debug("RebalanceAgent: cycle already in progress, skipping")
            return self.get_status()

        self._runtime.cycle_in_progress = True
        try:
            await self._cycle()
        finally:
            self._runtime.cycle_in_progress = False
        return self.get_status()

    async def _cycle(self) -> CycleOutcome:
        self._roll_daily_counter()
        ctx = await self._build_context()
        intent = ctx.intent

        plan = plan_swap(intent, ctx.portfolio, ctx.price, self.config) if intent.is_swap else None
        self._record_decision(intent, plan)

        self.notifier.emit(
            "info",
            f"Decision: {intent.action.value} {intent.direction.value if intent.direction else ''}".strip(),
            {"confidence": intent.confidence, "reason": intent.reason, "amount_pct": intent.amount_pct},
        )

        if plan is None:
            return self._finish(CycleOutcome(
                kind=OutcomeKind.HOLD, message=f"HOLD: {intent.reason}", reason=intent.reason,
            ))

        return await self._admit_and_execute(ctx, plan)

    # ─── Manual Operations ────────────────────────────────────────────────────

    async def execute_trade(self, amount_base: float = 0.1) -> CycleOutcome:
        """
        Sell ``amount_base`` of the base asset through the full admission path.

        Shares the busy flag with run_cycle(); if a cycle is running the call
        is turned away with a REJECTED outcome and no counters change.

        Raises:
            ValueError: amount_base is not a positive finite number.
            ExecutionFailed: the execution service failed.
        """
        if isinstance(amount_base, bool) or not math.isfinite(amount_base) or amount_base <= 0:
            raise ValueError("amount_base must be greater than 0")

        if self._runtime.cycle_in_progress:
            return CycleOutcome(kind=OutcomeKind.REJECTED, message=BUSY_MESSAGE, reason=BUSY_MESSAGE)

        self._runtime.cycle_in_progress = True
        try:
            return await self._manual_trade(amount_base)
        finally:
            self._runtime.cycle_in_progress = False

    async def _manual_trade(self, amount_base: float) -> CycleOutcome:
        self._roll_daily_counter()
        portfolio = await self.wallets.get_portfolio(self.topology.trader_wallet)
        price = await self.estimate_base_price()

        balance = portfolio.base_balance
        pct = round(amount_base / balance, 6) if balance > 0 else 1.0
        reason = f"Manual execute_trade invocation ({amount_base} {self.config.base_asset})"
        intent = TradeIntent(
            action=SwapAction.SWAP,
            direction=SwapDirection.BASE_TO_QUOTE,
            amount_pct=pct,
            confidence=99.0,
            reason=reason,
        )
        plan = SwapPlan(
            protocol=TradeProtocol.SWAP,
            direction=SwapDirection.BASE_TO_QUOTE,
            input_asset=self.config.base_asset,
            output_asset=self.config.quote_asset,
            amount=amount_base,
            amount_base=amount_base,
            requested_base=amount_base,
            notional_value=amount_base * price,
        )
        ctx = CycleContext(
            portfolio=portfolio,
            snapshot=self._snapshot(portfolio, price),
            intent=intent,
            price=price,
        )
        self._record_decision(intent, plan)
        return await self._admit_and_execute(ctx, plan)

    async def simulate(self) -> dict:
        """
        Preview the next cycle without executing or mutating any counter.

        Runs the decision function, the governor and a read-only admission
        check against current state.
        """
        ctx = await self._build_context(preview=True)
        intent = ctx.intent
        plan = plan_swap(intent, ctx.portfolio, ctx.price, self.config) if intent.is_swap else None
        decision = map_intent_to_decision(intent, plan, self.risk_ledger.settings.max_slippage_bps)

        preview: dict[str, Any] = {
            "snapshot": ctx.snapshot.to_dict(),
            "intent": intent.to_dict(),
            "decision": decision.to_dict(),
            "risk_score": None,
            "governor": None,
            "admission": None,
            "risk": self.risk_ledger.get_risk_status(),
            "economy": self.economy.get_economy_status() if self.economy else None,
        }
        if plan is not None:
            risk_score = self._risk_score(ctx)
            verdict = self.governor.evaluate(self._governor_request(ctx, plan), risk_score)
            allowed, reason = self.risk_ledger.check_trade_allowed(self._admission_request(plan))
            preview["risk_score"] = risk_score
            preview["governor"] = verdict.to_dict()
            preview["admission"] = {"allowed": allowed, "reason": reason}

        self.notifier.emit(
            "info",
            f"Simulation: {intent.action.value} {intent.direction.value if intent.direction else ''}".strip(),
            {"confidence": intent.confidence, "reason": intent.reason},
        )
        return preview

    async def get_trade_advisory(self) -> TradeAdvisory:
        """
        Recommend the next trade from live balances and recent execution history.

        Slippage is estimated from the last few executed swaps kept by a
        RecentEventSink (the configured maximum when none reported one).
        Nothing is executed and no counter moves.
        """
        max_slippage = self.risk_ledger.settings.max_slippage_bps
        try:
            portfolio = await self.wallets.get_portfolio(self.topology.trader_wallet)
        except ExecutionError as exc:
            logger.warning(f"RebalanceAgent: advisory without trader wallet: {exc}")
            return no_wallet_advisory(max_slippage)

        events = self.notifier.recent(None) if isinstance(self.notifier, RecentEventSink) else []
        trades = recent_trades(events)
        estimated = estimate_slippage(trades, max_slippage)

        price = await self.estimate_base_price()
        snapshot = replace(self._snapshot(portfolio, price, preview=True), estimated_slippage_bps=estimated)
        intent = decide_intent(snapshot, self.strategy, now=self._clock())

        stats = self._runtime.swap_stats
        score = compute_risk_score(
            confidence=intent.confidence,
            consecutive_failures=stats.consecutive_swap_failures,
            max_slippage_bps=estimated,
            base_balance=portfolio.base_balance,
            min_base_reserve=self.config.min_base_reserve,
            success_rate=stats.success_rate,
        )
        score = round(min(max(score, 0.0), 100.0), 2)

        base_value = portfolio.base_balance * max(price, 0.0)
        total = portfolio.quote_balance + base_value
        allocation = base_value / total if total > 0 else 0.0

        return TradeAdvisory(
            recommendation=intent.action,
            direction=intent.direction,
            suggested_pct=intent.amount_pct,
            confidence=round(intent.confidence / 100, 2),
            risk_level=risk_level(score),
            reason=intent.reason,
            inputs=AdvisoryInputs(
                trader_wallet=portfolio.wallet_id,
                base_balance=portfolio.base_balance,
                quote_balance=portfolio.quote_balance,
                portfolio_allocation=round(allocation, 4),
                estimated_slippage_bps=round(estimated, 2),
                daily_trade_count=snapshot.daily_trade_count,
                success_rate=round(stats.success_rate, 4),
                risk_score=score,
                past_trades=trades,
            ),
        )

    # ─── Status & Admin ───────────────────────────────────────────────────────

    def get_status(self) -> dict:
        status = self._runtime.to_dict()
        status["risk"] = self.risk_ledger.get_risk_status()
        status["economy"] = self.economy.get_economy_status() if self.economy else None
        return status

    @property
    def runtime(self) -> AgentRuntime:
        return self._runtime

    def update_risk_settings(self, partial: Mapping[str, Any]) -> dict:
        """Raises RiskConfigError on an invalid update; settings are then unchanged."""
        return self.risk_ledger.update_risk(partial)

    def reset_circuit_breaker(self) -> dict:
        """Close the breaker and clear the swap failure streak that feeds the risk score."""
        self._runtime.swap_stats.consecutive_swap_failures = 0
        status = self.risk_ledger.reset_circuit_breaker()
        self.notifier.emit("info", "Circuit breaker reset by operator")
        return status

    # ─── Price & Snapshot ─────────────────────────────────────────────────────

    async def estimate_base_price(self) -> float:
        """Quote one base unit in quote units; fall back to the configured price."""
        fallback = self.config.fallback_base_price
        if not self.config.enable_swap:
            return fallback
        try:
            quote = await self.executor.fetch_quote(
                self.config.base_asset,
                self.config.quote_asset,
                1.0,
                self.risk_ledger.settings.max_slippage_bps,
            )
        except Exception as exc:
            logger.warning(f"RebalanceAgent: price quote failed, using fallback {fallback}: {exc}")
            return fallback
        if quote.out_amount > 0:
            return quote.out_amount
        logger.info(f"RebalanceAgent: empty price quote, using fallback {fallback}")
        return fallback

    def _today_key(self) -> str:
        return self._clock().astimezone(timezone.utc).date().isoformat()

    def _roll_daily_counter(self) -> None:
        if self._runtime.swap_stats.roll_day(self._today_key()):
            logger.info(f"RebalanceAgent: new trading day {self._runtime.swap_stats.daily_key}")

    def _snapshot(self, portfolio: WalletPortfolio, price: float, preview: bool = False) -> PortfolioSnapshot:
        stats = self._runtime.swap_stats
        daily_count = stats.daily_swap_count
        if preview and stats.daily_key != self._today_key():
            daily_count = 0
        return PortfolioSnapshot(
            base_balance=portfolio.base_balance,
            quote_balance=portfolio.quote_balance,
            base_price_in_quote=price,
            last_trade_at=stats.last_swap_at,
            trade_success_rate=stats.success_rate,
            daily_trade_count=daily_count,
            consecutive_failures=stats.consecutive_swap_failures,
            estimated_slippage_bps=self.risk_ledger.settings.max_slippage_bps,
            min_base_reserve=self.config.min_base_reserve,
            aux_one_balance=portfolio.aux(self.config.aux_one_asset),
            aux_two_balance=portfolio.aux(self.config.aux_two_asset),
        )

    async def _build_context(self, preview: bool = False) -> CycleContext:
        portfolio = await self.wallets.get_portfolio(self.topology.trader_wallet)
        price = await self.estimate_base_price()
        snapshot = self._snapshot(portfolio, price, preview=preview)
        intent = decide_intent(snapshot, self.strategy, now=self._clock())
        return CycleContext(portfolio=portfolio, snapshot=snapshot, intent=intent, price=price)

    # ─── Admission ────────────────────────────────────────────────────────────

    def _risk_score(self, ctx: CycleContext) -> float:
        return compute_risk_score(
            confidence=ctx.intent.confidence,
            consecutive_failures=self._runtime.swap_stats.consecutive_swap_failures,
            max_slippage_bps=self.risk_ledger.settings.max_slippage_bps,
            base_balance=ctx.portfolio.base_balance,
            min_base_reserve=self.config.min_base_reserve,
            success_rate=self._runtime.swap_stats.success_rate,
        )

    def _governor_request(self, ctx: CycleContext, plan: SwapPlan) -> GovernorRequest:
        max_slippage = self.risk_ledger.settings.max_slippage_bps
        return GovernorRequest(
            base_balance=ctx.portfolio.base_balance,
            requested_base=plan.requested_base,
            requested_pct=ctx.intent.amount_pct,
            slippage_bps=max_slippage,
            max_allowed_slippage_bps=max_slippage,
            daily_swap_count=ctx.snapshot.daily_trade_count,
        )

    def _admission_request(self, plan: SwapPlan) -> AdmissionRequest:
        return AdmissionRequest(
            protocol=plan.protocol,
            amount_base=plan.amount_base,
            slippage_bps=self.risk_ledger.settings.max_slippage_bps,
        )

    def _reject(self, reason: str) -> CycleOutcome:
        self.notifier.emit("warn", f"Swap blocked: {reason}", {"reason": reason})
        return self._finish(CycleOutcome(
            kind=OutcomeKind.REJECTED, message=f"Swap blocked: {reason}", reason=reason,
        ))

    async def _admit_and_execute(self, ctx: CycleContext, plan: SwapPlan) -> CycleOutcome:
        if not self.config.enable_swap:
            return self._reject(SWAPS_DISABLED_MESSAGE)

        verdict: GovernorVerdict = self.governor.evaluate(
            self._governor_request(ctx, plan), self._risk_score(ctx)
        )
        if not verdict.allowed:
            return self._reject(verdict.reason)

        allowed, reason = self.risk_ledger.check_trade_allowed(self._admission_request(plan))
        if not allowed:
            return self._reject(reason)

        return await self._execute(ctx, plan)

    # ─── Execution & Bookkeeping ──────────────────────────────────────────────

    async def _execute(self, ctx: CycleContext, plan: SwapPlan) -> CycleOutcome:
        max_slippage = self.risk_ledger.settings.max_slippage_bps
        stats = self._runtime.swap_stats

        try:
            execution = await asyncio.wait_for(
                self.executor.execute_swap(
                    self.topology.trader_wallet,
                    plan.input_asset,
                    plan.output_asset,
                    plan.amount,
                    max_slippage,
                    max_slippage,
                    ctx.intent.reason,
                ),
                timeout=self.config.execution_timeout_s,
            )
        except asyncio.TimeoutError as exc:
            error = f"Execution timed out after {self.config.execution_timeout_s}s"
            raise await self._record_failure(plan, error) from exc
        except Exception as exc:
            raise await self._record_failure(plan, str(exc) or type(exc).__name__) from exc

        stats.record_success(self._clock())
        await self._run_economy_hooks(
            successful=True,
            profitable=is_profitable(execution.slippage_bps, max_slippage),
            notional_value=plan.notional_value,
        )
        self.risk_ledger.record_execution_success()
        self._runtime.last_tx_signature = execution.signature

        message = f"Swap executed ({plan.direction.value})"
        self.notifier.emit("success", message, {
            "tx_signature": execution.signature,
            "input_asset": plan.input_asset,
            "output_asset": plan.output_asset,
            "in_amount": execution.in_amount,
            "out_amount": execution.out_amount,
            "route": list(execution.route),
            "slippage_bps": execution.slippage_bps,
            "explorer_url": execution.explorer_url,
        })
        return self._finish(CycleOutcome(
            kind=OutcomeKind.EXECUTED,
            message=message,
            reason=ctx.intent.reason,
            tx_signature=execution.signature,
        ))

    async def _record_failure(self, plan: SwapPlan, error: str) -> ExecutionFailed:
        """Book an execution failure and build the exception to raise."""
        self._runtime.swap_stats.record_failure(self._clock())
        await self._run_economy_hooks(successful=False, profitable=False, notional_value=plan.notional_value)
        self.risk_ledger.record_execution_failure(error)
        self._runtime.failures += 1

        logger.error(f"RebalanceAgent: execution failed ({plan.direction.value}): {error}")
        self.notifier.emit("error", error, {"direction": plan.direction.value})

        outcome = self._finish(CycleOutcome(
            kind=OutcomeKind.FAILED, message="Execution failed", reason=error, error=error,
        ))
        return ExecutionFailed(error, outcome)

    async def _run_economy_hooks(self, successful: bool, profitable: bool, notional_value: float) -> None:
        if self.economy is None:
            return
        try:
            await self.economy.on_trade_outcome(successful, profitable, notional_value)
            if successful:
                await self.economy.maybe_mint_activity_reward()
                await self.economy.maybe_redistribute_from_treasury()
        except Exception as exc:
            logger.warning(f"RebalanceAgent: economy update failed: {exc}")
            self.notifier.emit("error", f"Economy update failed: {exc}")

    def _record_decision(self, intent: TradeIntent, plan: Optional[SwapPlan]) -> None:
        decision = map_intent_to_decision(intent, plan, self.risk_ledger.settings.max_slippage_bps)
        self._runtime.last_decision = decision
        self._runtime.last_intent = intent

    def _finish(self, outcome: CycleOutcome) -> CycleOutcome:
        runtime = self._runtime
        runtime.cycles += 1
        if outcome.kind is OutcomeKind.REJECTED:
            runtime.rejections += 1
        runtime.last_run_at = self._clock()
        runtime.last_action = outcome.message
        runtime.last_outcome = outcome
        return outcome
