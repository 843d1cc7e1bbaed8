"""
economy_ledger.py — Reward-token bookkeeping driven by trade outcomes.

After every execution attempt the scheduler reports the outcome here. The
ledger tracks trader activity and loss streaks and issues token side effects
through the TokenService:

  - profitable swap   → reward transfer (7% of notional, min 1) trader → treasury
  - activity count    → periodic reward mint to the treasury
  - full participation → treasury redistributes 10% of its balance evenly
                         across operational wallets

None of this gates trading. Idempotency is counter-based (runtime state, not
on-chain state): a crash between a mint/transfer and the counter reset can
issue the same reward again after restart. This is a known limitation.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from loguru import logger

from execution_service import AgentTopology, TokenService
from notifications import NotificationSink


LOSS_STREAK_WARNING = 3
REWARD_PCT = 0.07
REDISTRIBUTION_PCT = 0.10
ACTIVITY_WINDOW = timedelta(hours=24)


# ─── Data Classes ─────────────────────────────────────────────────────────────


@dataclass
class EconomyPolicy:
    activity_mint_threshold: int = 5
    reward_mint_amount: float = 5_000.0
    redistribution_threshold: float = 50_000.0


@dataclass
class WalletActivity:
    count: int = 0
    last_active_at: Optional[datetime] = None

    def to_dict(self) -> dict:
        return {
            "count": self.count,
            "last_active_at": self.last_active_at.isoformat() if self.last_active_at else None,
        }


@dataclass
class EconomyRuntime:
    initialized: bool = False
    mint_address: Optional[str] = None
    trader_consecutive_losses: int = 0
    trader_activity_count: int = 0
    activity: dict[str, WalletActivity] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "initialized": self.initialized,
            "mint_address": self.mint_address,
            "trader_consecutive_losses": self.trader_consecutive_losses,
            "trader_activity_count": self.trader_activity_count,
            "activity": {wallet: a.to_dict() for wallet, a in self.activity.items()},
        }


def reward_amount(notional_value: float) -> float:
    """Reward for a profitable swap: 7% of notional, never below 1 token."""
    return max(1.0, round(notional_value * REWARD_PCT, 2))


# ─── Economy Ledger ───────────────────────────────────────────────────────────


class EconomyLedger:

    def __init__(
        self,
        tokens: TokenService,
        topology: AgentTopology,
        policy: Optional[EconomyPolicy] = None,
        notifier: Optional[NotificationSink] = None,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ) -> None:
        self.tokens = tokens
        self.topology = topology
        self.policy = policy or EconomyPolicy()
        self.notifier = notifier or NotificationSink()
        self._clock = clock
        self._runtime = EconomyRuntime()

    # ─── Activity ─────────────────────────────────────────────────────────────

    def _mark_activity(self, wallet_id: str) -> None:
        entry = self._runtime.activity.setdefault(wallet_id, WalletActivity())
        entry.count += 1
        entry.last_active_at = self._clock()

    def is_active(self, wallet_id: str, window: timedelta = ACTIVITY_WINDOW) -> bool:
        entry = self._runtime.activity.get(wallet_id)
        if entry is None or entry.last_active_at is None:
            return False
        return self._clock() - entry.last_active_at <= window

    @property
    def initialized(self) -> bool:
        return self._runtime.initialized and self._runtime.mint_address is not None

    # ─── Setup ────────────────────────────────────────────────────────────────

    async def initialize(self) -> None:
        """Create the reward token, then mark every wallet active."""
        setup = await self.tokens.initialize_economy(self.topology)
        self._runtime.initialized = True
        self._runtime.mint_address = setup.mint_address

        self._mark_activity(self.topology.treasury_wallet)
        for wallet in self.topology.operational_wallets:
            self._mark_activity(wallet)

        logger.info(f"EconomyLedger: initialized (mint={setup.mint_address})")

    # ─── Outcome Hooks ────────────────────────────────────────────────────────

    async def on_trade_outcome(
        self, successful: bool, profitable: bool, notional_value: float
    ) -> Optional[float]:
        """
        Record one trade outcome for the trader wallet.

        Returns:
            The reward amount transferred to the treasury, or None.
        """
        if not self.initialized:
            await self.initialize()

        self._mark_activity(self.topology.trader_wallet)
        self._runtime.trader_activity_count += 1

        if not successful:
            self._runtime.trader_consecutive_losses += 1
            streak = self._runtime.trader_consecutive_losses
            if streak >= LOSS_STREAK_WARNING:
                self.notifier.emit(
                    "warn",
                    "Trader Agent requested reward reduction after consecutive losses.",
                    {"consecutive_losses": streak},
                )
            return None

        if not profitable:
            self._runtime.trader_consecutive_losses += 1
            return None

        self._runtime.trader_consecutive_losses = 0
        amount = reward_amount(notional_value)
        await self.tokens.transfer(
            self._runtime.mint_address,
            self.topology.trader_wallet,
            self.topology.treasury_wallet,
            amount,
            "Trader reward transfer after profitable swap",
        )
        logger.debug(f"EconomyLedger: rewarded treasury {amount} for notional {notional_value:.2f}")
        return amount

    async def maybe_mint_activity_reward(self) -> bool:
        """Mint the activity reward once the trader has been active often enough."""
        if not self.initialized:
            return False
        if self._runtime.trader_activity_count < self.policy.activity_mint_threshold:
            return False

        await self.tokens.mint_to(
            self._runtime.mint_address,
            self.topology.treasury_wallet,
            self.policy.reward_mint_amount,
            "Trader activity threshold reached",
        )
        self._runtime.trader_activity_count = 0
        self._mark_activity(self.topology.treasury_wallet)
        logger.info(f"EconomyLedger: minted {self.policy.reward_mint_amount} to treasury")
        return True

    async def maybe_redistribute_from_treasury(self) -> dict[str, float]:
        """
        Split 10% of the treasury across operational wallets.

        All-or-nothing: if any operational wallet has been idle for more than
        24 hours nothing is distributed.

        Returns:
            {wallet_id: amount} for each transfer made (empty if skipped).
        """
        if not self.initialized:
            return {}

        wallets = self.topology.operational_wallets
        active = [w for w in wallets if self.is_active(w)]
        if len(active) != len(wallets):
            self.notifier.emit(
                "warn",
                "Treasury distribution skipped: inactive agent detected.",
                {"active": len(active), "total": len(wallets)},
            )
            return {}

        mint = self._runtime.mint_address
        treasury_balance = await self.tokens.balance_of(mint, self.topology.treasury_wallet)
        if treasury_balance < self.policy.redistribution_threshold or not wallets:
            return {}

        per_agent = round(treasury_balance * REDISTRIBUTION_PCT / len(wallets), 2)
        if per_agent <= 0:
            return {}

        transfers: dict[str, float] = {}
        for wallet in wallets:
            await self.tokens.transfer(
                mint, self.topology.treasury_wallet, wallet, per_agent, "Treasury redistribution"
            )
            transfers[wallet] = per_agent

        self._mark_activity(self.topology.treasury_wallet)
        logger.info(
            f"EconomyLedger: redistributed {per_agent} to each of {len(wallets)} wallets "
            f"(treasury={treasury_balance:.2f})"
        )
        return transfers

    # ─── Status ───────────────────────────────────────────────────────────────

    def get_economy_status(self) -> dict:
        return self._runtime.to_dict()

    @property
    def runtime(self) -> EconomyRuntime:
        return self._runtime
