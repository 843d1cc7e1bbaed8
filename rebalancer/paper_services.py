"""
paper_services.py — In-memory collaborators for dry runs and tests.

Implements the three collaborator contracts from execution_service.py without
any network access:

  PaperWallets           balances per wallet per asset
  PaperExecutionService  price-table swaps with simulated slippage
  InMemoryTokenService   reward token ledger (mint / transfer / balance)

Swaps settle against PaperWallets immediately. Transaction signatures are
deterministic sha256 hashes of the swap parameters plus a sequence number, so
repeated runs of the same scenario produce the same signatures.

Usage:
    wallets = PaperWallets({"trader-agent": {"SOL": 10.0, "USDC": 500.0}})
    executor = PaperExecutionService(wallets, prices={"SOL": 100.0, "USDC": 1.0})
    result = await executor.execute_swap("trader-agent", "SOL", "USDC", 1.0, 30, 100, "demo")
"""

from __future__ import annotations

import hashlib
import json
from typing import Optional

from loguru import logger

from execution_service import (
    AgentTopology,
    EconomySetup,
    ExecutionError,
    ExecutionService,
    SwapExecution,
    SwapQuote,
    TokenService,
    WalletPortfolio,
    WalletQueryService,
)


def _paper_hash(payload: dict) -> str:
    data = json.dumps(payload, separators=(",", ":"), sort_keys=True)
    return "0x" + hashlib.sha256(data.encode()).hexdigest()


# ─── Wallets ──────────────────────────────────────────────────────────────────


class PaperWallets(WalletQueryService):
    """Balances held in memory: {wallet_id: {asset: amount}}."""

    def __init__(
        self,
        balances: Optional[dict[str, dict[str, float]]] = None,
        base_asset: str = "SOL",
        quote_asset: str = "USDC",
    ) -> None:
        self.base_asset = base_asset
        self.quote_asset = quote_asset
        self._balances: dict[str, dict[str, float]] = {
            wallet: dict(assets) for wallet, assets in (balances or {}).items()
        }

    def balance(self, wallet_id: str, asset: str) -> float:
        return self._balances.get(wallet_id, {}).get(asset, 0.0)

    def credit(self, wallet_id: str, asset: str, amount: float) -> None:
        assets = self._balances.setdefault(wallet_id, {})
        assets[asset] = round(assets.get(asset, 0.0) + amount, 9)

    def debit(self, wallet_id: str, asset: str, amount: float) -> None:
        available = self.balance(wallet_id, asset)
        if amount > available:
            raise ExecutionError(
                f"Insufficient {asset} in {wallet_id}: have {available}, need {amount}"
            )
        self._balances[wallet_id][asset] = round(available - amount, 9)

    async def get_portfolio(self, wallet_id: str) -> WalletPortfolio:
        if wallet_id not in self._balances:
            raise ExecutionError(f"Unknown wallet: {wallet_id}")
        assets = self._balances[wallet_id]
        aux = {
            asset: amount for asset, amount in assets.items()
            if asset not in (self.base_asset, self.quote_asset)
        }
        return WalletPortfolio(
            wallet_id=wallet_id,
            base_balance=assets.get(self.base_asset, 0.0),
            quote_balance=assets.get(self.quote_asset, 0.0),
            aux_balances=aux,
        )


# ─── Execution ────────────────────────────────────────────────────────────────


class PaperExecutionService(ExecutionService):
    """
    Simulated swap venue.

    Every asset has a price in a common unit (the quote asset is usually 1.0).
    Output = amount * price_in / price_out, reduced by the simulated slippage.
    A swap whose simulated slippage exceeds the caller's maximum fails, as a
    real aggregator route would.

    fail_next(n) makes the next n execute_swap calls raise ExecutionError
    (used to exercise the circuit breaker).
    """

    def __init__(
        self,
        wallets: PaperWallets,
        prices: Optional[dict[str, float]] = None,
        slippage_bps: float = 30,
        route_label: str = "paper",
    ) -> None:
        self.wallets = wallets
        self.prices = dict(prices or {"SOL": 100.0, "USDC": 1.0, "TEST1": 1.0, "TEST2": 1.0})
        self.slippage_bps = slippage_bps
        self.route_label = route_label

        self._sequence = 0
        self._pending_failures = 0
        self._history: list[dict] = []

        logger.info(
            f"PaperExecutionService initialized: slippage={slippage_bps}bps "
            f"assets={sorted(self.prices)}"
        )

    def fail_next(self, count: int = 1) -> None:
        self._pending_failures += max(count, 0)

    def _price(self, asset: str) -> float:
        price = self.prices.get(asset)
        if price is None or price <= 0:
            raise ExecutionError(f"No paper price for {asset}")
        return price

    def _output_amount(self, input_asset: str, output_asset: str, amount: float) -> float:
        gross = amount * self._price(input_asset) / self._price(output_asset)
        return round(gross * (1 - self.slippage_bps / 10_000), 9)

    async def fetch_quote(
        self, input_asset: str, output_asset: str, amount: float, slippage_bps: float
    ) -> SwapQuote:
        if amount <= 0:
            raise ExecutionError("Quote amount must be positive")
        return SwapQuote(
            input_asset=input_asset,
            output_asset=output_asset,
            in_amount=amount,
            out_amount=self._output_amount(input_asset, output_asset, amount),
            slippage_bps=self.slippage_bps,
            route=[self.route_label],
        )

    async def execute_swap(
        self,
        wallet_id: str,
        input_asset: str,
        output_asset: str,
        amount: float,
        slippage_bps: float,
        max_allowed_slippage_bps: float,
        reason_ref: str,
    ) -> SwapExecution:
        if self._pending_failures > 0:
            self._pending_failures -= 1
            raise ExecutionError("Simulated execution failure")

        if amount <= 0:
            raise ExecutionError("Swap amount must be positive")

        if self.slippage_bps > max_allowed_slippage_bps:
            raise ExecutionError(
                f"Route slippage {self.slippage_bps} bps exceeds allowed "
                f"{max_allowed_slippage_bps} bps"
            )

        out_amount = self._output_amount(input_asset, output_asset, amount)
        self.wallets.debit(wallet_id, input_asset, amount)
        self.wallets.credit(wallet_id, output_asset, out_amount)

        self._sequence += 1
        signature = _paper_hash({
            "seq": self._sequence,
            "wallet": wallet_id,
            "in": input_asset,
            "out": output_asset,
            "amount": amount,
            "reason": reason_ref,
        })
        result = SwapExecution(
            signature=signature,
            in_amount=amount,
            out_amount=out_amount,
            slippage_bps=self.slippage_bps,
            route=[self.route_label],
        )
        self._history.append(result.to_dict())

        logger.info(
            f"PaperExecutionService: {amount:.6f} {input_asset} → "
            f"{out_amount:.6f} {output_asset} tx={signature[:10]}..."
        )
        return result

    def get_history(self) -> list[dict]:
        return list(self._history)


# ─── Token Economy ────────────────────────────────────────────────────────────


class InMemoryTokenService(TokenService):
    """
    Reward token ledger.

    initialize_economy() creates the reward mint once, mints the initial supply to the treasury and hands 20% of it to the
    operational wallets. Later calls return the same setup.
    """

    def __init__(self, initial_supply: float = 1_000_000.0, distribution_pct: float = 0.2) -> None:
        self.initial_supply = initial_supply
        self.distribution_pct = distribution_pct
        self._setup: Optional[EconomySetup] = None
        self._balances: dict[str, dict[str, float]] = {}
        self._sequence = 0
        self.operations: list[dict] = []

    def _signature(self, kind: str, **fields) -> str:
        self._sequence += 1
        signature = _paper_hash({"seq": self._sequence, "kind": kind, **fields})
        self.operations.append({"kind": kind, "signature": signature, **fields})
        return signature

    def _require_mint(self, mint_address: str) -> dict[str, float]:
        if mint_address not in self._balances:
            raise ExecutionError(f"Unknown mint: {mint_address}")
        return self._balances[mint_address]

    async def initialize_economy(self, topology: AgentTopology) -> EconomySetup:
        if self._setup is not None:
            return self._setup

        seed = json.dumps(topology.to_dict(), sort_keys=True)
        reward_mint = "mint-" + hashlib.sha256(f"reward:{seed}".encode()).hexdigest()[:32]
        self._balances[reward_mint] = {}

        await self.mint_to(reward_mint, topology.treasury_wallet, self.initial_supply, "Initial supply")

        wallets = topology.operational_wallets
        if wallets:
            per_agent = round(self.initial_supply * self.distribution_pct / len(wallets), 2)
            for wallet in wallets:
                await self.transfer(
                    reward_mint, topology.treasury_wallet, wallet, per_agent, "Initial distribution"
                )

        self._setup = EconomySetup(mint_address=reward_mint)
        logger.info(f"InMemoryTokenService: economy initialized mint={reward_mint}")
        return self._setup

    async def mint_to(self, mint_address: str, wallet_id: str, amount: float, reason: str) -> str:
        if amount <= 0:
            raise ExecutionError("Mint amount must be positive")
        holders = self._require_mint(mint_address)
        holders[wallet_id] = round(holders.get(wallet_id, 0.0) + amount, 9)
        return self._signature("mint", mint=mint_address, to=wallet_id, amount=amount, reason=reason)

    async def transfer(
        self, mint_address: str, from_wallet: str, to_wallet: str, amount: float, reason: str
    ) -> str:
        if amount <= 0:
            raise ExecutionError("Transfer amount must be positive")
        holders = self._require_mint(mint_address)
        available = holders.get(from_wallet, 0.0)
        if amount > available:
            raise ExecutionError(
                f"Insufficient balance in {from_wallet}: have {available}, need {amount}"
            )
        holders[from_wallet] = round(available - amount, 9)
        holders[to_wallet] = round(holders.get(to_wallet, 0.0) + amount, 9)
        return self._signature(
            "transfer", mint=mint_address, frm=from_wallet, to=to_wallet, amount=amount, reason=reason
        )

    async def balance_of(self, mint_address: str, wallet_id: str) -> float:
        return self._require_mint(mint_address).get(wallet_id, 0.0)
