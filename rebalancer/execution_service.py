"""
execution_service.py — Contracts for the agent's external collaborators.

The agent core never talks to a chain, a quote API or a key store directly.
It depends on three narrow async interfaces:

  ExecutionService    swap quotes and swap execution (sign + broadcast happen
                      behind this boundary)
  WalletQueryService  balances of one wallet
  TokenService        reward-token economy operations (mint / transfer / balance)

Implementations:
  paper_services.py   in-memory, deterministic (dry-run and tests)
  executor_client.py  HTTP gateway clients (httpx)

All amounts are in whole token units (not lamports / wei); unit conversion is
the implementation's concern.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Optional


class ExecutionError(Exception):
    """A collaborator could not complete the requested operation."""


# ─── Data Classes ─────────────────────────────────────────────────────────────


@dataclass
class SwapQuote:
    input_asset: str
    output_asset: str
    in_amount: float
    out_amount: float
    slippage_bps: float
    route: list[str] = field(default_factory=list)

    @property
    def price(self) -> float:
        """Output units per input unit."""
        return self.out_amount / self.in_amount if self.in_amount > 0 else 0.0


@dataclass
class SwapExecution:
    signature: str
    in_amount: float
    out_amount: float
    slippage_bps: float
    route: list[str] = field(default_factory=list)
    explorer_url: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "signature": self.signature,
            "route": list(self.route),
            "in_amount": self.in_amount,
            "out_amount": self.out_amount,
            "slippage_bps": self.slippage_bps,
            "explorer_url": self.explorer_url,
        }


@dataclass
class WalletPortfolio:
    wallet_id: str
    base_balance: float
    quote_balance: float
    aux_balances: dict[str, float] = field(default_factory=dict)

    def aux(self, asset: str) -> float:
        return self.aux_balances.get(asset, 0.0)


@dataclass
class AgentTopology:
    """Which wallet plays which role in the agent economy."""
    treasury_wallet: str
    trader_wallet: str
    operational_wallets: list[str]

    def to_dict(self) -> dict:
        return {
            "treasury_wallet": self.treasury_wallet,
            "trader_wallet": self.trader_wallet,
            "operational_wallets": list(self.operational_wallets),
        }


@dataclass
class EconomySetup:
    """Reward token created by the token service. The auxiliary pair is addressed by asset symbol."""
    mint_address: str


# ─── Contracts ────────────────────────────────────────────────────────────────


class ExecutionService(ABC):

    @abstractmethod
    async def fetch_quote(
        self, input_asset: str, output_asset: str, amount: float, slippage_bps: float
    ) -> SwapQuote:
        ...

    @abstractmethod
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
        """Swap ``amount`` of ``input_asset``; raise ExecutionError on any failure."""


class WalletQueryService(ABC):

    @abstractmethod
    async def get_portfolio(self, wallet_id: str) -> WalletPortfolio:
        ...


class TokenService(ABC):

    @abstractmethod
    async def initialize_economy(self, topology: AgentTopology) -> EconomySetup:
        ...

    @abstractmethod
    async def mint_to(self, mint_address: str, wallet_id: str, amount: float, reason: str) -> str:
        ...

    @abstractmethod
    async def transfer(
        self, mint_address: str, from_wallet: str, to_wallet: str, amount: float, reason: str
    ) -> str:
        ...

    @abstractmethod
    async def balance_of(self, mint_address: str, wallet_id: str) -> float:
        ...
