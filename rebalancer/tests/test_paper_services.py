"""
test_paper_services.py — Tests for the in-memory wallet, swap venue and token ledger.
"""

from __future__ import annotations

import sys, os
sys.path.insert(0, os.path.dirname(os.path.dirname(__file__)))

import pytest

from execution_service import AgentTopology, ExecutionError
from paper_services import InMemoryTokenService, PaperExecutionService, PaperWallets


# ─── Fixtures ─────────────────────────────────────────────────────────────────


@pytest.fixture
def wallets():
    return PaperWallets({
        "trader": {"SOL": 10.0, "USDC": 100.0, "TEST1": 80.0, "TEST2": 20.0},
    })


@pytest.fixture
def venue(wallets):
    return PaperExecutionService(
        wallets, prices={"SOL": 100.0, "USDC": 1.0, "TEST1": 1.0, "TEST2": 1.0}, slippage_bps=30
    )


@pytest.fixture
def topology():
    return AgentTopology("treasury", "trader", ["trader", "liquidity"])


# ─── PaperWallets ─────────────────────────────────────────────────────────────


class TestPaperWallets:
    @pytest.mark.asyncio
    async def test_portfolio_split(self, wallets):
        portfolio = await wallets.get_portfolio("trader")
        assert portfolio.base_balance == 10.0
        assert portfolio.quote_balance == 100.0
        assert portfolio.aux_balances == {"TEST1": 80.0, "TEST2": 20.0}
        assert portfolio.aux("TEST9") == 0.0

    @pytest.mark.asyncio
    async def test_unknown_wallet(self, wallets):
        with pytest.raises(ExecutionError, match="Unknown wallet"):
            await wallets.get_portfolio("ghost")

    def test_debit_insufficient(self, wallets):
        with pytest.raises(ExecutionError, match="Insufficient SOL"):
            wallets.debit("trader", "SOL", 11.0)
        assert wallets.balance("trader", "SOL") == 10.0

    def test_credit_new_wallet(self, wallets):
        wallets.credit("fresh", "USDC", 5.0)
        assert wallets.balance("fresh", "USDC") == 5.0


# ─── PaperExecutionService ────────────────────────────────────────────────────


class TestPaperExecution:
    @pytest.mark.asyncio
    async def test_quote_applies_slippage(self, venue):
        quote = await venue.fetch_quote("SOL", "USDC", 1.0, 50)
        assert quote.out_amount == pytest.approx(99.7)
        assert quote.price == pytest.approx(99.7)
        assert quote.route == ["paper"]

    @pytest.mark.asyncio
    async def test_quote_rejects_zero_amount(self, venue):
        with pytest.raises(ExecutionError):
            await venue.fetch_quote("SOL", "USDC", 0.0, 50)

    @pytest.mark.asyncio
    async def test_swap_settles_balances(self, venue, wallets):
        result = await venue.execute_swap("trader", "SOL", "USDC", 2.0, 100, 100, "rebalance")
        assert result.in_amount == 2.0
        assert result.out_amount == pytest.approx(199.4)
        assert result.signature.startswith("0x")
        assert len(result.signature) == 66
        assert wallets.balance("trader", "SOL") == pytest.approx(8.0)
        assert wallets.balance("trader", "USDC") == pytest.approx(299.4)
        assert venue.get_history()[0]["signature"] == result.signature

    @pytest.mark.asyncio
    async def test_signatures_are_deterministic(self):
        async def first_signature():
            wallets = PaperWallets({"trader": {"SOL": 5.0, "USDC": 0.0}})
            venue = PaperExecutionService(wallets, prices={"SOL": 100.0, "USDC": 1.0})
            return (await venue.execute_swap("trader", "SOL", "USDC", 1.0, 50, 100, "r")).signature

        assert await first_signature() == await first_signature()

    @pytest.mark.asyncio
    async def test_signatures_differ_per_swap(self, venue):
        a = await venue.execute_swap("trader", "SOL", "USDC", 1.0, 50, 100, "r")
        b = await venue.execute_swap("trader", "SOL", "USDC", 1.0, 50, 100, "r")
        assert a.signature != b.signature

    @pytest.mark.asyncio
    async def test_slippage_over_limit_fails(self, venue, wallets):
        with pytest.raises(ExecutionError, match="exceeds allowed 20"):
            await venue.execute_swap("trader", "SOL", "USDC", 1.0, 20, 20, "r")
        assert wallets.balance("trader", "SOL") == 10.0

    @pytest.mark.asyncio
    async def test_insufficient_balance_fails(self, venue):
        with pytest.raises(ExecutionError, match="Insufficient"):
            await venue.execute_swap("trader", "SOL", "USDC", 50.0, 100, 100, "r")

    @pytest.mark.asyncio
    async def test_missing_price(self, venue):
        with pytest.raises(ExecutionError, match="No paper price"):
            await venue.execute_swap("trader", "SOL", "BONK", 1.0, 100, 100, "r")

    @pytest.mark.asyncio
    async def test_injected_failures(self, venue):
        venue.fail_next(2)
        for _ in range(2):
            with pytest.raises(ExecutionError, match="Simulated"):
                await venue.execute_swap("trader", "SOL", "USDC", 1.0, 100, 100, "r")
        result = await venue.execute_swap("trader", "SOL", "USDC", 1.0, 100, 100, "r")
        assert result.out_amount > 0

    @pytest.mark.asyncio
    async def test_aux_pair_swap(self, venue, wallets):
        await venue.execute_swap("trader", "TEST1", "TEST2", 20.0, 100, 100, "aux")
        assert wallets.balance("trader", "TEST1") == pytest.approx(60.0)
        assert wallets.balance("trader", "TEST2") == pytest.approx(20.0 + 20.0 * 0.997)


# ─── InMemoryTokenService ─────────────────────────────────────────────────────


class TestInMemoryTokenService:
    @pytest.mark.asyncio
    async def test_initial_distribution(self, topology):
        tokens = InMemoryTokenService(initial_supply=1000.0)
        setup = await tokens.initialize_economy(topology)
        assert await tokens.balance_of(setup.mint_address, "treasury") == pytest.approx(800.0)
        assert await tokens.balance_of(setup.mint_address, "trader") == pytest.approx(100.0)
        assert await tokens.balance_of(setup.mint_address, "liquidity") == pytest.approx(100.0)

    @pytest.mark.asyncio
    async def test_initialize_is_idempotent(self, topology):
        tokens = InMemoryTokenService(initial_supply=1000.0)
        first = await tokens.initialize_economy(topology)
        second = await tokens.initialize_economy(topology)
        assert first == second
        assert await tokens.balance_of(first.mint_address, "treasury") == pytest.approx(800.0)

    @pytest.mark.asyncio
    async def test_transfer_insufficient(self, topology):
        tokens = InMemoryTokenService(initial_supply=1000.0)
        setup = await tokens.initialize_economy(topology)
        with pytest.raises(ExecutionError, match="Insufficient balance"):
            await tokens.transfer(setup.mint_address, "liquidity", "treasury", 500.0, "too much")

    @pytest.mark.asyncio
    async def test_unknown_mint(self):
        tokens = InMemoryTokenService()
        with pytest.raises(ExecutionError, match="Unknown mint"):
            await tokens.balance_of("mint-nope", "treasury")

    @pytest.mark.asyncio
    async def test_mint_requires_positive_amount(self, topology):
        tokens = InMemoryTokenService()
        setup = await tokens.initialize_economy(topology)
        with pytest.raises(ExecutionError):
            await tokens.mint_to(setup.mint_address, "treasury", 0.0, "nothing")

    @pytest.mark.asyncio
    async def test_operations_are_recorded(self, topology):
        tokens = InMemoryTokenService(initial_supply=1000.0)
        await tokens.initialize_economy(topology)
        kinds = [op["kind"] for op in tokens.operations]
        assert kinds == ["mint", "transfer", "transfer"]
