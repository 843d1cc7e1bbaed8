#!/usr/bin/env python3
"""
run_agent.py — Drift Rebalance Agent entry point.

Runs the autonomous rebalance loop:
1. Reads the trader wallet and a base/quote price
2. Decides whether the allocation drifted far enough to rebalance
3. Passes the swap through the governor and the risk ledger
4. Executes it (paper venue by default, remote gateway with --live)
5. Books the outcome and the reward-token side effects

Usage:
    python run_agent.py [--once] [--interval-ms 30000] [--live]

Environment:
    See AgentConfig (agent_config.py) for every variable. --live needs
    EXECUTOR_URL pointing at an execution gateway.
"""

import argparse
import asyncio
import os
import sys
from typing import Optional

from loguru import logger

from agent_config import AgentConfig
from agent_runtime import ExecutionFailed, RebalanceAgent
from executor_client import GatewayClient, HttpExecutionService, HttpTokenService, HttpWalletService
from notifications import RecentEventSink
from paper_services import InMemoryTokenService, PaperExecutionService, PaperWallets


def setup_logging(log_level: str = "INFO") -> None:
    logger.remove()
    logger.add(
        sys.stdout,
        format="<green>{time:HH:mm:ss}</green> | <level>{level: <8}</level> | {message}",
        level=log_level,
        colorize=True,
    )
    logger.add(
        "logs/agent.log",
        rotation="10 MB",
        retention="7 days",
        level="DEBUG",
        format="{time:YYYY-MM-DD HH:mm:ss} | {level} | {message}",
    )


def paper_balances(config: AgentConfig) -> dict[str, dict[str, float]]:
    """Starting balances for a dry run: a base-heavy trader and funded peers."""
    balances = {
        config.treasury_wallet: {config.base_asset: 1.0, config.quote_asset: 0.0},
        config.trader_wallet: {
            config.base_asset: 2.0,
            config.quote_asset: 50.0,
            config.aux_one_asset: 400.0,
            config.aux_two_asset: 100.0,
        },
    }
    for wallet in config.operational_wallets:
        balances.setdefault(wallet, {config.base_asset: 1.0, config.quote_asset: 50.0})
    return balances


def build_agent(config: AgentConfig, live: bool = False) -> RebalanceAgent:
    notifier = RecentEventSink()

    if live:
        if not config.executor_url:
            raise ValueError("EXECUTOR_URL not set in environment (required for --live)")
        gateway = GatewayClient(config.executor_url, timeout=config.http_timeout_s)
        logger.info(f"Live mode: execution gateway {config.executor_url}")
        return RebalanceAgent(
            config,
            executor=HttpExecutionService(gateway),
            wallets=HttpWalletService(gateway),
            tokens=HttpTokenService(gateway),
            notifier=notifier,
        )

    wallets = PaperWallets(
        paper_balances(config), base_asset=config.base_asset, quote_asset=config.quote_asset
    )
    executor = PaperExecutionService(
        wallets,
        prices={
            config.base_asset: config.fallback_base_price,
            config.quote_asset: 1.0,
            config.aux_one_asset: 1.0,
            config.aux_two_asset: 1.0,
        },
    )
    logger.info("[DRY RUN] Paper execution venue")
    return RebalanceAgent(
        config, executor=executor, wallets=wallets, tokens=InMemoryTokenService(), notifier=notifier
    )


async def run(agent: RebalanceAgent, once: bool = False, interval_ms: Optional[int] = None) -> None:
    logger.info("=== Drift Rebalance Agent Starting ===")
    logger.info(
        f"Trader wallet: {agent.topology.trader_wallet} | "
        f"target={agent.config.target_base_ratio} drift={agent.config.drift_threshold}"
    )

    if once:
        try:
            status = await agent.run_cycle()
        except ExecutionFailed as exc:
            logger.error(f"Cycle failed: {exc}")
            return
        logger.info(f"Cycle complete: {status['last_action']}")
        return

    await agent.start(interval_ms)
    try:
        while agent.is_running:
            await asyncio.sleep(1)
    finally:
        status = await agent.stop()
        logger.info(
            f"Agent stopped after {status['cycles']} cycles "
            f"({status['failures']} failures, {status['rejections']} rejections)"
        )


async def main(argv: Optional[list[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Drift Rebalance Agent")
    parser.add_argument("--once", action="store_true",
                        help="Run one cycle then exit")
    parser.add_argument("--interval-ms", type=int, default=None,
                        help="Loop interval in milliseconds (default: AGENT_LOOP_MS)")
    parser.add_argument("--live", action="store_true",
                        help="Execute through the remote gateway instead of the paper venue")
    args = parser.parse_args(argv)

    config = AgentConfig.from_env()

    # Create logs directory
    os.makedirs("logs", exist_ok=True)
    setup_logging(config.log_level)

    try:
        agent = build_agent(config, live=args.live)
    except ValueError as e:
        logger.error(f"Startup failed: {e}")
        return 1

    try:
        await run(agent, once=args.once, interval_ms=args.interval_ms)
    except (KeyboardInterrupt, asyncio.CancelledError):
        logger.info("Agent shutting down...")
    return 0


def cli() -> None:
    sys.exit(asyncio.run(main()))


if __name__ == "__main__":
    cli()
