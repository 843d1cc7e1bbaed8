"""
Tests for agent_config.py — environment parsing and fallbacks.
"""

import sys
import os
sys.path.insert(0, os.path.dirname(os.path.dirname(__file__)))

from unittest.mock import patch

import pytest

from agent_config import AgentConfig, _to_bool, _to_integer, _to_list, _to_number


# ─── Parsing Helpers ──────────────────────────────────────────────────────────

class TestHelpers:

    @pytest.mark.parametrize("raw,expected", [
        (None, 1.5),
        ("", 1.5),
        ("2.25", 2.25),
        ("abc", 1.5),
        ("inf", 1.5),
        ("nan", 1.5),
    ])
    def test_to_number(self, raw, expected):
        assert _to_number(raw, 1.5) == expected

    def test_to_integer_rejects_fractions(self):
        assert _to_integer("7", 3) == 7
        assert _to_integer("7.0", 3) == 7
        assert _to_integer("7.5", 3) == 3

    @pytest.mark.parametrize("raw,expected", [
        (None, True),
        ("  ", True),
        ("true", True),
        ("TRUE", True),
        ("false", False),
        ("yes", False),
        ("1", False),
    ])
    def test_to_bool(self, raw, expected):
        assert _to_bool(raw, True) is expected

    def test_to_list(self):
        assert _to_list("a, b ,,c", ["x"]) == ["a", "b", "c"]
        assert _to_list(" , ", ["x"]) == ["x"]
        assert _to_list(None, ["x"]) == ["x"]


# ─── AgentConfig.from_env ─────────────────────────────────────────────────────

class TestFromEnv:

    def test_defaults(self):
        cfg = AgentConfig.from_env({})
        assert cfg == AgentConfig()
        assert cfg.loop_interval_ms == 30_000
        assert cfg.target_base_ratio == 0.55
        assert cfg.drift_threshold == 0.08
        assert cfg.cooldown_ms == 300_000
        assert cfg.max_trade_size_base == 0.5
        assert cfg.min_interval_ms == 10_000
        assert cfg.operational_wallets == ["trader-agent", "liquidity-agent", "arbitrage-agent"]
        assert cfg.executor_url is None

    def test_overrides(self):
        cfg = AgentConfig.from_env({
            "AGENT_LOOP_MS": "5000",
            "ENABLE_SWAP": "false",
            "TARGET_BASE_ALLOCATION_RATIO": "0.6",
            "MAX_SLIPPAGE_BPS": "40",
            "MAX_TRADE_SIZE_BASE": "2",
            "OPERATIONAL_WALLETS": "alpha,beta",
            "TRADER_WALLET": "alpha",
            "EXECUTOR_URL": "http://gateway:8080",
            "LOG_LEVEL": "DEBUG",
        })
        assert cfg.loop_interval_ms == 5000
        assert cfg.enable_swap is False
        assert cfg.target_base_ratio == 0.6
        assert cfg.max_slippage_bps == 40
        assert cfg.max_trade_size_base == 2.0
        assert cfg.operational_wallets == ["alpha", "beta"]
        assert cfg.trader_wallet == "alpha"
        assert cfg.executor_url == "http://gateway:8080"
        assert cfg.log_level == "DEBUG"

    def test_malformed_values_fall_back(self):
        cfg = AgentConfig.from_env({
            "AGENT_LOOP_MS": "soon",
            "MAX_SWAP_PCT": "lots",
            "MAX_DAILY_SWAPS": "2.5",
            "EXECUTOR_URL": "",
        })
        defaults = AgentConfig()
        assert cfg.loop_interval_ms == defaults.loop_interval_ms
        assert cfg.max_swap_pct == defaults.max_swap_pct
        assert cfg.max_daily_swaps == defaults.max_daily_swaps
        assert cfg.executor_url is None

    def test_reads_process_environment(self, monkeypatch):
        monkeypatch.setenv("SWAP_COOLDOWN_MS", "1234")
        with patch("agent_config.load_dotenv") as load:
            cfg = AgentConfig.from_env()
        load.assert_called_once()
        assert cfg.cooldown_ms == 1234

    def test_to_dict(self):
        d = AgentConfig().to_dict()
        assert d["base_asset"] == "SOL"
        assert d["enable_swap"] is True
        assert "executor_url" in d
