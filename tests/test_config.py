"""
Tests for hydrafanout/config.py

Tests address and amount helpers and the configuration data classes.
"""

import pytest
from decimal import Decimal

from hydrafanout.config import (
    BATCHES_PER_SIGNING,
    DEVNET_LABEL,
    MAINNET_LABEL,
    MEMBERS_PER_BATCH,
    NetworkConfig,
    OrchestratorConfig,
    from_base_units,
    is_valid_address,
    short_address,
    to_base_units,
)
from hydrafanout.errors import ValidationError


# ============================================================================
# ADDRESS AND AMOUNT TESTS
# ============================================================================

class TestAddresses:
    """Tests for address helpers."""

    def test_valid_addresses(self, addresses):
        assert all(is_valid_address(a) for a in addresses)
        assert is_valid_address("11111111111111111111111111111111")

    def test_invalid_addresses(self):
        assert not is_valid_address("")
        assert not is_valid_address(None)
        assert not is_valid_address(12345)
        assert not is_valid_address("short")
        assert not is_valid_address("0OIl" + "1" * 40)
        assert not is_valid_address("1" * 45)

    def test_short_address(self, addresses):
        assert short_address(addresses[0]) == f"{addresses[0][:5]}...{addresses[0][-5:]}"
        assert short_address("abc") == "abc"


class TestUnits:
    """Tests for base-unit conversion."""

    def test_to_base_units(self):
        assert to_base_units("1.5") == 1_500_000_000
        assert to_base_units(Decimal("0.0000000019")) == 1
        assert to_base_units(3, decimals=2) == 300

    def test_from_base_units(self):
        assert from_base_units(1_500_000_000) == Decimal("1.5")
        assert from_base_units(250, decimals=2) == Decimal("2.5")


# ============================================================================
# CONFIG TESTS
# ============================================================================

class TestOrchestratorConfig:
    """Tests for OrchestratorConfig."""

    def test_defaults(self):
        config = OrchestratorConfig()
        config.validate()
        assert config.max_operations_per_batch == MEMBERS_PER_BATCH == 5
        assert config.max_batches_per_session == BATCHES_PER_SIGNING == 20
        assert config.retry_budget == 3
        assert config.retry_delay == 1.0

    def test_retry_policy(self):
        policy = OrchestratorConfig(retry_budget=5, retry_delay_ms=250).retry_policy()
        assert policy.max_attempts == 5
        assert policy.delay == 0.25

    @pytest.mark.parametrize("field,value", [
        ("max_operations_per_batch", 0),
        ("max_batches_per_session", 0),
        ("retry_budget", 0),
        ("retry_delay_ms", -1),
        ("amount_decimals", -1),
    ])
    def test_invalid_limits(self, field, value):
        with pytest.raises(ValidationError, match=field):
            OrchestratorConfig(**{field: value}).validate()

    def test_frozen(self):
        config = OrchestratorConfig()
        with pytest.raises(AttributeError):
            config.retry_budget = 10


class TestNetworkConfig:
    """Tests for NetworkConfig."""

    def test_from_env(self, monkeypatch):
        monkeypatch.setenv("HYDRAFANOUT_RPC_URL", "https://rpc.example.org")
        config = NetworkConfig.from_env()
        assert config.label == MAINNET_LABEL
        assert config.is_mainnet
        assert config.rpc_url == "https://rpc.example.org"
        assert config.commitment == "confirmed"

    def test_devnet(self, monkeypatch):
        monkeypatch.setenv("HYDRAFANOUT_RPC_DEVNET", "https://devnet.example.org")
        config = NetworkConfig.devnet()
        assert config.label == DEVNET_LABEL
        assert not config.is_mainnet
        assert NetworkConfig.devnet("http://localhost:8899").rpc_url == "http://localhost:8899"

    def test_missing_env(self, monkeypatch):
        monkeypatch.delenv("HYDRAFANOUT_RPC_URL", raising=False)
        with pytest.raises(ValidationError, match="HYDRAFANOUT_RPC_URL"):
            NetworkConfig.from_env()

    def test_unknown_label(self):
        with pytest.raises(ValidationError, match="Unknown network"):
            NetworkConfig.from_env("testnet")
