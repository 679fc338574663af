"""
Tests for qvdao_chain.config and qvdao_chain.exceptions.
"""
from __future__ import annotations

import httpx
import pytest

from qvdao_chain.config import (
    CORE_TESTNET2,
    TransactionMonitorConfig,
    build_default_config,
    get_config,
    set_config,
)
from qvdao_chain.exceptions import (
    ErrorCode,
    ProviderUnavailable,
    TooManyAttempts,
    UserRejected,
    WalletError,
    WalletLocked,
    WalletUnavailable,
    classify_provider_error,
)
from qvdao_chain.provider import ProviderRPCError


class TestConfig:
    """Tests for defaults and environment overrides."""

    def test_defaults(self, monkeypatch):
        for key in ("CHAIN_ID", "RPC_URL", "CONTRACT_ADDRESS", "BALANCE_TTL_SECONDS"):
            monkeypatch.delenv(f"QVDAO_CHAIN_{key}", raising=False)
        config = build_default_config()

        assert config.network == CORE_TESTNET2
        assert config.connection.max_attempts == 3
        assert config.connection.cooldown_seconds == 60.0
        assert config.balance_cache.ttl_seconds == 30.0
        assert config.gas_estimation.buffer_percent == 20
        assert config.transactions.history_size == 100

    def test_env_overrides(self, monkeypatch):
        monkeypatch.setenv("QVDAO_CHAIN_CHAIN_ID", "31337")
        monkeypatch.setenv("QVDAO_CHAIN_RPC_URL", "http://127.0.0.1:8545")
        monkeypatch.setenv("QVDAO_CHAIN_MAX_CONNECTION_ATTEMPTS", "5")

        config = build_default_config()

        assert config.network.chain_id == 31337
        assert config.network.rpc_url == "http://127.0.0.1:8545"
        assert config.connection.max_attempts == 5

    def test_bad_env_value_falls_back(self, monkeypatch):
        monkeypatch.setenv("QVDAO_CHAIN_BALANCE_TTL_SECONDS", "soon")
        assert build_default_config().balance_cache.ttl_seconds == 30.0

    def test_operation_timeouts(self):
        config = TransactionMonitorConfig()
        assert config.timeout_for("join_dao") == 60.0
        assert config.timeout_for("create_proposal") == 45.0
        assert config.timeout_for("cast_vote") == 30.0
        assert config.timeout_for("unknown") == 30.0
        assert config.timeout_for(None) == 30.0

    def test_global_config(self, chain_config):
        assert get_config() is chain_config
        set_config(None)
        assert get_config() is not chain_config

    def test_hex_chain_id(self):
        assert CORE_TESTNET2.hex_chain_id == "0x45b"


class TestClassifyProviderError:
    """Tests for mapping raw errors to WalletError."""

    def test_user_rejected(self):
        assert isinstance(classify_provider_error(ProviderRPCError(4001, "denied")), UserRejected)

    def test_wallet_locked(self):
        error = classify_provider_error(ProviderRPCError(-32002, "already pending"))
        assert isinstance(error, WalletLocked)
        assert error.error_code is ErrorCode.WALLET_LOCKED

    def test_internal_error(self):
        error = classify_provider_error(ProviderRPCError(-32603, "oops"), method="eth_call")
        assert isinstance(error, ProviderUnavailable)
        assert error.details == {"method": "eth_call", "rpc_code": -32603}

    def test_transport_errors(self):
        assert isinstance(classify_provider_error(httpx.ReadTimeout("slow")), ProviderUnavailable)
        assert isinstance(classify_provider_error(httpx.ConnectError("down")), ProviderUnavailable)

    def test_missing_wallet_message(self):
        assert isinstance(classify_provider_error(RuntimeError("MetaMask not installed")), WalletUnavailable)

    def test_classified_errors_pass_through(self):
        error = UserRejected()
        assert classify_provider_error(error) is error

    def test_to_dict(self):
        payload = TooManyAttempts(3, 12.3456).to_dict()
        assert payload == {
            "error": "TOO_MANY_ATTEMPTS",
            "message": "Too many connection attempts. Please wait a moment.",
            "details": {"attempts": 3, "retry_after_seconds": 12.346},
        }
        assert WalletError("plain").to_dict() == {"error": "NETWORK_ERROR", "message": "plain"}
