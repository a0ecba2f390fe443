"""Unit tests for environment layering, configuration and the treasury signer."""

import json
import pickle

import pytest
from solders.keypair import Keypair

from conftest import DEVNET_USDC, keypair_secret
from x402_solana_payments.core.config import (
    DEFAULT_FACILITATOR_URL,
    SettlementConfig,
    SettlementParameters,
    load_settlement_config,
)
from x402_solana_payments.core.environment import build_environment, load_env_file
from x402_solana_payments.core.errors import ConfigurationError
from x402_solana_payments.core.networks import SOLANA_DEVNET, SOLANA_MAINNET
from x402_solana_payments.core.signer import TreasurySigner


class TestEnvironment:
    def test_env_file_fills_missing_keys_only(self, tmp_path):
        env_file = tmp_path / ".env"
        env_file.write_text(
            "# comment\n"
            "export X402_NETWORK=solana\n"
            "X402_FACILITATOR_URL='https://from-file.test'\n"
            "X402_FEE_PAYER=\n"
        )
        environment = build_environment(
            env_file=str(env_file),
            base={"X402_NETWORK": "solana-devnet", "HOME": "/root"},
        )

        assert environment.get("X402_NETWORK") == "solana-devnet"
        assert environment.get("X402_FACILITATOR_URL") == "https://from-file.test"
        assert environment.get("X402_FEE_PAYER", "fallback") == "fallback"
        assert "HOME" not in environment.settings()

    def test_overrides_win(self, tmp_path):
        environment = build_environment(
            env_file=str(tmp_path / "missing.env"),
            base={"X402_NETWORK": "solana-devnet"},
            overrides={"X402_NETWORK": "solana"},
        )
        assert environment.get("X402_NETWORK") == "solana"

    def test_load_env_file_does_not_clobber(self, tmp_path):
        env_file = tmp_path / ".env"
        env_file.write_text('X402_NETWORK="solana"\nX402_RPC_URL=http://rpc.test\n')
        target = {"X402_NETWORK": "solana-devnet"}

        merged = load_env_file(str(env_file), environ=target)

        assert merged["X402_NETWORK"] == "solana-devnet"
        assert merged["X402_RPC_URL"] == "http://rpc.test"


class TestSettlementConfig:
    def test_defaults(self, treasury_keypair):
        config = SettlementConfig.from_mapping({"X402_PAY_TO_ADDRESS": str(treasury_keypair.pubkey())})

        assert config.network == "solana-devnet"
        assert config.asset_mint == DEVNET_USDC
        assert config.facilitator_url == DEFAULT_FACILITATOR_URL
        assert config.rpc_url == SOLANA_DEVNET.default_rpc_url
        assert config.max_timeout_seconds == 300
        assert config.poll_interval_seconds == 2.0
        assert config.confirmation_timeout_seconds == 90.0
        assert config.compute_unit_limit == 200_000
        assert config.compute_unit_price == 1
        assert not config.has_treasury_key

    def test_mainnet_uses_mainnet_mint_and_rpc_override(self, treasury_keypair):
        config = SettlementConfig.from_mapping(
            {
                "X402_NETWORK": "solana",
                "X402_PAY_TO_ADDRESS": str(treasury_keypair.pubkey()),
                "X402_RPC_URL_MAINNET": "https://mainnet-rpc.test",
                "X402_RPC_URL_DEVNET": "https://devnet-rpc.test",
            }
        )
        assert config.asset_mint == SOLANA_MAINNET.usdc_mint
        assert config.rpc_url == "https://mainnet-rpc.test"

    def test_pay_to_derived_from_treasury_key(self, treasury_keypair):
        config = SettlementConfig.from_mapping(
            {"X402_TREASURY_PRIVATE_KEY": keypair_secret(treasury_keypair)}
        )
        assert config.pay_to == str(treasury_keypair.pubkey())
        assert config.treasury_signer().address == config.pay_to

    def test_pay_to_must_match_treasury_key(self, treasury_keypair, customer_keypair):
        with pytest.raises(ConfigurationError):
            SettlementConfig.from_mapping(
                {
                    "X402_TREASURY_PRIVATE_KEY": keypair_secret(treasury_keypair),
                    "X402_PAY_TO_ADDRESS": str(customer_keypair.pubkey()),
                }
            )

    def test_requires_recipient(self):
        with pytest.raises(ConfigurationError):
            SettlementConfig.from_mapping({})

    @pytest.mark.parametrize(
        "key, value",
        [
            ("X402_NETWORK", "solana-testnet"),
            ("X402_PAY_TO_ADDRESS", "not-an-address"),
            ("X402_FACILITATOR_URL", "ftp://facilitator.test"),
            ("X402_CONFIRMATION_TIMEOUT", "-1"),
            ("X402_COMPUTE_UNIT_LIMIT", "lots"),
        ],
    )
    def test_invalid_values(self, treasury_keypair, key, value):
        values = {"X402_PAY_TO_ADDRESS": str(treasury_keypair.pubkey())}
        values[key] = value
        with pytest.raises(ConfigurationError):
            SettlementConfig.from_mapping(values)

    def test_treasury_signer_requires_key(self, gate_config):
        with pytest.raises(ConfigurationError):
            gate_config.treasury_signer()

    def test_repr_hides_private_key(self, settlement_config):
        assert settlement_config.treasury_private_key not in repr(settlement_config)

    def test_load_with_explicit_parameters(self, tmp_path, treasury_keypair):
        env_file = tmp_path / ".env"
        env_file.write_text("X402_NETWORK=solana\nX402_CONFIRMATION_TIMEOUT=30\n")

        config = load_settlement_config(
            env_file=str(env_file),
            base={},
            pay_to=str(treasury_keypair.pubkey()),
            network="solana-devnet",
            parameters=SettlementParameters(poll_interval_seconds=0.5),
        )

        assert config.network == "solana-devnet"
        assert config.confirmation_timeout_seconds == 30.0
        assert config.poll_interval_seconds == 0.5

    def test_unknown_explicit_parameter(self):
        with pytest.raises(TypeError):
            SettlementConfig.from_env(env_file=None, base={}, colour="blue")

    def test_parameters_as_overrides(self):
        overrides = SettlementParameters(network="solana", max_retries=5).as_overrides()
        assert overrides == {"X402_NETWORK": "solana", "X402_MAX_RETRIES": "5"}


class TestTreasurySigner:
    def test_accepts_base58_and_json(self, treasury_keypair):
        from_base58 = TreasurySigner.from_secret(str(treasury_keypair))
        from_json = TreasurySigner.from_secret(json.dumps(list(bytes(treasury_keypair))))
        assert from_base58.pubkey == from_json.pubkey == treasury_keypair.pubkey()

    @pytest.mark.parametrize("secret", ["", "abc", "[1, 2, 3]", "[not json"])
    def test_rejects_bad_secrets(self, secret):
        with pytest.raises(ConfigurationError):
            TreasurySigner.from_secret(secret)

    def test_secret_is_not_exposed(self):
        keypair = Keypair()
        signer = TreasurySigner(keypair)
        assert str(keypair) not in repr(signer)
        assert "redacted" in str(signer)
        with pytest.raises(TypeError):
            pickle.dumps(signer)
