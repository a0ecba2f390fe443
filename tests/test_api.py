"""Tests for the high-level helpers in x402_solana_payments.api."""

from unittest.mock import Mock

import pytest
import requests

from x402_solana_payments import api


class TestCreatePaymentGate:
    def test_discovers_fee_payer(self, gate_config, payer_keypair):
        session = Mock()
        session.get.return_value = Mock(status_code=200, text="")
        session.get.return_value.json.return_value = {
            "kinds": [{"x402Version": 1, "scheme": "exact", "network": "solana-devnet", "extra": {"feePayer": str(payer_keypair.pubkey())}}]
        }

        gate = api.create_payment_gate(config=gate_config, session=session)

        requirements = gate.requirements(10, "", "https://api.example.com/r")
        assert requirements.fee_payer == str(payer_keypair.pubkey())

    def test_falls_back_when_facilitator_is_down(self, gate_config):
        session = Mock()
        session.get.side_effect = requests.ConnectionError("down")

        gate = api.create_payment_gate(config=gate_config, session=session)

        assert gate.requirements(10, "", "https://api.example.com/r").fee_payer is None

    def test_config_and_overrides_are_exclusive(self, gate_config):
        with pytest.raises(ValueError):
            api.create_facilitator_client(config=gate_config, overrides={"X402_NETWORK": "solana"})


class TestExecuteRefund:
    def test_converts_dollars(self):
        engine = Mock()

        api.execute_refund("Dest1111", amount_usd="1.25", engine=engine)

        engine.execute_refund.assert_called_once_with("Dest1111", 1_250_000, cancel=None)

    @pytest.mark.parametrize("amounts", [{}, {"amount_micro_units": 1, "amount_usd": "1"}])
    def test_exactly_one_amount(self, amounts):
        with pytest.raises(ValueError):
            api.execute_refund("Dest1111", engine=Mock(), **amounts)
