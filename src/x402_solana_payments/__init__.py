"""
Public facade for the x402 Solana payment and refund package.

The most useful pieces are re-exported here so integrators can
``from x402_solana_payments import ...`` without navigating the package.
"""

from .api import (
    create_facilitator_client,
    create_payment_gate,
    create_refund_engine,
    execute_refund,
)
from .core import (
    ConfigurationError,
    ConfirmationState,
    DestinationAccountMissing,
    FacilitatorClient,
    FacilitatorRejected,
    FacilitatorUnreachable,
    InvalidRefundRequest,
    MalformedPaymentError,
    LedgerRequestRejected,
    NetworkUnavailable,
    PaymentGate,
    PaymentHeader,
    PaymentRequirementIssuer,
    PaymentRequirements,
    RefundExecutionFailed,
    RefundRequest,
    RefundResult,
    SettlementConfig,
    SettlementResult,
    SettlementTimeout,
    TokenAccountResolver,
    TokenProgramVariant,
    TreasurySettlementEngine,
    X402Error,
    decode_payment_header,
    encode_payment_header,
    load_settlement_config,
    micro_units_to_usd,
    resolve_token_account,
    usd_to_micro_units,
)

__all__ = (
    "ConfigurationError",
    "ConfirmationState",
    "DestinationAccountMissing",
    "FacilitatorClient",
    "FacilitatorRejected",
    "FacilitatorUnreachable",
    "InvalidRefundRequest",
    "MalformedPaymentError",
    "NetworkUnavailable",
    "LedgerRequestRejected",
    "PaymentGate",
    "PaymentHeader",
    "PaymentRequirementIssuer",
    "PaymentRequirements",
    "RefundExecutionFailed",
    "RefundRequest",
    "RefundResult",
    "SettlementConfig",
    "SettlementResult",
    "SettlementTimeout",
    "TokenAccountResolver",
    "TokenProgramVariant",
    "TreasurySettlementEngine",
    "X402Error",
    "create_facilitator_client",
    "create_payment_gate",
    "create_refund_engine",
    "decode_payment_header",
    "encode_payment_header",
    "execute_refund",
    "load_settlement_config",
    "micro_units_to_usd",
    "resolve_token_account",
    "usd_to_micro_units",
)
