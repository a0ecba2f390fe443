"""
Core primitives that implement the x402 payment and refund lifecycle on Solana.
"""

from .amounts import USDC_DECIMALS, micro_units_to_usd, usd_to_micro_units
from .codec import (
    PaymentHeader,
    SolanaPaymentPayload,
    EvmPaymentPayload,
    decode_payment_header,
    decode_transaction,
    encode_payment_header,
    encode_payment_response,
    extract_payment_header,
)
from .config import SettlementConfig, SettlementParameters, load_settlement_config
from .environment import SettlementEnvironment, build_environment, load_env_file
from .errors import (
    BroadcastOutcomeUnknown,
    ConfigurationError,
    ConfirmationCancelled,
    DestinationAccountMissing,
    FacilitatorRejected,
    FacilitatorUnreachable,
    InvalidRefundRequest,
    MalformedPaymentError,
    NetworkMismatchError,
    LedgerRequestRejected,
    NetworkUnavailable,
    RefundExecutionFailed,
    SettlementOutcomeUnknown,
    SettlementTimeout,
    UnsupportedAssetError,
    X402Error,
)
from .facilitator import FacilitatorClient, SettlementResult, SupportedKind, VerificationResult
from .gate import PaymentGate, PaymentOutcome
from .ledger import LedgerClient, SignatureStatus
from .networks import SOLANA_DEVNET, SOLANA_MAINNET, SolanaNetwork, get_solana_network
from .requirements import (
    PaymentRequiredResponse,
    PaymentRequirementIssuer,
    PaymentRequirements,
    payment_required_response,
)
from .signer import TreasurySigner
from .token_accounts import TokenAccountResolver, TokenProgramVariant, resolve_token_account
from .transactions import ComputeBudget, build_payment_transaction
from .treasury import (
    ConfirmationState,
    ConfirmationTracker,
    RefundRequest,
    RefundResult,
    TreasurySettlementEngine,
)

__all__ = [
    "BroadcastOutcomeUnknown",
    "ComputeBudget",
    "ConfigurationError",
    "ConfirmationCancelled",
    "ConfirmationState",
    "ConfirmationTracker",
    "DestinationAccountMissing",
    "EvmPaymentPayload",
    "FacilitatorClient",
    "FacilitatorRejected",
    "FacilitatorUnreachable",
    "InvalidRefundRequest",
    "LedgerClient",
    "MalformedPaymentError",
    "NetworkMismatchError",
    "NetworkUnavailable",
    "LedgerRequestRejected",
    "PaymentGate",
    "PaymentHeader",
    "PaymentOutcome",
    "PaymentRequiredResponse",
    "PaymentRequirementIssuer",
    "PaymentRequirements",
    "RefundExecutionFailed",
    "RefundRequest",
    "RefundResult",
    "SOLANA_DEVNET",
    "SOLANA_MAINNET",
    "SettlementConfig",
    "SettlementEnvironment",
    "SettlementOutcomeUnknown",
    "SettlementParameters",
    "SettlementResult",
    "SettlementTimeout",
    "SignatureStatus",
    "SolanaNetwork",
    "SolanaPaymentPayload",
    "SupportedKind",
    "TokenAccountResolver",
    "TokenProgramVariant",
    "TreasurySettlementEngine",
    "TreasurySigner",
    "USDC_DECIMALS",
    "UnsupportedAssetError",
    "VerificationResult",
    "X402Error",
    "build_environment",
    "build_payment_transaction",
    "decode_payment_header",
    "decode_transaction",
    "encode_payment_header",
    "encode_payment_response",
    "extract_payment_header",
    "get_solana_network",
    "load_env_file",
    "load_settlement_config",
    "micro_units_to_usd",
    "payment_required_response",
    "resolve_token_account",
    "usd_to_micro_units",
]
