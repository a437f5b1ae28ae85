"""
Core enums - shared types for the whole reconciliation stack.

Defines:
- Chain: supported deposit ledgers
- PayoutStatus: pending payout lifecycle
- AdminStep: operator dialogue steps
- ClaimError / PayoutError / WalletError: typed failure reasons
- TransferOutcome: what the orchestrator did with one transfer event
"""

from enum import Enum
from typing import Optional


class Chain(str, Enum):
    """Deposit ledgers watched by the bridge"""

    BASE = "base"
    BNB = "bnb"
    ETHEREUM = "ethereum"
    SOLANA = "solana"
    BITCOIN = "bitcoin"

    @property
    def coin(self) -> str:
        """Native coin symbol used for pricing"""
        return CHAIN_COINS[self]

    @property
    def family(self) -> "ChainFamily":
        return CHAIN_FAMILIES[self]

    @property
    def display_name(self) -> str:
        return CHAIN_DISPLAY_NAMES[self]

    @classmethod
    def parse(cls, value: str) -> Optional["Chain"]:
        """Case-insensitive lookup, None for unknown tags"""
        try:
            return cls(value.strip().lower())
        except ValueError:
            return None


class ChainFamily(str, Enum):
    """Address grammar families"""

    EVM = "evm"
    SOLANA = "solana"
    BITCOIN = "bitcoin"


CHAIN_COINS = {
    Chain.BASE: "ETH",
    Chain.ETHEREUM: "ETH",
    Chain.BNB: "BNB",
    Chain.SOLANA: "SOL",
    Chain.BITCOIN: "BTC",
}

CHAIN_FAMILIES = {
    Chain.BASE: ChainFamily.EVM,
    Chain.ETHEREUM: ChainFamily.EVM,
    Chain.BNB: ChainFamily.EVM,
    Chain.SOLANA: ChainFamily.SOLANA,
    Chain.BITCOIN: ChainFamily.BITCOIN,
}

CHAIN_DISPLAY_NAMES = {
    Chain.BASE: "Base",
    Chain.ETHEREUM: "Ethereum",
    Chain.BNB: "BNB Smart Chain",
    Chain.SOLANA: "Solana",
    Chain.BITCOIN: "Bitcoin",
}


class PayoutStatus(str, Enum):
    """Pending payout lifecycle: pending -> approved | rejected (terminal)"""

    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"

    @property
    def is_terminal(self) -> bool:
        return self is not PayoutStatus.PENDING


class AdminStep(str, Enum):
    """Step of the operator approve/reject dialogue"""

    NONE = "none"
    AWAITING_APPROVAL_PROOF = "awaiting_approval_proof"
    AWAITING_REJECTION_REASON = "awaiting_rejection_reason"
    AWAITING_REFUND_REFERENCE = "awaiting_refund_reference"


class ClaimError(str, Enum):
    """Why a redemption was refused"""

    NOT_FOUND = "not_found"
    ALREADY_CLAIMED = "already_claimed"
    EXPIRED = "expired"
    NOT_INTENDED_RECIPIENT = "not_intended_recipient"
    INVALID_ADDRESS = "invalid_address"
    BELOW_MINIMUM = "below_minimum"
    PRICE_UNAVAILABLE = "price_unavailable"
    MALFORMED_TOKEN = "malformed_token"


class PayoutError(str, Enum):
    """Why an operator action on a payout was refused"""

    NOT_FOUND = "not_found"
    NOT_PENDING = "not_pending"
    INVALID_REASON = "invalid_reason"
    INVALID_PROOF = "invalid_proof"


class WalletError(str, Enum):
    """Why a wallet or payout address was refused"""

    INVALID_ADDRESS_FORMAT = "invalid_address_format"
    ALREADY_REGISTERED_TO_OTHER_USER = "already_registered_to_other_user"


class AdminSessionError(str, Enum):
    """Why an operator dialogue step was refused"""

    NO_SESSION = "no_session"
    STEP_IN_PROGRESS = "step_in_progress"
    UNEXPECTED_STEP = "unexpected_step"


class TransferOutcome(str, Enum):
    """Result of feeding one transfer event through the orchestrator"""

    ISSUED = "issued"  # Claim token issued, transfer processed
    DUPLICATE = "duplicate"  # Already processed earlier
    UNATTRIBUTED = "unattributed"  # Sender has no wallet mapping, left unprocessed
    BELOW_MINIMUM = "below_minimum"  # Dust, processed with skip reason
    PRICE_UNAVAILABLE = "price_unavailable"  # Unknown coin, left unprocessed


SKIP_REASON_BELOW_MINIMUM = "below_minimum"
