"""
Core module - base types and enums for the whole stack.
"""

from zlink.core.enums import (
    AdminSessionError,
    AdminStep,
    Chain,
    ChainFamily,
    ClaimError,
    PayoutError,
    PayoutStatus,
    TransferOutcome,
    WalletError,
)

__all__ = [
    "AdminSessionError",
    "AdminStep",
    "Chain",
    "ChainFamily",
    "ClaimError",
    "PayoutError",
    "PayoutStatus",
    "TransferOutcome",
    "WalletError",
]
