# coding: utf-8
"""
Address grammars for deposit chains and the payout ledger

Pure predicates, no network calls. Deposit wallets are normalized before
they are stored or looked up so that case variants map to one user.
"""
import re
from enum import Enum
from typing import Optional

from zlink.core.enums import ChainFamily


EVM_ADDRESS_RE = re.compile(r"^0x[a-fA-F0-9]{40}$")
SOLANA_ADDRESS_RE = re.compile(r"^[1-9A-HJ-NP-Za-km-z]{32,44}$")
BITCOIN_BECH32_RE = re.compile(r"^bc1[a-z0-9]{25,62}$")
BITCOIN_BASE58_RE = re.compile(r"^[13][1-9A-HJ-NP-Za-km-z]{25,34}$")

# Zcash: transparent, shielded (sapling/sprout) and unified addresses
ZCASH_TRANSPARENT_RE = re.compile(r"^t[13][a-zA-Z0-9]{33}$")
ZCASH_SHIELDED_RE = re.compile(r"^z[sc][a-zA-Z0-9]{33,95}$")
ZCASH_UNIFIED_RE = re.compile(r"^u[12][a-z0-9]{50,400}$")


class PayoutAddressKind(str, Enum):
    """Valid payout address forms"""

    TRANSPARENT = "transparent"
    SHIELDED = "shielded"
    UNIFIED = "unified"


def is_evm_address(address: str) -> bool:
    return bool(EVM_ADDRESS_RE.match(address))


def is_solana_address(address: str) -> bool:
    return bool(SOLANA_ADDRESS_RE.match(address))


def is_bitcoin_address(address: str) -> bool:
    if address[:3].lower() == "bc1":
        return bool(BITCOIN_BECH32_RE.match(address.lower()))
    return bool(BITCOIN_BASE58_RE.match(address))


def detect_wallet_family(address: str) -> Optional[ChainFamily]:
    """
    Detect which deposit chain family an address belongs to

    EVM is checked first, then Bitcoin, then Solana. Legacy Bitcoin
    addresses are 26-35 base58 characters, so a 43-44 character Solana
    key that happens to start with 1 or 3 is still Solana.

    Returns:
        ChainFamily or None if the address matches no supported grammar
    """
    address = (address or "").strip()
    if not address:
        return None

    if is_evm_address(address):
        return ChainFamily.EVM
    if is_bitcoin_address(address):
        return ChainFamily.BITCOIN
    if is_solana_address(address):
        return ChainFamily.SOLANA
    return None


def normalize_wallet_address(address: str, family: Optional[ChainFamily] = None) -> str:
    """
    Case-normalize a deposit wallet address

    Hex (EVM) and bech32 (bc1) addresses are case-insensitive and are
    lowercased. Base58 is case-sensitive and kept as is.
    """
    address = (address or "").strip()
    if family is None:
        family = detect_wallet_family(address)

    if family == ChainFamily.EVM:
        return address.lower()
    if family == ChainFamily.BITCOIN and address[:3].lower() == "bc1":
        return address.lower()
    return address


def classify_payout_address(address: str) -> Optional[PayoutAddressKind]:
    """
    Classify a Zcash payout address

    Returns:
        PayoutAddressKind or None if the address is not a valid payout address
    """
    address = (address or "").strip()
    if ZCASH_TRANSPARENT_RE.match(address):
        return PayoutAddressKind.TRANSPARENT
    if ZCASH_SHIELDED_RE.match(address):
        return PayoutAddressKind.SHIELDED
    if ZCASH_UNIFIED_RE.match(address):
        return PayoutAddressKind.UNIFIED
    return None


def is_valid_payout_address(address: str) -> bool:
    return classify_payout_address(address) is not None


def shorten(value: str, head: int = 8, tail: int = 6) -> str:
    """Shorten a hash or address for display: 0x1234ab...9f8e7d"""
    if not value or len(value) <= head + tail + 3:
        return value
    return f"{value[:head]}...{value[-tail:]}"
