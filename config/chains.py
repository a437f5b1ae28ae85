"""
Chain watcher configuration

One tagged config variant per chain family. EVM chains share a single
variant parameterized by chain id, RPC url and deposit address.
"""

import os
from dataclasses import dataclass, field
from typing import List, Tuple, Union

from zlink.core.enums import Chain
from zlink.utils.address_validation import (
    is_bitcoin_address,
    is_evm_address,
    is_solana_address,
    normalize_wallet_address,
)


@dataclass(frozen=True)
class EvmChainConfig:
    """EVM-compatible chain (Base, BNB Smart Chain, Ethereum)"""

    chain: Chain
    chain_id: int
    rpc_url: str
    address: str
    confirmations: int = 3
    catch_up_blocks: int = 10
    poll_interval: float = 12.0


@dataclass(frozen=True)
class SolanaChainConfig:
    rpc_url: str
    address: str
    commitment: str = "confirmed"
    signature_window: int = 10
    poll_interval: float = 10.0
    chain: Chain = Chain.SOLANA


@dataclass(frozen=True)
class BitcoinChainConfig:
    """Bitcoin via an Esplora-compatible REST API (mempool.space, blockstream.info)"""

    api_url: str
    addresses: Tuple[str, ...] = field(default_factory=tuple)
    confirmations: int = 3
    poll_interval: float = 60.0
    chain: Chain = Chain.BITCOIN


ChainConfig = Union[EvmChainConfig, SolanaChainConfig, BitcoinChainConfig]


# Defaults per EVM chain: (env prefix, chain id, public rpc)
EVM_CHAIN_DEFAULTS = {
    Chain.BASE: ("BASE", 8453, "https://mainnet.base.org"),
    Chain.BNB: ("BNB", 56, "https://bsc-dataseed.binance.org"),
    Chain.ETHEREUM: ("ETH", 1, ""),
}


def _int_env(name: str, default: int) -> int:
    return int(os.getenv(name, str(default)))


def _float_env(name: str, default: float) -> float:
    return float(os.getenv(name, str(default)))


def load_chain_configs() -> Tuple[List[ChainConfig], List[str]]:
    """
    Build watcher configs from environment variables

    A chain with missing or invalid settings is skipped and reported,
    the remaining chains are still returned.

    Returns:
        (valid configs, human-readable problems)
    """
    configs: List[ChainConfig] = []
    problems: List[str] = []

    for chain, (prefix, chain_id, default_rpc) in EVM_CHAIN_DEFAULTS.items():
        address = os.getenv(f"{prefix}_WALLET_ADDRESS", "").strip()
        if not address:
            problems.append(
                f"{chain.display_name} monitoring not configured (missing {prefix}_WALLET_ADDRESS)"
            )
            continue
        if not is_evm_address(address):
            problems.append(f"{chain.display_name} wallet address is not a valid EVM address")
            continue
        rpc_url = os.getenv(f"{prefix}_RPC_URL", default_rpc).strip()
        if not rpc_url:
            problems.append(f"{chain.display_name} monitoring not configured (missing {prefix}_RPC_URL)")
            continue

        try:
            configs.append(
                EvmChainConfig(
                    chain=chain,
                    chain_id=_int_env(f"{prefix}_CHAIN_ID", chain_id),
                    rpc_url=rpc_url,
                    address=normalize_wallet_address(address),
                    confirmations=_int_env(f"{prefix}_CONFIRMATIONS", 3),
                    catch_up_blocks=_int_env(f"{prefix}_CATCH_UP_BLOCKS", 10),
                    poll_interval=_float_env(f"{prefix}_POLL_INTERVAL_SECONDS", 12.0),
                )
            )
        except ValueError as e:
            problems.append(f"{chain.display_name} settings are invalid: {e}")

    sol_rpc = os.getenv("SOLANA_RPC_URL", "").strip()
    sol_address = os.getenv("SOL_WALLET_ADDRESS", "").strip()
    if not sol_rpc or not sol_address:
        problems.append("Solana monitoring not configured (missing SOLANA_RPC_URL or SOL_WALLET_ADDRESS)")
    elif not is_solana_address(sol_address):
        problems.append("Solana wallet address is not valid base58")
    else:
        try:
            configs.append(
                SolanaChainConfig(
                    rpc_url=sol_rpc,
                    address=sol_address,
                    commitment=os.getenv("SOLANA_COMMITMENT", "confirmed"),
                    signature_window=_int_env("SOLANA_SIGNATURE_WINDOW", 10),
                    poll_interval=_float_env("SOLANA_POLL_INTERVAL_SECONDS", 10.0),
                )
            )
        except ValueError as e:
            problems.append(f"Solana settings are invalid: {e}")

    btc_addresses = [
        a.strip() for a in os.getenv("BTC_WALLET_ADDRESSES", "").split(",") if a.strip()
    ]
    if not btc_addresses:
        problems.append("Bitcoin monitoring not configured (missing BTC_WALLET_ADDRESSES)")
    else:
        invalid = [a for a in btc_addresses if not is_bitcoin_address(a)]
        if invalid:
            problems.append(f"Bitcoin addresses are invalid: {', '.join(invalid)}")
        else:
            try:
                configs.append(
                    BitcoinChainConfig(
                        api_url=os.getenv("BTC_API_URL", "https://mempool.space/api").rstrip("/"),
                        addresses=tuple(normalize_wallet_address(a) for a in btc_addresses),
                        confirmations=_int_env("BTC_CONFIRMATIONS", 3),
                        poll_interval=_float_env("BTC_POLL_INTERVAL_SECONDS", 60.0),
                    )
                )
            except ValueError as e:
                problems.append(f"Bitcoin settings are invalid: {e}")

    return configs, problems


def deposit_addresses(configs: List[ChainConfig]) -> List[Tuple[Chain, str]]:
    """Flatten configs into (chain, deposit address) pairs for display"""
    result: List[Tuple[Chain, str]] = []
    for cfg in configs:
        if isinstance(cfg, BitcoinChainConfig):
            result.extend((cfg.chain, a) for a in cfg.addresses)
        else:
            result.append((cfg.chain, cfg.address))
    return result
