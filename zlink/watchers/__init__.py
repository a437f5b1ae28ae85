"""Chain watchers producing confirmed transfer events"""
from config.chains import (
    BitcoinChainConfig,
    ChainConfig,
    EvmChainConfig,
    SolanaChainConfig,
)
from zlink.watchers.base import ChainWatcher, TransferEvent
from zlink.watchers.bitcoin import BitcoinWatcher
from zlink.watchers.evm import EvmWatcher
from zlink.watchers.solana import SolanaWatcher


def build_watcher(config: ChainConfig) -> ChainWatcher:
    """One watcher per tagged config variant"""
    if isinstance(config, EvmChainConfig):
        return EvmWatcher(config)
    if isinstance(config, SolanaChainConfig):
        return SolanaWatcher(config)
    if isinstance(config, BitcoinChainConfig):
        return BitcoinWatcher(config)
    raise TypeError(f"Unsupported chain config: {type(config).__name__}")


__all__ = [
    "BitcoinWatcher",
    "ChainWatcher",
    "EvmWatcher",
    "SolanaWatcher",
    "TransferEvent",
    "build_watcher",
]
