# coding: utf-8
"""
EVM chain watcher (Base, BNB Smart Chain, Ethereum)

Polls blocks over JSON-RPC and reports native-coin transfers into the
deposit address once they have the configured number of confirmations
(a tx in block B has head - B + 1 confirmations).
"""
from decimal import Decimal
from typing import Any, Dict, List, Optional

from loguru import logger

from config.chains import EvmChainConfig
from zlink.watchers.base import JsonRpcClient, TransferEvent

WEI_PER_ETHER = Decimal(10) ** 18


def parse_hex_int(value: Any) -> int:
    if isinstance(value, int):
        return value
    return int(value, 16)


class EvmWatcher:
    """Block scanner for one deposit address on one EVM chain"""

    # Upper bound on blocks scanned in a single round after a long stall
    MAX_BLOCKS_PER_POLL = 200

    def __init__(self, config: EvmChainConfig, rpc: Optional[JsonRpcClient] = None):
        self.config = config
        self.chain = config.chain
        self.address = config.address.lower()
        self.poll_interval = config.poll_interval
        self.rpc = rpc or JsonRpcClient(config.rpc_url)
        self._next_block: Optional[int] = None
        self._pending_next: Optional[int] = None

    async def safe_head(self) -> int:
        """Highest block whose transactions have enough confirmations"""
        head = parse_hex_int(await self.rpc.call("eth_blockNumber"))
        return head - self.config.confirmations + 1

    async def poll(self) -> List[TransferEvent]:
        safe_head = await self.safe_head()

        start = self._next_block
        if start is None:
            # First round after (re)start: bounded catch-up window
            start = max(0, safe_head - self.config.catch_up_blocks + 1)
            logger.info(
                f"{self.chain.display_name} watcher catching up from block {start} "
                f"(safe head {safe_head}) for {self.address}"
            )

        if start > safe_head:
            self._pending_next = start
            return []

        end = min(safe_head, start + self.MAX_BLOCKS_PER_POLL - 1)
        events: List[TransferEvent] = []
        for number in range(start, end + 1):
            events.extend(await self.scan_block(number))

        self._pending_next = end + 1
        return events

    def acknowledge(self) -> None:
        if self._pending_next is not None:
            self._next_block = self._pending_next
            self._pending_next = None

    async def scan_block(self, number: int) -> List[TransferEvent]:
        block = await self.rpc.call("eth_getBlockByNumber", [hex(number), True])
        if not block:
            logger.debug(f"{self.chain.value}: block {number} not available yet")
            return []

        events = []
        for tx in block.get("transactions") or []:
            try:
                event = await self._parse_transaction(tx, number)
            except (KeyError, TypeError, ValueError) as e:
                logger.warning(f"{self.chain.value}: skipping undecodable tx in block {number}: {e}")
                continue
            if event is not None:
                events.append(event)
        return events

    async def _parse_transaction(self, tx: Dict[str, Any], block_number: int) -> Optional[TransferEvent]:
        to = tx.get("to")
        if not to or to.lower() != self.address:
            return None

        value = parse_hex_int(tx["value"])
        if value <= 0:
            return None

        tx_hash = tx["hash"].lower()
        receipt = await self.rpc.call("eth_getTransactionReceipt", [tx_hash])
        if not receipt or parse_hex_int(receipt.get("status", "0x0")) != 1:
            logger.info(f"{self.chain.value}: tx {tx_hash} reverted or has no receipt, ignored")
            return None

        amount = Decimal(value) / WEI_PER_ETHER
        logger.info(f"💰 {self.chain.display_name} deposit {amount} from {tx['from']} (tx {tx_hash})")
        return TransferEvent(
            chain=self.chain,
            tx_ref=tx_hash,
            from_address=tx["from"].lower(),
            to_address=self.address,
            amount=amount,
            block_ref=block_number,
        )

    async def close(self) -> None:
        await self.rpc.close()
