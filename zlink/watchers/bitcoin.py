# coding: utf-8
"""
Bitcoin watcher over an Esplora-compatible REST API

Each round reads the chain tip and the latest transactions of every
deposit address (Esplora returns the newest confirmed page, which is
the catch-up window). A transaction is reported once it has the
configured confirmations; outputs to several of our addresses in one
transaction are summed into a single event.
"""
from decimal import Decimal
from typing import Any, Dict, List, Optional, Set

from loguru import logger

from config.chains import BitcoinChainConfig
from zlink.watchers.base import HttpClient, TransferEvent

SATS_PER_BTC = Decimal(10) ** 8


def confirmations(tx: Dict[str, Any], tip_height: int) -> int:
    status = tx.get("status") or {}
    if not status.get("confirmed"):
        return 0
    return tip_height - int(status["block_height"]) + 1


def parse_btc_transfer(tx: Dict[str, Any], our_addresses: Set[str]) -> Optional[Dict[str, Any]]:
    """
    Sum outputs paying our addresses and find the sender

    The sender is the address of the first input's previous output.

    Returns:
        {"txid", "from", "to", "sats"} or None (nothing received, coinbase)
    """
    vin = tx.get("vin") or []
    if not vin or vin[0].get("is_coinbase"):
        return None

    received = 0
    to_address = None
    for out in tx.get("vout") or []:
        address = out.get("scriptpubkey_address")
        if address in our_addresses:
            received += int(out["value"])
            to_address = to_address or address

    if received <= 0:
        return None

    prevout = vin[0].get("prevout") or {}
    sender = prevout.get("scriptpubkey_address")
    if not sender:
        return None

    return {"txid": tx["txid"], "from": sender, "to": to_address, "sats": received}


class BitcoinWatcher:
    """Esplora poller for a set of Bitcoin deposit addresses"""

    def __init__(self, config: BitcoinChainConfig, http: Optional[HttpClient] = None):
        self.config = config
        self.chain = config.chain
        self.addresses = set(config.addresses)
        self.poll_interval = config.poll_interval
        self.api_url = config.api_url.rstrip("/")
        self.http = http or HttpClient()
        # Cache only; the transfer ledger is authoritative
        self._reported: Set[str] = set()
        self._pending: Set[str] = set()

    async def tip_height(self) -> int:
        return int(await self.http.get_json(f"{self.api_url}/blocks/tip/height"))

    async def poll(self) -> List[TransferEvent]:
        tip = await self.tip_height()
        events: Dict[str, TransferEvent] = {}

        for address in sorted(self.addresses):
            txs = await self.http.get_json(f"{self.api_url}/address/{address}/txs") or []
            for tx in txs:
                txid = tx.get("txid")
                if not txid or txid in self._reported or txid in events:
                    continue
                if confirmations(tx, tip) < self.config.confirmations:
                    continue
                try:
                    parsed = parse_btc_transfer(tx, self.addresses)
                except (KeyError, TypeError, ValueError) as e:
                    logger.warning(f"bitcoin: skipping undecodable tx {txid}: {e}")
                    continue
                if parsed is None:
                    continue

                amount = Decimal(parsed["sats"]) / SATS_PER_BTC
                logger.info(f"💰 Bitcoin deposit {amount} BTC from {parsed['from']} (tx {txid})")
                events[txid] = TransferEvent(
                    chain=self.chain,
                    tx_ref=txid,
                    from_address=parsed["from"],
                    to_address=parsed["to"],
                    amount=amount,
                    block_ref=(tx.get("status") or {}).get("block_height"),
                )

        self._pending = set(events)
        return list(events.values())

    def acknowledge(self) -> None:
        self._reported |= self._pending
        self._pending = set()

    async def close(self) -> None:
        await self.http.close()
