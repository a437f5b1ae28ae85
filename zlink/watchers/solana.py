# coding: utf-8
"""
Solana watcher

Lists recent signatures for the deposit address at the configured
commitment, then reads each transaction (jsonParsed) and derives the
lamport delta of the deposit account from pre/post balances.
"""
from collections import deque
from decimal import Decimal
from typing import Any, Deque, Dict, List, Optional, Set

from loguru import logger

from config.chains import SolanaChainConfig
from zlink.watchers.base import JsonRpcClient, TransferEvent

LAMPORTS_PER_SOL = Decimal(10) ** 9

# Page size for signature listing once the cursor is known
SIGNATURE_PAGE = 100


def _account_key(entry: Any) -> str:
    # jsonParsed gives {"pubkey": ..., "signer": ...}; plain json gives the string
    if isinstance(entry, dict):
        return entry["pubkey"]
    return entry


def parse_sol_transfer(tx: Dict[str, Any], deposit_address: str) -> Optional[Dict[str, Any]]:
    """
    Extract (sender, lamports) of a transfer into deposit_address

    The sender is the first account whose balance decreased (the fee
    payer when it funds the transfer).

    Returns:
        {"from": str, "lamports": int} or None if nothing was received
    """
    meta = tx.get("meta") or {}
    if meta.get("err") is not None:
        return None

    keys = [_account_key(k) for k in tx["transaction"]["message"]["accountKeys"]]
    pre = meta["preBalances"]
    post = meta["postBalances"]

    if deposit_address not in keys:
        return None
    index = keys.index(deposit_address)

    received = post[index] - pre[index]
    if received <= 0:
        return None

    sender = next(
        (keys[i] for i in range(len(keys)) if i != index and post[i] < pre[i]),
        None,
    )
    if sender is None:
        return None
    return {"from": sender, "lamports": received}


class SolanaWatcher:
    """Signature poller for one Solana deposit address"""

    SEEN_CACHE_SIZE = 2000

    def __init__(self, config: SolanaChainConfig, rpc: Optional[JsonRpcClient] = None):
        self.config = config
        self.chain = config.chain
        self.address = config.address
        self.poll_interval = config.poll_interval
        self.rpc = rpc or JsonRpcClient(config.rpc_url)
        self._until: Optional[str] = None
        self._pending_until: Optional[str] = None
        # Cache only; the transfer ledger is authoritative
        self._seen: Set[str] = set()
        self._seen_order: Deque[str] = deque()
        self._delivered: List[str] = []

    async def _list_signatures(self) -> List[Dict[str, Any]]:
        """
        Signatures newer than the cursor, newest first

        Without a cursor only the most recent signature_window entries are
        listed. With one, pages are walked backwards with `before` until a
        short page shows the cursor was reached.
        """
        options: Dict[str, Any] = {"commitment": self.config.commitment}
        if self._until is None:
            options["limit"] = self.config.signature_window
            return await self.rpc.call("getSignaturesForAddress", [self.address, options]) or []

        options["limit"] = SIGNATURE_PAGE
        options["until"] = self._until
        signatures: List[Dict[str, Any]] = []
        while True:
            page = await self.rpc.call("getSignaturesForAddress", [self.address, dict(options)]) or []
            signatures.extend(page)
            if len(page) < SIGNATURE_PAGE:
                break
            options["before"] = page[-1]["signature"]
            logger.debug(f"solana: {len(signatures)} new signatures so far, fetching an older page")
        return signatures

    async def poll(self) -> List[TransferEvent]:
        self._pending_until = None
        signatures = await self._list_signatures()
        if signatures:
            self._pending_until = signatures[0]["signature"]

        events: List[TransferEvent] = []
        # Newest first from the node; handle oldest first
        for entry in reversed(signatures):
            signature = entry.get("signature")
            if not signature or entry.get("err") is not None or signature in self._seen:
                continue
            tx = await self._get_transaction(signature)
            if not tx:
                # Not visible at this commitment yet: keep the cursor so it is listed again
                self._pending_until = None
                continue
            event = self._to_event(signature, tx, entry.get("slot"))
            if event is not None:
                events.append(event)
        self._delivered = [e.tx_ref for e in events]
        return events

    async def _get_transaction(self, signature: str) -> Optional[Dict[str, Any]]:
        return await self.rpc.call(
            "getTransaction",
            [
                signature,
                {
                    "encoding": "jsonParsed",
                    "maxSupportedTransactionVersion": 0,
                    "commitment": self.config.commitment,
                },
            ],
        )

    def _to_event(self, signature: str, tx: Dict[str, Any], slot: Optional[int]) -> Optional[TransferEvent]:
        try:
            parsed = parse_sol_transfer(tx, self.address)
        except (KeyError, TypeError, IndexError, ValueError) as e:
            logger.warning(f"solana: skipping undecodable tx {signature}: {e}")
            self._remember(signature)
            return None

        if parsed is None:
            self._remember(signature)
            return None

        amount = Decimal(parsed["lamports"]) / LAMPORTS_PER_SOL
        logger.info(f"💰 Solana deposit {amount} SOL from {parsed['from']} (sig {signature[:16]}...)")
        return TransferEvent(
            chain=self.chain,
            tx_ref=signature,
            from_address=parsed["from"],
            to_address=self.address,
            amount=amount,
            block_ref=slot,
        )

    def _remember(self, signature: str) -> None:
        self._seen.add(signature)
        self._seen_order.append(signature)
        while len(self._seen_order) > self.SEEN_CACHE_SIZE:
            self._seen.discard(self._seen_order.popleft())

    def acknowledge(self) -> None:
        for signature in self._delivered:
            self._remember(signature)
        self._delivered = []
        if self._pending_until is not None:
            self._until = self._pending_until
            self._pending_until = None

    async def close(self) -> None:
        await self.rpc.close()
