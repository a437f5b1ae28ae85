# coding: utf-8
"""
Chain watcher contract and the shared RPC backoff policy

A watcher yields confirmed transfers into one configured deposit address.
It may redeliver (restart catch-up, overlapping polls); the transfer
ledger downstream is what deduplicates.
"""
import asyncio
import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, List, Optional, Protocol

import aiohttp
from tenacity import (
    retry,
    stop_after_attempt,
    wait_exponential_jitter,
    retry_if_exception_type,
    before_sleep_log,
)

from config.config import (
    BACKOFF_INITIAL_SECONDS,
    BACKOFF_MAX_ATTEMPTS,
    BACKOFF_MAX_SECONDS,
    RPC_TIMEOUT_SECONDS,
)
from zlink.core.enums import Chain

# Create standard logger for tenacity
std_logger = logging.getLogger(__name__)


class TransientProviderError(Exception):
    """Rate limit, timeout, connection reset or 5xx - worth retrying"""


class ProviderError(Exception):
    """Provider answered with an error that retrying will not fix"""


# Exponential, capped and jittered; applied at every RPC call site
with_backoff = retry(
    retry=retry_if_exception_type(TransientProviderError),
    stop=stop_after_attempt(BACKOFF_MAX_ATTEMPTS),
    wait=wait_exponential_jitter(initial=BACKOFF_INITIAL_SECONDS, max=BACKOFF_MAX_SECONDS),
    before_sleep=before_sleep_log(std_logger, logging.WARNING),
    reraise=True,
)


@dataclass(frozen=True)
class TransferEvent:
    """Confirmed transfer into a watched deposit address"""

    chain: Chain
    tx_ref: str
    from_address: str
    to_address: str
    amount: Decimal
    block_ref: Optional[int] = None


class ChainWatcher(Protocol):
    """
    One watcher per (chain, deposit address set)

    poll() returns the events of one round. The first round scans a
    bounded recent window. acknowledge() moves the cursor past the last
    round once every event in it was handled; without it the next round
    rescans.
    """

    chain: Chain
    poll_interval: float

    async def poll(self) -> List[TransferEvent]:
        ...

    def acknowledge(self) -> None:
        ...

    async def close(self) -> None:
        ...


def is_transient_status(status: int) -> bool:
    return status == 429 or status >= 500


class HttpClient:
    """Lazily created aiohttp session with transient-error classification"""

    def __init__(self, timeout: float = RPC_TIMEOUT_SECONDS):
        self.timeout = aiohttp.ClientTimeout(total=timeout)
        self._session: Optional[aiohttp.ClientSession] = None

    async def session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self.timeout)
        return self._session

    @with_backoff
    async def get_json(self, url: str) -> Any:
        session = await self.session()
        try:
            async with session.get(url) as response:
                if is_transient_status(response.status):
                    raise TransientProviderError(f"HTTP {response.status} from {url}")
                if response.status != 200:
                    raise ProviderError(f"HTTP {response.status} from {url}")
                return await response.json(content_type=None)
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise TransientProviderError(f"{type(e).__name__}: {e}") from e

    async def close(self) -> None:
        if self._session is not None and not self._session.closed:
            await self._session.close()
        self._session = None


class JsonRpcClient(HttpClient):
    """JSON-RPC 2.0 over HTTP (EVM nodes, Solana)"""

    # Server-side rate limiting / overload codes used by common providers
    TRANSIENT_RPC_CODES = {-32005, -32007, -32603, 429}

    def __init__(self, url: str, timeout: float = RPC_TIMEOUT_SECONDS):
        super().__init__(timeout)
        self.url = url
        self._request_id = 0

    @with_backoff
    async def call(self, method: str, params: Optional[list] = None) -> Any:
        self._request_id += 1
        payload = {
            "jsonrpc": "2.0",
            "id": self._request_id,
            "method": method,
            "params": params or [],
        }
        session = await self.session()
        try:
            async with session.post(self.url, json=payload) as response:
                if is_transient_status(response.status):
                    raise TransientProviderError(f"HTTP {response.status} from {method}")
                if response.status != 200:
                    raise ProviderError(f"HTTP {response.status} from {method}")
                data = await response.json(content_type=None)
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise TransientProviderError(f"{method}: {type(e).__name__}: {e}") from e

        error = data.get("error") if isinstance(data, dict) else None
        if error:
            code = error.get("code")
            message = error.get("message", "")
            if code in self.TRANSIENT_RPC_CODES or "rate" in message.lower():
                raise TransientProviderError(f"{method}: {code} {message}")
            raise ProviderError(f"{method}: {code} {message}")

        return data.get("result") if isinstance(data, dict) else None
