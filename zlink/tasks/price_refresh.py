"""
Price refresh scheduler

Keeps the oracle cache warm so conversions rarely wait on CoinGecko.
"""

import aiohttp
from loguru import logger

from config.config import PRICE_REFRESH_SECONDS
from zlink.services.price_oracle import PriceFetchError, PriceOracle


async def refresh_prices(oracle: PriceOracle) -> None:
    """Refresh every configured coin; failures leave the old cache in place"""
    try:
        prices = await oracle.refresh()
        logger.debug(f"Price cache refreshed: {len(prices)} coins")
    except (aiohttp.ClientError, TimeoutError, PriceFetchError) as e:
        logger.warning(f"Price refresh failed, keeping cached prices: {e}")


def schedule_price_refresh(scheduler, oracle: PriceOracle) -> None:
    """
    Schedule periodic price refresh

    Args:
        scheduler: APScheduler instance
        oracle: Shared PriceOracle
    """
    scheduler.add_job(
        refresh_prices,
        trigger='interval',
        seconds=PRICE_REFRESH_SECONDS,
        args=[oracle],
        id='refresh_prices',
        name='Refresh coin prices',
        replace_existing=True,
        max_instances=1,
    )

    logger.info(f"Price refresh scheduler configured: every {PRICE_REFRESH_SECONDS}s")
