"""
Unit tests for the conversion engine
"""

from decimal import Decimal

import pytest

from zlink.services.conversion import ConversionEngine
from zlink.services.price_oracle import UnknownCoinError

from tests.conftest import FixedPriceOracle


@pytest.mark.asyncio
async def test_quote_one_eth_to_zec():
    """1 ETH at 3500, 1% fee, ZEC at 45"""
    engine = ConversionEngine(FixedPriceOracle(), fee_rate=Decimal("0.01"), minimum_value=Decimal("10"))

    quote = await engine.quote(Decimal("1"), "eth")

    assert quote.source_coin == "ETH"
    assert quote.source_value == Decimal("3500")
    assert quote.payout_coin == "ZEC"
    # 3500 * 0.99 / 45
    assert quote.payout_amount == Decimal("77.00000000")


@pytest.mark.asyncio
async def test_payout_rounds_down_to_eight_places():
    oracle = FixedPriceOracle({"SOL": Decimal("150"), "ZEC": Decimal("7")})
    engine = ConversionEngine(oracle, fee_rate=Decimal("0"), minimum_value=Decimal("0"))

    payout = await engine.compute_payout(Decimal("10"))

    # 10 / 7 = 1.428571428571...
    assert payout == Decimal("1.42857142")


@pytest.mark.asyncio
async def test_minimum_is_inclusive():
    engine = ConversionEngine(FixedPriceOracle(), fee_rate=Decimal("0.01"), minimum_value=Decimal("10"))

    assert engine.meets_minimum(Decimal("10")) is True
    assert engine.meets_minimum(Decimal("9.99999999")) is False


@pytest.mark.asyncio
async def test_reference_value_uses_oracle_price():
    engine = ConversionEngine(FixedPriceOracle(), fee_rate=Decimal("0.01"), minimum_value=Decimal("10"))

    value = await engine.to_reference_value(Decimal("0.001"), "BTC")

    assert value == Decimal("65.000")


@pytest.mark.asyncio
async def test_unknown_coin_propagates():
    engine = ConversionEngine(FixedPriceOracle(), fee_rate=Decimal("0.01"), minimum_value=Decimal("10"))

    with pytest.raises(UnknownCoinError):
        await engine.quote(Decimal("1"), "DOGE")
