# coding: utf-8
"""
Conversion engine: deposit amount -> reference value -> payout amount
"""
from dataclasses import dataclass
from decimal import Decimal, ROUND_DOWN

from config.config import FEE_RATE, MINIMUM_REFERENCE_VALUE, PAYOUT_COIN
from zlink.services.price_oracle import PriceOracle


# Payout ledger precision (zatoshi)
PAYOUT_QUANTUM = Decimal("0.00000001")
VALUE_QUANTUM = Decimal("0.00000001")


@dataclass(frozen=True)
class Quote:
    """Full conversion of one deposit, as stored on a pending payout"""

    source_coin: str
    source_amount: Decimal
    source_price: Decimal
    source_value: Decimal
    payout_coin: str
    payout_price: Decimal
    payout_amount: Decimal


class ConversionEngine:
    """
    Prices a deposit and applies the fee and minimum-value policy

    payout = value * (1 - fee_rate) / price(payout_coin)
    """

    def __init__(
        self,
        oracle: PriceOracle,
        fee_rate: Decimal = FEE_RATE,
        minimum_value: Decimal = MINIMUM_REFERENCE_VALUE,
        payout_coin: str = PAYOUT_COIN,
    ):
        self.oracle = oracle
        self.fee_rate = Decimal(fee_rate)
        self.minimum_value = Decimal(minimum_value)
        self.payout_coin = payout_coin.upper()

    async def to_reference_value(self, amount: Decimal, coin_symbol: str) -> Decimal:
        price = await self.oracle.price(coin_symbol)
        return Decimal(amount) * price

    def meets_minimum(self, value: Decimal) -> bool:
        """Inclusive floor: exactly the minimum passes"""
        return value >= self.minimum_value

    async def compute_payout(self, value: Decimal) -> Decimal:
        payout_price = await self.oracle.price(self.payout_coin)
        payout = value * (Decimal("1") - self.fee_rate) / payout_price
        return payout.quantize(PAYOUT_QUANTUM, rounding=ROUND_DOWN)

    async def quote(self, amount: Decimal, coin_symbol: str) -> Quote:
        """Price a deposit against current prices"""
        source_price = await self.oracle.price(coin_symbol)
        payout_price = await self.oracle.price(self.payout_coin)
        value = Decimal(amount) * source_price
        payout = (value * (Decimal("1") - self.fee_rate) / payout_price).quantize(
            PAYOUT_QUANTUM, rounding=ROUND_DOWN
        )
        return Quote(
            source_coin=coin_symbol.upper(),
            source_amount=Decimal(amount),
            source_price=source_price,
            source_value=value.quantize(VALUE_QUANTUM, rounding=ROUND_DOWN),
            payout_coin=self.payout_coin,
            payout_price=payout_price,
            payout_amount=payout,
        )
