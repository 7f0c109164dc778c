"""
Order Summary

Checkout totals for a cart: subtotal, delivery and payment processing
fees, and the order's carbon estimate from each product's origin to the
delivery destination.
"""

import asyncio
import logging
from decimal import ROUND_HALF_UP, Decimal
from typing import List, Optional

from core.config import InventoryConfig

from .carbon_accountant import CarbonAccountant
from .geo_index import GeoIndex
from .models import GeoPoint, OrderLine, OrderSummary, PaymentMethod, Product, Unit
from .protocols import CatalogProtocol, ProductNotFoundError

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")

# Mass of one sale unit in kg; pieces use the configured per-piece weight
UNIT_WEIGHT_KG = {
    Unit.KG: Decimal("1"),
    Unit.G: Decimal("0.001"),
    Unit.L: Decimal("1"),
    Unit.ML: Decimal("0.001"),
}


def quantize_money(amount: Decimal) -> Decimal:
    return amount.quantize(CENT, rounding=ROUND_HALF_UP)


class OrderSummaryService:
    """Fee and carbon calculation for a finalized cart"""

    def __init__(
        self,
        catalog: CatalogProtocol,
        carbon: Optional[CarbonAccountant] = None,
        geo_index: Optional[GeoIndex] = None,
        delivery_fee: Decimal = Decimal("15.00"),
        transfer_fee: Decimal = Decimal("5.00"),
        card_fee_rate: Decimal = Decimal("0.02"),
        piece_weight_kg: Decimal = Decimal("1"),
        currency: str = "PLN",
    ):
        self.catalog = catalog
        self.carbon = carbon or CarbonAccountant()
        self.geo_index = geo_index or GeoIndex()
        self.delivery_fee = delivery_fee
        self.transfer_fee = transfer_fee
        self.card_fee_rate = card_fee_rate
        self.piece_weight_kg = piece_weight_kg
        self.currency = currency

    @classmethod
    def from_config(cls, config: InventoryConfig, catalog: CatalogProtocol, **kwargs) -> "OrderSummaryService":
        return cls(
            catalog,
            delivery_fee=config.delivery_fee,
            transfer_fee=config.transfer_fee,
            card_fee_rate=config.card_fee_rate,
            piece_weight_kg=config.piece_weight_kg,
            currency=config.currency,
            **kwargs,
        )

    def line_weight_kg(self, product: Product, quantity: int) -> Decimal:
        per_unit = product.unit_weight_kg or UNIT_WEIGHT_KG.get(product.unit, self.piece_weight_kg)
        return per_unit * quantity

    def processing_fee(self, payment_method: PaymentMethod, subtotal: Decimal) -> Decimal:
        if payment_method == PaymentMethod.CARD:
            return quantize_money(subtotal * self.card_fee_rate)
        if payment_method == PaymentMethod.TRANSFER:
            return quantize_money(self.transfer_fee)
        return Decimal("0.00")

    async def summarize(
        self,
        items: List[OrderLine],
        destination: GeoPoint,
        payment_method: PaymentMethod = PaymentMethod.CARD,
    ) -> OrderSummary:
        """
        Compute the checkout summary.

        Raises:
            ProductNotFoundError: an order line references an unknown product
            ValueError: the cart is empty
        """
        if not items:
            raise ValueError("order has no items")

        products = await asyncio.gather(*(self.catalog.get_product(line.product_id) for line in items))

        subtotal = Decimal("0")
        carbon_lines = []
        for line, product in zip(items, products):
            if product is None:
                raise ProductNotFoundError(line.product_id)
            subtotal += product.price * line.quantity

            if product.location is not None:
                distance_km = self.geo_index.distance_km(product.location.point, destination)
            else:
                logger.warning(f"Product {product.product_id} has no location; transport emissions omitted")
                distance_km = 0.0
            weight_kg = float(self.line_weight_kg(product, line.quantity))
            carbon_lines.append((product.product_id, product.category, weight_kg, distance_km))

        subtotal = quantize_money(subtotal)
        delivery_fee = quantize_money(self.delivery_fee)
        processing_fee = self.processing_fee(payment_method, subtotal)

        return OrderSummary(
            currency=self.currency,
            subtotal=subtotal,
            delivery_fee=delivery_fee,
            processing_fee=processing_fee,
            total=subtotal + delivery_fee + processing_fee,
            payment_method=payment_method,
            carbon_estimate=self.carbon.estimate_order(carbon_lines),
        )
