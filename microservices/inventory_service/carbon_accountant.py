"""
Carbon Accountant

Estimated kg CO2e for delivering a product:

    weight_kg * production_factor(category) + distance_km * TRANSPORT_FACTOR * weight_kg
"""

import math
from typing import Dict, Iterable, Tuple, Union

from .models import CarbonEstimate, CarbonLine, ProductCategory

# kg CO2e per kg of product
PRODUCTION_FACTORS: Dict[ProductCategory, float] = {
    ProductCategory.FRUITS: 0.5,
    ProductCategory.VEGETABLES: 0.4,
    ProductCategory.DAIRY: 2.5,
    ProductCategory.MEAT: 12.0,
    ProductCategory.BAKERY: 0.8,
    ProductCategory.PRESERVES: 1.2,
    ProductCategory.HONEY: 0.3,
    ProductCategory.HERBS: 0.2,
    ProductCategory.BEVERAGES: 0.6,
    ProductCategory.OTHER: 1.0,
}

DEFAULT_PRODUCTION_FACTOR = 1.0

# kg CO2e per km per kg
TRANSPORT_FACTOR = 0.1


def _non_negative(name: str, value: float) -> float:
    value = float(value)
    if math.isnan(value) or math.isinf(value) or value < 0:
        raise ValueError(f"{name} must be a finite non-negative number, got {value}")
    return value


def _coerce_category(category) -> ProductCategory:
    try:
        return ProductCategory(category)
    except ValueError:
        return ProductCategory.OTHER


class CarbonAccountant:
    """Pure carbon-footprint estimator"""

    def __init__(
        self,
        production_factors: Dict[ProductCategory, float] = None,
        transport_factor: float = TRANSPORT_FACTOR,
    ):
        self.production_factors = dict(production_factors or PRODUCTION_FACTORS)
        self.transport_factor = transport_factor

    def production_factor(self, category: Union[ProductCategory, str, None]) -> float:
        try:
            category = ProductCategory(category)
        except ValueError:
            return DEFAULT_PRODUCTION_FACTOR
        return self.production_factors.get(category, DEFAULT_PRODUCTION_FACTOR)

    def breakdown(self, category, weight_kg: float, distance_km: float) -> Tuple[float, float]:
        """(production_kg, transport_kg) for one line"""
        weight_kg = _non_negative("weight_kg", weight_kg)
        distance_km = _non_negative("distance_km", distance_km)
        production = weight_kg * self.production_factor(category)
        transport = distance_km * self.transport_factor * weight_kg
        return production, transport

    def estimate(self, category, weight_kg: float, distance_km: float) -> float:
        production, transport = self.breakdown(category, weight_kg, distance_km)
        return production + transport

    def estimate_order(self, lines: Iterable[Tuple[str, ProductCategory, float, float]]) -> CarbonEstimate:
        """
        Estimate for a whole order.

        Args:
            lines: (product_id, category, weight_kg, distance_km) per order line

        Returns:
            CarbonEstimate with per-line breakdown
        """
        result = []
        total = 0.0
        for product_id, category, weight_kg, distance_km in lines:
            production, transport = self.breakdown(category, weight_kg, distance_km)
            line_total = production + transport
            total += line_total
            result.append(CarbonLine(
                product_id=product_id,
                category=_coerce_category(category),
                weight_kg=float(weight_kg),
                distance_km=float(distance_km),
                production_kg=production,
                transport_kg=transport,
                total_kg=line_total,
            ))
        return CarbonEstimate(total_kg=total, lines=result)
