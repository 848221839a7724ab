"""
Fee calculation engine for the workshop economy.

Turns material costs and an output price into after-tax revenue and profit.
Unknown prices propagate as ``None``: one unknown input nulls the aggregate.
"""

from dataclasses import dataclass
from typing import Any, Dict, Iterable, Optional

from utils.sanitize import sanitize_tax_rate


@dataclass
class FeeCalculation:
    """Result of fee calculation."""
    gross_amount: float
    fees: float
    net_amount: float
    fee_breakdown: Dict[str, float]


@dataclass
class CraftEconomics:
    """Aggregate economics of a crafting run."""
    required_material_cost: Optional[int]
    missing_purchase_cost: Optional[int]
    output_unit_price: Optional[int]
    gross_revenue: Optional[int]
    net_revenue_after_tax: Optional[float]
    estimated_profit: Optional[float]
    estimated_profit_rate: Optional[float]


def sum_known(costs: Iterable[Optional[int]]) -> Optional[int]:
    """Sum ``costs`` or return None if any entry is unknown."""
    total = 0
    for cost in costs:
        if cost is None:
            return None
        total += cost
    return total


class FeeCalculator:
    """Calculates market tax and crafting profit."""

    def __init__(self, config: Optional[Dict[str, Any]] = None):
        """Initialize fee calculator with configuration."""
        self.config = config or {}
        self.tax_rate = sanitize_tax_rate(self.config.get('fees', {}).get('tax_rate'))

    def get_tax_rate(self, override: Any = None) -> float:
        """Return ``override`` clamped to the allowed range, or the configured rate."""
        if override is None:
            return self.tax_rate
        return sanitize_tax_rate(override)

    def calculate_sale_revenue(self, unit_price: int, quantity: int,
                               tax_rate: Any = None) -> FeeCalculation:
        """
        Calculate revenue for selling ``quantity`` units at ``unit_price``.

        The market keeps ``tax_rate`` of the gross amount.
        """
        rate = self.get_tax_rate(tax_rate)
        gross = unit_price * quantity
        tax = gross * rate
        return FeeCalculation(
            gross_amount=gross,
            fees=tax,
            net_amount=gross * (1 - rate),
            fee_breakdown={'sales_tax': tax},
        )

    def calculate_craft_economics(self, required_costs: Iterable[Optional[int]],
                                  missing_costs: Iterable[Optional[int]],
                                  output_unit_price: Optional[int],
                                  total_output_quantity: int,
                                  tax_rate: Any = None) -> CraftEconomics:
        """
        Aggregate material costs against the sale of the crafted output.

        Args:
            required_costs: per-material cost of everything the runs consume
            missing_costs: per-material cost of the shortfall only
            output_unit_price: latest known price of the output item
            total_output_quantity: output quantity across all runs
            tax_rate: market tax, clamped to [0, 0.95]
        """
        material_cost = sum_known(required_costs)
        missing_cost = sum_known(missing_costs)

        gross_revenue = None
        net_revenue = None
        if output_unit_price is not None:
            sale = self.calculate_sale_revenue(output_unit_price, total_output_quantity, tax_rate)
            gross_revenue = sale.gross_amount
            net_revenue = sale.net_amount

        profit = None
        if net_revenue is not None and material_cost is not None:
            profit = net_revenue - material_cost

        profit_rate = None
        if profit is not None and material_cost is not None and material_cost > 0:
            profit_rate = profit / material_cost

        return CraftEconomics(
            required_material_cost=material_cost,
            missing_purchase_cost=missing_cost,
            output_unit_price=output_unit_price,
            gross_revenue=gross_revenue,
            net_revenue_after_tax=net_revenue,
            estimated_profit=profit,
            estimated_profit_rate=profit_rate,
        )
