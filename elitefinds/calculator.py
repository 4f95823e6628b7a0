"""
calculator.py — Sale figures: currency conversion, fees, profit, margin.

Stored sales keep these derived values, so add and edit must both go through
sale_figures() to keep them consistent with the inputs.
"""

import math

from elitefinds.config import DEFAULT_GBP_TO_PKR_RATE


def convert_pkr_to_gbp(pkr, rate):
    """PKR -> GBP at `rate` PKR per GBP (a non-positive or non-finite rate falls back to the default)."""
    if not rate or not (math.isfinite(rate) and rate > 0):
        rate = DEFAULT_GBP_TO_PKR_RATE
    return pkr / rate


def platform_fee_amount(sale_price, fee_percent):
    return sale_price * fee_percent / 100.0


def net_profit(sale_price, base_cost_gbp, shipping, fee_percent):
    """Sale price - base cost (GBP) - shipping - platform fee."""
    return sale_price - base_cost_gbp - shipping - platform_fee_amount(sale_price, fee_percent)


def profit_margin(net_profit_gbp, sale_price):
    """Net profit as a percentage of the sale price; 0 for a free sale."""
    if sale_price == 0:
        return 0.0
    return (net_profit_gbp / sale_price) * 100.0


def sale_figures(sale_price, base_cost_pkr, shipping, fee_percent, rate):
    base_cost_gbp = convert_pkr_to_gbp(base_cost_pkr, rate)
    profit = net_profit(sale_price, base_cost_gbp, shipping, fee_percent)
    return {
        "base_cost_gbp": base_cost_gbp,
        "platform_fee_amount": platform_fee_amount(sale_price, fee_percent),
        "net_profit_gbp": profit,
        "profit_margin_percent": profit_margin(profit, sale_price),
    }
