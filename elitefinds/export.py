"""
export.py — CSV downloads for the stock, revenue and log tables.
"""

import csv
import io
from datetime import date

STOCK_HEADER = [
    "SKU", "Name", "Size", "Color", "Material", "Brand",
    "Base Cost (PKR)", "Quantity", "Quantity Sold", "Date Added",
]

REVENUE_HEADER = [
    "Date", "Transaction ID", "SKU", "Product Name", "Sale Price (GBP)",
    "Base Cost (GBP)", "Shipping", "Fee %", "Fee Amount", "Net Profit (GBP)", "Margin %",
]

LOGS_HEADER = ["Time (PKT)", "Time (GMT/BST)", "Action", "Module", "Entity", "Details"]


def export_filename(prefix, today=None):
    """e.g. stock_export_2024-05-01.csv"""
    return f"{prefix}_export_{(today or date.today()).isoformat()}.csv"


def _text(value):
    return "" if value is None else str(value)


def _write(header, rows):
    # QUOTE_MINIMAL quotes fields containing the delimiter, quotes or newlines
    # and doubles embedded quotes.
    output = io.StringIO()
    writer = csv.writer(output, lineterminator="\n")
    writer.writerow(header)
    writer.writerows(rows)
    return output.getvalue()


def export_products(products):
    return _write(STOCK_HEADER, (
        [
            _text(p.sku), _text(p.name), _text(p.size), _text(p.color),
            _text(p.material), _text(p.brand),
            f"{p.base_cost_pkr:.2f}", p.quantity, p.quantity_sold, _text(p.date_added),
        ]
        for p in products
    ))


def export_sales(sales):
    return _write(REVENUE_HEADER, (
        [
            _text(s.sale_date), _text(s.transaction_id), _text(s.sku), _text(s.product_name),
            f"{s.sale_price_gbp:.2f}", f"{s.base_cost_gbp:.2f}", f"{s.shipping_gbp:.2f}",
            f"{s.platform_fee_percent:.1f}", f"{s.platform_fee_amount:.2f}",
            f"{s.net_profit_gbp:.2f}", f"{s.profit_margin_percent:.2f}",
        ]
        for s in sales
    ))


def export_logs(entries):
    return _write(LOGS_HEADER, (
        [
            _text(e.timestamp_pkt), _text(e.timestamp_gmt), _text(e.action_type),
            _text(e.module), _text(e.entity_type), _text(e.details),
        ]
        for e in entries
    ))
