"""
services.py — Use cases behind the Stock, Revenue, Logs and Settings pages.

Every public method returns a Result. Input is validated before any
repository is touched, sale figures are recomputed on every write, and
successful writes are recorded in the activity log.
"""

import functools
import logging
import threading
from datetime import date

from elitefinds import calculator, config as config_keys, export
from elitefinds.activity import ActivityLogger
from elitefinds.database import check_connection
from elitefinds.errors import NoDatabaseConnection, Result, ValidationError
from elitefinds.models import (
    ACTION_TYPES, ADDED, DELETED, EDITED, MODULES, REVENUE, STOCK, Product, Sale,
)
from elitefinds.repositories import ProductRepository, SaleRepository

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Input parsing
# ---------------------------------------------------------------------------

def _raw(data, key):
    value = data.get(key)
    if value is None:
        return ""
    return str(value).strip()


def parse_text(data, key, label, required=False):
    value = _raw(data, key)
    if required and not value:
        raise ValidationError(key, f"{label} is required")
    return value


def parse_float(data, key, label, required=False, default=0.0, minimum=None, maximum=None):
    raw = _raw(data, key)
    if not raw:
        if required:
            raise ValidationError(key, f"{label} is required")
        return default
    try:
        value = float(raw)
    except ValueError:
        raise ValidationError(key, f"{label} must be a valid number")
    if value != value or value in (float("inf"), float("-inf")):
        raise ValidationError(key, f"{label} must be a valid number")
    if minimum is not None and maximum is not None and not (minimum <= value <= maximum):
        raise ValidationError(key, f"{label} must be between {minimum:g} and {maximum:g}")
    if minimum is not None and value < minimum:
        raise ValidationError(key, f"{label} must be a non-negative number")
    return value


def parse_int(data, key, label, default=0):
    raw = _raw(data, key)
    if not raw:
        return default
    try:
        value = int(raw)
    except ValueError:
        raise ValidationError(key, f"{label} must be a valid number")
    if value < 0:
        raise ValidationError(key, f"{label} must be a non-negative number")
    return value


def parse_date(data, key, label, required=False):
    raw = _raw(data, key)
    if not raw:
        if required:
            raise ValidationError(key, f"{label} is required")
        return None
    try:
        return date.fromisoformat(raw)
    except ValueError:
        raise ValidationError(key, f"{label} must be a date (YYYY-MM-DD)")


def parse_fee_list(raw):
    """Validate a comma separated fee list like "15,20,25"; returns it normalised."""
    items = [item.strip() for item in (raw or "").split(",") if item.strip()]
    if not items:
        raise ValidationError("platform_fees", "Platform fees must list at least one percentage")
    for item in items:
        try:
            value = float(item)
        except ValueError:
            raise ValidationError("platform_fees", f"Platform fee {item!r} must be a valid number")
        if not 0 <= value <= 100:
            raise ValidationError("platform_fees", "Platform fees must be between 0 and 100")
    return ",".join(items)


def guarded(method):
    """Turn connection and validation failures into Result values."""
    @functools.wraps(method)
    def wrapper(*args, **kwargs):
        try:
            return method(*args, **kwargs)
        except NoDatabaseConnection:
            return Result.no_connection()
        except ValidationError as e:
            return Result.invalid(e.field, e.message)
    return wrapper


def _intersect(items, allowed):
    return [item for item in items if item in allowed]


# ---------------------------------------------------------------------------
# Backend wiring
# ---------------------------------------------------------------------------

class Backend:
    """Config, session, repositories and services for one application."""

    def __init__(self, config, session):
        self.config = config
        self.session = session
        self.activity = ActivityLogger(session)
        self._products = None
        self._sales = None
        self._lock = threading.RLock()

        self.stock = StockService(self)
        self.revenue = RevenueService(self)
        self.logs = LogsService(self)
        self.settings = SettingsService(self)

    def products(self):
        with self._lock:
            self.session.require_connected()
            if self._products is None:
                self._products = ProductRepository(self.session)
            return self._products

    def sales(self):
        with self._lock:
            self.session.require_connected()
            if self._sales is None:
                self._sales = SaleRepository(self.session)
            return self._sales

    def log_entries(self):
        self.session.require_connected()
        repository = self.activity.repository
        if repository is None:
            raise NoDatabaseConnection()
        return repository

    def close(self):
        self.session.close()


# ---------------------------------------------------------------------------
# Stock
# ---------------------------------------------------------------------------

class StockService:
    def __init__(self, backend):
        self.backend = backend

    @guarded
    def list(self, query=None, start=None, end=None):
        repo = self.backend.products()
        items = repo.search(query)
        if start is not None or end is not None:
            items = _intersect(items, repo.filter_by_date_range(start, end))
        return Result.success(items)

    @guarded
    def get(self, sku):
        product = self.backend.products().get(sku)
        if product is None:
            return Result.not_found(f"Product not found for SKU: {sku}")
        return Result.success(product)

    def _read_form(self, data, product):
        product.name = parse_text(data, "name", "Product Name", required=True)
        product.size = parse_text(data, "size", "Size")
        product.color = parse_text(data, "color", "Color")
        product.material = parse_text(data, "material", "Material")
        product.brand = parse_text(data, "brand", "Brand")
        product.base_cost_pkr = parse_float(data, "base_cost_pkr", "Base Cost (PKR)", required=True, minimum=0)
        product.quantity = parse_int(data, "quantity", "Quantity")
        product.quantity_sold = parse_int(data, "quantity_sold", "Quantity Sold")
        return product

    @guarded
    def add(self, data):
        sku = parse_text(data, "sku", "SKU", required=True)
        product = self._read_form(data, Product(sku=sku))
        added_on = parse_date(data, "date_added", "Date Added")
        if added_on is not None:
            product.date_added = added_on.isoformat()

        if not self.backend.products().add(product):
            return Result.duplicate("Failed to add product. SKU may already exist.")
        self.backend.activity.log(ADDED, STOCK, "Product", sku, f"Product {sku}")
        return Result.success(product, "Product added successfully")

    @guarded
    def edit(self, sku, data):
        repo = self.backend.products()
        product = repo.get(sku)
        if product is None:
            return Result.not_found(f"Product not found for SKU: {sku}")
        self._read_form(data, product)

        if not repo.update(product):
            return Result.io_error("Failed to update product")
        self.backend.activity.log(EDITED, STOCK, "Product", sku, f"Product {sku}")
        return Result.success(product, "Product updated successfully")

    @guarded
    def delete(self, sku):
        if not self.backend.products().delete(sku):
            return Result.not_found("Failed to delete product")
        self.backend.activity.log(DELETED, STOCK, "Product", sku, f"Product {sku}")
        return Result.success(sku, "Product deleted successfully")

    @guarded
    def stats(self, products=None):
        repo = self.backend.products()
        products = repo.snapshot() if products is None else products
        rate = self.backend.config.exchange_rate()
        return Result.success({
            "count": len(products),
            "total_quantity": repo.total_quantity(products),
            "total_value_pkr": round(repo.total_value_pkr(products), 2),
            "total_value_gbp": round(repo.total_value_gbp(rate, products), 2),
            "exchange_rate": rate,
        })

    @guarded
    def export(self):
        products = self.backend.products().snapshot()
        return Result.success((export.export_filename("stock"), export.export_products(products)))


# ---------------------------------------------------------------------------
# Revenue
# ---------------------------------------------------------------------------

class RevenueService:
    def __init__(self, backend):
        self.backend = backend

    def _figures(self, product, data):
        sale_price = parse_float(data, "sale_price_gbp", "Sale Price (GBP)", required=True, minimum=0)
        shipping = parse_float(data, "shipping_gbp", "Shipping", minimum=0)
        fee_percent = parse_float(
            data, "platform_fee_percent", "Platform Fee %", required=True, minimum=0, maximum=100,
        )
        figures = calculator.sale_figures(
            sale_price, product.base_cost_pkr, shipping, fee_percent, self.backend.config.exchange_rate(),
        )
        return sale_price, shipping, fee_percent, figures

    @guarded
    def list(self, query=None, start=None, end=None, sku=None):
        repo = self.backend.sales()
        items = repo.search(query)
        if start is not None or end is not None:
            items = _intersect(items, repo.filter_by_date_range(start, end))
        if sku:
            items = _intersect(items, repo.filter_by_product(sku))
        return Result.success(items)

    @guarded
    def get(self, transaction_id):
        sale = self.backend.sales().get(transaction_id)
        if sale is None:
            return Result.not_found(f"Sale not found: {transaction_id}")
        return Result.success(sale)

    @guarded
    def preview(self, data):
        """Figures for the sale form before it is saved."""
        sku = parse_text(data, "sku", "SKU", required=True)
        product = self.backend.products().get(sku)
        if product is None:
            return Result.not_found(f"Product not found for SKU: {sku}")
        _, _, _, figures = self._figures(product, data)
        return Result.success(figures)

    @guarded
    def add(self, data):
        transaction_id = parse_text(data, "transaction_id", "Transaction ID", required=True)
        sku = parse_text(data, "sku", "SKU", required=True)
        sale_date = parse_date(data, "sale_date", "Sale Date", required=True)

        product = self.backend.products().get(sku)
        if product is None:
            return Result.not_found(f"Product not found for SKU: {sku}")
        sale_price, shipping, fee_percent, figures = self._figures(product, data)

        sale = Sale(
            transaction_id=transaction_id,
            sku=sku,
            product_name=product.name,
            base_cost_pkr=product.base_cost_pkr,
            sale_price_gbp=sale_price,
            shipping_gbp=shipping,
            platform_fee_percent=fee_percent,
            sale_date=sale_date.isoformat(),
        )
        sale.apply_figures(figures)

        if not self.backend.sales().add(sale):
            return Result.duplicate("Failed to add sale. Transaction ID may already exist.")
        self.backend.activity.log(ADDED, REVENUE, "Sale", transaction_id, f"Sale Transaction ID {transaction_id}")
        return Result.success(sale, "Sale added successfully")

    @guarded
    def edit(self, transaction_id, data):
        repo = self.backend.sales()
        sale = repo.get(transaction_id)
        if sale is None:
            return Result.not_found(f"Sale not found: {transaction_id}")
        sale_date = parse_date(data, "sale_date", "Sale Date", required=True)

        product = self.backend.products().get(sale.sku)
        if product is None:
            return Result.not_found(f"Product not found for SKU: {sale.sku}")
        sale_price, shipping, fee_percent, figures = self._figures(product, data)

        # Re-snapshot the cost so stored inputs and derived figures agree
        sale.base_cost_pkr = product.base_cost_pkr
        sale.sale_price_gbp = sale_price
        sale.shipping_gbp = shipping
        sale.platform_fee_percent = fee_percent
        sale.sale_date = sale_date.isoformat()
        sale.apply_figures(figures)

        if not repo.update(sale):
            return Result.io_error("Failed to update sale")
        self.backend.activity.log(EDITED, REVENUE, "Sale", transaction_id, f"Sale Transaction ID {transaction_id}")
        return Result.success(sale, "Sale updated successfully")

    @guarded
    def delete(self, transaction_id):
        if not self.backend.sales().delete(transaction_id):
            return Result.not_found("Failed to delete sale")
        self.backend.activity.log(DELETED, REVENUE, "Sale", transaction_id, f"Sale Transaction ID {transaction_id}")
        return Result.success(transaction_id, "Sale deleted successfully")

    @guarded
    def stats(self, sales=None):
        repo = self.backend.sales()
        sales = repo.snapshot() if sales is None else sales
        return Result.success({
            "count": len(sales),
            "total_revenue": round(repo.total_revenue(sales), 2),
            "total_profit": round(repo.total_profit(sales), 2),
            "total_fees": round(repo.total_fees(sales), 2),
            "average_margin": round(repo.average_margin(sales), 2),
        })

    @guarded
    def next_transaction_id(self):
        return Result.success(str(self.backend.sales().next_transaction_id()))

    @guarded
    def product_skus(self):
        return Result.success(self.backend.products().skus())

    def fee_options(self):
        return Result.success(self.backend.config.platform_fee_options())

    @guarded
    def export(self):
        sales = self.backend.sales().snapshot()
        return Result.success((export.export_filename("revenue"), export.export_sales(sales)))


# ---------------------------------------------------------------------------
# Logs
# ---------------------------------------------------------------------------

class LogsService:
    def __init__(self, backend):
        self.backend = backend

    @guarded
    def list(self, query=None, start=None, end=None, module=None, action_type=None):
        repo = self.backend.log_entries()
        if module and module not in MODULES:
            raise ValidationError("module", f"Module must be one of: {', '.join(MODULES)}")
        if action_type and action_type not in ACTION_TYPES:
            raise ValidationError("action_type", f"Action must be one of: {', '.join(ACTION_TYPES)}")
        items = repo.search(query)
        if start is not None or end is not None:
            items = _intersect(items, repo.filter_by_date_range(start, end))
        if module:
            items = _intersect(items, repo.filter_by_module(module))
        if action_type:
            items = _intersect(items, repo.filter_by_action_type(action_type))
        return Result.success(items)

    @guarded
    def stats(self):
        repo = self.backend.log_entries()
        return Result.success({
            "total": repo.total_logs(),
            "today": repo.actions_today(),
            "most_common_action": repo.most_common_action(),
        })

    @guarded
    def purge(self, data):
        """Delete entries older than data["days"] days."""
        raw = _raw(data, "days")
        if not raw:
            raise ValidationError("days", "Days is required")
        days = parse_int(data, "days", "Days")
        repo = self.backend.log_entries()
        removed = repo.delete_older_than(days)
        return Result.success(removed, f"Deleted {removed} log entries older than {days} days")

    @guarded
    def export(self):
        entries = self.backend.log_entries().snapshot()
        return Result.success((export.export_filename("logs"), export.export_logs(entries)))


# ---------------------------------------------------------------------------
# Settings (work without a database)
# ---------------------------------------------------------------------------

class SettingsService:
    def __init__(self, backend):
        self.backend = backend

    def _payload(self):
        cfg = self.backend.config
        return {
            "connection_string": cfg.connection_string() or "",
            "gbp_to_pkr_rate": cfg.exchange_rate(),
            "platform_fees": cfg.platform_fees(),
            "platform_fee_options": cfg.platform_fee_options(),
            "connected": self.backend.session.is_connected(),
            "engine": self.backend.session.engine,
        }

    def get(self):
        return Result.success(self._payload())

    def defaults(self):
        return Result.success({
            "connection_string": "",
            "gbp_to_pkr_rate": config_keys.DEFAULT_GBP_TO_PKR_RATE,
            "platform_fees": config_keys.DEFAULT_PLATFORM_FEES,
        })

    @guarded
    def save(self, data):
        rate = parse_float(data, "gbp_to_pkr_rate", "Exchange rate", required=True)
        if rate <= 0:
            raise ValidationError("gbp_to_pkr_rate", "Exchange rate must be a positive number")
        fees = None
        if _raw(data, "platform_fees"):
            fees = parse_fee_list(_raw(data, "platform_fees"))

        cfg = self.backend.config
        cfg.set_connection_string(_raw(data, "connection_string") or None)
        cfg.set_exchange_rate(rate)
        if fees is not None:
            cfg.set_platform_fees(fees)
        logger.info("Settings saved (rate=%s, fees=%s)", rate, cfg.platform_fees())
        return Result.success(
            self._payload(),
            "Settings saved successfully. Restart the application for database connection changes to take effect.",
        )

    @guarded
    def check_connection(self, data):
        connection_string = parse_text(data, "connection_string", "Connection string", required=True)
        ok, message = check_connection(connection_string)
        if not ok:
            return Result.io_error(message)
        return Result.success(True, message)
