"""
models.py — Entities stored in the document store.

Field names on disk are camelCase (sku, baseCostPkr, transactionId, ...);
the dataclasses use snake_case and convert in to_document / from_document.
"""

from dataclasses import dataclass, field, fields
from datetime import date
from typing import Optional

# Activity log vocabulary
ADDED = "Added"
EDITED = "Edited"
DELETED = "Deleted"
ACTION_TYPES = (ADDED, EDITED, DELETED)

STOCK = "Stock"
REVENUE = "Revenue"
MODULES = (STOCK, REVENUE)


def _camel(name):
    head, *rest = name.split("_")
    return head + "".join(part.capitalize() for part in rest)


class Document:
    """Mixin mapping dataclass fields to camelCase document keys."""

    COLLECTION = ""
    KEY_FIELD = ""

    @classmethod
    def _key(cls, name):
        return _camel(name)

    def to_document(self):
        doc = {}
        for f in fields(self):
            if f.name == "id":
                if self.id:
                    doc["_id"] = self.id
                continue
            doc[self._key(f.name)] = getattr(self, f.name)
        return doc

    @classmethod
    def from_document(cls, doc):
        kwargs = {}
        for f in fields(cls):
            key = "_id" if f.name == "id" else cls._key(f.name)
            if key in doc and doc[key] is not None:
                kwargs[f.name] = doc[key]
        return cls(**kwargs)

    @property
    def key(self):
        return getattr(self, self.KEY_FIELD)

    def to_dict(self):
        """JSON payload for the API (snake_case)."""
        return {f.name: getattr(self, f.name) for f in fields(self)}


@dataclass
class Product(Document):
    COLLECTION = "products"
    KEY_FIELD = "sku"

    sku: str = ""
    name: str = ""
    size: str = ""
    color: str = ""
    material: str = ""
    brand: str = ""
    base_cost_pkr: float = 0.0
    quantity: int = 0
    quantity_sold: int = 0
    date_added: str = field(default_factory=lambda: date.today().isoformat())
    id: Optional[str] = None


@dataclass
class Sale(Document):
    COLLECTION = "sales"
    KEY_FIELD = "transaction_id"

    transaction_id: str = ""
    sku: str = ""
    product_name: str = ""
    base_cost_pkr: float = 0.0
    base_cost_gbp: float = 0.0
    sale_price_gbp: float = 0.0
    shipping_gbp: float = 0.0
    platform_fee_percent: float = 0.0
    platform_fee_amount: float = 0.0
    net_profit_gbp: float = 0.0
    profit_margin_percent: float = 0.0
    sale_date: str = ""
    id: Optional[str] = None

    def apply_figures(self, figures):
        """Copy calculator output (see calculator.sale_figures) onto the sale."""
        self.base_cost_gbp = figures["base_cost_gbp"]
        self.platform_fee_amount = figures["platform_fee_amount"]
        self.net_profit_gbp = figures["net_profit_gbp"]
        self.profit_margin_percent = figures["profit_margin_percent"]


@dataclass
class LogEntry(Document):
    COLLECTION = "logs"
    KEY_FIELD = "id"

    action_type: str = ""
    module: str = ""
    entity_type: str = ""
    entity_identifier: str = ""
    details: str = ""
    timestamp: Optional[str] = None
    timestamp_pkt: Optional[str] = None
    timestamp_gmt: Optional[str] = None
    id: Optional[str] = None
