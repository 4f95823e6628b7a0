"""
repositories.py — Stock, revenue and activity-log collections.

Each repository keeps an in-memory copy of its collection, refreshed after
every write. Callers read it with snapshot() or the search/filter helpers,
and can subscribe() to be told when it changes.
"""

import logging
import threading
from collections import Counter
from datetime import date, timedelta

from elitefinds.calculator import convert_pkr_to_gbp
from elitefinds.clocks import today_pkt
from elitefinds.models import ADDED, DELETED, EDITED, LogEntry, Product, Sale

logger = logging.getLogger(__name__)


def parse_entry_date(value):
    """Date from the first 10 characters of a stored date string, or None."""
    if not value:
        return None
    try:
        return date.fromisoformat(value[:10])
    except (TypeError, ValueError):
        return None


class BaseRepository:
    ENTITY = None
    SEARCH_FIELDS = ()
    DATE_FIELD = ""
    FILTER_FIELD = ""

    def __init__(self, session):
        session.require_connected()
        self.session = session
        session.map_entity(self.ENTITY)
        self._items = []
        self._listeners = []
        self._lock = threading.RLock()
        self.reload()

    @property
    def name(self):
        return self.ENTITY.COLLECTION

    @property
    def key_field(self):
        if self.ENTITY.KEY_FIELD == "id":
            return "_id"
        return self.ENTITY._key(self.ENTITY.KEY_FIELD)

    def _store(self):
        self.session.require_connected()
        return self.session.store

    # -- cache --------------------------------------------------------------

    def snapshot(self):
        with self._lock:
            return list(self._items)

    def __len__(self):
        with self._lock:
            return len(self._items)

    def subscribe(self, callback):
        with self._lock:
            if callback not in self._listeners:
                self._listeners.append(callback)

    def unsubscribe(self, callback):
        with self._lock:
            if callback in self._listeners:
                self._listeners.remove(callback)

    def _sorted(self, items):
        return items

    def _subset(self, items):
        return self.snapshot() if items is None else items

    def _replace(self, items):
        with self._lock:
            self._items = items
            listeners = list(self._listeners)
        current = self.snapshot()
        for callback in listeners:
            try:
                callback(current)
            except Exception:
                logger.exception("Listener failed for %s", self.name)

    def reload(self):
        store = self._store()
        try:
            docs = store.find(self.name)
        except Exception:
            logger.exception("Error loading %s", self.name)
            return
        self._replace(self._sorted([self.ENTITY.from_document(d) for d in docs]))

    # -- CRUD ---------------------------------------------------------------

    def get(self, key):
        store = self._store()
        try:
            doc = store.first(self.name, {self.key_field: key})
        except Exception:
            logger.exception("Error fetching %s %s", self.name, key)
            return None
        return self.ENTITY.from_document(doc) if doc else None

    def add(self, entity):
        """Insert a new entity; False if its key is taken or the write fails."""
        store = self._store()
        try:
            if store.first(self.name, {self.key_field: entity.key}) is not None:
                return False
            entity.id = store.save(self.name, entity.to_document())
        except Exception:
            logger.exception("Error adding to %s", self.name)
            return False
        self.reload()
        return True

    def update(self, entity):
        """Upsert by key."""
        store = self._store()
        try:
            if not entity.id:
                existing = store.first(self.name, {self.key_field: entity.key})
                if existing is not None:
                    entity.id = existing["_id"]
            entity.id = store.save(self.name, entity.to_document())
        except Exception:
            logger.exception("Error updating %s %s", self.name, entity.key)
            return False
        self.reload()
        return True

    def delete(self, key):
        store = self._store()
        try:
            removed = store.delete(self.name, {self.key_field: key})
        except Exception:
            logger.exception("Error deleting %s %s", self.name, key)
            return False
        if not removed:
            return False
        self.reload()
        return True

    # -- queries over the cache --------------------------------------------

    def search(self, text):
        """Case-insensitive substring match over SEARCH_FIELDS."""
        if text is None or not text.strip():
            return self.snapshot()
        term = text.strip().lower()
        results = []
        for item in self.snapshot():
            for attr in self.SEARCH_FIELDS:
                value = getattr(item, attr)
                if value is not None and term in str(value).lower():
                    results.append(item)
                    break
        return results

    def filter_by_date_range(self, start=None, end=None):
        """Inclusive on both ends; either bound may be None."""
        if start is None and end is None:
            return self.snapshot()
        results = []
        for item in self.snapshot():
            entry_date = parse_entry_date(getattr(item, self.DATE_FIELD))
            if entry_date is None:
                continue
            if start is not None and entry_date < start:
                continue
            if end is not None and entry_date > end:
                continue
            results.append(item)
        return results

    def filter_by_field(self, value):
        return self._filter_exact(self.FILTER_FIELD, value)

    def _filter_exact(self, attr, value):
        if value is None or not value.strip():
            return self.snapshot()
        wanted = value.strip()
        return [item for item in self.snapshot() if getattr(item, attr) == wanted]


class ProductRepository(BaseRepository):
    ENTITY = Product
    SEARCH_FIELDS = ("sku", "name", "brand")
    DATE_FIELD = "date_added"
    FILTER_FIELD = "brand"

    def total_value_pkr(self, products=None):
        return sum(p.base_cost_pkr for p in self._subset(products))

    def total_value_gbp(self, rate, products=None):
        return convert_pkr_to_gbp(self.total_value_pkr(products), rate)

    def total_quantity(self, products=None):
        return sum(p.quantity for p in self._subset(products))

    def skus(self):
        return [p.sku for p in self.snapshot() if p.sku]


class SaleRepository(BaseRepository):
    ENTITY = Sale
    SEARCH_FIELDS = ("sku", "product_name", "transaction_id")
    DATE_FIELD = "sale_date"
    FILTER_FIELD = "sku"

    def filter_by_product(self, sku):
        return self.filter_by_field(sku)

    def total_revenue(self, sales=None):
        return sum(s.sale_price_gbp for s in self._subset(sales))

    def total_profit(self, sales=None):
        return sum(s.net_profit_gbp for s in self._subset(sales))

    def total_fees(self, sales=None):
        return sum(s.platform_fee_amount for s in self._subset(sales))

    def average_margin(self, sales=None):
        sales = self._subset(sales)
        if not sales:
            return 0.0
        return sum(s.profit_margin_percent for s in sales) / len(sales)

    def next_transaction_id(self):
        """Highest numeric transaction ID + 1 (1 for an empty ledger)."""
        highest = 0
        for sale in self.snapshot():
            try:
                highest = max(highest, int(sale.transaction_id))
            except (TypeError, ValueError):
                continue
        return highest + 1


class LogRepository(BaseRepository):
    ENTITY = LogEntry
    SEARCH_FIELDS = ("action_type", "module", "entity_type", "details", "entity_identifier")
    DATE_FIELD = "timestamp_pkt"
    FILTER_FIELD = "module"

    def _sorted(self, items):
        # Most recent first, entries without a timestamp last
        stamped = sorted((e for e in items if e.timestamp), key=lambda e: e.timestamp, reverse=True)
        return stamped + [e for e in items if not e.timestamp]

    def add(self, entry):
        """Append an entry; never raises, returns False on any failure."""
        if not self.session.is_connected():
            return False
        try:
            entry.id = self.session.store.save(self.name, entry.to_document())
        except Exception as e:
            logger.error("Error adding log: %s", e)
            return False
        with self._lock:
            items = [entry] + self._items
        self._replace(items)
        return True

    def filter_by_module(self, module):
        return self._filter_exact("module", module)

    def filter_by_action_type(self, action_type):
        return self._filter_exact("action_type", action_type)

    def delete_older_than(self, days):
        """Delete entries dated before today minus `days` (Pakistan date); returns the count."""
        store = self._store()
        try:
            cutoff = (today_pkt() - timedelta(days=days)).isoformat()
            stale = [
                e.id for e in self.snapshot()
                if e.timestamp_pkt and e.id and e.timestamp_pkt[:10] < cutoff
            ]
            removed = store.delete_ids(self.name, stale)
        except Exception:
            logger.exception("Error deleting old logs")
            return 0
        self.reload()
        return removed

    def total_logs(self):
        return len(self)

    def actions_today(self):
        today = today_pkt().isoformat()
        return sum(1 for e in self.snapshot() if e.timestamp_pkt and e.timestamp_pkt.startswith(today))

    def most_common_action(self):
        entries = self.snapshot()
        if not entries:
            return "-"
        counts = Counter(e.action_type for e in entries)
        added, edited, deleted = counts[ADDED], counts[EDITED], counts[DELETED]
        if added >= edited and added >= deleted:
            return ADDED
        if edited >= deleted:
            return EDITED
        return DELETED

