"""
Tests for the product, sale and log repositories and their in-memory caches.
"""
from datetime import date, timedelta

import pytest

from elitefinds.errors import NoDatabaseConnection
from elitefinds.models import ADDED, DELETED, EDITED, REVENUE, STOCK, LogEntry, Product, Sale
from elitefinds.repositories import LogRepository, ProductRepository, SaleRepository
from elitefinds.clocks import today_pkt


def product(sku, **kwargs):
    kwargs.setdefault("name", f"Item {sku}")
    return Product(sku=sku, **kwargs)


def sale(transaction_id, **kwargs):
    return Sale(transaction_id=transaction_id, **kwargs)


def log_entry(action=ADDED, module=STOCK, day=None, timestamp=None, **kwargs):
    day = day or today_pkt()
    return LogEntry(
        action_type=action,
        module=module,
        entity_type=kwargs.pop("entity_type", "Product"),
        entity_identifier=kwargs.pop("entity_identifier", "SKU1"),
        details=kwargs.pop("details", "Product SKU1"),
        timestamp=timestamp if timestamp is not None else f"{day.isoformat()}T07:00:00Z",
        timestamp_pkt=kwargs.pop("timestamp_pkt", f"{day.isoformat()} 12:00:00"),
        timestamp_gmt=f"{day.isoformat()} 07:00:00",
    )


@pytest.fixture
def products(db_session):
    return ProductRepository(db_session)


@pytest.fixture
def sales(db_session):
    return SaleRepository(db_session)


@pytest.fixture
def logs(db_session):
    return LogRepository(db_session)


def test_requires_connection(offline_session):
    for repository_cls in (ProductRepository, SaleRepository, LogRepository):
        with pytest.raises(NoDatabaseConnection):
            repository_cls(offline_session)


class TestProductRepository:
    def test_add_fresh_key_is_retrievable(self, products):
        assert products.add(product("SKU1", brand="Khaadi"))
        assert [p.sku for p in products.snapshot()] == ["SKU1"]

        stored = products.get("SKU1")
        assert stored.brand == "Khaadi"
        assert stored.id

    def test_duplicate_key_is_rejected_without_touching_cache(self, products):
        products.add(product("SKU1", name="Original"))
        before = products.snapshot()

        assert not products.add(product("SKU1", name="Impostor"))
        assert products.snapshot() == before
        assert products.get("SKU1").name == "Original"

    def test_initial_load_reads_existing_documents(self, products, db_session):
        products.add(product("SKU1"))
        products.add(product("SKU2"))
        fresh = ProductRepository(db_session)
        assert [p.sku for p in fresh.snapshot()] == ["SKU1", "SKU2"]

    def test_update_is_an_upsert(self, products):
        products.add(product("SKU1", quantity=1))
        item = products.get("SKU1")
        item.quantity = 9
        assert products.update(item)
        assert products.get("SKU1").quantity == 9
        assert len(products) == 1

        assert products.update(product("SKU2"))
        assert [p.sku for p in products.snapshot()] == ["SKU1", "SKU2"]

    def test_update_without_id_targets_existing_key(self, products):
        products.add(product("SKU1", quantity=1))
        assert products.update(product("SKU1", quantity=4))
        assert len(products) == 1
        assert products.snapshot()[0].quantity == 4

    def test_delete_missing_key_fails_and_keeps_cache(self, products):
        products.add(product("SKU1"))
        before = products.snapshot()
        assert not products.delete("NOPE")
        assert products.snapshot() == before

    def test_delete_existing_removes_exactly_one(self, products):
        for sku in ("SKU1", "SKU2", "SKU3"):
            products.add(product(sku))
        assert products.delete("SKU2")
        assert [p.sku for p in products.snapshot()] == ["SKU1", "SKU3"]

    def test_search_is_case_insensitive_over_sku_name_brand(self, products):
        products.add(product("AB-100", name="Lawn Suit", brand="Gul Ahmed"))
        products.add(product("CD-200", name="Silk Scarf", brand="Sapphire"))
        products.add(product("EF-300", name="Kurta", brand="Khaadi", color="silk white"))

        assert [p.sku for p in products.search("SILK")] == ["CD-200"]
        assert [p.sku for p in products.search("gul")] == ["AB-100"]
        assert [p.sku for p in products.search("ef-3")] == ["EF-300"]
        assert len(products.search("   ")) == 3
        assert len(products.search(None)) == 3

    def test_date_range_filter(self, products):
        products.add(product("OLD", date_added="2024-01-01"))
        products.add(product("MID", date_added="2024-02-15"))
        products.add(product("NEW", date_added="2024-03-31"))
        products.add(product("BAD", date_added="someday"))

        assert [p.sku for p in products.filter_by_date_range(None, None)] == ["OLD", "MID", "NEW", "BAD"]
        assert [p.sku for p in products.filter_by_date_range(date(2024, 2, 15), date(2024, 3, 31))] == ["MID", "NEW"]
        assert [p.sku for p in products.filter_by_date_range(None, date(2024, 1, 1))] == ["OLD"]
        assert [p.sku for p in products.filter_by_date_range(date(2024, 3, 1), None)] == ["NEW"]

    def test_value_totals(self, products):
        products.add(product("A", base_cost_pkr=3500, quantity=2))
        products.add(product("B", base_cost_pkr=1750, quantity=3))

        assert products.total_value_pkr() == pytest.approx(5250)
        assert products.total_value_gbp(350.0) == pytest.approx(15.0)
        assert products.total_quantity() == 5
        assert products.total_value_pkr(products.search("A")) == pytest.approx(3500)
        assert products.skus() == ["A", "B"]

    def test_subscribers_receive_fresh_snapshot(self, products):
        seen = []
        products.subscribe(seen.append)
        products.add(product("SKU1"))
        products.unsubscribe(seen.append)
        products.add(product("SKU2"))

        assert [[p.sku for p in snap] for snap in seen] == [["SKU1"]]

    def test_operations_after_close_raise_no_connection(self, products, db_session):
        db_session.close()
        with pytest.raises(NoDatabaseConnection):
            products.add(product("SKU1"))
        with pytest.raises(NoDatabaseConnection):
            products.delete("SKU1")


class TestSaleRepository:
    def test_aggregates(self, sales):
        sales.add(sale("1", sale_price_gbp=20.0, net_profit_gbp=5.0, platform_fee_amount=3.0, profit_margin_percent=25.0))
        sales.add(sale("2", sale_price_gbp=40.0, net_profit_gbp=10.0, platform_fee_amount=8.0, profit_margin_percent=35.0))

        assert sales.total_revenue() == pytest.approx(60.0)
        assert sales.total_profit() == pytest.approx(15.0)
        assert sales.total_fees() == pytest.approx(11.0)
        assert sales.average_margin() == pytest.approx(30.0)
        assert sales.average_margin([]) == 0.0

    def test_duplicate_transaction_id(self, sales):
        assert sales.add(sale("7"))
        assert not sales.add(sale("7"))
        assert len(sales) == 1

    def test_next_transaction_id(self, sales):
        assert sales.next_transaction_id() == 1
        for transaction_id in ("000004", "12", "manual-9"):
            sales.add(sale(transaction_id))
        assert sales.next_transaction_id() == 13

    def test_search_and_sku_filter(self, sales):
        sales.add(sale("1", sku="SKU1", product_name="Lawn Suit"))
        sales.add(sale("2", sku="SKU10", product_name="Silk Scarf"))

        assert [s.transaction_id for s in sales.search("lawn")] == ["1"]
        assert [s.transaction_id for s in sales.search("sku1")] == ["1", "2"]
        assert [s.transaction_id for s in sales.filter_by_product("SKU1")] == ["1"]
        assert len(sales.filter_by_product("")) == 2

    def test_sale_date_filter_skips_missing_dates(self, sales):
        sales.add(sale("1", sale_date="2024-05-01"))
        sales.add(sale("2", sale_date=""))
        assert [s.transaction_id for s in sales.filter_by_date_range(date(2024, 1, 1), None)] == ["1"]


class TestLogRepository:
    def test_sorted_most_recent_first_with_missing_timestamps_last(self, logs, db_session):
        logs.add(log_entry(timestamp="2024-01-01T00:00:00Z", details="first"))
        logs.add(log_entry(timestamp="", details="untimed"))
        logs.add(log_entry(timestamp="2024-03-01T00:00:00Z", details="latest"))

        reloaded = LogRepository(db_session)
        assert [e.details for e in reloaded.snapshot()] == ["latest", "first", "untimed"]

    def test_add_prepends_without_reload(self, logs):
        logs.add(log_entry(details="one"))
        logs.add(log_entry(details="two"))
        assert [e.details for e in logs.snapshot()] == ["two", "one"]

    def test_add_never_raises_when_disconnected(self, logs, db_session):
        db_session.close()
        assert logs.add(log_entry()) is False

    def test_delete_older_than(self, logs):
        days = 7
        today = today_pkt()
        logs.add(log_entry(day=today, details="today"))
        logs.add(log_entry(day=today - timedelta(days=days + 1), details="stale"))
        logs.add(log_entry(day=today - timedelta(days=days + 30), details="ancient"))

        assert logs.delete_older_than(days) == 2
        assert [e.details for e in logs.snapshot()] == ["today"]
        assert logs.delete_older_than(days) == 0

    def test_delete_older_than_out_of_range_deletes_nothing(self, logs):
        logs.add(log_entry(details="kept"))
        assert logs.delete_older_than(1_000_000) == 0
        assert [e.details for e in logs.snapshot()] == ["kept"]

    def test_filters(self, logs):
        logs.add(log_entry(action=ADDED, module=STOCK))
        logs.add(log_entry(action=DELETED, module=REVENUE, entity_type="Sale"))

        assert [e.module for e in logs.filter_by_module("Revenue")] == [REVENUE]
        assert [e.action_type for e in logs.filter_by_action_type("Added")] == [ADDED]
        assert len(logs.filter_by_module(" ")) == 2
        assert [e.entity_type for e in logs.search("sale")] == ["Sale"]

    def test_date_filter_uses_pakistan_date(self, logs):
        logs.add(log_entry(day=date(2024, 6, 1)))
        logs.add(log_entry(day=date(2024, 6, 3), timestamp_pkt="garbage"))
        assert len(logs.filter_by_date_range(date(2024, 6, 1), date(2024, 6, 30))) == 1

    def test_stats(self, logs):
        assert logs.most_common_action() == "-"
        logs.add(log_entry(action=EDITED))
        logs.add(log_entry(action=DELETED))
        assert logs.most_common_action() == EDITED

        logs.add(log_entry(action=ADDED))
        assert logs.most_common_action() == ADDED

        logs.add(log_entry(action=DELETED, day=today_pkt() - timedelta(days=3)))
        assert logs.most_common_action() == DELETED
        assert logs.total_logs() == 4
        assert logs.actions_today() == 3
