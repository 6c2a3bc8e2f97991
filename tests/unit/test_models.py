"""
Tests for core.models module.
"""
from datetime import datetime

import pytest

from core.models import (
    Customer,
    EntityType,
    LineItem,
    Order,
    Product,
    SyncJobStatus,
    SyncResult,
    SyncStats,
    composite_id,
    parse_datetime,
    split_tags,
    to_money,
)


class TestHelpers:
    """Tests for payload normalization helpers."""

    def test_parse_datetime_utc(self):
        assert parse_datetime("2026-01-10T14:30:00Z") == datetime(2026, 1, 10, 14, 30)

    def test_parse_datetime_offset(self):
        assert parse_datetime("2026-01-10T14:30:00-05:00") == datetime(2026, 1, 10, 19, 30)

    def test_parse_datetime_default(self):
        fallback = datetime(2020, 1, 1)
        assert parse_datetime(None, fallback) == fallback
        assert parse_datetime("garbage", fallback) == fallback

    @pytest.mark.parametrize("value,expected", [
        ("12.50", 12.5),
        (3, 3.0),
        (None, 0.0),
        ("", 0.0),
        ("n/a", 0.0),
    ])
    def test_to_money(self, value, expected):
        assert to_money(value) == expected

    def test_split_tags(self):
        assert split_tags("summer, cotton ,,sale") == ["summer", "cotton", "sale"]
        assert split_tags(["a", " b "]) == ["a", "b"]
        assert split_tags(None) == []

    def test_composite_id(self):
        assert composite_id("store1", 555) == "store1_555"


class TestEnums:

    def test_entity_values(self):
        assert EntityType.values() == ["products", "customers", "orders"]

    def test_job_status_active(self):
        assert SyncJobStatus.PENDING.is_active
        assert SyncJobStatus.RUNNING.is_active
        assert not SyncJobStatus.PARTIAL.is_active


class TestSyncStats:
    """Tests for SyncStats and SyncResult."""

    def test_addition(self):
        total = SyncStats(3, 2, 1, 0) + SyncStats(5, 1, 2, 2)
        assert total.to_dict() == {"total": 8, "created": 3, "updated": 3, "errors": 2}

    def test_succeeded(self):
        assert SyncStats(total=5, created=2, updated=1, errors=2).succeeded == 3

    def test_from_dict_tolerates_missing(self):
        assert SyncStats.from_dict(None).to_dict() == SyncStats().to_dict()
        assert SyncStats.from_dict({"total": "4"}).total == 4

    def test_result_message(self):
        result = SyncResult(SyncStats(10, 6, 3, 1), label="products")
        assert result.message == "Synced 10 products (6 created, 3 updated, 1 errors)"
        assert not result.success

    def test_aborted_result_not_successful(self):
        assert not SyncResult(SyncStats(), aborted=True).success
        assert SyncResult(SyncStats()).success


class TestProduct:
    """Tests for Product.from_api."""

    def test_full_payload(self, sample_product):
        product = Product.from_api(sample_product)
        assert product.shopify_id == "1"
        assert product.title == "Product 1"
        assert product.description == "<p>Soft cotton</p>"
        assert product.sku == "SKU-1"
        assert product.price == 25.0
        assert product.compare_at_price == 30.0
        assert product.inventory_quantity == 4
        assert product.image_url == "https://cdn.example.com/1.jpg"
        assert product.tags == ["summer", "cotton"]
        assert product.created_at == datetime(2026, 1, 5, 10, 0)

    def test_minimal_payload_gets_defaults(self):
        """Missing fields become the defaults the schema expects."""
        product = Product.from_api({"id": 42})
        assert product.title == ""
        assert product.handle == "product-42"
        assert product.status == "active"
        assert product.price == 0.0
        assert product.compare_at_price is None
        assert product.variants == [{"price": "0"}]
        assert product.image_url is None
        assert product.tags == []
        assert isinstance(product.created_at, datetime)

    def test_inventory_summed_over_variants(self):
        product = Product.from_api({
            "id": 1,
            "variants": [{"price": "5", "inventory_quantity": 2}, {"price": "5", "inventory_quantity": 3}],
        })
        assert product.inventory_quantity == 5

    def test_single_image_fallback(self):
        product = Product.from_api({"id": 1, "image": {"src": "https://cdn.example.com/a.png"}})
        assert product.image_url == "https://cdn.example.com/a.png"


class TestCustomer:
    """Tests for Customer.from_api."""

    def test_email_lowercased(self, sample_customer):
        customer = Customer.from_api(sample_customer)
        assert customer.shopify_id == "555"
        assert customer.email == "customer555@example.com"
        assert customer.total_spend == 120.5
        assert customer.orders_count == 2
        assert customer.tags == ["vip"]

    def test_defaults(self):
        customer = Customer.from_api({"id": 9})
        assert customer.email == ""
        assert customer.state == "disabled"
        assert customer.currency == "USD"
        assert customer.total_spend == 0.0
        assert customer.full_name == "Unknown"

    def test_full_name(self):
        customer = Customer.from_api({"id": 9, "first_name": "Jane", "last_name": "Doe"})
        assert customer.full_name == "Jane Doe"


class TestLineItem:

    def test_ids_stringified(self):
        item = LineItem.from_api({"id": 1, "product_id": 22, "variant_id": 33, "quantity": 2, "price": "9.99"})
        assert (item.shopify_id, item.product_id, item.variant_id) == ("1", "22", "33")
        assert item.quantity == 2
        assert item.price == 9.99

    def test_product_id_alias(self):
        assert LineItem.from_api({"productId": 7}).product_id == "7"

    def test_missing_product(self):
        item = LineItem.from_api({"title": "Gift card"})
        assert item.product_id is None
        assert item.quantity == 1


class TestOrder:
    """Tests for Order.from_api."""

    def test_embedded_customer(self, sample_order):
        order = Order.from_api(sample_order)
        assert order.shopify_id == "9001"
        assert order.order_number == "10001"
        assert order.customer is not None
        assert order.customer.shopify_id == "555"
        assert order.total_price == 50.0
        assert order.total_discounts == 2.0
        assert len(order.line_items) == 1
        assert order.line_items[0].product_id == "1"

    def test_guest_order(self, payloads):
        order = Order.from_api(payloads.order(5, email="Guest@Example.com"))
        assert order.customer is None
        assert order.customer_email == "guest@example.com"

    def test_customer_without_id_ignored(self, payloads):
        order = Order.from_api(payloads.order(5, customer={"email": "x@example.com"}))
        assert order.customer is None

    def test_defaults(self):
        order = Order.from_api({"id": 77})
        assert order.order_number == "77"
        assert order.financial_status == "pending"
        assert order.currency == "USD"
        assert order.line_items == []
        assert order.customer_locale == "en"
