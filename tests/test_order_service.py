import threading
from contextlib import nullcontext
from dataclasses import replace

import pytest

from woodmarket.app import create_app
from woodmarket.config.settings import TestConfig
from woodmarket.models.database import db
from woodmarket.services import CartService, OrderService
from woodmarket.services.errors import (
    EmptyCart,
    Forbidden,
    InsufficientStock,
    InvalidInput,
    NotFound,
)
from woodmarket.storage import MemoryStorage


def stale_stock(monkeypatch, storage, product_id, stock):
    """Make reads of one product report ``stock`` regardless of the stored value."""
    real_get_product = storage.get_product

    def get_product(pid):
        product = real_get_product(pid)
        if product is not None and pid == product_id:
            return replace(product, stock_quantity=stock)
        return product

    monkeypatch.setattr(storage, "get_product", get_product)


class TestCreateOrder:

    def test_converts_cart_into_priced_order(self, orders, cart, storage, customer, make_product):
        a = make_product(price=2000, stock=5)
        b = make_product(price=500, stock=2, name="Birch ply 6mm")
        cart.add_item(customer.id, a.id, 2)
        cart.add_item(customer.id, b.id, 1)

        detail = orders.create_order(customer.id)

        assert detail.order.status == "pending"
        assert detail.order.user_id == customer.id
        assert detail.order.total_amount == 4500
        assert sum(line.item.unit_price * line.item.quantity for line in detail.items) == detail.order.total_amount
        assert sorted((line.item.product_id, line.item.quantity, line.item.unit_price) for line in detail.items) == [
            (a.id, 2, 2000),
            (b.id, 1, 500),
        ]
        assert storage.get_product(a.id).stock_quantity == 3
        assert storage.get_product(b.id).stock_quantity == 1
        assert storage.get_cart_items(customer.id) == []

    def test_unit_price_is_a_snapshot(self, orders, cart, storage, customer, make_product):
        product = make_product(price=2000)
        cart.add_item(customer.id, product.id, 1)
        detail = orders.create_order(customer.id)

        storage.update_product(product.id, price=9900)

        stored = orders.get_order(customer.id, detail.order.id)
        assert stored.items[0].item.unit_price == 2000
        assert stored.order.total_amount == 2000

    def test_empty_cart(self, orders, customer):
        with pytest.raises(EmptyCart):
            orders.create_order(customer.id)

    def test_insufficient_stock_aborts_before_any_change(self, orders, cart, storage, customer, make_product):
        a = make_product(stock=5)
        b = make_product(stock=5, name="Structural ply")
        cart.add_item(customer.id, a.id, 2)
        cart.add_item(customer.id, b.id, 4)
        storage.update_product(b.id, stock_quantity=3)

        with pytest.raises(InsufficientStock) as excinfo:
            orders.create_order(customer.id)

        assert excinfo.value.product_id == b.id
        assert excinfo.value.available == 3
        assert storage.get_product(a.id).stock_quantity == 5
        assert storage.list_orders(customer.id) == []
        assert len(storage.get_cart_items(customer.id)) == 2

    def test_stock_dropped_to_zero_after_adding(self, orders, cart, storage, customer, make_product):
        product = make_product()
        cart.add_item(customer.id, product.id, 1)
        storage.update_product(product.id, stock_quantity=0)

        with pytest.raises(InsufficientStock):
            orders.create_order(customer.id)

    def test_duplicate_submission_decrements_once(self, orders, cart, storage, customer, make_product):
        product = make_product(stock=5)
        cart.add_item(customer.id, product.id, 2)

        orders.create_order(customer.id)
        with pytest.raises(EmptyCart):
            orders.create_order(customer.id)

        assert storage.get_product(product.id).stock_quantity == 3
        assert len(storage.list_orders(customer.id)) == 1

    def test_loser_of_last_unit_gets_insufficient_stock(self, orders, cart, storage, customer, make_user, make_product):
        rival = make_user()
        product = make_product(stock=1)
        cart.add_item(customer.id, product.id, 1)
        cart.add_item(rival.id, product.id, 1)

        orders.create_order(customer.id)
        with pytest.raises(InsufficientStock) as excinfo:
            orders.create_order(rival.id)

        assert excinfo.value.available == 0
        assert storage.get_product(product.id).stock_quantity == 0
        assert storage.list_orders(rival.id) == []

    def test_stale_validation_is_caught_by_conditional_decrement(
        self, monkeypatch, orders, cart, storage, customer, make_product
    ):
        plenty = make_product(stock=10)
        scarce = make_product(stock=1, name="Decorative walnut ply")
        cart.add_item(customer.id, plenty.id, 3)
        cart.add_item(customer.id, scarce.id, 1)
        # Another checkout takes the last unit after our validation read it.
        storage.decrement_stock(scarce.id, 1)
        stale_stock(monkeypatch, storage, scarce.id, 1)

        with pytest.raises(InsufficientStock) as excinfo:
            orders.create_order(customer.id)
        monkeypatch.undo()

        assert excinfo.value.product_id == scarce.id
        assert storage.get_product(plenty.id).stock_quantity == 10
        assert storage.get_product(scarce.id).stock_quantity == 0
        assert storage.list_orders(customer.id) == []
        assert len(storage.get_cart_items(customer.id)) == 2


def checkout_concurrently(orders, user_ids, app=None):
    """Start one checkout per user at the same moment; collect orders and errors."""
    barrier = threading.Barrier(len(user_ids))
    results = []

    def checkout(user_id):
        barrier.wait()
        with app.app_context() if app else nullcontext():
            try:
                results.append(orders.create_order(user_id))
            except Exception as e:
                results.append(e)

    threads = [threading.Thread(target=checkout, args=(user_id,)) for user_id in user_ids]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    return results


def assert_single_winner(results):
    successes = [r for r in results if not isinstance(r, Exception)]
    failures = [r for r in results if isinstance(r, Exception)]
    assert len(successes) == 1, results
    assert len(failures) == 1, results
    assert isinstance(failures[0], InsufficientStock), failures[0]
    assert failures[0].available == 0


def test_concurrent_orders_for_last_unit():
    storage = MemoryStorage()
    storage.seed_categories()
    supplier = storage.create_user("mill", "mill@example.com", "x", "Saw Mill", role="supplier")
    product = storage.create_product(
        name="Marine ply", description="", price=5000, stock_quantity=1,
        supplier_id=supplier.id, category_id=1,
    )
    buyers = [
        storage.create_user(f"buyer{n}", f"buyer{n}@example.com", "x", f"Buyer {n}")
        for n in range(2)
    ]
    cart = CartService(storage)
    for buyer in buyers:
        cart.add_item(buyer.id, product.id, 1)

    results = checkout_concurrently(OrderService(storage), [b.id for b in buyers])

    assert_single_winner(results)
    assert storage.get_product(product.id).stock_quantity == 0


def test_concurrent_orders_for_last_unit_on_sqlite_file(tmp_path):
    class FileConfig(TestConfig):
        SQLALCHEMY_DATABASE_URI = f"sqlite:///{tmp_path / 'woodmarket.db'}"
        SQLALCHEMY_ENGINE_OPTIONS = {"connect_args": {"check_same_thread": False, "timeout": 30}}

    app = create_app(FileConfig)
    services = app.extensions["woodmarket"]
    storage = services.storage
    with app.app_context():
        supplier = storage.create_user("mill", "mill@example.com", "x", "Saw Mill", role="supplier")
        product = storage.create_product(
            name="Marine ply", description="", price=5000, stock_quantity=1,
            supplier_id=supplier.id, category_id=1,
        )
        buyers = [
            storage.create_user(f"buyer{n}", f"buyer{n}@example.com", "x", f"Buyer {n}")
            for n in range(2)
        ]
        for buyer in buyers:
            services.cart.add_item(buyer.id, product.id, 1)

    try:
        results = checkout_concurrently(services.orders, [b.id for b in buyers], app=app)

        assert_single_winner(results)
        with app.app_context():
            assert storage.get_product(product.id).stock_quantity == 0
            assert sum(len(storage.list_orders(b.id)) for b in buyers) == 1
    finally:
        with app.app_context():
            db.drop_all()
            db.engine.dispose()



class TestOrderQueries:

    def test_list_orders_newest_first(self, orders, cart, customer, make_product):
        product = make_product(stock=10)
        cart.add_item(customer.id, product.id, 1)
        first = orders.create_order(customer.id)
        cart.add_item(customer.id, product.id, 2)
        second = orders.create_order(customer.id)

        listed = orders.list_orders(customer.id)

        assert [d.order.id for d in listed] == [second.order.id, first.order.id]
        assert [len(d.items) for d in listed] == [1, 1]

    def test_items_carry_current_product(self, orders, cart, storage, customer, make_product):
        product = make_product(stock=4)
        cart.add_item(customer.id, product.id, 1)

        created = orders.create_order(customer.id).to_dict()

        assert created["items"][0]["product"]["id"] == product.id
        assert created["items"][0]["product"]["stockQuantity"] == 3
        listed = orders.list_orders(customer.id)[0].to_dict()
        assert listed["items"][0]["product"]["name"] == product.name

    def test_deleted_product_leaves_item_without_product(self, orders, cart, storage, customer, make_product):
        product = make_product()
        cart.add_item(customer.id, product.id, 2)
        detail = orders.create_order(customer.id)

        storage.delete_product(product.id)

        stored = orders.get_order(customer.id, detail.order.id)
        assert stored.items[0].product is None
        item = stored.to_dict()["items"][0]
        assert item["product"] is None
        assert item["productId"] == product.id
        assert item["unitPrice"] == 1000

    def test_get_order_of_another_user_is_forbidden(self, orders, cart, customer, make_user, make_product):
        other = make_user()
        cart.add_item(customer.id, make_product().id, 1)
        detail = orders.create_order(customer.id)

        with pytest.raises(Forbidden):
            orders.get_order(other.id, detail.order.id)
        with pytest.raises(NotFound):
            orders.get_order(customer.id, 9999)


class TestUpdateStatus:

    def test_supplier_of_ordered_product_may_set_any_status(self, orders, cart, customer, supplier, make_product):
        cart.add_item(customer.id, make_product().id, 1)
        detail = orders.create_order(customer.id)

        assert orders.update_status(supplier.id, detail.order.id, "shipped").status == "shipped"
        assert orders.update_status(supplier.id, detail.order.id, "pending").status == "pending"

    def test_other_supplier_is_forbidden(self, orders, cart, customer, make_user, make_product):
        cart.add_item(customer.id, make_product().id, 1)
        detail = orders.create_order(customer.id)
        stranger = make_user(role="supplier")

        with pytest.raises(Forbidden):
            orders.update_status(stranger.id, detail.order.id, "paid")

    def test_unknown_status(self, orders, supplier):
        with pytest.raises(InvalidInput):
            orders.update_status(supplier.id, 1, "lost")
