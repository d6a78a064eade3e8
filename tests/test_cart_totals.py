from decimal import Decimal, ROUND_HALF_UP

import pytest

from woodmarket.models.entities import CartItem, CartLine, Product
from woodmarket.services import compute_totals


def line(price, quantity, product_id=1):
    product = Product(
        id=product_id,
        name=f"Product {product_id}",
        description="",
        price=price,
        stock_quantity=100,
        supplier_id=1,
        category_id=1,
    )
    item = CartItem(id=product_id, user_id=1, product_id=product_id, quantity=quantity)
    return CartLine(item=item, product=product)


def test_two_product_cart_below_free_shipping():
    totals = compute_totals([line(2000, 2, product_id=1), line(500, 1, product_id=2)])

    assert totals.subtotal == 4500
    assert totals.tax == 360
    assert totals.shipping == 1500
    assert totals.total == 6360


def test_empty_cart_still_pays_flat_shipping():
    totals = compute_totals([])
    assert (totals.subtotal, totals.tax, totals.shipping, totals.total) == (0, 0, 1500, 1500)


@pytest.mark.parametrize("subtotal, shipping", [
    (29999, 1500),
    (30000, 0),
    (30001, 0),
])
def test_free_shipping_threshold(subtotal, shipping):
    assert compute_totals([line(subtotal, 1)]).shipping == shipping


def test_tax_rounds_half_up_to_the_cent():
    # 8% of 1256 is 100.48, of 1257 is 100.56
    assert compute_totals([line(1256, 1)]).tax == 100
    assert compute_totals([line(1257, 1)]).tax == 101


@pytest.mark.parametrize("subtotal", list(range(0, 2000, 7)) + [29999, 30000, 123457, 10 ** 9 + 3])
def test_total_is_sum_of_parts(subtotal):
    totals = compute_totals([line(subtotal, 1)])
    expected_tax = int((Decimal(subtotal) * Decimal("0.08")).quantize(Decimal("1"), rounding=ROUND_HALF_UP))

    assert totals.subtotal == subtotal
    assert totals.tax == expected_tax
    assert totals.shipping == (0 if subtotal >= 30000 else 1500)
    assert totals.total == totals.subtotal + totals.tax + totals.shipping


def test_compute_totals_is_deterministic():
    lines = [line(1999, 3, product_id=1), line(4550, 7, product_id=2)]
    assert compute_totals(lines) == compute_totals(lines)
    assert isinstance(compute_totals(lines).tax, int)
