import pytest

import database

from errors import InvalidQuantity, NotFoundError, ValidationError, VersionConflictError
from schemas import ProductVariant, StockHistoryEntry


def test_set_stock_appends_resulting_quantity(ledger, simple_product):
    entry = ledger.set_stock(simple_product.id, 7, "Damaged in transit", notes="box 3")
    assert entry.quantity == 7
    assert entry.reason == "Damaged in transit"

    product = ledger.get(simple_product.id)
    assert product.stock == product.total_stock == 7
    assert [e.quantity for e in product.stock_history] == [10, 7]
    assert product.stock_history[-1].notes == "box 3"


def test_negative_stock_rejected_without_side_effects(ledger, simple_product):
    with pytest.raises(ValidationError):
        ledger.set_stock(simple_product.id, -1, "test")
    product = ledger.get(simple_product.id)
    assert product.stock == 10
    assert len(product.stock_history) == 1


@pytest.mark.parametrize("quantity", [1.5, "3", True, None])
def test_non_integer_stock_rejected(ledger, simple_product, quantity):
    with pytest.raises(InvalidQuantity):
        ledger.set_stock(simple_product.id, quantity, "typo")


def test_blank_reason_rejected(ledger, simple_product):
    with pytest.raises(ValidationError):
        ledger.set_stock(simple_product.id, 3, "   ")
    assert ledger.stock_of(simple_product.id) == 10


def test_stock_stays_non_negative_over_a_sequence(ledger, simple_product):
    for target in (3, 0, 8, -4, 2, -1, 0):
        try:
            ledger.set_stock(simple_product.id, target, "count")
        except InvalidQuantity:
            pass
        assert ledger.stock_of(simple_product.id) >= 0
    assert ledger.stock_of(simple_product.id) == 0


def test_variant_mutation_resyncs_parent(ledger, variant_product):
    ledger.set_stock(variant_product.id, 9, "Restock", variant_id="small")
    product = ledger.get(variant_product.id)
    assert product.stock == sum(v.stock for v in product.variants) == 15
    assert product.total_stock == 15
    assert [e.quantity for e in product.find_variant("small").stock_history] == [4, 9]
    assert product.stock_history == []


def test_variant_product_stock_cannot_be_set_directly(ledger, variant_product):
    with pytest.raises(ValidationError):
        ledger.set_stock(variant_product.id, 3, "oops")


def test_unknown_variant(ledger, variant_product):
    with pytest.raises(NotFoundError):
        ledger.set_stock(variant_product.id, 3, "count", variant_id="huge")


def test_unknown_product(ledger):
    with pytest.raises(NotFoundError):
        ledger.stock_of("65f000000000000000000000")


def test_adjust_stock_adds_and_removes(ledger, simple_product):
    assert ledger.adjust_stock(simple_product.id, 5, "Restock").quantity == 15
    assert ledger.adjust_stock(simple_product.id, -15, "Inventory count").quantity == 0
    with pytest.raises(InvalidQuantity):
        ledger.adjust_stock(simple_product.id, -1, "Too many")


def test_add_and_update_variant(ledger, variant_product):
    product = ledger.add_variant(variant_product.id, ProductVariant(id="xl", name="XL", price=30, stock=2))
    assert product.stock == 12
    assert product.max_price == 30
    assert product.find_variant("xl").stock_history[0].quantity == 2

    product = ledger.update_variant(variant_product.id, "small", price=10)
    assert product.min_price == product.price == 10
    with pytest.raises(ValidationError):
        ledger.update_variant(variant_product.id, "small", stock=1)


def test_duplicate_variant_id_rejected(ledger, variant_product):
    with pytest.raises(ValidationError):
        ledger.add_variant(variant_product.id, ProductVariant(id="small", name="Again", price=1))


def test_adding_a_variant_converts_simple_product(ledger, simple_product):
    product = ledger.add_variant(simple_product.id, ProductVariant(id="red", name="Red", price=14, stock=3))
    assert product.has_variants
    assert product.stock == 3
    assert product.price == 14


def test_delete_variant_with_siblings_recomputes(ledger, variant_product):
    product = ledger.delete_variant(variant_product.id, "small")
    assert product.has_variants
    assert product.stock == 6
    assert product.min_price == product.max_price == 25


def test_delete_last_variant_demotes_to_simple(ledger, variant_product):
    ledger.delete_variant(variant_product.id, "small")
    product = ledger.delete_variant(variant_product.id, "large")
    assert not product.has_variants
    assert product.variants == []
    assert product.price == 0
    assert product.stock == 0

    stored = ledger.get(variant_product.id)
    assert not stored.has_variants
    assert stored.stock == 0


def test_history_of_variant(ledger, variant_product):
    ledger.set_stock(variant_product.id, 1, "Sold at fair", variant_id="large")
    log = ledger.history(variant_product.id, "large")
    assert log.replay() == 1
    assert len(log) == 2


def test_concurrent_write_is_detected(ledger, simple_product):
    def change(product):
        # another admin writes between our read and our write
        ledger.set_stock(simple_product.id, 3, "Other admin")
        return product.model_copy(update={"stock": 9})

    with pytest.raises(VersionConflictError):
        ledger.products.mutate(simple_product.id, change)
    assert ledger.stock_of(simple_product.id) == 3


def test_version_increments_on_every_write(ledger, simple_product):
    assert ledger.get(simple_product.id).version == 0
    ledger.set_stock(simple_product.id, 4, "count")
    ledger.set_stock(simple_product.id, 5, "count")
    assert ledger.get(simple_product.id).version == 2


def write_between_read_and_replace(monkeypatch, competing_write):
    """Run ``competing_write`` once, right before the next versioned replace lands."""
    original = database.replace_document
    pending = [competing_write]

    def replace(collection_name, id_str, data, expected_version):
        if pending:
            pending.pop()()
        return original(collection_name, id_str, data, expected_version)

    monkeypatch.setattr(database, "replace_document", replace)


def test_adjust_stock_does_not_overwrite_a_concurrent_recount(ledger, simple_product, monkeypatch):
    write_between_read_and_replace(
        monkeypatch, lambda: ledger.set_stock(simple_product.id, 5, "recount"))
    with pytest.raises(VersionConflictError):
        ledger.adjust_stock(simple_product.id, -3, "Sold")
    assert ledger.stock_of(simple_product.id) == 5
    assert [e.reason for e in ledger.history(simple_product.id)] == ["Initial stock", "recount"]


def test_adjust_variant_stock_conflict(ledger, variant_product, monkeypatch):
    write_between_read_and_replace(
        monkeypatch, lambda: ledger.set_stock(variant_product.id, 1, "recount", variant_id="large"))
    with pytest.raises(VersionConflictError):
        ledger.adjust_stock(variant_product.id, -2, "Order LS-1", variant_id="large")
    assert ledger.stock_of(variant_product.id, "large") == 1


def test_adjust_checks_stock_of_the_written_document(ledger, simple_product):
    ledger.set_stock(simple_product.id, 2, "recount")
    with pytest.raises(InvalidQuantity):
        ledger.adjust_stock(simple_product.id, -3, "Sold")
    assert [e.quantity for e in ledger.history(simple_product.id)] == [10, 2]


def test_add_variant_ignores_supplied_history(ledger, variant_product):
    variant = ProductVariant(id="xl", name="XL", price=30, stock=2,
                             stock_history=[StockHistoryEntry(quantity=40, reason="made up")])
    product = ledger.add_variant(variant_product.id, variant)
    log = ledger.history(product.id, "xl")
    assert [(e.quantity, e.reason) for e in log] == [(2, "Initial stock")]
    assert log.replay() == product.find_variant("xl").stock


def test_demoted_product_history_replays_to_zero(ledger, simple_product):
    ledger.add_variant(simple_product.id, ProductVariant(id="red", name="Red", price=14, stock=3))
    ledger.delete_variant(simple_product.id, "red")
    log = ledger.history(simple_product.id)
    assert log.entries[-1].reason == "Last variant removed"
    assert log.replay() == ledger.stock_of(simple_product.id) == 0


def test_variant_sale_price_can_be_cleared(ledger, variant_product):
    product = ledger.update_variant(variant_product.id, "large", sale_price=None)
    assert product.find_variant("large").sale_price is None
    assert ledger.get(variant_product.id).find_variant("large").sale_price is None
    # other fields left as None are still ignored
    product = ledger.update_variant(variant_product.id, "large", name=None, price=22)
    assert product.find_variant("large").name == "Large"
