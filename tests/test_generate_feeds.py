import csv

from data_generation.generate_feeds import generate_feeds


def _read(path):
    with open(path, newline="", encoding="utf-8") as fh:
        return list(csv.DictReader(fh))


def test_feeds_have_expected_shape(tmp_path):
    paths = generate_feeds(str(tmp_path), products=3, customers=4, sales=10, seed=1)

    products, customers, sales = (_read(paths[k]) for k in ("product", "customer", "sales"))
    assert [p["product_id"] for p in products] == ["P0001", "P0002", "P0003"]
    assert len(customers) == 4
    assert len(sales) == 10
    assert set(sales[0]) == {"product_id", "customer_id", "quantity", "amount"}
    known = {c["customer_id"] for c in customers}
    assert all(s["customer_id"] in known for s in sales)


def test_late_arriving_sales_reference_unknown_customers(tmp_path):
    paths = generate_feeds(str(tmp_path), products=2, customers=2, sales=50, late_arriving=1.0, seed=1)

    known = {c["customer_id"] for c in _read(paths["customer"])}
    assert not any(s["customer_id"] in known for s in _read(paths["sales"]))
