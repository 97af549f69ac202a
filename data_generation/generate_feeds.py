#!/usr/bin/env python3
# generate_feeds.py

"""
Write sample CSV feeds for config/example_pipeline.json:

  products.csv   product_id, name, price, category
  customers.csv  customer_id, name, email, city
  sales.csv      product_id, customer_id, quantity, amount

Usage:
  python -m data_generation.generate_feeds config/feeds            # first batch
  python -m data_generation.generate_feeds config/feeds --drift    # next batch

With --drift a share of the members changes between batches (new prices and
emails → Type 1, new categories and cities → Type 2), and a few sales point
at customers that do not exist yet (late-arriving dimension members).
"""

import argparse
import csv
import os
import random
from typing import Dict, List, Optional

from faker import Faker
from tqdm import trange

CATEGORIES = ["Technology", "Business", "Art", "Science", "Health", "Finance", "Language"]

PRODUCT_COLUMNS  = ["product_id", "name", "price", "category"]
CUSTOMER_COLUMNS = ["customer_id", "name", "email", "city"]
SALES_COLUMNS    = ["product_id", "customer_id", "quantity", "amount"]


def _write(path: str, columns: List[str], rows: List[Dict]) -> None:
    with open(path, "w", newline="", encoding="utf-8") as fh:
        writer = csv.DictWriter(fh, fieldnames=columns)
        writer.writeheader()
        writer.writerows(rows)


def generate_feeds(
    out_dir: str,
    products: int = 50,
    customers: int = 200,
    sales: int = 1000,
    drift: float = 0.0,
    late_arriving: float = 0.0,
    seed: Optional[int] = None,
) -> Dict[str, str]:
    """
    Generate the three feeds into `out_dir`; returns feed name → file path.
    The same seed always yields the same base members, so a drifted run
    changes a predictable subset of the previous one.
    """
    rng = random.Random(seed)
    fake = Faker()
    Faker.seed(seed)
    os.makedirs(out_dir, exist_ok=True)

    # ─── 1) Products ────────────────────────────────────────────────────────────
    product_rows = []
    for i in range(1, products + 1):
        # Log-normal prices: many cheap items, a long expensive tail.
        price = round(min(rng.lognormvariate(3.5, 0.8), 5000.0), 2)
        product_rows.append({
            "product_id": f"P{i:04d}",
            "name":       fake.catch_phrase(),
            "price":      price,
            "category":   rng.choice(CATEGORIES),
        })

    # ─── 2) Customers ───────────────────────────────────────────────────────────
    customer_rows = []
    for i in range(1, customers + 1):
        customer_rows.append({
            "customer_id": f"C{i:05d}",
            "name":        fake.name(),
            "email":       fake.unique.email(),
            "city":        fake.city(),
        })

    # ─── 3) Drift between batches ───────────────────────────────────────────────
    if drift:
        for row in product_rows:
            if rng.random() < drift:
                row["price"] = round(row["price"] * rng.uniform(0.8, 1.2), 2)
            if rng.random() < drift / 2:
                row["category"] = rng.choice([c for c in CATEGORIES if c != row["category"]])
        for row in customer_rows:
            if rng.random() < drift:
                row["email"] = fake.unique.email()
            if rng.random() < drift / 2:
                row["city"] = fake.city()

    # ─── 4) Sales ───────────────────────────────────────────────────────────────
    sales_rows = []
    for _ in trange(sales, desc="sales", disable=sales < 10_000):
        product = rng.choice(product_rows)
        if late_arriving and rng.random() < late_arriving:
            customer_id = f"C{customers + rng.randint(1, 1000):05d}"
        else:
            customer_id = rng.choice(customer_rows)["customer_id"]
        quantity = rng.randint(1, 5)
        sales_rows.append({
            "product_id":  product["product_id"],
            "customer_id": customer_id,
            "quantity":    quantity,
            "amount":      round(quantity * float(product["price"]), 2),
        })

    paths = {
        "product":  os.path.join(out_dir, "products.csv"),
        "customer": os.path.join(out_dir, "customers.csv"),
        "sales":    os.path.join(out_dir, "sales.csv"),
    }
    _write(paths["product"], PRODUCT_COLUMNS, product_rows)
    _write(paths["customer"], CUSTOMER_COLUMNS, customer_rows)
    _write(paths["sales"], SALES_COLUMNS, sales_rows)
    return paths


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Generate sample CSV feeds")
    parser.add_argument("out_dir")
    parser.add_argument("--products", type=int, default=50)
    parser.add_argument("--customers", type=int, default=200)
    parser.add_argument("--sales", type=int, default=1000)
    parser.add_argument("--drift", action="store_true", help="change ~10%% of members and add late-arriving keys")
    parser.add_argument("--seed", type=int, default=42)
    args = parser.parse_args()

    written = generate_feeds(
        args.out_dir,
        products=args.products,
        customers=args.customers,
        sales=args.sales,
        drift=0.1 if args.drift else 0.0,
        late_arriving=0.02 if args.drift else 0.0,
        seed=args.seed,
    )
    for feed, path in written.items():
        print(f"✅ {feed:<9} → {path}")
