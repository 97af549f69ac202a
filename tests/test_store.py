import os

import pytest
from sqlalchemy import inspect

from data_generation.clear_warehouse import clear_warehouse
from data_sources.rdbms import make_engine
from warehouse.config import load_config
from warehouse.dimension import Dimension
from warehouse.errors import BatchReport, KeyCollision
from warehouse.fact_loader import FactRow
from warehouse.reconciler import DimensionReconciler
from warehouse.store import InMemoryStore, SqlStore


@pytest.fixture(params=["memory", "sqlite"])
def store(request, pipeline_config, sqlite_engine):
    if request.param == "memory":
        return InMemoryStore()
    return SqlStore(sqlite_engine, pipeline_config)


def _reconcile(store, config, rows, staged, batch_id=1, business_key_field="id"):
    dimension = store.load_dimension(config.dimension_name)
    return DimensionReconciler(config).reconcile(dimension, staged(rows, business_key_field), batch_id=batch_id)


def test_unpublished_dimension_is_empty(store):
    assert len(store.load_dimension("item")) == 0


def test_publish_then_read_back(store, pipeline_config, staged):
    item = pipeline_config.dimensions["item"]
    store.publish([_reconcile(store, item, [
        {"id": "A", "name": "Widget", "addr": "1 Main St"},
        {"id": "B", "name": "Bolt", "addr": "9 Elm St"},
    ], staged)])

    dimension = store.load_dimension("item")
    assert [(r.surrogate_key, r.business_key) for r in dimension] == [(1, "A"), (2, "B")]
    assert dict(store.current_row("item", "A").attributes) == {"name": "Widget", "addr": "1 Main St"}
    assert store.row("item", 2).get("name") == "Bolt"
    assert store.row("item", 2).insert_batch == 1
    assert [r.business_key for r in store.scan("item")] == ["A", "B"]


def test_type1_and_type2_changes_are_persisted(store, pipeline_config, staged):
    item = pipeline_config.dimensions["item"]
    store.publish([_reconcile(store, item, [{"id": "A", "name": "Widget", "addr": "1 Main St"}], staged)])
    store.publish([_reconcile(store, item, [{"id": "A", "name": "Gadget", "addr": "1 Main St"}], staged, 2)])
    store.publish([_reconcile(store, item, [{"id": "A", "name": "Gadget", "addr": "2 Oak St"}], staged, 3)])

    versions = store.load_dimension("item").versions("A")
    assert [(v.surrogate_key, v.get("name"), v.get("addr")) for v in versions] == [
        (1, "Gadget", "1 Main St"),
        (2, "Gadget", "2 Oak St"),
    ]
    assert versions[0].update_batch == 2
    assert versions[1].insert_batch == 3


def test_reconciling_stored_dimension_again_is_idempotent(store, pipeline_config, staged):
    item = pipeline_config.dimensions["item"]
    rows = [{"id": "A", "name": "Widget", "addr": "1 Main St"}]
    store.publish([_reconcile(store, item, rows, staged)])

    again = _reconcile(store, item, rows, staged, 2)
    assert again.plan.is_empty


def test_stale_publish_is_rejected_and_nothing_becomes_visible(store, pipeline_config, staged):
    item, shop = pipeline_config.dimensions["item"], pipeline_config.dimensions["store"]
    stale = _reconcile(store, item, [{"id": "A", "name": "Widget"}], staged)
    fresh_shop = _reconcile(store, shop, [{"store_id": "S1", "region": "north"}], staged,
                            business_key_field="store_id")
    store.publish([_reconcile(store, item, [{"id": "Z", "name": "Zed"}], staged)])

    with pytest.raises(KeyCollision):
        store.publish([fresh_shop, stale])

    assert len(store.load_dimension("store")) == 0
    assert store.load_dimension("item").business_keys() == ["Z"]


def test_stale_commit_appends_no_facts(store, pipeline_config, staged):
    item = pipeline_config.dimensions["item"]
    stale = _reconcile(store, item, [{"id": "A", "name": "Widget"}], staged)
    store.publish([_reconcile(store, item, [{"id": "Z", "name": "Zed"}], staged)])
    report = BatchReport("facts:sales")
    report.accept()

    with pytest.raises(KeyCollision):
        store.commit_batch(
            [stale],
            {"sales": [FactRow("sales", {"item_key": 1, "store_key": -1, "qty": 1, "amount": 1.0}, batch_id=2)]},
            batch_id=2,
            reports=[report],
        )

    assert store.read_facts("sales") == []
    assert store.load_dimension("item").business_keys() == ["Z"]


def test_facts_are_appended(store):
    rows = [
        FactRow("sales", {"item_key": 1, "store_key": -1, "qty": 2, "amount": 3.5}, batch_id=1),
        FactRow("sales", {"item_key": 2, "store_key": 1, "qty": 1, "amount": 1.0}, batch_id=1),
    ]
    assert store.append_facts("sales", rows) == 2
    assert store.append_facts("sales", rows[:1]) == 1

    facts = store.read_facts("sales")
    assert len(facts) == 3
    assert facts[0] == {"item_key": 1, "store_key": -1, "qty": 2, "amount": 3.5, "batch_id": 1}


def test_reset_empties_everything(store, pipeline_config, staged):
    store.publish([_reconcile(store, pipeline_config.dimensions["item"], [{"id": "A", "name": "x"}], staged)])
    store.append_facts("sales", [FactRow("sales", {"item_key": 1, "store_key": 1, "qty": 1, "amount": 1.0})])

    store.reset()

    assert len(store.load_dimension("item")) == 0
    assert store.read_facts("sales") == []


def test_sql_store_creates_tables(sqlite_engine, pipeline_config):
    SqlStore(sqlite_engine, pipeline_config)

    tables = set(inspect(sqlite_engine).get_table_names())
    assert {"dim_item", "dim_store", "fact_sales", "etl_batches"} <= tables
    columns = {c["name"] for c in inspect(sqlite_engine).get_columns("dim_item")}
    assert columns == {"surrogate_key", "business_key", "name", "addr", "start_date", "insert_id", "update_id"}


def test_sql_store_records_batch_reports(sqlite_engine, pipeline_config):
    store = SqlStore(sqlite_engine, pipeline_config)
    report = BatchReport("ingest:item")
    report.accept(3)

    store.record_report(4, report)

    recorded = store.batch_reports(4)
    assert [(r["stage"], r["accepted"], r["rejected"]) for r in recorded] == [("ingest:item", 3, 0)]


def test_in_memory_store_publishes_snapshot_reference():
    store = InMemoryStore()
    base = store.load_dimension("item")
    assert store.load_dimension("item") is base
    assert isinstance(base, Dimension)


def test_clear_warehouse_empties_sqlite_tables(tmp_path, capsys):
    config_path = os.path.join(os.path.dirname(__file__), "..", "config", "example_pipeline.json")
    url = f"sqlite:///{tmp_path / 'dw.db'}"
    store = SqlStore(make_engine(url), load_config(config_path))
    store.append_facts("sales", [FactRow("sales", {"product_key": 1, "customer_key": 1, "quantity": 1, "amount": 2.0})])

    clear_warehouse(config_path, url=url, schema=None)

    assert store.read_facts("sales") == []
    assert "truncated" in capsys.readouterr().out
