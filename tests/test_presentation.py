from presentation.star_schema_sample import member_history, sample_table
from warehouse.reconciler import DimensionReconciler
from warehouse.store import SqlStore


def test_sample_and_history(sqlite_engine, pipeline_config, staged):
    store = SqlStore(sqlite_engine, pipeline_config)
    reconciler = DimensionReconciler(pipeline_config.dimensions["item"])
    for batch_id, addr in enumerate(["1 Main St", "2 Oak St"], start=1):
        dimension = store.load_dimension("item")
        rows = [{"id": "A", "name": "Widget", "addr": addr}, {"id": "B", "name": "Bolt", "addr": "9 Elm St"}]
        store.publish([reconciler.reconcile(dimension, staged(rows), batch_id=batch_id)])

    sample = sample_table(sqlite_engine, "dim_item", limit=2)
    assert len(sample) == 2
    assert "business_key" in sample.columns

    history = member_history(sqlite_engine, pipeline_config, "item", "A")
    assert list(history["surrogate_key"]) == [1, 3]
    assert list(history["addr"]) == ["1 Main St", "2 Oak St"]
