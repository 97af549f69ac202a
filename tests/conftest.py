import pytest
from sqlalchemy import create_engine

from warehouse.config import DimensionConfig, FactConfig, PipelineConfig
from warehouse.dimension import Dimension, DimensionRow
from warehouse.staging import StagedRecord


@pytest.fixture
def staged():
    def make(rows, business_key_field="id"):
        return [StagedRecord(dict(row), business_key_field, i) for i, row in enumerate(rows, start=1)]
    return make


@pytest.fixture
def item_config():
    return DimensionConfig("item", "id", type1_fields=("name",), type2_fields=("addr",))


@pytest.fixture
def item_dimension():
    return Dimension("item", [DimensionRow(1, "A", {"name": "Widget", "addr": "1 Main St"})])


@pytest.fixture
def pipeline_config():
    return PipelineConfig.from_dict({
        "dimensions": [
            {"dimension_name": "item", "business_key_field": "id",
             "type1_fields": ["name"], "type2_fields": ["addr"]},
            {"dimension_name": "store", "business_key_field": "store_id",
             "type1_fields": ["manager"], "type2_fields": ["region"],
             "unknown_member_policy": "PLACEHOLDER", "placeholder_key": -1},
        ],
        "facts": [
            {"fact_name": "sales",
             "dimension_references": [
                 {"dimension": "item", "fk_field": "id"},
                 {"dimension": "store", "fk_field": "store_id"},
             ],
             "measure_fields": ["qty", "amount"],
             "field_types": {"qty": "int", "amount": "float"}},
        ],
    })


@pytest.fixture
def sales_config(pipeline_config) -> FactConfig:
    return pipeline_config.facts["sales"]


@pytest.fixture
def sqlite_engine(tmp_path):
    engine = create_engine(f"sqlite:///{tmp_path / 'dw.db'}")
    yield engine
    engine.dispose()
