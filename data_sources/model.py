#!/usr/bin/env python3
# model.py

"""
SQLAlchemy Core table definitions for the warehouse, generated from the
pipeline config instead of being written out table by table.

  dim_<name>   surrogate_key PK, business_key, one column per tracked
               attribute, audit columns (start_date, insert_id, update_id)
  fact_<name>  fact_sk PK, one surrogate-key column per dimension reference,
               the measures, audit columns (batch_id, loaded_at)
  etl_batches  one row per stage report of every batch

References:
- SQLAlchemy Table and Column docs:
  https://docs.sqlalchemy.org/en/20/core/metadata.html#sqlalchemy.schema.Table
"""

from sqlalchemy import (
    Boolean,
    Column,
    Date,
    DateTime,
    Float,
    Integer,
    MetaData,
    Numeric,
    String,
    Table,
    Text,
    text,
)

from warehouse.config import DECIMAL_PRECISION, DECIMAL_SCALE, DimensionConfig, FactConfig, PipelineConfig

# ───────────── 1) FIELD TYPE → COLUMN TYPE ─────────────────────────────────────
COLUMN_TYPES = {
    "str":      lambda: String(255),
    "int":      Integer,
    "float":    Float,
    "decimal":  lambda: Numeric(DECIMAL_PRECISION, DECIMAL_SCALE),
    "bool":     Boolean,
    "date":     Date,
    "datetime": DateTime,
}


def dimension_table_name(name: str) -> str:
    return f"dim_{name}"


def fact_table_name(name: str) -> str:
    return f"fact_{name}"


# ───────────── 2) DIMENSION TABLE ──────────────────────────────────────────────
def dimension_table(metadata: MetaData, config: DimensionConfig) -> Table:
    columns = [
        Column("surrogate_key", Integer, primary_key=True, autoincrement=False),
        Column("business_key",  COLUMN_TYPES[config.type_of(config.business_key_field)](),
               nullable=False, index=True),
    ]
    columns += [
        Column(name, COLUMN_TYPES[config.type_of(name)]()) for name in config.attribute_fields
    ]
    # ── Audit columns ──────────────────────────────────────────────────────────
    columns += [
        Column("start_date", DateTime, nullable=False, server_default=text("CURRENT_TIMESTAMP")),
        Column("insert_id",  Integer,  nullable=True),
        Column("update_id",  Integer,  nullable=True),
    ]
    return Table(dimension_table_name(config.dimension_name), metadata, *columns)


# ───────────── 3) FACT TABLE ───────────────────────────────────────────────────
def fact_table(metadata: MetaData, config: FactConfig) -> Table:
    # No FK constraints: unknown members resolve to a placeholder key that has
    # no row in the dimension table.
    columns = [Column("fact_sk", Integer, primary_key=True, autoincrement=True)]
    columns += [
        Column(ref.key_column, Integer, nullable=False) for ref in config.dimension_references
    ]
    columns += [
        Column(name, COLUMN_TYPES[config.type_of(name)]()) for name in config.measure_fields
    ]
    columns += [
        Column("batch_id",  Integer,  nullable=True),
        Column("loaded_at", DateTime, nullable=False, server_default=text("CURRENT_TIMESTAMP")),
    ]
    return Table(fact_table_name(config.fact_name), metadata, *columns)


# ───────────── 4) BATCH AUDIT TABLE ────────────────────────────────────────────
def batch_audit_table(metadata: MetaData) -> Table:
    return Table(
        "etl_batches", metadata,
        Column("id",          Integer, primary_key=True, autoincrement=True),
        Column("batch_id",    Integer, nullable=False),
        Column("stage",       String(255), nullable=False),
        Column("accepted",    Integer, nullable=False),
        Column("rejected",    Integer, nullable=False),
        Column("details",     Text),
        Column("recorded_at", DateTime, nullable=False, server_default=text("CURRENT_TIMESTAMP")),
    )


def build_metadata(config: PipelineConfig, schema=None):
    """
    Create a MetaData holding every table of the pipeline.
    Returns (metadata, dimension tables by name, fact tables by name, audit table).
    """
    metadata = MetaData(schema=schema)
    dimensions = {name: dimension_table(metadata, dim) for name, dim in config.dimensions.items()}
    facts = {name: fact_table(metadata, fact) for name, fact in config.facts.items()}
    audit = batch_audit_table(metadata)
    return metadata, dimensions, facts, audit
